"""Ranking objectives for two-tower training.

Both take L2-normalised tower outputs; `temperature` divides the cosine
logits (1.0 keeps them in [-1, 1]).
"""

from __future__ import annotations

import math

import torch
import torch.nn.functional as F

from tower_rank.models.scoring import cosine_score, score_matrix

LOG2 = math.log(2.0)


def in_batch_softmax_loss(
    user_emb: torch.Tensor,
    item_emb: torch.Tensor,
    temperature: float = 1.0,
) -> torch.Tensor:
    """Row i of the (B, B) similarity matrix is classified against column i;
    the other items in the batch act as negatives. B == 1 gives exactly 0.
    """
    logits = score_matrix(user_emb, item_emb) / temperature  # (B, B)
    labels = torch.arange(logits.size(0), device=logits.device)
    return F.cross_entropy(logits, labels, reduction="mean")


def bpr_from_diff(diff: torch.Tensor) -> torch.Tensor:
    # softplus(-x) == -log(sigmoid(x)) without the log(0) for very negative x
    return F.softplus(-diff).mean()


def bpr_loss(
    user_emb: torch.Tensor,
    pos_emb: torch.Tensor,
    neg_emb: torch.Tensor,
    temperature: float = 1.0,
) -> torch.Tensor:
    diff = (cosine_score(user_emb, pos_emb) - cosine_score(user_emb, neg_emb)) / temperature
    return bpr_from_diff(diff)
