"""Batched full-catalog scoring and top-K recommendation."""

from __future__ import annotations

from typing import Iterable, NamedTuple

import numpy as np
import torch

from tower_rank.errors import InvalidIndex
from tower_rank.models.scoring import score_matrix
from tower_rank.models.two_tower import TwoTowerModel


class Recommendation(NamedTuple):
    item: int
    score: float


@torch.no_grad()
def score_catalog(model: TwoTowerModel, user: int, batch_size: int = 512) -> np.ndarray:
    """Cosine score of `user` against every item, scored `batch_size` items at a time."""
    if not 0 <= user < model.num_users:
        raise InvalidIndex(user, model.num_users, "user")
    model.eval()
    device = model.device
    u = model.user_forward(torch.tensor([user], device=device))  # (1, D)
    chunks = []
    for start in range(0, model.num_items, batch_size):
        idx = torch.arange(start, min(start + batch_size, model.num_items), device=device)
        chunks.append(score_matrix(u, model.item_forward(idx)).squeeze(0).cpu().numpy())
    return np.concatenate(chunks) if chunks else np.empty(0, dtype=np.float32)


def top_k(scores: np.ndarray, exclude: Iterable[int] = (), k: int = 10) -> list[Recommendation]:
    """Highest-scoring items not in `exclude`; ties go to the lower item index."""
    if k <= 0:
        return []
    mask = np.ones(len(scores), dtype=bool)
    excl = np.fromiter((i for i in exclude if 0 <= i < len(scores)), dtype=np.int64)
    mask[excl] = False
    candidates = np.flatnonzero(mask)
    # stable sort on the negated score keeps index order among equal scores
    order = np.argsort(-scores[candidates], kind="stable")[:k]
    return [Recommendation(int(candidates[i]), float(scores[candidates[i]])) for i in order]


def recommend(
    model: TwoTowerModel,
    user: int,
    exclude: Iterable[int] = (),
    k: int = 10,
    batch_size: int = 512,
) -> list[Recommendation]:
    return top_k(score_catalog(model, user, batch_size), exclude, k)
