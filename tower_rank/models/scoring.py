"""Cosine scoring shared by training and retrieval."""

from __future__ import annotations

import torch
import torch.nn.functional as F

EPS = 1e-8


def l2_normalize(x: torch.Tensor, dim: int = -1) -> torch.Tensor:
    # out-of-place; a zero vector stays zero instead of producing NaN
    return F.normalize(x, p=2, dim=dim, eps=EPS)


def cosine_score(u: torch.Tensor, v: torch.Tensor) -> torch.Tensor:
    """Row-wise cosine similarity of aligned (B, D) tensors → (B,)."""
    return torch.sum(l2_normalize(u) * l2_normalize(v), dim=-1)


def score_matrix(u: torch.Tensor, v: torch.Tensor) -> torch.Tensor:
    """All-pairs cosine similarity: (B, D) x (N, D) → (B, N)."""
    return l2_normalize(u) @ l2_normalize(v).T
