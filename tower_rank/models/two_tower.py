"""Two-Tower recommender: one store, a user tower and an item tower scored by cosine."""

from __future__ import annotations

from typing import Mapping

import numpy as np
import torch
import torch.nn as nn

from tower_rank.data.movielens import GENRES
from tower_rank.errors import DataContractViolation

from .embedding_store import EmbeddingStore
from .scoring import cosine_score, score_matrix
from .towers import ITEM, USER, LookupTower, MlpTower, Tower


def _infer_genre_dim(item_genres) -> int:
    if item_genres is None:
        raise ValueError("deep model needs genre_dim or item_genres")
    if isinstance(item_genres, Mapping):
        for vec in item_genres.values():
            if vec is not None:
                return len(vec)
        # nothing to size from: every item falls back to a zero vector
        return len(GENRES)
    arr = np.asarray(item_genres)
    if arr.ndim != 2:
        raise DataContractViolation(f"genre matrix must be 2-D, got shape {arr.shape}")
    return int(arr.shape[1])


class TwoTowerModel(nn.Module):
    """`deep=False` gives the matrix-factorisation baseline, `deep=True` the
    MLP towers with genre features on the item side. The tower type is
    fixed here; nothing downstream branches on it.
    """

    def __init__(
        self,
        num_users: int,
        num_items: int,
        emb_dim: int = 32,
        *,
        deep: bool = False,
        hidden_dim: int = 64,
        item_genres=None,
        genre_dim: int | None = None,
        init_std: float = 0.05,
    ):
        super().__init__()
        if deep and genre_dim is None:
            genre_dim = _infer_genre_dim(item_genres)
        self.store = EmbeddingStore(
            num_users,
            num_items,
            emb_dim,
            hidden_dim=hidden_dim if deep else None,
            genre_dim=genre_dim if deep else None,
            item_genres=item_genres if deep else None,
            init_std=init_std,
        )
        tower_cls = MlpTower if deep else LookupTower
        self.user_tower: Tower = tower_cls(self.store, USER)
        self.item_tower: Tower = tower_cls(self.store, ITEM)
        self.deep = deep

    @property
    def num_users(self) -> int:
        return self.store.num_users

    @property
    def num_items(self) -> int:
        return self.store.num_items

    @property
    def device(self) -> torch.device:
        return self.store.user_emb.weight.device

    def user_forward(self, user: torch.Tensor) -> torch.Tensor:
        return self.user_tower(user)

    def item_forward(self, item: torch.Tensor, genres: torch.Tensor | None = None) -> torch.Tensor:
        return self.item_tower(item, genres)

    def forward(self, user, item):
        """Aligned (user, item) cosine scores, shape (B,)."""
        return cosine_score(self.user_forward(user), self.item_forward(item))

    def score_all_pairs(self, user, item):
        return score_matrix(self.user_forward(user), self.item_forward(item))

    @torch.no_grad()
    def item_embeddings(self, batch_size: int = 512) -> torch.Tensor:
        """Normalised vectors for the whole catalog, (num_items, D)."""
        out = []
        for start in range(0, self.num_items, batch_size):
            idx = torch.arange(start, min(start + batch_size, self.num_items), device=self.device)
            out.append(self.item_forward(idx).cpu())
        return torch.cat(out) if out else torch.empty(0, self.store.embedding_dim)
