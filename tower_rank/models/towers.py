"""User / item towers.

Both variants read parameters from an `EmbeddingStore` and return
L2-normalised vectors, so every scoring path sees unit-norm inputs.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

import torch
import torch.nn as nn

from .embedding_store import EmbeddingStore
from .scoring import l2_normalize

USER, ITEM = "user", "item"


class Tower(ABC):
    def __init__(self, store: EmbeddingStore, side: str):
        if side not in (USER, ITEM):
            raise ValueError(f"Unknown tower side: {side}")
        self.store = store
        self.side = side

    def _gather(self, idx: torch.Tensor) -> torch.Tensor:
        if self.side == USER:
            return self.store.gather_users(idx)
        return self.store.gather_items(idx)

    @abstractmethod
    def encode(self, idx: torch.Tensor, genres: torch.Tensor | None = None) -> torch.Tensor:
        """Un-normalised (B, D) tower output."""

    def __call__(self, idx: torch.Tensor, genres: torch.Tensor | None = None) -> torch.Tensor:
        return l2_normalize(self.encode(idx, genres))


class LookupTower(Tower):
    """Baseline tower: plain row gather."""

    def encode(self, idx, genres=None):
        return self._gather(idx)


class MlpTower(Tower):
    """Identity embedding → (genre fusion for items) → Linear-ReLU-Linear."""

    @property
    def mlp(self) -> nn.Sequential:
        return self.store.user_mlp if self.side == USER else self.store.item_mlp

    def encode(self, idx, genres=None):
        x = self._gather(idx)  # (B, D)
        if self.side == ITEM:
            if genres is None:
                genres = self.store.gather_genres(idx)
            else:
                genres = torch.nan_to_num(genres.to(x.dtype), nan=0.0)
            g = self.store.genre_proj(genres)  # (B, D)
            x = torch.cat([x, g], dim=-1)  # (B, 2D)
        return self.mlp(x)
