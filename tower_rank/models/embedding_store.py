"""Owner of every learnable parameter of a two-tower model."""

from __future__ import annotations

from typing import Mapping, Sequence

import numpy as np
import torch
import torch.nn as nn

from tower_rank.errors import DataContractViolation, InvalidIndex


def _mlp(in_dim: int, hidden_dim: int, out_dim: int) -> nn.Sequential:
    return nn.Sequential(
        nn.Linear(in_dim, hidden_dim),
        nn.ReLU(),
        nn.Linear(hidden_dim, out_dim),
    )


def build_genre_matrix(
    num_items: int,
    genre_dim: int,
    genres: np.ndarray | Mapping[int, Sequence[float]] | None,
) -> torch.Tensor:
    """Dense (num_items, G) genre table; items without genre data get a zero row."""
    table = torch.zeros(num_items, genre_dim, dtype=torch.float32)
    if genres is None:
        return table
    if isinstance(genres, Mapping):
        for idx, vec in genres.items():
            if vec is None or not 0 <= idx < num_items:
                continue
            vec = np.asarray(vec, dtype=np.float32)
            if vec.shape != (genre_dim,):
                raise DataContractViolation(
                    f"genre vector for item {idx} has shape {vec.shape}, expected ({genre_dim},)")
            table[idx] = torch.as_tensor(vec)
        return torch.nan_to_num(table, nan=0.0)
    arr = np.asarray(genres, dtype=np.float32)
    if arr.ndim != 2 or arr.shape[1] != genre_dim:
        raise DataContractViolation(
            f"genre matrix has shape {arr.shape}, expected (n, {genre_dim})")
    arr = torch.as_tensor(arr)
    n = min(num_items, arr.shape[0])
    table[:n] = arr[:n]
    return torch.nan_to_num(table, nan=0.0)


class EmbeddingStore(nn.Module):
    """User / item embedding tables plus, for the deep variant, the MLP and
    genre-projection weights.

    Row counts and the embedding dimension are fixed at construction; new
    users or items require a fresh store.
    """

    def __init__(
        self,
        num_users: int,
        num_items: int,
        embedding_dim: int = 32,
        hidden_dim: int | None = None,
        genre_dim: int | None = None,
        item_genres: np.ndarray | Mapping[int, Sequence[float]] | None = None,
        init_std: float = 0.05,
    ):
        super().__init__()
        self.num_users = num_users
        self.num_items = num_items
        self.embedding_dim = embedding_dim
        self.init_std = init_std

        self.user_emb = nn.Embedding(num_users, embedding_dim)
        self.item_emb = nn.Embedding(num_items, embedding_dim)

        self.deep = hidden_dim is not None
        if self.deep:
            if genre_dim is None:
                raise ValueError("genre_dim is required for the deep variant")
            self.genre_dim = genre_dim
            self.user_mlp = _mlp(embedding_dim, hidden_dim, embedding_dim)
            self.item_mlp = _mlp(2 * embedding_dim, hidden_dim, embedding_dim)
            self.genre_proj = nn.Linear(genre_dim, embedding_dim, bias=False)
            self.register_buffer(
                "item_genres", build_genre_matrix(num_items, genre_dim, item_genres))

        self.reset_parameters()

    def reset_parameters(self) -> None:
        nn.init.normal_(self.user_emb.weight, mean=0.0, std=self.init_std)
        nn.init.normal_(self.item_emb.weight, mean=0.0, std=self.init_std)
        if self.deep:
            for m in (*self.user_mlp, *self.item_mlp, self.genre_proj):
                if isinstance(m, nn.Linear):
                    nn.init.xavier_normal_(m.weight)
                    if m.bias is not None:
                        nn.init.zeros_(m.bias)

    # ------------------------------------------------------------------
    @staticmethod
    def _check(idx: torch.Tensor, num_rows: int, table: str) -> None:
        if idx.numel() == 0:
            return
        lo, hi = int(idx.min()), int(idx.max())
        if lo < 0:
            raise InvalidIndex(lo, num_rows, table)
        if hi >= num_rows:
            raise InvalidIndex(hi, num_rows, table)

    def gather_users(self, idx: torch.Tensor) -> torch.Tensor:
        self._check(idx, self.num_users, "user")
        return self.user_emb(idx)

    def gather_items(self, idx: torch.Tensor) -> torch.Tensor:
        self._check(idx, self.num_items, "item")
        return self.item_emb(idx)

    def gather_genres(self, idx: torch.Tensor) -> torch.Tensor:
        self._check(idx, self.num_items, "item")
        return self.item_genres[idx]
