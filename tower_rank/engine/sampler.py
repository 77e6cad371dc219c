"""Uniform negative sampling with rejection of already-rated items."""

from __future__ import annotations

import logging
from typing import Mapping

import numpy as np

from tower_rank.errors import SamplingExhausted

log = logging.getLogger(__name__)


class NegativeSampler:
    def __init__(
        self,
        num_items: int,
        rated: Mapping[int, set[int]],
        max_retries: int = 100,
        rng: np.random.Generator | None = None,
    ):
        if num_items <= 0:
            raise ValueError("num_items must be positive")
        self.num_items = num_items
        self.rated = rated
        self.max_retries = max_retries
        self.rng = rng if rng is not None else np.random.default_rng()

    def sample(self, user: int) -> int:
        """One item the user has not rated; SamplingExhausted after max_retries draws."""
        seen = self.rated.get(user, ())
        for _ in range(self.max_retries):
            item = int(self.rng.integers(self.num_items))
            if item not in seen:
                return item
        raise SamplingExhausted(user, self.max_retries)

    def sample_batch(self, users) -> tuple[np.ndarray, np.ndarray]:
        """Negatives for a batch of users.

        Returns (negatives, keep) where `keep` masks the rows that got a
        valid negative; exhausted rows are left out rather than failing
        the batch.
        """
        users = np.asarray(users, dtype=np.int64)
        neg = np.zeros(len(users), dtype=np.int64)
        keep = np.ones(len(users), dtype=bool)
        for row, u in enumerate(users):
            try:
                neg[row] = self.sample(int(u))
            except SamplingExhausted as exc:
                log.warning("%s – skipping interaction", exc)
                keep[row] = False
        return neg, keep
