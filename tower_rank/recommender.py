"""Headless facade: `train(config) -> history`, `recommend(user, exclude, k)`."""

from __future__ import annotations

import logging
from typing import Iterable

from tower_rank.config.train_config import TrainConfig
from tower_rank.data.movielens import MovieLensData, validate_contract
from tower_rank.engine.callbacks import Callback, YieldHook
from tower_rank.engine.registry import model_from_config
from tower_rank.engine.retrieval import Recommendation, recommend
from tower_rank.engine.train_loop import Trainer, TrainingHistory
from tower_rank.models.two_tower import TwoTowerModel

log = logging.getLogger(__name__)


class TwoTowerRecommender:
    """Binds one dataset to a model trained on it.

    Each `train` call builds a fresh model, so a failed or cancelled run
    can always be retried from scratch.
    """

    def __init__(self, data: MovieLensData):
        validate_contract(data)
        self.data = data
        self._rated = data.rated_items()
        self.model: TwoTowerModel | None = None
        self.trainer: Trainer | None = None
        self.config: TrainConfig | None = None

    def train(
        self,
        config: TrainConfig,
        callbacks: Iterable[Callback] = (),
        yield_hook: YieldHook | None = None,
        show_progress: bool = True,
    ) -> TrainingHistory:
        config.validate()
        model = model_from_config(config, self.data.num_users, self.data.num_items,
                                  self.data.item_genres)
        self.trainer = Trainer(model, config, callbacks, yield_hook, show_progress)
        self.model, self.config = model, config
        return self.trainer.fit(self.data)

    def cancel(self) -> None:
        if self.trainer is not None:
            self.trainer.cancel()

    def rated_items(self, user: int) -> set[int]:
        return self._rated.get(user, set())

    def recommend(
        self,
        user: int,
        exclude: Iterable[int] | None = None,
        k: int = 10,
    ) -> list[Recommendation]:
        """Top-k unrated items; `exclude` defaults to the user's rated items."""
        if self.model is None:
            raise RuntimeError("train() must be called before recommend()")
        if exclude is None:
            exclude = self.rated_items(user)
        batch_size = self.config.score_batch_size if self.config else 512
        return recommend(self.model, user, exclude, k, batch_size)
