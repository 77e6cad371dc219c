"""Two-tower training loop: shuffle → batch → loss → Adam step, with
cooperative cancellation between batches."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable

import numpy as np
import torch
from torch.utils.data import DataLoader
from tqdm import tqdm

from tower_rank.config.train_config import TrainConfig
from tower_rank.data.movielens import MovieLensData, validate_contract
from tower_rank.datasets.two_tower import InteractionDataset
from tower_rank.errors import DataContractViolation, NonFiniteLoss, TrainingInProgress
from tower_rank.models.two_tower import TwoTowerModel

from .callbacks import Callback, CallbackList, YieldHook
from .losses import bpr_loss, in_batch_softmax_loss
from .sampler import NegativeSampler

log = logging.getLogger(__name__)


class TrainerState(str, Enum):
    IDLE = "idle"
    TRAINING = "training"
    CANCELLED = "cancelled"


@dataclass
class BatchLoss:
    epoch: int
    batch: int
    loss: float


@dataclass
class TrainingHistory:
    epoch_losses: list[float] = field(default_factory=list)
    batch_losses: list[BatchLoss] = field(default_factory=list)
    skipped_samples: int = 0
    # epochs in which every row was skipped and no loss was computed
    empty_epochs: list[int] = field(default_factory=list)
    cancelled: bool = False

    @property
    def final_loss(self) -> float | None:
        return self.epoch_losses[-1] if self.epoch_losses else None


class Trainer:
    """Owns the optimizer and drives in-place updates of a model's parameters.

    States: IDLE → TRAINING → IDLE (finished or failed) | CANCELLED.
    Epochs and batches are 0-based in history, callbacks and errors.
    """

    def __init__(
        self,
        model: TwoTowerModel,
        config: TrainConfig,
        callbacks: Iterable[Callback] = (),
        yield_hook: YieldHook | None = None,
        show_progress: bool = True,
    ):
        self.model = model
        self.config = config.validate()
        self.callbacks = CallbackList(callbacks)
        self.yield_hook = yield_hook
        self.show_progress = show_progress
        self.device = torch.device(config.device)
        self.model.to(self.device)
        self.optim = torch.optim.Adam(self.model.parameters(), lr=config.learning_rate)
        self.state = TrainerState.IDLE
        self._cancel_requested = False
        self._loss_fn = {"softmax": self._softmax_loss, "bpr": self._bpr_loss}[config.loss_type]
        self._sampler: NegativeSampler | None = None
        self.history = TrainingHistory()

    # ------------------------------------------------------------------
    def cancel(self) -> None:
        """Stop after the batch in flight; its update is applied in full."""
        self._cancel_requested = True

    def _softmax_loss(self, user, item):
        u = self.model.user_forward(user)
        v = self.model.item_forward(item)
        return in_batch_softmax_loss(u, v, self.config.temperature)

    def _bpr_loss(self, user, item):
        neg, keep = self._sampler.sample_batch(user.cpu().numpy())
        skipped = int((~keep).sum())
        if skipped:
            self.history.skipped_samples += skipped
        if not keep.any():
            return None
        mask = torch.as_tensor(keep, device=user.device)
        user, item = user[mask], item[mask]
        neg = torch.as_tensor(neg[keep], dtype=torch.long, device=user.device)
        u = self.model.user_forward(user)
        return bpr_loss(u, self.model.item_forward(item), self.model.item_forward(neg),
                        self.config.temperature)

    def _step(self, batch, epoch: int, batch_idx: int) -> float | None:
        self.model.train()
        user = batch["user"].to(self.device)
        item = batch["item"].to(self.device)

        self.optim.zero_grad()
        loss = self._loss_fn(user, item)
        if loss is None:
            return None
        value = loss.detach().cpu().item()
        # checked before backward so a bad batch never reaches the parameters
        if not math.isfinite(value):
            raise NonFiniteLoss(epoch, batch_idx, value)
        loss.backward()
        self.optim.step()
        return value

    def _loader(self, data: MovieLensData) -> DataLoader:
        gen = torch.Generator()
        if self.config.seed is not None:
            gen.manual_seed(self.config.seed)
        else:
            gen.seed()
        return DataLoader(InteractionDataset(data.interactions),
                          batch_size=self.config.batch_size,
                          shuffle=True, drop_last=False, generator=gen)

    # ------------------------------------------------------------------
    def fit(self, data: MovieLensData) -> TrainingHistory:
        if self.state is TrainerState.TRAINING:
            raise TrainingInProgress("Trainer is already running")
        self.state = TrainerState.IDLE
        validate_contract(data)
        if data.num_users != self.model.num_users or data.num_items != self.model.num_items:
            raise DataContractViolation(
                f"data has {data.num_users} users / {data.num_items} items, model was built for "
                f"{self.model.num_users} / {self.model.num_items}")
        if len(data) == 0 and self.config.epochs > 0:
            raise DataContractViolation("no interactions to train on")

        cfg = self.config
        if cfg.loss_type == "bpr":
            rng = np.random.default_rng(cfg.seed)
            self._sampler = NegativeSampler(data.num_items, data.rated_items(),
                                            cfg.max_negative_retries, rng)
        dl = self._loader(data)

        self.history = TrainingHistory()
        self._cancel_requested = False
        self.state = TrainerState.TRAINING
        self.callbacks.on_train_begin(self)
        log.info("Training %s model | loss=%s | %d interactions | %d batches/epoch | device=%s",
                 cfg.model_name, cfg.loss_type, len(data), len(dl), self.device)
        try:
            for ep in range(cfg.epochs):
                losses, ran = [], 0
                pbar = tqdm(dl, desc=f"Epoch {ep+1}/{cfg.epochs}", disable=not self.show_progress)
                for b, batch in enumerate(pbar):
                    value = self._step(batch, ep, b)
                    if value is not None:
                        losses.append(value)
                        self.history.batch_losses.append(BatchLoss(ep, b, value))
                        self.callbacks.on_batch_end(ep, b, value)
                        pbar.set_postfix(loss=f"{value:.4f}")
                    if self.yield_hook is not None:
                        self.yield_hook()
                    ran += 1
                    if self._cancel_requested:
                        break

                # an epoch whose batches all ran is reported even if cancel came on its last batch
                if ran == len(dl):
                    if losses:
                        avg = sum(losses) / len(losses)
                        self.history.epoch_losses.append(avg)
                        self.callbacks.on_epoch_end(ep, avg)
                        log.info("Epoch %d/%d | loss %.4f", ep + 1, cfg.epochs, avg)
                    else:
                        self.history.empty_epochs.append(ep)
                        log.warning("Epoch %d/%d | every batch skipped, no loss recorded",
                                    ep + 1, cfg.epochs)

                if self._cancel_requested:
                    self.state = TrainerState.CANCELLED
                    self.history.cancelled = True
                    log.info("Training cancelled during epoch %d", ep + 1)
                    break
        except NonFiniteLoss:
            log.error("Aborting training: non-finite loss")
            raise
        finally:
            if self.state is TrainerState.TRAINING:
                self.state = TrainerState.IDLE
            self.model.eval()

        if self.history.skipped_samples:
            log.warning("Skipped %d interactions with no valid negative",
                        self.history.skipped_samples)
        self.callbacks.on_train_end(self.history)
        return self.history


def fit(model: TwoTowerModel, data: MovieLensData, config: TrainConfig, **kwargs) -> TrainingHistory:
    """One-shot convenience wrapper around `Trainer`."""
    return Trainer(model, config, **kwargs).fit(data)
