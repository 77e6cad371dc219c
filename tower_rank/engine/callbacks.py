"""Progress hooks the trainer calls between batches and epochs.

The trainer never touches UI or tracking state directly; anything that
wants to observe training (a progress view, an experiment tracker, a
cancel button) plugs in here.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable

import mlflow

log = logging.getLogger(__name__)

YieldHook = Callable[[], None]


class Callback:
    def on_train_begin(self, trainer) -> None:
        pass

    def on_batch_end(self, epoch: int, batch: int, loss: float) -> None:
        pass

    def on_epoch_end(self, epoch: int, avg_loss: float) -> None:
        pass

    def on_train_end(self, history) -> None:
        pass


class CallbackList(Callback):
    def __init__(self, callbacks: Iterable[Callback] = ()):
        self.callbacks = list(callbacks)

    def on_train_begin(self, trainer):
        for cb in self.callbacks:
            cb.on_train_begin(trainer)

    def on_batch_end(self, epoch, batch, loss):
        for cb in self.callbacks:
            cb.on_batch_end(epoch, batch, loss)

    def on_epoch_end(self, epoch, avg_loss):
        for cb in self.callbacks:
            cb.on_epoch_end(epoch, avg_loss)

    def on_train_end(self, history):
        for cb in self.callbacks:
            cb.on_train_end(history)


class MlflowCallback(Callback):
    """Logs losses to the active MLflow run; a no-op without one."""

    def __init__(self, prefix: str = "", log_batches: bool = True):
        self.prefix = prefix
        self.log_batches = log_batches
        self._step = 0

    def _key(self, name: str) -> str:
        return f"{self.prefix}{name}"

    def on_train_begin(self, trainer):
        self._step = 0

    def on_batch_end(self, epoch, batch, loss):
        self._step += 1
        if self.log_batches and mlflow.active_run() is not None:
            mlflow.log_metric(self._key("batch_loss"), loss, step=self._step)

    def on_epoch_end(self, epoch, avg_loss):
        if mlflow.active_run() is not None:
            mlflow.log_metric(self._key("train_loss"), avg_loss, step=epoch)


class CancelAfter(Callback):
    """Calls `target.cancel()` once `batches` batches have completed."""

    def __init__(self, target, batches: int):
        self.target = target
        self.batches = batches
        self._seen = 0

    def on_batch_end(self, epoch, batch, loss):
        self._seen += 1
        if self._seen >= self.batches:
            log.info("Cancelling after %d batches", self._seen)
            self.target.cancel()
