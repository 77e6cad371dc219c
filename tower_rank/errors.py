"""Exception hierarchy shared by the loader, models and training engine."""

from __future__ import annotations


class TowerRankError(Exception):
    """Base class for every error raised by tower_rank."""


class DataContractViolation(TowerRankError):
    """Loader output breaks the index-range or genre-vector contract."""


class NonFiniteLoss(TowerRankError):
    def __init__(self, epoch: int, batch: int, loss: float):
        super().__init__(f"Non-finite loss {loss!r} at epoch {epoch}, batch {batch}")
        self.epoch = epoch
        self.batch = batch
        self.loss = loss


class SamplingExhausted(TowerRankError):
    def __init__(self, user: int, attempts: int):
        super().__init__(f"No negative item found for user {user} after {attempts} draws")
        self.user = user
        self.attempts = attempts


class InvalidIndex(TowerRankError, IndexError):
    def __init__(self, index: int, num_rows: int, table: str = "embedding"):
        super().__init__(f"Index {index} out of range for {table} table with {num_rows} rows")
        self.index = index
        self.num_rows = num_rows
        self.table = table


class TrainingInProgress(TowerRankError):
    """`fit` was called on a trainer that is already running."""
