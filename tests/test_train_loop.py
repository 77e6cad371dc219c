from __future__ import annotations

import numpy as np
import pytest
import torch

from tower_rank.engine.callbacks import CancelAfter, Callback
from tower_rank.engine.registry import model_from_config
from tower_rank.engine.train_loop import Trainer, TrainerState, fit
from tower_rank.errors import DataContractViolation, NonFiniteLoss, TrainingInProgress


def _trainer(data, cfg, **kwargs) -> Trainer:
    model = model_from_config(cfg, data.num_users, data.num_items, data.item_genres)
    return Trainer(model, cfg, show_progress=False, **kwargs)


class Recorder(Callback):
    def __init__(self):
        self.batches, self.epochs = [], []

    def on_batch_end(self, epoch, batch, loss):
        self.batches.append((epoch, batch, loss))

    def on_epoch_end(self, epoch, avg_loss):
        self.epochs.append((epoch, avg_loss))


def test_softmax_converges_on_bijection(bijection_data, cpu_config) -> None:
    cfg = cpu_config(embedding_dim=16, batch_size=8, epochs=300, learning_rate=0.05,
                     temperature=0.1, use_deep_tower=False)
    history = _trainer(bijection_data, cfg).fit(bijection_data)
    assert len(history.epoch_losses) == 300
    assert history.epoch_losses[-1] < history.epoch_losses[0]
    assert history.final_loss < 0.1


def test_oversized_batch_yields_one_batch_per_epoch(make_data, cpu_config) -> None:
    data = make_data([(0, 0), (1, 1), (2, 2), (0, 1), (1, 2)], num_items=3)
    history = _trainer(data, cpu_config(batch_size=100, epochs=3)).fit(data)
    assert [(b.epoch, b.batch) for b in history.batch_losses] == [(0, 0), (1, 0), (2, 0)]
    assert len(history.epoch_losses) == 3


def test_partial_final_batch_is_processed(small_data, cpu_config) -> None:
    rec = Recorder()
    history = _trainer(small_data, cpu_config(batch_size=4, epochs=2),
                       callbacks=[rec]).fit(small_data)
    # 10 interactions → batches of 4, 4, 2
    assert [b for _, b, _ in rec.batches] == [0, 1, 2, 0, 1, 2]
    assert [e for e, _ in rec.epochs] == [0, 1]
    assert all(np.isfinite(loss) for loss in history.epoch_losses)


@pytest.mark.parametrize("loss_type", ["softmax", "bpr"])
@pytest.mark.parametrize("deep", [False, True])
def test_all_variants_train(small_data, cpu_config, loss_type, deep) -> None:
    cfg = cpu_config(loss_type=loss_type, use_deep_tower=deep, epochs=3)
    trainer = _trainer(small_data, cfg)
    before = {n: p.detach().clone() for n, p in trainer.model.named_parameters()}
    history = trainer.fit(small_data)
    assert trainer.state is TrainerState.IDLE
    assert all(np.isfinite(loss) for loss in history.epoch_losses)
    changed = [n for n, p in trainer.model.named_parameters() if not torch.equal(before[n], p)]
    assert "store.user_emb.weight" in changed and "store.item_emb.weight" in changed
    if deep:
        assert "store.item_mlp.0.weight" in changed


def test_yield_hook_called_between_batches(small_data, cpu_config) -> None:
    calls = []
    _trainer(small_data, cpu_config(batch_size=4, epochs=2),
             yield_hook=lambda: calls.append(1)).fit(small_data)
    assert len(calls) == 6


def test_cancel_stops_after_in_flight_batch(small_data, cpu_config) -> None:
    cfg = cpu_config(batch_size=4, epochs=5)
    model = model_from_config(cfg, small_data.num_users, small_data.num_items,
                              small_data.item_genres)
    trainer = Trainer(model, cfg, show_progress=False)
    trainer.callbacks.callbacks.append(CancelAfter(trainer, 2))
    history = trainer.fit(small_data)
    assert trainer.state is TrainerState.CANCELLED
    assert history.cancelled
    assert len(history.batch_losses) == 2
    assert history.epoch_losses == []

    trainer.callbacks.callbacks.clear()
    again = trainer.fit(small_data)
    assert trainer.state is TrainerState.IDLE
    assert not again.cancelled
    assert len(again.epoch_losses) == 5


def test_non_finite_loss_aborts_without_touching_parameters(small_data, cpu_config) -> None:
    trainer = _trainer(small_data, cpu_config())
    with torch.no_grad():
        trainer.model.store.user_emb.weight.fill_(float("nan"))
    items_before = trainer.model.store.item_emb.weight.detach().clone()
    with pytest.raises(NonFiniteLoss) as exc:
        trainer.fit(small_data)
    assert (exc.value.epoch, exc.value.batch) == (0, 0)
    assert trainer.state is TrainerState.IDLE
    assert torch.equal(trainer.model.store.item_emb.weight, items_before)


def test_bpr_skips_users_without_negatives(make_data, cpu_config) -> None:
    # user 0 rated the whole catalog
    data = make_data([(0, 0), (0, 1), (0, 2), (1, 0)], num_items=3)
    cfg = cpu_config(loss_type="bpr", batch_size=10, epochs=1, max_negative_retries=5)
    history = _trainer(data, cfg).fit(data)
    assert history.skipped_samples == 3
    assert len(history.batch_losses) == 1
    assert np.isfinite(history.final_loss)


def test_contract_violation_prevents_training(small_data, cpu_config) -> None:
    trainer = _trainer(small_data, cpu_config())
    small_data.interactions.loc[0, "item_idx"] = 99
    with pytest.raises(DataContractViolation):
        trainer.fit(small_data)
    assert trainer.state is TrainerState.IDLE
    assert trainer.history.batch_losses == []


def test_mismatched_model_is_rejected(small_data, make_data, cpu_config) -> None:
    other = make_data([(0, 0)], num_items=2)
    trainer = _trainer(other, cpu_config())
    with pytest.raises(DataContractViolation):
        trainer.fit(small_data)


def test_reentrant_fit_rejected(small_data, cpu_config) -> None:
    trainer = _trainer(small_data, cpu_config())
    errors = []

    def hook():
        try:
            trainer.fit(small_data)
        except TrainingInProgress as exc:
            errors.append(exc)
        trainer.cancel()

    trainer.yield_hook = hook
    trainer.fit(small_data)
    assert len(errors) == 1


def test_fit_helper_returns_history(small_data, cpu_config) -> None:
    cfg = cpu_config(epochs=1)
    model = model_from_config(cfg, small_data.num_users, small_data.num_items, small_data.item_genres)
    history = fit(model, small_data, cfg, show_progress=False)
    assert len(history.epoch_losses) == 1


def test_cancel_on_last_batch_keeps_completed_epoch(small_data, cpu_config) -> None:
    rec = Recorder()
    cfg = cpu_config(batch_size=4, epochs=5)
    trainer = _trainer(small_data, cfg, callbacks=[rec])
    # 10 interactions at batch_size 4 → 3 batches, so this lands on the epoch boundary
    trainer.callbacks.callbacks.append(CancelAfter(trainer, 3))
    history = trainer.fit(small_data)
    assert trainer.state is TrainerState.CANCELLED
    assert [(b.epoch, b.batch) for b in history.batch_losses] == [(0, 0), (0, 1), (0, 2)]
    assert len(history.epoch_losses) == 1
    assert history.epoch_losses[0] == pytest.approx(
        np.mean([b.loss for b in history.batch_losses]))
    assert [e for e, _ in rec.epochs] == [0]


def test_epoch_with_every_row_skipped_records_no_loss(make_data, cpu_config) -> None:
    # the only user rated the whole catalog
    data = make_data([(0, 0), (0, 1), (0, 2)], num_items=3)
    rec = Recorder()
    cfg = cpu_config(loss_type="bpr", batch_size=10, epochs=2, max_negative_retries=5)
    history = _trainer(data, cfg, callbacks=[rec]).fit(data)
    assert history.epoch_losses == []
    assert history.empty_epochs == [0, 1]
    assert history.skipped_samples == 6
    assert history.final_loss is None
    assert rec.epochs == []


def test_failed_refit_after_cancel_returns_to_idle(small_data, cpu_config) -> None:
    trainer = _trainer(small_data, cpu_config(batch_size=4, epochs=3))
    trainer.callbacks.callbacks.append(CancelAfter(trainer, 1))
    trainer.fit(small_data)
    assert trainer.state is TrainerState.CANCELLED

    small_data.interactions.loc[0, "item_idx"] = 99
    with pytest.raises(DataContractViolation):
        trainer.fit(small_data)
    assert trainer.state is TrainerState.IDLE
