from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from tower_rank.config.train_config import TrainConfig  # noqa: E402
from tower_rank.data.movielens import GENRES, MovieLensData  # noqa: E402


def _make_data(pairs, num_items, genres=None, ratings=None) -> MovieLensData:
    ratings_df = pd.DataFrame({
        "user_id": [u for u, _ in pairs],
        "item_id": [i for _, i in pairs],
        "rating": ratings if ratings is not None else [4] * len(pairs),
        "timestamp": list(range(len(pairs))),
    })
    items = pd.DataFrame({
        "item_id": list(range(num_items)),
        "title": [f"Item {i} (1990)" for i in range(num_items)],
    })
    if genres is not None:
        genres = np.asarray(genres, dtype=np.float32)
        for g, name in enumerate(GENRES):
            items[name] = genres[:, g]
    return MovieLensData.from_frames(ratings_df, items)


@pytest.fixture
def make_data():
    return _make_data


@pytest.fixture
def bijection_data() -> MovieLensData:
    return _make_data([(i, i) for i in range(8)], num_items=8)


@pytest.fixture
def small_data() -> MovieLensData:
    rng = np.random.default_rng(0)
    pairs = [(0, 0), (0, 1), (0, 2), (1, 2), (1, 3), (2, 4), (2, 5), (3, 0), (3, 5), (4, 1)]
    genres = (rng.random((6, len(GENRES))) > 0.7).astype(np.float32)
    return _make_data(pairs, num_items=6, genres=genres)


@pytest.fixture
def cpu_config():
    def _cfg(**overrides) -> TrainConfig:
        base = dict(embedding_dim=8, hidden_dim=16, batch_size=4, epochs=2,
                    learning_rate=1e-2, seed=0, device="cpu")
        base.update(overrides)
        return TrainConfig(**base)
    return _cfg


def _item_line(item_id: int, title: str, date: str, genres: list[int]) -> str:
    flags = ["0"] * len(GENRES)
    for g in genres:
        flags[g] = "1"
    return "|".join([str(item_id), title, date, "", "http://example.com", *flags])


@pytest.fixture
def ml_dir(tmp_path):
    """Tiny MovieLens-100K style directory; item 99 is not in the catalog."""
    items = [
        _item_line(1, "Toy Story (1995)", "01-Jan-1995", [3, 4, 5]),
        _item_line(2, "GoldenEye (1995)", "01-Jan-1995", [1, 2, 16]),
        _item_line(3, "Four Rooms (1995)", "", [16]),
        _item_line(4, "Unrated Movie", "", []),
    ]
    (tmp_path / "u.item").write_text("\n".join(items) + "\n", encoding="latin-1")
    ratings = [
        "196\t1\t3\t881250949",
        "186\t2\t5\t891717742",
        "196\t3\t4\t881251000",
        "22\t99\t1\t878887116",
        "244\t2\t2\t880606923",
    ]
    (tmp_path / "u.data").write_text("\n".join(ratings) + "\n")
    return tmp_path
