# ------------------------------------------------------------
# data/movielens.py
# ------------------------------------------------------------
"""MovieLens-100K loader: raw `u.item` / `u.data` → index-mapped frames
ready for two-tower training.

Users are mapped over the users present in the interactions, items over
the whole `u.item` catalog (unrated items still get a row so they can be
recommended).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

import numpy as np
import pandas as pd
from sklearn.preprocessing import LabelEncoder

from tower_rank.errors import DataContractViolation

log = logging.getLogger(__name__)

GENRES = (
    "unknown", "Action", "Adventure", "Animation", "Children's", "Comedy", "Crime",
    "Documentary", "Drama", "Fantasy", "Film-Noir", "Horror", "Musical", "Mystery",
    "Romance", "Sci-Fi", "Thriller", "War", "Western",
)

ITEM_COLUMNS = ["item_id", "title", "release_date", "video_release_date", "imdb_url", *GENRES]
RATING_COLUMNS = ["user_id", "item_id", "rating", "timestamp"]

_TITLE_YEAR = re.compile(r"\((\d{4})\)\s*$")


def _parse_year(release_date, title) -> int | None:
    if isinstance(release_date, str) and release_date.strip():
        try:
            return int(release_date.strip()[-4:])
        except ValueError:
            pass
    m = _TITLE_YEAR.search(str(title or ""))
    return int(m.group(1)) if m else None


@dataclass
class MovieLensData:
    """Index-mapped users, items, interactions and genre features."""

    interactions: pd.DataFrame  # user_idx, item_idx, rating, timestamp
    item_genres: np.ndarray     # (num_items, G) float32, multi-hot
    item_titles: list[str]
    item_years: list[int | None]
    user_encoder: LabelEncoder
    item_encoder: LabelEncoder
    genre_names: tuple[str, ...] = GENRES

    @property
    def num_users(self) -> int:
        return len(self.user_encoder.classes_)

    @property
    def num_items(self) -> int:
        return len(self.item_encoder.classes_)

    @property
    def genre_dim(self) -> int:
        return int(self.item_genres.shape[1])

    def __len__(self) -> int:
        return len(self.interactions)

    def rated_items(self) -> dict[int, set[int]]:
        """user_idx → set of item_idx the user has interacted with."""
        grouped = self.interactions.groupby("user_idx")["item_idx"]
        return {int(u): set(map(int, items)) for u, items in grouped}

    def top_rated(self, user_idx: int, k: int = 10) -> pd.DataFrame:
        """Historical top-k for a user, highest rating first, most recent on ties."""
        rows = self.interactions[self.interactions["user_idx"] == user_idx]
        rows = rows.sort_values(["rating", "timestamp"], ascending=[False, False]).head(k)
        rows = rows.assign(title=[self.item_titles[i] for i in rows["item_idx"]])
        return rows.reset_index(drop=True)

    def user_id(self, user_idx: int):
        return self.user_encoder.inverse_transform([user_idx])[0]

    def item_id(self, item_idx: int):
        return self.item_encoder.inverse_transform([item_idx])[0]

    # ------------------------------------------------------------------
    @classmethod
    def from_frames(
        cls,
        ratings: pd.DataFrame,
        items: pd.DataFrame,
        genre_names: Sequence[str] = GENRES,
    ) -> "MovieLensData":
        """Build from raw-id frames.

        `ratings` needs user_id, item_id, rating, timestamp; `items` needs
        item_id, title and may carry release_date and one column per genre.
        Absent genre columns / NaN flags are treated as 0.
        """
        items = items.drop_duplicates(subset="item_id").reset_index(drop=True)

        i_enc = LabelEncoder().fit(items["item_id"])
        known = ratings["item_id"].isin(i_enc.classes_)
        if not known.all():
            log.warning("Dropping %d interactions with unknown item ids", int((~known).sum()))
            ratings = ratings[known]

        u_enc = LabelEncoder().fit(ratings["user_id"])
        inter = pd.DataFrame({
            "user_idx": u_enc.transform(ratings["user_id"]).astype(np.int64),
            "item_idx": i_enc.transform(ratings["item_id"]).astype(np.int64),
            "rating": ratings["rating"].to_numpy(),
            "timestamp": ratings["timestamp"].to_numpy(),
        })

        order = i_enc.transform(items["item_id"])
        items = items.assign(_idx=order).sort_values("_idx").reset_index(drop=True)

        genres = np.zeros((len(items), len(genre_names)), dtype=np.float32)
        for g, name in enumerate(genre_names):
            if name in items.columns:
                genres[:, g] = items[name].fillna(0).astype(np.float32).to_numpy()

        dates = items["release_date"] if "release_date" in items.columns else [None] * len(items)
        years = [_parse_year(d, t) for d, t in zip(dates, items["title"])]

        data = cls(
            interactions=inter,
            item_genres=genres,
            item_titles=items["title"].astype(str).tolist(),
            item_years=years,
            user_encoder=u_enc,
            item_encoder=i_enc,
            genre_names=tuple(genre_names),
        )
        log.info("MovieLens data | %d users | %d items | %d interactions",
                 data.num_users, data.num_items, len(data))
        return data


# ---------------------------------------------------------------------------
# Raw file readers
# ---------------------------------------------------------------------------


def load_items(path: Path) -> pd.DataFrame:
    log.info("Loading items from %s", path)
    return pd.read_csv(path, sep="|", header=None, names=ITEM_COLUMNS,
                       encoding="latin-1", engine="python")


def load_ratings(path: Path, max_interactions: int | None = None) -> pd.DataFrame:
    log.info("Loading ratings from %s", path)
    return pd.read_csv(path, sep="\t", header=None, names=RATING_COLUMNS,
                       nrows=max_interactions)


def load_movielens(data_dir: Path, max_interactions: int | None = None) -> MovieLensData:
    data_dir = Path(data_dir)
    item_path, data_path = data_dir / "u.item", data_dir / "u.data"
    for p in (item_path, data_path):
        if not p.exists():
            raise FileNotFoundError(f"MovieLens file not found at {p}")
    items = load_items(item_path)
    ratings = load_ratings(data_path, max_interactions)
    return MovieLensData.from_frames(ratings, items)


# ---------------------------------------------------------------------------
# Contract checks
# ---------------------------------------------------------------------------


def validate_contract(data: MovieLensData) -> None:
    """Raise DataContractViolation if indices or genre vectors are malformed."""
    inter = data.interactions
    for col, n in (("user_idx", data.num_users), ("item_idx", data.num_items)):
        if col not in inter.columns:
            raise DataContractViolation(f"interactions missing column {col!r}")
        vals = inter[col].to_numpy()
        if len(vals) and (vals.min() < 0 or vals.max() >= n):
            raise DataContractViolation(
                f"{col} outside [0, {n}): min={vals.min()}, max={vals.max()}")

    if data.item_genres.ndim != 2 or data.item_genres.shape[0] != data.num_items:
        raise DataContractViolation(
            f"item_genres shape {data.item_genres.shape} does not match {data.num_items} items")
    if data.item_genres.shape[1] != len(data.genre_names):
        raise DataContractViolation(
            f"genre vectors have length {data.item_genres.shape[1]}, "
            f"vocabulary has {len(data.genre_names)}")
    if not np.isfinite(data.item_genres).all():
        raise DataContractViolation("item_genres contains non-finite values")
