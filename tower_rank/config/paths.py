"""Centralised project paths & defaults."""

import os
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[2]
DATA_DIR = Path(os.environ.get("TOWER_RANK_DATA_DIR", PROJECT_ROOT / "data" / "ml-100k"))
MLFLOW_EXPERIMENT = "tower_rank_experiments"
