"""Train baseline and/or deep two-tower models on MovieLens-100K and print
a side-by-side top-10 for a sample user.

    python -m tower_rank.cli.train_two_tower --data_dir data/ml-100k --models baseline deep
"""
from __future__ import annotations

import logging
import random
from argparse import ArgumentParser
from dataclasses import replace

import mlflow

from tower_rank.config.paths import DATA_DIR, MLFLOW_EXPERIMENT
from tower_rank.config.train_config import LOSS_TYPES, TrainConfig
from tower_rank.data.movielens import load_movielens
from tower_rank.engine.callbacks import CancelAfter, MlflowCallback
from tower_rank.engine.registry import MODEL_NAMES
from tower_rank.recommender import TwoTowerRecommender

log = logging.getLogger(__name__)

MIN_RATINGS = 20


def build_parser() -> ArgumentParser:
    ap = ArgumentParser(description="Train two-tower recommenders on MovieLens-100K")
    ap.add_argument("--data_dir", default=str(DATA_DIR))
    ap.add_argument("--max_interactions", type=int, default=None)
    ap.add_argument("--models", nargs="+", choices=MODEL_NAMES, default=list(MODEL_NAMES))
    ap.add_argument("--emb_dim", type=int, default=32)
    ap.add_argument("--hidden_dim", type=int, default=64)
    ap.add_argument("--batch", type=int, default=512)
    ap.add_argument("--epochs", type=int, default=20)
    ap.add_argument("--lr", type=float, default=1e-3)
    ap.add_argument("--loss", choices=LOSS_TYPES, default="softmax")
    ap.add_argument("--temperature", type=float, default=1.0)
    ap.add_argument("--seed", type=int, default=None)
    ap.add_argument("--max_batches", type=int, default=None,
                    help="cancel each run after this many batches")
    ap.add_argument("--user", type=int, default=None,
                    help="user index to recommend for (default: random user with 20+ ratings)")
    ap.add_argument("--top_k", type=int, default=10)
    ap.add_argument("--no_mlflow", action="store_true")
    return ap


def pick_user(rec: TwoTowerRecommender, seed: int | None) -> int | None:
    eligible = [u for u, items in rec.data.rated_items().items() if len(items) >= MIN_RATINGS]
    if not eligible:
        return None
    return random.Random(seed).choice(sorted(eligible))


def print_comparison(rec: TwoTowerRecommender, user: int, results: dict, k: int) -> None:
    data = rec.data
    print(f"\nUser {data.user_id(user)} (index {user})")
    print(f"-- Top-{k} rated (historical)")
    for row in data.top_rated(user, k).itertuples():
        print(f"   {row.rating:>4}  {row.title}")
    for name, recs in results.items():
        print(f"-- Top-{k} recommended ({name})")
        for r in recs:
            print(f"   {r.score:.4f}  {data.item_titles[r.item]}")


def run(args) -> dict:
    data = load_movielens(args.data_dir, args.max_interactions)
    rec = TwoTowerRecommender(data)
    base = TrainConfig(
        embedding_dim=args.emb_dim,
        hidden_dim=args.hidden_dim,
        batch_size=args.batch,
        epochs=args.epochs,
        learning_rate=args.lr,
        loss_type=args.loss,
        temperature=args.temperature,
        seed=args.seed,
    )

    user = args.user if args.user is not None else pick_user(rec, args.seed)
    results, histories = {}, {}
    for name in args.models:
        cfg = replace(base, use_deep_tower=(name == "deep"))
        callbacks = [] if args.no_mlflow else [MlflowCallback(prefix=f"{name}_")]
        if args.max_batches:
            callbacks.append(CancelAfter(rec, args.max_batches))
        if not args.no_mlflow:
            mlflow.log_params({f"{name}_{k}": v for k, v in cfg.to_params().items()})
        histories[name] = rec.train(cfg, callbacks=callbacks)
        if user is not None:
            results[name] = rec.recommend(user, k=args.top_k)

    if user is None:
        log.warning("No user with at least %d ratings; skipping recommendations", MIN_RATINGS)
    else:
        print_comparison(rec, user, results, args.top_k)
    return histories


def main(argv=None) -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
    args = build_parser().parse_args(argv)
    if args.no_mlflow:
        run(args)
        return
    mlflow.set_experiment(MLFLOW_EXPERIMENT)
    with mlflow.start_run():
        run(args)


if __name__ == "__main__":
    main()
