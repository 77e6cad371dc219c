"""Simple factory so CLI scripts stay tiny."""
import torch

from tower_rank.config.train_config import TrainConfig
from tower_rank.models.two_tower import TwoTowerModel

MODEL_NAMES = ("baseline", "deep")


def create_model(name: str, **kwargs) -> TwoTowerModel:
    name = name.lower()
    if name == "baseline":
        return TwoTowerModel(deep=False, **kwargs)
    if name == "deep":
        return TwoTowerModel(deep=True, **kwargs)
    raise ValueError(f"Unknown model: {name}")


def model_from_config(config: TrainConfig, num_users: int, num_items: int,
                      item_genres=None) -> TwoTowerModel:
    if config.seed is not None:
        torch.manual_seed(config.seed)
    kwargs = dict(num_users=num_users, num_items=num_items,
                  emb_dim=config.embedding_dim, init_std=config.init_std)
    if config.use_deep_tower:
        kwargs.update(hidden_dim=config.hidden_dim, item_genres=item_genres)
    return create_model(config.model_name, **kwargs)
