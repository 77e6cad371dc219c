"""Training hyper-parameters for the two-tower recommenders."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field

import torch

LOSS_TYPES = ("softmax", "bpr")


def _default_device() -> str:
    return "cuda" if torch.cuda.is_available() else "cpu"


@dataclass
class TrainConfig:
    embedding_dim: int = 32
    hidden_dim: int = 64
    batch_size: int = 512
    epochs: int = 20
    learning_rate: float = 1e-3
    loss_type: str = "softmax"
    use_deep_tower: bool = True
    # logits are cosine / temperature; 1.0 keeps the raw cosine scale
    temperature: float = 1.0
    init_std: float = 0.05
    max_negative_retries: int = 100
    score_batch_size: int = 512
    seed: int | None = None
    device: str = field(default_factory=_default_device)

    def validate(self) -> "TrainConfig":
        for name in ("embedding_dim", "hidden_dim", "batch_size", "score_batch_size",
                     "max_negative_retries"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")
        if self.epochs < 0:
            raise ValueError(f"epochs must be >= 0, got {self.epochs}")
        if self.learning_rate <= 0:
            raise ValueError(f"learning_rate must be positive, got {self.learning_rate}")
        if self.temperature <= 0:
            raise ValueError(f"temperature must be positive, got {self.temperature}")
        if self.init_std <= 0:
            raise ValueError(f"init_std must be positive, got {self.init_std}")
        if self.loss_type not in LOSS_TYPES:
            raise ValueError(f"Unknown loss type {self.loss_type!r}; expected one of {LOSS_TYPES}")
        return self

    @property
    def model_name(self) -> str:
        return "deep" if self.use_deep_tower else "baseline"

    def to_params(self) -> dict[str, str]:
        """Flat string view for experiment trackers."""
        return {k: str(v) for k, v in asdict(self).items()}
