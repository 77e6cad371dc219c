"""PyTorch dataset of positive (user, item) pairs for Two-Tower training."""

import torch
from torch.utils.data import Dataset


class InteractionDataset(Dataset):
    """Ratings are ignored: every observed interaction is an equal positive."""

    def __init__(self, df):
        self.u = torch.tensor(df["user_idx"].values, dtype=torch.long)
        self.i = torch.tensor(df["item_idx"].values, dtype=torch.long)

    def __len__(self):
        return len(self.u)

    def __getitem__(self, idx):
        return {"user": self.u[idx], "item": self.i[idx]}
