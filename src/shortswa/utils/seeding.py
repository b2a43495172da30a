"""
Miscellaneous utilities: seeding and parameter counts.
"""

import random
from typing import Dict

import numpy as np
import torch


def set_seed(seed: int) -> None:
    random.seed(seed)
    np.random.seed(seed)
    torch.manual_seed(seed)
    torch.cuda.manual_seed_all(seed)


def count_parameters(model: torch.nn.Module) -> Dict[str, int]:
    """Trainable and total parameter counts, plus a split by mixer type."""
    counts = {
        "trainable": sum(p.numel() for p in model.parameters() if p.requires_grad),
        "total": sum(p.numel() for p in model.parameters()),
        "local_mixer": 0,
        "global_mixer": 0,
    }
    for name, param in model.named_parameters():
        if ".local_mixer." in name:
            counts["local_mixer"] += param.numel()
        elif ".global_mixer." in name:
            counts["global_mixer"] += param.numel()
    return counts
