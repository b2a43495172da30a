from .lm import LMDataModule
from .recall import RecallDataModule

__all__ = ["LMDataModule", "RecallDataModule"]


def build_data_module(config):
    """Data module for config.training.task ("lm" or "recall")."""
    task = config.training.task
    if task == "lm":
        return LMDataModule(config)
    if task == "recall":
        return RecallDataModule(config)
    raise ValueError(f"Unknown task '{task}', expected 'lm' or 'recall'")
