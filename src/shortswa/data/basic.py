import logging

import torch
from datasets import concatenate_datasets, interleave_datasets
from pytorch_lightning import LightningDataModule

log = logging.getLogger(__name__)


class BasicDataModule(LightningDataModule):
    """Shared plumbing for the shortswa data modules."""

    _name_ = "basic"

    def __init__(self, config):
        super().__init__()
        self.config = config
        self.prepared = False
        self.data_train = None
        self.data_val = None

    @property
    def multi_gpu(self) -> bool:
        return torch.distributed.is_available() and torch.distributed.is_initialized()

    def _concatenate_datasets(self, corpus_list, probabilities=None):
        if len(corpus_list) == 1:
            return corpus_list[0]
        if probabilities is not None:
            log.info(
                "Interleaving %d datasets with probs: %s", len(corpus_list), probabilities
            )
            return interleave_datasets(
                corpus_list,
                probabilities=probabilities,
                seed=self.config.seed,
                stopping_strategy="all_exhausted",
            )
        return concatenate_datasets(corpus_list)
