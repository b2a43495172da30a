"""
Synthetic multi-query associative recall (MQAR).

Each example lists key/value pairs, a separator, then queries that repeat
earlier keys; the model must emit the value bound to each queried key:

    k1 v1 k2 v2 ... kn vn <sep> q1 a1 q2 a2 ... qm am

Only the answer positions are supervised. Recall stresses the global mixer,
while the key -> value binding inside each pair is the local pattern that
ShortConv and ShortSWA compete on.
"""

import logging
from typing import Dict, Tuple

import torch
from torch.utils.data import Dataset
from torch.utils.data.dataloader import DataLoader

from .basic import BasicDataModule

log = logging.getLogger(__name__)

PAD_TOKEN_ID = 0
SEP_TOKEN_ID = 1
NUM_SPECIAL_TOKENS = 2


def recall_vocab_split(vocab_size: int) -> Tuple[range, range]:
    """Token id ranges for keys and values; the rest of the vocab is special."""
    n = (vocab_size - NUM_SPECIAL_TOKENS) // 2
    if n < 1:
        raise ValueError(f"vocab_size {vocab_size} is too small for associative recall")
    keys = range(NUM_SPECIAL_TOKENS, NUM_SPECIAL_TOKENS + n)
    values = range(NUM_SPECIAL_TOKENS + n, NUM_SPECIAL_TOKENS + 2 * n)
    return keys, values


def make_recall_example(
    num_kv_pairs: int,
    num_queries: int,
    vocab_size: int,
    seq_len: int,
    generator: torch.Generator,
) -> Dict[str, torch.Tensor]:
    """
    Build one padded example.

    Returns:
        dict with input_ids [seq_len] and labels [seq_len] (-100 off-answer)
    """
    keys, values = recall_vocab_split(vocab_size)
    if num_kv_pairs > len(keys):
        raise ValueError(f"num_kv_pairs {num_kv_pairs} exceeds {len(keys)} distinct keys")
    total = 2 * num_kv_pairs + 1 + 2 * num_queries
    if total - 1 > seq_len:
        raise ValueError(f"Recall example needs {total - 1} positions, seq_len is {seq_len}")

    key_ids = torch.randperm(len(keys), generator=generator)[:num_kv_pairs] + keys.start
    value_ids = torch.randint(values.start, values.stop, (num_kv_pairs,), generator=generator)
    picks = torch.randint(0, num_kv_pairs, (num_queries,), generator=generator)

    context = torch.stack([key_ids, value_ids], dim=1).flatten()
    queries = torch.stack([key_ids[picks], value_ids[picks]], dim=1).flatten()
    seq = torch.cat([context, torch.tensor([SEP_TOKEN_ID]), queries])

    input_ids = torch.full((seq_len,), PAD_TOKEN_ID, dtype=torch.long)
    labels = torch.full((seq_len,), -100, dtype=torch.long)
    input_ids[: total - 1] = seq[:-1]

    # The answer to query i sits right after it; supervise the query position
    query_start = 2 * num_kv_pairs + 1
    query_positions = torch.arange(num_queries) * 2 + query_start
    labels[query_positions] = seq[query_positions + 1]

    return {"input_ids": input_ids, "labels": labels}


class RecallDataset(Dataset):
    """Deterministic MQAR examples: item i is always generated from seed + i."""

    def __init__(
        self,
        num_examples: int,
        num_kv_pairs: int,
        num_queries: int,
        vocab_size: int,
        seq_len: int,
        seed: int = 0,
    ):
        super().__init__()
        self.num_examples = num_examples
        self.num_kv_pairs = num_kv_pairs
        self.num_queries = num_queries
        self.vocab_size = vocab_size
        self.seq_len = seq_len
        self.seed = seed

    def __len__(self) -> int:
        return self.num_examples

    def __getitem__(self, idx: int) -> Dict[str, torch.Tensor]:
        if idx < 0 or idx >= self.num_examples:
            raise IndexError(idx)
        generator = torch.Generator().manual_seed(self.seed + idx)
        return make_recall_example(
            self.num_kv_pairs,
            self.num_queries,
            self.vocab_size,
            self.seq_len,
            generator,
        )


class RecallDataModule(BasicDataModule):
    _name_ = "recall"

    def setup(self, stage: str) -> None:
        data_cfg = self.config.data
        common = dict(
            num_kv_pairs=data_cfg.num_kv_pairs,
            num_queries=data_cfg.num_queries,
            vocab_size=self.config.model.vocab_size,
            seq_len=data_cfg.max_seq_len,
        )
        # Disjoint seed ranges keep train and validation examples apart
        self.data_train = RecallDataset(
            data_cfg.num_train_examples, seed=self.config.seed, **common
        )
        self.data_val = RecallDataset(
            data_cfg.num_val_examples,
            seed=self.config.seed + data_cfg.num_train_examples,
            **common,
        )
        log.info(
            "Recall task: %d kv pairs, %d queries, %d train / %d val examples",
            data_cfg.num_kv_pairs,
            data_cfg.num_queries,
            len(self.data_train),
            len(self.data_val),
        )

    def train_dataloader(self) -> DataLoader:
        sampler = (
            torch.utils.data.distributed.DistributedSampler(self.data_train, drop_last=True)
            if self.multi_gpu
            else None
        )
        return DataLoader(
            self.data_train,
            batch_size=self.config.training.batch_size,
            shuffle=sampler is None,
            num_workers=self.config.data.num_workers,
            sampler=sampler,
        )

    def val_dataloader(self) -> DataLoader:
        return DataLoader(
            self.data_val,
            batch_size=self.config.training.batch_size,
            num_workers=self.config.data.num_workers,
        )
