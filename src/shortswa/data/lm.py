"""
Language-modeling data pipeline.

- loads raw text from HuggingFace datasets (streaming),
- tokenizes with a HuggingFace tokenizer,
- concatenates documents and packs them into fixed-length blocks,
- emits (input_ids, labels) with labels shifted by one position.
"""

import logging
from typing import Dict, Iterable, Iterator, List

import torch
from datasets import load_dataset
from torch.utils.data import IterableDataset
from torch.utils.data.dataloader import DataLoader
from transformers import AutoTokenizer, PreTrainedTokenizer

from .basic import BasicDataModule

log = logging.getLogger(__name__)


def build_tokenizer(name_or_path: str) -> PreTrainedTokenizer:
    """Load a HuggingFace tokenizer."""
    tok = AutoTokenizer.from_pretrained(name_or_path)
    if tok.pad_token is None:
        tok.add_special_tokens({"pad_token": "<pad>"})
    return tok


def pack_token_stream(
    token_lists: Iterable[List[int]],
    block_size: int,
    eos_token_id: int = None,
) -> Iterator[Dict[str, torch.Tensor]]:
    """
    Concatenate tokenized documents and cut them into next-token examples.

    Each example spans block_size + 1 tokens: input_ids = block[:-1] and
    labels = block[1:]. A trailing remainder shorter than that is dropped.
    """
    buffer: List[int] = []
    span = block_size + 1
    for ids in token_lists:
        buffer.extend(ids)
        if eos_token_id is not None:
            buffer.append(eos_token_id)
        while len(buffer) >= span:
            block = torch.tensor(buffer[:span], dtype=torch.long)
            # the last token of one block starts the next
            buffer = buffer[block_size:]
            yield {"input_ids": block[:-1], "labels": block[1:]}


class PackedTextDataset(IterableDataset):
    """Streams packed blocks from an iterable of raw text rows."""

    def __init__(self, rows, tokenizer, text_column: str, block_size: int):
        super().__init__()
        self.rows = rows
        self.tokenizer = tokenizer
        self.text_column = text_column
        self.block_size = block_size

    def __iter__(self):
        token_lists = (
            self.tokenizer(row[self.text_column], add_special_tokens=False)["input_ids"]
            for row in self.rows
        )
        yield from pack_token_stream(
            token_lists, self.block_size, eos_token_id=self.tokenizer.eos_token_id
        )


class LMDataModule(BasicDataModule):
    _name_ = "lm"

    def setup(self, stage: str) -> None:
        data_cfg = self.config.data
        if data_cfg.tokenizer_name_or_path is None:
            raise ValueError("The lm task requires data.tokenizer_name_or_path")
        self.tokenizer = build_tokenizer(data_cfg.tokenizer_name_or_path)
        if len(self.tokenizer) > self.config.model.vocab_size:
            raise ValueError(
                f"Tokenizer has {len(self.tokenizer)} tokens but model.vocab_size is "
                f"{self.config.model.vocab_size}"
            )

        if data_cfg.sources:
            corpus_list = []
            for source_name in data_cfg.sources:
                log.info("Loading dataset: %s", source_name)
                corpus_list.append(load_dataset(source_name, split="train", streaming=True))
            probs = data_cfg.sampling_probs or [1.0 / len(corpus_list)] * len(corpus_list)
            raw = self._concatenate_datasets(corpus_list, probabilities=probs)
        else:
            dataset_name = data_cfg.dataset_name or "roneneldan/TinyStories"
            log.info("Loading single dataset: %s", dataset_name)
            raw = load_dataset(dataset_name, split="train", streaming=True)

        raw = raw.shuffle(seed=self.config.seed, buffer_size=data_cfg.shuffle_buffer_size)
        # Hold out the first rows of the shuffled stream for validation
        val_rows = raw.take(data_cfg.shuffle_buffer_size // 10 or 1)
        train_rows = raw.skip(data_cfg.shuffle_buffer_size // 10 or 1)

        block_size = data_cfg.max_seq_len
        self.data_train = PackedTextDataset(
            train_rows, self.tokenizer, data_cfg.text_column, block_size
        )
        self.data_val = PackedTextDataset(
            val_rows, self.tokenizer, data_cfg.text_column, block_size
        )

    def train_dataloader(self) -> DataLoader:
        return DataLoader(
            self.data_train,
            batch_size=self.config.training.batch_size,
            num_workers=self.config.data.num_workers,
        )

    def val_dataloader(self) -> DataLoader:
        return DataLoader(
            self.data_val,
            batch_size=self.config.training.batch_size,
            num_workers=self.config.data.num_workers,
        )
