"""
Test suite for the data pipelines.

Covers LM token packing and the synthetic associative recall task.
"""

from types import SimpleNamespace

import pytest
import torch

from shortswa.data.lm import pack_token_stream
from shortswa.data.recall import (
    PAD_TOKEN_ID,
    SEP_TOKEN_ID,
    RecallDataModule,
    RecallDataset,
    make_recall_example,
    recall_vocab_split,
)


# ----------------------------------------------------------------------------
# LM packing
# ----------------------------------------------------------------------------


def test_pack_labels_are_shifted_inputs():
    docs = [list(range(10, 20))]
    blocks = list(pack_token_stream(docs, block_size=4))

    assert len(blocks) == 2
    assert blocks[0]["input_ids"].tolist() == [10, 11, 12, 13]
    assert blocks[0]["labels"].tolist() == [11, 12, 13, 14]
    # The next block starts where the previous labels ended
    assert blocks[1]["input_ids"].tolist() == [14, 15, 16, 17]


def test_pack_concatenates_documents_with_eos():
    docs = [[5, 6], [7, 8], [9]]
    blocks = list(pack_token_stream(docs, block_size=3, eos_token_id=0))

    stream = [5, 6, 0, 7, 8, 0, 9, 0]
    assert blocks[0]["input_ids"].tolist() == stream[0:3]
    assert blocks[0]["labels"].tolist() == stream[1:4]
    assert blocks[1]["input_ids"].tolist() == stream[3:6]
    assert blocks[1]["labels"].tolist() == stream[4:7]
    assert len(blocks) == 2


def test_pack_drops_short_remainder():
    assert list(pack_token_stream([[1, 2, 3]], block_size=4)) == []


# ----------------------------------------------------------------------------
# Associative recall
# ----------------------------------------------------------------------------


def test_vocab_split_is_disjoint():
    keys, values = recall_vocab_split(20)

    assert keys.start == 2
    assert len(keys) == len(values) == 9
    assert not set(keys) & set(values)
    with pytest.raises(ValueError):
        recall_vocab_split(3)


def test_recall_example_layout():
    generator = torch.Generator().manual_seed(0)
    example = make_recall_example(
        num_kv_pairs=3, num_queries=2, vocab_size=40, seq_len=16, generator=generator
    )
    input_ids, labels = example["input_ids"], example["labels"]
    keys, values = recall_vocab_split(40)

    assert input_ids.shape == labels.shape == (16,)
    assert all(input_ids[i].item() in keys for i in (0, 2, 4))
    assert all(input_ids[i].item() in values for i in (1, 3, 5))
    assert input_ids[6].item() == SEP_TOKEN_ID
    # 2 * 3 + 1 + 2 * 2 - 1 = 10 real tokens, the rest is padding
    assert (input_ids[10:] == PAD_TOKEN_ID).all()


def test_recall_labels_answer_queries():
    generator = torch.Generator().manual_seed(1)
    example = make_recall_example(
        num_kv_pairs=4, num_queries=3, vocab_size=50, seq_len=20, generator=generator
    )
    input_ids, labels = example["input_ids"], example["labels"]
    bindings = {input_ids[i].item(): input_ids[i + 1].item() for i in range(0, 8, 2)}

    supervised = (labels != -100).nonzero(as_tuple=True)[0].tolist()
    assert supervised == [9, 11, 13]
    for pos in supervised:
        assert input_ids[pos].item() in bindings
        assert labels[pos].item() == bindings[input_ids[pos].item()]


def test_recall_example_rejects_impossible_settings():
    generator = torch.Generator().manual_seed(0)
    with pytest.raises(ValueError):
        make_recall_example(10, 2, vocab_size=12, seq_len=64, generator=generator)
    with pytest.raises(ValueError):
        make_recall_example(4, 4, vocab_size=50, seq_len=8, generator=generator)


def test_recall_dataset_is_deterministic():
    dataset = RecallDataset(5, num_kv_pairs=2, num_queries=2, vocab_size=30, seq_len=12, seed=7)

    assert len(dataset) == 5
    assert torch.equal(dataset[3]["input_ids"], dataset[3]["input_ids"])
    assert not torch.equal(dataset[0]["input_ids"], dataset[1]["input_ids"])
    with pytest.raises(IndexError):
        dataset[5]


def test_recall_data_module_splits():
    config = SimpleNamespace(
        seed=0,
        model=SimpleNamespace(vocab_size=64),
        training=SimpleNamespace(batch_size=4),
        data=SimpleNamespace(
            num_workers=0,
            max_seq_len=24,
            num_kv_pairs=4,
            num_queries=4,
            num_train_examples=12,
            num_val_examples=6,
        ),
    )
    dm = RecallDataModule(config)
    dm.setup("fit")

    assert len(dm.data_train) == 12
    assert len(dm.data_val) == 6
    # Validation seeds start after the training seeds
    assert dm.data_val.seed == dm.data_train.seed + 12

    batch = next(iter(dm.train_dataloader()))
    assert batch["input_ids"].shape == (4, 24)
    assert batch["labels"].shape == (4, 24)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
