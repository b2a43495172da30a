"""
Test suite for training integration components.

Tests loss computation, recall accuracy, config loading, optimizer setup,
scheduler and data module selection.
"""

import copy
import os
import tempfile
from unittest.mock import MagicMock

import pytest
import torch
import yaml

from shortswa.config import ExperimentConfig, TrainingConfig, load_config
from shortswa.data import LMDataModule, RecallDataModule, build_data_module
from shortswa.lightning_module import ShortSWALightningModule
from shortswa.training import compute_lm_loss, recall_accuracy

BASE_CONFIG = {
    "experiment_name": "test_experiment",
    "seed": 42,
    "device": "cpu",
    "model": {
        "vocab_size": 64,
        "d_model": 32,
        "n_heads": 4,
        "num_layers": 2,
        "d_ff": 64,
        "dropout": 0.0,
        "max_seq_len": 32,
        "local_mixer": {
            "kind": "shortswa",
            "alignment": "chunk",
            "backend": "sdpa",
        },
        "global_mixer": {
            "kind": "linear_attention",
            "chunk_size": 8,
            "d_state": 8,
            "expand": 2,
        },
    },
    "training": {
        "task": "recall",
        "batch_size": 4,
        "grad_accum_steps": 1,
        "num_steps": 1000,
        "warmup_steps": 100,
        "learning_rate": 0.0003,
        "weight_decay": 0.1,
        "max_grad_norm": 1.0,
        "log_every": 10,
        "save_every": 500,
        "eval_every": 100,
        "mixed_precision": "32-true",
    },
    "data": {
        "num_workers": 0,
        "max_seq_len": 32,
        "num_kv_pairs": 4,
        "num_queries": 4,
        "num_train_examples": 16,
        "num_val_examples": 8,
    },
    "wandb": {
        "project": "test_project",
        "tags": ["test"],
        "offline": True,
    },
}


def _load(config_dict):
    with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
        yaml.dump(config_dict, f)
        temp_path = f.name
    try:
        return load_config(temp_path)
    finally:
        os.unlink(temp_path)


def _config(**section_overrides):
    config_dict = copy.deepcopy(BASE_CONFIG)
    for section, values in section_overrides.items():
        config_dict[section].update(values)
    return config_dict


def test_compute_lm_loss_basic():
    """Test basic next-token loss computation."""
    logits = torch.randn(2, 10, 100)
    labels = torch.randint(0, 100, (2, 10))

    loss = compute_lm_loss(logits, labels)

    assert loss.dim() == 0, "Loss should be scalar"
    assert loss.item() > 0, "Loss should be positive"
    assert torch.isfinite(loss)


def test_compute_lm_loss_does_not_shift():
    """labels[t] is scored against logits[t]."""
    labels = torch.tensor([[3, 7, 1]])
    logits = torch.full((1, 3, 10), -1e4)
    logits[0, torch.arange(3), labels[0]] = 1e4

    loss = compute_lm_loss(logits, labels)

    assert loss.item() < 1e-3


def test_compute_lm_loss_with_ignore_index():
    """Test that ignore_index=-100 is properly ignored."""
    logits = torch.randn(1, 3, 100)
    labels = torch.tensor([[10, -100, 20]])

    loss = compute_lm_loss(logits, labels)
    expected = torch.nn.functional.cross_entropy(logits[0, [0, 2]], labels[0, [0, 2]])

    assert torch.allclose(loss, expected, atol=1e-6)


def test_compute_lm_loss_gradient_flow():
    logits = torch.randn(2, 10, 100, requires_grad=True)
    labels = torch.randint(0, 100, (2, 10))

    compute_lm_loss(logits, labels).backward()

    assert logits.grad is not None
    assert logits.grad.abs().sum() > 0


def test_recall_accuracy_counts_supervised_positions_only():
    logits = torch.zeros(1, 4, 5)
    logits[0, 0, 2] = 1.0  # correct
    logits[0, 1, 3] = 1.0  # wrong
    logits[0, 2, 4] = 1.0  # ignored
    labels = torch.tensor([[2, 1, -100, -100]])

    acc = recall_accuracy(logits, labels)

    assert acc.item() == pytest.approx(0.5)


def test_recall_accuracy_nothing_supervised():
    acc = recall_accuracy(torch.randn(2, 3, 5), torch.full((2, 3), -100))
    assert acc.item() == 0.0


def test_config_loading_from_yaml():
    config = _load(_config())

    assert isinstance(config, ExperimentConfig)
    assert config.experiment_name == "test_experiment"
    assert config.seed == 42
    assert config.model.vocab_size == 64
    assert config.training.batch_size == 4
    assert config.wandb.project == "test_project"
    assert config.wandb.offline is True


def test_config_nested_mixer_parsing():
    config = _load(_config())

    assert config.model.local_mixer.kind == "shortswa"
    assert config.model.local_mixer.alignment == "chunk"
    assert config.model.local_mixer.window_size is None
    assert config.model.global_mixer.chunk_size == 8
    assert config.model.global_mixer.d_state == 8


def test_config_mixer_defaults():
    """Omitted or null mixer blocks fall back to the defaults."""
    config_dict = _config()
    del config_dict["model"]["global_mixer"]
    config_dict["model"]["local_mixer"] = None
    config_dict["model"]["layer_local_mixer"] = ["shortconv"]

    config = _load(config_dict)

    assert config.model.local_mixer.kind == "shortswa"
    assert config.model.local_mixer.alignment == "sliding"
    assert config.model.global_mixer.kind == "linear_attention"
    assert config.model.global_mixer.chunk_size == 64
    assert config.model.layer_local_mixer == ["shortconv"]


def test_config_without_wandb_section():
    config_dict = _config()
    del config_dict["wandb"]

    config = _load(config_dict)

    assert config.wandb.project == "shortswa"


def test_config_float_conversion():
    """learning_rate and weight_decay written as strings become floats."""
    config = _load(_config(training={"learning_rate": "1e-4", "weight_decay": "0.01"}))

    assert isinstance(config.training.learning_rate, float)
    assert isinstance(config.training.weight_decay, float)
    assert abs(config.training.learning_rate - 0.0001) < 1e-9
    assert abs(config.training.weight_decay - 0.01) < 1e-9


@pytest.mark.parametrize(
    "local_mixer",
    [
        {"kind": "hyena"},
        {"kind": "shortswa", "causal": False},
        {"kind": "shortswa", "window_size": 0},
        {"kind": "shortconv", "kernel_size": 0},
        {"kind": "shortswa", "n_heads": 3},
        {"kind": "shortswa", "backend": "triton"},
        {"kind": "shortswa", "alignment": "diagonal"},
    ],
)
def test_invalid_config_raises(local_mixer):
    config_dict = _config()
    config_dict["model"]["local_mixer"] = local_mixer

    with pytest.raises(ValueError):
        _load(config_dict)


def test_training_config_fields():
    training_cfg = TrainingConfig(**BASE_CONFIG["training"])
    assert training_cfg.task == "recall"
    assert training_cfg.mixed_precision == "32-true"


def test_configure_optimizers():
    config = _load(_config())
    module = ShortSWALightningModule(config)

    opt_config = module.configure_optimizers()
    optimizer = opt_config["optimizer"]
    scheduler = opt_config["lr_scheduler"]["scheduler"]

    assert isinstance(optimizer, torch.optim.AdamW)
    assert optimizer.defaults["lr"] == pytest.approx(0.0003)
    assert optimizer.defaults["weight_decay"] == pytest.approx(0.1)
    assert optimizer.defaults["betas"] == (0.9, 0.95)
    assert opt_config["lr_scheduler"]["interval"] == "step"

    # Linear warmup from zero
    assert scheduler.get_last_lr()[0] == pytest.approx(0.0)
    for _ in range(50):
        optimizer.step()
        scheduler.step()
    assert scheduler.get_last_lr()[0] == pytest.approx(0.00015)


def test_validation_step_logs_recall_metrics():
    config = _load(_config())
    module = ShortSWALightningModule(config)
    module.log = MagicMock()

    dm = build_data_module(config)
    dm.setup("fit")
    batch = next(iter(dm.val_dataloader()))

    loss = module.validation_step(batch, 0)

    assert torch.isfinite(loss)
    logged = [call.args[0] for call in module.log.call_args_list]
    assert logged == ["val/loss", "val/ppl", "val/recall_acc"]


def test_validation_step_lm_task_skips_recall_metric():
    config = _load(_config(training={"task": "lm"}))
    module = ShortSWALightningModule(config)
    module.log = MagicMock()

    batch = {
        "input_ids": torch.randint(0, 64, (2, 16)),
        "labels": torch.randint(0, 64, (2, 16)),
    }
    module.validation_step(batch, 0)

    logged = [call.args[0] for call in module.log.call_args_list]
    assert logged == ["val/loss", "val/ppl"]


def test_build_data_module_selects_task():
    assert isinstance(build_data_module(_load(_config())), RecallDataModule)
    assert isinstance(build_data_module(_load(_config(training={"task": "lm"}))), LMDataModule)
    with pytest.raises(ValueError):
        build_data_module(_load(_config(training={"task": "mlm"})))


def test_loss_perfect_prediction():
    """Loss approaches zero when the correct token dominates."""
    labels = torch.randint(0, 50, (2, 8))
    logits = torch.full((2, 8, 50), -100.0)
    logits.scatter_(-1, labels.unsqueeze(-1), 100.0)

    assert compute_lm_loss(logits, labels).item() < 1e-4


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
