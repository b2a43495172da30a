"""
Training and evaluation drivers with PyTorch Lightning.

- Next-token LM or synthetic recall objective (config.training.task)
- W&B logging
- Mixed precision training
- Gradient accumulation
- Checkpointing
"""

import logging
from dataclasses import asdict
from typing import Dict, Optional

import pytorch_lightning as pl
from pytorch_lightning.callbacks import LearningRateMonitor, ModelCheckpoint
from pytorch_lightning.loggers import WandbLogger

from shortswa.callbacks import GradientFlowMonitor, LocalMixerMonitor
from shortswa.config import ExperimentConfig, load_config
from shortswa.data import build_data_module
from shortswa.lightning_module import ShortSWALightningModule
from shortswa.utils import count_parameters, set_seed

log = logging.getLogger(__name__)

PRECISIONS = ["16-mixed", "bf16-mixed", "32", "32-true", "bf16-true"]


def _precision(cfg: ExperimentConfig) -> str:
    # Map to PL precision strings
    if cfg.training.mixed_precision in PRECISIONS:
        return cfg.training.mixed_precision
    return "16-mixed"


def _accelerator(cfg: ExperimentConfig) -> str:
    return cfg.device if cfg.device in ["cuda", "cpu", "mps"] else "auto"


def build_trainer(cfg: ExperimentConfig, logger=None) -> pl.Trainer:
    callbacks = [
        LearningRateMonitor(logging_interval="step"),
        ModelCheckpoint(
            dirpath=f"checkpoints/{cfg.experiment_name}",
            filename="checkpoint-{step}",
            save_top_k=3,
            monitor="val/loss",
            mode="min",
            save_last=True,
            every_n_train_steps=cfg.training.save_every,
        ),
        LocalMixerMonitor(log_every_n_steps=cfg.training.eval_every),
        GradientFlowMonitor(log_every_n_steps=cfg.training.eval_every),
    ]

    return pl.Trainer(
        max_steps=cfg.training.num_steps,
        accumulate_grad_batches=cfg.training.grad_accum_steps,
        gradient_clip_val=cfg.training.max_grad_norm,
        precision=_precision(cfg),
        logger=logger if logger is not None else False,
        callbacks=callbacks,
        accelerator=_accelerator(cfg),
        devices=1,
        log_every_n_steps=cfg.training.log_every,
        val_check_interval=cfg.training.eval_every,
    )


def train(config_path: str, resume_from: Optional[str] = None, wandb_offline: bool = False):
    """Train a ShortSWALM from a YAML config."""
    print(f"Loading config from {config_path}...")
    cfg = load_config(config_path)
    if wandb_offline:
        cfg.wandb.offline = True

    # Set seed for reproducibility
    set_seed(cfg.seed)
    pl.seed_everything(cfg.seed)

    print("Initializing Data Module...")
    data_module = build_data_module(cfg)

    print("Initializing Lightning Module...")
    model = ShortSWALightningModule(cfg)
    counts = count_parameters(model.model)
    log.info(
        "Parameters: %.2fM total, %.2fM local mixer, %.2fM global mixer",
        counts["total"] / 1e6,
        counts["local_mixer"] / 1e6,
        counts["global_mixer"] / 1e6,
    )

    wandb_logger = WandbLogger(
        project=cfg.wandb.project,
        entity=cfg.wandb.entity,
        name=cfg.wandb.name or cfg.experiment_name,
        tags=cfg.wandb.tags,
        config=asdict(cfg),
        offline=cfg.wandb.offline,
        log_model=cfg.wandb.log_model,
    )

    print("Initializing Trainer...")
    trainer = build_trainer(cfg, logger=wandb_logger)

    print("Starting training...")
    trainer.fit(model, datamodule=data_module, ckpt_path=resume_from)
    return trainer


def evaluate(config_path: str, checkpoint: Optional[str] = None) -> Dict[str, float]:
    """Run validation once and return the logged metrics."""
    cfg = load_config(config_path)
    set_seed(cfg.seed)

    data_module = build_data_module(cfg)
    if checkpoint is not None:
        model = ShortSWALightningModule.load_from_checkpoint(checkpoint, config=cfg)
    else:
        log.warning("No checkpoint given, evaluating a randomly initialised model")
        model = ShortSWALightningModule(cfg)

    trainer = pl.Trainer(
        precision=_precision(cfg),
        accelerator=_accelerator(cfg),
        devices=1,
        logger=False,
    )
    results = trainer.validate(model, datamodule=data_module)
    return {k: float(v) for k, v in results[0].items()}
