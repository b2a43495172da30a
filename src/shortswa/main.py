"""
CLI entrypoints wired from pyproject's [project.scripts].

Usage:
  shortswa-train --config configs/recall_shortswa.yaml
  shortswa-train --config configs/lm_small.yaml --resume-from checkpoints/lm_small/last.ckpt
  shortswa-train --config configs/lm_small.yaml --wandb-offline
  shortswa-eval --config configs/recall_shortswa.yaml --checkpoint checkpoints/recall_shortswa/last.ckpt
"""

import logging

import click

from .train import evaluate, train


@click.command()
@click.option(
    "--config",
    "-c",
    type=str,
    default="configs/recall_shortswa.yaml",
    help="Path to YAML config file",
)
@click.option(
    "--resume-from",
    type=str,
    default=None,
    help="Path to checkpoint to resume from",
)
@click.option(
    "--wandb-offline",
    is_flag=True,
    help="Run wandb in offline mode",
)
def cli_train(config: str, resume_from: str = None, wandb_offline: bool = False):
    """
    Train a ShortSWA language model with W&B logging.

    Example:
        shortswa-train --config configs/recall_shortswa.yaml
        shortswa-train --config configs/recall_shortconv.yaml --wandb-offline
    """
    logging.basicConfig(level=logging.INFO)
    train(config, resume_from=resume_from, wandb_offline=wandb_offline)


@click.command()
@click.option("--config", "-c", type=str, required=True)
@click.option("--checkpoint", type=str, default=None, help="Lightning checkpoint to evaluate")
def cli_eval(config: str, checkpoint: str = None):
    """Validate a checkpoint and print its metrics."""
    logging.basicConfig(level=logging.INFO)
    metrics = evaluate(config, checkpoint=checkpoint)
    for name, value in sorted(metrics.items()):
        click.echo(f"{name}: {value:.4f}")
