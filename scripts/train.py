"""
Training script for ShortSWA language models with PyTorch Lightning.

Thin argparse wrapper around shortswa.train.train(); the same run is
available as the `shortswa-train` console script.
"""

import argparse
import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from shortswa.train import train


def main():
    """CLI entry point for training."""
    parser = argparse.ArgumentParser(
        description="Train a ShortSWA model (PyTorch Lightning)"
    )
    parser.add_argument(
        "--config",
        type=str,
        default="configs/recall_shortswa.yaml",
        help="Path to config YAML file",
    )
    parser.add_argument(
        "--resume-from",
        type=str,
        default=None,
        help="Path to checkpoint to resume from",
    )
    parser.add_argument(
        "--wandb-offline",
        action="store_true",
        help="Run wandb in offline mode",
    )

    args = parser.parse_args()
    train(args.config, resume_from=args.resume_from, wandb_offline=args.wandb_offline)


if __name__ == "__main__":
    main()
