"""
PyTorch Lightning Module for shortswa.

This module wraps ShortSWALM and handles:
- Training step (next-token loss)
- Validation step (loss, perplexity, recall accuracy)
- Optimization configuration (AdamW, Scheduler)
"""

import math

import torch.optim as optim
from pytorch_lightning import LightningModule
from transformers import get_linear_schedule_with_warmup

from shortswa.config import ExperimentConfig
from shortswa.model import ShortSWALM
from shortswa.training import compute_lm_loss, recall_accuracy


class ShortSWALightningModule(LightningModule):
    def __init__(self, config: ExperimentConfig):
        super().__init__()
        self.save_hyperparameters()
        self.config = config
        self.model = ShortSWALM(config)

    def forward(self, input_ids):
        return self.model(input_ids)

    def training_step(self, batch, batch_idx):
        # Keys: input_ids, labels (labels already shifted by the data module)
        input_ids = batch["input_ids"]
        labels = batch["labels"]

        outputs = self(input_ids)
        loss = compute_lm_loss(outputs["logits"], labels)

        # Logging with explicit batch size
        batch_size = input_ids.shape[0]
        self.log(
            "train/loss",
            loss,
            on_step=True,
            on_epoch=True,
            prog_bar=True,
            batch_size=batch_size,
        )
        self.log(
            "train/lr",
            self.lr_schedulers().get_last_lr()[0],
            on_step=True,
            prog_bar=False,
            batch_size=batch_size,
        )

        return loss

    def validation_step(self, batch, batch_idx):
        input_ids = batch["input_ids"]
        labels = batch["labels"]

        outputs = self(input_ids)
        loss = compute_lm_loss(outputs["logits"], labels)

        batch_size = input_ids.shape[0]
        self.log(
            "val/loss",
            loss,
            on_step=False,
            on_epoch=True,
            prog_bar=True,
            batch_size=batch_size,
        )
        self.log(
            "val/ppl",
            math.exp(min(loss.item(), 20.0)),
            on_step=False,
            on_epoch=True,
            batch_size=batch_size,
        )
        if self.config.training.task == "recall":
            self.log(
                "val/recall_acc",
                recall_accuracy(outputs["logits"], labels),
                on_step=False,
                on_epoch=True,
                prog_bar=True,
                batch_size=batch_size,
            )
        return loss

    def configure_optimizers(self):
        # Optimizer
        optimizer = optim.AdamW(
            self.model.parameters(),
            lr=self.config.training.learning_rate,
            weight_decay=self.config.training.weight_decay,
            betas=(0.9, 0.95),
            eps=1e-8,
        )

        # Scheduler
        scheduler = get_linear_schedule_with_warmup(
            optimizer,
            num_warmup_steps=self.config.training.warmup_steps,
            num_training_steps=self.config.training.num_steps,
        )

        # Lightning requires a specific dictionary format for schedulers that update per step
        return {
            "optimizer": optimizer,
            "lr_scheduler": {
                "scheduler": scheduler,
                "interval": "step",  # update every step
                "frequency": 1,
            },
        }
