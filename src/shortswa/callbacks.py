"""
PyTorch Lightning callbacks for visualization and monitoring.

Includes callbacks for:
- ShortSWA window mask (logged once at fit start)
- Local attention entropy and heatmaps
- Gradient flow monitoring
"""

import matplotlib.pyplot as plt
import torch
from pytorch_lightning import Callback
from pytorch_lightning.loggers import WandbLogger

from shortswa.core.mixers import ShortSWA
from shortswa.visualization import (
    compute_attention_entropy,
    create_attention_heatmap,
    log_gradient_flow,
    plot_window_mask,
)


def _get_wandb_logger(trainer):
    """Get W&B logger if available."""
    if trainer.logger is None:
        return None

    if isinstance(trainer.logger, WandbLogger):
        return trainer.logger

    # Check if it's a list of loggers
    if hasattr(trainer, "loggers"):
        for logger in trainer.loggers:
            if isinstance(logger, WandbLogger):
                return logger

    return None


def _short_swa_layers(model):
    """(layer_idx, ShortSWA) for every block using ShortSWA as its local mixer."""
    return [
        (i, layer.local_mixer)
        for i, layer in enumerate(model.layers)
        if isinstance(layer.local_mixer, ShortSWA)
    ]


class LocalMixerMonitor(Callback):
    """
    Logs how the ShortSWA local mixers use their window.

    Every log_every_n_steps the current batch is replayed without gradients,
    the input of each ShortSWA mixer is captured with a forward pre-hook,
    and the window attention entropy per layer is logged. A heatmap of the
    first layer goes to W&B when a WandbLogger is attached.
    """

    def __init__(
        self,
        log_every_n_steps: int = 1000,
        num_samples: int = 2,
        max_tokens_heatmap: int = 128,
    ):
        super().__init__()
        self.log_every_n_steps = log_every_n_steps
        self.num_samples = num_samples
        self.max_tokens_heatmap = max_tokens_heatmap

    def on_fit_start(self, trainer, pl_module):
        wandb_logger = _get_wandb_logger(trainer)
        layers = _short_swa_layers(pl_module.model)
        if wandb_logger is None or not layers:
            return

        _, mixer = layers[0]
        seq_len = min(4 * mixer.window_size, self.max_tokens_heatmap)
        fig = plot_window_mask(
            seq_len,
            mixer.window_size,
            causal=mixer.causal,
            chunk_size=mixer.mask_chunk_size,
        )
        wandb_logger.log_image(key="local_mixer/window_mask", images=[fig])
        plt.close(fig)

    def on_train_batch_end(self, trainer, pl_module, outputs, batch, batch_idx):
        if trainer.global_step % self.log_every_n_steps != 0:
            return

        layers = _short_swa_layers(pl_module.model)
        if not layers:
            return

        captured = {}
        hooks = []
        for layer_idx, mixer in layers:

            def capture(module, args, layer_idx=layer_idx):
                captured[layer_idx] = args[0].detach()

            hooks.append(mixer.register_forward_pre_hook(capture))

        try:
            with torch.no_grad():
                pl_module(batch["input_ids"][: self.num_samples])
                entropies = {}
                first_weights = None
                for layer_idx, mixer in layers:
                    weights = mixer.attention_weights(captured[layer_idx])
                    entropies[layer_idx] = compute_attention_entropy(weights).mean()
                    if first_weights is None:
                        first_weights = (layer_idx, weights[0])
        finally:
            for hook in hooks:
                hook.remove()

        for layer_idx, entropy in entropies.items():
            pl_module.log(f"local_mixer/layer_{layer_idx}_entropy", entropy, on_step=True)

        wandb_logger = _get_wandb_logger(trainer)
        if wandb_logger is not None and first_weights is not None:
            layer_idx, weights = first_weights
            fig = create_attention_heatmap(
                weights[:, : self.max_tokens_heatmap, : self.max_tokens_heatmap],
                layer_name=f"Layer {layer_idx} - Step {trainer.global_step}",
                max_tokens=self.max_tokens_heatmap,
            )
            wandb_logger.log_image(
                key=f"local_mixer/layer_{layer_idx}", images=[fig], step=trainer.global_step
            )
            plt.close(fig)


class GradientFlowMonitor(Callback):
    """Logs a gradient-flow bar chart to W&B every N optimizer steps."""

    def __init__(self, log_every_n_steps: int = 1000):
        super().__init__()
        self.log_every_n_steps = log_every_n_steps

    def on_before_optimizer_step(self, trainer, pl_module, optimizer):
        if trainer.global_step % self.log_every_n_steps != 0:
            return
        wandb_logger = _get_wandb_logger(trainer)
        if wandb_logger is None:
            return

        fig = log_gradient_flow(list(pl_module.named_parameters()))
        wandb_logger.log_image(key="gradients/flow", images=[fig], step=trainer.global_step)
        plt.close(fig)
