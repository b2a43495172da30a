"""
Visualization utilities for W&B logging.

This module provides functions for:
- ShortSWA window / chunk mask heatmaps
- Local attention heatmaps
- Gradient flow visualization
- Attention entropy computation
"""

from typing import List, Optional, Tuple

import matplotlib.pyplot as plt
import numpy as np
import seaborn as sns
import torch

from shortswa.core.masks import dense_window_mask, sliding_window_mask_mod


def plot_window_mask(
    seq_len: int,
    window_size: int,
    causal: bool = True,
    chunk_size: Optional[int] = None,
    title: str = "ShortSWA mask",
) -> plt.Figure:
    """
    Heatmap of which keys (x) each query (y) may attend to.

    Chunk boundaries are drawn when chunk_size is given, so the window can be
    compared against the global mixer's chunking.
    """
    positions = torch.arange(seq_len)
    mask_mod = sliding_window_mask_mod(window_size, causal=causal, chunk_size=chunk_size)
    mask = dense_window_mask(mask_mod, positions, positions).numpy().astype(np.float32)

    fig, ax = plt.subplots(figsize=(8, 7))
    sns.heatmap(mask, cmap="Blues", square=True, cbar=False, ax=ax, vmin=0, vmax=1)

    if chunk_size is not None:
        for boundary in range(chunk_size, seq_len, chunk_size):
            ax.axhline(boundary, color="red", linewidth=0.8, alpha=0.6)
            ax.axvline(boundary, color="red", linewidth=0.8, alpha=0.6)

    ax.set_title(f"{title} (window={window_size})", fontsize=14, fontweight="bold")
    ax.set_xlabel("Key Position", fontsize=12)
    ax.set_ylabel("Query Position", fontsize=12)

    plt.tight_layout()
    return fig


def create_attention_heatmap(
    attention_weights: torch.Tensor,
    layer_name: str = "Layer",
    max_tokens: int = 128,
) -> plt.Figure:
    """
    Create attention heatmap visualization.

    Args:
        attention_weights: [H, N, N] or [N, N] attention weights
        layer_name: name for the plot title
        max_tokens: maximum tokens to display (for readability)

    Returns:
        matplotlib Figure
    """
    # Handle multi-head attention
    if attention_weights.dim() == 3:
        attn = attention_weights.mean(dim=0).detach().float().cpu().numpy()
    else:
        attn = attention_weights.detach().float().cpu().numpy()

    N = min(attn.shape[0], max_tokens)
    attn = attn[:N, :N]

    fig, ax = plt.subplots(figsize=(12, 10))
    sns.heatmap(
        attn,
        cmap="viridis",
        square=True,
        cbar_kws={"label": "Attention Weight"},
        ax=ax,
        vmin=0,
        vmax=attn.max(),
    )

    ax.set_title(f"{layer_name} Local Attention", fontsize=14, fontweight="bold")
    ax.set_xlabel("Key Position", fontsize=12)
    ax.set_ylabel("Query Position", fontsize=12)

    plt.tight_layout()
    return fig


def compute_attention_entropy(attention_weights: torch.Tensor) -> torch.Tensor:
    """
    Compute entropy of attention distributions.

    Higher entropy = more diffuse attention (closer to a uniform average,
    which is what a fixed-weight local mixer would do).
    Lower entropy = more focused, content-dependent attention.

    Args:
        attention_weights: [B, H, N, N] attention weights (rows sum to 1)

    Returns:
        entropy: [B, H, N] entropy per query position
    """
    log_probs = torch.log(attention_weights.clamp_min(1e-10))
    return -torch.sum(attention_weights * log_probs, dim=-1)


def log_gradient_flow(
    named_parameters: List[Tuple[str, torch.nn.Parameter]],
) -> plt.Figure:
    """
    Visualize gradient magnitudes across layers.

    Args:
        named_parameters: list of (name, parameter) tuples from model.named_parameters()

    Returns:
        matplotlib Figure showing gradient flow
    """
    layer_names = []
    grad_norms = []

    for name, param in named_parameters:
        if param.grad is not None and "embed" not in name:  # skip embeddings
            layer_names.append(name)
            grad_norms.append(param.grad.norm().item())

    fig, ax = plt.subplots(figsize=(14, 6))

    x_positions = np.arange(len(layer_names))
    bars = ax.bar(x_positions, grad_norms, color="steelblue", alpha=0.7)

    # Highlight layers with very small or large gradients
    for i, norm in enumerate(grad_norms):
        if norm < 1e-5:
            bars[i].set_color("red")  # vanishing gradient
        elif norm > 10:
            bars[i].set_color("orange")  # exploding gradient

    ax.set_xticks(x_positions)
    ax.set_xticklabels(layer_names, rotation=90, fontsize=8)
    ax.set_ylabel("Gradient Norm", fontsize=12)
    ax.set_title("Gradient Flow Across Layers", fontsize=14, fontweight="bold")
    ax.set_yscale("log")
    ax.grid(axis="y", alpha=0.3)

    plt.tight_layout()
    return fig
