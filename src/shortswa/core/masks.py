"""
Window mask predicates for ShortSWA.

A mask_mod is a function (b, h, q_idx, kv_idx) -> bool tensor, the signature
FlexAttention expects. The same predicate builds the dense boolean masks used
by the SDPA backend and during incremental decoding, so every path agrees on
which keys a query may see.

For query position i and key position j:
    causal:         0 <= i - j < window_size
    bidirectional:  |i - j| < window_size
    chunk aligned:  additionally i // chunk_size == j // chunk_size
"""

from typing import Callable, Optional

import torch
from torch.nn.attention.flex_attention import create_block_mask

ALIGNMENTS = ("sliding", "chunk")


def sliding_window_mask_mod(
    window_size: int,
    causal: bool = True,
    chunk_size: Optional[int] = None,
) -> Callable:
    """
    Build the ShortSWA mask predicate.

    Args:
        window_size: number of positions a query sees (itself included)
        causal: restrict to keys at or before the query
        chunk_size: if given, keys must also lie in the query's chunk

    Returns:
        mask_mod(b, h, q_idx, kv_idx) -> bool tensor (True = attend)
    """
    if window_size < 1:
        raise ValueError(f"window_size must be >= 1, got {window_size}")
    if chunk_size is not None and chunk_size < 1:
        raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")

    def window_mask_mod(b, h, q_idx, kv_idx):
        dist = q_idx - kv_idx
        if causal:
            keep = (dist >= 0) & (dist < window_size)
        else:
            keep = dist.abs() < window_size
        if chunk_size is not None:
            keep = keep & ((q_idx // chunk_size) == (kv_idx // chunk_size))
        return keep

    return window_mask_mod


def dense_window_mask(
    mask_mod: Callable,
    q_positions: torch.Tensor,  # [Lq]
    kv_positions: torch.Tensor,  # [Lk]
) -> torch.Tensor:
    """
    Evaluate a mask_mod on absolute positions.

    Returns:
        [Lq, Lk] bool mask (True = attend)
    """
    return mask_mod(None, None, q_positions.unsqueeze(1), kv_positions.unsqueeze(0))


def create_window_block_mask(
    window_size: int,
    seq_len: int,
    causal: bool = True,
    chunk_size: Optional[int] = None,
    device: torch.device = "cuda",
):
    """
    FlexAttention BlockMask for a ShortSWA window.

    The pattern does not depend on batch or head, so B and H are broadcast
    (None) and one mask serves every layer that shares the same window.
    """
    mask_mod = sliding_window_mask_mod(window_size, causal=causal, chunk_size=chunk_size)
    return create_block_mask(
        mask_mod,
        B=None,
        H=None,
        Q_LEN=seq_len,
        KV_LEN=seq_len,
        device=device,
    )
