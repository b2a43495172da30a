"""
Local and global sequence mixers.

Local mixers (operate on [B, T, D], position-local):
    - ShortConv: causal depthwise convolution with a fixed small kernel
    - ShortSWA: sliding-window attention whose window matches the global chunk

Global mixers (operate on per-head q/k/v, whole-sequence):
    - ChunkedLinearAttention: gated linear attention processed chunk by chunk
    - CausalAttention: full causal softmax attention

Every mixer has forward() for whole sequences and step() for one token with
a LayerCache.
"""

import logging
import math
from typing import Optional

import torch
import torch.nn as nn
import torch.nn.functional as F

from .attention import (
    BACKENDS,
    chunked_linear_attention,
    linear_attention_step,
    recurrent_linear_attention,
    sdpa_window_attention,
    short_swa_attention,
    window_attention_weights,
)
from .cache import LayerCache
from .masks import ALIGNMENTS, dense_window_mask, sliding_window_mask_mod

log = logging.getLogger(__name__)

ACTIVATIONS = {None: nn.Identity, "silu": nn.SiLU, "gelu": nn.GELU}


class ShortConv(nn.Module):
    """
    Causal depthwise 1-D convolution (kernel 2-4 in practice).

    Output at position t mixes inputs t-k+1..t with fixed per-channel weights.
    """

    def __init__(
        self,
        d_model: int,
        kernel_size: int = 4,
        activation: Optional[str] = "silu",
        bias: bool = True,
    ):
        super().__init__()
        if kernel_size < 1:
            raise ValueError(f"kernel_size must be >= 1, got {kernel_size}")
        if activation not in ACTIVATIONS:
            raise ValueError(f"Unknown activation '{activation}'")

        self.d_model = d_model
        self.kernel_size = kernel_size
        self.conv = nn.Conv1d(
            d_model,
            d_model,
            kernel_size=kernel_size,
            groups=d_model,
            padding=kernel_size - 1,
            bias=bias,
        )
        self.act = ACTIVATIONS[activation]()

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        if x.ndim != 3:
            raise ValueError(f"x must have shape [B, T, D], got {tuple(x.shape)}")
        T = x.size(1)
        y = self.conv(x.transpose(1, 2))[:, :, :T]  # crop the right-hand padding
        return self.act(y.transpose(1, 2))

    def step(self, x: torch.Tensor, cache: LayerCache) -> torch.Tensor:
        """x: [B, 1, D] -> [B, 1, D]; updates cache.conv_state."""
        B, _, D = x.shape
        k = self.kernel_size
        state = cache.conv_state
        if state is None:
            state = x.new_zeros(B, k - 1, D)

        window = torch.cat([state.to(x.dtype), x], dim=1)  # [B, k, D]
        weight = self.conv.weight.squeeze(1).t()  # [k, D]
        y = (window * weight.unsqueeze(0)).sum(dim=1, keepdim=True)
        if self.conv.bias is not None:
            y = y + self.conv.bias

        cache.conv_state = window[:, 1:]
        return self.act(y)


class ShortSWA(nn.Module):
    """
    Short sliding-window attention: a content-adaptive local mixer.

    Each position attends to the previous window_size positions (itself
    included). With alignment="chunk" the window is also clipped to the
    query's chunk, so only data already resident for the global mixer's
    chunk is read.
    """

    def __init__(
        self,
        d_model: int,
        n_heads: int,
        window_size: int,
        causal: bool = True,
        alignment: str = "sliding",
        chunk_size: Optional[int] = None,
        backend: str = "auto",
        bias: bool = False,
    ):
        super().__init__()
        if d_model % n_heads != 0:
            raise ValueError(f"d_model ({d_model}) must be divisible by n_heads ({n_heads})")
        if window_size < 1:
            raise ValueError(f"window_size must be >= 1, got {window_size}")
        if alignment not in ALIGNMENTS:
            raise ValueError(f"Unknown alignment '{alignment}', expected one of {ALIGNMENTS}")
        if alignment == "chunk" and chunk_size is None:
            raise ValueError("alignment='chunk' requires chunk_size")
        if backend not in BACKENDS:
            raise ValueError(f"Unknown attention backend '{backend}', expected one of {BACKENDS}")

        self.d_model = d_model
        self.n_heads = n_heads
        self.head_dim = d_model // n_heads
        self.window_size = window_size
        self.causal = causal
        self.alignment = alignment
        self.chunk_size = chunk_size
        self.backend = backend

        self.qkv = nn.Linear(d_model, 3 * d_model, bias=bias)
        self.out_proj = nn.Linear(d_model, d_model, bias=bias)

    @property
    def mask_chunk_size(self) -> Optional[int]:
        return self.chunk_size if self.alignment == "chunk" else None

    def _project(self, x: torch.Tensor):
        B, N, _ = x.shape
        qkv = self.qkv(x).view(B, N, 3, self.n_heads, self.head_dim)
        return qkv.unbind(dim=2)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        if x.ndim != 3:
            raise ValueError(f"x must have shape [B, T, D], got {tuple(x.shape)}")
        B, N, _ = x.shape
        q, k, v = self._project(x)

        out = short_swa_attention(
            q,
            k,
            v,
            window_size=self.window_size,
            causal=self.causal,
            chunk_size=self.mask_chunk_size,
            backend=self.backend,
        )
        return self.out_proj(out.reshape(B, N, self.d_model))

    def attention_weights(self, x: torch.Tensor) -> torch.Tensor:
        """[B, T, D] -> [B, H, T, T] window attention probabilities."""
        q, k, _ = self._project(x)
        return window_attention_weights(
            q,
            k,
            window_size=self.window_size,
            causal=self.causal,
            chunk_size=self.mask_chunk_size,
        )

    def step(self, x: torch.Tensor, cache: LayerCache) -> torch.Tensor:
        """x: [B, 1, D] -> [B, 1, D]; keeps at most window_size - 1 past keys."""
        if not self.causal:
            raise ValueError("Incremental decoding requires a causal ShortSWA")

        B = x.shape[0]
        pos = cache.seqlen_offset
        q, k, v = self._project(x)  # [B, 1, H, Dh]

        if cache.window_keys is not None:
            k = torch.cat([cache.window_keys, k], dim=1)
            v = torch.cat([cache.window_values, v], dim=1)

        L = k.shape[1]
        kv_positions = torch.arange(pos - L + 1, pos + 1, device=x.device)
        q_positions = torch.tensor([pos], device=x.device)
        mask_mod = sliding_window_mask_mod(
            self.window_size, causal=True, chunk_size=self.mask_chunk_size
        )
        mask = dense_window_mask(mask_mod, q_positions, kv_positions)

        out = sdpa_window_attention(
            q.transpose(1, 2), k.transpose(1, 2), v.transpose(1, 2), mask
        ).transpose(1, 2)

        keep = self.window_size - 1
        chunk_ends = self.alignment == "chunk" and (pos + 1) % self.chunk_size == 0
        if keep == 0 or chunk_ends:
            cache.window_keys = None
            cache.window_values = None
        else:
            cache.window_keys = k[:, -keep:]
            cache.window_values = v[:, -keep:]

        return self.out_proj(out.reshape(B, 1, self.d_model))


class ChunkedLinearAttention(nn.Module):
    """
    Gated linear attention (SSM-style scalar decay per head) run chunkwise.

    Decay per token and head: a = exp(-softplus(dt + dt_bias) * exp(A_log)),
    so a lies in (0, 1]. Queries and keys are L2-normalised per head.
    """

    def __init__(
        self,
        n_heads: int,
        chunk_size: int = 64,
        dt_min: float = 0.001,
        dt_max: float = 0.1,
    ):
        super().__init__()
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")
        self.n_heads = n_heads
        self.chunk_size = chunk_size

        # Mamba-2 style initialisation
        A = torch.empty(n_heads).uniform_(1.0, 16.0)
        self.A_log = nn.Parameter(torch.log(A))
        dt = torch.exp(
            torch.rand(n_heads) * (math.log(dt_max) - math.log(dt_min)) + math.log(dt_min)
        )
        self.dt_bias = nn.Parameter(dt + torch.log(-torch.expm1(-dt)))  # inverse softplus

    def log_decay(self, dt: torch.Tensor) -> torch.Tensor:
        """dt: [B, T, H] -> log a: [B, T, H] (<= 0)."""
        return -F.softplus(dt.float() + self.dt_bias) * torch.exp(self.A_log.float())

    def forward(
        self,
        q: torch.Tensor,  # [B, T, H, Dk]
        k: torch.Tensor,  # [B, T, H, Dk]
        v: torch.Tensor,  # [B, T, H, Dv]
        dt: torch.Tensor,  # [B, T, H]
        initial_state: Optional[torch.Tensor] = None,
        return_final_state: bool = False,
        mode: str = "chunk",
    ):
        q = F.normalize(q, dim=-1)
        k = F.normalize(k, dim=-1)
        log_a = self.log_decay(dt)

        if mode == "chunk":
            o, state = chunked_linear_attention(
                q, k, v, log_a, self.chunk_size, initial_state=initial_state
            )
        elif mode == "recurrent":
            o, state = recurrent_linear_attention(q, k, v, log_a, initial_state=initial_state)
        else:
            raise ValueError(f"Unknown mode '{mode}', expected 'chunk' or 'recurrent'")

        if return_final_state:
            return o, state
        return o

    def step(self, q, k, v, dt, cache: LayerCache) -> torch.Tensor:
        """Single token: q, k: [B, 1, H, Dk], v: [B, 1, H, Dv], dt: [B, 1, H]."""
        q = F.normalize(q[:, 0], dim=-1)
        k = F.normalize(k[:, 0], dim=-1)
        log_a = self.log_decay(dt[:, 0])

        state = cache.global_state
        if state is None:
            B, H, Dk = q.shape
            state = q.new_zeros(B, H, Dk, v.shape[-1], dtype=torch.float32)

        o, cache.global_state = linear_attention_step(q, k, v[:, 0], log_a, state)
        return o.unsqueeze(1)


class CausalAttention(nn.Module):
    """Full causal softmax attention as the global mixer (no decay input)."""

    def __init__(self, n_heads: int):
        super().__init__()
        self.n_heads = n_heads

    def forward(self, q, k, v, dt=None) -> torch.Tensor:
        out = F.scaled_dot_product_attention(
            q.transpose(1, 2), k.transpose(1, 2), v.transpose(1, 2), is_causal=True
        )
        return out.transpose(1, 2)

    def step(self, q, k, v, dt, cache: LayerCache) -> torch.Tensor:
        if cache.global_keys is not None:
            k = torch.cat([cache.global_keys, k], dim=1)
            v = torch.cat([cache.global_values, v], dim=1)
        cache.global_keys, cache.global_values = k, v
        # A single query sees the whole history, no mask needed
        out = F.scaled_dot_product_attention(
            q.transpose(1, 2), k.transpose(1, 2), v.transpose(1, 2)
        )
        return out.transpose(1, 2)


def build_local_mixer(
    kind: str,
    d_model: int,
    n_heads: int,
    kernel_size: int = 4,
    window_size: int = 64,
    causal: bool = True,
    alignment: str = "sliding",
    chunk_size: Optional[int] = None,
    backend: str = "auto",
) -> nn.Module:
    """Construct the local mixer named by kind ("shortswa", "shortconv" or "none")."""
    if kind == "shortconv":
        # The block applies the activation after local mixing
        return ShortConv(d_model, kernel_size=kernel_size, activation=None)
    if kind == "shortswa":
        return ShortSWA(
            d_model,
            n_heads=n_heads,
            window_size=window_size,
            causal=causal,
            alignment=alignment,
            chunk_size=chunk_size,
            backend=backend,
        )
    if kind == "none":
        return nn.Identity()
    raise ValueError(f"Unknown local mixer '{kind}'")


def build_global_mixer(kind: str, n_heads: int, chunk_size: int = 64) -> nn.Module:
    if kind == "linear_attention":
        return ChunkedLinearAttention(n_heads, chunk_size=chunk_size)
    if kind == "attention":
        return CausalAttention(n_heads)
    raise ValueError(f"Unknown global mixer '{kind}'")
