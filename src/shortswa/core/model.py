"""
Hybrid block: project -> local-mix -> global-mix -> gate/output, then FFN.

ShortSWALM stacks these blocks. The same block serves the parallel forward
pass and single-token decoding through a LayerCache.
"""

from typing import Optional

import torch
import torch.nn as nn
import torch.nn.functional as F

from .cache import LayerCache
from .mixers import build_global_mixer, build_local_mixer


class HybridBlock(nn.Module):
    """
    Sequence-mixing block with a swappable local mixer.

    Per token u:
        1. project:    z, xBC, dt = in_proj(norm(u))
        2. local-mix:  xBC = silu(local_mixer(xBC))
        3. global-mix: x (values), B (keys), C (queries) = split(xBC)
                       y = global_mixer(C, B, x, dt) + D * x
        4. gate/out:   u + out_proj(rmsnorm(y) * silu(z))
    followed by a pre-norm GELU feed-forward with residual.
    """

    def __init__(
        self,
        d_model: int,
        n_heads: int,
        d_ff: int,
        d_state: int = 64,
        expand: int = 2,
        chunk_size: int = 64,
        local_mixer: str = "shortswa",
        global_mixer: str = "linear_attention",
        kernel_size: int = 4,
        window_size: Optional[int] = None,
        local_heads: Optional[int] = None,
        causal: bool = True,
        alignment: str = "sliding",
        backend: str = "auto",
        dropout: float = 0.1,
        layer_idx: int = None,
    ):
        super().__init__()
        d_inner = expand * d_model
        assert d_inner % n_heads == 0

        self.d_model = d_model
        self.d_inner = d_inner
        self.n_heads = n_heads
        self.head_dim = d_inner // n_heads
        self.d_state = d_state
        self.layer_idx = layer_idx
        self.local_mixer_kind = local_mixer
        self.window_size = window_size if window_size is not None else chunk_size

        # x (values) + B (keys) + C (queries)
        self.xbc_dim = d_inner + 2 * n_heads * d_state

        self.norm1 = nn.LayerNorm(d_model)
        self.in_proj = nn.Linear(d_model, d_inner + self.xbc_dim + n_heads)

        self.local_mixer = build_local_mixer(
            local_mixer,
            self.xbc_dim,
            n_heads=local_heads or n_heads,
            kernel_size=kernel_size,
            window_size=self.window_size,
            causal=causal,
            alignment=alignment,
            chunk_size=chunk_size,
            backend=backend,
        )
        self.global_mixer = build_global_mixer(global_mixer, n_heads, chunk_size=chunk_size)

        self.D = nn.Parameter(torch.ones(n_heads))
        self.out_norm = nn.RMSNorm(d_inner)
        self.out_proj = nn.Linear(d_inner, d_model)

        self.ff = nn.Sequential(
            nn.Linear(d_model, d_ff),
            nn.GELU(),
            nn.Linear(d_ff, d_model),
        )
        self.norm2 = nn.LayerNorm(d_model)
        self.dropout_mix = nn.Dropout(dropout)
        self.dropout_ff = nn.Dropout(dropout)

    def _split(self, xbc: torch.Tensor):
        B, T, _ = xbc.shape
        H, P, N = self.n_heads, self.head_dim, self.d_state
        x, keys, queries = torch.split(xbc, [self.d_inner, H * N, H * N], dim=-1)
        return (
            x.view(B, T, H, P),
            keys.view(B, T, H, N),
            queries.view(B, T, H, N),
        )

    def _local_step(self, xbc: torch.Tensor, cache: LayerCache) -> torch.Tensor:
        if self.local_mixer_kind == "none":
            return xbc
        return self.local_mixer.step(xbc, cache)

    def _mix(self, u: torch.Tensor, cache: Optional[LayerCache]) -> torch.Tensor:
        B, T, _ = u.shape

        # 1. project
        zxbcdt = self.in_proj(self.norm1(u))
        z, xbc, dt = torch.split(zxbcdt, [self.d_inner, self.xbc_dim, self.n_heads], dim=-1)

        # 2. local-mix
        if cache is None:
            xbc = self.local_mixer(xbc)
        else:
            xbc = self._local_step(xbc, cache)
        xbc = F.silu(xbc)

        # 3. global-mix
        x, keys, queries = self._split(xbc)
        if cache is None:
            y = self.global_mixer(queries, keys, x, dt)
        else:
            y = self.global_mixer.step(queries, keys, x, dt, cache)
        y = y + x * self.D.view(1, 1, -1, 1)

        # 4. gate/output
        y = self.out_norm(y.reshape(B, T, self.d_inner)) * F.silu(z)
        return self.out_proj(y)

    def forward(
        self,
        u: torch.Tensor,  # [B, T, D]
        cache: Optional[LayerCache] = None,
    ) -> torch.Tensor:
        """
        Args:
            u: input [B, T, D]
            cache: decoding state; when given, u must hold a single token
        """
        if cache is not None and u.shape[1] != 1:
            raise ValueError("Cached forward expects exactly one token per call")

        u = u + self.dropout_mix(self._mix(u, cache))
        u = u + self.dropout_ff(self.ff(self.norm2(u)))

        if cache is not None:
            cache.seqlen_offset += 1
        return u
