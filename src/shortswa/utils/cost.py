"""
Back-of-the-envelope cost model for local mixers.

Counts per-token FLOPs and bytes moved to estimate arithmetic intensity
(FLOPs / byte). Data loaded for a chunk is assumed to stay resident for the
whole chunk, so weights and window keys/values are amortised over chunk_size
tokens. These are estimates for comparing mixers, not a profiler.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class MixerCost:
    kind: str
    flops: float  # per token
    bytes: float  # per token

    @property
    def arithmetic_intensity(self) -> float:
        return self.flops / self.bytes


def shortconv_cost(
    d: int, kernel_size: int, chunk_size: int = 64, dtype_bytes: int = 2
) -> MixerCost:
    """
    Depthwise conv: one multiply-add per tap and channel.

    Bytes: read the token, write the result, and the k taps of weights once
    per chunk.
    """
    flops = 2 * kernel_size * d
    bytes_moved = 2 * d + kernel_size * d / chunk_size
    return MixerCost("shortconv", float(flops), float(bytes_moved * dtype_bytes))


def shortswa_cost(
    d: int,
    window_size: int,
    chunk_size: int,
    dtype_bytes: int = 2,
    aligned: bool = False,
    include_projections: bool = True,
) -> MixerCost:
    """
    Sliding-window attention with chunk-resident keys/values.

    FLOPs: QK^T and PV over the window (4 * w * d), plus the Q/K/V/O
    projections (8 * d^2) when include_projections is set.
    Bytes: token in/out, q/k/v once, window K/V loaded once per chunk
    (a sliding window also pulls in w - 1 keys from the previous chunk),
    and the four projection matrices once per chunk.
    """
    w = min(window_size, chunk_size) if aligned else window_size
    flops = 4 * w * d
    bytes_moved = 2 * d + 3 * d

    halo = 0 if aligned else window_size - 1
    bytes_moved += 2 * d * (chunk_size + halo) / chunk_size

    if include_projections:
        flops += 8 * d * d
        bytes_moved += 4 * d * d / chunk_size

    return MixerCost("shortswa", float(flops), float(bytes_moved * dtype_bytes))


def mixer_cost(
    kind: str,
    d: int,
    kernel_size: int = 4,
    window_size: Optional[int] = None,
    chunk_size: int = 64,
    dtype_bytes: int = 2,
    alignment: str = "sliding",
) -> MixerCost:
    """Cost of one local mixer per token; window_size defaults to chunk_size."""
    if kind == "shortconv":
        return shortconv_cost(d, kernel_size, chunk_size=chunk_size, dtype_bytes=dtype_bytes)
    if kind == "shortswa":
        return shortswa_cost(
            d,
            window_size if window_size is not None else chunk_size,
            chunk_size,
            dtype_bytes=dtype_bytes,
            aligned=alignment == "chunk",
        )
    raise ValueError(f"No cost model for local mixer '{kind}'")
