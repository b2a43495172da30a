"""
Attention kernels used by the mixers.

Local (ShortSWA):
    - short_swa_attention(): sliding-window softmax attention, FlexAttention
      on CUDA and a dense SDPA fallback elsewhere
    - window_attention_weights(): explicit probabilities for diagnostics

Global (chunked gated linear attention):
    - chunked_linear_attention(): exact chunkwise form, one state hand-off per chunk
    - recurrent_linear_attention(): token-by-token reference
    - linear_attention_step(): single decoding step
"""

import math
from typing import Optional, Tuple

import torch
import torch.nn.functional as F
from torch.nn.attention.flex_attention import flex_attention

from .masks import create_window_block_mask, dense_window_mask, sliding_window_mask_mod

BACKENDS = ("auto", "flex", "sdpa")


def resolve_backend(backend: str, device: torch.device) -> str:
    if backend not in BACKENDS:
        raise ValueError(f"Unknown attention backend '{backend}', expected one of {BACKENDS}")
    if backend == "auto":
        return "flex" if device.type == "cuda" else "sdpa"
    return backend


def _flex_attention_impl(
    query: torch.Tensor,
    key: torch.Tensor,
    value: torch.Tensor,
    block_mask,
) -> torch.Tensor:
    """Inner FlexAttention call (compiled for performance)."""
    return flex_attention(query, key, value, block_mask=block_mask)


# Compile the flex_attention call for better performance
_compiled_flex_attention = torch.compile(_flex_attention_impl)


def sdpa_window_attention(
    query: torch.Tensor,  # [B, H, Lq, D]
    key: torch.Tensor,  # [B, H, Lk, D]
    value: torch.Tensor,  # [B, H, Lk, D]
    mask: torch.Tensor,  # [Lq, Lk] bool, True = attend
) -> torch.Tensor:
    """Dense masked attention with the softmax computed in float32."""
    out = F.scaled_dot_product_attention(
        query.float(), key.float(), value.float(), attn_mask=mask
    )
    return out.to(query.dtype)


def short_swa_attention(
    query: torch.Tensor,  # [B, N, H, D]
    key: torch.Tensor,  # [B, N, H, D]
    value: torch.Tensor,  # [B, N, H, D]
    window_size: int,
    causal: bool = True,
    chunk_size: Optional[int] = None,
    backend: str = "auto",
) -> torch.Tensor:
    """
    Sliding-window attention over a full sequence.

    Args:
        query, key, value: [B, N, H, D] (batch, seq, heads, head_dim)
        window_size: positions visible to each query, itself included
        causal: only look backwards
        chunk_size: if set, queries never see keys outside their own chunk
        backend: "flex", "sdpa" or "auto"

    Returns:
        [B, N, H, D] attention output
    """
    B, N, H, D = query.shape
    device = query.device
    backend = resolve_backend(backend, device)

    # Both kernels expect [B, H, N, D]
    query = query.transpose(1, 2).contiguous()
    key = key.transpose(1, 2).contiguous()
    value = value.transpose(1, 2).contiguous()

    if backend == "flex":
        block_mask = create_window_block_mask(
            window_size,
            seq_len=N,
            causal=causal,
            chunk_size=chunk_size,
            device=device,
        )
        out = _compiled_flex_attention(query, key, value, block_mask)
    else:
        positions = torch.arange(N, device=device)
        mask_mod = sliding_window_mask_mod(window_size, causal=causal, chunk_size=chunk_size)
        mask = dense_window_mask(mask_mod, positions, positions)
        out = sdpa_window_attention(query, key, value, mask)

    return out.transpose(1, 2).contiguous()


def window_attention_weights(
    query: torch.Tensor,  # [B, N, H, D]
    key: torch.Tensor,  # [B, N, H, D]
    window_size: int,
    causal: bool = True,
    chunk_size: Optional[int] = None,
) -> torch.Tensor:
    """
    Materialise ShortSWA attention probabilities (for inspection only).

    Returns:
        [B, H, N, N] probabilities, zero outside the window
    """
    N, D = query.shape[1], query.shape[-1]
    positions = torch.arange(N, device=query.device)
    mask_mod = sliding_window_mask_mod(window_size, causal=causal, chunk_size=chunk_size)
    mask = dense_window_mask(mask_mod, positions, positions)

    scores = torch.einsum("bqhd,bkhd->bhqk", query.float(), key.float()) / math.sqrt(D)
    scores = scores.masked_fill(~mask, float("-inf"))
    return torch.softmax(scores, dim=-1)


def chunked_linear_attention(
    q: torch.Tensor,  # [B, T, H, Dk]
    k: torch.Tensor,  # [B, T, H, Dk]
    v: torch.Tensor,  # [B, T, H, Dv]
    log_a: torch.Tensor,  # [B, T, H], <= 0
    chunk_size: int,
    initial_state: Optional[torch.Tensor] = None,  # [B, H, Dk, Dv]
) -> Tuple[torch.Tensor, torch.Tensor]:
    """
    Gated linear attention in chunkwise-parallel form.

        S_t = a_t * S_{t-1} + k_t^T v_t
        o_t = q_t S_t

    Inside a chunk the output is a decay-weighted causal quadratic form;
    across chunks it flows through S. The result is exact, not an
    approximation of the recurrence.

    Returns:
        o: [B, T, H, Dv]
        final_state: [B, H, Dk, Dv] (float32)
    """
    B, T, H, Dk = q.shape
    Dv = v.shape[-1]
    dtype = q.dtype

    # Work in [B, H, T, D] float32
    q = q.transpose(1, 2).float()
    k = k.transpose(1, 2).float()
    v = v.transpose(1, 2).float()
    log_a = log_a.transpose(1, 2).float()

    # Right-pad to whole chunks: k = v = 0 and a = 1 leave the state untouched
    pad = (-T) % chunk_size
    if pad:
        q = F.pad(q, (0, 0, 0, pad))
        k = F.pad(k, (0, 0, 0, pad))
        v = F.pad(v, (0, 0, 0, pad))
        log_a = F.pad(log_a, (0, pad))

    n_chunks = (T + pad) // chunk_size
    q = q.view(B, H, n_chunks, chunk_size, Dk)
    k = k.view(B, H, n_chunks, chunk_size, Dk)
    v = v.view(B, H, n_chunks, chunk_size, Dv)
    log_a = log_a.view(B, H, n_chunks, chunk_size)

    # Cumulative log-decay within each chunk: b_i = sum_{s <= i} log a_s
    b = log_a.cumsum(dim=-1)

    # Intra-chunk: o_i += sum_{j <= i} exp(b_i - b_j) (q_i . k_j) v_j
    causal = torch.ones(chunk_size, chunk_size, dtype=torch.bool, device=q.device).tril()
    diff = b.unsqueeze(-1) - b.unsqueeze(-2)  # [B, H, N, C, C]
    decay = torch.exp(diff.masked_fill(~causal, float("-inf")))
    scores = q @ k.transpose(-1, -2)
    o = (scores * decay) @ v

    if initial_state is None:
        state = q.new_zeros(B, H, Dk, Dv)
    else:
        state = initial_state.float()

    # Inter-chunk: carry the state across chunk boundaries
    inter = []
    for n in range(n_chunks):
        b_n = b[:, :, n]  # [B, H, C]
        b_last = b_n[..., -1:]  # [B, H, 1]
        inter.append((q[:, :, n] * b_n.exp().unsqueeze(-1)) @ state)
        k_scaled = k[:, :, n] * (b_last - b_n).exp().unsqueeze(-1)
        state = b_last.exp().unsqueeze(-1) * state + k_scaled.transpose(-1, -2) @ v[:, :, n]

    o = o + torch.stack(inter, dim=2)
    o = o.view(B, H, n_chunks * chunk_size, Dv)[:, :, :T]
    return o.transpose(1, 2).to(dtype), state


def linear_attention_step(
    q: torch.Tensor,  # [B, H, Dk]
    k: torch.Tensor,  # [B, H, Dk]
    v: torch.Tensor,  # [B, H, Dv]
    log_a: torch.Tensor,  # [B, H]
    state: torch.Tensor,  # [B, H, Dk, Dv]
) -> Tuple[torch.Tensor, torch.Tensor]:
    """One recurrence step. Returns (o [B, H, Dv], new_state)."""
    a = log_a.float().exp()[..., None, None]
    state = a * state + k.float().unsqueeze(-1) * v.float().unsqueeze(-2)
    o = (q.float().unsqueeze(-2) @ state).squeeze(-2)
    return o.to(q.dtype), state


def recurrent_linear_attention(
    q: torch.Tensor,  # [B, T, H, Dk]
    k: torch.Tensor,
    v: torch.Tensor,
    log_a: torch.Tensor,  # [B, T, H]
    initial_state: Optional[torch.Tensor] = None,
) -> Tuple[torch.Tensor, torch.Tensor]:
    """Token-by-token reference for chunked_linear_attention()."""
    B, T, H, Dk = q.shape
    Dv = v.shape[-1]
    if initial_state is None:
        state = q.new_zeros(B, H, Dk, Dv, dtype=torch.float32)
    else:
        state = initial_state.float()

    outputs = []
    for t in range(T):
        o_t, state = linear_attention_step(q[:, t], k[:, t], v[:, t], log_a[:, t], state)
        outputs.append(o_t)
    return torch.stack(outputs, dim=1), state
