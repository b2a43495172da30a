"""
Core ShortSWA building blocks - essentials only.

This module contains:
- sliding_window_mask_mod(): the window / chunk mask predicate
- short_swa_attention(): sliding-window attention (flex / sdpa)
- chunked_linear_attention(): exact chunkwise gated linear attention
- ShortConv / ShortSWA: local mixers
- ChunkedLinearAttention / CausalAttention: global mixers
- HybridBlock: project -> local-mix -> global-mix -> gate/output
"""

from .attention import (
    chunked_linear_attention,
    recurrent_linear_attention,
    short_swa_attention,
)
from .cache import InferenceCache, LayerCache
from .masks import create_window_block_mask, sliding_window_mask_mod
from .mixers import CausalAttention, ChunkedLinearAttention, ShortConv, ShortSWA
from .model import HybridBlock

__all__ = [
    "sliding_window_mask_mod",
    "create_window_block_mask",
    "short_swa_attention",
    "chunked_linear_attention",
    "recurrent_linear_attention",
    "ShortConv",
    "ShortSWA",
    "ChunkedLinearAttention",
    "CausalAttention",
    "HybridBlock",
    "InferenceCache",
    "LayerCache",
]
