"""
Decoding state for autoregressive generation.

Each HybridBlock owns one LayerCache. Mixers read and replace only the
fields they use:
    - ShortConv: conv_state, the last (kernel_size - 1) inputs
    - ShortSWA: window_keys / window_values, at most (window_size - 1) entries
    - ChunkedLinearAttention: global_state, the [B, H, Dk, Dv] recurrent state
    - CausalAttention: global_keys / global_values, the full KV history
"""

from dataclasses import dataclass, field
from typing import List, Optional

import torch


@dataclass
class LayerCache:
    seqlen_offset: int = 0  # absolute position of the next token
    conv_state: Optional[torch.Tensor] = None  # [B, k-1, D]
    window_keys: Optional[torch.Tensor] = None  # [B, L, H, Dh]
    window_values: Optional[torch.Tensor] = None
    global_state: Optional[torch.Tensor] = None  # [B, H, Dk, Dv]
    global_keys: Optional[torch.Tensor] = None  # [B, L, H, Dk]
    global_values: Optional[torch.Tensor] = None

    def reset(self) -> None:
        self.seqlen_offset = 0
        self.conv_state = None
        self.window_keys = None
        self.window_values = None
        self.global_state = None
        self.global_keys = None
        self.global_values = None


@dataclass
class InferenceCache:
    batch_size: int
    layers: List[LayerCache] = field(default_factory=list)

    @classmethod
    def allocate(cls, batch_size: int, num_layers: int) -> "InferenceCache":
        return cls(batch_size=batch_size, layers=[LayerCache() for _ in range(num_layers)])

    @property
    def seqlen_offset(self) -> int:
        return self.layers[0].seqlen_offset if self.layers else 0

    def reset(self) -> None:
        for layer in self.layers:
            layer.reset()
