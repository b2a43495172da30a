"""
ShortSWA: chunk-aligned sliding-window attention as a local mixer.

Clean separation: core/ and utils/

CORE:
    - core.masks: window / chunk mask predicates
    - core.attention: ShortSWA and chunked linear attention kernels
    - core.mixers: ShortConv, ShortSWA, ChunkedLinearAttention, CausalAttention
    - core.model: HybridBlock (project -> local-mix -> global-mix -> gate/output)

UTILS (extras):
    - utils.seeding: random seed and parameter counting helpers
    - utils.cost: per-token arithmetic intensity estimates

Main language model is in model.py (ShortSWALM).
"""

# ============================================================================
# CONFIG (Configuration management)
# ============================================================================
from .config import (
    DataConfig,
    ExperimentConfig,
    GlobalMixerConfig,
    LocalMixerConfig,
    ModelConfig,
    TrainingConfig,
    WandbConfig,
    load_config,
)

# ============================================================================
# CORE (Essential functionality)
# ============================================================================
from .core import (
    ChunkedLinearAttention,
    HybridBlock,
    InferenceCache,
    ShortConv,
    ShortSWA,
    chunked_linear_attention,
    short_swa_attention,
    sliding_window_mask_mod,
)
from .model import ShortSWALM

# ============================================================================
# UTILS (Convenience and debugging)
# ============================================================================
from .utils import mixer_cost, set_seed

__all__ = [
    # Core (essentials)
    "sliding_window_mask_mod",
    "short_swa_attention",
    "chunked_linear_attention",
    "ShortConv",
    "ShortSWA",
    "ChunkedLinearAttention",
    "HybridBlock",
    "InferenceCache",
    "ShortSWALM",
    # Config
    "LocalMixerConfig",
    "GlobalMixerConfig",
    "ModelConfig",
    "TrainingConfig",
    "DataConfig",
    "WandbConfig",
    "ExperimentConfig",
    "load_config",
    # Utils (extras)
    "mixer_cost",
    "set_seed",
]
