"""
Configuration loading utilities for shortswa.

This module defines a simple dataclass-based config and a loader
from YAML files, so you can keep experiments reproducible.
"""

from dataclasses import dataclass, field
from typing import List, Optional

import yaml

from shortswa.core.attention import BACKENDS
from shortswa.core.masks import ALIGNMENTS

LOCAL_MIXERS = ("shortswa", "shortconv", "none")
GLOBAL_MIXERS = ("linear_attention", "attention")


@dataclass
class LocalMixerConfig:
    """Local mixing layer placed before the global mixer.

    - shortconv: causal depthwise conv with kernel_size (2-4)
    - shortswa: sliding-window attention, window_size defaults to the
      global mixer's chunk_size; alignment="chunk" also clips the window
      to the query's chunk
    - none: no local mixing (ablation)
    """

    kind: str = "shortswa"
    kernel_size: int = 4
    window_size: Optional[int] = None  # None -> global_mixer.chunk_size
    n_heads: Optional[int] = None  # None -> model n_heads
    alignment: str = "sliding"  # "sliding" | "chunk"
    causal: bool = True
    backend: str = "auto"  # "auto" | "flex" | "sdpa"


@dataclass
class GlobalMixerConfig:
    kind: str = "linear_attention"  # "linear_attention" | "attention"
    chunk_size: int = 64
    d_state: int = 64
    expand: int = 2


@dataclass
class ModelConfig:
    vocab_size: int
    d_model: int
    n_heads: int
    num_layers: int
    d_ff: int
    dropout: float
    max_seq_len: int
    local_mixer: LocalMixerConfig = field(default_factory=LocalMixerConfig)
    global_mixer: GlobalMixerConfig = field(default_factory=GlobalMixerConfig)
    layer_local_mixer: Optional[List[str]] = None  # per-layer override of local_mixer.kind


@dataclass
class TrainingConfig:
    task: str  # "lm" | "recall"
    batch_size: int
    grad_accum_steps: int
    num_steps: int
    warmup_steps: int
    learning_rate: float
    weight_decay: float
    max_grad_norm: float
    log_every: int
    save_every: int
    eval_every: int
    mixed_precision: str


@dataclass
class DataConfig:
    num_workers: int
    max_seq_len: int
    text_column: str = "text"
    tokenizer_name_or_path: Optional[str] = None
    dataset_name: Optional[str] = None
    sources: Optional[List[str]] = None
    sampling_probs: Optional[List[float]] = None
    shuffle_buffer_size: int = 10000
    # synthetic associative recall
    num_kv_pairs: int = 16
    num_queries: int = 16
    num_train_examples: int = 20000
    num_val_examples: int = 1000


@dataclass
class WandbConfig:
    """Configuration for Weights & Biases logging."""

    project: str
    entity: Optional[str] = None
    name: Optional[str] = None  # defaults to experiment_name
    tags: Optional[List[str]] = None
    log_model: bool = False  # save checkpoints to wandb artifacts
    offline: bool = False  # run in offline mode


@dataclass
class ExperimentConfig:
    experiment_name: str
    seed: int
    device: str
    model: ModelConfig
    training: TrainingConfig
    data: DataConfig
    wandb: WandbConfig


def layer_local_mixers(model_cfg: ModelConfig) -> List[str]:
    """Local mixer kind for every layer, after per-layer overrides."""
    kinds = [model_cfg.local_mixer.kind] * model_cfg.num_layers
    for i, kind in enumerate(model_cfg.layer_local_mixer or []):
        if i < model_cfg.num_layers:
            kinds[i] = kind
    return kinds


def validate_model_config(model_cfg: ModelConfig) -> None:
    """Raise ValueError for settings the causal LM cannot run with."""
    local = model_cfg.local_mixer
    glob = model_cfg.global_mixer

    for kind in layer_local_mixers(model_cfg):
        if kind not in LOCAL_MIXERS:
            raise ValueError(f"Unknown local mixer '{kind}', expected one of {LOCAL_MIXERS}")
    if glob.kind not in GLOBAL_MIXERS:
        raise ValueError(f"Unknown global mixer '{glob.kind}', expected one of {GLOBAL_MIXERS}")

    d_inner = glob.expand * model_cfg.d_model
    if d_inner % model_cfg.n_heads != 0:
        raise ValueError(
            f"expand * d_model ({d_inner}) must be divisible by n_heads ({model_cfg.n_heads})"
        )
    if local.n_heads is not None and model_cfg.n_heads % local.n_heads != 0:
        raise ValueError(
            f"local_mixer.n_heads ({local.n_heads}) must divide n_heads ({model_cfg.n_heads})"
        )
    if glob.chunk_size < 1:
        raise ValueError(f"chunk_size must be >= 1, got {glob.chunk_size}")
    if local.window_size is not None and local.window_size < 1:
        raise ValueError(f"window_size must be >= 1, got {local.window_size}")
    if local.alignment not in ALIGNMENTS:
        raise ValueError(f"Unknown alignment '{local.alignment}', expected one of {ALIGNMENTS}")
    if local.backend not in BACKENDS:
        raise ValueError(f"Unknown attention backend '{local.backend}', expected one of {BACKENDS}")
    if not local.causal:
        raise ValueError("A causal language model needs a causal local mixer")
    if local.kernel_size < 1:
        raise ValueError(f"kernel_size must be >= 1, got {local.kernel_size}")


def load_config(path: str) -> ExperimentConfig:
    """Load an ExperimentConfig from a YAML file."""
    with open(path, "r") as f:
        raw = yaml.safe_load(f)

    # Parse wandb config
    wandb_raw = raw.get("wandb", {})
    wandb_cfg = WandbConfig(**wandb_raw) if wandb_raw else WandbConfig(project="shortswa")

    # Parse model config with nested mixer blocks
    model_raw = {
        k: v for k, v in raw["model"].items() if k not in ("local_mixer", "global_mixer")
    }
    model_cfg = ModelConfig(
        **model_raw,
        local_mixer=LocalMixerConfig(**(raw["model"].get("local_mixer") or {})),
        global_mixer=GlobalMixerConfig(**(raw["model"].get("global_mixer") or {})),
    )
    validate_model_config(model_cfg)

    # Ensure numeric training values are properly typed
    training_raw = raw["training"].copy()
    training_raw["learning_rate"] = float(training_raw["learning_rate"])
    training_raw["weight_decay"] = float(training_raw["weight_decay"])

    return ExperimentConfig(
        experiment_name=raw["experiment_name"],
        seed=raw["seed"],
        device=raw["device"],
        model=model_cfg,
        training=TrainingConfig(**training_raw),
        data=DataConfig(**raw["data"]),
        wandb=wandb_cfg,
    )
