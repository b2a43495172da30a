#!/usr/bin/env python3
"""
Print detailed architecture layout of a ShortSWA model.
Shows per-layer local/global mixers, parameter split and the per-token
arithmetic intensity of ShortConv versus ShortSWA at the configured sizes.
"""

import argparse
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from shortswa.config import layer_local_mixers, load_config
from shortswa.model import ShortSWALM
from shortswa.utils import count_parameters, mixer_cost


def print_architecture(config_path: str):
    """Print detailed architecture layout."""
    print("=" * 80)
    print("SHORTSWA LANGUAGE MODEL ARCHITECTURE")
    print("=" * 80)

    cfg = load_config(config_path)
    model_cfg = cfg.model
    local = model_cfg.local_mixer
    glob = model_cfg.global_mixer
    window = local.window_size if local.window_size is not None else glob.chunk_size
    d_inner = glob.expand * model_cfg.d_model
    xbc_dim = d_inner + 2 * model_cfg.n_heads * glob.d_state

    print("\n📊 MODEL CONFIGURATION")
    print(f"  Vocabulary Size:     {model_cfg.vocab_size:,}")
    print(f"  Model Dimension:     {model_cfg.d_model}")
    print(f"  Inner Dimension:     {d_inner}")
    print(f"  Number of Layers:    {model_cfg.num_layers}")
    print(f"  Number of Heads:     {model_cfg.n_heads}")
    print(f"  State Dimension:     {glob.d_state}")
    print(f"  Feedforward Dim:     {model_cfg.d_ff}")
    print(f"  Dropout:             {model_cfg.dropout}")
    print(f"  Max Sequence Length: {model_cfg.max_seq_len:,}")

    print("\n🔍 MIXERS")
    print(f"  Global mixer:        {glob.kind} (chunk {glob.chunk_size})")
    print(f"  Local window:        {window} ({local.alignment}, backend {local.backend})")
    print(f"  ShortConv kernel:    {local.kernel_size}")
    print("\n  Per-Layer Local Mixers:")
    for layer_idx, kind in enumerate(layer_local_mixers(model_cfg)):
        span = {"shortswa": window, "shortconv": local.kernel_size, "none": 1}[kind]
        print(f"    Layer {layer_idx:2d}: {kind:10s} (span: {span:4d} positions)")

    print("\n⚙️  PARAMETER BREAKDOWN")
    model = ShortSWALM(cfg)
    counts = count_parameters(model)
    total = counts["total"]

    print(f"  Total Parameters:      {total:,}")
    print(f"  Trainable Parameters:  {counts['trainable']:,}")
    print(f"  Model Size:            {total * 4 / (1024**2):.2f} MB (fp32)")
    print(
        f"    Local Mixers:        {counts['local_mixer']:,} "
        f"({counts['local_mixer'] / total * 100:.1f}%)"
    )
    print(
        f"    Global Mixers:       {counts['global_mixer']:,} "
        f"({counts['global_mixer'] / total * 100:.1f}%)"
    )
    embed_params = sum(p.numel() for p in model.token_embed.parameters())
    head_params = sum(p.numel() for p in model.lm_head.parameters())
    print(f"    Token Embeddings:    {embed_params:,} ({embed_params / total * 100:.1f}%)")
    print(f"    LM Head:             {head_params:,} ({head_params / total * 100:.1f}%)")

    print("\n💡 ARITHMETIC INTENSITY (per token, bf16, local mixer on xBC)")
    print(f"  {'mixer':12s} {'FLOPs':>14s} {'bytes':>14s} {'FLOPs/byte':>12s}")
    costs = [
        mixer_cost(
            "shortconv", xbc_dim, kernel_size=local.kernel_size, chunk_size=glob.chunk_size
        ),
        mixer_cost("shortswa", xbc_dim, window_size=window, chunk_size=glob.chunk_size),
        mixer_cost(
            "shortswa",
            xbc_dim,
            window_size=window,
            chunk_size=glob.chunk_size,
            alignment="chunk",
        ),
    ]
    for label, cost in zip(["shortconv", "swa/sliding", "swa/chunk"], costs):
        print(
            f"  {label:12s} {cost.flops:14,.0f} {cost.bytes:14,.0f} "
            f"{cost.arithmetic_intensity:12.2f}"
        )

    print("\n" + "=" * 80)
    print("Note: window masks are NOT trainable parameters.")
    print("      They are evaluated on-the-fly from query/key positions.")
    print("=" * 80)


def main():
    parser = argparse.ArgumentParser(description="Print detailed ShortSWA architecture layout")
    parser.add_argument(
        "--config",
        type=str,
        default="configs/recall_shortswa.yaml",
        help="Path to config file",
    )
    args = parser.parse_args()

    print_architecture(args.config)


if __name__ == "__main__":
    main()
