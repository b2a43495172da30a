"""
Test suite for ShortSWALM.

Tests model initialization, weight initialization, per-layer local mixer
selection, forward pass shapes, incremental decoding and generation.

All tests run on CPU with the SDPA backend.
"""

from types import SimpleNamespace

import pytest
import torch
import torch.nn as nn

from shortswa.config import GlobalMixerConfig, LocalMixerConfig, ModelConfig
from shortswa.core.mixers import ShortConv, ShortSWA
from shortswa.core.model import HybridBlock
from shortswa.model import ShortSWALM
from shortswa.utils import count_parameters


def create_test_config(**local_overrides):
    """Create a minimal test configuration."""
    local = dict(kind="shortswa", backend="sdpa")
    local.update(local_overrides)
    return SimpleNamespace(
        model=ModelConfig(
            vocab_size=100,
            d_model=32,
            n_heads=4,
            num_layers=2,
            d_ff=64,
            dropout=0.0,
            max_seq_len=64,
            local_mixer=LocalMixerConfig(**local),
            global_mixer=GlobalMixerConfig(chunk_size=4, d_state=8, expand=2),
        )
    )


def test_model_initialization():
    model = ShortSWALM(create_test_config())

    assert isinstance(model, nn.Module)
    assert len(model.layers) == 2
    assert all(isinstance(layer, HybridBlock) for layer in model.layers)
    assert isinstance(model.final_norm, nn.LayerNorm)


def test_accepts_bare_model_config():
    config = create_test_config()
    model = ShortSWALM(config.model)
    assert len(model.layers) == config.model.num_layers


def test_token_embedding_initialization():
    config = create_test_config()
    config.model.vocab_size = 2000
    model = ShortSWALM(config)

    weights = model.token_embed.weight.data
    assert model.token_embed.num_embeddings == 2000
    assert abs(weights.mean().item()) < 0.01, "Mean should be close to 0"
    assert abs(weights.std().item() - 0.02) < 0.01, "Std should be close to 0.02"


def test_lm_head_is_untied():
    model = ShortSWALM(create_test_config())

    assert model.lm_head.bias is None
    assert model.token_embed.weight is not model.lm_head.weight


def test_local_mixer_kind_per_layer():
    config = create_test_config()
    config.model.layer_local_mixer = ["shortconv"]
    model = ShortSWALM(config)

    assert isinstance(model.layers[0].local_mixer, ShortConv)
    assert isinstance(model.layers[1].local_mixer, ShortSWA)


def test_window_follows_chunk_size():
    model = ShortSWALM(create_test_config())
    assert model.layers[0].local_mixer.window_size == 4

    model = ShortSWALM(create_test_config(window_size=6))
    assert model.layers[0].local_mixer.window_size == 6


def test_count_parameters_split():
    model = ShortSWALM(create_test_config())
    counts = count_parameters(model)

    qkv = model.layers[0].local_mixer.qkv.weight.numel()
    assert counts["trainable"] == counts["total"]
    assert counts["local_mixer"] >= 2 * qkv
    # A_log and dt_bias per head in every layer
    assert counts["global_mixer"] == 2 * 2 * 4
    assert counts["local_mixer"] + counts["global_mixer"] < counts["total"]


def test_rejects_bidirectional_local_mixer():
    with pytest.raises(ValueError):
        ShortSWALM(create_test_config(causal=False))


def test_rejects_unknown_local_mixer():
    with pytest.raises(ValueError):
        ShortSWALM(create_test_config(kind="hyena"))


def test_forward_pass_output_structure():
    model = ShortSWALM(create_test_config())
    input_ids = torch.randint(0, 100, (2, 10))

    outputs = model(input_ids)

    assert set(outputs) == {"hidden", "logits"}
    assert outputs["hidden"].shape == (2, 10, 32)
    assert outputs["logits"].shape == (2, 10, 100)


def test_forward_is_causal():
    """Logits at t never depend on tokens after t."""
    torch.manual_seed(0)
    model = ShortSWALM(create_test_config()).eval()
    input_ids = torch.randint(0, 100, (1, 12))
    logits = model(input_ids)["logits"]

    changed = input_ids.clone()
    changed[0, 8] = (changed[0, 8] + 1) % 100
    logits2 = model(changed)["logits"]

    assert torch.allclose(logits[:, :8], logits2[:, :8], atol=1e-5)


def test_gradients_flow_to_local_mixer():
    model = ShortSWALM(create_test_config())
    logits = model(torch.randint(0, 100, (2, 9)))["logits"]
    logits.sum().backward()

    for layer in model.layers:
        assert layer.local_mixer.qkv.weight.grad is not None
        assert layer.global_mixer.A_log.grad is not None


@pytest.mark.parametrize(
    "local_overrides",
    [
        dict(kind="shortswa"),
        dict(kind="shortswa", alignment="chunk"),
        dict(kind="shortswa", window_size=3),
        dict(kind="shortconv", kernel_size=3),
        dict(kind="none"),
    ],
)
def test_cached_forward_matches_full_forward(local_overrides):
    torch.manual_seed(0)
    model = ShortSWALM(create_test_config(**local_overrides)).eval()
    input_ids = torch.randint(0, 100, (2, 11))

    full = model(input_ids)["logits"]

    cache = model.allocate_cache(batch_size=2)
    prefix = model(input_ids[:, :6], cache=cache)["logits"]
    rest = model(input_ids[:, 6:], cache=cache)["logits"]

    assert cache.seqlen_offset == 11
    assert torch.allclose(torch.cat([prefix, rest], dim=1), full, atol=1e-4)


def test_cache_batch_size_mismatch():
    model = ShortSWALM(create_test_config())
    cache = model.allocate_cache(batch_size=3)
    with pytest.raises(ValueError):
        model(torch.randint(0, 100, (2, 4)), cache=cache)


def test_greedy_generate_matches_argmax():
    torch.manual_seed(0)
    model = ShortSWALM(create_test_config()).eval()
    prompt = torch.randint(0, 100, (2, 5))

    out = model.generate(prompt, max_new_tokens=4)

    assert out.shape == (2, 9)
    assert torch.equal(out[:, :5], prompt)
    # Each generated token is the arg-max of a full forward over its prefix
    for t in range(5, 9):
        logits = model(out[:, :t])["logits"][:, -1]
        chosen = logits.gather(-1, out[:, t : t + 1]).squeeze(-1)
        assert torch.all(chosen >= logits.max(dim=-1).values - 1e-4)


def test_generate_sampling_with_top_k():
    torch.manual_seed(0)
    model = ShortSWALM(create_test_config()).eval()
    prompt = torch.randint(0, 100, (1, 3))

    out = model.generate(prompt, max_new_tokens=5, temperature=1.0, top_k=1)
    greedy = model.generate(prompt, max_new_tokens=5)

    # top_k=1 sampling is greedy decoding
    assert torch.equal(out, greedy)


def test_generate_stops_at_eos():
    model = ShortSWALM(create_test_config()).eval()
    prompt = torch.randint(0, 100, (1, 3))
    first = model.generate(prompt, max_new_tokens=1)[0, -1].item()

    out = model.generate(prompt, max_new_tokens=10, eos_token_id=first)

    assert out.shape == (1, 4)
    assert out[0, -1].item() == first


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
