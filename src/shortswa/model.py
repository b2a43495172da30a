"""
Causal language model built from HybridBlock layers.

This module defines ShortSWALM with:
- Stack of HybridBlock layers (local mixer + chunked global mixer)
- Token embeddings and LM head
- Incremental decoding through InferenceCache and generate()
"""

import logging
from typing import Dict, Optional

import torch
import torch.nn as nn

from shortswa.config import layer_local_mixers, validate_model_config
from shortswa.core.cache import InferenceCache
from shortswa.core.model import HybridBlock

log = logging.getLogger(__name__)


class ShortSWALM(nn.Module):
    """
    Causal LM whose blocks pair a local mixer with a chunked global mixer.

    Input: token ids [B, N]
    Output: hidden states [B, N, D] and next-token logits [B, N, V]
    """

    def __init__(
        self,
        config,
    ) -> None:
        super().__init__()
        self.cfg = config

        # Access model config properly
        model_cfg = config.model if hasattr(config, "model") else config
        validate_model_config(model_cfg)
        self.model_cfg = model_cfg

        local = model_cfg.local_mixer
        glob = model_cfg.global_mixer

        # Embeddings with proper initialization
        self.token_embed = nn.Embedding(model_cfg.vocab_size, model_cfg.d_model)
        nn.init.normal_(self.token_embed.weight, mean=0.0, std=0.02)

        layers = []
        for i, kind in enumerate(layer_local_mixers(model_cfg)):
            layers.append(
                HybridBlock(
                    d_model=model_cfg.d_model,
                    n_heads=model_cfg.n_heads,
                    d_ff=model_cfg.d_ff,
                    d_state=glob.d_state,
                    expand=glob.expand,
                    chunk_size=glob.chunk_size,
                    local_mixer=kind,
                    global_mixer=glob.kind,
                    kernel_size=local.kernel_size,
                    window_size=local.window_size,
                    local_heads=local.n_heads,
                    causal=local.causal,
                    alignment=local.alignment,
                    backend=local.backend,
                    dropout=model_cfg.dropout,
                    layer_idx=i,
                )
            )
        self.layers = nn.ModuleList(layers)
        log.info(
            "Built ShortSWALM: %d layers, local mixers %s, global mixer %s (chunk %d)",
            len(layers),
            layer_local_mixers(model_cfg),
            glob.kind,
            glob.chunk_size,
        )

        # Final layer norm (critical for stable logits!)
        self.final_norm = nn.LayerNorm(model_cfg.d_model)

        # LM head, untied from the embeddings
        self.lm_head = nn.Linear(model_cfg.d_model, model_cfg.vocab_size, bias=False)
        nn.init.normal_(self.lm_head.weight, mean=0.0, std=0.02)

    def allocate_cache(self, batch_size: int) -> InferenceCache:
        return InferenceCache.allocate(batch_size, len(self.layers))

    def forward(
        self,
        input_ids: torch.Tensor,
        cache: Optional[InferenceCache] = None,
    ) -> Dict[str, torch.Tensor]:
        """
        Forward pass.

        Without a cache the whole sequence is processed in parallel. With a
        cache the tokens are fed one at a time and the cache is advanced, so
        a prompt can be prefilled and then extended.

        Returns:
            dict with:
                - "hidden": final hidden states [B, N, D]
                - "logits": next-token logits [B, N, vocab_size]
        """
        B, N = input_ids.shape
        x = self.token_embed(input_ids)  # [B, N, D]

        if cache is None:
            for layer in self.layers:
                x = layer(x)
        else:
            if cache.batch_size != B:
                raise ValueError(
                    f"Cache was allocated for batch size {cache.batch_size}, got {B}"
                )
            steps = []
            for t in range(N):
                h = x[:, t : t + 1]
                for layer, layer_cache in zip(self.layers, cache.layers):
                    h = layer(h, cache=layer_cache)
                steps.append(h)
            x = torch.cat(steps, dim=1)

        x = self.final_norm(x)
        logits = self.lm_head(x)

        return {
            "hidden": x,
            "logits": logits,
        }

    @torch.no_grad()
    def generate(
        self,
        input_ids: torch.Tensor,
        max_new_tokens: int,
        temperature: float = 0.0,
        top_k: Optional[int] = None,
        eos_token_id: Optional[int] = None,
    ) -> torch.Tensor:
        """
        Autoregressive generation through the decoding cache.

        temperature == 0 picks the arg-max token; otherwise tokens are sampled
        from the (optionally top-k filtered) softmax.

        Returns:
            [B, N + generated] token ids
        """
        B = input_ids.shape[0]
        cache = self.allocate_cache(B)
        logits = self(input_ids, cache=cache)["logits"][:, -1]

        tokens = [input_ids]
        finished = torch.zeros(B, dtype=torch.bool, device=input_ids.device)
        for _ in range(max_new_tokens):
            next_token = self._sample(logits, temperature, top_k)
            if eos_token_id is not None:
                next_token = next_token.masked_fill(finished, eos_token_id)
                finished |= next_token == eos_token_id
            tokens.append(next_token.unsqueeze(1))
            if eos_token_id is not None and finished.all():
                break
            logits = self(next_token.unsqueeze(1), cache=cache)["logits"][:, -1]

        return torch.cat(tokens, dim=1)

    @staticmethod
    def _sample(
        logits: torch.Tensor, temperature: float, top_k: Optional[int]
    ) -> torch.Tensor:
        if temperature <= 0.0:
            return logits.argmax(dim=-1)
        logits = logits / temperature
        if top_k is not None:
            kth = torch.topk(logits, min(top_k, logits.size(-1)), dim=-1).values[..., -1:]
            logits = logits.masked_fill(logits < kth, float("-inf"))
        probs = torch.softmax(logits.float(), dim=-1)
        return torch.multinomial(probs, num_samples=1).squeeze(1)
