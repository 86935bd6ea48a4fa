"""Hyper-parameters of the supported Llama model."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class LlamaModelConfig:
    """Shape and numeric settings of a Llama decoder."""

    vocab_size: int = 128256
    head_dim: int = 128
    hidden_size: int = 3072
    kv_hidden_size: int = 1024
    intermediate_size: int = 8192
    max_length: int = 1024
    num_hidden_layers: int = 28
    num_attention_heads: int = 24
    num_key_value_heads: int = 8
    rms_norm_eps: float = 1e-05
    rope_theta: float = 100000.0

    @property
    def att_kv_head_group(self) -> int:
        """Number of query heads that share one key/value head."""
        return self.num_attention_heads // self.num_key_value_heads