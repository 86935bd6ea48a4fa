"""The concrete decoder layers: add, argmax, matmul, attention, norm, rotary and SwiGLU."""

from __future__ import annotations

import numpy as np

from .base import DeviceType, InferenceError
from .kernels import (
    add_kernel_cpu,
    matmul_kernel_cpu,
    mha_kernel_cpu,
    rmsnorm_kernel_cpu,
    rope_kernel_cpu,
    swiglu_kernel_cpu,
)
from .layer import Layer, LayerParam, LayerType
from .tensor import Tensor


def _require_host(device_type: DeviceType, name: str) -> None:
    """Only host kernels are available; reject every other device."""
    if device_type is DeviceType.CPU:
        return
    if device_type is DeviceType.CUDA:
        raise InferenceError(f"{name}: no device kernel is available")
    raise InferenceError(f"{name}: device type error")


class VecAddLayer(Layer):
    """Element-wise sum of two vectors of ``dim_size`` elements."""

    def __init__(self, device_type: DeviceType, dim_size: int) -> None:
        super().__init__(device_type, LayerType.ADD, "Add")
        self.dim_size = dim_size
        self.reset_input_size(2)
        self.reset_output_size(1)

    def run(self) -> None:
        _require_host(self.device_type, self._describe())
        add_kernel_cpu(self.get_input(0), self.get_input(1), self.get_output(0), self.dim_size)


class ArgmaxLayer:
    """Writes the index of the largest logit into an int32 tensor."""

    def __init__(self, device_type: DeviceType, hidden_dim_size: int) -> None:
        self.device_type = device_type
        self.hidden_dim_size = hidden_dim_size

    def forward(self, logits: Tensor, input_idx: Tensor) -> None:
        """Store the position of the first maximum of ``logits`` in ``input_idx[0]``."""
        if self.device_type is not DeviceType.CPU:
            raise InferenceError("argmax: wrong device")
        values = logits.array(np.float32)[: self.hidden_dim_size]
        if values.size == 0:
            raise InferenceError("argmax: no logits")
        input_idx.set(0, int(np.argmax(values)), np.int32)

    def __repr__(self) -> str:
        return f"ArgmaxLayer(device={self.device_type.name}, size={self.hidden_dim_size})"


class MatmulLayer(LayerParam):
    """Multiplies a ``dim0 x dim1`` weight matrix by an input vector."""

    def __init__(self, device_type: DeviceType, dim0: int, dim1: int) -> None:
        super().__init__(device_type, LayerType.MATMUL, "Matmul")
        self.dim0 = dim0
        self.dim1 = dim1
        self.reset_input_size(1)
        self.reset_weight_size(1)
        self.reset_output_size(1)

    def run(self) -> None:
        _require_host(self.device_type, self._describe())
        matmul_kernel_cpu(
            self.get_input(0), self.get_weight(0), self.get_output(0), self.dim0, self.dim1
        )


class MultiHeadAttention(Layer):
    """Grouped-query attention of the current token over the key/value cache.

    Inputs are the query, the score scratch space, the key cache and the
    value cache; the output receives the concatenated head outputs.
    """

    def __init__(
        self,
        device_type: DeviceType,
        max_seq_len: int,
        head_dim: int,
        num_attention_heads: int,
        num_key_value_heads: int,
    ) -> None:
        super().__init__(device_type, LayerType.MHA, "MultiHeadAttention")
        if num_key_value_heads <= 0:
            raise InferenceError("number of key/value heads must be positive")
        self.max_seq_len = max_seq_len
        self.head_dim = head_dim
        self.num_attention_heads = num_attention_heads
        self.num_key_value_heads = num_key_value_heads
        self.hidden_dim = num_attention_heads * head_dim
        self.kv_hidden_dim = num_key_value_heads * head_dim
        self.att_kv_head_group = num_attention_heads // num_key_value_heads
        self._pos = 0
        self._layer_index = 0
        self.reset_input_size(4)
        self.reset_output_size(1)

    @property
    def pos(self) -> int:
        return self._pos

    @property
    def layer_index(self) -> int:
        return self._layer_index

    def set_pos(self, pos: int) -> None:
        """Set the position of the token being processed."""
        self._pos = pos

    def set_layer_index(self, index: int) -> None:
        """Select which decoder layer's slice of the cache to attend over."""
        self._layer_index = index

    def run(self) -> None:
        _require_host(self.device_type, self._describe())
        mha_kernel_cpu(
            self.get_input(0),
            self.get_input(1),
            self.get_input(2),
            self.get_input(3),
            self.get_output(0),
            self._layer_index,
            self._pos,
            self.max_seq_len,
            self.head_dim,
            self.hidden_dim,
            self.kv_hidden_dim,
            self.att_kv_head_group,
            self.num_attention_heads,
            self.device_type,
        )


class RmsNormLayer(LayerParam):
    """Root-mean-square normalisation scaled by a learned weight."""

    def __init__(self, device_type: DeviceType, hidden_dim_size: int, eps: float) -> None:
        super().__init__(device_type, LayerType.RMSNORM, "RMSNorm")
        self.hidden_dim_size = hidden_dim_size
        self.eps = eps
        self.reset_input_size(1)
        self.reset_output_size(1)
        self.reset_weight_size(1)

    def run(self) -> None:
        _require_host(self.device_type, self._describe())
        rmsnorm_kernel_cpu(
            self.get_input(0),
            self.get_weight(0),
            self.get_output(0),
            self.hidden_dim_size,
            self.eps,
        )


class RoPELayer(Layer):
    """Rotary position embedding applied in place to query and key.

    Inputs are the query, the key, the position and the sine table; the
    cosine table occupies the output slot.
    """

    def __init__(self, device_type: DeviceType, hidden_dim_size: int, head_dim: int) -> None:
        super().__init__(device_type, LayerType.ROPE, "RoPE")
        self.hidden_dim_size = hidden_dim_size
        self.head_dim = head_dim
        self.reset_input_size(4)
        self.reset_output_size(1)

    def run(self) -> None:
        _require_host(self.device_type, self._describe())
        rope_kernel_cpu(
            self.get_input(0),
            self.get_input(1),
            self.get_input(2),
            self.get_input(3),
            self.get_output(0),
            self.hidden_dim_size,
            self.head_dim,
        )


class SwigluLayer(Layer):
    """Gated activation: ``up * sigmoid(gate)``."""

    def __init__(self, device_type: DeviceType, intermediate_size: int) -> None:
        super().__init__(device_type, LayerType.SWIGLU, "SwiGLU")
        self.intermediate_size = intermediate_size
        self.reset_input_size(2)
        self.reset_output_size(1)

    def run(self) -> None:
        _require_host(self.device_type, self._describe())
        swiglu_kernel_cpu(
            self.get_input(0), self.get_input(1), self.get_output(0), self.intermediate_size
        )