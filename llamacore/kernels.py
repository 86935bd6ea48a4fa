"""Host implementations of the numeric kernels used by the decoder layers.

Every kernel reads its operands through the tensors' memory and writes
its result in place into the output tensor.
"""

from __future__ import annotations

import numpy as np

from .alloc import DATA_TYPE_SIZE
from .base import DeviceType, InferenceError
from .tensor import Tensor

_F32 = np.float32


def _floats(tensor: Tensor, count: int, offset: int = 0) -> np.ndarray:
    """Writable float32 view of ``count`` elements starting at element ``offset``."""
    view = tensor.pointer(offset).view(count * DATA_TYPE_SIZE)
    return np.frombuffer(view, dtype=_F32)


def add_kernel_cpu(input1: Tensor, input2: Tensor, output: Tensor, dim_size: int) -> None:
    """``output = input1 + input2`` over the first ``dim_size`` elements."""
    total = _floats(input1, dim_size) + _floats(input2, dim_size)
    _floats(output, dim_size)[:] = total


def matmul_kernel_cpu(
    input: Tensor,
    weight: Tensor,
    output: Tensor,
    dim0: int,
    dim1: int,
    scale: float = 1.0,
) -> None:
    """Multiply a ``dim0 x dim1`` row-major weight by a vector of ``dim1`` elements."""
    if input.get_dim(0) != dim1:
        raise InferenceError("tensor with wrong dim")
    _floats(output, output.get_dim(0))[:] = 0
    vector = _floats(input, dim1)
    matrix = _floats(weight, dim0 * dim1).reshape(dim0, dim1)
    _floats(output, dim0)[:] = (matrix @ vector) * _F32(scale)


def softmax_kernel_cpu(tensor: Tensor, size: int) -> None:
    """Replace the first ``size`` elements with their softmax, in place."""
    if size <= 0:
        raise InferenceError("softmax needs at least one element")
    values = _floats(tensor, size)
    exps = np.exp(values - values.max())
    values[:] = exps / exps.sum()


def _row_indices(rows: int, row_stride: int, width: int) -> np.ndarray:
    return np.arange(rows)[:, None] * row_stride + np.arange(width)


def attention_output_kernel(
    score: Tensor,
    value: Tensor,
    output: Tensor,
    pos: int,
    head_dim: int,
    kv_hidden_dim: int,
) -> None:
    """Add the score-weighted sum of value rows ``0..pos`` into ``output``."""
    weights = _floats(score, pos + 1)
    span = pos * kv_hidden_dim + head_dim
    values = _floats(value, span)[_row_indices(pos + 1, kv_hidden_dim, head_dim)]
    out = _floats(output, head_dim)
    out += weights @ values


def mha_kernel_cpu(
    query: Tensor,
    score: Tensor,
    key_cache: Tensor,
    value_cache: Tensor,
    mha_out: Tensor,
    layer_index: int,
    pos: int,
    max_seq_len: int,
    head_dim: int,
    hidden_dim: int,
    kv_hidden_dim: int,
    att_kv_head_group: int,
    num_attention_heads: int,
    device_type: DeviceType,
) -> None:
    """Grouped-query attention of one token against cached positions ``0..pos``.

    ``hidden_dim`` is accepted for a uniform kernel signature; the layout is
    fully determined by the head counts and ``head_dim``.
    """
    layer_offset = layer_index * max_seq_len * kv_hidden_dim
    scale = _F32(1.0) / np.sqrt(_F32(head_dim))
    rows = _row_indices(pos + 1, kv_hidden_dim, head_dim)
    span = pos * kv_hidden_dim + head_dim

    for head in range(num_attention_heads):
        kv_offset = layer_offset + (head // att_kv_head_group) * head_dim
        head_query = _floats(query, head_dim, head * head_dim)
        keys = _floats(key_cache, span, kv_offset)[rows]

        score_mat = Tensor([pos + 1], False, None, score.pointer(head * max_seq_len))
        score_mat.set_device_type(device_type)
        _floats(score_mat, pos + 1)[:] = (keys @ head_query) * scale
        softmax_kernel_cpu(score_mat, pos + 1)

        output_mat = Tensor([head_dim], False, None, mha_out.pointer(head * head_dim))
        output_mat.set_device_type(device_type)
        _floats(output_mat, head_dim)[:] = 0

        value_mat = Tensor([head_dim], False, None, value_cache.pointer(kv_offset))
        value_mat.set_device_type(device_type)
        attention_output_kernel(score_mat, value_mat, output_mat, pos, head_dim, kv_hidden_dim)


def rmsnorm_kernel_cpu(
    input: Tensor, weight: Tensor, output: Tensor, hidden_dim_size: int, eps: float
) -> None:
    """Root-mean-square normalisation followed by an element-wise weight."""
    values = _floats(input, hidden_dim_size)
    gains = _floats(weight, hidden_dim_size)
    mean_sq = _F32(np.dot(values, values)) / _F32(hidden_dim_size)
    inv_rms = _F32(1.0) / np.sqrt(mean_sq + _F32(eps))
    _floats(output, hidden_dim_size)[:] = (values * inv_rms) * gains


def rope_cache_cal(
    head_size: int, max_seq_len: int, sin_cache: Tensor, cos_cache: Tensor, rope_theta: float
) -> None:
    """Fill ``max_seq_len x head_size/2`` sine and cosine tables of rotary angles."""
    half = head_size // 2
    exponents = (2 * np.arange(half, dtype=_F32)) / _F32(head_size)
    freqs = _F32(1.0) / np.power(_F32(rope_theta), exponents)
    angles = np.arange(max_seq_len, dtype=_F32)[:, None] * freqs
    _floats(sin_cache, max_seq_len * half)[:] = np.sin(angles).ravel()
    _floats(cos_cache, max_seq_len * half)[:] = np.cos(angles).ravel()


def rope_kernel_cpu(
    input_q: Tensor,
    input_k: Tensor,
    pos_now: Tensor,
    sin_cache: Tensor,
    cos_cache: Tensor,
    dim: int,
    head_size: int,
) -> None:
    """Rotate each head of the query and key in place by the angles of the current position."""
    if head_size <= 0 or dim % head_size:
        raise InferenceError(f"dim {dim} is not a multiple of head size {head_size}")
    position = int(np.frombuffer(pos_now.pointer(0).view(4), dtype=np.int32)[0])
    half = head_size // 2
    base = position * head_size // 2
    sin = _floats(sin_cache, half, base)
    cos = _floats(cos_cache, half, base)

    for tensor in (input_q, input_k):
        vec = _floats(tensor, dim)
        for start in range(0, dim, head_size):
            first = vec[start : start + half].copy()
            second = vec[start + half : start + head_size].copy()
            vec[start : start + half] = first * cos - second * sin
            vec[start + half : start + head_size] = second * cos + first * sin


def swiglu_kernel_cpu(up: Tensor, gate: Tensor, output: Tensor, intermediate_size: int) -> None:
    """``output = up * sigmoid(gate)`` element-wise."""
    gate_values = _floats(gate, intermediate_size)
    with np.errstate(over="ignore"):
        sigmoid = _F32(1.0) / (_F32(1.0) + np.exp(-gate_values))
    _floats(output, intermediate_size)[:] = sigmoid * _floats(up, intermediate_size)