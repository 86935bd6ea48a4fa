"""Layers: named computations over input, output and weight tensors."""

from __future__ import annotations

import copy
import math
from enum import Enum
from typing import Iterable, Optional, Union

from .alloc import DATA_TYPE_SIZE, Pointer
from .base import DeviceType, InferenceError
from .buffer import Buffer
from .tensor import Tensor


class LayerType(Enum):
    """Kinds of network layer used by the decoder."""

    UNKNOWN = 0
    LINEAR = 1
    ENCODE = 2
    EMBEDDING = 3
    RMSNORM = 4
    MATMUL = 5
    ROPE = 6
    MHA = 7
    SOFTMAX = 8
    ADD = 9
    SWIGLU = 10


def _check_index(items: list, idx: int, kind: str) -> int:
    if not 0 <= idx < len(items):
        raise IndexError(f"{kind} index {idx} out of range for {len(items)} slots")
    return idx


def _resize(items: list[Tensor], size: int) -> None:
    if size < 0:
        raise ValueError(f"size must not be negative, got {size}")
    del items[size:]
    items.extend(Tensor() for _ in range(size - len(items)))


class Layer:
    """A computation reading input tensors and writing output tensors.

    Tensors handed to a layer are stored as copies that share memory with
    the originals, so later reshaping of the caller's tensor does not
    affect the layer.
    """

    def __init__(
        self, device_type: DeviceType, layer_type: LayerType, layer_name: str = ""
    ) -> None:
        self.device_type = device_type
        self.layer_type = layer_type
        self.layer_name = layer_name
        self._inputs: list[Tensor] = []
        self._outputs: list[Tensor] = []

    @property
    def input_size(self) -> int:
        return len(self._inputs)

    @property
    def output_size(self) -> int:
        return len(self._outputs)

    def _describe(self) -> str:
        return self.layer_name or type(self).__name__

    def set_input(self, idx: int, tensor: Tensor) -> None:
        self._inputs[_check_index(self._inputs, idx, "input")] = copy.copy(tensor)

    def set_output(self, idx: int, tensor: Tensor) -> None:
        self._outputs[_check_index(self._outputs, idx, "output")] = copy.copy(tensor)

    def get_input(self, idx: int) -> Tensor:
        return self._inputs[_check_index(self._inputs, idx, "input")]

    def get_output(self, idx: int) -> Tensor:
        return self._outputs[_check_index(self._outputs, idx, "output")]

    def reset_input_size(self, size: int) -> None:
        """Grow or shrink the input slots; new slots hold empty tensors."""
        _resize(self._inputs, size)

    def reset_output_size(self, size: int) -> None:
        """Grow or shrink the output slots; new slots hold empty tensors."""
        _resize(self._outputs, size)

    def set_weight(
        self,
        idx: int,
        weight: Union[Tensor, Pointer, None],
        dims: Optional[Iterable[int]] = None,
        device_type: DeviceType = DeviceType.UNKNOWN,
    ) -> None:
        """Layers without parameters accept no weights."""
        raise InferenceError(f"layer {self._describe()} takes no weights")

    def to_cuda(self) -> None:
        """Move every non-empty input and output to device memory."""
        for tensor in (*self._inputs, *self._outputs):
            if not tensor.is_empty():
                tensor.to_cuda()

    def run(self) -> None:
        """Compute the outputs from the inputs currently set."""
        raise InferenceError(f"layer {self._describe()} defines no computation")

    def forward(self, *args: Tensor) -> None:
        """Run the layer, optionally setting inputs first.

        With no arguments the current inputs are used. Otherwise the last
        argument is the output and the ones before it are inputs 0, 1, ...
        """
        if not args:
            self.run()
            return
        if not 2 <= len(args) <= 6:
            raise TypeError(
                f"forward takes no tensors or 1 to 5 inputs and an output, got {len(args)}"
            )
        *inputs, output = args
        for idx, tensor in enumerate(inputs):
            self.set_input(idx, tensor)
        self.set_output(0, output)
        self.run()

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(name={self.layer_name!r}, "
            f"type={self.layer_type.name}, device={self.device_type.name})"
        )


class LayerParam(Layer):
    """A layer that also holds weight tensors."""

    def __init__(
        self, device_type: DeviceType, layer_type: LayerType, layer_name: str = ""
    ) -> None:
        super().__init__(device_type, layer_type, layer_name)
        self._weights: list[Tensor] = []

    @property
    def weight_size(self) -> int:
        return len(self._weights)

    def reset_weight_size(self, size: int) -> None:
        """Grow or shrink the weight slots; new slots hold empty tensors."""
        _resize(self._weights, size)

    def get_weight(self, idx: int) -> Tensor:
        return self._weights[_check_index(self._weights, idx, "weight")]

    def to_cuda(self) -> None:
        """Move inputs, outputs and every weight to device memory."""
        super().to_cuda()
        for weight in self._weights:
            weight.to_cuda()

    def set_weight(
        self,
        idx: int,
        weight: Union[Tensor, Pointer, None],
        dims: Optional[Iterable[int]] = None,
        device_type: DeviceType = DeviceType.UNKNOWN,
    ) -> None:
        """Store weight ``idx``.

        Given a tensor, it must live on this layer's device; an empty tensor
        is ignored. Given a pointer and ``dims``, the memory is borrowed as a
        tensor of that shape, tagged with ``device_type`` when it is known.
        """
        if dims is None:
            if not isinstance(weight, Tensor):
                raise TypeError("a weight without dims must be a Tensor")
            if weight.is_empty():
                return
            if weight.device_type is not self.device_type:
                raise InferenceError("weight device differs from the layer device")
            self._weights[_check_index(self._weights, idx, "weight")] = copy.copy(weight)
            return

        if weight is None:
            raise InferenceError("weight pointer is empty")
        dims = tuple(int(d) for d in dims)
        buffer = Buffer(DATA_TYPE_SIZE * math.prod(dims), None, weight, True)
        if device_type is not DeviceType.UNKNOWN:
            buffer.device_type = device_type
        tensor = Tensor(dims)
        tensor.set_device_type(device_type)
        tensor.assign(buffer)
        self._weights[_check_index(self._weights, idx, "weight")] = tensor