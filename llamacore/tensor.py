"""N-dimensional tensors of 4-byte elements backed by a shared buffer."""

from __future__ import annotations

import logging
import math
from typing import Iterable, Optional, Sequence

import numpy as np

from .alloc import DATA_TYPE_SIZE, DeviceAllocator, Pointer, cpu_allocator, cuda_allocator
from .base import DeviceType, InferenceError, MemcpyKind
from .buffer import Buffer

_log = logging.getLogger(__name__)


def _element_count(dims: Sequence[int]) -> int:
    return math.prod(dims) if dims else 0


class Tensor:
    """A shaped view over a :class:`Buffer`; copies of a tensor share memory."""

    def __init__(
        self,
        dims: Optional[Iterable[int]] = None,
        need_alloc: bool = False,
        alloc: Optional[DeviceAllocator] = None,
        ptr: Optional[Pointer] = None,
    ) -> None:
        self._dims: tuple[int, ...] = ()
        self._size = 0
        self._buffer: Optional[Buffer] = None
        if dims is None:
            return
        self._dims = tuple(int(d) for d in dims)
        self._size = _element_count(self._dims)
        if need_alloc and alloc is not None:
            self.allocate(alloc)
        else:
            self.init_buffer(alloc, need_alloc, ptr)

    @property
    def dims(self) -> tuple[int, ...]:
        return self._dims

    @property
    def size(self) -> int:
        """Number of elements."""
        return self._size

    @property
    def byte_size(self) -> int:
        return DATA_TYPE_SIZE * self._size

    @property
    def buffer(self) -> Optional[Buffer]:
        return self._buffer

    @property
    def device_type(self) -> DeviceType:
        if self._buffer is None:
            return DeviceType.UNKNOWN
        return self._buffer.device_type

    def init_buffer(
        self, alloc: Optional[DeviceAllocator], need_alloc: bool, ptr: Optional[Pointer]
    ) -> None:
        """Wrap ``ptr`` as borrowed memory, or allocate when an allocator is wanted."""
        if alloc is None and not need_alloc:
            self._buffer = Buffer(DATA_TYPE_SIZE * self._size, None, ptr, True)
        else:
            self.allocate(alloc, True)

    def allocate(self, allocator: Optional[DeviceAllocator], need_realloc: bool = False) -> bool:
        """Give the tensor memory from ``allocator`` unless it already has enough."""
        if allocator is None:
            _log.warning("allocator is empty")
            return False
        byte_size = self.byte_size
        if self._buffer is not None and byte_size <= self._buffer.byte_size and not need_realloc:
            return True
        self._buffer = Buffer(byte_size, allocator, None)
        if self._buffer.ptr is None:
            raise InferenceError("the memory allocated is a null pointer")
        return True

    def _move(self, allocator: DeviceAllocator, kind: MemcpyKind) -> None:
        assert self._buffer is not None
        new_buffer = Buffer(self.byte_size, allocator)
        allocator.memcpy(self._buffer.ptr, new_buffer.ptr, self.byte_size, kind)
        self._buffer = new_buffer

    def _require_known_device(self) -> DeviceType:
        if self._buffer is None:
            raise InferenceError("no buffer in tensor")
        device = self.device_type
        if device is DeviceType.UNKNOWN:
            raise InferenceError("the device type of the tensor is unknown")
        return device

    def to_cpu(self) -> None:
        """Move the data to host memory."""
        if self._require_known_device() is DeviceType.CPU:
            _log.info("the device type of the tensor is already cpu")
            return
        self._move(cpu_allocator(), MemcpyKind.CUDA2CPU)

    def to_cuda(self) -> None:
        """Move the data to device memory."""
        if self._require_known_device() is DeviceType.CUDA:
            _log.info("the device type of the tensor is already cuda")
            return
        self._move(cuda_allocator(), MemcpyKind.CPU2CUDA)

    def is_empty(self) -> bool:
        return self._size == 0 or self._buffer is None or self._buffer.ptr is None

    def reshape(self, dims: Iterable[int]) -> None:
        """Change the shape, growing the buffer and keeping its data if needed."""
        dims = tuple(int(d) for d in dims)
        size = _element_count(dims)
        if self._buffer is not None and size > self._size:
            new_buffer = Buffer(size * DATA_TYPE_SIZE, self._buffer.allocator)
            new_buffer.copy_from(self._buffer)
            self._buffer = new_buffer
        self._dims = dims
        self._size = size

    def get_dim(self, idx: int) -> int:
        if idx < 0 or idx >= len(self._dims):
            raise InferenceError(f"dimension index {idx} out of range")
        return self._dims[idx]

    def strides(self) -> list[int]:
        """Element strides of a contiguous row-major layout."""
        if not self._dims:
            return []
        return [math.prod(self._dims[i + 1 :]) for i in range(len(self._dims) - 1)] + [1]

    def assign(self, buffer: Optional[Buffer]) -> bool:
        """Point the tensor at ``buffer`` if it is compatible and large enough."""
        if buffer is None:
            _log.warning("the buffer given to assign is empty")
            return False
        if self._buffer is not None and self._buffer.device_type is not buffer.device_type:
            _log.warning("the device type of the new buffer differs from the original one")
            return False
        if self.byte_size > buffer.byte_size:
            _log.warning("the buffer is too small for the tensor")
            return False
        self._buffer = buffer
        return True

    def reset(self, dims: Iterable[int]) -> None:
        """Set a new shape and drop the buffer."""
        self._dims = tuple(int(d) for d in dims)
        self._size = _element_count(self._dims)
        self._buffer = None

    def set_device_type(self, device_type: DeviceType) -> None:
        if self._buffer is not None:
            self._buffer.device_type = device_type

    def pointer(self, index: int = 0) -> Pointer:
        """Return a pointer to element ``index`` of the underlying memory."""
        if self._buffer is None or self._buffer.ptr is None:
            raise InferenceError("tensor has no memory")
        return self._buffer.ptr.offset_by(index * DATA_TYPE_SIZE)

    def array(self, dtype=np.float32) -> np.ndarray:
        """Return a writable flat array sharing the tensor's memory."""
        if self._buffer is None or self._buffer.ptr is None:
            raise InferenceError("tensor has no memory")
        dtype = np.dtype(dtype)
        view = self._buffer.ptr.view(self._size * dtype.itemsize)
        return np.frombuffer(view, dtype=dtype)

    def _check_offset(self, offset: int) -> None:
        if offset < 0 or offset >= self._size:
            raise InferenceError(f"index {offset} out of range for {self._size} elements")

    def get(self, offset: int, dtype=np.float32):
        """Read element ``offset`` as a Python number."""
        self._check_offset(offset)
        return self.array(dtype)[offset].item()

    def set(self, offset: int, value, dtype=np.float32) -> None:
        """Write ``value`` into element ``offset``."""
        self._check_offset(offset)
        self.array(dtype)[offset] = value

    def clone(self) -> Tensor:
        """Return a tensor of the same shape with its own copy of the data."""
        if self._buffer is None:
            raise InferenceError("no buffer in tensor")
        new_tensor = Tensor()
        new_tensor._dims = self._dims
        new_tensor._size = self._size
        new_tensor._buffer = Buffer(self.byte_size, self._buffer.allocator)
        new_tensor._buffer.copy_from(self._buffer)
        return new_tensor

    def __repr__(self) -> str:
        return f"Tensor(dims={self._dims}, device_type={self.device_type.name})"


def slice_kv_cache(
    layer_idx: int,
    pos: int,
    max_seq_len: int,
    dim: int,
    key_cache: Tensor,
    value_cache: Tensor,
) -> tuple[Tensor, Tensor]:
    """Return key and value tensors viewing one position of one layer's cache."""
    cache_offset = layer_idx * max_seq_len * dim + pos * dim
    key = Tensor([dim], False, None, key_cache.pointer(cache_offset))
    value = Tensor([dim], False, None, value_cache.pointer(cache_offset))
    return key, value