"""Host and device memory allocators with a block-caching device pool.

Device memory is simulated with host byte arrays; the caching allocator
keeps the same splitting, best-fit reuse and coalescing behaviour as a
real device pool.
"""

from __future__ import annotations

import functools
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Iterator, Optional

from sortedcontainers import SortedKeyList

from .base import DeviceType, InferenceError, MemcpyKind

DATA_TYPE_SIZE = 4
MIN_BLOCK_SIZE = 512
SMALL_SIZE = 1048576
SMALL_BUFFER = 2097152
LARGE_BUFFER = 20971520


def round_size(size: int) -> int:
    """Round a request up to a multiple of the minimum block size."""
    if size < MIN_BLOCK_SIZE:
        return MIN_BLOCK_SIZE
    return MIN_BLOCK_SIZE * ((size + MIN_BLOCK_SIZE - 1) // MIN_BLOCK_SIZE)


class Pointer:
    """A byte offset into a block of memory."""

    __slots__ = ("memory", "offset")

    def __init__(self, memory: bytearray, offset: int = 0) -> None:
        if not 0 <= offset <= len(memory):
            raise InferenceError(f"offset {offset} outside memory of {len(memory)} bytes")
        self.memory = memory
        self.offset = offset

    @property
    def nbytes(self) -> int:
        """Bytes available from this pointer to the end of its memory."""
        return len(self.memory) - self.offset

    def offset_by(self, nbytes: int) -> Pointer:
        """Return a pointer ``nbytes`` further into the same memory."""
        return Pointer(self.memory, self.offset + nbytes)

    def view(self, nbytes: int) -> memoryview:
        """Return a writable view of ``nbytes`` bytes starting here."""
        if nbytes < 0 or nbytes > self.nbytes:
            raise InferenceError(
                f"view of {nbytes} bytes exceeds the {self.nbytes} bytes available"
            )
        return memoryview(self.memory)[self.offset : self.offset + nbytes]

    def _sort_key(self) -> tuple[int, int]:
        return (id(self.memory), self.offset)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Pointer):
            return NotImplemented
        return self.memory is other.memory and self.offset == other.offset

    def __hash__(self) -> int:
        return hash(self._sort_key())

    def __repr__(self) -> str:
        return f"Pointer(memory=0x{id(self.memory):x}, offset={self.offset})"


class DeviceAllocator(ABC):
    """Allocates, releases, copies and clears memory on one device."""

    def __init__(self, device_type: DeviceType) -> None:
        self.device_type = device_type

    @abstractmethod
    def allocate(self, byte_size: int) -> Optional[Pointer]:
        """Return a pointer to ``byte_size`` fresh bytes."""

    @abstractmethod
    def release(self, ptr: Optional[Pointer]) -> None:
        """Give memory obtained from :meth:`allocate` back."""

    def memcpy(
        self,
        src_ptr: Optional[Pointer],
        dst_ptr: Optional[Pointer],
        byte_size: int,
        memcpy_kind: MemcpyKind,
    ) -> None:
        """Copy ``byte_size`` bytes from ``src_ptr`` to ``dst_ptr``."""
        if src_ptr is None or dst_ptr is None:
            raise InferenceError("pointer is empty")
        MemcpyKind(memcpy_kind)
        data = bytes(src_ptr.view(byte_size))
        dst_ptr.view(byte_size)[:] = data

    def memset_zero(self, ptr: Optional[Pointer], byte_size: int) -> None:
        """Fill ``byte_size`` bytes at ``ptr`` with zeros."""
        if ptr is None:
            raise InferenceError("pointer is empty")
        if self.device_type is DeviceType.UNKNOWN:
            raise InferenceError("device type unknown")
        ptr.view(byte_size)[:] = bytes(byte_size)


class CPUDeviceAllocator(DeviceAllocator):
    """Host memory allocator."""

    def __init__(self) -> None:
        super().__init__(DeviceType.CPU)

    def allocate(self, byte_size: int) -> Optional[Pointer]:
        if not byte_size:
            return None
        return Pointer(bytearray(byte_size))

    def release(self, ptr: Optional[Pointer]) -> None:
        """Host memory is reclaimed once no pointer refers to it."""
        if ptr is not None and not isinstance(ptr, Pointer):
            raise TypeError(f"expected a Pointer, got {type(ptr).__name__}")


@dataclass(eq=False)
class MemBlock:
    """A contiguous piece of a device segment, free or in use."""

    ptr: Pointer
    size: int
    allocated: bool = False
    prev: Optional[MemBlock] = field(default=None, repr=False)
    next: Optional[MemBlock] = field(default=None, repr=False)


def _block_key(block: MemBlock) -> tuple:
    return (block.size, block.ptr._sort_key())


class MemBlockPool:
    """Free blocks ordered by size, then by address."""

    def __init__(self) -> None:
        self._blocks = SortedKeyList(key=_block_key)

    def insert(self, block: MemBlock) -> None:
        if block not in self._blocks:
            self._blocks.add(block)

    def find_best_fit(self, size: int) -> Optional[MemBlock]:
        """Return the smallest block holding at least ``size`` bytes."""
        index = self._blocks.bisect_key_left((size,))
        if index < len(self._blocks):
            return self._blocks[index]
        return None

    def erase(self, block: MemBlock) -> None:
        self._blocks.discard(block)

    def __len__(self) -> int:
        return len(self._blocks)

    def __iter__(self) -> Iterator[MemBlock]:
        return iter(list(self._blocks))

    def __contains__(self, block: object) -> bool:
        return block in self._blocks


class CUDADeviceAllocator(DeviceAllocator):
    """Caching device allocator that splits segments and merges freed blocks."""

    def __init__(self) -> None:
        super().__init__(DeviceType.CUDA)
        self._lock = threading.Lock()
        self.small_blocks = MemBlockPool()
        self.large_blocks = MemBlockPool()
        self.allocated_blocks: dict[Pointer, MemBlock] = {}

    def allocate(self, byte_size: int) -> Pointer:
        return self._malloc(round_size(byte_size))

    def release(self, ptr: Optional[Pointer]) -> None:
        with self._lock:
            block = self.allocated_blocks.pop(ptr, None) if ptr is not None else None
            if block is None:
                return
            block.allocated = False
            self._merge(block)

    def release_cached_memory(self) -> None:
        """Drop free blocks that span a whole segment."""
        with self._lock:
            self._release_cached_memory()

    def _pool_for(self, size: int) -> MemBlockPool:
        return self.small_blocks if size <= SMALL_SIZE else self.large_blocks

    def _malloc(self, size: int) -> Pointer:
        with self._lock:
            pool = self._pool_for(size)
            if size <= SMALL_SIZE:
                alloc_size = SMALL_BUFFER
            elif size <= 10 * SMALL_SIZE:
                alloc_size = LARGE_BUFFER
            else:
                alloc_size = -(-size // SMALL_BUFFER) * SMALL_BUFFER

            block = pool.find_best_fit(size)
            if block is not None:
                pool.erase(block)
                return self._split(block, size)
            return self._allocate_new_block(size, alloc_size)

    def _split(self, block: MemBlock, size: int) -> Pointer:
        if block.size - size >= MIN_BLOCK_SIZE:
            remaining = MemBlock(
                block.ptr.offset_by(size), block.size - size, prev=block, next=block.next
            )
            if block.next is not None:
                block.next.prev = remaining
            block.next = remaining
            block.size = size
            self._pool_for(remaining.size).insert(remaining)

        block.allocated = True
        self.allocated_blocks[block.ptr] = block
        return block.ptr

    def _allocate_new_block(self, req_size: int, alloc_size: int) -> Pointer:
        try:
            memory = bytearray(alloc_size)
        except MemoryError:
            self._release_cached_memory()
            memory = bytearray(alloc_size)
        return self._split(MemBlock(Pointer(memory), alloc_size), req_size)

    def _release_cached_memory(self) -> None:
        for pool in (self.small_blocks, self.large_blocks):
            for block in pool:
                if not block.allocated and block.prev is None and block.next is None:
                    pool.erase(block)

    def _merge(self, block: MemBlock) -> None:
        while block.prev is not None and not block.prev.allocated:
            prev = block.prev
            self._pool_for(prev.size).erase(prev)
            self._pool_for(block.size).erase(block)
            prev.size += block.size
            prev.next = block.next
            if block.next is not None:
                block.next.prev = prev
            block = prev

        while block.next is not None and not block.next.allocated:
            nxt = block.next
            self._pool_for(block.size).erase(block)
            self._pool_for(nxt.size).erase(nxt)
            block.size += nxt.size
            block.next = nxt.next
            if nxt.next is not None:
                nxt.next.prev = block

        self._pool_for(block.size).insert(block)


@functools.lru_cache(maxsize=None)
def cpu_allocator() -> CPUDeviceAllocator:
    """Return the shared host allocator."""
    return CPUDeviceAllocator()


@functools.lru_cache(maxsize=None)
def cuda_allocator() -> CUDADeviceAllocator:
    """Return the shared device allocator."""
    return CUDADeviceAllocator()