"""A sized block of device memory that may own or borrow its storage."""

from __future__ import annotations

from typing import Optional

from .alloc import DeviceAllocator, Pointer
from .base import DeviceType, InferenceError, MemcpyKind


class Buffer:
    """Memory of ``byte_size`` bytes, taken from an allocator or supplied by the caller.

    An owned buffer hands its memory back to the allocator when closed or
    collected; an external buffer never does.
    """

    def __init__(
        self,
        byte_size: int = 0,
        allocator: Optional[DeviceAllocator] = None,
        ptr: Optional[Pointer] = None,
        use_external: bool = False,
    ) -> None:
        self.byte_size = byte_size
        self.allocator = allocator
        self.ptr = ptr
        self.use_external = use_external
        self.device_type = DeviceType.UNKNOWN
        if self.ptr is None and self.allocator is not None:
            self.device_type = self.allocator.device_type
            self.use_external = False
            self.ptr = self.allocator.allocate(byte_size)

    @property
    def is_external(self) -> bool:
        """True when the memory belongs to someone else."""
        return self.use_external

    def allocate(self) -> bool:
        """Take fresh memory from the allocator; report whether it succeeded."""
        if self.allocator is None or self.byte_size == 0:
            return False
        self.use_external = False
        self.ptr = self.allocator.allocate(self.byte_size)
        return self.ptr is not None

    def copy_from(self, buffer: Buffer) -> None:
        """Copy as many bytes as both buffers hold from ``buffer`` into this one."""
        if self.allocator is None:
            raise InferenceError("allocator is empty while copying")
        if buffer.ptr is None:
            raise InferenceError("source pointer is empty while copying")
        byte_size = min(self.byte_size, buffer.byte_size)
        kind = MemcpyKind.for_devices(buffer.device_type, self.device_type)
        self.allocator.memcpy(buffer.ptr, self.ptr, byte_size, kind)

    def close(self) -> None:
        """Return owned memory to the allocator."""
        if not self.use_external and self.ptr is not None and self.allocator is not None:
            self.allocator.release(self.ptr)
            self.ptr = None

    def __enter__(self) -> Buffer:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __del__(self) -> None:
        try:
            self.close()
        except Exception:
            pass

    def __repr__(self) -> str:
        return (
            f"Buffer(byte_size={self.byte_size}, device_type={self.device_type.name}, "
            f"external={self.use_external})"
        )