"""Shared enumerations and the error type raised across the package."""

from __future__ import annotations

from enum import Enum


class InferenceError(RuntimeError):
    """Raised when an inference component is used in an invalid way."""


class DeviceType(Enum):
    """Where a piece of memory lives."""

    UNKNOWN = 0
    CPU = 1
    CUDA = 2


class MemcpyKind(Enum):
    """Direction of a memory copy between devices."""

    CPU2CPU = 0
    CPU2CUDA = 1
    CUDA2CPU = 2
    CUDA2CUDA = 3

    @classmethod
    def for_devices(cls, src: DeviceType, dst: DeviceType) -> MemcpyKind:
        """Pick the copy direction for moving data from ``src`` to ``dst``."""
        if src is DeviceType.CPU and dst is DeviceType.CPU:
            return cls.CPU2CPU
        if src is DeviceType.CUDA and dst is DeviceType.CPU:
            return cls.CUDA2CPU
        if src is DeviceType.CPU and dst is DeviceType.CUDA:
            return cls.CPU2CUDA
        return cls.CUDA2CUDA