"""Read-only memory mapping of a raw float32 weight file."""

from __future__ import annotations

import mmap
import os
from typing import BinaryIO, Optional, Union

from .alloc import DATA_TYPE_SIZE, Pointer
from .base import InferenceError


class RawModelData:
    """A weight file mapped into memory, addressed in float32 elements."""

    def __init__(self, file: BinaryIO, weight_data: mmap.mmap) -> None:
        self._file: Optional[BinaryIO] = file
        self.weight_data: Optional[mmap.mmap] = weight_data
        self.file_size = len(weight_data)

    @classmethod
    def open(cls, path: Union[str, os.PathLike]) -> RawModelData:
        """Map the weight file at ``path`` read-only."""
        if not os.fspath(path):
            raise InferenceError("no model weight file")
        try:
            file = open(path, "rb")
        except OSError as exc:
            raise InferenceError(f"failed to open the weight file {path!s}") from exc
        try:
            size = os.fstat(file.fileno()).st_size
            if size == 0:
                raise InferenceError(f"weight file {path!s} is empty")
            mapping = mmap.mmap(file.fileno(), 0, access=mmap.ACCESS_READ)
        except OSError as exc:
            file.close()
            raise InferenceError(f"failed to map the weight file {path!s}") from exc
        except InferenceError:
            file.close()
            raise
        return cls(file, mapping)

    @property
    def closed(self) -> bool:
        return self.weight_data is None

    def weight(self, offset: int) -> Pointer:
        """Return a pointer to float32 element ``offset`` of the file."""
        if self.weight_data is None:
            raise InferenceError("weight file is closed")
        return Pointer(self.weight_data, offset * DATA_TYPE_SIZE)

    def close(self) -> None:
        """Unmap the file and close it."""
        if self.weight_data is not None:
            self.weight_data.close()
            self.weight_data = None
        if self._file is not None:
            self._file.close()
            self._file = None

    def __enter__(self) -> RawModelData:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __del__(self) -> None:
        try:
            self.close()
        except Exception:
            pass

    def __repr__(self) -> str:
        state = "closed" if self.closed else f"{self.file_size} bytes"
        return f"RawModelData({state})"