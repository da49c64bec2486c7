"""Exceptions raised by cudnnbind.

Argument validation uses the builtin `ValueError` and `TypeError` and always
happens before a native call. The classes below cover the two failures that
come from the native side.
"""

from __future__ import annotations

from .types import Status


class CudnnBindError(Exception):
    """Base class for all errors originating from the native library."""


class LibraryNotFoundError(CudnnBindError, OSError):
    """The cuDNN shared library, or one of its entry points, cannot be found."""


class CudnnError(CudnnBindError, RuntimeError):
    """A native call returned a status other than `Status.SUCCESS`.

    Attributes:
        status (Status | int): The status code returned by the library.
            Plain `int` if the code is not one of the known enumerants.
        message (str): The library's description of the status.
        function (str | None): Name of the failing entry point, if known.
    """

    def __init__(self, status: Status | int, message: str = "", function: str | None = None):
        try:
            status = Status(status)
        except ValueError:
            pass
        self.status = status
        self.message = message or getattr(status, "name", str(status))
        self.function = function
        where = f"{function}: " if function else ""
        super().__init__(f"{where}{self.message} (status {int(status)})")


__all__ = [
    "CudnnBindError",
    "CudnnError",
    "LibraryNotFoundError",
]
