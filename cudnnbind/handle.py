"""The native library and the cuDNN handles operations run on.

A `Handle` wraps one `cudnnHandle_t`. Every operation accepts an explicit
`handle=` keyword; without one it runs on the process-wide default handle,
which is created on first use and released at interpreter exit.
"""

from __future__ import annotations

import logging
import weakref
from types import TracebackType
from typing import TYPE_CHECKING, Any, Self

from .backend import load_library

if TYPE_CHECKING:
    from .descriptors import ConvolutionDescriptor

logger = logging.getLogger(__name__)


_LIBRARY: Any = None
_DEFAULT_HANDLE: Handle | None = None
# True while _DEFAULT_HANDLE was created here rather than installed by a caller
_OWNS_DEFAULT_HANDLE = False


def get_library() -> Any:
    """Get the native library, loading it on first use.

    Raises:
        LibraryNotFoundError: If the library cannot be loaded.

    Returns:
        Any: The active `LibCudnn` (or a replacement installed with
            `set_library`).
    """
    global _LIBRARY
    if _LIBRARY is None:
        _LIBRARY = load_library()
    return _LIBRARY


def set_library(lib: Any) -> None:
    """Install `lib` as the native library for all later operations.

    `lib` must implement the methods of `LibCudnn`. A default handle created
    by `get_default_handle` is closed; one installed with
    `set_default_handle` is dropped but left open for its owner.

    Args:
        lib (Any): The replacement library, or None to reload the system
            library on next use.
    """
    global _LIBRARY, _DEFAULT_HANDLE, _OWNS_DEFAULT_HANDLE
    if _DEFAULT_HANDLE is not None and _OWNS_DEFAULT_HANDLE:
        _DEFAULT_HANDLE.close()
    _DEFAULT_HANDLE = None
    _OWNS_DEFAULT_HANDLE = False
    _LIBRARY = lib
    logger.debug(f"Native library set to {lib!r}")


class Handle:
    """A cuDNN library context.

    Created from the library on construction and released exactly once,
    either by `close()`, by leaving a `with` block, or when the object is
    garbage collected or the interpreter exits.

    Attributes:
        lib (Any): The library the handle belongs to.
        ptr (int): The raw `cudnnHandle_t`.
    """

    def __init__(self, lib: Any = None) -> None:
        self.lib = get_library() if lib is None else lib
        self.ptr: int = self.lib.create_handle()
        self._finalizer = weakref.finalize(self, self.lib.destroy_handle, self.ptr)
        self._default_convolution: ConvolutionDescriptor | None = None
        logger.debug(f"Created cudnn handle {self.ptr:#x}")

    @property
    def default_convolution(self) -> ConvolutionDescriptor:
        """The convolution descriptor used when an operation is given none.

        Zero padding, unit stride and upscale, `ConvolutionMode.CONVOLUTION`.
        Created on first access and released together with the handle.
        """
        if self._default_convolution is None:
            from .descriptors import ConvolutionDescriptor

            self._default_convolution = ConvolutionDescriptor(lib=self.lib)
        return self._default_convolution

    @property
    def closed(self) -> bool:
        return not self._finalizer.alive

    def close(self) -> None:
        """Release the native handle. Calling it again does nothing."""
        if self._default_convolution is not None:
            self._default_convolution.close()
        if self._finalizer.alive:
            logger.debug(f"Destroying cudnn handle {self.ptr:#x}")
        self._finalizer()

    def __int__(self) -> int:
        return self.ptr

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self.closed else f"{self.ptr:#x}"
        return f"Handle({state})"


def get_default_handle() -> Handle:
    """Get the process-wide handle, creating it on first use."""
    global _DEFAULT_HANDLE, _OWNS_DEFAULT_HANDLE
    if _DEFAULT_HANDLE is None or _DEFAULT_HANDLE.closed:
        _DEFAULT_HANDLE = Handle()
        _OWNS_DEFAULT_HANDLE = True
        logger.debug("Created default cudnn handle")
    return _DEFAULT_HANDLE


def set_default_handle(handle: Handle | None) -> None:
    """Replace the process-wide handle.

    The previous default handle is not closed; its owner decides when.

    Args:
        handle (Handle | None): The new default, or None to create a fresh
            one on next use.
    """
    global _DEFAULT_HANDLE, _OWNS_DEFAULT_HANDLE
    _DEFAULT_HANDLE = handle
    _OWNS_DEFAULT_HANDLE = False


def resolve_handle(handle: Handle | None) -> Handle:
    """Return `handle`, or the default handle if it is None.

    Raises:
        ValueError: If `handle` has been closed.
    """
    if handle is None:
        return get_default_handle()
    if handle.closed:
        raise ValueError(f"{handle!r} is closed")
    return handle


__all__ = [
    "Handle",
    "get_default_handle",
    "get_library",
    "resolve_handle",
    "set_default_handle",
    "set_library",
]
