"""Owners of the native tensor, filter, pooling and convolution descriptors.

Every descriptor is created and configured in its constructor. Arguments
are validated before the native handle is allocated, and a handle whose
configuration fails is released on the spot. Release is tied to
`weakref.finalize`, so it happens exactly once, whichever comes first:
`close()`, the end of a `with` block, garbage collection or interpreter
exit.

Operations build tensor and filter descriptors per call and release them
before returning. Pooling and convolution descriptors are built by the
caller and reused across calls.
"""

from __future__ import annotations

import logging
import operator
import weakref
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from types import TracebackType
from typing import Any, ClassVar, Self

from .backend import data_type_of
from .handle import get_library
from .shapes import tensor_size_of
from .types import ConvolutionMode, DataType, PoolingMode, enumerant

logger = logging.getLogger(__name__)

# CUDNN_DIM_MAX
MAX_DIMS = 8


def _as_dims(value: int | Sequence[int], ndims: int, name: str) -> tuple[int, ...]:
    """Expand a single int to `ndims` copies, or convert a sequence to a tuple of ints."""
    try:
        if isinstance(value, Iterable):
            return tuple(operator.index(v) for v in value)
        return (operator.index(value),) * ndims
    except TypeError:
        raise TypeError(f"{name} must be an int or a sequence of ints, got {value!r}") from None


def _check_rank(dims: Sequence[int], name: str) -> None:
    if not 1 <= len(dims) <= MAX_DIMS:
        raise ValueError(f"{name} must have between 1 and {MAX_DIMS} entries, got {len(dims)}")


def _check_at_least(dims: Sequence[int], minimum: int, name: str) -> None:
    if any(d < minimum for d in dims):
        raise ValueError(f"{name} entries must be at least {minimum}, got {dims}")


class Descriptor:
    """Base class tying a native descriptor handle to a Python object.

    Subclasses name the library's create and destroy methods and call
    `_configure` once the handle exists.

    Attributes:
        lib (Any): The library the descriptor was created with.
        ptr (int): The raw descriptor handle.
    """

    _create: ClassVar[str]
    _destroy: ClassVar[str]

    def __init__(self, lib: Any = None) -> None:
        self.lib = get_library() if lib is None else lib
        self.ptr: int = getattr(self.lib, self._create)()
        self._finalizer = weakref.finalize(self, getattr(self.lib, self._destroy), self.ptr)

    def _configure(self, setter: Callable[..., None], *args: Any) -> None:
        """Run the native set call, releasing the handle if it fails."""
        try:
            setter(self.ptr, *args)
        except BaseException:
            logger.debug(f"Configuring {type(self).__name__} failed, releasing {self.ptr:#x}")
            self.close()
            raise

    @property
    def closed(self) -> bool:
        return not self._finalizer.alive

    def close(self) -> None:
        """Release the native handle. Calling it again does nothing."""
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


@dataclass(frozen=True)
class TensorDescriptorInfo:
    data_type: DataType
    dims: tuple[int, ...]
    strides: tuple[int, ...]


@dataclass(frozen=True)
class FilterDescriptorInfo:
    data_type: DataType
    dims: tuple[int, ...]


@dataclass(frozen=True)
class PoolingDescriptorInfo:
    mode: PoolingMode
    window: tuple[int, ...]
    padding: tuple[int, ...]
    stride: tuple[int, ...]


@dataclass(frozen=True)
class ConvolutionDescriptorInfo:
    padding: tuple[int, ...]
    stride: tuple[int, ...]
    upscale: tuple[int, ...]
    mode: ConvolutionMode


class TensorDescriptor(Descriptor):
    """Element type, extents and strides of a tensor, in native order.

    Args:
        dtype (Any): float32 or float64.
        dims (Sequence[int]): Extent of each dimension.
        strides (Sequence[int]): Stride of each dimension, in elements.
        lib (Any): The native library. Defaults to the active one.

    Raises:
        TypeError: If `dtype` is not supported.
        ValueError: If `dims` and `strides` differ in length or the rank
            is out of range.
    """

    _create = "create_tensor_descriptor"
    _destroy = "destroy_tensor_descriptor"

    def __init__(
        self,
        dtype: Any,
        dims: Sequence[int],
        strides: Sequence[int],
        lib: Any = None,
    ) -> None:
        data_type = data_type_of(dtype)
        dims = tuple(int(d) for d in dims)
        strides = tuple(int(s) for s in strides)
        _check_rank(dims, "dims")
        if len(dims) != len(strides):
            raise ValueError(
                f"dims and strides must have the same length, got {len(dims)} and {len(strides)}"
            )

        super().__init__(lib)
        self.data_type = data_type
        self.dims = dims
        self.strides = strides
        self._configure(self.lib.set_tensor_nd_descriptor, data_type, dims, strides)

    @classmethod
    def from_array(cls, array: Any, ndims: int | None = None, lib: Any = None) -> TensorDescriptor:
        """Describe `array`, fitted to `ndims` dimensions (default: its own rank)."""
        dims, strides = tensor_size_of(array, ndims)
        return cls(array.dtype, dims, strides, lib)

    def query(self, nb_dims_requested: int = MAX_DIMS) -> TensorDescriptorInfo:
        """Read the descriptor back from the library."""
        data_type, dims, strides = self.lib.get_tensor_nd_descriptor(self.ptr, nb_dims_requested)
        return TensorDescriptorInfo(DataType(data_type), tuple(dims), tuple(strides))

    def __repr__(self) -> str:
        return f"TensorDescriptor({self.data_type.name}, dims={self.dims}, strides={self.strides})"


class FilterDescriptor(Descriptor):
    """Element type and extents of a convolution filter.

    Filters carry no strides: the library assumes a dense `(K, C, H, W)`
    layout.
    """

    _create = "create_filter_descriptor"
    _destroy = "destroy_filter_descriptor"

    def __init__(self, dtype: Any, dims: Sequence[int], lib: Any = None) -> None:
        data_type = data_type_of(dtype)
        dims = tuple(int(d) for d in dims)
        _check_rank(dims, "dims")

        super().__init__(lib)
        self.data_type = data_type
        self.dims = dims
        self._configure(self.lib.set_filter_nd_descriptor, data_type, dims)

    @classmethod
    def from_array(cls, array: Any, ndims: int | None = None, lib: Any = None) -> FilterDescriptor:
        """Describe `array` as a filter. Its strides are ignored."""
        dims, _ = tensor_size_of(array, ndims)
        return cls(array.dtype, dims, lib)

    def query(self, nb_dims_requested: int = MAX_DIMS) -> FilterDescriptorInfo:
        """Read the descriptor back from the library."""
        data_type, dims = self.lib.get_filter_nd_descriptor(self.ptr, nb_dims_requested)
        return FilterDescriptorInfo(DataType(data_type), tuple(dims))

    def __repr__(self) -> str:
        return f"FilterDescriptor({self.data_type.name}, dims={self.dims})"


class PoolingDescriptor(Descriptor):
    """A pooling window with its padding, stride and mode.

    For output position `p` along a spatial dimension, the window covers
    input positions `[p*stride - padding, p*stride - padding + window)`,
    truncated at the input's borders.

    Args:
        window (int | Sequence[int]): Window extent per spatial dimension.
            A single int means a square 2-D window.
        padding (int | Sequence[int] | None): Padding per spatial dimension.
            Defaults to zero.
        stride (int | Sequence[int] | None): Stride per spatial dimension.
            Defaults to the window, i.e. non-overlapping windows.
        mode (PoolingMode): Defaults to `PoolingMode.MAX`.
        lib (Any): The native library. Defaults to the active one.

    Raises:
        ValueError: If `mode` is not a pooling mode, the window, padding
            and stride differ in length, or a window or stride entry is
            below 1 or a padding entry below 0.
    """

    _create = "create_pooling_descriptor"
    _destroy = "destroy_pooling_descriptor"

    def __init__(  # noqa: PLR0913
        self,
        window: int | Sequence[int],
        *,
        padding: int | Sequence[int] | None = None,
        stride: int | Sequence[int] | None = None,
        mode: PoolingMode = PoolingMode.MAX,
        lib: Any = None,
    ) -> None:
        mode = enumerant(mode, PoolingMode)
        window = _as_dims(window, 2, "window")
        if padding is None:
            padding = (0,) * len(window)
        else:
            padding = _as_dims(padding, len(window), "padding")
        stride = window if stride is None else _as_dims(stride, len(window), "stride")
        _check_rank(window, "window")
        if not len(window) == len(padding) == len(stride):
            raise ValueError(
                "window, padding and stride must have the same length, got "
                f"{window}, {padding} and {stride}"
            )
        _check_at_least(window, 1, "window")
        _check_at_least(padding, 0, "padding")
        _check_at_least(stride, 1, "stride")

        super().__init__(lib)
        self.window = window
        self.padding = padding
        self.stride = stride
        self.mode = mode
        self._configure(self.lib.set_pooling_nd_descriptor, mode, window, padding, stride)

    def query(self) -> PoolingDescriptorInfo:
        """Read the descriptor back from the library."""
        mode, window, padding, stride = self.lib.get_pooling_nd_descriptor(
            self.ptr, len(self.window)
        )
        return PoolingDescriptorInfo(
            PoolingMode(mode), tuple(window), tuple(padding), tuple(stride)
        )

    def __repr__(self) -> str:
        return (
            f"PoolingDescriptor({self.window}, padding={self.padding}, "
            f"stride={self.stride}, mode={self.mode.name})"
        )


class ConvolutionDescriptor(Descriptor):
    """Padding, filter stride, upscale and mode of a convolution.

    Args:
        padding (int | Sequence[int]): Zero padding per spatial dimension.
            Defaults to `(0, 0)`. A single int means 2-D.
        stride (int | Sequence[int] | None): Filter stride. Defaults to ones.
        upscale (int | Sequence[int] | None): Upscale factor. Defaults to ones.
        mode (ConvolutionMode): Defaults to `ConvolutionMode.CONVOLUTION`,
            which flips the filter; `CROSS_CORRELATION` does not.
        lib (Any): The native library. Defaults to the active one.

    Raises:
        ValueError: If `mode` is not a convolution mode, the tuples differ
            in length, or a stride or upscale entry is below 1 or a padding
            entry below 0.
    """

    _create = "create_convolution_descriptor"
    _destroy = "destroy_convolution_descriptor"

    def __init__(  # noqa: PLR0913
        self,
        *,
        padding: int | Sequence[int] = (0, 0),
        stride: int | Sequence[int] | None = None,
        upscale: int | Sequence[int] | None = None,
        mode: ConvolutionMode = ConvolutionMode.CONVOLUTION,
        lib: Any = None,
    ) -> None:
        mode = enumerant(mode, ConvolutionMode)
        padding = _as_dims(padding, 2, "padding")
        ones = (1,) * len(padding)
        stride = ones if stride is None else _as_dims(stride, len(padding), "stride")
        upscale = ones if upscale is None else _as_dims(upscale, len(padding), "upscale")
        _check_rank(padding, "padding")
        if not len(padding) == len(stride) == len(upscale):
            raise ValueError(
                "padding, stride and upscale must have the same length, got "
                f"{padding}, {stride} and {upscale}"
            )
        _check_at_least(padding, 0, "padding")
        _check_at_least(stride, 1, "stride")
        _check_at_least(upscale, 1, "upscale")

        super().__init__(lib)
        self.padding = padding
        self.stride = stride
        self.upscale = upscale
        self.mode = mode
        self._configure(self.lib.set_convolution_nd_descriptor, padding, stride, upscale, mode)

    def query(self) -> ConvolutionDescriptorInfo:
        """Read the descriptor back from the library."""
        padding, stride, upscale, mode = self.lib.get_convolution_nd_descriptor(
            self.ptr, len(self.padding)
        )
        return ConvolutionDescriptorInfo(
            tuple(padding), tuple(stride), tuple(upscale), ConvolutionMode(mode)
        )

    def __repr__(self) -> str:
        return (
            f"ConvolutionDescriptor(padding={self.padding}, stride={self.stride}, "
            f"upscale={self.upscale}, mode={self.mode.name})"
        )


__all__ = [
    "MAX_DIMS",
    "ConvolutionDescriptor",
    "ConvolutionDescriptorInfo",
    "Descriptor",
    "FilterDescriptor",
    "FilterDescriptorInfo",
    "PoolingDescriptor",
    "PoolingDescriptorInfo",
    "TensorDescriptor",
    "TensorDescriptorInfo",
]
