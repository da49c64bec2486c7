"""Adapters between host array objects and the native calling convention."""

from __future__ import annotations

import ctypes
from typing import Any

import numpy as np

from ..types import DataType
from .backend import array_module

_DATA_TYPES: dict[np.dtype[Any], DataType] = {
    np.dtype(np.float32): DataType.FLOAT,
    np.dtype(np.float64): DataType.DOUBLE,
}

_SCALAR_TYPES: dict[DataType, type[ctypes.c_float] | type[ctypes.c_double]] = {
    DataType.FLOAT: ctypes.c_float,
    DataType.DOUBLE: ctypes.c_double,
}


def data_type_of(dtype: Any) -> DataType:
    """Map a numpy/cupy dtype onto the native data type enumerant.

    Args:
        dtype (Any): Anything `numpy.dtype` accepts.

    Raises:
        TypeError: If the dtype is neither float32 nor float64.

    Returns:
        DataType: The native enumerant.
    """
    try:
        return _DATA_TYPES[np.dtype(dtype)]
    except (KeyError, TypeError):
        raise TypeError(
            f"Supported data types are float32 and float64, got {dtype!r}"
        ) from None


def scalar(value: float, dtype: Any) -> ctypes.c_float | ctypes.c_double:
    """Wrap a Python number as the C scalar matching `dtype`.

    The library reads alpha, beta and fill values through a pointer whose
    element type follows the tensor's data type.
    """
    return _SCALAR_TYPES[data_type_of(dtype)](value)


def is_device_array(array: Any) -> bool:
    """Whether `array` lives in device memory."""
    return hasattr(array, "__cuda_array_interface__")


def data_pointer(array: Any) -> int:
    """Get the address of the first element of `array`.

    Device arrays are read through `__cuda_array_interface__`, host arrays
    through `__array_interface__`.

    Args:
        array (Any): A cupy, numpy or other array-interface object.

    Raises:
        TypeError: If `array` exposes neither interface.

    Returns:
        int: The data pointer.
    """
    interface = getattr(array, "__cuda_array_interface__", None)
    if interface is None:
        interface = getattr(array, "__array_interface__", None)
    if interface is None:
        raise TypeError(f"Expected an array, got {type(array).__name__}")
    return int(interface["data"][0])


def element_strides(array: Any) -> tuple[int, ...]:
    """Strides of `array` counted in elements instead of bytes."""
    itemsize = array.dtype.itemsize
    return tuple(stride // itemsize for stride in array.strides)


def empty_like(array: Any, shape: tuple[int, ...] | None = None) -> Any:
    """Allocate an uninitialized buffer in the memory space of `array`."""
    xp = array_module(array)
    return xp.empty(array.shape if shape is None else shape, dtype=array.dtype)


def ones_like(array: Any) -> Any:
    """Allocate a buffer of ones in the memory space of `array`."""
    return array_module(array).ones(array.shape, dtype=array.dtype)


def zeros_like(array: Any, shape: tuple[int, ...] | None = None) -> Any:
    """Allocate a buffer of zeros in the memory space of `array`."""
    xp = array_module(array)
    return xp.zeros(array.shape if shape is None else shape, dtype=array.dtype)


def workspace_like(array: Any, size_in_bytes: int) -> Any:
    """Allocate a raw int8 scratch buffer next to `array`."""
    return array_module(array).empty(size_in_bytes, dtype="int8")


__all__ = [
    "data_pointer",
    "data_type_of",
    "element_strides",
    "empty_like",
    "is_device_array",
    "ones_like",
    "scalar",
    "workspace_like",
    "zeros_like",
]
