"""Operand validation and scoped descriptor construction shared by all operations."""

from __future__ import annotations

from contextlib import ExitStack
from typing import Any

from .backend import data_type_of, is_device_array
from .descriptors import FilterDescriptor, TensorDescriptor


def check_operands(lib: Any, *arrays: Any) -> None:
    """Validate operands before any native call.

    Raises:
        TypeError: If an operand has an unsupported dtype, the operands do
            not share one dtype, or `lib` needs device memory and an operand
            lives on the host.
    """
    dtype = arrays[0].dtype
    for array in arrays:
        data_type_of(array.dtype)
        if array.dtype != dtype:
            raise TypeError(f"All operands must have the same dtype, got {dtype} and {array.dtype}")
        if getattr(lib, "requires_device_memory", True) and not is_device_array(array):
            raise TypeError(
                f"Operands must be device arrays (e.g. cupy.ndarray), got {type(array).__name__}"
            )


def check_shape(array: Any, shape: tuple[int, ...], name: str) -> None:
    if tuple(array.shape) != tuple(shape):
        raise ValueError(f"{name} must have shape {tuple(shape)}, got {tuple(array.shape)}")


def tensor_descriptors(
    stack: ExitStack, lib: Any, ndims: int | None, *arrays: Any
) -> list[TensorDescriptor]:
    """Describe each array, releasing the descriptors when `stack` closes.

    Args:
        stack (ExitStack): Owns the descriptors.
        lib (Any): The native library.
        ndims (int | None): Target rank, or None for each array's own rank.
        *arrays (Any): The operands.

    Returns:
        list[TensorDescriptor]: One descriptor per array.
    """
    return [stack.enter_context(TensorDescriptor.from_array(a, ndims, lib)) for a in arrays]


def filter_descriptor(stack: ExitStack, lib: Any, array: Any) -> FilterDescriptor:
    return stack.enter_context(FilterDescriptor.from_array(array, lib=lib))


def check_open(descriptor: Any, name: str) -> None:
    if descriptor.closed:
        raise ValueError(f"{name} descriptor has been closed")
