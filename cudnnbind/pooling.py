"""Pooling forward and backward passes.

Pooling operands are described with their own rank, so a 2-D pooling
window applies to the trailing two dimensions of an `(N, C, H, W)` array.
"""

from __future__ import annotations

import math
from contextlib import ExitStack
from typing import Any

from ._checks import check_open, check_operands, check_shape, tensor_descriptors
from .backend import data_pointer, empty_like, scalar, zeros_like
from .config import PoolingConfig
from .descriptors import PoolingDescriptor, PoolingDescriptorInfo
from .handle import Handle, resolve_handle

_POOLING_DEFAULTS = PoolingConfig()


def get_pooling_nd_forward_output_dim(pooling: PoolingDescriptor, src: Any) -> tuple[int, ...]:
    """Shape of the pooled output for input `src`.

    The trailing `len(pooling.window)` dimensions become
    `1 + ceil((d + 2 * padding - window) / stride)`; the leading ones are
    kept. The library does not export this query, so it is computed here.

    Args:
        pooling (PoolingDescriptor): The pooling window.
        src (Any): The input array, or its shape.

    Raises:
        ValueError: If `src` has fewer dimensions than the window.

    Returns:
        tuple[int, ...]: The output shape.
    """
    shape = list(getattr(src, "shape", src))
    nd = len(pooling.window)
    if len(shape) < nd:
        raise ValueError(
            f"Input of shape {tuple(shape)} has fewer dimensions than window {pooling.window}"
        )

    offset = len(shape) - nd
    for i, (window, padding, stride) in enumerate(
        zip(pooling.window, pooling.padding, pooling.stride, strict=True)
    ):
        d = shape[offset + i]
        shape[offset + i] = 1 + math.ceil((d + 2 * padding - window) / stride)
    return tuple(shape)


def get_pooling_nd_descriptor(pooling: PoolingDescriptor) -> PoolingDescriptorInfo:
    """Read the pooling descriptor back from the library."""
    return pooling.query()


def pooling_forward(
    pooling: PoolingDescriptor,
    src: Any,
    dest: Any = None,
    *,
    config: PoolingConfig = _POOLING_DEFAULTS,
    handle: Handle | None = None,
) -> Any:
    """Pool `src` into `dest`.

    If `dest` is smaller than the pooled output the library fills it with
    the leading region; if larger, entries beyond the padded input are
    undefined.

    Args:
        pooling (PoolingDescriptor): Window, padding, stride and mode.
        src (Any): The input array.
        dest (Any): The output array. Defaults to a new array shaped by
            `get_pooling_nd_forward_output_dim`.
        config (PoolingConfig): Scaling.
        handle (Handle | None): Defaults to the default handle.

    Returns:
        Any: `dest`.
    """
    handle = resolve_handle(handle)
    check_open(pooling, "pooling")
    check_operands(handle.lib, src)
    if dest is None:
        dest = empty_like(src, get_pooling_nd_forward_output_dim(pooling, src))
    check_operands(handle.lib, src, dest)

    with ExitStack() as stack:
        src_desc, dest_desc = tensor_descriptors(stack, handle.lib, None, src, dest)
        handle.lib.pooling_forward(
            handle.ptr,
            pooling.ptr,
            scalar(config.alpha, src.dtype),
            src_desc.ptr,
            data_pointer(src),
            scalar(config.beta, dest.dtype),
            dest_desc.ptr,
            data_pointer(dest),
        )
    return dest


def pooling_backward(  # noqa: PLR0913
    pooling: PoolingDescriptor,
    src: Any,
    src_diff: Any,
    dest: Any,
    dest_diff: Any = None,
    *,
    config: PoolingConfig = _POOLING_DEFAULTS,
    handle: Handle | None = None,
) -> Any:
    """Back-propagate through `pooling_forward`.

    If the forward pass pooled x into y, then `src` is y, `src_diff` is
    dJ/dy, `dest` is x and `dest_diff` receives dJ/dx.

    Args:
        pooling (PoolingDescriptor): The descriptor used going forward.
        src (Any): Forward output y.
        src_diff (Any): Gradient with respect to y.
        dest (Any): Forward input x.
        dest_diff (Any): Receives the gradient with respect to x. Defaults
            to a new array of zeros shaped like `dest`.
        config (PoolingConfig): Scaling.
        handle (Handle | None): Defaults to the default handle.

    Raises:
        ValueError: If `src_diff` and `src`, or `dest_diff` and `dest`,
            differ in shape.

    Returns:
        Any: `dest_diff`.
    """
    handle = resolve_handle(handle)
    check_open(pooling, "pooling")
    check_operands(handle.lib, src, src_diff, dest)
    if dest_diff is None:
        dest_diff = zeros_like(dest)
    check_operands(handle.lib, src, src_diff, dest, dest_diff)
    check_shape(src_diff, src.shape, "src_diff")
    check_shape(dest_diff, dest.shape, "dest_diff")

    with ExitStack() as stack:
        src_desc, src_diff_desc, dest_desc, dest_diff_desc = tensor_descriptors(
            stack, handle.lib, None, src, src_diff, dest, dest_diff
        )
        handle.lib.pooling_backward(
            handle.ptr,
            pooling.ptr,
            scalar(config.alpha, src.dtype),
            src_desc.ptr,
            data_pointer(src),
            src_diff_desc.ptr,
            data_pointer(src_diff),
            dest_desc.ptr,
            data_pointer(dest),
            scalar(config.beta, dest_diff.dtype),
            dest_diff_desc.ptr,
            data_pointer(dest_diff),
        )
    return dest_diff


__all__ = [
    "get_pooling_nd_descriptor",
    "get_pooling_nd_forward_output_dim",
    "pooling_backward",
    "pooling_forward",
]
