"""Convolution forward and backward passes.

Shapes follow the cuDNN conventions in row-major order:

    input x     (N, C, H, W)     N images of C channels
    filter w    (K, C, R, S)     K output channels of C x R x S filters
    output y    (N, K, P, Q)     P = 1 + (H + 2*pad - R) / stride
    bias b      (1, K, 1, 1)     one value per output channel

Operands are described with their own rank; filters use filter descriptors.
"""

from __future__ import annotations

import logging
from contextlib import ExitStack
from typing import Any

from ._checks import (
    check_open,
    check_operands,
    check_shape,
    filter_descriptor,
    tensor_descriptors,
)
from .backend import data_pointer, empty_like, is_device_array, scalar, workspace_like, zeros_like
from .config import ConvolutionConfig
from .descriptors import ConvolutionDescriptor
from .handle import Handle, resolve_handle
from .tensor_ops import TENSOR_DIMS
from .types import ConvolutionFwdAlgo, ConvolutionFwdPreference, enumerant

logger = logging.getLogger(__name__)

_CONVOLUTION_DEFAULTS = ConvolutionConfig()
DEFAULT_MEMORY_LIMIT = 5 * 10**9


def _resolve_convolution(
    convolution: ConvolutionDescriptor | None, handle: Handle
) -> ConvolutionDescriptor:
    if convolution is None:
        return handle.default_convolution
    check_open(convolution, "convolution")
    return convolution


def get_convolution_nd_forward_output_dim(
    src: Any,
    filter: Any,
    *,
    convolution: ConvolutionDescriptor | None = None,
    handle: Handle | None = None,
) -> tuple[int, ...]:
    """Ask the library for the shape of the convolution of `src` with `filter`.

    Each spatial output dimension is `1 + (d + 2 * pad - filter_d) / stride`.

    Args:
        src (Any): The input array.
        filter (Any): The filter array.
        convolution (ConvolutionDescriptor | None): Defaults to the handle's
            default descriptor.
        handle (Handle | None): Defaults to the default handle.

    Returns:
        tuple[int, ...]: The output shape, of the same rank as `src`.
    """
    handle = resolve_handle(handle)
    check_operands(handle.lib, src, filter)
    convolution = _resolve_convolution(convolution, handle)

    with ExitStack() as stack:
        (src_desc,) = tensor_descriptors(stack, handle.lib, None, src)
        filter_desc = filter_descriptor(stack, handle.lib, filter)
        dims = handle.lib.get_convolution_nd_forward_output_dim(
            convolution.ptr, src_desc.ptr, filter_desc.ptr, len(src_desc.dims)
        )
    return tuple(int(d) for d in dims)


def get_convolution_forward_algorithm(  # noqa: PLR0913
    src: Any,
    filter: Any,
    dest: Any,
    *,
    preference: ConvolutionFwdPreference = ConvolutionFwdPreference.PREFER_FASTEST,
    memory_limit: int = DEFAULT_MEMORY_LIMIT,
    convolution: ConvolutionDescriptor | None = None,
    handle: Handle | None = None,
) -> ConvolutionFwdAlgo:
    """Let the library pick a forward algorithm.

    Args:
        src (Any): The input array.
        filter (Any): The filter array.
        dest (Any): The output array.
        preference (ConvolutionFwdPreference): Selection strategy.
            Defaults to the fastest algorithm.
        memory_limit (int): Workspace limit in bytes, honored with
            `SPECIFY_WORKSPACE_LIMIT`. Defaults to 5 GB.
        convolution (ConvolutionDescriptor | None): Defaults to the handle's
            default descriptor.
        handle (Handle | None): Defaults to the default handle.

    Returns:
        ConvolutionFwdAlgo: The recommended algorithm.
    """
    preference = enumerant(preference, ConvolutionFwdPreference, "preference")
    handle = resolve_handle(handle)
    check_operands(handle.lib, src, filter, dest)
    convolution = _resolve_convolution(convolution, handle)

    with ExitStack() as stack:
        src_desc, dest_desc = tensor_descriptors(stack, handle.lib, None, src, dest)
        filter_desc = filter_descriptor(stack, handle.lib, filter)
        algorithm = handle.lib.get_convolution_forward_algorithm(
            handle.ptr,
            src_desc.ptr,
            filter_desc.ptr,
            convolution.ptr,
            dest_desc.ptr,
            preference,
            memory_limit,
        )
    return ConvolutionFwdAlgo(algorithm)


def get_convolution_forward_workspace_size(  # noqa: PLR0913
    src: Any,
    filter: Any,
    dest: Any,
    *,
    algorithm: ConvolutionFwdAlgo = ConvolutionFwdAlgo.IMPLICIT_PRECOMP_GEMM,
    convolution: ConvolutionDescriptor | None = None,
    handle: Handle | None = None,
) -> int:
    """Number of workspace bytes `algorithm` needs for this convolution."""
    algorithm = enumerant(algorithm, ConvolutionFwdAlgo, "algorithm")
    handle = resolve_handle(handle)
    check_operands(handle.lib, src, filter, dest)
    convolution = _resolve_convolution(convolution, handle)

    with ExitStack() as stack:
        src_desc, dest_desc = tensor_descriptors(stack, handle.lib, None, src, dest)
        filter_desc = filter_descriptor(stack, handle.lib, filter)
        return int(
            handle.lib.get_convolution_forward_workspace_size(
                handle.ptr,
                src_desc.ptr,
                filter_desc.ptr,
                convolution.ptr,
                dest_desc.ptr,
                algorithm,
            )
        )


def convolution_forward(  # noqa: PLR0913
    src: Any,
    filter: Any,
    dest: Any = None,
    *,
    config: ConvolutionConfig = _CONVOLUTION_DEFAULTS,
    workspace: Any = None,
    handle: Handle | None = None,
) -> Any:
    """Convolve `src` with `filter`.

    The output shape and the workspace size are queried from the library
    first. A missing `dest` is allocated; a missing or undersized
    `workspace` is replaced by a new buffer for this call only.

    Args:
        src (Any): The input array.
        filter (Any): The filter array, same dtype as `src`.
        dest (Any): The output array. Defaults to a new array of the
            queried output shape.
        config (ConvolutionConfig): Descriptor, algorithm and scaling.
        workspace (Any): Scratch buffer to reuse across calls.
        handle (Handle | None): Defaults to the default handle.

    Raises:
        TypeError: If the operands differ in dtype.
        ValueError: If `dest` does not have the output shape.

    Returns:
        Any: `dest`.
    """
    handle = resolve_handle(handle)
    lib = handle.lib
    check_operands(lib, src, filter)
    convolution = _resolve_convolution(config.convolution, handle)

    with ExitStack() as stack:
        (src_desc,) = tensor_descriptors(stack, lib, None, src)
        filter_desc = filter_descriptor(stack, lib, filter)
        output_shape = tuple(
            int(d)
            for d in lib.get_convolution_nd_forward_output_dim(
                convolution.ptr, src_desc.ptr, filter_desc.ptr, len(src_desc.dims)
            )
        )
        if dest is None:
            dest = empty_like(src, output_shape)
        check_shape(dest, output_shape, "dest")
        check_operands(lib, src, filter, dest)
        (dest_desc,) = tensor_descriptors(stack, lib, None, dest)

        required = lib.get_convolution_forward_workspace_size(
            handle.ptr,
            src_desc.ptr,
            filter_desc.ptr,
            convolution.ptr,
            dest_desc.ptr,
            config.algorithm,
        )
        workspace_size = 0 if workspace is None else int(workspace.nbytes)
        if required > 0 and workspace_size < required:
            logger.debug(
                f"Allocating {required} bytes of workspace for {config.algorithm.name} "
                f"(have {workspace_size})"
            )
            workspace = workspace_like(src, required)
            workspace_size = required
        if (
            workspace is not None
            and getattr(lib, "requires_device_memory", True)
            and not is_device_array(workspace)
        ):
            raise TypeError("workspace must be a device array")

        lib.convolution_forward(
            handle.ptr,
            scalar(config.alpha, src.dtype),
            src_desc.ptr,
            data_pointer(src),
            filter_desc.ptr,
            data_pointer(filter),
            convolution.ptr,
            config.algorithm,
            None if workspace is None else data_pointer(workspace),
            workspace_size,
            scalar(config.beta, dest.dtype),
            dest_desc.ptr,
            data_pointer(dest),
        )
    return dest


def conv2(
    src: Any,
    filter: Any,
    dest: Any = None,
    *,
    handle: Handle | None = None,
) -> Any:
    """Full 2-D convolution: padding is one less than the filter's extents.

    For an `(N, C, H, W)` input and `(K, C, R, S)` filter the output is
    `(N, K, H + R - 1, W + S - 1)`.
    """
    handle = resolve_handle(handle)
    padding = (filter.shape[-2] - 1, filter.shape[-1] - 1)
    with ConvolutionDescriptor(padding=padding, lib=handle.lib) as convolution:
        return convolution_forward(
            src, filter, dest, config=ConvolutionConfig(convolution=convolution), handle=handle
        )


def convolution_backward_bias(
    src: Any,
    dest: Any = None,
    *,
    config: ConvolutionConfig = _CONVOLUTION_DEFAULTS,
    handle: Handle | None = None,
) -> Any:
    """Gradient of a per-channel bias.

    If y = w * x + b with one bias value per output channel, dJ/db is the
    sum of dJ/dy over every image and pixel of that channel.

    Args:
        src (Any): dJ/dy, shaped `(N, K, P, Q)`.
        dest (Any): Receives dJ/db. Defaults to a new `(1, K, 1, 1)` array.
        config (ConvolutionConfig): Only `alpha` and `beta` are used.
        handle (Handle | None): Defaults to the default handle.

    Returns:
        Any: `dest`.
    """
    handle = resolve_handle(handle)
    check_operands(handle.lib, src)
    if dest is None:
        channels = src.shape[1] if src.ndim > 1 else src.shape[0]
        dest = zeros_like(src, (1, channels, 1, 1))
    check_operands(handle.lib, src, dest)

    with ExitStack() as stack:
        src_desc, dest_desc = tensor_descriptors(stack, handle.lib, TENSOR_DIMS, src, dest)
        handle.lib.convolution_backward_bias(
            handle.ptr,
            scalar(config.alpha, src.dtype),
            src_desc.ptr,
            data_pointer(src),
            scalar(config.beta, dest.dtype),
            dest_desc.ptr,
            data_pointer(dest),
        )
    return dest


def convolution_backward_filter(
    src: Any,
    diff: Any,
    grad: Any,
    *,
    config: ConvolutionConfig = _CONVOLUTION_DEFAULTS,
    handle: Handle | None = None,
) -> Any:
    """Gradient with respect to the filter.

    For y = w * x + b: `src` is x, `diff` is dJ/dy and `grad` receives
    dJ/dw, shaped like w.

    Returns:
        Any: `grad`.
    """
    handle = resolve_handle(handle)
    check_operands(handle.lib, src, diff, grad)
    convolution = _resolve_convolution(config.convolution, handle)

    with ExitStack() as stack:
        src_desc, diff_desc = tensor_descriptors(stack, handle.lib, None, src, diff)
        grad_desc = filter_descriptor(stack, handle.lib, grad)
        handle.lib.convolution_backward_filter(
            handle.ptr,
            scalar(config.alpha, src.dtype),
            src_desc.ptr,
            data_pointer(src),
            diff_desc.ptr,
            data_pointer(diff),
            convolution.ptr,
            scalar(config.beta, grad.dtype),
            grad_desc.ptr,
            data_pointer(grad),
        )
    return grad


def convolution_backward_data(
    filter: Any,
    diff: Any,
    grad: Any,
    *,
    config: ConvolutionConfig = _CONVOLUTION_DEFAULTS,
    handle: Handle | None = None,
) -> Any:
    """Gradient with respect to the input.

    For y = w * x + b: `filter` is w, `diff` is dJ/dy and `grad` receives
    dJ/dx, shaped like x.

    Returns:
        Any: `grad`.
    """
    handle = resolve_handle(handle)
    check_operands(handle.lib, filter, diff, grad)
    convolution = _resolve_convolution(config.convolution, handle)

    with ExitStack() as stack:
        filter_desc = filter_descriptor(stack, handle.lib, filter)
        diff_desc, grad_desc = tensor_descriptors(stack, handle.lib, None, diff, grad)
        handle.lib.convolution_backward_data(
            handle.ptr,
            scalar(config.alpha, diff.dtype),
            filter_desc.ptr,
            data_pointer(filter),
            diff_desc.ptr,
            data_pointer(diff),
            convolution.ptr,
            scalar(config.beta, grad.dtype),
            grad_desc.ptr,
            data_pointer(grad),
        )
    return grad


__all__ = [
    "DEFAULT_MEMORY_LIMIT",
    "conv2",
    "convolution_backward_bias",
    "convolution_backward_data",
    "convolution_backward_filter",
    "convolution_forward",
    "get_convolution_forward_algorithm",
    "get_convolution_forward_workspace_size",
    "get_convolution_nd_forward_output_dim",
]
