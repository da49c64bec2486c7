"""Tensor arithmetic, activation and softmax.

All operations describe their operands as 4-D tensors (see `shapes`) and
compute `dest = alpha * op(src) + beta * dest`. Where a destination is
optional it defaults to the source, so the operation runs in place.
"""

from __future__ import annotations

from contextlib import ExitStack
from typing import Any

from ._checks import check_operands, tensor_descriptors
from .backend import data_pointer, ones_like, scalar
from .config import ActivationConfig, AddConfig, SoftmaxConfig
from .handle import Handle, resolve_handle

# Most cuDNN v2 tensor operations only accept 4-D descriptors.
TENSOR_DIMS = 4

_ADD_DEFAULTS = AddConfig()
_ACTIVATION_DEFAULTS = ActivationConfig()
_SOFTMAX_DEFAULTS = SoftmaxConfig()


def transform_tensor(
    alpha: float,
    src: Any,
    beta: float = 0.0,
    dest: Any = None,
    *,
    handle: Handle | None = None,
) -> Any:
    """Compute `dest = alpha * src + beta * dest`.

    `src` and `dest` must not overlap. Without `dest` a new array of ones is
    allocated, so the result is `alpha * src + beta`.

    Args:
        alpha (float): Scale of `src`.
        src (Any): The input array.
        beta (float): Scale of `dest`. Defaults to 0.
        dest (Any): The output array. Defaults to ones shaped like `src`.
        handle (Handle | None): Defaults to the default handle.

    Returns:
        Any: `dest`.
    """
    handle = resolve_handle(handle)
    check_operands(handle.lib, src)
    if dest is None:
        dest = ones_like(src)
    check_operands(handle.lib, src, dest)

    with ExitStack() as stack:
        src_desc, dest_desc = tensor_descriptors(stack, handle.lib, TENSOR_DIMS, src, dest)
        handle.lib.transform_tensor(
            handle.ptr,
            scalar(alpha, src.dtype),
            src_desc.ptr,
            data_pointer(src),
            scalar(beta, dest.dtype),
            dest_desc.ptr,
            data_pointer(dest),
        )
    return dest


def add_tensor(
    bias: Any,
    src: Any,
    *,
    config: AddConfig = _ADD_DEFAULTS,
    handle: Handle | None = None,
) -> Any:
    """Add `bias` into `src`, broadcast according to `config.mode`.

    Computes `src = alpha * bias + beta * src`.

    Args:
        bias (Any): E.g. `(1, C, 1, 1)` for `AddMode.SAME_C`.
        src (Any): Updated in place.
        config (AddConfig): Mode and scaling.
        handle (Handle | None): Defaults to the default handle.

    Returns:
        Any: `src`.
    """
    handle = resolve_handle(handle)
    check_operands(handle.lib, bias, src)

    with ExitStack() as stack:
        bias_desc, src_desc = tensor_descriptors(stack, handle.lib, TENSOR_DIMS, bias, src)
        handle.lib.add_tensor(
            handle.ptr,
            config.mode,
            scalar(config.alpha, bias.dtype),
            bias_desc.ptr,
            data_pointer(bias),
            scalar(config.beta, src.dtype),
            src_desc.ptr,
            data_pointer(src),
        )
    return src


def set_tensor(src: Any, value: float, *, handle: Handle | None = None) -> Any:
    """Fill `src` with `value`. Returns `src`."""
    handle = resolve_handle(handle)
    check_operands(handle.lib, src)

    with ExitStack() as stack:
        (desc,) = tensor_descriptors(stack, handle.lib, TENSOR_DIMS, src)
        handle.lib.set_tensor(handle.ptr, desc.ptr, data_pointer(src), scalar(value, src.dtype))
    return src


def scale_tensor(src: Any, alpha: float, *, handle: Handle | None = None) -> Any:
    """Multiply `src` by `alpha` in place. Returns `src`."""
    handle = resolve_handle(handle)
    check_operands(handle.lib, src)

    with ExitStack() as stack:
        (desc,) = tensor_descriptors(stack, handle.lib, TENSOR_DIMS, src)
        handle.lib.scale_tensor(handle.ptr, desc.ptr, data_pointer(src), scalar(alpha, src.dtype))
    return src


def activation_forward(
    src: Any,
    dest: Any = None,
    *,
    config: ActivationConfig = _ACTIVATION_DEFAULTS,
    handle: Handle | None = None,
) -> Any:
    """Apply the activation function element-wise.

    Args:
        src (Any): The input array.
        dest (Any): The output array. Defaults to `src` (in place).
        config (ActivationConfig): Mode and scaling.
        handle (Handle | None): Defaults to the default handle.

    Returns:
        Any: `dest`.
    """
    handle = resolve_handle(handle)
    if dest is None:
        dest = src
    check_operands(handle.lib, src, dest)

    with ExitStack() as stack:
        src_desc, dest_desc = tensor_descriptors(stack, handle.lib, TENSOR_DIMS, src, dest)
        handle.lib.activation_forward(
            handle.ptr,
            config.mode,
            scalar(config.alpha, src.dtype),
            src_desc.ptr,
            data_pointer(src),
            scalar(config.beta, dest.dtype),
            dest_desc.ptr,
            data_pointer(dest),
        )
    return dest


def activation_backward(  # noqa: PLR0913
    src: Any,
    src_diff: Any,
    dest: Any = None,
    dest_diff: Any = None,
    *,
    config: ActivationConfig = _ACTIVATION_DEFAULTS,
    handle: Handle | None = None,
) -> Any:
    """Compute the gradient of the activation function.

    If the forward pass mapped input x to output y, then `src` is y,
    `src_diff` is dJ/dy, `dest` is x and the result `dest_diff` is dJ/dx.
    The library zeroes dJ/dx wherever x is zero.

    Args:
        src (Any): Forward output y.
        src_diff (Any): Gradient with respect to y.
        dest (Any): Forward input x. Defaults to `src`.
        dest_diff (Any): Receives the gradient with respect to x. Defaults
            to `src_diff`, overwriting it.
        config (ActivationConfig): Mode and scaling.
        handle (Handle | None): Defaults to the default handle.

    Returns:
        Any: `dest_diff`.
    """
    handle = resolve_handle(handle)
    if dest is None:
        dest = src
    if dest_diff is None:
        dest_diff = src_diff
    check_operands(handle.lib, src, src_diff, dest, dest_diff)

    with ExitStack() as stack:
        src_desc, src_diff_desc, dest_desc, dest_diff_desc = tensor_descriptors(
            stack, handle.lib, TENSOR_DIMS, src, src_diff, dest, dest_diff
        )
        handle.lib.activation_backward(
            handle.ptr,
            config.mode,
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


def softmax_forward(
    src: Any,
    dest: Any = None,
    *,
    config: SoftmaxConfig = _SOFTMAX_DEFAULTS,
    handle: Handle | None = None,
) -> Any:
    """Exponentiate and normalize `src`.

    This is a normalization, not a loss: an `(N, C)` array of unnormalized
    log probabilities becomes N rows of probabilities.

    Args:
        src (Any): The input array.
        dest (Any): The output array. Defaults to `src` (in place).
        config (SoftmaxConfig): Algorithm, mode and scaling.
        handle (Handle | None): Defaults to the default handle.

    Returns:
        Any: `dest`.
    """
    handle = resolve_handle(handle)
    if dest is None:
        dest = src
    check_operands(handle.lib, src, dest)

    with ExitStack() as stack:
        src_desc, dest_desc = tensor_descriptors(stack, handle.lib, TENSOR_DIMS, src, dest)
        handle.lib.softmax_forward(
            handle.ptr,
            config.algorithm,
            config.mode,
            scalar(config.alpha, src.dtype),
            src_desc.ptr,
            data_pointer(src),
            scalar(config.beta, dest.dtype),
            dest_desc.ptr,
            data_pointer(dest),
        )
    return dest


def softmax_backward(
    src: Any,
    src_diff: Any,
    dest_diff: Any = None,
    *,
    config: SoftmaxConfig = _SOFTMAX_DEFAULTS,
    handle: Handle | None = None,
) -> Any:
    """Back-propagate through `softmax_forward`.

    `src` is the forward output y, `src_diff` is dJ/dy and `dest_diff`
    receives dJ/dx. The values are whatever the library computes; no
    rescaling is applied here, so callers that want per-batch averages
    must scale `src_diff` themselves.

    Args:
        src (Any): Forward output y.
        src_diff (Any): Gradient with respect to y.
        dest_diff (Any): Receives the gradient with respect to the forward
            input. Defaults to `src_diff`, overwriting it.
        config (SoftmaxConfig): Algorithm, mode and scaling.
        handle (Handle | None): Defaults to the default handle.

    Returns:
        Any: `dest_diff`.
    """
    handle = resolve_handle(handle)
    if dest_diff is None:
        dest_diff = src_diff
    check_operands(handle.lib, src, src_diff, dest_diff)

    with ExitStack() as stack:
        src_desc, src_diff_desc, dest_diff_desc = tensor_descriptors(
            stack, handle.lib, TENSOR_DIMS, src, src_diff, dest_diff
        )
        handle.lib.softmax_backward(
            handle.ptr,
            config.algorithm,
            config.mode,
            scalar(config.alpha, src.dtype),
            src_desc.ptr,
            data_pointer(src),
            src_diff_desc.ptr,
            data_pointer(src_diff),
            scalar(config.beta, dest_diff.dtype),
            dest_diff_desc.ptr,
            data_pointer(dest_diff),
        )
    return dest_diff


__all__ = [
    "TENSOR_DIMS",
    "activation_backward",
    "activation_forward",
    "add_tensor",
    "scale_tensor",
    "set_tensor",
    "softmax_backward",
    "softmax_forward",
    "transform_tensor",
]
