"""Translation of host array shapes into native tensor dimensions.

Host arrays (numpy, cupy) list their dimensions in row-major order, e.g.
`(N, C, H, W)` for a batch of images, which is the order cuDNN expects. Most
cuDNN v2 operations only accept 4-D tensors, so arrays of other ranks have to
be padded or folded:

    (C,)             -> (1, C, 1, 1)        one vector of C features
    (N, C)           -> (N, C, 1, 1)        N vectors of C features
    (N, C, H)        -> (N, C, H, 1)
    (N, C, D, H, W)  -> (N, C, D, H*W)      trailing dims folded

Callers whose shapes follow a column-major convention, e.g. `(W, H, C, N)`,
pass `column_major=True` and the tuples are reversed first.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from .backend import element_strides


def tensor_size(
    shape: Sequence[int],
    strides: Sequence[int],
    ndims: int,
    *,
    column_major: bool = False,
) -> tuple[list[int], list[int]]:
    """Fit a shape and its element strides to `ndims` native dimensions.

    Args:
        shape (Sequence[int]): Extent of each dimension, in host order.
        strides (Sequence[int]): Stride of each dimension in elements,
            in host order.
        ndims (int): The rank the native library expects.
        column_major (bool): Whether `shape` and `strides` are listed
            fastest-varying dimension first. Defaults to False.

    Raises:
        ValueError: If `ndims` is smaller than 1 or the tuples differ in length.

    Returns:
        tuple[list[int], list[int]]: Native dimensions and strides, both of
            length `ndims`.
    """
    if ndims < 1:
        raise ValueError(f"ndims must be at least 1, got {ndims}")
    if len(shape) != len(strides):
        raise ValueError(
            f"shape and strides must have the same length, got {len(shape)} and {len(strides)}"
        )

    dims = [int(d) for d in shape]
    steps = [int(s) for s in strides]
    if column_major:
        dims.reverse()
        steps.reverse()

    if not dims:
        # 0-d array: a single element
        dims, steps = [1], [1]

    if len(dims) == 1 < ndims:
        dims.insert(0, 1)
        steps.insert(0, 1)

    while len(dims) < ndims:
        dims.append(1)
        steps.append(1)

    while len(dims) > ndims:
        last = dims.pop()
        dims[-1] *= last
        steps.pop()
        steps[-1] = 1

    return dims, steps


def tensor_size_of(
    array: Any,
    ndims: int | None = None,
    *,
    column_major: bool = False,
) -> tuple[list[int], list[int]]:
    """Apply `tensor_size` to an array.

    Args:
        array (Any): Object with `shape`, `strides` (bytes) and `dtype`.
        ndims (int | None): Target rank. Defaults to the array's rank.
        column_major (bool): See `tensor_size`.

    Returns:
        tuple[list[int], list[int]]: Native dimensions and strides.
    """
    if ndims is None:
        ndims = max(array.ndim, 1)
    return tensor_size(array.shape, element_strides(array), ndims, column_major=column_major)


__all__ = ["tensor_size", "tensor_size_of"]
