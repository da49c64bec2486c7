"""Enumerants of the cuDNN v2 ABI.

Values mirror `cudnn.h`; they are passed to the library as plain C ints.
"""

import operator
from enum import Enum, IntEnum
from typing import Any, TypeVar

E = TypeVar("E", bound=IntEnum)


class Status(IntEnum):
    SUCCESS = 0
    NOT_INITIALIZED = 1
    ALLOC_FAILED = 2
    BAD_PARAM = 3
    INTERNAL_ERROR = 4
    INVALID_VALUE = 5
    ARCH_MISMATCH = 6
    MAPPING_ERROR = 7
    EXECUTION_FAILED = 8
    NOT_SUPPORTED = 9
    LICENSE_ERROR = 10


class DataType(IntEnum):
    FLOAT = 0
    DOUBLE = 1


class AddMode(IntEnum):
    """How the bias tensor of `add_tensor` is broadcast onto the destination."""

    IMAGE = 0  # bias is (1, 1, H, W), added to every feature map
    SAME_HW = 0
    FEATURE_MAP = 1  # bias is (1, C, H, W), added to every image
    SAME_CHW = 1
    SAME_C = 2  # bias is (1, C, 1, 1), one value per channel
    FULL_TENSOR = 3  # bias has the same shape as the destination


class ActivationMode(IntEnum):
    SIGMOID = 0
    RELU = 1
    TANH = 2


class SoftmaxAlgorithm(IntEnum):
    FAST = 0
    ACCURATE = 1


class SoftmaxMode(IntEnum):
    """INSTANCE normalizes over C, H, W per image; CHANNEL over C per pixel."""

    INSTANCE = 0
    CHANNEL = 1


class PoolingMode(IntEnum):
    MAX = 0
    AVERAGE_COUNT_INCLUDE_PADDING = 1
    AVERAGE_COUNT_EXCLUDE_PADDING = 2


class ConvolutionMode(IntEnum):
    CONVOLUTION = 0
    CROSS_CORRELATION = 1


class ConvolutionFwdPreference(IntEnum):
    NO_WORKSPACE = 0
    PREFER_FASTEST = 1
    SPECIFY_WORKSPACE_LIMIT = 2


class ConvolutionFwdAlgo(IntEnum):
    """Forward convolution algorithms.

    IMPLICIT_GEMM needs no workspace. IMPLICIT_PRECOMP_GEMM needs
    C*R*S*sizeof(int) bytes and is usually the faster choice. GEMM expands the
    input im2col-style and needs a large workspace. DIRECT is reserved by the
    library.
    """

    IMPLICIT_GEMM = 0
    IMPLICIT_PRECOMP_GEMM = 1
    GEMM = 2
    DIRECT = 3


def enumerant(value: Any, enum_type: type[E], name: str = "mode") -> E:
    """Coerce `value` to a member of `enum_type`.

    Plain ints, NumPy integers included, are looked up by value. Members of a different enum are
    rejected even when their value happens to match.

    Args:
        value (Any): The candidate enumerant.
        enum_type (type[E]): The expected enum.
        name (str): Argument name used in the error message.

    Raises:
        ValueError: If `value` is not a member of `enum_type`.

    Returns:
        E: The enum member.
    """
    if isinstance(value, Enum) and not isinstance(value, enum_type):
        raise ValueError(f"{name} must be a {enum_type.__name__}, got {value!r}")
    if isinstance(value, bool):
        raise ValueError(f"{name} must be a {enum_type.__name__}, got {value!r}")
    try:
        index = operator.index(value)
    except TypeError:
        raise ValueError(f"{name} must be a {enum_type.__name__}, got {value!r}") from None
    try:
        return enum_type(index)
    except ValueError:
        valid = ", ".join(member.name for member in enum_type)
        raise ValueError(f"{name} must be one of {valid}, got {value!r}") from None


__all__ = [
    "ActivationMode",
    "AddMode",
    "ConvolutionFwdAlgo",
    "ConvolutionFwdPreference",
    "ConvolutionMode",
    "DataType",
    "PoolingMode",
    "SoftmaxAlgorithm",
    "SoftmaxMode",
    "Status",
    "enumerant",
]
