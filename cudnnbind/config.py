"""Options of each operation family and their defaults.

Every operation computes `dest = alpha * op(src) + beta * dest`; `alpha` and
`beta` live here together with the family's mode enumerants.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from .types import (
    ActivationMode,
    AddMode,
    ConvolutionFwdAlgo,
    SoftmaxAlgorithm,
    SoftmaxMode,
    enumerant,
)

if TYPE_CHECKING:
    from .descriptors import ConvolutionDescriptor


@dataclass(frozen=True)
class AddConfig:
    """Options of `add_tensor`.

    Attributes:
        mode (AddMode): How the bias is broadcast. Defaults to one value per
            channel (`AddMode.SAME_C`).
        alpha (float): Scale of the bias. Defaults to 1.
        beta (float): Scale of the existing destination. Defaults to 1, i.e.
            the bias is accumulated.
    """

    mode: AddMode = AddMode.SAME_C
    alpha: float = 1.0
    beta: float = 1.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "mode", enumerant(self.mode, AddMode))


@dataclass(frozen=True)
class ActivationConfig:
    """Options of `activation_forward` and `activation_backward`.

    Attributes:
        mode (ActivationMode): Defaults to `ActivationMode.RELU`.
        alpha (float): Scale of the result. Defaults to 1.
        beta (float): Scale of the existing destination. Defaults to 0.
    """

    mode: ActivationMode = ActivationMode.RELU
    alpha: float = 1.0
    beta: float = 0.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "mode", enumerant(self.mode, ActivationMode))


@dataclass(frozen=True)
class SoftmaxConfig:
    """Options of `softmax_forward` and `softmax_backward`.

    Attributes:
        algorithm (SoftmaxAlgorithm): `ACCURATE` subtracts the maximum before
            exponentiating, `FAST` does not. Defaults to `ACCURATE`.
        mode (SoftmaxMode): `INSTANCE` normalizes each image over C, H, W;
            `CHANNEL` normalizes each pixel over C. Defaults to `INSTANCE`.
        alpha (float): Scale of the result. Defaults to 1.
        beta (float): Scale of the existing destination. Defaults to 0.
    """

    algorithm: SoftmaxAlgorithm = SoftmaxAlgorithm.ACCURATE
    mode: SoftmaxMode = SoftmaxMode.INSTANCE
    alpha: float = 1.0
    beta: float = 0.0

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "algorithm", enumerant(self.algorithm, SoftmaxAlgorithm, "algorithm")
        )
        object.__setattr__(self, "mode", enumerant(self.mode, SoftmaxMode))


@dataclass(frozen=True)
class PoolingConfig:
    """Scaling of `pooling_forward` and `pooling_backward`."""

    alpha: float = 1.0
    beta: float = 0.0


@dataclass(frozen=True)
class ConvolutionConfig:
    """Options of the convolution operations.

    Attributes:
        convolution (ConvolutionDescriptor | None): Padding, stride, upscale
            and mode. Defaults to the handle's default descriptor.
        algorithm (ConvolutionFwdAlgo): Forward algorithm. Defaults to
            `IMPLICIT_PRECOMP_GEMM`, which needs little workspace. Ignored by
            the backward operations.
        alpha (float): Scale of the result. Defaults to 1.
        beta (float): Scale of the existing destination. Defaults to 0.
    """

    convolution: ConvolutionDescriptor | None = None
    algorithm: ConvolutionFwdAlgo = ConvolutionFwdAlgo.IMPLICIT_PRECOMP_GEMM
    alpha: float = 1.0
    beta: float = 0.0

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "algorithm", enumerant(self.algorithm, ConvolutionFwdAlgo, "algorithm")
        )


__all__ = [
    "ActivationConfig",
    "AddConfig",
    "ConvolutionConfig",
    "PoolingConfig",
    "SoftmaxConfig",
]
