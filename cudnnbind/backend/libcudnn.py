"""ctypes bindings for the cuDNN v2 entry points.

`LibCudnn` binds `argtypes`/`restype` for every entry point once, from the
`_SIGNATURES` table, and exposes one Python method per entry point:

- handles, descriptors and data pointers are plain Python `int`s
- alpha, beta and fill values are ctypes scalars (see `arrays.scalar`)
  and are passed by reference
- dimension, padding and stride arrays are Python sequences of ints
- every non-success status raises `CudnnError`; nothing is retried

Anything implementing the same methods can stand in for `LibCudnn` (see
`handle.set_library`).
"""

from __future__ import annotations

import ctypes
import ctypes.util
import logging
import os
from collections.abc import Sequence
from ctypes import POINTER, byref, c_char_p, c_int, c_size_t, c_void_p

from ..errors import CudnnError, LibraryNotFoundError
from ..types import ConvolutionFwdAlgo, ConvolutionMode, DataType, PoolingMode, Status

logger = logging.getLogger(__name__)

ENV_LIBRARY = "CUDNNBIND_LIBRARY"
_SONAMES = ("libcudnn.so", "libcudnn.so.2")
# cudnnGetVersion() values sharing the bound signatures
SUPPORTED_VERSIONS = range(2000, 3000)

Scalar = ctypes.c_float | ctypes.c_double

_p = c_void_p
_pp = POINTER(c_void_p)
_ip = POINTER(c_int)
_sp = POINTER(c_size_t)

# Entry points returning cudnnStatus_t. Descriptors and handles are opaque
# pointers; enumerants are C ints.
_SIGNATURES: dict[str, list[type]] = {
    "cudnnCreate": [_pp],
    "cudnnDestroy": [_p],
    # Tensor descriptors
    "cudnnCreateTensorDescriptor": [_pp],
    "cudnnSetTensorNdDescriptor": [_p, c_int, c_int, _ip, _ip],
    "cudnnGetTensorNdDescriptor": [_p, c_int, _ip, _ip, _ip, _ip],
    "cudnnDestroyTensorDescriptor": [_p],
    # Tensor ops
    "cudnnTransformTensor": [_p, _p, _p, _p, _p, _p, _p],
    "cudnnAddTensor": [_p, c_int, _p, _p, _p, _p, _p, _p],
    "cudnnSetTensor": [_p, _p, _p, _p],
    "cudnnScaleTensor": [_p, _p, _p, _p],
    # Filter descriptors
    "cudnnCreateFilterDescriptor": [_pp],
    "cudnnSetFilterNdDescriptor": [_p, c_int, c_int, _ip],
    "cudnnGetFilterNdDescriptor": [_p, c_int, _ip, _ip, _ip],
    "cudnnDestroyFilterDescriptor": [_p],
    # Convolution descriptors and ops
    "cudnnCreateConvolutionDescriptor": [_pp],
    "cudnnSetConvolutionNdDescriptor": [_p, c_int, _ip, _ip, _ip, c_int],
    "cudnnGetConvolutionNdDescriptor": [_p, c_int, _ip, _ip, _ip, _ip, _ip],
    "cudnnGetConvolutionNdForwardOutputDim": [_p, _p, _p, c_int, _ip],
    "cudnnDestroyConvolutionDescriptor": [_p],
    "cudnnGetConvolutionForwardAlgorithm": [_p, _p, _p, _p, _p, c_int, c_size_t, _ip],
    "cudnnGetConvolutionForwardWorkspaceSize": [_p, _p, _p, _p, _p, c_int, _sp],
    "cudnnConvolutionForward": [_p, _p, _p, _p, _p, _p, _p, c_int, _p, c_size_t, _p, _p, _p],
    "cudnnConvolutionBackwardBias": [_p, _p, _p, _p, _p, _p, _p],
    "cudnnConvolutionBackwardFilter": [_p, _p, _p, _p, _p, _p, _p, _p, _p, _p],
    "cudnnConvolutionBackwardData": [_p, _p, _p, _p, _p, _p, _p, _p, _p, _p],
    # Softmax
    "cudnnSoftmaxForward": [_p, c_int, c_int, _p, _p, _p, _p, _p, _p],
    "cudnnSoftmaxBackward": [_p, c_int, c_int, _p, _p, _p, _p, _p, _p, _p, _p],
    # Pooling
    "cudnnCreatePoolingDescriptor": [_pp],
    "cudnnSetPoolingNdDescriptor": [_p, c_int, c_int, _ip, _ip, _ip],
    "cudnnGetPoolingNdDescriptor": [_p, c_int, _ip, _ip, _ip, _ip, _ip],
    "cudnnDestroyPoolingDescriptor": [_p],
    "cudnnPoolingForward": [_p, _p, _p, _p, _p, _p, _p, _p],
    "cudnnPoolingBackward": [_p, _p, _p, _p, _p, _p, _p, _p, _p, _p, _p, _p],
    # Activation
    "cudnnActivationForward": [_p, c_int, _p, _p, _p, _p, _p, _p],
    "cudnnActivationBackward": [_p, c_int, _p, _p, _p, _p, _p, _p, _p, _p, _p, _p],
}


def _int_array(values: Sequence[int]) -> ctypes.Array[c_int]:
    return (c_int * len(values))(*values)


def _out_int() -> c_int:
    return c_int(0)


class LibCudnn:
    """The loaded cuDNN shared library.

    Attributes:
        name (str): The path or soname the library was loaded from.
        requires_device_memory (bool): Data pointers must refer to device
            memory. Operations check their operands against this before
            issuing a call.
    """

    requires_device_memory = True

    def __init__(self, cdll: ctypes.CDLL, name: str = "") -> None:
        self.name = name
        self._cdll = cdll
        self._functions: dict[str, ctypes._CFuncPtr] = {}
        self._bind()

    def _bind(self) -> None:
        """Bind argtypes/restype for all entry points.

        Raises:
            LibraryNotFoundError: If an entry point is not exported, or the
                library reports a version outside `SUPPORTED_VERSIONS`.
        """
        missing = [name for name in _SIGNATURES if not hasattr(self._cdll, name)]
        for name in ("cudnnGetErrorString", "cudnnGetVersion"):
            if not hasattr(self._cdll, name):
                missing.append(name)
        if missing:
            raise LibraryNotFoundError(
                f"{self.name or 'cuDNN library'} is missing entry points: {', '.join(missing)}"
            )

        for name, argtypes in _SIGNATURES.items():
            function = getattr(self._cdll, name)
            function.argtypes = argtypes
            function.restype = c_int
            self._functions[name] = function

        self._cdll.cudnnGetErrorString.argtypes = [c_int]
        self._cdll.cudnnGetErrorString.restype = c_char_p
        self._cdll.cudnnGetVersion.argtypes = []
        self._cdll.cudnnGetVersion.restype = c_size_t

        version = self.get_version()
        if version not in SUPPORTED_VERSIONS:
            raise LibraryNotFoundError(
                f"{self.name or 'cuDNN library'} reports version {version}, "
                f"only {SUPPORTED_VERSIONS.start}-{SUPPORTED_VERSIONS.stop - 1} are supported"
            )

    def _call(self, name: str, *args: object) -> None:
        status = self._functions[name](*args)
        if status != Status.SUCCESS:
            raise CudnnError(status, self.get_error_string(status), name)

    def _create(self, name: str) -> int:
        ptr = c_void_p()
        self._call(name, byref(ptr))
        return int(ptr.value or 0)

    # ----------------------------
    # library and handle
    # ----------------------------

    def get_version(self) -> int:
        return int(self._cdll.cudnnGetVersion())

    def get_error_string(self, status: int) -> str:
        message = self._cdll.cudnnGetErrorString(int(status))
        return message.decode() if message else ""

    def create_handle(self) -> int:
        return self._create("cudnnCreate")

    def destroy_handle(self, handle: int) -> None:
        self._call("cudnnDestroy", handle)

    # ----------------------------
    # descriptors
    # ----------------------------

    def create_tensor_descriptor(self) -> int:
        return self._create("cudnnCreateTensorDescriptor")

    def set_tensor_nd_descriptor(
        self,
        desc: int,
        data_type: DataType,
        dims: Sequence[int],
        strides: Sequence[int],
    ) -> None:
        self._call(
            "cudnnSetTensorNdDescriptor",
            desc,
            int(data_type),
            len(dims),
            _int_array(dims),
            _int_array(strides),
        )

    def get_tensor_nd_descriptor(
        self, desc: int, nb_dims_requested: int
    ) -> tuple[DataType, tuple[int, ...], tuple[int, ...]]:
        data_type, nb_dims = _out_int(), _out_int()
        dims = (c_int * nb_dims_requested)()
        strides = (c_int * nb_dims_requested)()
        self._call(
            "cudnnGetTensorNdDescriptor",
            desc,
            nb_dims_requested,
            byref(data_type),
            byref(nb_dims),
            dims,
            strides,
        )
        n = nb_dims.value
        return DataType(data_type.value), tuple(dims[:n]), tuple(strides[:n])

    def destroy_tensor_descriptor(self, desc: int) -> None:
        self._call("cudnnDestroyTensorDescriptor", desc)

    def create_filter_descriptor(self) -> int:
        return self._create("cudnnCreateFilterDescriptor")

    def set_filter_nd_descriptor(self, desc: int, data_type: DataType, dims: Sequence[int]) -> None:
        self._call(
            "cudnnSetFilterNdDescriptor", desc, int(data_type), len(dims), _int_array(dims)
        )

    def get_filter_nd_descriptor(
        self, desc: int, nb_dims_requested: int
    ) -> tuple[DataType, tuple[int, ...]]:
        data_type, nb_dims = _out_int(), _out_int()
        dims = (c_int * nb_dims_requested)()
        self._call(
            "cudnnGetFilterNdDescriptor",
            desc,
            nb_dims_requested,
            byref(data_type),
            byref(nb_dims),
            dims,
        )
        return DataType(data_type.value), tuple(dims[: nb_dims.value])

    def destroy_filter_descriptor(self, desc: int) -> None:
        self._call("cudnnDestroyFilterDescriptor", desc)

    def create_pooling_descriptor(self) -> int:
        return self._create("cudnnCreatePoolingDescriptor")

    def set_pooling_nd_descriptor(
        self,
        desc: int,
        mode: PoolingMode,
        window: Sequence[int],
        padding: Sequence[int],
        stride: Sequence[int],
    ) -> None:
        self._call(
            "cudnnSetPoolingNdDescriptor",
            desc,
            int(mode),
            len(window),
            _int_array(window),
            _int_array(padding),
            _int_array(stride),
        )

    def get_pooling_nd_descriptor(
        self, desc: int, nb_dims_requested: int
    ) -> tuple[PoolingMode, tuple[int, ...], tuple[int, ...], tuple[int, ...]]:
        mode, nb_dims = _out_int(), _out_int()
        window = (c_int * nb_dims_requested)()
        padding = (c_int * nb_dims_requested)()
        stride = (c_int * nb_dims_requested)()
        self._call(
            "cudnnGetPoolingNdDescriptor",
            desc,
            nb_dims_requested,
            byref(mode),
            byref(nb_dims),
            window,
            padding,
            stride,
        )
        n = nb_dims.value
        return PoolingMode(mode.value), tuple(window[:n]), tuple(padding[:n]), tuple(stride[:n])

    def destroy_pooling_descriptor(self, desc: int) -> None:
        self._call("cudnnDestroyPoolingDescriptor", desc)

    def create_convolution_descriptor(self) -> int:
        return self._create("cudnnCreateConvolutionDescriptor")

    def set_convolution_nd_descriptor(
        self,
        desc: int,
        padding: Sequence[int],
        stride: Sequence[int],
        upscale: Sequence[int],
        mode: ConvolutionMode,
    ) -> None:
        self._call(
            "cudnnSetConvolutionNdDescriptor",
            desc,
            len(padding),
            _int_array(padding),
            _int_array(stride),
            _int_array(upscale),
            int(mode),
        )

    def get_convolution_nd_descriptor(
        self, desc: int, array_length_requested: int
    ) -> tuple[tuple[int, ...], tuple[int, ...], tuple[int, ...], ConvolutionMode]:
        array_length, mode = _out_int(), _out_int()
        padding = (c_int * array_length_requested)()
        stride = (c_int * array_length_requested)()
        upscale = (c_int * array_length_requested)()
        self._call(
            "cudnnGetConvolutionNdDescriptor",
            desc,
            array_length_requested,
            byref(array_length),
            padding,
            stride,
            upscale,
            byref(mode),
        )
        n = array_length.value
        return (
            tuple(padding[:n]), tuple(stride[:n]), tuple(upscale[:n]), ConvolutionMode(mode.value)
        )

    def destroy_convolution_descriptor(self, desc: int) -> None:
        self._call("cudnnDestroyConvolutionDescriptor", desc)

    # ----------------------------
    # tensor ops
    # ----------------------------

    def transform_tensor(
        self, handle: int, alpha: Scalar, src_desc: int, src: int,
        beta: Scalar, dest_desc: int, dest: int,
    ) -> None:
        self._call(
            "cudnnTransformTensor",
            handle, byref(alpha), src_desc, src, byref(beta), dest_desc, dest,
        )

    def add_tensor(
        self, handle: int, mode: int, alpha: Scalar, bias_desc: int, bias: int,
        beta: Scalar, src_dest_desc: int, src_dest: int,
    ) -> None:
        self._call(
            "cudnnAddTensor",
            handle,
            int(mode),
            byref(alpha),
            bias_desc,
            bias,
            byref(beta),
            src_dest_desc,
            src_dest,
        )

    def set_tensor(self, handle: int, desc: int, data: int, value: Scalar) -> None:
        self._call("cudnnSetTensor", handle, desc, data, byref(value))

    def scale_tensor(self, handle: int, desc: int, data: int, alpha: Scalar) -> None:
        self._call("cudnnScaleTensor", handle, desc, data, byref(alpha))

    # ----------------------------
    # activation and softmax
    # ----------------------------

    def activation_forward(
        self, handle: int, mode: int, alpha: Scalar, src_desc: int, src: int,
        beta: Scalar, dest_desc: int, dest: int,
    ) -> None:
        self._call(
            "cudnnActivationForward",
            handle, int(mode), byref(alpha), src_desc, src, byref(beta), dest_desc, dest,
        )

    def activation_backward(
        self, handle: int, mode: int, alpha: Scalar, src_desc: int, src: int,
        src_diff_desc: int, src_diff: int, dest_desc: int, dest: int,
        beta: Scalar, dest_diff_desc: int, dest_diff: int,
    ) -> None:
        self._call(
            "cudnnActivationBackward",
            handle, int(mode), byref(alpha), src_desc, src, src_diff_desc, src_diff,
            dest_desc, dest, byref(beta), dest_diff_desc, dest_diff,
        )

    def softmax_forward(
        self, handle: int, algorithm: int, mode: int, alpha: Scalar, src_desc: int, src: int,
        beta: Scalar, dest_desc: int, dest: int,
    ) -> None:
        self._call(
            "cudnnSoftmaxForward",
            handle, int(algorithm), int(mode), byref(alpha), src_desc, src,
            byref(beta), dest_desc, dest,
        )

    def softmax_backward(
        self, handle: int, algorithm: int, mode: int, alpha: Scalar, src_desc: int, src: int,
        src_diff_desc: int, src_diff: int, beta: Scalar, dest_diff_desc: int, dest_diff: int,
    ) -> None:
        self._call(
            "cudnnSoftmaxBackward",
            handle, int(algorithm), int(mode), byref(alpha), src_desc, src,
            src_diff_desc, src_diff, byref(beta), dest_diff_desc, dest_diff,
        )

    # ----------------------------
    # pooling
    # ----------------------------

    def pooling_forward(
        self, handle: int, pooling_desc: int, alpha: Scalar, src_desc: int, src: int,
        beta: Scalar, dest_desc: int, dest: int,
    ) -> None:
        self._call(
            "cudnnPoolingForward",
            handle, pooling_desc, byref(alpha), src_desc, src, byref(beta), dest_desc, dest,
        )

    def pooling_backward(
        self, handle: int, pooling_desc: int, alpha: Scalar, src_desc: int, src: int,
        src_diff_desc: int, src_diff: int, dest_desc: int, dest: int,
        beta: Scalar, dest_diff_desc: int, dest_diff: int,
    ) -> None:
        self._call(
            "cudnnPoolingBackward",
            handle, pooling_desc, byref(alpha), src_desc, src, src_diff_desc, src_diff,
            dest_desc, dest, byref(beta), dest_diff_desc, dest_diff,
        )

    # ----------------------------
    # convolution
    # ----------------------------

    def get_convolution_nd_forward_output_dim(
        self, conv_desc: int, src_desc: int, filter_desc: int, nb_dims: int
    ) -> tuple[int, ...]:
        output_dims = (c_int * nb_dims)()
        self._call(
            "cudnnGetConvolutionNdForwardOutputDim",
            conv_desc,
            src_desc,
            filter_desc,
            nb_dims,
            output_dims,
        )
        return tuple(output_dims)

    def get_convolution_forward_algorithm(
        self, handle: int, src_desc: int, filter_desc: int, conv_desc: int, dest_desc: int,
        preference: int, memory_limit_in_bytes: int,
    ) -> ConvolutionFwdAlgo:
        algorithm = _out_int()
        self._call(
            "cudnnGetConvolutionForwardAlgorithm",
            handle, src_desc, filter_desc, conv_desc, dest_desc,
            int(preference), memory_limit_in_bytes, byref(algorithm),
        )
        return ConvolutionFwdAlgo(algorithm.value)

    def get_convolution_forward_workspace_size(
        self, handle: int, src_desc: int, filter_desc: int, conv_desc: int, dest_desc: int,
        algorithm: int,
    ) -> int:
        size_in_bytes = c_size_t(0)
        self._call(
            "cudnnGetConvolutionForwardWorkspaceSize",
            handle, src_desc, filter_desc, conv_desc, dest_desc,
            int(algorithm), byref(size_in_bytes),
        )
        return int(size_in_bytes.value)

    def convolution_forward(
        self, handle: int, alpha: Scalar, src_desc: int, src: int, filter_desc: int,
        filter_data: int, conv_desc: int, algorithm: int, workspace: int | None,
        workspace_size_in_bytes: int, beta: Scalar, dest_desc: int, dest: int,
    ) -> None:
        self._call(
            "cudnnConvolutionForward",
            handle, byref(alpha), src_desc, src, filter_desc, filter_data, conv_desc,
            int(algorithm), workspace, workspace_size_in_bytes, byref(beta), dest_desc, dest,
        )

    def convolution_backward_bias(
        self, handle: int, alpha: Scalar, src_desc: int, src: int,
        beta: Scalar, dest_desc: int, dest: int,
    ) -> None:
        self._call(
            "cudnnConvolutionBackwardBias",
            handle, byref(alpha), src_desc, src, byref(beta), dest_desc, dest,
        )

    def convolution_backward_filter(
        self, handle: int, alpha: Scalar, src_desc: int, src: int, diff_desc: int, diff: int,
        conv_desc: int, beta: Scalar, grad_desc: int, grad: int,
    ) -> None:
        self._call(
            "cudnnConvolutionBackwardFilter",
            handle, byref(alpha), src_desc, src, diff_desc, diff, conv_desc,
            byref(beta), grad_desc, grad,
        )

    def convolution_backward_data(
        self, handle: int, alpha: Scalar, filter_desc: int, filter_data: int,
        diff_desc: int, diff: int, conv_desc: int, beta: Scalar, grad_desc: int, grad: int,
    ) -> None:
        self._call(
            "cudnnConvolutionBackwardData",
            handle, byref(alpha), filter_desc, filter_data, diff_desc, diff, conv_desc,
            byref(beta), grad_desc, grad,
        )


def library_candidates(name: str | None = None) -> list[str]:
    """List the names `load_library` tries, in order.

    Args:
        name (str | None): Explicit path or soname. Overrides the lookup.

    Returns:
        list[str]: Candidate names for `ctypes.CDLL`.
    """
    if name:
        return [name]
    env_name = os.environ.get(ENV_LIBRARY, "")
    if env_name:
        return [env_name]
    candidates = []
    found = ctypes.util.find_library("cudnn")
    if found:
        candidates.append(found)
    candidates.extend(soname for soname in _SONAMES if soname not in candidates)
    return candidates


def load_library(name: str | None = None) -> LibCudnn:
    """Load the cuDNN shared library.

    Args:
        name (str | None): Explicit path or soname. Defaults to the
            `CUDNNBIND_LIBRARY` environment variable, then a system lookup.

    Raises:
        LibraryNotFoundError: If no candidate can be loaded and bound. A
            candidate lacking an entry point or reporting an unsupported
            version is skipped.

    Returns:
        LibCudnn: The bound library.
    """
    errors = []
    for candidate in library_candidates(name):
        try:
            cdll = ctypes.CDLL(candidate)
        except OSError as exc:
            errors.append(f"{candidate}: {exc}")
            continue
        try:
            lib = LibCudnn(cdll, candidate)
        except LibraryNotFoundError as exc:
            errors.append(str(exc))
            continue
        logger.debug(f"Loaded cuDNN {lib.get_version()} from {candidate}")
        return lib

    raise LibraryNotFoundError(
        "cuDNN library cannot be found. Install cuDNN or point "
        f"{ENV_LIBRARY} at it. Tried: {'; '.join(errors) or 'nothing'}"
    )


__all__ = [
    "ENV_LIBRARY",
    "LibCudnn",
    "SUPPORTED_VERSIONS",
    "library_candidates",
    "load_library",
]
