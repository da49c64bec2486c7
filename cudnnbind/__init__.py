"""cudnnbind: cuDNN deep learning primitives for NumPy/CuPy arrays.

A thin binding of the cuDNN v2 entry points: tensor transforms,
activations, softmax, pooling, convolution and their gradients.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("cudnnbind")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"  # Fallback for uninstalled package
from .backend import (
    BACKEND,
    ENV_LIBRARY,
    LibCudnn,
    load_library,
    xp,
)
from .config import (
    ActivationConfig,
    AddConfig,
    ConvolutionConfig,
    PoolingConfig,
    SoftmaxConfig,
)
from .convolution import (
    conv2,
    convolution_backward_bias,
    convolution_backward_data,
    convolution_backward_filter,
    convolution_forward,
    get_convolution_forward_algorithm,
    get_convolution_forward_workspace_size,
    get_convolution_nd_forward_output_dim,
)
from .descriptors import (
    ConvolutionDescriptor,
    FilterDescriptor,
    PoolingDescriptor,
    TensorDescriptor,
)
from .errors import (
    CudnnBindError,
    CudnnError,
    LibraryNotFoundError,
)
from .handle import (
    Handle,
    get_default_handle,
    get_library,
    set_default_handle,
    set_library,
)
from .pooling import (
    get_pooling_nd_descriptor,
    get_pooling_nd_forward_output_dim,
    pooling_backward,
    pooling_forward,
)
from .shapes import (
    tensor_size,
    tensor_size_of,
)
from .tensor_ops import (
    activation_backward,
    activation_forward,
    add_tensor,
    scale_tensor,
    set_tensor,
    softmax_backward,
    softmax_forward,
    transform_tensor,
)
from .types import (
    ActivationMode,
    AddMode,
    ConvolutionFwdAlgo,
    ConvolutionFwdPreference,
    ConvolutionMode,
    DataType,
    PoolingMode,
    SoftmaxAlgorithm,
    SoftmaxMode,
    Status,
)

__all__ = [
    "BACKEND",
    "ENV_LIBRARY",
    "ActivationConfig",
    "ActivationMode",
    "AddConfig",
    "AddMode",
    "ConvolutionConfig",
    "ConvolutionDescriptor",
    "ConvolutionFwdAlgo",
    "ConvolutionFwdPreference",
    "ConvolutionMode",
    "CudnnBindError",
    "CudnnError",
    "DataType",
    "FilterDescriptor",
    "Handle",
    "LibCudnn",
    "LibraryNotFoundError",
    "PoolingConfig",
    "PoolingDescriptor",
    "PoolingMode",
    "SoftmaxAlgorithm",
    "SoftmaxConfig",
    "SoftmaxMode",
    "Status",
    "TensorDescriptor",
    "__version__",
    "activation_backward",
    "activation_forward",
    "add_tensor",
    "conv2",
    "convolution_backward_bias",
    "convolution_backward_data",
    "convolution_backward_filter",
    "convolution_forward",
    "get_convolution_forward_algorithm",
    "get_convolution_forward_workspace_size",
    "get_convolution_nd_forward_output_dim",
    "get_default_handle",
    "get_library",
    "get_pooling_nd_descriptor",
    "get_pooling_nd_forward_output_dim",
    "load_library",
    "pooling_backward",
    "pooling_forward",
    "scale_tensor",
    "set_default_handle",
    "set_library",
    "set_tensor",
    "softmax_backward",
    "softmax_forward",
    "tensor_size",
    "tensor_size_of",
    "transform_tensor",
    "xp",
]
