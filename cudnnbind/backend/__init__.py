"""Array and native-library backend for cudnnbind."""

from .arrays import (
    data_pointer,
    data_type_of,
    element_strides,
    empty_like,
    is_device_array,
    ones_like,
    scalar,
    workspace_like,
    zeros_like,
)
from .backend import (
    BACKEND,
    array_module,
    xp,
)
from .libcudnn import (
    ENV_LIBRARY,
    LibCudnn,
    library_candidates,
    load_library,
)

__all__ = [
    "BACKEND",
    "ENV_LIBRARY",
    "LibCudnn",
    "array_module",
    "data_pointer",
    "data_type_of",
    "element_strides",
    "empty_like",
    "is_device_array",
    "library_candidates",
    "load_library",
    "ones_like",
    "scalar",
    "workspace_like",
    "xp",
    "zeros_like",
]
