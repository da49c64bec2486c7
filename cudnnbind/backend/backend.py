"""Array module selection.

Operands and the buffers allocated for them are CuPy arrays when CuPy finds a
CUDA device. Otherwise `xp` falls back to NumPy, which only a host-side
replacement library (see `handle.set_library`) can consume.
"""

from __future__ import annotations

import logging
from typing import Any

logger = logging.getLogger(__name__)


def _validate_cupy_available() -> None:
    """Validate that CuPy is available with working CUDA devices.

    Raises:
        RuntimeError: If CUDA is unavailable or no devices are found.
    """
    try:
        device_count = xp.cuda.runtime.getDeviceCount()
    except Exception as exc:
        raise RuntimeError("CuPy is installed but the CUDA runtime is unavailable") from exc

    if device_count < 1:
        raise RuntimeError("CuPy is installed but no CUDA device was found")


try:
    import cupy as xp

    _validate_cupy_available()

    BACKEND = "cupy"
    logger.debug("Allocating operand buffers with cupy")
except (ImportError, RuntimeError) as err:
    import numpy as xp

    BACKEND = "numpy"
    logger.warning("CuPy unavailable; falling back to numpy, cuDNN calls need device arrays")
    logger.debug(f"Falling back to numpy because: {err!r}")


def array_module(array: Any) -> Any:
    """Get the array module (cupy or numpy) that owns `array`.

    Buffers allocated on behalf of an operation (default destinations,
    gradients, workspaces) come from this module, so they live in the same
    memory space as the operands.

    Args:
        array (Any): A numpy or cupy array.

    Returns:
        Any: The `cupy` or `numpy` module.
    """
    if BACKEND == "cupy":
        return xp.get_array_module(array)
    return xp


__all__ = ["BACKEND", "array_module", "xp"]
