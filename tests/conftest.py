"""Shared fixtures: a CPU-side stand-in for the native library.

`FakeCudnn` implements the methods of `cudnnbind.LibCudnn` on host memory.
It keeps every descriptor's configuration so it can be read back, counts
creations and releases per descriptor kind, records every call and can be
told to fail a given method. The element-wise operations (tensor
arithmetic, activation, softmax) are computed with numpy directly on the
operands' memory, so results can be checked. Pooling and convolution are
only recorded.
"""

from __future__ import annotations

import ctypes
import itertools
from collections import Counter
from typing import Any

import numpy as np
import pytest
from cudnnbind import set_library
from cudnnbind.errors import CudnnError
from cudnnbind.types import (
    ActivationMode,
    ConvolutionFwdAlgo,
    DataType,
    SoftmaxAlgorithm,
    SoftmaxMode,
    Status,
)

_NUMPY_TYPES = {DataType.FLOAT: np.float32, DataType.DOUBLE: np.float64}


class FakeCudnn:
    """Host-memory implementation of the `LibCudnn` interface."""

    requires_device_memory = False

    def __init__(self) -> None:
        self._ptrs = itertools.count(0x1000, 0x10)
        self.live: dict[int, str] = {}
        self.created: Counter[str] = Counter()
        self.destroyed: Counter[str] = Counter()
        self.tensors: dict[int, tuple[DataType, tuple[int, ...], tuple[int, ...]]] = {}
        self.filters: dict[int, tuple[DataType, tuple[int, ...]]] = {}
        self.poolings: dict[int, tuple[Any, ...]] = {}
        self.convolutions: dict[int, tuple[Any, ...]] = {}
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.fail_on: set[str] = set()
        self.workspace_size = 0
        self.algorithm = ConvolutionFwdAlgo.IMPLICIT_GEMM

    # ----------------------------
    # bookkeeping
    # ----------------------------

    def _record(self, name: str, *args: Any) -> None:
        self.calls.append((name, args))
        if name in self.fail_on:
            raise CudnnError(Status.BAD_PARAM, "CUDNN_STATUS_BAD_PARAM", name)

    def _new(self, kind: str) -> int:
        self._record(f"create_{kind}")
        ptr = next(self._ptrs)
        self.live[ptr] = kind
        self.created[kind] += 1
        return ptr

    def _free(self, kind: str, ptr: int) -> None:
        self._record(f"destroy_{kind}", ptr)
        if self.live.get(ptr) != kind:
            raise AssertionError(f"{kind} {ptr:#x} released twice or never created")
        del self.live[ptr]
        self.destroyed[kind] += 1

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]

    def calls_to(self, name: str) -> list[tuple[Any, ...]]:
        return [args for call, args in self.calls if call == name]

    def live_kinds(self) -> Counter[str]:
        return Counter(self.live.values())

    def view(self, desc: int, ptr: int) -> np.ndarray:
        """Map the memory at `ptr` as described by tensor descriptor `desc`."""
        data_type, dims, strides = self.tensors[desc]
        dtype = np.dtype(_NUMPY_TYPES[data_type])
        span = 1 + sum((d - 1) * s for d, s in zip(dims, strides, strict=True))
        buffer = (ctypes.c_char * (span * dtype.itemsize)).from_address(ptr)
        base = np.frombuffer(buffer, dtype=dtype, count=span)
        return np.lib.stride_tricks.as_strided(
            base, shape=dims, strides=[s * dtype.itemsize for s in strides]
        )

    # ----------------------------
    # library and handle
    # ----------------------------

    def get_version(self) -> int:
        return 2000

    def get_error_string(self, status: int) -> str:
        return f"CUDNN_STATUS_{Status(status).name}"

    def create_handle(self) -> int:
        return self._new("handle")

    def destroy_handle(self, handle: int) -> None:
        self._free("handle", handle)

    # ----------------------------
    # descriptors
    # ----------------------------

    def create_tensor_descriptor(self) -> int:
        return self._new("tensor")

    def set_tensor_nd_descriptor(self, desc, data_type, dims, strides) -> None:
        self._record("set_tensor_nd_descriptor", desc, data_type, dims, strides)
        self.tensors[desc] = (DataType(data_type), tuple(dims), tuple(strides))

    def get_tensor_nd_descriptor(self, desc, nb_dims_requested):
        data_type, dims, strides = self.tensors[desc]
        return data_type, dims[:nb_dims_requested], strides[:nb_dims_requested]

    def destroy_tensor_descriptor(self, desc) -> None:
        self._free("tensor", desc)

    def create_filter_descriptor(self) -> int:
        return self._new("filter")

    def set_filter_nd_descriptor(self, desc, data_type, dims) -> None:
        self._record("set_filter_nd_descriptor", desc, data_type, dims)
        self.filters[desc] = (DataType(data_type), tuple(dims))

    def get_filter_nd_descriptor(self, desc, nb_dims_requested):
        data_type, dims = self.filters[desc]
        return data_type, dims[:nb_dims_requested]

    def destroy_filter_descriptor(self, desc) -> None:
        self._free("filter", desc)

    def create_pooling_descriptor(self) -> int:
        return self._new("pooling")

    def set_pooling_nd_descriptor(self, desc, mode, window, padding, stride) -> None:
        self._record("set_pooling_nd_descriptor", desc, mode, window, padding, stride)
        self.poolings[desc] = (mode, tuple(window), tuple(padding), tuple(stride))

    def get_pooling_nd_descriptor(self, desc, nb_dims_requested):
        mode, window, padding, stride = self.poolings[desc]
        n = nb_dims_requested
        return mode, window[:n], padding[:n], stride[:n]

    def destroy_pooling_descriptor(self, desc) -> None:
        self._free("pooling", desc)

    def create_convolution_descriptor(self) -> int:
        return self._new("convolution")

    def set_convolution_nd_descriptor(self, desc, padding, stride, upscale, mode) -> None:
        self._record("set_convolution_nd_descriptor", desc, padding, stride, upscale, mode)
        self.convolutions[desc] = (tuple(padding), tuple(stride), tuple(upscale), mode)

    def get_convolution_nd_descriptor(self, desc, array_length_requested):
        padding, stride, upscale, mode = self.convolutions[desc]
        n = array_length_requested
        return padding[:n], stride[:n], upscale[:n], mode

    def destroy_convolution_descriptor(self, desc) -> None:
        self._free("convolution", desc)

    # ----------------------------
    # tensor ops
    # ----------------------------

    def transform_tensor(self, handle, alpha, src_desc, src, beta, dest_desc, dest) -> None:
        self._record(
            "transform_tensor", handle, alpha.value, src_desc, src, beta.value, dest_desc, dest
        )
        out = self.view(dest_desc, dest)
        out[...] = alpha.value * self.view(src_desc, src) + beta.value * out

    def add_tensor(self, handle, mode, alpha, bias_desc, bias, beta, desc, data) -> None:
        self._record(
            "add_tensor", handle, mode, alpha.value, bias_desc, bias, beta.value, desc, data
        )
        out = self.view(desc, data)
        out[...] = alpha.value * self.view(bias_desc, bias) + beta.value * out

    def set_tensor(self, handle, desc, data, value) -> None:
        self._record("set_tensor", handle, desc, data, value.value)
        self.view(desc, data)[...] = value.value

    def scale_tensor(self, handle, desc, data, alpha) -> None:
        self._record("scale_tensor", handle, desc, data, alpha.value)
        self.view(desc, data)[...] *= alpha.value

    # ----------------------------
    # activation and softmax
    # ----------------------------

    def activation_forward(self, handle, mode, alpha, src_desc, src, beta, dest_desc, dest) -> None:
        self._record(
            "activation_forward", handle, mode, alpha.value, src_desc, src,
            beta.value, dest_desc, dest,
        )
        x = np.array(self.view(src_desc, src))
        if mode == ActivationMode.RELU:
            y = np.maximum(x, 0)
        elif mode == ActivationMode.SIGMOID:
            y = 1 / (1 + np.exp(-x))
        else:
            y = np.tanh(x)
        out = self.view(dest_desc, dest)
        out[...] = alpha.value * y + beta.value * out

    def activation_backward(
        self, handle, mode, alpha, src_desc, src, src_diff_desc, src_diff,
        dest_desc, dest, beta, dest_diff_desc, dest_diff,
    ) -> None:
        self._record(
            "activation_backward", handle, mode, alpha.value, src_desc, src, src_diff_desc,
            src_diff, dest_desc, dest, beta.value, dest_diff_desc, dest_diff,
        )
        y = np.array(self.view(src_desc, src))
        dy = np.array(self.view(src_diff_desc, src_diff))
        x = np.array(self.view(dest_desc, dest))
        if mode == ActivationMode.RELU:
            dx = dy * (x > 0)
        elif mode == ActivationMode.SIGMOID:
            dx = dy * y * (1 - y)
        else:
            dx = dy * (1 - y * y)
        out = self.view(dest_diff_desc, dest_diff)
        out[...] = alpha.value * dx + beta.value * out

    @staticmethod
    def _softmax_axes(mode: int) -> tuple[int, ...]:
        return (1, 2, 3) if mode == SoftmaxMode.INSTANCE else (1,)

    def softmax_forward(
        self, handle, algorithm, mode, alpha, src_desc, src, beta, dest_desc, dest
    ) -> None:
        self._record(
            "softmax_forward", handle, algorithm, mode, alpha.value, src_desc, src,
            beta.value, dest_desc, dest,
        )
        axes = self._softmax_axes(mode)
        x = np.array(self.view(src_desc, src))
        if algorithm == SoftmaxAlgorithm.ACCURATE:
            x = x - x.max(axis=axes, keepdims=True)
        e = np.exp(x)
        out = self.view(dest_desc, dest)
        out[...] = alpha.value * e / e.sum(axis=axes, keepdims=True) + beta.value * out

    def softmax_backward(
        self, handle, algorithm, mode, alpha, src_desc, src, src_diff_desc, src_diff,
        beta, dest_diff_desc, dest_diff,
    ) -> None:
        self._record(
            "softmax_backward", handle, algorithm, mode, alpha.value, src_desc, src,
            src_diff_desc, src_diff, beta.value, dest_diff_desc, dest_diff,
        )
        axes = self._softmax_axes(mode)
        y = np.array(self.view(src_desc, src))
        dy = np.array(self.view(src_diff_desc, src_diff))
        dx = y * (dy - (y * dy).sum(axis=axes, keepdims=True))
        out = self.view(dest_diff_desc, dest_diff)
        out[...] = alpha.value * dx + beta.value * out

    # ----------------------------
    # pooling
    # ----------------------------

    def pooling_forward(
        self, handle, pooling_desc, alpha, src_desc, src, beta, dest_desc, dest
    ) -> None:
        self._record(
            "pooling_forward", handle, pooling_desc, alpha.value, src_desc, src,
            beta.value, dest_desc, dest,
        )

    def pooling_backward(
        self, handle, pooling_desc, alpha, src_desc, src, src_diff_desc, src_diff,
        dest_desc, dest, beta, dest_diff_desc, dest_diff,
    ) -> None:
        self._record(
            "pooling_backward", handle, pooling_desc, alpha.value, src_desc, src, src_diff_desc,
            src_diff, dest_desc, dest, beta.value, dest_diff_desc, dest_diff,
        )

    # ----------------------------
    # convolution
    # ----------------------------

    def get_convolution_nd_forward_output_dim(self, conv_desc, src_desc, filter_desc, nb_dims):
        self._record(
            "get_convolution_nd_forward_output_dim", conv_desc, src_desc, filter_desc, nb_dims
        )
        padding, stride, _, _ = self.convolutions[conv_desc]
        _, src_dims, _ = self.tensors[src_desc]
        _, filter_dims = self.filters[filter_desc]
        spatial = tuple(
            1 + (d + 2 * p - f) // s
            for d, f, p, s in zip(src_dims[2:], filter_dims[2:], padding, stride, strict=True)
        )
        return (src_dims[0], filter_dims[0], *spatial)[:nb_dims]

    def get_convolution_forward_algorithm(
        self, handle, src_desc, filter_desc, conv_desc, dest_desc, preference, memory_limit_in_bytes
    ):
        self._record(
            "get_convolution_forward_algorithm", handle, src_desc, filter_desc, conv_desc,
            dest_desc, preference, memory_limit_in_bytes,
        )
        return self.algorithm

    def get_convolution_forward_workspace_size(
        self, handle, src_desc, filter_desc, conv_desc, dest_desc, algorithm
    ) -> int:
        self._record(
            "get_convolution_forward_workspace_size", handle, src_desc, filter_desc, conv_desc,
            dest_desc, algorithm,
        )
        return self.workspace_size

    def convolution_forward(
        self, handle, alpha, src_desc, src, filter_desc, filter_data, conv_desc, algorithm,
        workspace, workspace_size_in_bytes, beta, dest_desc, dest,
    ) -> None:
        self._record(
            "convolution_forward", handle, alpha.value, src_desc, src, filter_desc, filter_data,
            conv_desc, algorithm, workspace, workspace_size_in_bytes, beta.value, dest_desc, dest,
        )

    def convolution_backward_bias(
        self, handle, alpha, src_desc, src, beta, dest_desc, dest
    ) -> None:
        self._record(
            "convolution_backward_bias", handle, alpha.value, src_desc, src,
            beta.value, dest_desc, dest,
        )
        out = self.view(dest_desc, dest)
        grad = self.view(src_desc, src).sum(axis=(0, 2, 3), keepdims=True)
        out[...] = alpha.value * grad + beta.value * out

    def convolution_backward_filter(
        self, handle, alpha, src_desc, src, diff_desc, diff, conv_desc, beta, grad_desc, grad
    ) -> None:
        self._record(
            "convolution_backward_filter", handle, alpha.value, src_desc, src, diff_desc, diff,
            conv_desc, beta.value, grad_desc, grad,
        )

    def convolution_backward_data(
        self, handle, alpha, filter_desc, filter_data, diff_desc, diff, conv_desc,
        beta, grad_desc, grad,
    ) -> None:
        self._record(
            "convolution_backward_data", handle, alpha.value, filter_desc, filter_data, diff_desc,
            diff, conv_desc, beta.value, grad_desc, grad,
        )


@pytest.fixture
def lib() -> Any:
    """Install a fresh `FakeCudnn` as the active library."""
    fake = FakeCudnn()
    set_library(fake)
    yield fake
    set_library(None)


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(0)


@pytest.fixture
def other_lib() -> FakeCudnn:
    """A second library, not installed as the active one."""
    return FakeCudnn()
