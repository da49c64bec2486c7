"""Tests for tensor arithmetic, activation and softmax.

The fake library computes these on host memory, so the tests check both the
values and what was passed across the native boundary.
"""

import numpy as np
import pytest
from cudnnbind import (
    ActivationConfig,
    ActivationMode,
    AddConfig,
    AddMode,
    CudnnError,
    SoftmaxAlgorithm,
    SoftmaxConfig,
    SoftmaxMode,
    activation_backward,
    activation_forward,
    add_tensor,
    scale_tensor,
    set_tensor,
    softmax_backward,
    softmax_forward,
    transform_tensor,
)


def live_descriptors(lib):
    """Descriptors still alive, ignoring handles and their default convolution."""
    kinds = lib.live_kinds()
    return kinds["tensor"] + kinds["filter"]


class TestTransform:
    def test_default_dest_adds_beta(self, lib, rng):
        x = rng.standard_normal((2, 3)).astype(np.float32)
        y = transform_tensor(2.0, x, 0.5)
        np.testing.assert_allclose(y, 2 * x + 0.5, rtol=1e-6)
        assert y is not x

    def test_explicit_dest(self, lib, rng):
        x = rng.standard_normal((2, 3, 4, 5))
        dest = np.full_like(x, 3.0)
        out = transform_tensor(1.0, x, 1.0, dest)
        assert out is dest
        np.testing.assert_allclose(dest, x + 3.0)

    def test_descriptors_are_rank_four(self, lib):
        transform_tensor(1.0, np.zeros((2, 3), dtype=np.float32))
        dims = [args[2] for args in lib.calls_to("set_tensor_nd_descriptor")]
        assert dims == [(2, 3, 1, 1), (2, 3, 1, 1)]


class TestAdd:
    def test_same_c_bias(self, lib, rng):
        x = rng.standard_normal((2, 3, 4, 4))
        bias = np.arange(3, dtype=np.float64).reshape(1, 3, 1, 1)
        expected = x + bias
        out = add_tensor(bias, x)
        assert out is x
        np.testing.assert_allclose(x, expected)

    def test_mode_and_scaling_are_passed(self, lib):
        x = np.zeros((2, 3, 1, 1), dtype=np.float32)
        bias = np.ones((2, 3, 1, 1), dtype=np.float32)
        config = AddConfig(mode=AddMode.FULL_TENSOR, alpha=2.0, beta=0.0)
        add_tensor(bias, x, config=config)
        (args,) = lib.calls_to("add_tensor")
        assert args[1] is AddMode.FULL_TENSOR
        assert args[2] == 2.0
        np.testing.assert_allclose(x, 2.0)

    def test_mode_aliases(self):
        assert AddMode.IMAGE == AddMode.SAME_HW
        assert AddMode.FEATURE_MAP == AddMode.SAME_CHW


class TestSetAndScale:
    def test_set(self, lib):
        x = np.zeros((3, 4), dtype=np.float32)
        assert set_tensor(x, 7.5) is x
        np.testing.assert_array_equal(x, 7.5)

    def test_scale(self, lib):
        x = np.arange(6, dtype=np.float64).reshape(2, 3)
        expected = x * -2
        assert scale_tensor(x, -2.0) is x
        np.testing.assert_array_equal(x, expected)

    def test_scale_vector(self, lib):
        x = np.ones(5, dtype=np.float32)
        scale_tensor(x, 3.0)
        np.testing.assert_array_equal(x, 3.0)


class TestActivation:
    def test_forward_in_place_by_default(self, lib):
        x = np.array([[-1.0, 0.0, 2.0]], dtype=np.float32)
        y = activation_forward(x)
        assert y is x
        np.testing.assert_array_equal(x, [[0.0, 0.0, 2.0]])

    def test_forward_into_dest(self, lib, rng):
        x = rng.standard_normal((2, 5))
        dest = np.empty_like(x)
        activation_forward(x, dest, config=ActivationConfig(mode=ActivationMode.TANH))
        np.testing.assert_allclose(dest, np.tanh(x))

    def test_sigmoid(self, lib, rng):
        x = rng.standard_normal((4, 3))
        expected = 1 / (1 + np.exp(-x))
        activation_forward(x, config=ActivationConfig(mode=ActivationMode.SIGMOID))
        np.testing.assert_allclose(x, expected)

    def test_backward_relu(self, lib):
        x = np.array([[-1.0, 0.0, 2.0, 3.0]])
        y = np.maximum(x, 0)
        dy = np.array([[1.0, 1.0, 1.0, 5.0]])
        dx = np.empty_like(x)
        out = activation_backward(y, dy, x, dx)
        assert out is dx
        np.testing.assert_array_equal(dx, [[0.0, 0.0, 1.0, 5.0]])

    def test_backward_overwrites_src_diff_by_default(self, lib):
        x = np.array([[-1.0, 2.0]], dtype=np.float32)
        y = np.maximum(x, 0)
        dy = np.ones_like(x)
        out = activation_backward(y, dy, x)
        assert out is dy
        np.testing.assert_array_equal(dy, [[0.0, 1.0]])

    def test_rejects_invalid_mode(self):
        with pytest.raises(ValueError, match="ActivationMode"):
            ActivationConfig(mode=SoftmaxMode.CHANNEL)

    def test_numpy_integer_mode(self):
        assert ActivationConfig(mode=np.int64(2)).mode is ActivationMode.TANH

    @pytest.mark.parametrize("mode", [True, 1.0, np.float64(1.0)])
    def test_rejects_non_integer_mode(self, mode):
        with pytest.raises(ValueError, match="ActivationMode"):
            ActivationConfig(mode=mode)


class TestSoftmax:
    def test_forward_normalizes_rows(self, lib, rng):
        x = rng.standard_normal((4, 10))
        y = softmax_forward(x)
        assert y is x
        np.testing.assert_allclose(y.sum(axis=1), 1.0)

    def test_forward_channel_mode(self, lib, rng):
        x = rng.standard_normal((2, 3, 4, 4)).astype(np.float32)
        dest = np.empty_like(x)
        config = SoftmaxConfig(algorithm=SoftmaxAlgorithm.FAST, mode=SoftmaxMode.CHANNEL)
        softmax_forward(x, dest, config=config)
        np.testing.assert_allclose(dest.sum(axis=1), 1.0, rtol=1e-5)

    def test_backward_is_not_rescaled(self, lib, rng):
        logits = rng.standard_normal((3, 5))
        y = np.exp(logits) / np.exp(logits).sum(axis=1, keepdims=True)
        dy = rng.standard_normal((3, 5))
        expected = y * (dy - (y * dy).sum(axis=1, keepdims=True))
        dx = np.zeros_like(y)
        softmax_backward(y, dy, dx)
        np.testing.assert_allclose(dx, expected)

    def test_backward_overwrites_src_diff_by_default(self, lib):
        y = np.full((1, 4), 0.25)
        dy = np.ones((1, 4))
        assert softmax_backward(y, dy) is dy
        np.testing.assert_allclose(dy, 0.0, atol=1e-12)


class TestOperandChecks:
    def test_mismatched_dtypes(self, lib):
        x = np.zeros((2, 2), dtype=np.float32)
        dest = np.zeros((2, 2), dtype=np.float64)
        with pytest.raises(TypeError, match="same dtype"):
            activation_forward(x, dest)
        assert "activation_forward" not in lib.call_names()

    def test_unsupported_dtype(self, lib):
        with pytest.raises(TypeError, match="float32 and float64"):
            scale_tensor(np.zeros(3, dtype=np.int64), 2.0)

    def test_host_arrays_rejected_by_device_library(self, lib):
        lib.requires_device_memory = True
        with pytest.raises(TypeError, match="device arrays"):
            set_tensor(np.zeros(3, dtype=np.float32), 1.0)
        assert "set_tensor" not in lib.call_names()


class TestDescriptorRelease:
    def test_released_after_each_operation(self, lib, rng):
        x = rng.standard_normal((2, 3))
        transform_tensor(1.0, x)
        softmax_forward(x)
        activation_backward(x, x.copy())
        assert live_descriptors(lib) == 0
        assert lib.created["tensor"] == lib.destroyed["tensor"] == 2 + 2 + 4

    def test_released_when_native_call_fails(self, lib):
        lib.fail_on.add("activation_forward")
        with pytest.raises(CudnnError):
            activation_forward(np.zeros((2, 2), dtype=np.float32))
        assert live_descriptors(lib) == 0

    def test_released_when_descriptor_configuration_fails(self, lib):
        lib.fail_on.add("set_tensor_nd_descriptor")
        with pytest.raises(CudnnError):
            transform_tensor(1.0, np.zeros(2, dtype=np.float32))
        assert live_descriptors(lib) == 0
