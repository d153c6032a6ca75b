from __future__ import annotations

import numpy as np
import pytest
from tensoropt import (
    BACKEND,
    BackendError,
    Parameter,
    Tensor,
    TensorDevice,
    TensorOptError,
    device_of,
    full_like,
    normalize_device,
    ones_like,
    scalar_like,
    tensor,
    zeros_like,
)
from tensoropt.backend.backend import BACKEND_ENV_VAR, _requested_backend


def test_numpy_backend_is_active() -> None:
    assert BACKEND == "numpy"


def test_operations_return_tensors() -> None:
    t = tensor([1.0, 2.0, 3.0])
    assert isinstance(t + 1, Tensor)
    assert isinstance(np.exp(t), Tensor)
    assert isinstance(t @ t, Tensor)
    assert (t * 2).requires_grad is False
    assert (t * 2).grad is None


def test_in_place_operations_keep_the_handle() -> None:
    t = tensor([1.0, 2.0])
    handle = t
    t += 1
    assert t is handle
    np.testing.assert_array_equal(handle, [2.0, 3.0])

    out = np.multiply(t, 2, out=t)
    assert out is handle
    np.testing.assert_array_equal(handle, [4.0, 6.0])


def test_derived_arrays_do_not_inherit_gradients() -> None:
    p = Parameter(np.ones(3))
    p.grad = np.ones(3)
    derived = p * 2
    assert type(derived) is Tensor
    assert derived.grad is None
    assert derived.requires_grad is False


def test_parameter_defaults() -> None:
    p = Parameter([1.0, 2.0])
    assert p.requires_grad
    assert p.is_training
    assert p.grad is None
    assert Parameter(np.ones(2), requires_grad=False).requires_grad is False


def test_parameter_requires_float_dtype() -> None:
    with pytest.raises(ValueError, match="float"):
        Parameter([1, 2, 3])
    assert Parameter([1, 2], dtype=np.float32).dtype == np.float32


def test_tensor_factory() -> None:
    t = tensor([[1, 2]], dtype=np.float32, requires_grad=True)
    assert t.dtype == np.float32
    assert t.requires_grad
    assert t.tensor_device == TensorDevice("cpu")
    assert tensor([1.0], device="cpu").tensor_device == TensorDevice("cpu")
    with pytest.raises(ValueError):
        tensor([1.0], device=0)


def test_detach_copies_the_buffer() -> None:
    t = tensor([1.0, 2.0], requires_grad=True)
    t.grad = np.ones(2)
    detached = t.detach()
    detached[0] = 5.0
    assert t[0] == 1.0
    assert detached.grad is None
    assert not detached.requires_grad


def test_copy_to_current_device_returns_self() -> None:
    t = tensor([1.0])
    assert t.copy_to_device("cpu") is t
    assert t.cpu() is t
    p = Parameter([1.0])
    assert p.copy_to_device(TensorDevice("cpu")) is p


def test_copy_to_gpu_fails_on_numpy() -> None:
    with pytest.raises(ValueError, match="cupy"):
        tensor([1.0]).gpu()


def test_tensors_are_hashable_by_identity() -> None:
    a, b = tensor([1.0]), tensor([1.0])
    assert len({a, b}) == 2
    assert {a: 1}[a] == 1


def test_like_factories() -> None:
    p = Parameter(np.ones((2, 3), dtype=np.float32))
    zeros = zeros_like(p)
    assert type(zeros) is Tensor
    assert zeros.shape == (2, 3)
    assert zeros.dtype == np.float32
    np.testing.assert_array_equal(ones_like(p, dtype=np.float64), np.ones((2, 3)))
    np.testing.assert_array_equal(full_like(p, 0.5), np.full((2, 3), 0.5))
    assert ones_like(p, requires_grad=True).requires_grad


def test_scalar_like() -> None:
    p = Parameter(np.ones((2, 3), dtype=np.float32))
    step = scalar_like(p, 0, dtype=np.int64)
    assert step.shape == ()
    assert step.dtype == np.int64
    step[...] = 3
    assert int(step) == 3
    assert scalar_like(p, 0.5).dtype == np.float32


def test_normalize_device() -> None:
    assert normalize_device("cpu") == TensorDevice("cpu")
    assert normalize_device(1) == TensorDevice("cuda", 1)
    assert normalize_device(TensorDevice("cuda", 2)) == TensorDevice("cuda", 2)

    class CupyLikeDevice:
        id = 3

    assert normalize_device(CupyLikeDevice()) == TensorDevice("cuda", 3)
    with pytest.raises(TypeError):
        normalize_device(True)
    with pytest.raises(TypeError):
        normalize_device("gpu")


def test_device_of_numpy_array() -> None:
    assert device_of(np.zeros(2)) == TensorDevice("cpu")


def test_requested_backend(monkeypatch) -> None:
    monkeypatch.setenv(BACKEND_ENV_VAR, " NumPy ")
    assert _requested_backend() == "numpy"
    monkeypatch.delenv(BACKEND_ENV_VAR)
    assert _requested_backend() == "auto"
    monkeypatch.setenv(BACKEND_ENV_VAR, "torch")
    with pytest.raises(BackendError):
        _requested_backend()


def test_backend_error_hierarchy() -> None:
    assert issubclass(BackendError, TensorOptError)
    assert issubclass(BackendError, RuntimeError)
