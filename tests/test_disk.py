from __future__ import annotations

import struct
from collections import OrderedDict

import numpy as np
import pytest
from tensoropt import (
    ASGD,
    Linear,
    Mlp,
    NAdam,
    Parameter,
    RAdam,
    Rprop,
    Tanh,
    Tensor,
    load,
    save,
    tensor,
)


def make_mlp() -> Mlp:
    return Mlp([Linear(dim_in=3, dim_out=4, dtype=np.float64), Tanh(), Linear(dim_in=4, dim_out=2)])


def test_single_tensor_roundtrip(tmp_path) -> None:
    path = str(tmp_path / "single.topt")
    data = tensor(np.arange(6, dtype=np.float32).reshape(2, 3))
    save(data, path)

    loaded = load(path)
    assert type(loaded) is Tensor
    assert loaded.dtype == np.float32
    np.testing.assert_array_equal(loaded, data)


def test_parameters_stay_parameters(tmp_path) -> None:
    path = str(tmp_path / "model.topt")
    model = make_mlp()
    save(model.get_parameters(), path)

    loaded = load(path)
    assert isinstance(loaded, OrderedDict)
    assert list(loaded) == list(model.get_parameters())
    assert all(isinstance(value, Parameter) for value in loaded.values())

    other = make_mlp()
    other.load_parameters(parameters=loaded)
    for (_, a), (_, b) in zip(model.named_parameters(), other.named_parameters(), strict=True):
        np.testing.assert_array_equal(a, b)


def test_optimizer_state_roundtrip(tmp_path, make_param) -> None:
    path = str(tmp_path / "nadam.topt")
    param = make_param([[1.0, -2.0], [0.5, 3.0]])
    optimizer = NAdam({"w": param})
    for _ in range(3):
        param.grad = np.asarray(param) * 0.5
        optimizer.step()
    save(optimizer.get_state(), path)

    restored = NAdam({"w": make_param(np.asarray(param).copy())})
    restored.load_state(state=load(path))

    for key, value in optimizer.get_state().items():
        loaded = restored.get_state()[key]
        assert loaded.dtype == value.dtype, key
        np.testing.assert_array_equal(loaded, value, err_msg=key)
    assert int(restored.param_state["w"]["step"]) == 3


def test_scalar_and_integer_state(tmp_path, make_param) -> None:
    path = str(tmp_path / "rprop.topt")
    optimizer = Rprop([make_param([1.0, 2.0])])
    state = optimizer.get_state()
    save(state, path)
    loaded = load(path)
    assert loaded["param_state{0}{step}"].shape == ()
    assert loaded["param_state{0}{step}"].dtype == np.int64


def test_requires_grad_survives_roundtrip(tmp_path) -> None:
    path = str(tmp_path / "frozen.topt")
    model = make_mlp()
    model.layers[0].requires_grad = False
    save(model.get_parameters(), path)

    loaded = load(path)
    assert not loaded["layers[0].W"].requires_grad
    assert not loaded["layers[0].b"].requires_grad
    assert loaded["layers[2].W"].requires_grad

    save(tensor([1.0, 2.0], requires_grad=True), path)
    assert load(path).requires_grad


def test_scalar_state_resumes_after_load(tmp_path, make_param) -> None:
    path = str(tmp_path / "state.topt")
    for optimizer_cls in (NAdam, Rprop, ASGD, RAdam):
        param = make_param([1.0, -2.0])
        optimizer = optimizer_cls({"w": param})
        param.grad = np.array([0.5, 0.25])
        optimizer.step()
        save(optimizer.get_state(), path)

        restored = optimizer_cls({"w": make_param(np.asarray(param))})
        restored.load_state(state=load(path))
        assert restored.param_state["w"]["step"].shape == ()
        assert int(restored.param_state["w"]["step"]) == 1


def test_rejects_wrong_suffix(tmp_path) -> None:
    with pytest.raises(ValueError, match=".topt"):
        save(tensor([1.0]), str(tmp_path / "data.npy"))
    with pytest.raises(ValueError, match=".topt"):
        load(str(tmp_path / "data.npy"))


def test_rejects_non_tensor_values(tmp_path) -> None:
    with pytest.raises(ValueError):
        save({"a": np.zeros(2)}, str(tmp_path / "data.topt"))


def test_rejects_bad_magic(tmp_path) -> None:
    path = tmp_path / "bad.topt"
    path.write_bytes(b"NOPE" + struct.pack("<B", 1))
    with pytest.raises(ValueError, match="magic"):
        load(str(path))


def test_rejects_unknown_version(tmp_path) -> None:
    path = tmp_path / "version.topt"
    path.write_bytes(b"TOPT" + struct.pack("<B", 99) + struct.pack("<I", 0))
    with pytest.raises(ValueError, match="version"):
        load(str(path))


def test_rejects_truncated_file(tmp_path) -> None:
    path = tmp_path / "truncated.topt"
    save(tensor(np.ones((4, 4))), str(path))
    path.write_bytes(path.read_bytes()[:-8])
    with pytest.raises(ValueError, match="end of file"):
        load(str(path))
