"""Behaviour shared by all optimizers and the update rules of SGD, Adam(W), Adagrad and RMSprop."""

from __future__ import annotations

import numpy as np
import pytest
from tensoropt import (
    ASGD,
    SGD,
    Adadelta,
    Adagrad,
    Adam,
    Adamax,
    AdamW,
    NAdam,
    Parameter,
    RAdam,
    RMSprop,
    Rprop,
    tensor,
)
from tensoropt.optim import (
    LearningRateController,
    SupportsBetas,
    SupportsMomentum,
)

ALL_OPTIMIZERS = [
    (SGD, {"lr": 0.1}),
    (SGD, {"lr": 0.05, "momentum": 0.9, "nesterov": True}),
    (ASGD, {"lr": 0.1}),
    (Adam, {"lr": 0.05}),
    (Adam, {"lr": 0.05, "amsgrad": True}),
    (AdamW, {"lr": 0.05}),
    (Adamax, {"lr": 0.05}),
    (NAdam, {"lr": 0.05}),
    (RAdam, {"lr": 0.05}),
    (Adadelta, {"lr": 1.0, "eps": 1e-2}),
    (Adagrad, {"lr": 0.5}),
    (RMSprop, {"lr": 0.01}),
    (Rprop, {"lr": 0.01}),
]
OPTIMIZER_IDS = [
    f"{cls.__name__}-{'-'.join(f'{k}={v}' for k, v in kwargs.items())}"
    for cls, kwargs in ALL_OPTIMIZERS
]


@pytest.fixture(params=ALL_OPTIMIZERS, ids=OPTIMIZER_IDS)
def optimizer_case(request):
    return request.param


def test_converges_on_quadratic(make_param, quadratic, optimizer_case) -> None:
    optimizer_cls, kwargs = optimizer_case
    _, grad, loss = quadratic
    param = make_param(np.zeros(3))
    optimizer = optimizer_cls([param], **kwargs)
    initial = loss(param)
    for _ in range(500):
        param.grad = grad(param)
        optimizer.step()
    assert loss(param) < 0.01 * initial


def test_step_updates_parameter_in_place(make_param, optimizer_case) -> None:
    optimizer_cls, kwargs = optimizer_case
    param = make_param([1.0, 2.0])
    buffer = np.asarray(param)
    optimizer = optimizer_cls({"w": param}, **kwargs)
    param.grad = np.array([0.5, -0.5])
    optimizer.step()

    assert optimizer.params["w"] is param
    assert np.shares_memory(buffer, np.asarray(param))
    assert not np.allclose(param, [1.0, 2.0])
    assert int(optimizer.param_state["w"]["step"]) == 1


def test_parameters_without_gradient_are_skipped(make_param, optimizer_case) -> None:
    optimizer_cls, kwargs = optimizer_case
    with_grad, without_grad, frozen = make_param([1.0]), make_param([2.0]), make_param([3.0])
    frozen.requires_grad = False
    frozen.grad = np.array([1.0])
    optimizer = optimizer_cls([with_grad, without_grad, frozen], **kwargs)

    with_grad.grad = np.array([1.0])
    optimizer.step()

    assert not np.allclose(with_grad, [1.0])
    np.testing.assert_array_equal(without_grad, [2.0])
    np.testing.assert_array_equal(frozen, [3.0])
    assert int(optimizer.param_state["0"]["step"]) == 1
    assert int(optimizer.param_state["1"]["step"]) == 0
    assert int(optimizer.param_state["2"]["step"]) == 0


def test_step_returns_closure_result(make_param, optimizer_case) -> None:
    optimizer_cls, kwargs = optimizer_case
    param = make_param([1.0, -1.0])
    optimizer = optimizer_cls([param], **kwargs)
    calls = []

    def closure():
        calls.append(1)
        param.grad = 2 * np.asarray(param)
        return float(np.sum(np.asarray(param) ** 2))

    assert optimizer.step(closure) == pytest.approx(2.0)
    assert len(calls) == 1
    assert optimizer.step() is None


def test_state_is_allocated_on_construction(make_param, optimizer_case) -> None:
    optimizer_cls, kwargs = optimizer_case
    param = make_param([[1.0, 2.0], [3.0, 4.0]])
    optimizer = optimizer_cls({"layer.W": param}, **kwargs)

    state = optimizer.param_state["layer.W"]
    assert state["step"].shape == ()
    assert int(state["step"]) == 0
    for key, value in state.items():
        if value.ndim > 0:
            assert value.shape == param.shape, key
            assert value.dtype == param.dtype, key


def test_get_and_load_state_resume_training(make_param, optimizer_case) -> None:
    optimizer_cls, kwargs = optimizer_case
    grads = [np.array([0.3, -0.2]), np.array([0.1, 0.4]), np.array([-0.5, 0.2])]

    param = make_param([1.0, 2.0])
    optimizer = optimizer_cls({"w": param}, **kwargs)
    for grad in grads[:2]:
        param.grad = grad
        optimizer.step()

    resumed = make_param(np.asarray(param).copy())
    resumed_optimizer = optimizer_cls({"w": resumed}, **kwargs)
    exp_state = resumed_optimizer.param_state["w"]
    resumed_optimizer.load_state(state={k: v.detach() for k, v in optimizer.get_state().items()})
    assert resumed_optimizer.param_state["w"] is exp_state

    param.grad = grads[2]
    optimizer.step()
    resumed.grad = grads[2]
    resumed_optimizer.step()

    np.testing.assert_allclose(resumed, param)
    assert int(resumed_optimizer.param_state["w"]["step"]) == 3


def test_get_state_keys(make_param) -> None:
    optimizer = Adam({"fc.W": make_param([1.0]), "fc.b": make_param([0.0])})
    assert list(optimizer.get_state()) == [
        "param_state{fc.W}{step}",
        "param_state{fc.W}{exp_avg}",
        "param_state{fc.W}{exp_avg_sq}",
        "param_state{fc.b}{step}",
        "param_state{fc.b}{exp_avg}",
        "param_state{fc.b}{exp_avg_sq}",
    ]
    assert len(optimizer.state) == 6
    assert optimizer.device == (optimizer.params["fc.W"].tensor_device,)


def test_load_state_errors(make_param) -> None:
    optimizer = Adam({"w": make_param([1.0, 2.0])})
    state = optimizer.get_state()

    missing = dict(state)
    del missing["param_state{w}{exp_avg}"]
    with pytest.raises(KeyError):
        optimizer.load_state(state=missing)
    optimizer.load_state(state=missing, partial=True)

    wrong_shape = dict(state)
    wrong_shape["param_state{w}{exp_avg}"] = tensor([1.0, 2.0, 3.0])
    with pytest.raises(ValueError, match="Shape"):
        optimizer.load_state(state=wrong_shape)

    wrong_type = dict(state)
    wrong_type["param_state{w}{exp_avg}"] = np.zeros(2)
    with pytest.raises(TypeError):
        optimizer.load_state(state=wrong_type)


def test_copy_to_same_device_keeps_state(make_param) -> None:
    optimizer = NAdam([make_param([1.0])])
    state = optimizer.param_state["0"]["mu_product"]
    assert optimizer.copy_to_device("cpu") is optimizer
    assert optimizer.param_state["0"]["mu_product"] is state


def test_params_are_named(make_param) -> None:
    a, b = make_param([1.0]), make_param([2.0])

    assert list(SGD([a, b], lr=0.1).params) == ["0", "1"]
    assert list(SGD([("a", a), ("b", b)], lr=0.1).params) == ["a", "b"]
    optimizer = SGD({"b": b, "a": a}, lr=0.1)
    assert optimizer.named_parameters() == [("b", b), ("a", a)]
    assert optimizer.parameters() == [b, a]


def test_invalid_params(make_param) -> None:
    a = make_param([1.0])
    with pytest.raises(ValueError, match="at least one"):
        SGD([], lr=0.1)
    with pytest.raises(ValueError, match="more than once"):
        SGD([("a", a), ("a", make_param([2.0]))], lr=0.1)
    with pytest.raises(TypeError):
        SGD([tensor([1.0])], lr=0.1)


def test_gradient_checks(make_param) -> None:
    param = make_param([1.0, 2.0])
    optimizer = Adam([param])

    param.grad = np.ones(3)
    with pytest.raises(ValueError, match="shape"):
        optimizer.step()

    param.grad = [1.0, 1.0]
    with pytest.raises(TypeError, match="sparse"):
        optimizer.step()


def test_gradient_is_not_modified(make_param) -> None:
    param = make_param([1.0, 2.0])
    grad = np.array([0.5, 0.5])
    param.grad = grad
    SGD([param], lr=0.1, weight_decay=0.5, momentum=0.9).step()
    np.testing.assert_array_equal(grad, [0.5, 0.5])


def test_zero_grad(make_param) -> None:
    a, b = make_param([1.0]), make_param([2.0])
    optimizer = SGD([a, b], lr=0.1)
    a.grad = np.array([3.0])

    optimizer.zero_grad(set_to_none=False)
    np.testing.assert_array_equal(a.grad, [0.0])
    assert b.grad is None

    optimizer.zero_grad()
    assert a.grad is None


def test_learning_rate_controller(make_param) -> None:
    param = make_param([1.0])
    optimizer = SGD([param], lr=0.1)
    assert isinstance(optimizer, LearningRateController)
    assert optimizer.initial_lr == 0.1

    optimizer.lr = 0.0
    param.grad = np.array([1.0])
    optimizer.step()
    np.testing.assert_array_equal(param, [1.0])
    assert optimizer.initial_lr == 0.1

    with pytest.raises(ValueError):
        optimizer.lr = -1.0


def test_hyperparameter_protocols(make_param) -> None:
    param = make_param([1.0])
    adam = Adam([param])
    assert isinstance(adam, SupportsBetas)
    assert not isinstance(adam, SupportsMomentum)
    assert isinstance(SGD([param], lr=0.1), SupportsMomentum)
    assert isinstance(RMSprop([param]), SupportsMomentum)

    adam.betas = (0.5, 0.6)
    assert adam.betas == (0.5, 0.6)
    with pytest.raises(ValueError):
        adam.betas = (0.5, 1.0)


def test_momentum_can_be_switched_on(make_param) -> None:
    param = make_param([0.0])
    optimizer = SGD([param], lr=0.1)
    param.grad = np.array([1.0])
    optimizer.step()
    np.testing.assert_allclose(param, [-0.1])

    optimizer.momentum = 0.5
    optimizer.step()
    optimizer.step()
    # buffer: 1.0, then 0.5 * 1.0 + 1.0
    np.testing.assert_allclose(param, [-0.1 - 0.1 - 0.15])


def test_sgd_momentum_and_nesterov(make_param) -> None:
    param = make_param([0.0])
    optimizer = SGD([param], lr=0.1, momentum=0.9)
    for _ in range(2):
        param.grad = np.array([1.0])
        optimizer.step()
    np.testing.assert_allclose(param, [-0.1 - 0.19])

    param = make_param([0.0])
    optimizer = SGD([param], lr=0.1, momentum=0.9, nesterov=True)
    param.grad = np.array([1.0])
    optimizer.step()
    np.testing.assert_allclose(param, [-0.19])


def test_sgd_dampening_and_weight_decay(make_param) -> None:
    param = make_param([1.0])
    optimizer = SGD([param], lr=0.1, momentum=0.5, dampening=0.5, weight_decay=1.0)
    param.grad = np.array([1.0])
    optimizer.step()
    # first buffer = g + wd * p = 2
    np.testing.assert_allclose(param, [0.8])
    param.grad = np.array([1.0])
    optimizer.step()
    # buffer = 0.5 * 2 + 0.5 * (1 + 0.8)
    np.testing.assert_allclose(param, [0.8 - 0.1 * 1.9])


def test_adam_first_step_moves_by_lr(make_param) -> None:
    param = make_param([1.0, -1.0])
    param.grad = np.array([0.3, -4.0])
    Adam([param], lr=0.01).step()
    np.testing.assert_allclose(param, [0.99, -0.99], rtol=1e-6)


def test_adam_matches_reference(make_param) -> None:
    betas, lr, eps = (0.9, 0.99), 0.01, 1e-8
    grads = [np.array([0.3, -4.0]), np.array([0.2, 1.0]), np.array([-0.1, 2.0])]
    param = make_param([1.0, -1.0])
    optimizer = Adam([param], lr=lr)

    p = np.array([1.0, -1.0])
    m, v = np.zeros(2), np.zeros(2)
    for t, g in enumerate(grads, start=1):
        param.grad = g
        optimizer.step()
        m = betas[0] * m + (1 - betas[0]) * g
        v = betas[1] * v + (1 - betas[1]) * g * g
        m_hat, v_hat = m / (1 - betas[0] ** t), v / (1 - betas[1] ** t)
        p = p - lr * m_hat / (np.sqrt(v_hat) + eps)
    np.testing.assert_allclose(param, p, rtol=1e-10)


def test_amsgrad_keeps_maximum(make_param) -> None:
    param = make_param([1.0])
    optimizer = Adam([param], amsgrad=True)
    for g in (4.0, 0.1):
        param.grad = np.array([g])
        optimizer.step()
    state = optimizer.param_state["0"]
    assert float(state["max_exp_avg_sq"][0]) > float(state["exp_avg_sq"][0])
    np.testing.assert_allclose(state["max_exp_avg_sq"], [0.01 * 16.0])


def test_adamw_decouples_weight_decay(make_param) -> None:
    decoupled, coupled = make_param([1.0]), make_param([1.0])
    decoupled.grad = np.array([0.0])
    coupled.grad = np.array([0.0])
    AdamW([decoupled], lr=0.1, weight_decay=0.1).step()
    Adam([coupled], lr=0.1, weight_decay=0.1).step()

    np.testing.assert_allclose(decoupled, [0.99])
    np.testing.assert_allclose(coupled, [0.9], rtol=1e-6)


def test_adagrad_matches_reference(make_param) -> None:
    lr, lr_decay, eps = 0.1, 0.5, 1e-10
    grads = [np.array([1.0, -2.0]), np.array([0.5, 0.5])]
    param = make_param([0.0, 0.0])
    optimizer = Adagrad([param], lr=lr, lr_decay=lr_decay, initial_accumulator_value=0.1)

    p, acc = np.zeros(2), np.full(2, 0.1)
    for t, g in enumerate(grads, start=1):
        param.grad = g
        optimizer.step()
        acc = acc + g * g
        p = p - lr / (1 + (t - 1) * lr_decay) * g / (np.sqrt(acc) + eps)
    np.testing.assert_allclose(param, p, rtol=1e-10)


def test_rmsprop_centered_and_momentum(make_param) -> None:
    lr, alpha, eps, momentum = 0.01, 0.9, 1e-8, 0.5
    grads = [np.array([1.0, -2.0]), np.array([0.5, 0.5]), np.array([-1.0, 0.2])]
    param = make_param([0.0, 0.0])
    optimizer = RMSprop([param], lr=lr, alpha=alpha, momentum=momentum, centered=True)

    p, sq, ga, buf = np.zeros(2), np.zeros(2), np.zeros(2), np.zeros(2)
    for g in grads:
        param.grad = g
        optimizer.step()
        sq = alpha * sq + (1 - alpha) * g * g
        ga = alpha * ga + (1 - alpha) * g
        buf = momentum * buf + g / (np.sqrt(sq - ga * ga) + eps)
        p = p - lr * buf
    np.testing.assert_allclose(param, p, rtol=1e-10)
    assert set(optimizer.param_state["0"]) == {"step", "square_avg", "momentum_buffer", "grad_avg"}


@pytest.mark.parametrize(
    "factory",
    [
        lambda p: SGD(p, lr=-0.1),
        lambda p: SGD(p, lr=0.1, momentum=-0.9),
        lambda p: SGD(p, lr=0.1, nesterov=True),
        lambda p: SGD(p, lr=0.1, momentum=0.9, dampening=0.1, nesterov=True),
        lambda p: Adam(p, betas=(0.9, 1.0)),
        lambda p: Adam(p, eps=-1.0),
        lambda p: AdamW(p, weight_decay=-0.01),
        lambda p: Adagrad(p, lr_decay=-1.0),
        lambda p: Adagrad(p, initial_accumulator_value=-1.0),
        lambda p: RMSprop(p, alpha=-0.1),
        lambda p: RMSprop(p, momentum=-0.1),
    ],
)
def test_invalid_hyperparameters(make_param, factory) -> None:
    with pytest.raises(ValueError):
        factory([make_param([1.0])])


def test_defaults_are_recorded(make_param) -> None:
    optimizer = Adam([make_param([1.0])], lr=0.01, amsgrad=True)
    assert optimizer.defaults == {
        "lr": 0.01,
        "betas": (0.9, 0.99),
        "eps": 1e-8,
        "weight_decay": 0,
        "amsgrad": True,
    }


def test_parameter_requires_float(make_param) -> None:
    with pytest.raises(ValueError):
        SGD([Parameter([1, 2])], lr=0.1)
