"""Optimizers adapting a per-element learning rate from accumulated squared gradients."""

from __future__ import annotations

from typing import Any

from ..backend import xp
from ..ops import full_like, zeros_like
from ..tensor import Parameter, Tensor
from .optimizer import ParameterwiseOptimizer, ParamsLike, check_non_negative


class Adadelta(ParameterwiseOptimizer):
    """Adadelta optimizer.

    Proposed in "ADADELTA: An Adaptive Learning Rate Method"
    (https://arxiv.org/abs/1212.5701). Keeps running averages of the squared
    gradients (`square_avg`) and of the squared updates (`acc_delta`); their
    ratio rescales the gradient, so `lr` only acts as a final multiplier.
    """

    def __init__(
        self,
        params: ParamsLike,
        *,
        lr: float = 1.0,
        rho: float = 0.9,
        eps: float = 1e-6,
        weight_decay: float = 0,
    ):
        """The Adadelta optimizer.

        Args:
            params (ParamsLike): Parameters to optimize.
            lr (float, optional): Coefficient scaling the delta. Defaults to 1.0.
            rho (float, optional): Coefficient of the running averages. Defaults to 0.9.
            eps (float, optional): Term added inside the square roots to avoid
                division by zero. Defaults to 1e-6.
            weight_decay (float, optional): Weight of the L2 penalty. Defaults to 0.
        """
        check_non_negative(eps=eps, weight_decay=weight_decay)
        if not 0.0 <= rho <= 1.0:
            raise ValueError(f"Invalid rho value: {rho}, must be in [0, 1]")
        self.rho = rho
        self.eps = eps
        self.weight_decay = weight_decay
        super().__init__(params, lr=lr, rho=rho, eps=eps, weight_decay=weight_decay)

    def _init_state(self, name: str, param: Parameter) -> dict[str, Tensor]:
        state = super()._init_state(name, param)
        state["square_avg"] = zeros_like(param)
        state["acc_delta"] = zeros_like(param)
        return state

    def _update(self, param: Any, grad: Any, state: dict[str, Any], step: int) -> None:  # noqa: ARG002
        if self.weight_decay != 0:
            grad = grad + self.weight_decay * param

        square_avg, acc_delta = state["square_avg"], state["acc_delta"]
        square_avg *= self.rho
        square_avg += (1 - self.rho) * grad * grad

        std = xp.sqrt(square_avg + self.eps)
        delta = xp.sqrt(acc_delta + self.eps) / std * grad

        param -= self.lr * delta

        acc_delta *= self.rho
        acc_delta += (1 - self.rho) * delta * delta


class Adagrad(ParameterwiseOptimizer):
    """Adagrad optimizer.

    Proposed in "Adaptive Subgradient Methods for Online Learning and
    Stochastic Optimization". The squared gradients are summed up in `sum`.
    """

    def __init__(
        self,
        params: ParamsLike,
        *,
        lr: float = 1e-2,
        lr_decay: float = 0,
        weight_decay: float = 0,
        initial_accumulator_value: float = 0,
        eps: float = 1e-10,
    ):
        check_non_negative(
            lr_decay=lr_decay,
            weight_decay=weight_decay,
            initial_accumulator_value=initial_accumulator_value,
            eps=eps,
        )
        self.lr_decay = lr_decay
        self.weight_decay = weight_decay
        self.initial_accumulator_value = initial_accumulator_value
        self.eps = eps
        super().__init__(
            params,
            lr=lr,
            lr_decay=lr_decay,
            weight_decay=weight_decay,
            initial_accumulator_value=initial_accumulator_value,
            eps=eps,
        )

    def _init_state(self, name: str, param: Parameter) -> dict[str, Tensor]:
        state = super()._init_state(name, param)
        state["sum"] = full_like(param, self.initial_accumulator_value)
        return state

    def _update(self, param: Any, grad: Any, state: dict[str, Any], step: int) -> None:
        if self.weight_decay != 0:
            grad = grad + self.weight_decay * param

        clr = self.lr / (1 + (step - 1) * self.lr_decay)

        accumulator = state["sum"]
        accumulator += grad * grad
        param -= clr * grad / (xp.sqrt(accumulator) + self.eps)


class RMSprop(ParameterwiseOptimizer):
    """RMSprop optimizer, proposed by G. Hinton in his course.

    With `centered=True` the gradient is normalized by an estimate of its
    variance instead of its second moment.
    """

    def __init__(
        self,
        params: ParamsLike,
        *,
        lr: float = 1e-2,
        alpha: float = 0.99,
        eps: float = 1e-8,
        weight_decay: float = 0,
        momentum: float = 0,
        centered: bool = False,
    ):
        """The RMSprop optimizer.

        Args:
            params (ParamsLike): Parameters to optimize.
            lr (float, optional): The learning rate. Defaults to 1e-2.
            alpha (float, optional): Smoothing constant. Defaults to 0.99.
            eps (float, optional): Term added to the denominator. Defaults to 1e-8.
            weight_decay (float, optional): Weight of the L2 penalty. Defaults to 0.
            momentum (float, optional): Momentum factor. Defaults to 0.
            centered (bool, optional): Compute the centered RMSprop. Defaults to False.
        """
        check_non_negative(alpha=alpha, eps=eps, weight_decay=weight_decay, momentum=momentum)
        self.alpha = alpha
        self.eps = eps
        self.weight_decay = weight_decay
        self.momentum = momentum
        self.centered = centered
        super().__init__(
            params,
            lr=lr,
            alpha=alpha,
            eps=eps,
            weight_decay=weight_decay,
            momentum=momentum,
            centered=centered,
        )

    def _init_state(self, name: str, param: Parameter) -> dict[str, Tensor]:
        state = super()._init_state(name, param)
        state["square_avg"] = zeros_like(param)
        state["momentum_buffer"] = zeros_like(param)
        if self.centered:
            state["grad_avg"] = zeros_like(param)
        return state

    def _update(self, param: Any, grad: Any, state: dict[str, Any], step: int) -> None:  # noqa: ARG002
        if self.weight_decay != 0:
            grad = grad + self.weight_decay * param

        square_avg = state["square_avg"]
        square_avg *= self.alpha
        square_avg += (1 - self.alpha) * grad * grad

        if self.centered:
            grad_avg = state["grad_avg"]
            grad_avg *= self.alpha
            grad_avg += (1 - self.alpha) * grad
            avg = xp.sqrt(square_avg - grad_avg * grad_avg) + self.eps
        else:
            avg = xp.sqrt(square_avg) + self.eps

        if self.momentum > 0:
            buf = state["momentum_buffer"]
            buf *= self.momentum
            buf += grad / avg
            param -= self.lr * buf
        else:
            param -= self.lr * grad / avg


__all__ = [
    "Adadelta",
    "Adagrad",
    "RMSprop",
]
