"""Stochastic gradient descent and its averaged variant."""

from __future__ import annotations

from typing import Any

from ..backend import xp
from ..ops import scalar_like, zeros_like
from ..tensor import Parameter, Tensor
from .optimizer import ParameterwiseOptimizer, ParamsLike, check_non_negative


class SGD(ParameterwiseOptimizer):
    """Stochastic gradient descent, optionally with (Nesterov) momentum."""

    def __init__(
        self,
        params: ParamsLike,
        *,
        lr: float,
        momentum: float = 0,
        dampening: float = 0,
        weight_decay: float = 0,
        nesterov: bool = False,
    ):
        """The stochastic gradient descent optimizer.

        **Standard SGD:** `momentum=0`
        **SGD w/ momentum:** `momentum>0`, e.g. `0.9`
        **Nesterov momentum:** `momentum>0, dampening=0, nesterov=True`

        Args:
            params (ParamsLike): Parameters to optimize.
            lr (float): The learning rate.
            momentum (float, optional): Momentum factor. Defaults to 0.
            dampening (float, optional): Dampening for momentum, the share
                of the new gradient that is **not** added to the buffer. Defaults to 0.
            weight_decay (float, optional): Weight of the L2 penalty added to the
                gradient. Defaults to 0.
            nesterov (bool, optional): Enables Nesterov momentum. Defaults to False.
        """
        check_non_negative(momentum=momentum, weight_decay=weight_decay)
        if nesterov and (momentum <= 0 or dampening != 0):
            raise ValueError("Nesterov momentum requires a momentum and zero dampening")

        self.momentum = momentum
        self.dampening = dampening
        self.weight_decay = weight_decay
        self.nesterov = nesterov
        super().__init__(
            params,
            lr=lr,
            momentum=momentum,
            dampening=dampening,
            weight_decay=weight_decay,
            nesterov=nesterov,
        )

    def _init_state(self, name: str, param: Parameter) -> dict[str, Tensor]:
        state = super()._init_state(name, param)
        # the buffer is seeded with the first gradient it sees, the flag
        # tells whether that has happened (momentum may be switched on later)
        state["momentum_buffer"] = zeros_like(param)
        state["has_momentum_buffer"] = scalar_like(param, 0, dtype=xp.int8)
        return state

    def _update(self, param: Any, grad: Any, state: dict[str, Any], step: int) -> None:  # noqa: ARG002
        if self.weight_decay != 0:
            grad = grad + self.weight_decay * param

        if self.momentum != 0:
            buf = state["momentum_buffer"]
            if not bool(state["has_momentum_buffer"]):
                buf[...] = grad
                state["has_momentum_buffer"][...] = 1
            else:
                buf *= self.momentum
                buf += (1 - self.dampening) * grad
            grad = grad + self.momentum * buf if self.nesterov else buf

        param -= self.lr * grad


class ASGD(ParameterwiseOptimizer):
    """Averaged stochastic gradient descent.

    Proposed in "Acceleration of stochastic approximation by averaging"
    (Polyak and Juditsky, 1992). The running average of the iterates is
    kept in the `ax` state of every parameter.
    """

    def __init__(
        self,
        params: ParamsLike,
        *,
        lr: float = 1e-3,
        lambd: float = 1e-4,
        alpha: float = 0.75,
        t0: float = 1e6,
        weight_decay: float = 0,
    ):
        """Averaged SGD.

        Args:
            params (ParamsLike): Parameters to optimize.
            lr (float, optional): The learning rate. Defaults to 1e-3.
            lambd (float, optional): Decay term. Defaults to 1e-4.
            alpha (float, optional): Power for the eta update. Defaults to 0.75.
            t0 (float, optional): Step at which to start averaging. Defaults to 1e6.
            weight_decay (float, optional): Weight of the L2 penalty. Defaults to 0.
        """
        check_non_negative(lambd=lambd, weight_decay=weight_decay)
        self.lambd = lambd
        self.alpha = alpha
        self.t0 = t0
        self.weight_decay = weight_decay
        super().__init__(
            params,
            lr=lr,
            lambd=lambd,
            alpha=alpha,
            t0=t0,
            weight_decay=weight_decay,
        )

    def _init_state(self, name: str, param: Parameter) -> dict[str, Tensor]:
        state = super()._init_state(name, param)
        state["eta"] = scalar_like(param, self.lr, dtype=xp.float64)
        state["mu"] = scalar_like(param, 1, dtype=xp.float64)
        state["ax"] = zeros_like(param)
        return state

    def _update(self, param: Any, grad: Any, state: dict[str, Any], step: int) -> None:
        if self.weight_decay != 0:
            grad = grad + self.weight_decay * param

        eta = float(state["eta"])
        mu = float(state["mu"])

        param *= 1 - self.lambd * eta
        param -= eta * grad

        ax = state["ax"]
        if mu != 1:
            ax += (param - ax) * mu
        else:
            ax[...] = param

        state["eta"][...] = self.lr / (1 + self.lambd * self.lr * step) ** self.alpha
        state["mu"][...] = 1 / max(1, step - self.t0)


__all__ = [
    "ASGD",
    "SGD",
]
