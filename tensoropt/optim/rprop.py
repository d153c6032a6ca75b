"""Resilient backpropagation."""

from __future__ import annotations

from typing import Any

from ..backend import xp
from ..ops import full_like, zeros_like
from ..tensor import Parameter, Tensor
from .optimizer import ParameterwiseOptimizer, ParamsLike, check_non_negative


class Rprop(ParameterwiseOptimizer):
    """The resilient backpropagation algorithm.

    Only the sign of the gradient is used. Every element has its own step
    size (`step_size` state), which grows by `etaplus` while the gradient keeps
    its sign and shrinks by `etaminus` when the sign flips. After a flip the
    element is not moved and its gradient is forgotten (`prev` is zeroed).
    """

    def __init__(
        self,
        params: ParamsLike,
        *,
        lr: float = 1e-2,
        etaminus: float = 0.5,
        etaplus: float = 1.2,
        min_step: float = 1e-6,
        max_step: float = 50,
    ):
        """The Rprop optimizer.

        Args:
            params (ParamsLike): Parameters to optimize.
            lr (float, optional): The initial step size of every element. Defaults to 1e-2.
            etaminus (float, optional): Multiplicative decrease factor. Defaults to 0.5.
            etaplus (float, optional): Multiplicative increase factor. Defaults to 1.2.
            min_step (float, optional): Minimum allowed step size. Defaults to 1e-6.
            max_step (float, optional): Maximum allowed step size. Defaults to 50.
        """
        if not 0.0 < etaminus < 1.0 < etaplus:
            raise ValueError(
                f"Invalid eta values: ({etaminus}, {etaplus}), need 0 < etaminus < 1 < etaplus"
            )
        check_non_negative(min_step=min_step)
        if max_step < min_step:
            raise ValueError(f"Invalid step sizes: max_step {max_step} < min_step {min_step}")
        self.etaminus = etaminus
        self.etaplus = etaplus
        self.min_step = min_step
        self.max_step = max_step
        super().__init__(
            params,
            lr=lr,
            etaminus=etaminus,
            etaplus=etaplus,
            min_step=min_step,
            max_step=max_step,
        )

    def _init_state(self, name: str, param: Parameter) -> dict[str, Tensor]:
        state = super()._init_state(name, param)
        state["prev"] = zeros_like(param)
        state["step_size"] = full_like(param, self.lr)
        return state

    def _update(self, param: Any, grad: Any, state: dict[str, Any], step: int) -> None:  # noqa: ARG002
        prev, step_size = state["prev"], state["step_size"]

        sign = xp.sign(grad * prev)
        factor = xp.where(sign > 0, self.etaplus, xp.where(sign < 0, self.etaminus, 1.0))

        step_size *= factor
        xp.clip(step_size, self.min_step, self.max_step, out=step_size)

        grad = grad.copy()
        grad[sign < 0] = 0

        param -= xp.sign(grad) * step_size
        prev[...] = grad


__all__ = [
    "Rprop",
]
