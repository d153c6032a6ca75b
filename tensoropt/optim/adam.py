"""The Adam family: Adam, AdamW, Adamax, NAdam and RAdam."""

from __future__ import annotations

import math
from typing import Any

from ..backend import xp
from ..ops import scalar_like, zeros_like
from ..tensor import Parameter, Tensor
from .optimizer import ParameterwiseOptimizer, ParamsLike, check_betas, check_non_negative


class _AdamBase(ParameterwiseOptimizer):
    """Shared construction of the optimizers keeping a first and second moment."""

    def __init__(
        self,
        params: ParamsLike,
        *,
        lr: float,
        betas: tuple[float, float],
        eps: float,
        weight_decay: float,
        **defaults: Any,
    ):
        check_non_negative(eps=eps, weight_decay=weight_decay)
        check_betas(betas)
        self._betas = (float(betas[0]), float(betas[1]))
        self.eps = eps
        self.weight_decay = weight_decay
        super().__init__(
            params,
            lr=lr,
            betas=betas,
            eps=eps,
            weight_decay=weight_decay,
            **defaults,
        )

    @property
    def betas(self) -> tuple[float, float]:
        """Coefficients of the running averages of the gradient and its square."""
        return self._betas

    @betas.setter
    def betas(self, value: tuple[float, float]) -> None:
        check_betas(value)
        self._betas = (float(value[0]), float(value[1]))

    def _init_state(self, name: str, param: Parameter) -> dict[str, Tensor]:
        state = super()._init_state(name, param)
        state["exp_avg"] = zeros_like(param)
        state["exp_avg_sq"] = zeros_like(param)
        return state

    def _with_weight_decay(self, param: Any, grad: Any) -> Any:
        """L2 penalty folded into the gradient (a new array, `grad` stays untouched)."""
        return grad + self.weight_decay * param if self.weight_decay != 0 else grad

    def _update_moments(self, grad: Any, state: dict[str, Any]) -> None:
        beta_1, beta_2 = self._betas
        exp_avg, exp_avg_sq = state["exp_avg"], state["exp_avg_sq"]
        exp_avg *= beta_1
        exp_avg += (1 - beta_1) * grad
        exp_avg_sq *= beta_2
        exp_avg_sq += (1 - beta_2) * grad * grad


class Adam(_AdamBase):
    """Adam optimizer.

    Proposed in "Adam: A Method for Stochastic Optimization"
    (https://arxiv.org/abs/1412.6980). Weight decay is an L2 penalty on
    the gradient, see `AdamW` for the decoupled variant.
    """

    def __init__(
        self,
        params: ParamsLike,
        *,
        lr: float = 1e-3,
        betas: tuple[float, float] = (0.9, 0.99),
        eps: float = 1e-8,
        weight_decay: float = 0,
        amsgrad: bool = False,
    ):
        """The Adam optimizer.

        Args:
            params (ParamsLike): Parameters to optimize.
            lr (float, optional): The learning rate, also called `alpha`
                in the paper. Defaults to 1e-3.
            betas (tuple[float, float], optional): Exponential decay rates
                for the momentum and the noise. Defaults to (0.9, 0.99).
            eps (float, optional): Value added to the denominator to improve
                numerical stability. Defaults to 1e-8.
            weight_decay (float, optional): Weight of the L2 penalty. Defaults to 0.
            amsgrad (bool, optional): Use the maximum of all second moment
                estimates so far (AMSGrad). Defaults to False.
        """
        self.amsgrad = amsgrad
        super().__init__(
            params,
            lr=lr,
            betas=betas,
            eps=eps,
            weight_decay=weight_decay,
            amsgrad=amsgrad,
        )

    def _init_state(self, name: str, param: Parameter) -> dict[str, Tensor]:
        state = super()._init_state(name, param)
        if self.amsgrad:
            state["max_exp_avg_sq"] = zeros_like(param)
        return state

    def _decay(self, param: Any, grad: Any) -> Any:
        return self._with_weight_decay(param, grad)

    def _update(self, param: Any, grad: Any, state: dict[str, Any], step: int) -> None:
        beta_1, beta_2 = self._betas
        grad = self._decay(param, grad)
        self._update_moments(grad, state)

        bias_correction_1 = 1 - beta_1**step
        bias_correction_2 = 1 - beta_2**step

        second_moment = state["exp_avg_sq"]
        if self.amsgrad:
            xp.maximum(state["max_exp_avg_sq"], second_moment, out=state["max_exp_avg_sq"])
            second_moment = state["max_exp_avg_sq"]

        denom = xp.sqrt(second_moment) / math.sqrt(bias_correction_2) + self.eps
        param -= (self.lr / bias_correction_1) * state["exp_avg"] / denom


class AdamW(Adam):
    """Adam with decoupled weight decay.

    Proposed in "Decoupled Weight Decay Regularization"
    (https://arxiv.org/abs/1711.05101): the parameter is shrunk by
    `lr * weight_decay` instead of adding an L2 term to the gradient.
    """

    def _decay(self, param: Any, grad: Any) -> Any:
        if self.weight_decay != 0:
            param *= 1 - self.lr * self.weight_decay
        return grad


class Adamax(_AdamBase):
    """Adamax, the infinity norm variant of Adam.

    The second moment is replaced by an exponentially weighted infinity
    norm kept in the `exp_inf` state.
    """

    def __init__(
        self,
        params: ParamsLike,
        *,
        lr: float = 0.002,
        betas: tuple[float, float] = (0.9, 0.999),
        eps: float = 1e-8,
        weight_decay: float = 0,
    ):
        super().__init__(params, lr=lr, betas=betas, eps=eps, weight_decay=weight_decay)

    def _init_state(self, name: str, param: Parameter) -> dict[str, Tensor]:
        state = super()._init_state(name, param)
        state["exp_inf"] = state.pop("exp_avg_sq")
        return state

    def _update(self, param: Any, grad: Any, state: dict[str, Any], step: int) -> None:
        beta_1, beta_2 = self._betas
        grad = self._with_weight_decay(param, grad)

        exp_avg, exp_inf = state["exp_avg"], state["exp_inf"]
        exp_avg *= beta_1
        exp_avg += (1 - beta_1) * grad

        exp_inf *= beta_2
        xp.maximum(exp_inf, xp.abs(grad) + self.eps, out=exp_inf)

        clr = self.lr / (1 - beta_1**step)
        param -= clr * exp_avg / exp_inf


class NAdam(_AdamBase):
    """Adam with Nesterov momentum.

    See "Incorporating Nesterov Momentum into Adam"
    (https://openreview.net/forum?id=OM0jvwB8jIp57ZJjtNEZ). The momentum
    schedule `mu_t` decays with `momentum_decay`; the running product of all
    `mu_t` so far is kept in the `mu_product` state.
    """

    def __init__(
        self,
        params: ParamsLike,
        *,
        lr: float = 0.002,
        betas: tuple[float, float] = (0.9, 0.999),
        eps: float = 1e-8,
        weight_decay: float = 0,
        momentum_decay: float = 4e-3,
    ):
        check_non_negative(momentum_decay=momentum_decay)
        self.momentum_decay = momentum_decay
        super().__init__(
            params,
            lr=lr,
            betas=betas,
            eps=eps,
            weight_decay=weight_decay,
            momentum_decay=momentum_decay,
        )

    def _init_state(self, name: str, param: Parameter) -> dict[str, Tensor]:
        state = super()._init_state(name, param)
        state["mu_product"] = scalar_like(param, 1, dtype=xp.float64)
        return state

    def _mu(self, step: int) -> float:
        return self._betas[0] * (1.0 - 0.5 * 0.96 ** (step * self.momentum_decay))

    def _update(self, param: Any, grad: Any, state: dict[str, Any], step: int) -> None:
        beta_2 = self._betas[1]
        grad = self._with_weight_decay(param, grad)

        mu = self._mu(step)
        mu_next = self._mu(step + 1)
        mu_product = float(state["mu_product"]) * mu
        mu_product_next = mu_product * mu_next
        state["mu_product"][...] = mu_product

        self._update_moments(grad, state)

        bias_correction_2 = 1 - beta_2**step
        denom = xp.sqrt(state["exp_avg_sq"] / bias_correction_2) + self.eps

        param -= self.lr * (1 - mu) / (1 - mu_product) * grad / denom
        param -= self.lr * mu_next / (1 - mu_product_next) * state["exp_avg"] / denom


class RAdam(_AdamBase):
    """Rectified Adam.

    See "On the Variance of the Adaptive Learning Rate and Beyond"
    (https://arxiv.org/abs/1908.03265). While the variance of the adaptive
    learning rate is intractable (`rho_t <= 5`, the first steps) a plain
    momentum step is taken.
    """

    RECTIFICATION_THRESHOLD = 5.0

    def __init__(
        self,
        params: ParamsLike,
        *,
        lr: float = 0.002,
        betas: tuple[float, float] = (0.9, 0.999),
        eps: float = 1e-8,
        weight_decay: float = 0,
    ):
        super().__init__(params, lr=lr, betas=betas, eps=eps, weight_decay=weight_decay)

    def _update(self, param: Any, grad: Any, state: dict[str, Any], step: int) -> None:
        beta_1, beta_2 = self._betas
        grad = self._with_weight_decay(param, grad)
        self._update_moments(grad, state)

        bias_correction_1 = 1 - beta_1**step
        bias_correction_2 = 1 - beta_2**step
        bias_corrected_exp_avg = state["exp_avg"] / bias_correction_1

        rho_inf = 2 / (1 - beta_2) - 1
        rho_t = rho_inf - 2 * step * beta_2**step / bias_correction_2

        if rho_t > self.RECTIFICATION_THRESHOLD:
            rect = math.sqrt(
                (rho_t - 4) * (rho_t - 2) * rho_inf / ((rho_inf - 4) * (rho_inf - 2) * rho_t)
            )
            adaptive_lr = math.sqrt(bias_correction_2) / (xp.sqrt(state["exp_avg_sq"]) + self.eps)
            param -= self.lr * bias_corrected_exp_avg * adaptive_lr * rect
        else:
            param -= self.lr * bias_corrected_exp_avg


__all__ = [
    "Adam",
    "AdamW",
    "Adamax",
    "NAdam",
    "RAdam",
]
