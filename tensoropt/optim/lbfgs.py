"""Limited-memory BFGS."""

from __future__ import annotations

import logging
from typing import Any

from ..backend import xp
from ..ops import scalar_like
from ..tensor import Parameter, Tensor
from .optimizer import LossClosure, Optimizer, ParamsLike, check_non_negative

logger = logging.getLogger(__name__)


class LBFGS(Optimizer):
    """L-BFGS with a fixed step length (no line search).

    All parameters are treated as one flat vector, so they must live on the
    same device. The curvature history (`old_dirs`, `old_stps`, `ro`) holds at
    most `history_size` pairs.

    `step` requires a closure, which must recompute the loss, fill the
    gradients of the parameters and return the loss. It may be called up to
    `max_eval` times per step.
    """

    CURVATURE_EPS = 1e-10

    def __init__(
        self,
        params: ParamsLike,
        *,
        lr: float = 0.01,
        max_iter: int = 20,
        max_eval: int | None = None,
        tolerance_grad: float = 1e-5,
        tolerance_change: float = 1e-9,
        history_size: int = 100,
    ):
        """The L-BFGS optimizer.

        Args:
            params (ParamsLike): Parameters to optimize.
            lr (float, optional): Step length. Defaults to 0.01.
            max_iter (int, optional): Maximal number of iterations per step. Defaults to 20.
            max_eval (int | None, optional): Maximal number of closure evaluations
                per step. Defaults to `max_iter * 5 // 4`.
            tolerance_grad (float, optional): Termination tolerance on first order
                optimality (largest absolute gradient element). Defaults to 1e-5.
            tolerance_change (float, optional): Termination tolerance on changes of
                the loss and the parameters. Defaults to 1e-9.
            history_size (int, optional): Number of stored curvature pairs. Defaults to 100.
        """
        if max_eval is None:
            max_eval = max_iter * 5 // 4
        if max_iter < 1 or max_eval < 1 or history_size < 1:
            raise ValueError("max_iter, max_eval and history_size must be positive")
        check_non_negative(tolerance_grad=tolerance_grad, tolerance_change=tolerance_change)

        self.max_iter = max_iter
        self.max_eval = max_eval
        self.tolerance_grad = tolerance_grad
        self.tolerance_change = tolerance_change
        self.history_size = history_size
        super().__init__(
            params,
            lr=lr,
            max_iter=max_iter,
            max_eval=max_eval,
            tolerance_grad=tolerance_grad,
            tolerance_change=tolerance_change,
            history_size=history_size,
        )

        devices = {param.tensor_device for param in self.params.values()}
        if len(devices) > 1:
            raise ValueError(f"LBFGS requires all parameters on one device, found {devices}")

        # shared over all parameters, not per parameter
        first = next(iter(self.params.values()))
        self.func_evals = scalar_like(first, 0, dtype=xp.int64)
        self.n_iter = scalar_like(first, 0, dtype=xp.int64)
        self.d: Tensor | None = None
        self.prev_flat_grad: Tensor | None = None
        self.old_dirs: list[Tensor] = []
        self.old_stps: list[Tensor] = []
        self.ro: list[float] = []
        self.t: float | None = None
        self.H_diag = 1.0
        self.prev_loss: float | None = None

    def _init_state(self, name: str, param: Parameter) -> dict[str, Tensor]:  # noqa: ARG002
        return {}

    def _gather_flat_grad(self) -> Any:
        views = []
        for name, param in self.params.items():
            if param.grad is None or not param.requires_grad:
                views.append(xp.zeros(param.size, dtype=param.dtype))
            else:
                views.append(self._dense_grad(name, param).ravel())
        return xp.concatenate(views)

    def _add_grad(self, step_size: float, direction: Any) -> None:
        offset = 0
        for param in self.params.values():
            numel = param.size
            if param.requires_grad:
                raw = xp.asarray(param)
                raw += step_size * direction[offset : offset + numel].reshape(param.shape)
            offset += numel

    def _direction(self, flat_grad: Any) -> Any:
        """Two-loop recursion: the search direction `-H @ flat_grad`."""
        num_old = len(self.old_dirs)
        al = [0.0] * num_old

        q = -flat_grad
        for i in range(num_old - 1, -1, -1):
            al[i] = float(xp.dot(self.old_stps[i], q)) * self.ro[i]
            q = q - al[i] * self.old_dirs[i]

        r = q * self.H_diag
        for i in range(num_old):
            be_i = float(xp.dot(self.old_dirs[i], r)) * self.ro[i]
            r = r + self.old_stps[i] * (al[i] - be_i)
        return r

    def _update_history(self, flat_grad: Any) -> None:
        """Store the newest curvature pair, if it has positive curvature."""
        y = flat_grad - self.prev_flat_grad
        s = self.d * self.t
        ys = float(xp.dot(y, s))
        if ys <= self.CURVATURE_EPS:
            return
        if len(self.old_dirs) == self.history_size:
            self.old_dirs.pop(0)
            self.old_stps.pop(0)
            self.ro.pop(0)
        self.old_dirs.append(y.view(Tensor))
        self.old_stps.append(s.view(Tensor))
        self.ro.append(1.0 / ys)
        self.H_diag = ys / float(xp.dot(y, y))

    def _evaluate(self, closure: LossClosure) -> float:
        loss = float(closure())
        self.func_evals[...] = int(self.func_evals) + 1
        return loss

    def step(self, closure: LossClosure | None = None) -> Any:  # noqa: C901
        """Performs a single L-BFGS step of up to `max_iter` iterations.

        Args:
            closure (LossClosure | None): Callable recomputing loss and gradients.

        Raises:
            ValueError: If no closure is given.

        Returns:
            Any: The loss of the first closure evaluation.
        """
        if closure is None:
            raise ValueError("A closure that re-evaluates the model is required by LBFGS.")

        orig_loss = closure()
        loss = float(orig_loss)
        self.func_evals[...] = int(self.func_evals) + 1
        current_evals = 1

        flat_grad = self._gather_flat_grad()
        if float(xp.abs(flat_grad).max()) <= self.tolerance_grad:
            logger.debug("LBFGS: gradient already below tolerance_grad")
            return orig_loss

        n_iter = 0
        while n_iter < self.max_iter:
            n_iter += 1
            self.n_iter[...] = int(self.n_iter) + 1

            # restored state carries no curvature history, start over
            restart = int(self.n_iter) == 1 or self.prev_flat_grad is None or self.d is None
            if restart:
                self.old_dirs, self.old_stps, self.ro = [], [], []
                self.H_diag = 1.0
                direction = -flat_grad
            else:
                self._update_history(flat_grad)
                direction = self._direction(flat_grad)
            self.d = direction.view(Tensor)

            self.prev_flat_grad = flat_grad.copy().view(Tensor)
            self.prev_loss = loss

            if restart:
                self.t = min(1.0, 1.0 / float(xp.abs(flat_grad).sum())) * self.lr
            else:
                self.t = self.lr

            gtd = float(xp.dot(flat_grad, direction))
            if gtd > -self.tolerance_change:
                logger.debug("LBFGS: directional derivative below tolerance_change")
                break

            self._add_grad(self.t, direction)
            opt_cond = False
            if n_iter != self.max_iter:
                loss = self._evaluate(closure)
                current_evals += 1
                flat_grad = self._gather_flat_grad()
                opt_cond = float(xp.abs(flat_grad).max()) <= self.tolerance_grad

            if n_iter == self.max_iter or current_evals >= self.max_eval:
                break
            if opt_cond:
                logger.debug("LBFGS: gradient below tolerance_grad")
                break
            if float(xp.abs(direction).max()) * self.t <= self.tolerance_change:
                logger.debug("LBFGS: parameter change below tolerance_change")
                break
            if abs(loss - self.prev_loss) < self.tolerance_change:
                logger.debug("LBFGS: loss change below tolerance_change")
                break

        return orig_loss


__all__ = [
    "LBFGS",
]
