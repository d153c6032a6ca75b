"""Base class and interfaces shared by all optimizers."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import OrderedDict
from collections.abc import Callable, Iterable, Mapping, ValuesView
from typing import Any, Protocol, TypeAlias, runtime_checkable

from ..backend import DeviceLike, TensorDevice, xp
from ..ops import scalar_like
from ..tensor import Parameter, Tensor
from ..utils import traverse_attrs

logger = logging.getLogger(__name__)


ParamsLike: TypeAlias = (
    Iterable[Parameter] | Iterable[tuple[str, Parameter]] | Mapping[str, Parameter]
)
LossClosure: TypeAlias = Callable[[], Any]


@runtime_checkable
class LearningRateController(Protocol):
    """Anything exposing a settable learning rate, e.g. for lr schedulers."""

    lr: float
    initial_lr: float


@runtime_checkable
class SupportsBetas(Protocol):
    """Optimizers with running-average coefficients `(beta_1, beta_2)`."""

    betas: tuple[float, float]


@runtime_checkable
class SupportsMomentum(Protocol):
    """Optimizers with a momentum factor."""

    momentum: float


def _normalize_params(params: ParamsLike) -> OrderedDict[str, Parameter]:
    """Turn all accepted parameter collections into an ordered name -> Parameter mapping.

    Unnamed parameters are named by their position ("0", "1", ...).

    Args:
        params (ParamsLike): Parameters, `(name, parameter)` pairs or a mapping.

    Raises:
        ValueError: If no parameters are passed or a name is used twice.
        TypeError: If an entry is not a Parameter.

    Returns:
        OrderedDict[str, Parameter]: The named parameters.
    """
    items = list(params.items()) if isinstance(params, Mapping) else list(params)
    if len(items) == 0:
        raise ValueError("Must pass at least one parameter to optimize.")

    named: OrderedDict[str, Parameter] = OrderedDict()
    for idx, item in enumerate(items):
        if isinstance(item, tuple):
            name, param = item
        else:
            name, param = str(idx), item
        if not isinstance(param, Parameter):
            raise TypeError(
                "All parameters passed to the optimizer must be of type Parameter, "
                f'found "{type(param).__name__}" for "{name}".'
            )
        if name in named:
            raise ValueError(f'Parameter name "{name}" passed more than once.')
        named[name] = param
    return named


def check_non_negative(**values: float) -> None:
    """Raise `ValueError` for every negative hyperparameter in `values`."""
    for name, value in values.items():
        if value < 0:
            raise ValueError(f"Invalid {name}: {value}, must be >= 0")


def check_betas(betas: tuple[float, float]) -> None:
    """Both betas must lie in [0, 1)."""
    for idx, beta in enumerate(betas):
        if not 0.0 <= beta < 1.0:
            raise ValueError(f"Invalid beta parameter at index {idx}: {beta}, must be in [0, 1)")


class Optimizer(ABC):
    """Abstract base class for all optimizers.

    Parameters are held by name; the auxiliary state of each parameter lives in
    `param_state[name]` and is allocated on the device of the parameter when the
    optimizer is created.

    **All optimizer states must be of type `Tensor` or a collection of type `Tensor`**.
    Scalar state (step counters, running products) is stored as 0-d Tensors.
    """

    def __init__(self, params: ParamsLike, *, lr: float, **defaults: Any) -> None:
        check_non_negative(lr=lr)
        self.params: OrderedDict[str, Parameter] = _normalize_params(params)
        self.defaults: dict[str, Any] = {"lr": lr, **defaults}
        self._lr = float(lr)
        self.initial_lr = float(lr)
        self.param_state: OrderedDict[str, dict[str, Tensor]] = OrderedDict(
            (name, self._init_state(name, param)) for name, param in self.params.items()
        )
        logger.debug(
            f"Created {type(self).__name__} for {len(self.params)} parameters "
            f"with defaults {self.defaults}"
        )

    @property
    def lr(self) -> float:
        """The current learning rate."""
        return self._lr

    @lr.setter
    def lr(self, value: float) -> None:
        check_non_negative(lr=value)
        self._lr = float(value)

    def _init_state(self, name: str, param: Parameter) -> dict[str, Tensor]:  # noqa: ARG002
        """Allocate the auxiliary state of one parameter.

        Args:
            name (str): Name of the parameter.
            param (Parameter): The parameter.

        Returns:
            dict[str, Tensor]: The state, by default only a step counter.
        """
        return {"step": scalar_like(param, 0, dtype=xp.int64)}

    def parameters(self) -> list[Parameter]:
        """The parameters to optimize."""
        return list(self.params.values())

    def named_parameters(self) -> list[tuple[str, Parameter]]:
        """The parameters to optimize, together with their names."""
        return list(self.params.items())

    def traverse_state(
        self,
        on_tensor: Callable[[str, Tensor], Tensor | None],
    ) -> None:
        """Recursively traverse all Tensors and optionally transform them.

        The `params` attribute, which holds references to the parameters
        to optimize, is not part of the state and is skipped.

        Args:
            on_tensor: Callback called for each Tensor with (path, tensor).
                If it returns a Tensor, the original is replaced in-place.
                If it returns None, no replacement occurs.
        """
        traverse_attrs(
            self,
            target_type=Tensor,
            on_target=on_tensor,
            skip=("params",),
        )

    @property
    def device(self) -> tuple[TensorDevice, ...]:
        """The devices on which the optimizer state is currently located.

        Can be mutliple if the optimizer state is sharded across multiple
        devices.
        """
        return tuple({attr.tensor_device for attr in self.state})

    def copy_to_device(self, device: DeviceLike) -> Optimizer:
        """Copy the optimizer state to the specified `device`.

        Args:
            device (DeviceLike): The device to copy the state to.

        Returns:
            Optimizer: self, for method chaining.
        """

        def copy_tensor(_path: str, tensor: Tensor) -> Tensor:
            return tensor.copy_to_device(device)

        self.traverse_state(copy_tensor)
        return self

    def get_state(self, to_device: DeviceLike | None = None) -> OrderedDict[str, Tensor]:
        """The state of the optimizer.

        Note: Only **direct** attributes of the Optimizer class, which must be of type
        **Tensor** or a collection of type **Tensor** will be considered in the state.
        Keys look like `"param_state{fc.W}{exp_avg}"`.

        Args:
            to_device (DeviceLike | None): If specified, copy each
                Tensor in the state to this device in the returned dict.
                If `None`, the device of the Tensors is not changed. Defaults to None.

        Returns:
            OrderedDict[str, Tensor]: Dict containing the state.
        """
        result: OrderedDict[str, Tensor] = OrderedDict()

        def collect_tensors(path: str, tensor: Tensor) -> None:
            result[path] = tensor.copy_to_device(to_device) if to_device is not None else tensor

        self.traverse_state(collect_tensors)
        return result

    @property
    def state(self) -> ValuesView[Tensor]:
        """A view over the Tensors forming the state of the optimizer."""
        return self.get_state().values()

    def load_state(
        self,
        *,
        state: Mapping[str, Tensor],
        match_device: bool = False,
        partial: bool = False,
    ) -> Optimizer:
        """Load/initialize the state of the optimizer.

        Args:
            state (Mapping[str, Tensor]): The state of the optimizer,
                as returned by `get_state`.
            match_device (bool): If True, copy each loaded Tensor
                to the target's device before assignment.
                If False, raises on device mismatch. Defaults to False.
            partial (bool): If True, allow missing keys in `state`.
                If False, raises on missing keys. Defaults to False.

        Returns:
            Optimizer: self, for method chaining.
        """

        def load_tensor(key: str, tensor: Tensor) -> None:
            init_data = state.get(key, None)
            if init_data is None:
                if not partial:
                    raise KeyError(f'Optimizer state "{key}" not found in passed state!')
                return

            if not isinstance(init_data, Tensor):
                raise TypeError(
                    'Data in passed state must be of type "Tensor", '
                    f'found "{type(init_data).__name__}" ({init_data})'
                )

            if tensor.shape != init_data.shape:
                raise ValueError(
                    f"Shape of seed Tensor does not align with shape of "
                    f'target state "{key}". Found "{init_data.shape}", '
                    f'expected "{tensor.shape}".'
                )

            if match_device:
                init_data = init_data.copy_to_device(tensor.tensor_device)
            elif tensor.tensor_device != init_data.tensor_device:
                raise ValueError(
                    f"Device of seed Tensor does not align with device of "
                    f'target state "{key}". Found "{init_data.tensor_device}", '
                    f'expected "{tensor.tensor_device}".'
                )

            # in-place: only the buffer changes, not the state object
            tensor[...] = init_data

        self.traverse_state(load_tensor)
        return self

    def zero_grad(self, set_to_none: bool = True) -> None:
        """Clears the gradients of all parameters that are optimized.

        The gradients are dropped by default. Pass `set_to_none=False` to keep
        the buffers and zero them in-place instead.

        Args:
            set_to_none (bool): Drop the gradients (`True`) or fill
                them with zeros in-place (`False`). Defaults to True.
        """
        for param in self.params.values():
            if param.grad is None:
                continue
            if set_to_none:
                param.grad = None
            else:
                param.grad[...] = 0

    def _dense_grad(self, name: str, param: Parameter) -> Any:
        """The gradient of `param` as a raw backend array.

        Raises:
            TypeError: If the gradient is not a dense backend array.
            ValueError: If the gradient is not shaped like the parameter.
        """
        grad = param.grad
        if not isinstance(grad, xp.ndarray):
            raise TypeError(
                f"{type(self).__name__} does not support sparse or non-array gradients, "
                f'found "{type(grad).__name__}" for parameter "{name}".'
            )
        if grad.shape != param.shape:
            raise ValueError(
                f'Gradient of parameter "{name}" has shape {grad.shape}, '
                f"expected {param.shape}."
            )
        return xp.asarray(grad)

    @abstractmethod
    def step(self, closure: LossClosure | None = None) -> Any:
        """The step function to update the parameters.

        Must be implemented by the specific optimizer.

        Args:
            closure (LossClosure | None): Optional callable re-evaluating the
                model (loss and gradients). Defaults to None.

        Returns:
            Any: The result of `closure`, or None.
        """


class ParameterwiseOptimizer(Optimizer):
    """Base for optimizers whose update rule treats every parameter on its own.

    Subclasses implement `_update`, which receives the raw backend buffers of
    one parameter, its gradient and its state and writes the update in-place.
    """

    def step(self, closure: LossClosure | None = None) -> Any:
        """Performs a single optimization step.

        `closure` is evaluated first; it should recompute the loss and the
        gradients. Parameters that are frozen or have no gradient are skipped.

        Args:
            closure (LossClosure | None): Optional callable re-evaluating the
                model. Defaults to None.

        Returns:
            Any: The result of `closure`, or None.
        """
        loss = closure() if closure is not None else None

        for name, param in self.params.items():
            if not param.requires_grad or param.grad is None:
                logger.debug(f'Skipping parameter "{name}" without gradient')
                continue

            grad = self._dense_grad(name, param)
            state = self.param_state[name]
            step = int(state["step"]) + 1
            state["step"][...] = step

            # raw buffers: updates are written in-place into the handles
            self._update(
                xp.asarray(param),
                grad,
                {key: xp.asarray(value) for key, value in state.items() if key != "step"},
                step,
            )
        return loss

    @abstractmethod
    def _update(self, param: Any, grad: Any, state: dict[str, Any], step: int) -> None:
        """Apply the update rule to a single parameter, in-place.

        Args:
            param (Any): Raw buffer of the parameter.
            grad (Any): Raw buffer of its gradient. Must not be modified.
            state (dict[str, Any]): Raw buffers of the parameter state (without `step`).
            step (int): The step count of this parameter, starting at 1.
        """


__all__ = [
    "LearningRateController",
    "LossClosure",
    "Optimizer",
    "ParameterwiseOptimizer",
    "ParamsLike",
    "SupportsBetas",
    "SupportsMomentum",
    "check_betas",
    "check_non_negative",
]
