"""Neural Network definitions. Each Layer is defined as a mathematical function.

There is no autograd engine: every layer caches what it needs during the
forward pass and implements `backward`, which accumulates the gradients of
its parameters and returns the gradient with respect to its input.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import TYPE_CHECKING, Any

from .backend import DeviceLike, TensorDevice, device_of, normalize_device, xp
from .tensor import Parameter, Tensor, tensor
from .utils import traverse_attrs

if TYPE_CHECKING:
    from collections.abc import Callable, ValuesView


logger = logging.getLogger(__name__)


RNG = xp.random.default_rng()


def _accumulate_grad(param: Parameter, grad: Any) -> None:
    """Add `grad` to the gradient slot of `param`."""
    if not param.requires_grad:
        return
    param.grad = grad if param.grad is None else param.grad + grad


class Function(ABC):
    """Abstract Base Class (ABC) for all Neural Network related layers.

    Note:
        Parameters and nested Functions must be stored in mutable containers
        (direct attributes, lists, or dicts). Storing them in tuples or sets
        is not allowed because:
        - Tuples are immutable, so parameters cannot be replaced during
          operations like `copy_to_device`.
        - Sets have no stable ordering, making parameter access unpredictable.
    """

    @abstractmethod
    def __call__(self, x: Tensor, **kwargs: Any) -> Any:
        """Forward pass.

        Args:
            x (Tensor): Input
            **kwargs (Any): Additional input.

        Returns:
            Any: Some transformed output.
        """

    @abstractmethod
    def backward(self, grad_out: Any) -> Any:
        """Backward pass for the most recent forward pass.

        Args:
            grad_out (Any): Gradient of the loss with respect to the output.

        Returns:
            Any: Gradient of the loss with respect to the input.
        """

    def traverse_parameters(
        self,
        on_parameter: Callable[[str, Parameter], Parameter | None],
    ) -> None:
        """Recursively traverse all Parameters and optionally transform them.

        This is the core traversal logic used by `get_parameters`, `load_parameters`,
        and `copy_to_device`.

        Args:
            on_parameter: Callback called for each Parameter with (path, param).
                If it returns a Parameter, the original is replaced in-place.
                If it returns None, no replacement occurs.
        """
        traverse_attrs(
            self,
            target_type=Parameter,
            on_target=on_parameter,
            recurse_into=Function,
        )

    @property
    def requires_grad(self) -> bool:
        """Whether **all** parameters of the function require a gradient."""
        return all(param.requires_grad for param in self.parameters)

    @requires_grad.setter
    def requires_grad(self, value: bool) -> None:
        """Freeze (`False`) or unfreeze (`True`) all parameters of the function."""
        for param in self.parameters:
            param.requires_grad = value

    @property
    def device(self) -> tuple[TensorDevice, ...]:
        """The devices on which the Function is currently located.

        Can be mutliple if the function is sharded across multiple
        devices. Empty, if the function has no parameters.
        """
        return tuple({param.tensor_device for param in self.parameters})

    def copy_to_device(self, device: DeviceLike) -> Function:
        """Copy the function to the specified `device`.

        Copies all its parameters under the hood. Optimizers created before
        the copy still hold the old parameters and must be recreated.

        Args:
            device (DeviceLike): The device to copy the function to.

        Returns:
            Function: self, for method chaining.
        """

        def copy_param(_path: str, param: Parameter) -> Parameter:
            return param.copy_to_device(device)

        self.traverse_parameters(copy_param)
        logger.debug(f"Copied parameters of {type(self).__name__} to {normalize_device(device)}")
        return self

    def is_training(self) -> bool:
        """If all function parameters are in training mode."""
        return all(param.is_training for param in self.parameters)

    def _set_train_state(self, *, is_training: bool) -> None:
        for param in self.parameters:
            param.is_training = is_training

    def train(self) -> Function:
        """Set all function parameters to training mode.

        Returns:
            Function: Self, for chaining.
        """
        self._set_train_state(is_training=True)
        return self

    def inference(self) -> Function:
        """Set all function parameters to inference mode.

        Returns:
            Function: Self, for chaining.
        """
        self._set_train_state(is_training=False)
        return self

    def zero_grad(self) -> None:
        """Clear the gradients of all parameters."""
        for param in self.parameters:
            param.grad = None

    def get_parameters(
        self,
        to_device: DeviceLike | None = None,
    ) -> OrderedDict[str, Parameter]:
        """Recursively collect all Parameters from this Function and nested children.

        Args:
            to_device (DeviceLike | None): If specified, copy each
                Parameter to this device in the returned dict. Defaults to None.

        Returns:
            OrderedDict[str, Parameter]: Parameters keyed by their path,
                e.g. "layers[0].W", "layers[1].b", "payload{key}.W".
        """
        result: OrderedDict[str, Parameter] = OrderedDict()

        def collect_param(path: str, param: Parameter) -> None:
            result[path] = param.copy_to_device(to_device) if to_device is not None else param

        self.traverse_parameters(collect_param)
        return result

    @property
    def parameters(self) -> ValuesView[Parameter]:
        """A view over the function parameters."""
        return self.get_parameters().values()

    def named_parameters(self) -> list[tuple[str, Parameter]]:
        """The parameters together with their paths, as consumed by the optimizers.

        Returns:
            list[tuple[str, Parameter]]: `(path, parameter)` pairs in traversal order.
        """
        return list(self.get_parameters().items())

    def load_parameters(
        self,
        *,
        parameters: OrderedDict[str, Parameter],
        match_function_device: bool = False,
        partial: bool = False,
    ) -> Function:
        """Load parameters into this Function from a parameter dict.

        Args:
            parameters (OrderedDict[str, Parameter]): Parameters keyed by path,
                as returned by `get_parameters`.
            match_function_device (bool): If True, copy each loaded
                parameter to the target parameter's device before assignment.
                If False, raises on device mismatch. Defaults to False.
            partial (bool): If True, allow missing keys in `parameters`.
                If False, raises on missing keys. Defaults to False.

        Returns:
            Function: self, for method chaining.
        """

        def load_param(path: str, param: Parameter) -> None:
            init_data = parameters.get(path)
            if init_data is None:
                if not partial:
                    raise KeyError(f'Parameter data not found for "{path}"')
                return

            if not isinstance(init_data, Tensor):
                raise TypeError(
                    'Data in passed parameters must be of type "Tensor", '
                    f'found "{type(init_data).__name__}" ({init_data})'
                )

            if param.shape != init_data.shape:
                raise ValueError(
                    f'Shape mismatch for parameter "{path}". '
                    f'Found "{init_data.shape}", expected "{param.shape}".'
                )

            if match_function_device:
                init_data = init_data.copy_to_device(param.tensor_device)
            elif param.tensor_device != init_data.tensor_device:
                raise ValueError(
                    f'Device mismatch for parameter "{path}". '
                    f'Found "{init_data.tensor_device}", expected "{param.tensor_device}".'
                )

            # in-place: only the buffer changes, optimizers keep their handle
            param[...] = init_data

        self.traverse_parameters(load_param)
        return self


class _Activation(Function):
    """Elementwise activation, caching what its derivative needs."""

    def __init__(self) -> None:
        self._cache: Tensor | None = None

    def _cached(self) -> Tensor:
        if self._cache is None:
            raise RuntimeError(f"{type(self).__name__}.backward called before forward")
        return self._cache


class Sigmoid(_Activation):
    """Sigmoid activation function."""

    def __call__(self, x: Tensor) -> Tensor:  # type: ignore[override]
        out: Tensor = 1 / (xp.exp(-x) + 1)
        self._cache = out
        return out

    def backward(self, grad_out: Any) -> Any:
        out = self._cached()
        return grad_out * out * (1 - out)


class Tanh(_Activation):
    """Hyperbolic tangent activation function."""

    def __call__(self, x: Tensor) -> Tensor:  # type: ignore[override]
        out: Tensor = xp.tanh(x)
        self._cache = out
        return out

    def backward(self, grad_out: Any) -> Any:
        out = self._cached()
        return grad_out * (1 - out**2)


class ReLU(_Activation):
    """ReLU activation function."""

    def __call__(self, x: Tensor) -> Tensor:  # type: ignore[override]
        self._cache = x
        return xp.maximum(x, 0)

    def backward(self, grad_out: Any) -> Any:
        x = self._cached()
        return grad_out * (x > 0)


class Linear(Function):
    """Base dense/linear neural network layer.

    Args:
        dim_in (int): Input dimension size.
        dim_out (int): Output dimension size.
        bias (bool): Whether to use a bias. Defaults to True
    """

    INPUT_N_DIM = 2

    def __init__(
        self,
        *,
        dim_in: int,
        dim_out: int,
        bias: bool = True,
        dtype: Any = xp.float32,
    ) -> None:
        self.dim_in = dim_in
        self.dim_out = dim_out
        # Xavier initialization for weights
        self.W = Parameter(
            (RNG.standard_normal((self.dim_in, self.dim_out)) * xp.sqrt(2.0 / (dim_in + dim_out)))
            .astype(dtype)
        )
        self.b = Parameter(xp.zeros((self.dim_out,), dtype=dtype)) if bias else None
        self._x: Tensor | None = None

    def __call__(self, x: Tensor) -> Tensor:  # type: ignore[override]
        """Forward pass.

        Args:
            x (Tensor): Input, dim[0] -> sample dim, dim[1] -> feature dim

        Raises:
            ValueError: If the input is not a batch of `dim_in` features.

        Returns:
            Tensor: Transformed output
        """
        if x.ndim != self.INPUT_N_DIM or x.shape[1] != self.dim_in:
            raise ValueError(
                f"Expected input of shape (batch, {self.dim_in}), found {tuple(x.shape)}"
            )
        self._x = x
        out = xp.matmul(x, self.W)
        return out + self.b if self.b is not None else out

    def backward(self, grad_out: Any) -> Any:
        if self._x is None:
            raise RuntimeError("Linear.backward called before forward")
        grad_out = xp.asarray(grad_out)
        x = xp.asarray(self._x)
        _accumulate_grad(self.W, x.T @ grad_out)
        if self.b is not None:
            _accumulate_grad(self.b, grad_out.sum(axis=0))
        return grad_out @ xp.asarray(self.W).T


class Mlp(Function):
    """Multi-Layer-Perceptron."""

    def __init__(self, layers: list[Function]) -> None:
        self.layers = layers

    def __call__(self, x: Tensor) -> Tensor:  # type: ignore[override]
        """Forward pass.

        Calls all layers subsequently in the order
        as provided in the constructor.

        Args:
            x (Tensor): Input

        Returns:
            Tensor: Transformed output
        """
        for layer in self.layers:
            x = layer(x)
        return x

    def backward(self, grad_out: Any) -> Any:
        for layer in reversed(self.layers):
            grad_out = layer.backward(grad_out)
        return grad_out


class MSELoss(Function):
    """Mean squared error between a prediction and a target."""

    def __init__(self) -> None:
        self._diff: Any | None = None

    def __call__(self, x: Tensor, target: Any = None) -> Tensor:  # type: ignore[override]
        """Compute `mean((x - target)**2)`.

        Args:
            x (Tensor): The prediction.
            target (Any): The target, same shape as `x`.

        Returns:
            Tensor: 0-d loss tensor.
        """
        if target is None:
            raise ValueError("MSELoss requires a target")
        diff = xp.asarray(x) - xp.asarray(target)
        self._diff = diff
        return tensor(xp.mean(diff**2), device=device_of(diff))

    def backward(self, grad_out: Any = 1.0) -> Any:
        if self._diff is None:
            raise RuntimeError("MSELoss.backward called before forward")
        return grad_out * 2 * self._diff / self._diff.size


__all__ = [
    "Function",
    "Linear",
    "MSELoss",
    "Mlp",
    "ReLU",
    "Sigmoid",
    "Tanh",
]
