"""Tensor handles over the wrapped array library."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Self

from .backend import BACKEND, DeviceLike, TensorDevice, copy_array, device_of, normalize_device, xp

if TYPE_CHECKING:
    from collections.abc import Iterable


logger = logging.getLogger(__name__)


def _to_array(x: Any) -> Any:
    """Recursively convert Tensors to plain ndarrays (handles nested lists/tuples)."""
    if isinstance(x, Tensor):
        return xp.asarray(x)
    if isinstance(x, list | tuple):
        converted = [_to_array(i) for i in x]
        return type(x)(converted)
    return x


def _wrap(x: Any) -> Any:
    """Wrap a plain backend result as a (non-parameter) Tensor."""
    if x is None or isinstance(x, Tensor):
        return x
    result: Tensor = xp.asarray(x).view(Tensor)
    return result


class Tensor(xp.ndarray):  # type: ignore[misc]
    """A handle to an array of the backend with gradient bookkeeping.

    No computation graph is recorded. `grad` is a plain slot which is
    filled by the caller (or a layer's `backward`) and read by the optimizers.
    """

    def __new__(cls, data: Iterable[Any], **kwargs: Any) -> Self:
        """Initializes the data."""
        # **kwargs accepts requires_grad etc. but we don't use them here
        # They'll be handled by __init__
        result: Self = xp.asarray(data, dtype=kwargs.get("dtype")).view(cls)
        return result

    def __init__(
        self,
        data: Any = None,  # noqa: ARG002 -> Ignored, handled by __new__, needed for signature
        *,
        dtype: Any = None,  # noqa: ARG002 -> Ignored, handled by __new__
        requires_grad: bool = False,
    ) -> None:
        self.requires_grad = requires_grad
        self.grad: Any | None = None

    def __array_finalize__(self, obj: Any) -> None:
        """Called when a new Tensor is created via .view(), slicing, or ufuncs.

        Derived arrays never inherit a gradient; they are plain values
        until the caller marks them otherwise.
        """
        if obj is None:
            # Called from __new__ via explicit constructor - __init__ will handle it
            return
        self.requires_grad: bool = False  # type: ignore[no-redef]
        self.grad: Any | None = None  # type: ignore[no-redef]

    def __array_ufunc__(
        self,
        ufunc: Any,
        method: str,
        *inputs: Any,
        **kwargs: Any,
    ) -> Any:
        logger.debug(
            '__array_ufunc__: ufunc="%s" method="%s"',
            ufunc.__name__,
            method,
        )
        out = kwargs.get("out")

        xp_input_arrays = tuple(_to_array(x) for x in inputs)
        kwargs = {k: _to_array(v) for k, v in kwargs.items()}

        result = getattr(ufunc, method)(*xp_input_arrays, **kwargs)

        if out is not None:
            # in-place op: the caller keeps its own handle(s)
            return out[0] if len(out) == 1 else out
        if isinstance(result, tuple):
            return tuple(_wrap(r) for r in result)
        return _wrap(result)

    def __hash__(self) -> int:
        """Identity-based hash for use in sets/dicts."""
        return id(self)

    @property
    def tensor_device(self) -> TensorDevice:
        """The device on which the buffer of the Tensor lives."""
        return device_of(xp.asarray(self))

    def copy_to_device(self, device: DeviceLike) -> Tensor:
        """Copy tensor data to `device`.

        Note: If the Tensor already is on `device`, no copy is created. Instead,
        the Tensor is returned as is.

        Args:
            device (DeviceLike): The device to copy to. Should either
                be `cpu` or an integer specifying the GPU id.

        Returns:
            Tensor: A tensor with the same data, now on `device`.
        """
        return _copy_to_device(tensor=self, device=device)

    def detach(self) -> Tensor:
        """A copy of the Tensor (including the buffer) without gradient.

        Returns:
            Tensor: The detached copy.
        """
        return Tensor(xp.asarray(self).copy(), requires_grad=False)

    def cpu(self) -> Tensor:
        """Move the Tensor to the cpu.

        Note: If the Tensor already is on the cpu,
        no copy is created. Instead, the Tensor is returned as is.

        Returns:
            Tensor: A **copy** of the Tensor on the cpu,
                if it wasn't on the cpu before.
        """
        return self.copy_to_device(device="cpu")

    def gpu(self, device_id: int = 0) -> Tensor:
        """Move the Tensor to a gpu with `id`.

        Args:
            device_id (int): The id of the gpu to which the Tensor
                should be copied. Defaults to 0.

        Returns:
            Tensor: A **copy** of the Tensor on the specified gpu,
                if it wasn't on the gpu `device_id` before.
        """
        return self.copy_to_device(device=device_id)


class Parameter(Tensor):
    """A special Tensor that should be part of a model to optimize.

    Parameters have an additional `is_training` attribute for controlling
    behavior of layers like Dropout and BatchNorm.
    """

    def __new__(cls, data: Iterable[Any], **kwargs: Any) -> Self:
        """Initializes the data."""
        # parameters must always be float: integer parameters
        # are not differentiable, there are no infinitesimal steps
        result: Self = Tensor.__new__(cls, data=data, **kwargs)
        if not xp.issubdtype(result.dtype, xp.floating):
            raise ValueError(f"Parameter must have float type, found {result.dtype}.")
        return result

    def __init__(
        self,
        data: Any = None,  # Ignored - handled by __new__, but needed for signature compatibility
        *,
        dtype: Any = None,
        requires_grad: bool = True,
        is_training: bool = True,
    ) -> None:
        super().__init__(data=data, dtype=dtype, requires_grad=requires_grad)
        self.is_training = is_training

    def __array_finalize__(self, obj: Any) -> None:
        """Called when a new Parameter is created via .view(), slicing, or ufuncs."""
        super().__array_finalize__(obj)
        self.is_training: bool = getattr(obj, "is_training", True)  # type: ignore[no-redef]

    def copy_to_device(self, device: DeviceLike) -> Parameter:
        """Copy parameter data to `device`.

        The copy-semantic is different to normal Tensors: attributes
        **and** the gradient move along with the data.

        Note: If the Parameter already is on `device`, no copy is created.
        Instead, the Parameter is returned as is.

        Args:
            device (DeviceLike): The device to copy to.

        Returns:
            Parameter: A Parameter with the same data, now on `device`.
        """
        if self.tensor_device == normalize_device(device):
            return self

        # __array_finalize__ sets defaults, so we manually copy from self
        result: Parameter = _device_buffer(self, device).view(Parameter)
        result.requires_grad = self.requires_grad
        result.is_training = self.is_training
        result.grad = _device_buffer(self.grad, device) if self.grad is not None else None
        return result


def _device_buffer(array: Any, device: DeviceLike) -> Any:
    """Copy the buffer of `array` to `device`, as an array of the backend.

    Raises:
        ValueError: If the backend cannot hold arrays on `device`
            (with cupy, Tensors always live on a gpu).
    """
    new_device_array = copy_array(array=xp.asarray(array), device=device)
    if not isinstance(new_device_array, xp.ndarray):
        raise ValueError(
            f'Tensors of the "{BACKEND}" backend cannot live on {normalize_device(device)}. '
            "Use xp.asnumpy for a host copy of the data."
        )
    return new_device_array


def tensor(
    data: Any,
    *,
    dtype: Any = None,
    device: DeviceLike | None = None,
    requires_grad: bool = False,
) -> Tensor:
    """Factory function to create a Tensor on the specified device.

    Args:
        data (Any): The array data (can be scalar, list, array, etc).
        dtype (Any): The data type of the array data.
            Defaults to None, meaning dtype is inferred from data.
        device (DeviceLike | None): The device on which the Tensor
            should be created. Defaults to None, the default device
            of the backend (cpu for numpy, gpu 0 for cupy).
        requires_grad (bool): Whether the Tensor expects a gradient. Defaults to False.

    Raises:
        ValueError: If the backend has no such device.

    Returns:
        Tensor: The created Tensor.
    """
    target = normalize_device(device) if device is not None else None
    if target is None:
        arr = xp.array(_to_array(data), dtype=dtype)
    elif BACKEND == "numpy" and target.type == "cpu":
        arr = xp.array(_to_array(data), dtype=dtype)
    elif BACKEND == "cupy" and target.type == "cuda":
        with xp.cuda.Device(target.device_id):
            arr = xp.array(_to_array(data), dtype=dtype)
    else:
        raise ValueError(f'Device {target} is not available with the "{BACKEND}" backend.')

    result: Tensor = arr.view(Tensor)
    # __array_finalize__ sets defaults; override with user values
    result.requires_grad = requires_grad
    return result


def _copy_to_device(tensor: Tensor, device: DeviceLike) -> Tensor:
    """Copy tensor data to `device`.

    Note: If the Tensor already is on `device`, no copy is created. Instead,
    the Tensor is returned as is.

    Args:
        tensor (Tensor): The tensor to copy to `device`.
        device (DeviceLike): The device to copy to.

    Returns:
        Tensor: A tensor with the same data, now on `device`.
    """
    if tensor.tensor_device == normalize_device(device):
        return tensor

    # __array_finalize__ sets defaults, so we manually set attributes
    result: Tensor = _device_buffer(tensor, device).view(Tensor)
    result.requires_grad = tensor.requires_grad
    return result


__all__ = [
    "Parameter",
    "Tensor",
    "_copy_to_device",
    "tensor",
]
