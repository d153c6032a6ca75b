from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Literal, Protocol, TypeAlias, runtime_checkable

from ..errors import BackendError

logger = logging.getLogger(__name__)

BACKEND_ENV_VAR = "TENSOROPT_BACKEND"
_BACKEND_CHOICES = ("auto", "numpy", "cupy")


def _requested_backend() -> str:
    """Read the requested backend from the environment.

    Raises:
        BackendError: If the environment variable holds an unknown value.

    Returns:
        str: One of "auto", "numpy" or "cupy".
    """
    requested = os.environ.get(BACKEND_ENV_VAR, "auto").strip().lower()
    if requested not in _BACKEND_CHOICES:
        raise BackendError(
            f'{BACKEND_ENV_VAR} must be one of {_BACKEND_CHOICES}, got "{requested}"'
        )
    return requested


def _load_cupy() -> Any:
    """Import CuPy and validate that it has working CUDA devices.

    Raises:
        BackendError: If CuPy is missing, CUDA is unavailable or no devices are found.

    Returns:
        Any: The cupy module.
    """
    try:
        import cupy
    except ImportError as exc:
        raise BackendError("Cupy is not installed") from exc

    try:
        _device_count = cupy.cuda.runtime.getDeviceCount()
    except Exception as exc:
        raise BackendError("Cupy is installed but CUDA is unavailable") from exc

    if _device_count < 1:
        raise BackendError("Cupy is installed but no CUDA devices are available")
    return cupy


_REQUESTED = _requested_backend()

if _REQUESTED == "numpy":
    import numpy as xp

    BACKEND = "numpy"
    logger.debug(f"Using numpy as backend ({BACKEND_ENV_VAR}=numpy)")
elif _REQUESTED == "cupy":
    xp = _load_cupy()
    BACKEND = "cupy"
    logger.debug(f"Using cupy as backend ({BACKEND_ENV_VAR}=cupy)")
else:
    try:
        xp = _load_cupy()

        BACKEND = "cupy"
        logger.debug("Using cupy as backend")
    except BackendError as err:
        import numpy as xp

        BACKEND = "numpy"
        logger.warning("Cupy backend unavailable; falling back to numpy (cpu)")
        logger.debug(f"Falling back to numpy because: {err!r}")


DeviceType = Literal["cpu", "cuda"]


@dataclass(frozen=True)
class TensorDevice:
    """The global device identifier for tensoropt Tensors."""

    type: DeviceType
    device_id: int = 0


@runtime_checkable
class SupportsCupyDevice(Protocol):
    """Cupy protocol to access cuda device `id`."""

    id: int  # cupy.cuda.Device exposes attribute "id"


DeviceLike: TypeAlias = TensorDevice | Literal["cpu"] | int | SupportsCupyDevice


def normalize_device(device: DeviceLike) -> TensorDevice:
    """Transforms any device-like type into a TensorDevice.

    Args:
        device (DeviceLike): The device candidate.

    Raises:
        TypeError: If `device` denotes an unsupported device.

    Returns:
        TensorDevice: The normalized device.
    """
    if isinstance(device, TensorDevice):
        return device
    if device == "cpu":
        return TensorDevice("cpu")
    if isinstance(device, int) and not isinstance(device, bool):
        return TensorDevice("cuda", device)

    if isinstance(device, SupportsCupyDevice):
        return TensorDevice("cuda", int(device.id))

    raise TypeError(f"Unsupported device spec: {device!r}")


def device_of(array: Any) -> TensorDevice:
    """The device on which the buffer of `array` lives.

    Numpy arrays (and numpy>=2 reporting `device == "cpu"`) always
    live on the cpu; cupy arrays expose a `cupy.cuda.Device`.

    Args:
        array (Any): A numpy or cupy array.

    Returns:
        TensorDevice: The device of the array.
    """
    device = getattr(array, "device", "cpu")
    if device is None or device == "cpu":
        return TensorDevice("cpu")
    return normalize_device(device)


__all__ = [
    "BACKEND",
    "BACKEND_ENV_VAR",
    "DeviceLike",
    "DeviceType",
    "SupportsCupyDevice",
    "TensorDevice",
    "device_of",
    "normalize_device",
    "xp",
]
