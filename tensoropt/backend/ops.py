"""Device transfer of raw backend arrays."""

from __future__ import annotations

from typing import Any

from .backend import BACKEND, DeviceLike, device_of, normalize_device, xp


def copy_array(array: Any, device: DeviceLike) -> Any:
    """Copy an array to the specified device.

    Args:
        array (Any): The array to copy.
        device (DeviceLike): Target device, "cpu", a GPU id (int)
            or a TensorDevice.

    Raises:
        ValueError: If using numpy backend and requesting a GPU device.

    Returns:
        Any: The array on the target device, or the original if already there.
    """
    target = normalize_device(device)
    if device_of(array) == target:
        return array
    if BACKEND == "numpy":
        raise ValueError(
            "Copying to another device is only possible when using cupy "
            "as the backend. Currently, numpy is the backend. Please "
            "check cupy and gpu availability."
        )
    # cupy:
    if target.type == "cuda":
        with xp.cuda.Device(target.device_id):
            return xp.asarray(array)
    return xp.asnumpy(array)


__all__ = [
    "copy_array",
]
