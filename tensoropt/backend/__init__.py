"""Backend (wrapped array library) for all ops in tensoropt."""

from .backend import (
    BACKEND,
    BACKEND_ENV_VAR,
    DeviceLike,
    DeviceType,
    SupportsCupyDevice,
    TensorDevice,
    device_of,
    normalize_device,
    xp,
)
from .ops import (
    copy_array,
)

__all__ = [
    "BACKEND",
    "BACKEND_ENV_VAR",
    "DeviceLike",
    "DeviceType",
    "SupportsCupyDevice",
    "TensorDevice",
    "copy_array",
    "device_of",
    "normalize_device",
    "xp",
]
