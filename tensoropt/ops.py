"""Tensor factories mirroring the backend ones, but device and dtype aware."""

from __future__ import annotations

from typing import Any

from .backend import xp
from .tensor import (
    Tensor,
)
from .tensor import (
    _copy_to_device as copy_to_device,
)


def _like(other: Tensor, fill: Any, dtype: Any, requires_grad: bool) -> Tensor:
    """Create a Tensor filled with `fill` on the device and with the shape of `other`."""
    # xp.full_like on the raw buffer allocates on the buffer's device,
    # which also holds for cupy arrays on a non-default gpu
    result: Tensor = xp.full_like(
        xp.asarray(other),
        fill,
        dtype=dtype or other.dtype,
    ).view(Tensor)
    result.requires_grad = requires_grad
    return result


def zeros_like(
    other: Tensor,
    *,
    dtype: Any = None,
    requires_grad: bool = False,
) -> Tensor:
    """Create a Tensor of zeros with the same shape and device as `other`.

    Args:
        other (Tensor): The tensor to match shape and device from.
        dtype (Any): Override dtype. Defaults to None (use other's dtype).
        requires_grad (bool): Whether the Tensor expects a gradient. Defaults to False.

    Returns:
        Tensor: A tensor of zeros.
    """
    return _like(other, 0, dtype, requires_grad)


def ones_like(
    other: Tensor,
    *,
    dtype: Any = None,
    requires_grad: bool = False,
) -> Tensor:
    """Create a Tensor of ones with the same shape and device as `other`.

    Args:
        other (Tensor): The tensor to match shape and device from.
        dtype (Any): Override dtype. Defaults to None (use other's dtype).
        requires_grad (bool): Whether the Tensor expects a gradient. Defaults to False.

    Returns:
        Tensor: A tensor of ones.
    """
    return _like(other, 1, dtype, requires_grad)


def full_like(
    other: Tensor,
    fill_value: float,
    *,
    dtype: Any = None,
    requires_grad: bool = False,
) -> Tensor:
    """Create a Tensor filled with `fill_value`, shaped and placed like `other`.

    Args:
        other (Tensor): The tensor to match shape and device from.
        fill_value (float): The value of every element.
        dtype (Any): Override dtype. Defaults to None (use other's dtype).
        requires_grad (bool): Whether the Tensor expects a gradient. Defaults to False.

    Returns:
        Tensor: The filled tensor.
    """
    return _like(other, fill_value, dtype, requires_grad)


def scalar_like(
    other: Tensor,
    value: float,
    *,
    dtype: Any = None,
) -> Tensor:
    """Create a 0-d Tensor holding `value` on the device of `other`.

    Used for scalar optimizer state (step counters, running products), so
    that it travels with the rest of the state between devices.

    Args:
        other (Tensor): The tensor to match the device from.
        value (float): The scalar value.
        dtype (Any): The dtype. Defaults to None (use other's dtype).

    Returns:
        Tensor: A 0-d tensor.
    """
    raw = xp.asarray(other)
    result: Tensor = xp.full_like(raw, value, dtype=dtype or raw.dtype, shape=()).view(Tensor)
    return result


__all__ = [
    "copy_to_device",
    "full_like",
    "ones_like",
    "scalar_like",
    "zeros_like",
]
