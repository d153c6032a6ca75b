"""Exceptions raised by tensoropt."""


class TensorOptError(Exception):
    """Base class for all tensoropt specific errors."""


class BackendError(TensorOptError, RuntimeError):
    """The wrapped array library is unavailable or failed."""


__all__ = [
    "BackendError",
    "TensorOptError",
]
