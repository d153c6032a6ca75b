"""Code for serializing and deserializing Tensors, model parameters and optimizer state."""

from __future__ import annotations

import struct
from collections import OrderedDict
from collections.abc import Mapping
from typing import Any, BinaryIO

import numpy as np

from .backend import BACKEND, xp
from .tensor import Parameter, Tensor, tensor

_TOPT_MAGIC = b"TOPT"
_TOPT_VERSION = 1
_TOPT_SUFFIX = ".topt"
_SINGLE_KEY = "__single__"
_FLAG_PARAMETER = 0b01
_FLAG_REQUIRES_GRAD = 0b10


def _check_suffix(file_path: str) -> None:
    if not file_path.endswith(_TOPT_SUFFIX):
        raise ValueError(f'file_path must end with "{_TOPT_SUFFIX}"')


def _to_host(data: Tensor) -> np.ndarray:
    """The buffer as a C-contiguous numpy array on the cpu, 0-d arrays stay 0-d."""
    raw = xp.asarray(data)
    arr = xp.asnumpy(raw) if BACKEND == "cupy" else np.asarray(raw)
    if not arr.flags["C_CONTIGUOUS"]:
        arr = np.ascontiguousarray(arr)
    return arr


def _read(f: BinaryIO, fmt: str) -> Any:
    size = struct.calcsize(fmt)
    chunk = f.read(size)
    if len(chunk) != size:
        raise ValueError("Unexpected end of file, the file is truncated.")
    return struct.unpack(fmt, chunk)[0]


def save(data: Tensor | Mapping[str, Tensor], file_path: str) -> None:
    """Save Tensor data to disk using a small binary format.

    Layout: magic, uint8 version, uint32 number of tensors, then per tensor the
    key, dtype name, flags (parameter, requires_grad), shape and the raw C-ordered bytes
    (all little endian).

    Args:
        data (Tensor | Mapping[str, Tensor]): The data to save, either a single
            Tensor or a mapping from string keys to Tensors, e.g. the result
            of `Optimizer.get_state` or `Function.get_parameters`.
        file_path (str): The file path to which to store the data. Must
            end with ".topt".

    Raises:
        ValueError: If a mapping with non-Tensor values is passed.
        ValueError: If file_path doesn't end with ".topt".
    """
    _check_suffix(file_path)

    if isinstance(data, Tensor):
        tensors: Mapping[str, Tensor] = OrderedDict([(_SINGLE_KEY, data)])
    else:
        if not all(isinstance(v, Tensor) for v in data.values()):
            raise ValueError("If a mapping is passed, all values must be Tensors.")
        tensors = data

    with open(file_path, "wb") as f:
        f.write(_TOPT_MAGIC)
        f.write(struct.pack("<B", _TOPT_VERSION))
        f.write(struct.pack("<I", len(tensors)))

        for key, value in tensors.items():
            arr = _to_host(value)

            key_bytes = key.encode("utf-8")
            f.write(struct.pack("<I", len(key_bytes)))
            f.write(key_bytes)

            dtype_bytes = arr.dtype.name.encode("utf-8")
            f.write(struct.pack("<B", len(dtype_bytes)))
            f.write(dtype_bytes)

            # flags restore the handle type and frozen parameters
            flags = _FLAG_PARAMETER if isinstance(value, Parameter) else 0
            if value.requires_grad:
                flags |= _FLAG_REQUIRES_GRAD
            f.write(struct.pack("<B", flags))

            f.write(struct.pack("<B", arr.ndim))
            f.writelines(struct.pack("<Q", dim) for dim in arr.shape)

            f.write(arr.tobytes())


def load(file_path: str) -> Tensor | OrderedDict[str, Tensor]:
    """Load Tensor data from disk onto the default device of the backend.

    Args:
        file_path (str): The file path from which to read the data. Must
            end with ".topt".

    Raises:
        ValueError: If file_path doesn't end with ".topt".
        ValueError: If file has invalid magic bytes, an unsupported version
            or is truncated.

    Returns:
        Tensor | OrderedDict[str, Tensor]: The loaded data. Returns a single
            Tensor if one was saved, otherwise an OrderedDict.
    """
    _check_suffix(file_path)

    with open(file_path, "rb") as f:
        magic = f.read(4)
        if magic != _TOPT_MAGIC:
            raise ValueError(f"Invalid file format. Expected TOPT magic bytes, got {magic!r}")

        version = _read(f, "<B")
        if version != _TOPT_VERSION:
            raise ValueError(f"Unsupported version {version}. Expected {_TOPT_VERSION}")

        num_tensors = _read(f, "<I")

        tensors: OrderedDict[str, Tensor] = OrderedDict()
        for _ in range(num_tensors):
            key_length = _read(f, "<I")
            key = f.read(key_length).decode("utf-8")

            dtype_length = _read(f, "<B")
            dtype = np.dtype(f.read(dtype_length).decode("utf-8"))

            flags = _read(f, "<B")
            requires_grad = bool(flags & _FLAG_REQUIRES_GRAD)

            ndim = _read(f, "<B")
            shape = tuple(_read(f, "<Q") for _ in range(ndim))

            num_bytes = int(np.prod(shape)) * dtype.itemsize
            data_bytes = f.read(num_bytes)
            if len(data_bytes) != num_bytes:
                raise ValueError(f'Unexpected end of file while reading "{key}".')
            arr = np.frombuffer(data_bytes, dtype=dtype).reshape(shape).copy()

            if flags & _FLAG_PARAMETER:
                tensors[key] = Parameter(arr, requires_grad=requires_grad)
            else:
                tensors[key] = tensor(arr, requires_grad=requires_grad)

        if len(tensors) == 1 and _SINGLE_KEY in tensors:
            return tensors[_SINGLE_KEY]
        return tensors


__all__ = [
    "load",
    "save",
]
