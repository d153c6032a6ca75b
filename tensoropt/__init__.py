"""tensoropt: optimizers over NumPy/CuPy tensor handles.

Neural network layers, Tensor handles and optimizer update rules on top of
NumPy or CuPy, which do all of the array work.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("py-tensoropt")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"  # Fallback for uninstalled package

from . import optim
from .backend import (
    BACKEND,
    DeviceLike,
    DeviceType,
    SupportsCupyDevice,
    TensorDevice,
    device_of,
    normalize_device,
    xp,
)
from .disk import (
    load,
    save,
)
from .errors import (
    BackendError,
    TensorOptError,
)
from .function import (
    Function,
    Linear,
    Mlp,
    MSELoss,
    ReLU,
    Sigmoid,
    Tanh,
)
from .ops import (
    copy_to_device,
    full_like,
    ones_like,
    scalar_like,
    zeros_like,
)
from .optim import (
    ASGD,
    LBFGS,
    SGD,
    Adadelta,
    Adagrad,
    Adam,
    Adamax,
    AdamW,
    NAdam,
    Optimizer,
    RAdam,
    RMSprop,
    Rprop,
)
from .tensor import (
    Parameter,
    Tensor,
    tensor,
)

__all__ = [
    "ASGD",
    "BACKEND",
    "LBFGS",
    "SGD",
    "Adadelta",
    "Adagrad",
    "Adam",
    "AdamW",
    "Adamax",
    "BackendError",
    "DeviceLike",
    "DeviceType",
    "Function",
    "Linear",
    "MSELoss",
    "Mlp",
    "NAdam",
    "Optimizer",
    "Parameter",
    "RAdam",
    "RMSprop",
    "ReLU",
    "Rprop",
    "Sigmoid",
    "SupportsCupyDevice",
    "Tanh",
    "Tensor",
    "TensorDevice",
    "TensorOptError",
    "__version__",
    "copy_to_device",
    "device_of",
    "full_like",
    "load",
    "normalize_device",
    "ones_like",
    "optim",
    "save",
    "scalar_like",
    "tensor",
    "xp",
    "zeros_like",
]
