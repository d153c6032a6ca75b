"""Optimizers updating Parameters in-place from their gradients."""

from .adam import (
    Adam,
    Adamax,
    AdamW,
    NAdam,
    RAdam,
)
from .adaptive import (
    Adadelta,
    Adagrad,
    RMSprop,
)
from .lbfgs import (
    LBFGS,
)
from .lr_scheduler import (
    CosineAnnealingLR,
    ExponentialLR,
    LambdaLR,
    LRScheduler,
    StepLR,
)
from .optimizer import (
    LearningRateController,
    LossClosure,
    Optimizer,
    ParameterwiseOptimizer,
    ParamsLike,
    SupportsBetas,
    SupportsMomentum,
)
from .rprop import (
    Rprop,
)
from .sgd import (
    ASGD,
    SGD,
)

__all__ = [
    "ASGD",
    "LBFGS",
    "SGD",
    "Adadelta",
    "Adagrad",
    "Adam",
    "AdamW",
    "Adamax",
    "CosineAnnealingLR",
    "ExponentialLR",
    "LRScheduler",
    "LambdaLR",
    "LearningRateController",
    "LossClosure",
    "NAdam",
    "Optimizer",
    "ParameterwiseOptimizer",
    "ParamsLike",
    "RAdam",
    "RMSprop",
    "Rprop",
    "StepLR",
    "SupportsBetas",
    "SupportsMomentum",
]
