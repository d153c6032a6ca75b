"""Learning rate schedules driving any `LearningRateController`."""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from collections.abc import Callable

from .optimizer import LearningRateController

logger = logging.getLogger(__name__)


class LRScheduler(ABC):
    """Base class for learning rate schedulers.

    The schedule is a function of the epoch counter `last_epoch` and the
    `initial_lr` of the optimizer. Creating a scheduler applies the rate of
    epoch 0.
    """

    def __init__(self, optimizer: LearningRateController, last_epoch: int = -1) -> None:
        if not isinstance(optimizer, LearningRateController):
            raise TypeError(
                f'"{type(optimizer).__name__}" does not expose "lr" and "initial_lr"'
            )
        self.optimizer = optimizer
        self.base_lr = optimizer.initial_lr
        self.last_epoch = last_epoch
        self._last_lr = optimizer.lr
        self.step()

    @abstractmethod
    def get_lr(self) -> float:
        """The learning rate for the current `last_epoch`."""

    def get_last_lr(self) -> float:
        """The learning rate set by the most recent `step`."""
        return self._last_lr

    def step(self) -> float:
        """Advance one epoch and update the learning rate of the optimizer.

        Returns:
            float: The new learning rate.
        """
        self.last_epoch += 1
        lr = self.get_lr()
        self.optimizer.lr = lr
        self._last_lr = lr
        logger.debug(f"{type(self).__name__}: epoch {self.last_epoch}, lr={lr}")
        return lr


class StepLR(LRScheduler):
    """Decay the learning rate by `gamma` every `step_size` epochs."""

    def __init__(
        self,
        optimizer: LearningRateController,
        step_size: int,
        gamma: float = 0.1,
        last_epoch: int = -1,
    ) -> None:
        if step_size < 1:
            raise ValueError(f"step_size must be positive, got {step_size}")
        self.step_size = step_size
        self.gamma = gamma
        super().__init__(optimizer, last_epoch)

    def get_lr(self) -> float:
        return self.base_lr * self.gamma ** (self.last_epoch // self.step_size)


class ExponentialLR(LRScheduler):
    """Decay the learning rate by `gamma` every epoch."""

    def __init__(
        self,
        optimizer: LearningRateController,
        gamma: float,
        last_epoch: int = -1,
    ) -> None:
        self.gamma = gamma
        super().__init__(optimizer, last_epoch)

    def get_lr(self) -> float:
        return self.base_lr * self.gamma**self.last_epoch


class CosineAnnealingLR(LRScheduler):
    """Anneal the learning rate from `initial_lr` to `eta_min` over `T_max` epochs along a cosine."""

    def __init__(
        self,
        optimizer: LearningRateController,
        T_max: int,  # noqa: N803
        eta_min: float = 0.0,
        last_epoch: int = -1,
    ) -> None:
        if T_max < 1:
            raise ValueError(f"T_max must be positive, got {T_max}")
        self.T_max = T_max
        self.eta_min = eta_min
        super().__init__(optimizer, last_epoch)

    def get_lr(self) -> float:
        epoch = min(self.last_epoch, self.T_max)
        cosine = (1 + math.cos(math.pi * epoch / self.T_max)) / 2
        return self.eta_min + (self.base_lr - self.eta_min) * cosine


class LambdaLR(LRScheduler):
    """Multiply `initial_lr` by a user given factor `lr_lambda(epoch)`."""

    def __init__(
        self,
        optimizer: LearningRateController,
        lr_lambda: Callable[[int], float],
        last_epoch: int = -1,
    ) -> None:
        self.lr_lambda = lr_lambda
        super().__init__(optimizer, last_epoch)

    def get_lr(self) -> float:
        return self.base_lr * self.lr_lambda(self.last_epoch)


__all__ = [
    "CosineAnnealingLR",
    "ExponentialLR",
    "LRScheduler",
    "LambdaLR",
    "StepLR",
]
