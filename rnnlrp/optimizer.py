# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

"""
Parameter update methods and the optimizer that applies them.

Typical training loop::

    optimizer = ParamsOptimizer(processor.params, ADAMMethod())
    for epoch in range(n_epochs):
        optimizer.new_epoch()
        for batch in batches:
            optimizer.new_batch()
            for sequence, errors in batch:
                optimizer.new_example()
                processor.forward(sequence)
                processor.backward(errors)
                optimizer.accumulate(processor.get_params_errors(copy=False))
            optimizer.update()
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Hashable, Tuple

import numpy as np

from .accumulator import ParamsErrorsAccumulator
from .params import LayerParameters

logger = logging.getLogger(__name__)


class UpdateMethod(ABC):
    """Turns the errors of a parameter into the step subtracted from it."""

    def update(self, array: np.ndarray, errors: np.ndarray, key: Hashable = None) -> None:
        """
        Update `array` in place.

        Args:
            array: Parameter values.
            errors: Gradient of the loss w.r.t. `array`.
            key: Identifies the parameter across calls (defaults to its id).
        """
        if key is None:
            key = id(array)
        array -= self.optimize_errors(errors, key)

    @abstractmethod
    def optimize_errors(self, errors: np.ndarray, key: Hashable) -> np.ndarray:
        ...

    def new_epoch(self) -> None:
        pass

    def new_batch(self) -> None:
        pass

    def new_example(self) -> None:
        pass


class LearningRateMethod(UpdateMethod):
    """
    Plain gradient descent with an optional hyperbolic decay per epoch:
    lr = lr0 / (1 + decay * epoch), bounded below by `min_learning_rate`.
    """

    def __init__(
        self,
        learning_rate: float = 0.01,
        decay: float = 0.0,
        min_learning_rate: float = 0.0,
    ) -> None:
        if learning_rate <= 0.0:
            raise ValueError("learning_rate must be positive")
        self.initial_learning_rate = learning_rate
        self.learning_rate = learning_rate
        self.decay = decay
        self.min_learning_rate = min_learning_rate
        self.epoch = 0

    def optimize_errors(self, errors: np.ndarray, key: Hashable) -> np.ndarray:
        return self.learning_rate * errors

    def new_epoch(self) -> None:
        self.epoch += 1
        if self.decay > 0.0:
            self.learning_rate = max(
                self.min_learning_rate,
                self.initial_learning_rate / (1.0 + self.decay * (self.epoch - 1)),
            )


class MomentumMethod(UpdateMethod):
    """
    Gradient descent with momentum: v = momentum * v + lr * errors, and v
    is the step. One velocity is kept per parameter key.
    """

    def __init__(self, learning_rate: float = 0.01, momentum: float = 0.9) -> None:
        if learning_rate <= 0.0:
            raise ValueError("learning_rate must be positive")
        if not 0.0 <= momentum < 1.0:
            raise ValueError(f"momentum must be in [0, 1), got {momentum}")
        self.learning_rate = learning_rate
        self.momentum = momentum
        self._velocities: Dict[Hashable, np.ndarray] = {}

    def optimize_errors(self, errors: np.ndarray, key: Hashable) -> np.ndarray:
        if key not in self._velocities:
            self._velocities[key] = np.zeros_like(errors)
        v = self._velocities[key]
        v *= self.momentum
        v += self.learning_rate * errors
        return v


class RMSPropMethod(UpdateMethod):
    """
    RMSProp (Tieleman & Hinton, 2012): the errors are divided by a running
    root mean square of their past values, kept per parameter key.
    """

    def __init__(
        self,
        learning_rate: float = 0.001,
        decay: float = 0.95,
        epsilon: float = 1e-8,
    ) -> None:
        if learning_rate <= 0.0:
            raise ValueError("learning_rate must be positive")
        self.learning_rate = learning_rate
        self.decay = decay
        self.epsilon = epsilon
        self._second_moments: Dict[Hashable, np.ndarray] = {}

    def optimize_errors(self, errors: np.ndarray, key: Hashable) -> np.ndarray:
        if key not in self._second_moments:
            self._second_moments[key] = np.zeros_like(errors)
        m = self._second_moments[key]
        m *= self.decay
        m += (1.0 - self.decay) * errors**2
        return self.learning_rate * errors / (np.sqrt(m) + self.epsilon)


class ADAMMethod(UpdateMethod):
    """
    ADAM (Kingma & Ba, 2014). The time step advances on `new_batch`.
    """

    def __init__(
        self,
        step_size: float = 0.001,
        beta1: float = 0.9,
        beta2: float = 0.999,
        epsilon: float = 1e-8,
    ) -> None:
        self.step_size = step_size
        self.beta1 = beta1
        self.beta2 = beta2
        self.epsilon = epsilon
        self.time_step = 0
        self._moments: Dict[Hashable, Tuple[np.ndarray, np.ndarray]] = {}

    @property
    def alpha(self) -> float:
        t = max(self.time_step, 1)
        return self.step_size * np.sqrt(1.0 - self.beta2**t) / (1.0 - self.beta1**t)

    def optimize_errors(self, errors: np.ndarray, key: Hashable) -> np.ndarray:
        if key not in self._moments:
            self._moments[key] = (np.zeros_like(errors), np.zeros_like(errors))
        m, v = self._moments[key]
        m *= self.beta1
        m += (1.0 - self.beta1) * errors
        v *= self.beta2
        v += (1.0 - self.beta2) * errors**2
        return self.alpha * m / (np.sqrt(v) + self.epsilon)

    def new_batch(self) -> None:
        self.time_step += 1


class ParamsOptimizer:
    """
    Accumulates the gradients of a parameter bundle and applies an update
    method to it.
    """

    def __init__(self, params: LayerParameters, update_method: UpdateMethod) -> None:
        self.params = params
        self.update_method = update_method
        self._accumulator = ParamsErrorsAccumulator()

    def accumulate(self, params_errors: LayerParameters, copy: bool = True) -> None:
        self._accumulator.accumulate(params_errors, copy=copy)

    def update(self) -> None:
        """Update the parameters with the average of the accumulated errors."""
        if self._accumulator.is_empty:
            logger.debug("update() called with no accumulated errors")
            return
        self._accumulator.average_errors()
        errors = self._accumulator.get_params_errors(copy=False)
        for (name, array), (_, array_errors) in zip(
            self.params.named_params(), errors.named_params()
        ):
            self.update_method.update(array, array_errors, key=name)
        logger.debug(
            "Updated %d params with %d accumulated errors",
            len(self.params),
            self._accumulator.count,
        )
        self._accumulator.reset()

    def new_epoch(self) -> None:
        self.update_method.new_epoch()

    def new_batch(self) -> None:
        self.update_method.new_batch()

    def new_example(self) -> None:
        self.update_method.new_example()
