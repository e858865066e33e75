# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

"""
Activation functions for recurrent cells.

Currently implemented:
- Tanh
- Sigmoid
- ReLU
- GeLU (tanh approximation, no optimized derivative)

Every activation exposes ``f(x)``, ``df(x)`` and ``df_optimized(fx)``, the
last one computing the derivative from the already activated values, which
is what the backward passes use.
"""

from abc import ABC, abstractmethod

import numpy as np

from .errors import UnsupportedOperationError


# sqrt(2 / pi), used by the tanh form of GeLU
_GELU_C = np.sqrt(2.0 / np.pi)
_GELU_K = 0.044715


class ActivationFunction(ABC):
    """Element-wise activation with its derivative."""

    name: str = ""

    @abstractmethod
    def f(self, x: np.ndarray) -> np.ndarray:
        ...

    @abstractmethod
    def df(self, x: np.ndarray) -> np.ndarray:
        """Derivative evaluated at the pre-activation values x."""

    @property
    def supports_optimized_derivative(self) -> bool:
        return True

    def df_optimized(self, fx: np.ndarray) -> np.ndarray:
        """
        Derivative computed from the activated values fx = f(x).

        Raises:
            UnsupportedOperationError: If the activation cannot express its
                derivative in terms of its output.
        """
        raise UnsupportedOperationError(
            f"{type(self).__name__} has no optimized derivative"
        )

    def __call__(self, x: np.ndarray) -> np.ndarray:
        return self.f(x)

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"

    def __eq__(self, other) -> bool:
        return type(self) is type(other)

    def __hash__(self) -> int:
        return hash(type(self))


class Tanh(ActivationFunction):
    name = "tanh"

    def f(self, x: np.ndarray) -> np.ndarray:
        return np.tanh(x)

    def df(self, x: np.ndarray) -> np.ndarray:
        return 1.0 - np.tanh(x) ** 2

    def df_optimized(self, fx: np.ndarray) -> np.ndarray:
        return 1.0 - fx**2


class Sigmoid(ActivationFunction):
    name = "sigmoid"

    def f(self, x: np.ndarray) -> np.ndarray:
        return 1.0 / (1.0 + np.exp(-x))

    def df(self, x: np.ndarray) -> np.ndarray:
        fx = self.f(x)
        return fx * (1.0 - fx)

    def df_optimized(self, fx: np.ndarray) -> np.ndarray:
        return fx * (1.0 - fx)


class ReLU(ActivationFunction):
    name = "relu"

    def f(self, x: np.ndarray) -> np.ndarray:
        return np.where(x > 0.0, x, 0.0)

    def df(self, x: np.ndarray) -> np.ndarray:
        return np.where(x > 0.0, 1.0, 0.0)

    def df_optimized(self, fx: np.ndarray) -> np.ndarray:
        # f(x) > 0 iff x > 0
        return self.df(fx)


class GeLU(ActivationFunction):
    """
    x * Phi(x) in its tanh form, 0.5 * x * (1 + tanh(u)) with
    u = sqrt(2/pi) * (x + 0.044715 * x^3). Not invertible from its output,
    hence no optimized derivative.
    """

    name = "gelu"

    @property
    def supports_optimized_derivative(self) -> bool:
        return False

    def f(self, x: np.ndarray) -> np.ndarray:
        u = _GELU_C * (x + _GELU_K * x**3)
        return 0.5 * x * (1.0 + np.tanh(u))

    def df(self, x: np.ndarray) -> np.ndarray:
        t = np.tanh(_GELU_C * (x + _GELU_K * x**3))
        du = _GELU_C * (1.0 + 3.0 * _GELU_K * x**2)
        return 0.5 * (1.0 + t) + 0.5 * x * (1.0 - t**2) * du


ACTIVATIONS = {
    "tanh": Tanh,
    "sigmoid": Sigmoid,
    "relu": ReLU,
    "gelu": GeLU,
}


def get_activation(name: str) -> ActivationFunction:
    """A new instance of the activation registered as `name` (KeyError if unknown)."""
    if name not in ACTIVATIONS:
        raise KeyError(f"Unknown activation {name!r}, expected one of {sorted(ACTIVATIONS)}")
    return ACTIVATIONS[name]()
