# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

"""
Parameter units and per-layer parameter bundles.

A bundle of a given class plays three roles:

- the trainable parameters of a layer;
- the gradient structure filled by `Layer.backward` (same shapes);
- the contribution structure filled by a forward with contributions, in
  which each weight matrix holds the per-element ``w[j, i] * x[i]`` terms
  and each biases slot holds the recurrent share of the unit's
  pre-activation.
"""

import copy
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from .errors import InvalidConfigurationError, ShapeMismatchError

Initializer = Callable[[Tuple[int, ...], np.random.Generator], np.ndarray]


def glorot_uniform(shape: Tuple[int, ...], rng: np.random.Generator, gain: float = 1.0) -> np.ndarray:
    """Glorot/Xavier uniform: U(-a, a) with a = gain * sqrt(6 / (fan_in + fan_out))."""
    fan_out = shape[0]
    fan_in = shape[1] if len(shape) > 1 else 1
    limit = gain * np.sqrt(6.0 / (fan_in + fan_out))
    return rng.uniform(-limit, limit, size=shape)


def he_init(shape: Tuple[int, ...], rng: np.random.Generator) -> np.ndarray:
    """Kaiming/He initialization: N(0, sqrt(2/fan_in))."""
    fan_in = shape[1] if len(shape) > 1 else 1
    std = np.sqrt(2.0 / fan_in)
    return rng.normal(0.0, std, size=shape)


class ParametersUnit:
    """
    Weights (output_size x input_size), optional biases (output_size) and
    optional recurrent weights (output_size x output_size) of one gate.
    """

    def __init__(
        self,
        input_size: int,
        output_size: int,
        recurrent: bool = False,
        has_biases: bool = True,
    ) -> None:
        self.input_size = input_size
        self.output_size = output_size
        self.weights = np.zeros((output_size, input_size))
        self.biases = np.zeros(output_size) if has_biases else None
        self.recurrent_weights = np.zeros((output_size, output_size)) if recurrent else None

    def named_params(self) -> List[Tuple[str, np.ndarray]]:
        params = [("weights", self.weights)]
        if self.biases is not None:
            params.append(("biases", self.biases))
        if self.recurrent_weights is not None:
            params.append(("recurrent_weights", self.recurrent_weights))
        return params


class LayerParameters:
    """
    Ordered collection of the parameter units (and free vectors) of a layer.

    Subclasses register their units in `__init__` with `_add_unit` /
    `_add_vector` and then call `initialize`.

    Parameters
    ----------
    input_size, output_size : int
        Layer dimensions.
    """

    def __init__(self, input_size: int, output_size: int) -> None:
        self.input_size = input_size
        self.output_size = output_size
        self.units: Dict[str, ParametersUnit] = {}
        self.vectors: Dict[str, np.ndarray] = {}

    def _add_unit(self, name: str, unit: ParametersUnit) -> ParametersUnit:
        self.units[name] = unit
        setattr(self, name, unit)
        return unit

    def _add_vector(self, name: str, size: int) -> np.ndarray:
        vector = np.zeros(size)
        self.vectors[name] = vector
        setattr(self, name, vector)
        return vector

    # ------------------------------------------------------------------
    # iteration
    # ------------------------------------------------------------------
    def named_params(self) -> List[Tuple[str, np.ndarray]]:
        """All parameter arrays, by reference, in a fixed order."""
        params = []
        for unit_name, unit in self.units.items():
            for param_name, array in unit.named_params():
                params.append((f"{unit_name}.{param_name}", array))
        for name, vector in self.vectors.items():
            params.append((name, vector))
        return params

    @property
    def params_list(self) -> List[np.ndarray]:
        return [array for _, array in self.named_params()]

    def __iter__(self) -> Iterator[np.ndarray]:
        return iter(self.params_list)

    def __len__(self) -> int:
        return len(self.named_params())

    # ------------------------------------------------------------------
    # initialization
    # ------------------------------------------------------------------
    def initialize(
        self,
        weights_initializer: Optional[Initializer] = glorot_uniform,
        biases_initializer: Optional[Initializer] = glorot_uniform,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        """
        Fill weights and biases in place. A None initializer leaves zeros.

        The DeltaRNN `alpha` / `beta` vectors count as weights.
        """
        rng = rng if rng is not None else np.random.default_rng()
        for name, array in self.named_params():
            init = biases_initializer if name.endswith("biases") else weights_initializer
            if init is None:
                array.fill(0.0)
            else:
                array[...] = init(array.shape, rng)

    # ------------------------------------------------------------------
    # bundle arithmetic
    # ------------------------------------------------------------------
    def copy(self) -> "LayerParameters":
        return copy.deepcopy(self)

    def zeros_like(self) -> "LayerParameters":
        """A bundle of the same structure with every array set to zero."""
        other = self.copy()
        other.assign_zeros()
        return other

    def assign_zeros(self) -> None:
        for array in self.params_list:
            array.fill(0.0)

    def _pairs(self, other: "LayerParameters") -> Iterator[Tuple[np.ndarray, np.ndarray]]:
        mine = self.named_params()
        theirs = other.named_params()
        if [n for n, _ in mine] != [n for n, _ in theirs]:
            raise TypeError(
                f"Incompatible parameter bundles: {type(self).__name__} vs {type(other).__name__}"
            )
        for (name, a), (_, b) in zip(mine, theirs):
            if a.shape != b.shape:
                raise ShapeMismatchError(name, a.shape, b.shape)
            yield a, b

    def assign_values(self, other: "LayerParameters") -> None:
        for a, b in self._pairs(other):
            a[...] = b

    def assign_sum(self, other: "LayerParameters") -> None:
        for a, b in self._pairs(other):
            a += b

    def assign_div(self, n: float) -> None:
        for array in self.params_list:
            array /= n

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(input_size={self.input_size}, "
            f"output_size={self.output_size}, params={[n for n, _ in self.named_params()]})"
        )


class StackedParameters(LayerParameters):
    """
    Parameters of layers stacked on top of each other, the output of each
    layer being the input of the next one.

    Behaves as a single bundle (gradients, accumulation, optimizers); its
    params are named ``layer<i>.<name>``. Index it to get the bundle of
    one layer.
    """

    def __init__(self, layers: Sequence[LayerParameters]) -> None:
        layers = list(layers)
        if not layers:
            raise InvalidConfigurationError("A stack needs at least one layer")
        for i, (lower, upper) in enumerate(zip(layers, layers[1:])):
            if upper.input_size != lower.output_size:
                raise InvalidConfigurationError(
                    f"layer {i + 1} input size {upper.input_size} != "
                    f"layer {i} output size {lower.output_size}"
                )
        super().__init__(layers[0].input_size, layers[-1].output_size)
        self.layers = layers

    @property
    def depth(self) -> int:
        return len(self.layers)

    def __getitem__(self, level: int) -> LayerParameters:
        return self.layers[level]

    def named_params(self) -> List[Tuple[str, np.ndarray]]:
        return [
            (f"layer{i}.{name}", array)
            for i, layer in enumerate(self.layers)
            for name, array in layer.named_params()
        ]
