# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

"""
Simple (Elman) recurrent layer.

    y = f(W . x + b + Wrec . y_prev)
"""

from typing import Optional

import numpy as np

from .activations import ActivationFunction
from .arrays import AugmentedArray
from .layer import ContextWindow, RecurrentLayer
from .params import Initializer, LayerParameters, ParametersUnit, glorot_uniform


class SimpleRecurrentLayerParameters(LayerParameters):
    """A single recurrent unit."""

    def __init__(
        self,
        input_size: int,
        output_size: int,
        weights_initializer: Optional[Initializer] = glorot_uniform,
        biases_initializer: Optional[Initializer] = glorot_uniform,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        super().__init__(input_size, output_size)
        self.unit = self._add_unit("unit", ParametersUnit(input_size, output_size, recurrent=True))
        self.initialize(weights_initializer, biases_initializer, rng)


class SimpleRecurrentLayer(RecurrentLayer):
    def __init__(
        self,
        params: SimpleRecurrentLayerParameters,
        context_window: ContextWindow,
        activation: Optional[ActivationFunction] = None,
        dropout: float = 0.0,
        rng: Optional[np.random.Generator] = None,
        input_array: Optional[AugmentedArray] = None,
    ) -> None:
        super().__init__(params, context_window, activation, dropout, rng, input_array)
        self.output_array.set_activation(activation)

    def _forward(self) -> None:
        self.output_array.forward(self.params.unit, self.input_array.operand, self._prev_output())

    def _forward_with_contributions(self, contributions: SimpleRecurrentLayerParameters) -> None:
        self.output_array.forward_with_contributions(
            self.params.unit, contributions.unit, self.input_array.values, self._prev_output()
        )

    def recurrent_errors(self, next_layer: "SimpleRecurrentLayer") -> np.ndarray:
        return next_layer.output_array.get_recurrent_errors(self.params.unit)

    def _assign_gates_errors(self) -> None:
        # the output is the only gate
        pass

    def _assign_params_gradients(self, params_errors: SimpleRecurrentLayerParameters) -> None:
        self.output_array.assign_params_gradients(
            params_errors.unit, self.input_array.operand, self._prev_output()
        )

    def _assign_input_errors(self) -> None:
        self.input_array.assign_errors(self.output_array.get_input_errors(self.params.unit))

    def _input_relevance(self, contributions: SimpleRecurrentLayerParameters) -> np.ndarray:
        return self.output_array.get_input_relevance(
            contributions.unit, prev_state_exists=self.prev_state is not None
        )

    def _assign_recurrent_relevance(
        self, prev_state: RecurrentLayer, contributions: SimpleRecurrentLayerParameters
    ) -> None:
        prev_state.output_array.assign_relevance(
            self.output_array.get_recurrent_relevance(contributions.unit)
        )
