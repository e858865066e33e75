# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

"""
Long-Term Memory layer (Nugaliyadde et al., 2019).

    x'   = x + y_prev
    l1   = sigmoid(W1 . x')
    l2   = sigmoid(W2 . x')
    l3   = sigmoid(W3 . x')
    c    = l1 * l2 + cell_prev
    cell = sigmoid(Wcell . c)
    y    = cell * l3

Input and output must have the same size. No unit has biases and the layer
activation is not used.
"""

from typing import Optional

import numpy as np

from .activations import ActivationFunction, Sigmoid
from .arrays import AugmentedArray
from .errors import InvalidConfigurationError
from .layer import ContextWindow, RecurrentLayer
from .params import Initializer, LayerParameters, ParametersUnit, glorot_uniform
from .relevance import input_partition, recurrent_partition
from .units import RecurrentLayerUnit

INPUT_GATES = ("input_gate1", "input_gate2", "input_gate3")


class LTMLayerParameters(LayerParameters):
    def __init__(
        self,
        input_size: int,
        output_size: int,
        weights_initializer: Optional[Initializer] = glorot_uniform,
        biases_initializer: Optional[Initializer] = glorot_uniform,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        if input_size != output_size:
            raise InvalidConfigurationError(
                f"LTM requires input size == output size, got {input_size} and {output_size}"
            )
        super().__init__(input_size, output_size)
        for name in INPUT_GATES:
            self._add_unit(name, ParametersUnit(input_size, output_size, has_biases=False))
        self.cell = self._add_unit("cell", ParametersUnit(output_size, output_size, has_biases=False))
        self.initialize(weights_initializer, biases_initializer, rng)


class LTMLayer(RecurrentLayer):
    def __init__(
        self,
        params: LTMLayerParameters,
        context_window: ContextWindow,
        activation: Optional[ActivationFunction] = None,
        dropout: float = 0.0,
        rng: Optional[np.random.Generator] = None,
        input_array: Optional[AugmentedArray] = None,
    ) -> None:
        super().__init__(params, context_window, activation, dropout, rng, input_array)
        size = params.output_size
        self.input_gate1 = RecurrentLayerUnit(size, Sigmoid())
        self.input_gate2 = RecurrentLayerUnit(size, Sigmoid())
        self.input_gate3 = RecurrentLayerUnit(size, Sigmoid())
        self.c = AugmentedArray(size)
        self.cell = RecurrentLayerUnit(size, Sigmoid())
        # x + y_prev
        self.combined_input = AugmentedArray(size)

        self._y_prev_share: Optional[np.ndarray] = None
        self._cell_rec: Optional[np.ndarray] = None
        self._prev_cell_relevance: Optional[np.ndarray] = None

    def _gates(self):
        return [(getattr(self, name), getattr(self.params, name)) for name in INPUT_GATES]

    def set_init_hidden(self, values) -> None:
        super().set_init_hidden(values)
        self.cell.assign_values(np.zeros(self.output_size))

    # ------------------------------------------------------------------
    # forward
    # ------------------------------------------------------------------
    def _forward(self) -> None:
        x_combined = self._assign_combined_input()
        for gate, unit in self._gates():
            gate.forward(unit, x_combined)
        self._assign_c()
        self.cell.forward(self.params.cell, self.c.values)
        self._assign_output()

    def _forward_with_contributions(self, contributions: LTMLayerParameters) -> None:
        x_combined = self._assign_combined_input()
        for name in INPUT_GATES:
            getattr(self, name).forward_with_contributions(
                getattr(self.params, name), getattr(contributions, name), x_combined
            )
        self._assign_c()
        self.cell.forward_with_contributions(self.params.cell, contributions.cell, self.c.values)
        self._assign_output()

    def _assign_combined_input(self) -> np.ndarray:
        x = self.input_array.values
        y_prev = self._prev_output()
        if y_prev is None:
            self._y_prev_share = None
            self.combined_input.assign_values(x)
        else:
            self._y_prev_share = y_prev.copy()
            self.combined_input.assign_values(x + y_prev)
        return self.combined_input.values

    def _assign_c(self) -> None:
        c = self.input_gate1.values * self.input_gate2.values
        prev_state = self.prev_state
        if prev_state is None:
            self._cell_rec = None
        else:
            self._cell_rec = prev_state.cell.values.copy()
            c = c + self._cell_rec
        self.c.assign_values(c)

    def _assign_output(self) -> None:
        self.output_array.assign_values(self.cell.values * self.input_gate3.values)

    # ------------------------------------------------------------------
    # backward
    # ------------------------------------------------------------------
    def recurrent_errors(self, next_layer: "LTMLayer") -> np.ndarray:
        return next_layer.combined_input.errors

    def _assign_gates_errors(self) -> None:
        gy = self.output_array.errors

        cell_errors = gy * self.input_gate3.values
        next_state = self.next_state
        if next_state is not None:
            cell_errors = cell_errors + next_state.c.errors
        self.cell.assign_errors(cell_errors * self.cell.calculate_activation_deriv())

        c_errors = self.cell.get_input_errors(self.params.cell)
        self.c.assign_errors(c_errors)

        self.input_gate1.assign_errors(
            c_errors * self.input_gate2.values * self.input_gate1.calculate_activation_deriv()
        )
        self.input_gate2.assign_errors(
            c_errors * self.input_gate1.values * self.input_gate2.calculate_activation_deriv()
        )
        self.input_gate3.assign_errors(
            gy * self.cell.values * self.input_gate3.calculate_activation_deriv()
        )

        # needed by the previous state even when not propagating to the input
        combined = np.zeros(self.input_size)
        for gate, unit in self._gates():
            combined += gate.get_input_errors(unit)
        self.combined_input.assign_errors(combined)

    def _assign_params_gradients(self, params_errors: LTMLayerParameters) -> None:
        x_combined = self.combined_input.values
        for name in INPUT_GATES:
            getattr(self, name).assign_params_gradients(getattr(params_errors, name), x_combined)
        self.cell.assign_params_gradients(params_errors.cell, self.c.values)

    def _assign_input_errors(self) -> None:
        self.input_array.assign_errors(self.combined_input.errors)

    # ------------------------------------------------------------------
    # relevance
    # ------------------------------------------------------------------
    def reset_recurrent_relevance(self) -> None:
        self.cell.clear_recurrent_relevance()

    def propagate_relevance_to_gates(self, contributions: LTMLayerParameters) -> None:
        super().propagate_relevance_to_gates(contributions)
        relevance = self.output_array.relevance
        self.input_gate3.assign_relevance(relevance / 2.0)

        cell_relevance = relevance / 2.0
        if self.cell.has_recurrent_relevance:
            cell_relevance = cell_relevance + self.cell.recurrent_relevance
        self.cell.assign_relevance(cell_relevance)

        c_relevance = self.cell.get_input_relevance(contributions.cell, prev_state_exists=False)
        self.c.assign_relevance(c_relevance)

        if self._cell_rec is None:
            self.input_gate1.assign_relevance(c_relevance / 2.0)
            self.input_gate2.assign_relevance(c_relevance / 2.0)
            self._prev_cell_relevance = None
        else:
            c = self.c.values
            input_rel = input_partition(c_relevance, c, c - self._cell_rec, self._cell_rec)
            self.input_gate1.assign_relevance(input_rel / 2.0)
            self.input_gate2.assign_relevance(input_rel / 2.0)
            self._prev_cell_relevance = recurrent_partition(c_relevance, c, self._cell_rec)

        combined = np.zeros(self.input_size)
        for name in INPUT_GATES:
            combined += getattr(self, name).get_input_relevance(
                getattr(contributions, name), prev_state_exists=False
            )
        self.combined_input.assign_relevance(combined)

    def _input_relevance(self, contributions: LTMLayerParameters) -> np.ndarray:
        relevance = self.combined_input.relevance
        if self._y_prev_share is None:
            return relevance
        x_combined = self.combined_input.values
        return input_partition(
            relevance, x_combined, x_combined - self._y_prev_share, self._y_prev_share
        )

    def _assign_recurrent_relevance(
        self, prev_state: RecurrentLayer, contributions: LTMLayerParameters
    ) -> None:
        x_combined = self.combined_input.values
        prev_state.output_array.assign_relevance(
            recurrent_partition(self.combined_input.relevance, x_combined, self._y_prev_share)
        )
        prev_state.cell.assign_recurrent_relevance(self._prev_cell_relevance)
