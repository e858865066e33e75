# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

"""
Long Short-Term Memory layer.

    in_g  = sigmoid(Wi . x + bi + Wri . y_prev)
    out_g = sigmoid(Wo . x + bo + Wro . y_prev)
    for_g = sigmoid(Wf . x + bf + Wrf . y_prev)
    cand  = f(Wc . x + bc + Wrc . y_prev)
    cell  = in_g * cand + for_g * cell_prev
    y     = out_g * f(cell)

`cell.values` holds f(cell) and `cell.values_not_activated` the memory
passed to the next timestep.
"""

from typing import Optional

import numpy as np

from .activations import ActivationFunction, Sigmoid
from .arrays import AugmentedArray
from .layer import ContextWindow, RecurrentLayer
from .params import Initializer, LayerParameters, ParametersUnit, glorot_uniform
from .relevance import input_partition, recurrent_partition
from .units import RecurrentLayerUnit

GATES = ("input_gate", "output_gate", "forget_gate", "candidate")


class LSTMLayerParameters(LayerParameters):
    def __init__(
        self,
        input_size: int,
        output_size: int,
        weights_initializer: Optional[Initializer] = glorot_uniform,
        biases_initializer: Optional[Initializer] = glorot_uniform,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        super().__init__(input_size, output_size)
        for name in GATES:
            self._add_unit(name, ParametersUnit(input_size, output_size, recurrent=True))
        self.initialize(weights_initializer, biases_initializer, rng)


class LSTMLayer(RecurrentLayer):
    def __init__(
        self,
        params: LSTMLayerParameters,
        context_window: ContextWindow,
        activation: Optional[ActivationFunction] = None,
        dropout: float = 0.0,
        rng: Optional[np.random.Generator] = None,
        input_array: Optional[AugmentedArray] = None,
    ) -> None:
        super().__init__(params, context_window, activation, dropout, rng, input_array)
        size = params.output_size
        self.input_gate = RecurrentLayerUnit(size, Sigmoid())
        self.output_gate = RecurrentLayerUnit(size, Sigmoid())
        self.forget_gate = RecurrentLayerUnit(size, Sigmoid())
        self.candidate = RecurrentLayerUnit(size, activation)
        self.cell = AugmentedArray(size, activation)
        self._cell_rec: Optional[np.ndarray] = None
        self._prev_cell_relevance: Optional[np.ndarray] = None

    def _gates(self):
        return [(getattr(self, name), getattr(self.params, name)) for name in GATES]

    def set_init_hidden(self, values) -> None:
        super().set_init_hidden(values)
        self.cell.assign_values(np.zeros(self.output_size))

    def _prev_cell(self) -> Optional[np.ndarray]:
        prev_state = self.prev_state
        return None if prev_state is None else prev_state.cell.values_not_activated

    # ------------------------------------------------------------------
    # forward
    # ------------------------------------------------------------------
    def _forward(self) -> None:
        x = self.input_array.operand
        y_prev = self._prev_output()
        for gate, unit in self._gates():
            gate.forward(unit, x, y_prev)
        self._assign_output()

    def _forward_with_contributions(self, contributions: LSTMLayerParameters) -> None:
        x = self.input_array.values
        y_prev = self._prev_output()
        for name in GATES:
            getattr(self, name).forward_with_contributions(
                getattr(self.params, name), getattr(contributions, name), x, y_prev
            )
        self._assign_output()

    def _assign_output(self) -> None:
        cell = self.input_gate.values * self.candidate.values
        cell_prev = self._prev_cell()
        if cell_prev is None:
            self._cell_rec = None
        else:
            self._cell_rec = self.forget_gate.values * cell_prev
            cell = cell + self._cell_rec
        self.cell.assign_values(cell)
        self.cell.activate()
        self.output_array.assign_values(self.output_gate.values * self.cell.values)

    # ------------------------------------------------------------------
    # backward
    # ------------------------------------------------------------------
    def recurrent_errors(self, next_layer: "LSTMLayer") -> np.ndarray:
        errors = np.zeros(self.output_size)
        for name in GATES:
            errors += getattr(next_layer, name).get_recurrent_errors(getattr(self.params, name))
        return errors

    def _assign_gates_errors(self) -> None:
        gy = self.output_array.errors

        cell_errors = gy * self.output_gate.values * self.cell.calculate_activation_deriv()
        next_state = self.next_state
        if next_state is not None:
            cell_errors = cell_errors + next_state.cell.errors * next_state.forget_gate.values
        self.cell.assign_errors(cell_errors)

        self.output_gate.assign_errors(
            gy * self.cell.values * self.output_gate.calculate_activation_deriv()
        )
        self.input_gate.assign_errors(
            cell_errors * self.candidate.values * self.input_gate.calculate_activation_deriv()
        )
        self.candidate.assign_errors(
            cell_errors * self.input_gate.values * self.candidate.calculate_activation_deriv()
        )
        cell_prev = self._prev_cell()
        if cell_prev is None:
            self.forget_gate.assign_zero_errors()
        else:
            self.forget_gate.assign_errors(
                cell_errors * cell_prev * self.forget_gate.calculate_activation_deriv()
            )

    def _assign_params_gradients(self, params_errors: LSTMLayerParameters) -> None:
        x = self.input_array.operand
        y_prev = self._prev_output()
        for name in GATES:
            getattr(self, name).assign_params_gradients(getattr(params_errors, name), x, y_prev)

    def _assign_input_errors(self) -> None:
        self.input_array.assign_errors(self._gates_input_errors(*self._gates()))

    # ------------------------------------------------------------------
    # relevance
    # ------------------------------------------------------------------
    def reset_recurrent_relevance(self) -> None:
        self.cell.clear_recurrent_relevance()

    def propagate_relevance_to_gates(self, contributions: LSTMLayerParameters) -> None:
        """
        Half of the output relevance goes to the output gate and half to the
        memory cell, which also collects the relevance sent back by the next
        state. The cell relevance is then split between `in_g * cand` and
        `for_g * cell_prev`.
        """
        super().propagate_relevance_to_gates(contributions)
        relevance = self.output_array.relevance
        self.output_gate.assign_relevance(relevance / 2.0)

        cell_relevance = relevance / 2.0
        if self.cell.has_recurrent_relevance:
            cell_relevance = cell_relevance + self.cell.recurrent_relevance
        self.cell.assign_relevance(cell_relevance)

        if self._cell_rec is None:
            self.input_gate.assign_relevance(cell_relevance / 2.0)
            self.candidate.assign_relevance(cell_relevance / 2.0)
            self.forget_gate.assign_relevance(np.zeros(self.output_size))
            self._prev_cell_relevance = None
            return

        cell = self.cell.values_not_activated
        input_rel = input_partition(cell_relevance, cell, cell - self._cell_rec, self._cell_rec)
        rec_rel = recurrent_partition(cell_relevance, cell, self._cell_rec)
        self.input_gate.assign_relevance(input_rel / 2.0)
        self.candidate.assign_relevance(input_rel / 2.0)
        self.forget_gate.assign_relevance(rec_rel / 2.0)
        self._prev_cell_relevance = rec_rel / 2.0

    def _input_relevance(self, contributions: LSTMLayerParameters) -> np.ndarray:
        prev_exists = self.prev_state is not None
        relevance = np.zeros(self.input_size)
        for name in GATES:
            relevance += getattr(self, name).get_input_relevance(getattr(contributions, name), prev_exists)
        return relevance

    def _assign_recurrent_relevance(
        self, prev_state: RecurrentLayer, contributions: LSTMLayerParameters
    ) -> None:
        relevance = np.zeros(self.output_size)
        for name in GATES:
            relevance += getattr(self, name).get_recurrent_relevance(getattr(contributions, name))
        prev_state.output_array.assign_relevance(relevance)
        prev_state.cell.assign_recurrent_relevance(self._prev_cell_relevance)
