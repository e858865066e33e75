# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

"""
Chaos-Free Network (Laurent & von Brecht, 2016).

    in_g  = sigmoid(Wi . x + bi + Wri . y_prev)
    for_g = sigmoid(Wf . x + bf + Wrf . y_prev)
    c     = f(Wc . x)
    y     = in_g * c + for_g * f(y_prev)

The output itself is not activated.
"""

from typing import Optional

import numpy as np

from .activations import ActivationFunction, Sigmoid
from .arrays import AugmentedArray
from .layer import ContextWindow, RecurrentLayer
from .params import Initializer, LayerParameters, ParametersUnit, glorot_uniform
from .relevance import input_partition, recurrent_partition
from .units import RecurrentLayerUnit


class CFNLayerParameters(LayerParameters):
    def __init__(
        self,
        input_size: int,
        output_size: int,
        weights_initializer: Optional[Initializer] = glorot_uniform,
        biases_initializer: Optional[Initializer] = glorot_uniform,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        super().__init__(input_size, output_size)
        self.input_gate = self._add_unit(
            "input_gate", ParametersUnit(input_size, output_size, recurrent=True)
        )
        self.forget_gate = self._add_unit(
            "forget_gate", ParametersUnit(input_size, output_size, recurrent=True)
        )
        self.candidate = self._add_unit(
            "candidate", ParametersUnit(input_size, output_size, has_biases=False)
        )
        self.initialize(weights_initializer, biases_initializer, rng)


class CFNLayer(RecurrentLayer):
    def __init__(
        self,
        params: CFNLayerParameters,
        context_window: ContextWindow,
        activation: Optional[ActivationFunction] = None,
        dropout: float = 0.0,
        rng: Optional[np.random.Generator] = None,
        input_array: Optional[AugmentedArray] = None,
    ) -> None:
        super().__init__(params, context_window, activation, dropout, rng, input_array)
        size = params.output_size
        self.input_gate = RecurrentLayerUnit(size, Sigmoid())
        self.forget_gate = RecurrentLayerUnit(size, Sigmoid())
        self.candidate = RecurrentLayerUnit(size, activation)
        # f(y_prev), None on the first state
        self.activated_prev_output: Optional[np.ndarray] = None
        self._y_rec: Optional[np.ndarray] = None
        self._prev_output_relevance: Optional[np.ndarray] = None

    # ------------------------------------------------------------------
    # forward
    # ------------------------------------------------------------------
    def _forward(self) -> None:
        x = self.input_array.operand
        y_prev = self._prev_output()
        self.input_gate.forward(self.params.input_gate, x, y_prev)
        self.forget_gate.forward(self.params.forget_gate, x, y_prev)
        self.candidate.forward(self.params.candidate, x)
        self._assign_output(y_prev)

    def _forward_with_contributions(self, contributions: CFNLayerParameters) -> None:
        x = self.input_array.values
        y_prev = self._prev_output()
        p = self.params
        self.input_gate.forward_with_contributions(p.input_gate, contributions.input_gate, x, y_prev)
        self.forget_gate.forward_with_contributions(p.forget_gate, contributions.forget_gate, x, y_prev)
        self.candidate.forward_with_contributions(p.candidate, contributions.candidate, x)
        self._assign_output(y_prev)

    def _assign_output(self, y_prev: Optional[np.ndarray]) -> None:
        y = self.input_gate.values * self.candidate.values
        if y_prev is None:
            self.activated_prev_output = None
            self._y_rec = None
        else:
            self.activated_prev_output = self.candidate.get_activated_values(y_prev)
            self._y_rec = self.forget_gate.values * self.activated_prev_output
            y = y + self._y_rec
        self.output_array.assign_values(y)

    # ------------------------------------------------------------------
    # backward
    # ------------------------------------------------------------------
    def _prev_output_deriv(self) -> np.ndarray:
        if self.candidate.activation is None:
            return np.ones(self.output_size)
        return self.candidate.activation.df_optimized(self.activated_prev_output)

    def recurrent_errors(self, next_layer: "CFNLayer") -> np.ndarray:
        p = self.params
        gy_next = next_layer.output_array.errors
        errors = next_layer.forget_gate.values * next_layer._prev_output_deriv() * gy_next
        errors = errors + next_layer.input_gate.get_recurrent_errors(p.input_gate)
        errors = errors + next_layer.forget_gate.get_recurrent_errors(p.forget_gate)
        return errors

    def _assign_gates_errors(self) -> None:
        gy = self.output_array.errors
        self.input_gate.assign_errors(
            gy * self.candidate.values * self.input_gate.calculate_activation_deriv()
        )
        self.candidate.assign_errors(
            gy * self.input_gate.values * self.candidate.calculate_activation_deriv()
        )
        if self.activated_prev_output is None:
            self.forget_gate.assign_zero_errors()
        else:
            self.forget_gate.assign_errors(
                gy * self.activated_prev_output * self.forget_gate.calculate_activation_deriv()
            )

    def _assign_params_gradients(self, params_errors: CFNLayerParameters) -> None:
        x = self.input_array.operand
        y_prev = self._prev_output()
        self.input_gate.assign_params_gradients(params_errors.input_gate, x, y_prev)
        self.forget_gate.assign_params_gradients(params_errors.forget_gate, x, y_prev)
        self.candidate.assign_params_gradients(params_errors.candidate, x)

    def _assign_input_errors(self) -> None:
        p = self.params
        self.input_array.assign_errors(
            self._gates_input_errors(
                (self.input_gate, p.input_gate),
                (self.forget_gate, p.forget_gate),
                (self.candidate, p.candidate),
            )
        )

    # ------------------------------------------------------------------
    # relevance
    # ------------------------------------------------------------------
    def propagate_relevance_to_gates(self, contributions: CFNLayerParameters) -> None:
        super().propagate_relevance_to_gates(contributions)
        relevance = self.output_array.relevance

        if self._y_rec is None:
            self.input_gate.assign_relevance(relevance / 2.0)
            self.candidate.assign_relevance(relevance / 2.0)
            self.forget_gate.assign_relevance(np.zeros(self.output_size))
            self._prev_output_relevance = None
            return

        y = self.output_array.values
        input_rel = input_partition(relevance, y, y - self._y_rec, self._y_rec)
        rec_rel = recurrent_partition(relevance, y, self._y_rec)
        self.input_gate.assign_relevance(input_rel / 2.0)
        self.candidate.assign_relevance(input_rel / 2.0)
        self.forget_gate.assign_relevance(rec_rel / 2.0)
        self._prev_output_relevance = rec_rel / 2.0

    def _input_relevance(self, contributions: CFNLayerParameters) -> np.ndarray:
        prev_exists = self.prev_state is not None
        relevance = self.candidate.get_input_relevance(contributions.candidate, prev_state_exists=False)
        relevance = relevance + self.input_gate.get_input_relevance(contributions.input_gate, prev_exists)
        if prev_exists:
            relevance = relevance + self.forget_gate.get_input_relevance(contributions.forget_gate, True)
        return relevance

    def _assign_recurrent_relevance(
        self, prev_state: RecurrentLayer, contributions: CFNLayerParameters
    ) -> None:
        prev_state.output_array.assign_relevance(
            self._prev_output_relevance
            + self.input_gate.get_recurrent_relevance(contributions.input_gate)
            + self.forget_gate.get_recurrent_relevance(contributions.forget_gate)
        )
