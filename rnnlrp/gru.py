# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

"""
Gated Recurrent Unit layer.

    r    = sigmoid(Wr . x + br + Wrr . y_prev)
    p    = sigmoid(Wp . x + bp + Wpr . y_prev)
    c    = f(Wc . x + bc + Wcr . (r * y_prev))
    y    = p * c + (1 - p) * y_prev
"""

from typing import Optional

import numpy as np

from .activations import ActivationFunction, Sigmoid
from .arrays import AugmentedArray
from .layer import ContextWindow, RecurrentLayer
from .params import Initializer, LayerParameters, ParametersUnit, glorot_uniform
from .relevance import input_partition, recurrent_partition
from .units import RecurrentLayerUnit


class GRULayerParameters(LayerParameters):
    def __init__(
        self,
        input_size: int,
        output_size: int,
        weights_initializer: Optional[Initializer] = glorot_uniform,
        biases_initializer: Optional[Initializer] = glorot_uniform,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        super().__init__(input_size, output_size)
        self.reset_gate = self._add_unit(
            "reset_gate", ParametersUnit(input_size, output_size, recurrent=True)
        )
        self.partition_gate = self._add_unit(
            "partition_gate", ParametersUnit(input_size, output_size, recurrent=True)
        )
        self.candidate = self._add_unit(
            "candidate", ParametersUnit(input_size, output_size, recurrent=True)
        )
        self.initialize(weights_initializer, biases_initializer, rng)


class GRULayer(RecurrentLayer):
    def __init__(
        self,
        params: GRULayerParameters,
        context_window: ContextWindow,
        activation: Optional[ActivationFunction] = None,
        dropout: float = 0.0,
        rng: Optional[np.random.Generator] = None,
        input_array: Optional[AugmentedArray] = None,
    ) -> None:
        super().__init__(params, context_window, activation, dropout, rng, input_array)
        size = params.output_size
        self.reset_gate = RecurrentLayerUnit(size, Sigmoid())
        self.partition_gate = RecurrentLayerUnit(size, Sigmoid())
        self.candidate = RecurrentLayerUnit(size, activation)
        # r * y_prev, None on the first state
        self.reset_prev_output: Optional[np.ndarray] = None
        self._y_rec: Optional[np.ndarray] = None
        self._prev_output_relevance: Optional[np.ndarray] = None

    # ------------------------------------------------------------------
    # forward
    # ------------------------------------------------------------------
    def _forward(self) -> None:
        x = self.input_array.operand
        y_prev = self._prev_output()
        p = self.params
        self.reset_gate.forward(p.reset_gate, x, y_prev)
        self.partition_gate.forward(p.partition_gate, x, y_prev)
        self._assign_reset_prev_output(y_prev)
        self.candidate.forward(p.candidate, x, self.reset_prev_output)
        self._assign_output(y_prev)

    def _forward_with_contributions(self, contributions: GRULayerParameters) -> None:
        x = self.input_array.values
        y_prev = self._prev_output()
        p = self.params
        self.reset_gate.forward_with_contributions(p.reset_gate, contributions.reset_gate, x, y_prev)
        self.partition_gate.forward_with_contributions(
            p.partition_gate, contributions.partition_gate, x, y_prev
        )
        self._assign_reset_prev_output(y_prev)
        self.candidate.forward_with_contributions(
            p.candidate, contributions.candidate, x, self.reset_prev_output
        )
        self._assign_output(y_prev)

    def _assign_reset_prev_output(self, y_prev: Optional[np.ndarray]) -> None:
        self.reset_prev_output = None if y_prev is None else self.reset_gate.values * y_prev

    def _assign_output(self, y_prev: Optional[np.ndarray]) -> None:
        y = self.partition_gate.values * self.candidate.values
        if y_prev is None:
            self._y_rec = None
        else:
            self._y_rec = (1.0 - self.partition_gate.values) * y_prev
            y = y + self._y_rec
        self.output_array.assign_values(y)

    # ------------------------------------------------------------------
    # backward
    # ------------------------------------------------------------------
    def recurrent_errors(self, next_layer: "GRULayer") -> np.ndarray:
        p = self.params
        errors = next_layer.reset_gate.get_recurrent_errors(p.reset_gate)
        errors = errors + next_layer.partition_gate.get_recurrent_errors(p.partition_gate)
        errors = errors + next_layer.candidate.get_recurrent_errors(p.candidate) * next_layer.reset_gate.values
        errors = errors + (1.0 - next_layer.partition_gate.values) * next_layer.output_array.errors
        return errors

    def _assign_gates_errors(self) -> None:
        gy = self.output_array.errors
        c = self.candidate.values
        y_prev = self._prev_output()

        self.candidate.assign_errors(
            gy * self.partition_gate.values * self.candidate.calculate_activation_deriv()
        )
        if y_prev is None:
            self.partition_gate.assign_errors(gy * c * self.partition_gate.calculate_activation_deriv())
            self.reset_gate.assign_zero_errors()
        else:
            self.partition_gate.assign_errors(
                gy * (c - y_prev) * self.partition_gate.calculate_activation_deriv()
            )
            self.reset_gate.assign_errors(
                self.candidate.get_recurrent_errors(self.params.candidate)
                * self.reset_gate.calculate_activation_deriv()
                * y_prev
            )

    def _assign_params_gradients(self, params_errors: GRULayerParameters) -> None:
        x = self.input_array.operand
        y_prev = self._prev_output()
        self.reset_gate.assign_params_gradients(params_errors.reset_gate, x, y_prev)
        self.partition_gate.assign_params_gradients(params_errors.partition_gate, x, y_prev)
        self.candidate.assign_params_gradients(params_errors.candidate, x, self.reset_prev_output)

    def _assign_input_errors(self) -> None:
        p = self.params
        self.input_array.assign_errors(
            self._gates_input_errors(
                (self.reset_gate, p.reset_gate),
                (self.partition_gate, p.partition_gate),
                (self.candidate, p.candidate),
            )
        )

    # ------------------------------------------------------------------
    # relevance
    # ------------------------------------------------------------------
    def propagate_relevance_to_gates(self, contributions: GRULayerParameters) -> None:
        """
        The partition gate always takes half of the output relevance. The
        candidate takes half of the input share; its recurrent share, which
        comes from r * y_prev, is split evenly between the reset gate and the
        previous output.
        """
        super().propagate_relevance_to_gates(contributions)
        relevance = self.output_array.relevance

        if self._y_rec is None:
            self.partition_gate.assign_relevance(relevance / 2.0)
            self.candidate.assign_relevance(relevance / 2.0)
            self.reset_gate.assign_relevance(np.zeros(self.output_size))
            self._prev_output_relevance = None
            return

        y = self.output_array.values
        input_rel = input_partition(relevance, y, y - self._y_rec, self._y_rec)
        rec_rel = recurrent_partition(relevance, y, self._y_rec)
        self.partition_gate.assign_relevance(input_rel / 2.0 + rec_rel / 2.0)
        self.candidate.assign_relevance(input_rel / 2.0)

        reset_prev_rel = self.candidate.get_recurrent_relevance(contributions.candidate)
        self.reset_gate.assign_relevance(reset_prev_rel / 2.0)
        self._prev_output_relevance = rec_rel / 2.0 + reset_prev_rel / 2.0

    def _input_relevance(self, contributions: GRULayerParameters) -> np.ndarray:
        prev_exists = self.prev_state is not None
        return (
            self.candidate.get_input_relevance(contributions.candidate, prev_exists)
            + self.partition_gate.get_input_relevance(contributions.partition_gate, prev_exists)
            + self.reset_gate.get_input_relevance(contributions.reset_gate, prev_exists)
        )

    def _assign_recurrent_relevance(
        self, prev_state: RecurrentLayer, contributions: GRULayerParameters
    ) -> None:
        prev_state.output_array.assign_relevance(
            self._prev_output_relevance
            + self.partition_gate.get_recurrent_relevance(contributions.partition_gate)
            + self.reset_gate.get_recurrent_relevance(contributions.reset_gate)
        )
