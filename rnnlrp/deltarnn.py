# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

"""
Delta Recurrent Neural Network (Ororbia et al., 2017).

    wx        = W . x
    wy_rec    = Wrec . y_prev                       (0 on the first state)
    d1        = beta1 * wx + beta2 * wy_rec + bc
    d2        = alpha * wx * wy_rec
    candidate = tanh(d1 + d2)
    partition = sigmoid(wx + bp)
    y         = f(partition * candidate + (1 - partition) * y_prev)

The candidate uses the layer activation (tanh when none is given); the
output is activated only when an activation is given.
"""

from typing import Optional

import numpy as np

from .activations import ActivationFunction, Sigmoid, Tanh
from .arrays import AugmentedArray
from .layer import ContextWindow, RecurrentLayer
from .params import Initializer, LayerParameters, ParametersUnit, glorot_uniform
from .relevance import input_partition, linear_relevance, partition_relevance, recurrent_partition
from .units import assign_outer, dot, forward_contributions


class DeltaRNNLayerParameters(LayerParameters):
    """
    Attributes:
        feedforward_unit: W (output x input) and the candidate biases bc.
        recurrent_unit: Wrec (output x output) and the partition biases bp.
        alpha, beta1, beta2: Mixing vectors of the candidate.
    """

    def __init__(
        self,
        input_size: int,
        output_size: int,
        weights_initializer: Optional[Initializer] = glorot_uniform,
        biases_initializer: Optional[Initializer] = glorot_uniform,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        super().__init__(input_size, output_size)
        self.feedforward_unit = self._add_unit(
            "feedforward_unit", ParametersUnit(input_size, output_size)
        )
        self.recurrent_unit = self._add_unit(
            "recurrent_unit", ParametersUnit(output_size, output_size)
        )
        self.alpha = self._add_vector("alpha", output_size)
        self.beta1 = self._add_vector("beta1", output_size)
        self.beta2 = self._add_vector("beta2", output_size)
        self.initialize(weights_initializer, biases_initializer, rng)


class DeltaRNNLayer(RecurrentLayer):
    """
    In a contribution bundle, `feedforward_unit.weights` holds the terms of
    `wx`, `recurrent_unit.weights` the terms of `wy_rec` and
    `recurrent_unit.biases` the recurrent share `(1 - partition) * y_prev`
    of the output.
    """

    def __init__(
        self,
        params: DeltaRNNLayerParameters,
        context_window: ContextWindow,
        activation: Optional[ActivationFunction] = None,
        dropout: float = 0.0,
        rng: Optional[np.random.Generator] = None,
        input_array: Optional[AugmentedArray] = None,
    ) -> None:
        super().__init__(params, context_window, activation, dropout, rng, input_array)
        size = params.output_size
        self.wx = AugmentedArray(size)
        self.wy_rec = AugmentedArray(size)
        self.candidate = AugmentedArray(size, activation if activation is not None else Tanh())
        self.partition = AugmentedArray(size, Sigmoid())
        self.output_array.set_activation(activation)

        # filled by the forward with contributions
        self.d1_input = AugmentedArray(size)
        self.d1_rec = AugmentedArray(size)
        self.d2 = AugmentedArray(size)

        self._wx_errors: Optional[np.ndarray] = None
        self._prev_output_relevance: Optional[np.ndarray] = None

    # ------------------------------------------------------------------
    # forward
    # ------------------------------------------------------------------
    def _forward(self) -> None:
        p = self.params
        y_prev = self._prev_output()
        wx = dot(p.feedforward_unit.weights, self.input_array.operand)
        if y_prev is None:
            wy_rec = np.zeros(self.output_size)
        else:
            wy_rec = p.recurrent_unit.weights @ y_prev
        self.wx.assign_values(wx)
        self.wy_rec.assign_values(wy_rec)

        d1 = p.beta1 * wx + p.beta2 * wy_rec + p.feedforward_unit.biases
        d2 = p.alpha * wx * wy_rec
        self._assign_gates(d1 + d2, y_prev)

    def _forward_with_contributions(self, contributions: DeltaRNNLayerParameters) -> None:
        p = self.params
        y_prev = self._prev_output()
        bc = p.feedforward_unit.biases

        wx = forward_contributions(
            contributions.feedforward_unit.weights, p.feedforward_unit.weights, self.input_array.values
        )
        contributions.feedforward_unit.biases.fill(0.0)

        if y_prev is None:
            wy_rec = np.zeros(self.output_size)
            contributions.recurrent_unit.weights.fill(0.0)
            d1_input = p.beta1 * wx + bc
            d1_rec = np.zeros(self.output_size)
            d2 = np.zeros(self.output_size)
        else:
            wy_rec = forward_contributions(
                contributions.recurrent_unit.weights, p.recurrent_unit.weights, y_prev
            )
            d1_input = p.beta1 * wx + bc / 2.0
            d1_rec = p.beta2 * wy_rec + bc / 2.0
            d2 = p.alpha * wx * wy_rec

        self.wx.assign_values(wx)
        self.wy_rec.assign_values(wy_rec)
        self.d1_input.assign_values(d1_input)
        self.d1_rec.assign_values(d1_rec)
        self.d2.assign_values(d2)

        self._assign_gates(d1_input + d1_rec + d2, y_prev)

        if y_prev is None:
            contributions.recurrent_unit.biases.fill(0.0)
        else:
            contributions.recurrent_unit.biases[...] = (1.0 - self.partition.values) * y_prev

    def _assign_gates(self, candidate_pre: np.ndarray, y_prev: Optional[np.ndarray]) -> None:
        self.candidate.assign_values(candidate_pre)
        self.candidate.activate()

        self.partition.assign_values(self.wx.values + self.params.recurrent_unit.biases)
        self.partition.activate()

        y = self.partition.values * self.candidate.values
        if y_prev is not None:
            y = y + (1.0 - self.partition.values) * y_prev
        self.output_array.assign_values(y)
        self.output_array.activate()

    # ------------------------------------------------------------------
    # backward
    # ------------------------------------------------------------------
    def recurrent_errors(self, next_layer: "DeltaRNNLayer") -> np.ndarray:
        p = self.params
        gy_next = next_layer.output_array.errors
        wy_rec_errors = (p.alpha * next_layer.wx.values + p.beta2) * next_layer.candidate.errors
        return (1.0 - next_layer.partition.values) * gy_next + p.recurrent_unit.weights.T @ wy_rec_errors

    def _assign_gates_errors(self) -> None:
        gy = self.output_array.errors
        y_prev = self._prev_output()
        c = self.candidate.values

        delta = c if y_prev is None else c - y_prev
        self.partition.assign_errors(gy * delta * self.partition.calculate_activation_deriv())
        self.candidate.assign_errors(
            gy * self.partition.values * self.candidate.calculate_activation_deriv()
        )

    def _assign_params_gradients(self, params_errors: DeltaRNNLayerParameters) -> None:
        p = self.params
        x = self.input_array.operand
        y_prev = self._prev_output()
        wx = self.wx.values
        wy_rec = self.wy_rec.values
        gc = self.candidate.errors
        gp = self.partition.errors

        params_errors.feedforward_unit.biases[...] = gc
        params_errors.recurrent_unit.biases[...] = gp
        params_errors.beta1[...] = gc * wx
        params_errors.beta2[...] = gc * wy_rec
        params_errors.alpha[...] = gc * wx * wy_rec

        self._wx_errors = (p.alpha * wy_rec + p.beta1) * gc + gp
        assign_outer(params_errors.feedforward_unit.weights, self._wx_errors, x)

        if y_prev is None:
            params_errors.recurrent_unit.weights.fill(0.0)
        else:
            wy_rec_errors = (p.alpha * wx + p.beta2) * gc
            params_errors.recurrent_unit.weights[...] = np.outer(wy_rec_errors, y_prev)

    def _assign_input_errors(self) -> None:
        self.input_array.assign_errors(self.params.feedforward_unit.weights.T @ self._wx_errors)

    # ------------------------------------------------------------------
    # relevance
    # ------------------------------------------------------------------
    def propagate_relevance_to_gates(self, contributions: DeltaRNNLayerParameters) -> None:
        """
        The partition takes half of the output relevance and the candidate
        half of the input share. With a previous state the candidate
        relevance is split three ways among d1_input, d1_rec and d2.
        """
        super().propagate_relevance_to_gates(contributions)
        relevance = self.output_array.relevance

        if self.prev_state is None:
            half = relevance / 2.0
            self.partition.assign_relevance(half)
            self.candidate.assign_relevance(half)
            self.d1_input.assign_relevance(half)
            self.d1_rec.assign_relevance(np.zeros(self.output_size))
            self.d2.assign_relevance(np.zeros(self.output_size))
            self._prev_output_relevance = None
            return

        y = self.output_array.values_not_activated
        y_rec = contributions.recurrent_unit.biases
        input_rel = input_partition(relevance, y, y - y_rec, y_rec)
        rec_rel = recurrent_partition(relevance, y, y_rec)
        self.partition.assign_relevance(input_rel / 2.0 + rec_rel / 2.0)
        self.candidate.assign_relevance(input_rel / 2.0)
        self._prev_output_relevance = rec_rel / 2.0

        candidate_rel = self.candidate.relevance
        candidate_pre = self.candidate.values_not_activated
        sign_reference = self.d2.values
        for share in (self.d1_input, self.d1_rec, self.d2):
            share.assign_relevance(
                partition_relevance(candidate_rel, candidate_pre, share.values, sign_reference, n_partitions=3)
            )

    def _input_relevance(self, contributions: DeltaRNNLayerParameters) -> np.ndarray:
        p = self.params
        prev_exists = self.prev_state is not None
        wx_contrib = contributions.feedforward_unit.weights
        n = self.input_size

        partition_contrib = wx_contrib + (p.recurrent_unit.biases / n)[:, np.newaxis]
        relevance = linear_relevance(
            self.partition.values_not_activated, self.partition.relevance, partition_contrib
        )

        bc = p.feedforward_unit.biases / 2.0 if prev_exists else p.feedforward_unit.biases
        d1_contrib = wx_contrib * p.beta1[:, np.newaxis] + (bc / n)[:, np.newaxis]
        relevance = relevance + linear_relevance(self.d1_input.values, self.d1_input.relevance, d1_contrib)

        if prev_exists:
            relevance = relevance + linear_relevance(self.wx.values, self.d2.relevance / 2.0, wx_contrib)

        return relevance

    def _assign_recurrent_relevance(
        self, prev_state: RecurrentLayer, contributions: DeltaRNNLayerParameters
    ) -> None:
        p = self.params
        wy_contrib = contributions.recurrent_unit.weights
        n = self.output_size

        d1_contrib = wy_contrib * p.beta2[:, np.newaxis] + (p.feedforward_unit.biases / 2.0 / n)[:, np.newaxis]
        relevance = self._prev_output_relevance
        relevance = relevance + linear_relevance(self.d1_rec.values, self.d1_rec.relevance, d1_contrib)
        relevance = relevance + linear_relevance(self.wy_rec.values, self.d2.relevance / 2.0, wy_contrib)
        prev_state.output_array.assign_relevance(relevance)
