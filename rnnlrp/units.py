# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

from typing import Optional

import numpy as np
from scipy import sparse

from .activations import ActivationFunction
from .arrays import AugmentedArray
from .params import ParametersUnit
from .relevance import input_partition, linear_relevance, recurrent_partition


def dot(weights: np.ndarray, x) -> np.ndarray:
    """weights . x, reading only the non-zero columns when x is a sparse row."""
    if sparse.issparse(x):
        return weights[:, x.indices] @ x.data
    return weights @ x


def assign_outer(target: np.ndarray, g: np.ndarray, x) -> None:
    """Write the outer product g x into `target` in place."""
    if sparse.issparse(x):
        # only the columns of the non-zero inputs have a gradient
        target.fill(0.0)
        target[:, x.indices] = np.outer(g, x.data)
    else:
        target[...] = np.outer(g, x)


def forward_contributions(
    contributions: np.ndarray,
    weights: np.ndarray,
    x: np.ndarray,
    biases: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Write C[j, i] = w[j, i] * x[i] + b[j] / n into `contributions` in place
    and return the row sums, i.e. w . x + b.
    """
    contributions[...] = weights * x[np.newaxis, :]
    if biases is not None:
        contributions += (biases / x.shape[0])[:, np.newaxis]
    return contributions.sum(axis=1)


class RecurrentLayerUnit(AugmentedArray):
    """
    A gate: pre = W . x + b (+ Wrec . y_prev), followed by an optional
    activation. `errors` always refer to the pre-activation values.
    """

    def __init__(self, size: int, activation: Optional[ActivationFunction] = None) -> None:
        super().__init__(size, activation=activation)

    def forward(
        self,
        unit: ParametersUnit,
        x,
        y_prev: Optional[np.ndarray] = None,
    ) -> None:
        """`x` may be dense or a sparse row (see `AugmentedArray.operand`)."""
        pre = dot(unit.weights, x)
        if unit.biases is not None:
            pre = pre + unit.biases
        if y_prev is not None and unit.recurrent_weights is not None:
            pre = pre + unit.recurrent_weights @ y_prev
        self.assign_values(pre)
        self.activate()

    def forward_with_contributions(
        self,
        unit: ParametersUnit,
        contributions: ParametersUnit,
        x: np.ndarray,
        y_prev: Optional[np.ndarray] = None,
    ) -> None:
        """
        Same output as `forward`, saving the contributions of x (and y_prev).

        With a previous state the biases are split in half between the input
        and the recurrent contributions, and the recurrent share of the
        pre-activation is kept in `contributions.biases`.
        """
        recurrent = y_prev is not None and unit.recurrent_weights is not None
        biases = unit.biases
        if recurrent and biases is not None:
            biases = biases / 2.0

        pre = forward_contributions(contributions.weights, unit.weights, x, biases)

        if recurrent:
            y_rec = forward_contributions(
                contributions.recurrent_weights, unit.recurrent_weights, y_prev, biases
            )
            contributions.biases[...] = y_rec
            pre = pre + y_rec
        else:
            if contributions.recurrent_weights is not None:
                contributions.recurrent_weights.fill(0.0)
            if contributions.biases is not None:
                contributions.biases.fill(0.0)

        self.assign_values(pre)
        self.activate()

    # ------------------------------------------------------------------
    # backward
    # ------------------------------------------------------------------
    def assign_params_gradients(
        self,
        grads: ParametersUnit,
        x,
        y_prev: Optional[np.ndarray] = None,
    ) -> None:
        g = self.errors
        assign_outer(grads.weights, g, x)
        if grads.biases is not None:
            grads.biases[...] = g
        if grads.recurrent_weights is not None:
            if y_prev is None:
                grads.recurrent_weights.fill(0.0)
            else:
                grads.recurrent_weights[...] = np.outer(g, y_prev)

    def get_input_errors(self, unit: ParametersUnit) -> np.ndarray:
        return unit.weights.T @ self.errors

    def get_recurrent_errors(self, unit: ParametersUnit) -> np.ndarray:
        return unit.recurrent_weights.T @ self.errors

    # ------------------------------------------------------------------
    # relevance
    # ------------------------------------------------------------------
    def get_input_relevance(self, contributions: ParametersUnit, prev_state_exists: bool) -> np.ndarray:
        """Relevance of x from the relevance of this gate."""
        y = self.values_not_activated
        if not prev_state_exists:
            return linear_relevance(y, self.relevance, contributions.weights)
        y_rec = contributions.biases
        y_input = y - y_rec
        rel = input_partition(self.relevance, y, y_input, y_rec)
        return linear_relevance(y_input, rel, contributions.weights)

    def get_recurrent_relevance(self, contributions: ParametersUnit) -> np.ndarray:
        """Relevance of y_prev from the relevance of this gate."""
        y = self.values_not_activated
        y_rec = contributions.biases
        rel = recurrent_partition(self.relevance, y, y_rec)
        return linear_relevance(y_rec, rel, contributions.recurrent_weights)
