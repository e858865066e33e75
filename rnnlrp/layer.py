# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

"""
The contract shared by every recurrent cell.

A cell instance computes one timestep. It reads the neighbouring timesteps
through a context window, which only looks them up and never owns them.

Call order for one timestep::

    layer.set_input(x)
    layer.forward(contributions=...)      # contributions optional
    layer.set_errors(dy)
    layer.backward(params_errors, propagate_to_input=True)
    layer.set_output_relevance(distribution)
    layer.calculate_relevance(contributions)
"""

from abc import ABC, abstractmethod
from typing import Optional

import numpy as np

from .activations import ActivationFunction
from .arrays import AugmentedArray, DistributionArray
from .errors import InvalidConfigurationError, StructuralMisuseError
from .params import LayerParameters
from .units import RecurrentLayerUnit


class ContextWindow(ABC):
    """Read-only access to the cells of the previous and next timesteps."""

    @abstractmethod
    def get_prev_state(self) -> Optional["RecurrentLayer"]:
        ...

    @abstractmethod
    def get_next_state(self) -> Optional["RecurrentLayer"]:
        ...


class FixedContextWindow(ContextWindow):
    """A context window with explicitly given neighbours (None at a boundary)."""

    def __init__(
        self,
        prev_state: Optional["RecurrentLayer"] = None,
        next_state: Optional["RecurrentLayer"] = None,
    ) -> None:
        self.prev_state = prev_state
        self.next_state = next_state

    def get_prev_state(self) -> Optional["RecurrentLayer"]:
        return self.prev_state

    def get_next_state(self) -> Optional["RecurrentLayer"]:
        return self.next_state


class RecurrentLayer(ABC):
    """
    One timestep of a recurrent layer.

    Parameters
    ----------
    params : LayerParameters
        Parameters shared by all the timesteps of the layer.
    context_window : ContextWindow
        Lookup of the previous and next timesteps.
    activation : ActivationFunction | None
        Cell activation. Where it is applied depends on the cell type.
    dropout : float
        Probability of dropping an input element when forward is called with
        `use_dropout=True`.
    rng : numpy.random.Generator | None
        Source of the dropout masks.
    input_array : AugmentedArray | None
        Input of the timestep, created when not given.

    The output array is a `RecurrentLayerUnit` of `params.output_size`
    elements owned by the layer.
    """

    # RAN reads the non-activated previous output, so its output
    # derivative is applied before the recurrent errors are added.
    activation_before_recurrence: bool = False

    def __init__(
        self,
        params: LayerParameters,
        context_window: ContextWindow,
        activation: Optional[ActivationFunction] = None,
        dropout: float = 0.0,
        rng: Optional[np.random.Generator] = None,
        input_array: Optional[AugmentedArray] = None,
    ) -> None:
        if input_array is None:
            input_array = AugmentedArray(params.input_size)
        elif input_array.size != params.input_size:
            raise InvalidConfigurationError(
                f"input size {input_array.size} != params input size {params.input_size}"
            )
        if not 0.0 <= dropout < 1.0:
            raise InvalidConfigurationError(f"dropout must be in [0, 1), got {dropout}")

        self.input_array = input_array
        self.output_array = RecurrentLayerUnit(params.output_size)
        self.params = params
        self.context_window = context_window
        self.activation = activation
        self.dropout = dropout
        self.rng = rng if rng is not None else np.random.default_rng()
        self._contributions: Optional[LayerParameters] = None
        # set once the output relevance has been split among the gates
        self._gates_relevance_ready = False

    @property
    def input_size(self) -> int:
        return self.input_array.size

    @property
    def output_size(self) -> int:
        return self.output_array.size

    @property
    def prev_state(self) -> Optional["RecurrentLayer"]:
        return self.context_window.get_prev_state()

    @property
    def next_state(self) -> Optional["RecurrentLayer"]:
        return self.context_window.get_next_state()

    # ------------------------------------------------------------------
    # setters
    # ------------------------------------------------------------------
    def set_input(self, values) -> None:
        self.input_array.assign_values(values)

    def set_errors(self, errors) -> None:
        self.output_array.assign_errors(errors)

    def set_output_relevance(self, relevance) -> None:
        if isinstance(relevance, DistributionArray):
            relevance = relevance.values
        self.output_array.assign_relevance(relevance)
        self._gates_relevance_ready = False

    def add_output_relevance(self, relevance) -> None:
        """Add to the output relevance already received from the next timestep."""
        self.output_array.assign_relevance(self.output_array.relevance + relevance)
        self._gates_relevance_ready = False

    def set_init_hidden(self, values) -> None:
        """Use this instance as the state preceding the first timestep."""
        self.output_array.assign_values(values)

    # ------------------------------------------------------------------
    # forward
    # ------------------------------------------------------------------
    def forward(
        self,
        use_dropout: bool = False,
        contributions: Optional[LayerParameters] = None,
    ) -> None:
        """
        Compute the output of the timestep from its input.

        With a contribution bundle, also save the per-element contributions
        needed by `calculate_relevance`.
        """
        self._gates_relevance_ready = False
        if use_dropout and self.dropout > 0.0:
            self._apply_dropout()

        if contributions is None:
            self._forward()
            self._contributions = None
        else:
            self._forward_with_contributions(contributions)
            self._contributions = contributions

    def _apply_dropout(self) -> None:
        # a sparse input is densified by the mask
        keep = self.rng.random(self.input_size) >= self.dropout
        self.input_array.assign_values(self.input_array.values * keep / (1.0 - self.dropout))

    @abstractmethod
    def _forward(self) -> None:
        ...

    @abstractmethod
    def _forward_with_contributions(self, contributions: LayerParameters) -> None:
        ...

    # ------------------------------------------------------------------
    # backward
    # ------------------------------------------------------------------
    def backward(
        self,
        params_errors: LayerParameters,
        propagate_to_input: bool = False,
        meprop_k: Optional[int] = None,
    ) -> None:
        """
        Back-propagate the errors assigned to the output.

        Parameters
        ----------
        params_errors : LayerParameters
            Bundle (same structure as `params`) overwritten with the
            gradients of this timestep.
        propagate_to_input : bool
            Also assign `input_array.errors`.
        meprop_k : int | None
            Keep only the k output errors of largest magnitude.
        """
        if self.activation_before_recurrence:
            self.apply_output_activation_deriv()
            self._add_recurrent_errors()
        else:
            self._add_recurrent_errors()
            self.apply_output_activation_deriv()

        if meprop_k is not None:
            self._apply_meprop(meprop_k)

        self._assign_gates_errors()
        self._assign_params_gradients(params_errors)

        if propagate_to_input:
            self._assign_input_errors()

    def apply_output_activation_deriv(self) -> None:
        if self.output_array.has_activation:
            self.output_array.assign_errors(
                self.output_array.errors * self.output_array.calculate_activation_deriv()
            )

    def _add_recurrent_errors(self) -> None:
        next_state = self.next_state
        if next_state is not None:
            self.output_array.assign_errors(
                self.output_array.errors + self.recurrent_errors(next_state)
            )

    def _apply_meprop(self, k: int) -> None:
        errors = self.output_array.errors
        if k < 0:
            raise ValueError(f"meprop_k must be non-negative, got {k}")
        if k < errors.size:
            mask = np.zeros(errors.size)
            mask[np.argsort(np.abs(errors))[errors.size - k:]] = 1.0
            self.output_array.assign_errors(errors * mask)

    @abstractmethod
    def recurrent_errors(self, next_layer: "RecurrentLayer") -> np.ndarray:
        """Errors that `next_layer` sends back to the output of this timestep."""

    @abstractmethod
    def _assign_gates_errors(self) -> None:
        ...

    @abstractmethod
    def _assign_params_gradients(self, params_errors: LayerParameters) -> None:
        ...

    @abstractmethod
    def _assign_input_errors(self) -> None:
        ...

    # ------------------------------------------------------------------
    # relevance
    # ------------------------------------------------------------------
    def calculate_relevance(self, contributions: LayerParameters) -> None:
        """
        Propagate the output relevance to the input and, when a previous
        state exists, to the output of the previous state.
        """
        self.propagate_relevance_to_gates(contributions)
        self.set_input_relevance(contributions)
        if self.prev_state is not None:
            self.set_recurrent_relevance(contributions)

    def propagate_relevance_to_gates(self, contributions: LayerParameters) -> None:
        """
        Assign relevance to the internal arrays of the cell.

        Cells extend this and call it first; it must precede
        `set_input_relevance` and `set_recurrent_relevance`.
        """
        self._check_contributions(contributions)
        self._gates_relevance_ready = True

    def set_input_relevance(self, contributions: LayerParameters) -> None:
        self._check_gates_relevance(contributions)
        self.input_array.assign_relevance(self._input_relevance(contributions))

    def set_recurrent_relevance(self, contributions: LayerParameters) -> None:
        """Assign the relevance of the previous state's output."""
        self._check_gates_relevance(contributions)
        prev_state = self.prev_state
        if prev_state is None:
            raise StructuralMisuseError(
                "Cannot propagate relevance to a previous state that does not exist"
            )
        self._assign_recurrent_relevance(prev_state, contributions)

    def reset_recurrent_relevance(self) -> None:
        """Forget relevance received from a next timestep (memory cells only)."""

    def _check_contributions(self, contributions: LayerParameters) -> None:
        if contributions is None or contributions is not self._contributions:
            raise StructuralMisuseError(
                "Relevance requires the contributions saved by the latest forward"
            )

    def _check_gates_relevance(self, contributions: LayerParameters) -> None:
        self._check_contributions(contributions)
        if not self._gates_relevance_ready:
            raise StructuralMisuseError(
                "propagate_relevance_to_gates() must be called after the output relevance is set"
            )

    @abstractmethod
    def _input_relevance(self, contributions: LayerParameters) -> np.ndarray:
        ...

    @abstractmethod
    def _assign_recurrent_relevance(
        self, prev_state: "RecurrentLayer", contributions: LayerParameters
    ) -> None:
        ...

    # ------------------------------------------------------------------
    # helpers for subclasses
    # ------------------------------------------------------------------
    def _prev_output(self) -> Optional[np.ndarray]:
        prev_state = self.prev_state
        return None if prev_state is None else prev_state.output_array.values

    def _gates_input_errors(self, *gates) -> np.ndarray:
        """Sum of W^T . errors over (gate, ParametersUnit) pairs."""
        errors = np.zeros(self.input_size)
        for gate, unit in gates:
            errors += gate.get_input_errors(unit)
        return errors

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(input_size={self.input_size}, "
            f"output_size={self.output_size}, activation={self.activation!r})"
        )
