# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

import logging
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np

from .accumulator import ParamsErrorsAccumulator
from .arrays import DistributionArray
from .errors import (
    InvalidConfigurationError,
    ShapeMismatchError,
    StructuralMisuseError,
    UnsupportedOperationError,
)
from .factory import Connection, LayerConfig, build_layer, build_params
from .layer import ContextWindow, FixedContextWindow, RecurrentLayer
from .params import LayerParameters, StackedParameters
from .sequence import NNSequence

logger = logging.getLogger(__name__)


class RecurrentNeuralProcessor:
    """
    Runs a recurrent layer, or a stack of them, over sequences: forward in
    time, backward through time with gradient accumulation, and relevance
    propagation over a range of states.

    Parameters
    ----------
    config : LayerConfig | sequence of LayerConfig
        The layer to run, or the layers of a stack from bottom to top. The
        input size of each layer must equal the output size of the one
        below.
    params : LayerParameters | StackedParameters | None
        Shared by every timestep. Built from `config` (with `rng`) when
        None. A stack takes a `StackedParameters` of the same depth.
    propagate_to_input : bool
        Compute the input errors during backward.
    use_dropout : bool
        Apply the configured dropout during forward.
    rng : numpy.random.Generator | None
        Used for parameter initialization and dropout masks.

    Examples
    --------
    >>> import numpy as np
    >>> from rnnlrp import Connection, LayerConfig, RecurrentNeuralProcessor
    >>> config = LayerConfig(3, 2, Connection.LSTM, activation="tanh")
    >>> processor = RecurrentNeuralProcessor(config, rng=np.random.default_rng(0))
    >>> outputs = processor.forward([np.ones(3), np.zeros(3)])
    >>> processor.backward([np.zeros(2), outputs[-1]])
    >>> grads = processor.get_params_errors()
    """

    def __init__(
        self,
        config: Union[LayerConfig, Sequence[LayerConfig]],
        params: Optional[LayerParameters] = None,
        propagate_to_input: bool = True,
        use_dropout: bool = False,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        self.configs = [config] if isinstance(config, LayerConfig) else list(config)
        if not self.configs:
            raise InvalidConfigurationError("At least one layer configuration is required")
        for i, (lower, upper) in enumerate(zip(self.configs, self.configs[1:])):
            if upper.input_size != lower.output_size:
                raise InvalidConfigurationError(
                    f"layer {i + 1} input size {upper.input_size} != "
                    f"layer {i} output size {lower.output_size}"
                )
        # the top layer
        self.config = self.configs[-1]
        self.rng = rng if rng is not None else np.random.default_rng()
        self.params = params if params is not None else self._build_params()
        self._levels_params = self._split_levels(self.params)
        self.propagate_to_input = propagate_to_input
        self.use_dropout = use_dropout

        self.sequence = NNSequence(
            self._build_layer,
            lambda level: self._levels_params[level].zeros_like(),
            depth=self.depth,
        )
        self._init_hidden_layers: List[Optional[RecurrentLayer]] = [None] * self.depth
        self._accumulator = ParamsErrorsAccumulator()
        self._step_errors = self.params.zeros_like()
        self._levels_step_errors = self._split_levels(self._step_errors)
        self._relevance_range: Optional[Tuple[int, int]] = None

    def _build_params(self) -> LayerParameters:
        if self.depth == 1:
            return build_params(self.config, rng=self.rng)
        return StackedParameters([build_params(c, rng=self.rng) for c in self.configs])

    def _split_levels(self, bundle: LayerParameters) -> List[LayerParameters]:
        """The bundle of each level of `bundle`."""
        if self.depth == 1:
            return [bundle]
        if not isinstance(bundle, StackedParameters) or bundle.depth != self.depth:
            raise InvalidConfigurationError(
                f"A stack of {self.depth} layers needs StackedParameters of the same depth"
            )
        return bundle.layers

    def _build_layer(self, context_window: ContextWindow, level: int) -> RecurrentLayer:
        return build_layer(
            self.configs[level], self._levels_params[level], context_window, rng=self.rng
        )

    @property
    def depth(self) -> int:
        return len(self.configs)

    @property
    def num_states(self) -> int:
        return len(self.sequence)

    @property
    def allocations(self) -> int:
        """Number of layers (and contribution bundles) built so far."""
        return self.sequence.allocations

    def reset(self) -> None:
        self.sequence.reset()
        self._accumulator.reset()
        self._relevance_range = None
        logger.debug("Sequence reset (arena capacity %d)", self.sequence.capacity)

    # ------------------------------------------------------------------
    # forward
    # ------------------------------------------------------------------
    def forward(
        self,
        inputs: Sequence[np.ndarray],
        init_hidden=None,
        save_contributions: bool = False,
    ) -> List[np.ndarray]:
        """
        Forward a whole sequence, starting a new one.

        Parameters
        ----------
        inputs : sequence of (input_size,) arrays
            Dense arrays or scipy.sparse vectors.
        init_hidden : (output_size,) array | list | None
            Output of the state preceding the first one. For a stack, a
            list with one array (or None) per layer, bottom first.
        save_contributions : bool
            Keep what `calculate_relevance` needs.

        Returns
        -------
        list of (output_size,) ndarray
            The output of the top layer at every state (copies).
        """
        if len(inputs) == 0:
            raise ValueError("Cannot forward an empty sequence")
        for i, x in enumerate(inputs):
            self.forward_step(
                x,
                first_state=(i == 0),
                init_hidden=init_hidden if i == 0 else None,
                save_contributions=save_contributions,
            )
        logger.debug("Forwarded a sequence of %d states", len(inputs))
        return self.get_output_sequence()

    def forward_step(
        self,
        x,
        first_state: bool,
        init_hidden=None,
        save_contributions: bool = False,
    ) -> np.ndarray:
        """Forward one more state; `first_state` starts a new sequence."""
        if first_state:
            self.reset()
            self._set_init_hidden(init_hidden)
        elif init_hidden is not None:
            raise StructuralMisuseError("The initial hidden array applies to the first state only")
        elif self.num_states == 0:
            raise StructuralMisuseError("The first forwarded state must have first_state=True")

        state = self.sequence.add_state(save_contributions=save_contributions)
        values = x
        for layer, contributions in zip(state.layers, state.layers_contributions):
            layer.set_input(values)
            layer.forward(
                use_dropout=self.use_dropout,
                contributions=contributions if save_contributions else None,
            )
            values = layer.output_array.values
        return values.copy()

    def _set_init_hidden(self, init_hidden) -> None:
        if init_hidden is None:
            return
        levels_values = [init_hidden] if self.depth == 1 else list(init_hidden)
        if len(levels_values) != self.depth:
            raise ShapeMismatchError("init hidden layers", (self.depth,), (len(levels_values),))

        for level, values in enumerate(levels_values):
            if values is None:
                continue
            if self._init_hidden_layers[level] is None:
                self._init_hidden_layers[level] = self._build_layer(FixedContextWindow(), level)
            self._init_hidden_layers[level].set_init_hidden(values)
            self.sequence.init_hidden_layers[level] = self._init_hidden_layers[level]

    # ------------------------------------------------------------------
    # backward
    # ------------------------------------------------------------------
    def backward(
        self,
        output_errors: Sequence[np.ndarray],
        meprop_k: Optional[int] = None,
    ) -> None:
        """
        Back-propagate one output error per state, last state first.

        Within a state the layers of a stack go from the top down, each
        lower layer receiving the input errors of the layer above.

        The gradients of all states are summed and then averaged once over
        the sequence length; read them with `get_params_errors`.
        """
        n = self.num_states
        if n == 0:
            raise StructuralMisuseError("backward() called before forward()")
        if len(output_errors) != n:
            raise ShapeMismatchError("output errors", (n,), (len(output_errors),))

        self._accumulator.reset()
        for i in reversed(range(n)):
            state = self.sequence.get_state(i)
            errors = output_errors[i]
            for level in reversed(range(self.depth)):
                layer = state.layers[level]
                layer.set_errors(errors)
                layer.backward(
                    self._levels_step_errors[level],
                    propagate_to_input=level > 0 or self.propagate_to_input,
                    meprop_k=meprop_k,
                )
                if level > 0:
                    errors = layer.input_array.errors
            self._accumulator.accumulate(self._step_errors)
        self._accumulator.average_errors()
        logger.debug("Backward through %d states", n)

    def backward_last(self, output_errors: np.ndarray, meprop_k: Optional[int] = None) -> None:
        """Back-propagate an error given on the last state only."""
        n = self.num_states
        if n == 0:
            raise StructuralMisuseError("backward() called before forward()")
        zeros = np.zeros(self.params.output_size)
        self.backward([zeros] * (n - 1) + [output_errors], meprop_k=meprop_k)

    # ------------------------------------------------------------------
    # relevance
    # ------------------------------------------------------------------
    def calculate_relevance(
        self,
        state_from: int,
        state_to: int,
        relevant_outcomes_distribution,
        copy: bool = True,
    ) -> np.ndarray:
        """
        Relevance of the input of `state_from` for the outcome of `state_to`.

        In a stack, the output of a lower layer receives the input
        relevance of the layer above it in the same state, added to the
        relevance coming back from its next state (there is none on
        `state_to`).

        Parameters
        ----------
        state_from, state_to : int
            0 <= state_from <= state_to <= last state index.
        relevant_outcomes_distribution : DistributionArray | ndarray
            Relevance assigned to the output of the top layer of `state_to`.

        Returns
        -------
        (input_size,) ndarray
            The input relevance of `state_from`. The other states of the
            range are available through `get_input_relevance`.

        Raises
        ------
        StructuralMisuseError
            If the range is invalid or contributions were not saved.
        """
        last = self.sequence.last_state_index
        if not 0 <= state_from <= state_to <= last:
            raise StructuralMisuseError(
                f"Invalid relevance range [{state_from}, {state_to}] for states [0, {last}]"
            )
        if isinstance(relevant_outcomes_distribution, DistributionArray):
            relevant_outcomes_distribution = relevant_outcomes_distribution.values

        to_state = self.sequence.get_state(state_to)
        for layer in to_state.layers:
            layer.reset_recurrent_relevance()
        to_state.layer.set_output_relevance(relevant_outcomes_distribution)

        for i in range(state_to, state_from - 1, -1):
            state = self.sequence.get_state(i)
            for level in reversed(range(self.depth)):
                layer = state.layers[level]
                contributions = state.layers_contributions[level]
                if level < self.depth - 1:
                    upper_relevance = state.layers[level + 1].input_array.relevance
                    if i == state_to:
                        layer.set_output_relevance(upper_relevance)
                    else:
                        layer.add_output_relevance(upper_relevance)
                layer.propagate_relevance_to_gates(contributions)
                layer.set_input_relevance(contributions)
                if i > state_from:
                    layer.set_recurrent_relevance(contributions)

        self._relevance_range = (state_from, state_to)
        logger.debug("Relevance propagated from state %d to state %d", state_to, state_from)
        return self.get_input_relevance(state_from, copy=copy)

    def get_input_relevance(self, state_index: int, copy: bool = True) -> np.ndarray:
        if self._relevance_range is None or not (
            self._relevance_range[0] <= state_index <= self._relevance_range[1]
        ):
            raise StructuralMisuseError(
                f"No relevance has been propagated to the input of state {state_index}"
            )
        relevance = self.sequence.get_layer(state_index, level=0).input_array.relevance
        return relevance.copy() if copy else relevance

    def get_ran_importance_scores(self, state_index: Optional[int] = None, level: int = -1) -> np.ndarray:
        """
        Importance of each state before `state_index` (default: the last) in
        the output of `state_index`, for RAN layers:

            score[i] = max(in_g[i] * prod(for_g[k] for k in i+1..state_index))

        `level` picks the layer of a stack (default: the top one).
        """
        connection = self.configs[level].connection
        if connection is not Connection.RAN:
            raise UnsupportedOperationError(
                f"Importance scores are defined for RAN layers, not {connection.name}"
            )
        last = self.sequence.last_state_index
        if state_index is None:
            state_index = last
        if not 0 < state_index <= last:
            raise StructuralMisuseError(
                f"Importance scores need a state with predecessors, got {state_index}"
            )

        scores = np.zeros(state_index)
        forget_product = self.sequence.get_layer(state_index, level).forget_gate.values.copy()
        for i in range(state_index - 1, -1, -1):
            layer = self.sequence.get_layer(i, level)
            scores[i] = np.max(layer.input_gate.values * forget_product)
            if i > 0:
                forget_product *= layer.forget_gate.values
        return scores

    # ------------------------------------------------------------------
    # accessors
    # ------------------------------------------------------------------
    def get_output(self, copy: bool = True) -> np.ndarray:
        """Output of the top layer at the last state."""
        values = self.sequence.get_layer(self.sequence.last_state_index).output_array.values
        return values.copy() if copy else values

    def get_output_sequence(self, copy: bool = True) -> List[np.ndarray]:
        outputs = []
        for i in range(self.num_states):
            values = self.sequence.get_layer(i).output_array.values
            outputs.append(values.copy() if copy else values)
        return outputs

    def get_input_errors(self, state_index: int, copy: bool = True) -> np.ndarray:
        errors = self.sequence.get_layer(state_index, level=0).input_array.errors
        return errors.copy() if copy else errors

    def get_input_sequence_errors(self, copy: bool = True) -> List[np.ndarray]:
        return [self.get_input_errors(i, copy=copy) for i in range(self.num_states)]

    def get_params_errors(self, copy: bool = True) -> LayerParameters:
        """Gradients of the last backward, averaged over its states."""
        return self._accumulator.get_params_errors(copy=copy)

    def get_init_hidden_errors(self, level: int = -1) -> np.ndarray:
        """Errors of the initial hidden array of `level` given to the last forward."""
        init_hidden_layer = self.sequence.init_hidden_layers[level]
        if init_hidden_layer is None:
            raise StructuralMisuseError("The last sequence was forwarded without init_hidden")
        return init_hidden_layer.recurrent_errors(self.sequence.get_layer(0, level))
