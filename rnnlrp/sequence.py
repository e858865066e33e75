# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

"""
Arena of per-timestep states.

States are appended the first time a timestep is reached and reused by
every following sequence: `reset()` only moves the `last_state_index`
cursor back.

A state holds one layer per level of the stack (a single one for a plain
recurrent layer). The `level` arguments follow list indexing, so the
default -1 is the top layer.
"""

import logging
import weakref
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .layer import ContextWindow, RecurrentLayer
from .params import LayerParameters

logger = logging.getLogger(__name__)


@dataclass
class State:
    layers: List[RecurrentLayer]
    layers_contributions: List[Optional[LayerParameters]] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.layers_contributions:
            self.layers_contributions = [None] * len(self.layers)

    @property
    def layer(self) -> RecurrentLayer:
        """The top layer."""
        return self.layers[-1]

    @property
    def contributions(self) -> Optional[LayerParameters]:
        """Contributions of the top layer."""
        return self.layers_contributions[-1]


class SequenceContextWindow(ContextWindow):
    """Neighbours of the layer at (`index`, `level`), looked up in the arena."""

    def __init__(self, sequence: "NNSequence", index: int, level: int = 0) -> None:
        self._sequence = weakref.ref(sequence)
        self.index = index
        self.level = level

    def _get_sequence(self) -> "NNSequence":
        sequence = self._sequence()
        if sequence is None:
            raise ReferenceError("The sequence of this context window no longer exists")
        return sequence

    def get_prev_state(self) -> Optional[RecurrentLayer]:
        return self._get_sequence().get_prev_layer(self.index, self.level)

    def get_next_state(self) -> Optional[RecurrentLayer]:
        return self._get_sequence().get_next_layer(self.index, self.level)


class NNSequence:
    """
    Parameters
    ----------
    layer_factory : callable
        Builds the layer of a new state given its context window and level.
    contributions_factory : callable
        Builds an empty contribution bundle for a level.
    depth : int
        Number of stacked layers in each state.
    """

    def __init__(
        self,
        layer_factory: Callable[[ContextWindow, int], RecurrentLayer],
        contributions_factory: Callable[[int], LayerParameters],
        depth: int = 1,
    ) -> None:
        self._layer_factory = layer_factory
        self._contributions_factory = contributions_factory
        self.depth = depth
        self._states: List[State] = []
        self.last_state_index = -1
        self.allocations = 0
        # per level, the state preceding the first one, if any
        self.init_hidden_layers: List[Optional[RecurrentLayer]] = [None] * depth

    def __len__(self) -> int:
        return self.last_state_index + 1

    @property
    def capacity(self) -> int:
        return len(self._states)

    def reset(self) -> None:
        self.last_state_index = -1
        self.init_hidden_layers = [None] * self.depth

    def add_state(self, save_contributions: bool = False) -> State:
        """Move the cursor forward, building the state only on first use."""
        index = self.last_state_index + 1
        if index == len(self._states):
            layers = [
                self._layer_factory(SequenceContextWindow(self, index, level), level)
                for level in range(self.depth)
            ]
            self._states.append(State(layers))
            self.allocations += self.depth
            logger.debug("Arena grown to %d states", len(self._states))

        state = self._states[index]
        if save_contributions:
            for level, contributions in enumerate(state.layers_contributions):
                if contributions is None:
                    state.layers_contributions[level] = self._contributions_factory(level)
                    self.allocations += 1

        self.last_state_index = index
        return state

    def get_state(self, index: int) -> State:
        if not 0 <= index <= self.last_state_index:
            raise IndexError(
                f"State {index} out of range [0, {self.last_state_index}]"
            )
        return self._states[index]

    def get_layer(self, index: int, level: int = -1) -> RecurrentLayer:
        return self.get_state(index).layers[level]

    def get_prev_layer(self, index: int, level: int = -1) -> Optional[RecurrentLayer]:
        if 0 < index <= self.last_state_index:
            return self._states[index - 1].layers[level]
        if index == 0:
            return self.init_hidden_layers[level]
        return None

    def get_next_layer(self, index: int, level: int = -1) -> Optional[RecurrentLayer]:
        if 0 <= index < self.last_state_index:
            return self._states[index + 1].layers[level]
        return None
