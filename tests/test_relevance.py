# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

import logging

import numpy as np
import pytest

from rnnlrp import (
    Connection,
    DistributionArray,
    LayerConfig,
    RecurrentNeuralProcessor,
    StructuralMisuseError,
)
from rnnlrp.relevance import (
    input_partition,
    linear_relevance,
    partition_relevance,
    recurrent_partition,
    signed_eps,
)

logger = logging.getLogger(__name__)

CELLS = [
    (Connection.SIMPLE_RECURRENT, "tanh", 4, 3),
    (Connection.CFN, "tanh", 4, 3),
    (Connection.LSTM, "tanh", 4, 3),
    (Connection.GRU, "tanh", 4, 3),
    (Connection.DELTA_RNN, "tanh", 4, 3),
    (Connection.LTM, None, 3, 3),
    (Connection.RAN, "tanh", 4, 3),
    (Connection.RAN, None, 4, 3),
]

CELL_IDS = [f"{c.value}-{a}" for c, a, _, _ in CELLS]


def forward_case(connection, activation, input_size, output_size, length, seed=3):
    rng = np.random.default_rng(seed)
    config = LayerConfig(input_size, output_size, connection, activation=activation)
    processor = RecurrentNeuralProcessor(config, rng=rng)
    xs = [rng.uniform(-1.0, 1.0, size=input_size) for _ in range(length)]
    processor.forward(xs, save_contributions=True)
    distribution = DistributionArray(rng.dirichlet(np.ones(output_size)))
    return processor, distribution


# ----------------------------------------------------------------------
# rules
# ----------------------------------------------------------------------
def test_signed_eps_follows_sign():
    np.testing.assert_array_equal(signed_eps(np.array([-2.0, 0.0, 3.0])), [-0.01, 0.01, 0.01])


def test_linear_relevance_conserves():
    rng = np.random.default_rng(0)
    w = rng.normal(size=(5, 4))
    x = rng.normal(size=4)
    b = rng.normal(size=5)
    contributions = w * x + (b / 4)[:, np.newaxis]
    y = contributions.sum(axis=1)
    y_relevance = rng.uniform(size=5)

    relevance = linear_relevance(y, y_relevance, contributions)

    assert relevance.shape == (4,)
    assert relevance.sum() == pytest.approx(y_relevance.sum(), rel=1e-10)


def test_linear_relevance_single_input_takes_everything():
    y = np.array([0.3, -0.7])
    relevance = linear_relevance(y, np.array([0.4, 0.6]), y[:, np.newaxis])
    np.testing.assert_allclose(relevance, [1.0])


def test_input_and_recurrent_partitions_sum_to_relevance():
    rng = np.random.default_rng(1)
    y_input = rng.normal(size=6)
    y_rec = rng.normal(size=6)
    y = y_input + y_rec
    y_relevance = rng.uniform(size=6)

    total = input_partition(y_relevance, y, y_input, y_rec) + recurrent_partition(
        y_relevance, y, y_rec
    )

    np.testing.assert_allclose(total, y_relevance, rtol=1e-10)


def test_three_way_partition_sums_to_relevance():
    rng = np.random.default_rng(2)
    shares = rng.normal(size=(3, 5))
    y = shares.sum(axis=0)
    y_relevance = rng.uniform(size=5)

    total = sum(
        partition_relevance(y_relevance, y, share, shares[2], n_partitions=3) for share in shares
    )

    np.testing.assert_allclose(total, y_relevance, rtol=1e-10)


# ----------------------------------------------------------------------
# cells
# ----------------------------------------------------------------------
@pytest.mark.parametrize("connection, activation, input_size, output_size", CELLS, ids=CELL_IDS)
def test_single_state_conserves_relevance(connection, activation, input_size, output_size):
    processor, distribution = forward_case(connection, activation, input_size, output_size, 2)
    state = processor.sequence.get_state(1)
    prev = processor.sequence.get_layer(0)

    state.layer.reset_recurrent_relevance()
    state.layer.set_output_relevance(distribution)
    state.layer.calculate_relevance(state.contributions)

    total = state.layer.input_array.relevance.sum() + prev.output_array.relevance.sum()
    # memory cells also pass relevance to the previous cell
    cell = getattr(prev, "cell", None)
    if cell is not None and cell.has_recurrent_relevance:
        total += cell.recurrent_relevance.sum()

    logger.debug(f"{connection.value}: total relevance {total}")
    assert total == pytest.approx(1.0, abs=1e-8)


@pytest.mark.parametrize("connection, activation, input_size, output_size", CELLS, ids=CELL_IDS)
def test_first_state_gives_all_relevance_to_input(connection, activation, input_size, output_size):
    processor, distribution = forward_case(connection, activation, input_size, output_size, 1)

    relevance = processor.calculate_relevance(0, 0, distribution)

    assert relevance.shape == (input_size,)
    assert relevance.sum() == pytest.approx(1.0, abs=1e-8)


@pytest.mark.parametrize("connection, activation, input_size, output_size", CELLS, ids=CELL_IDS)
def test_sequence_conserves_relevance(connection, activation, input_size, output_size):
    processor, distribution = forward_case(connection, activation, input_size, output_size, 5)

    processor.calculate_relevance(0, 4, distribution)
    total = sum(processor.get_input_relevance(i).sum() for i in range(5))

    assert total == pytest.approx(1.0, abs=1e-6)


@pytest.mark.parametrize("connection, activation, input_size, output_size", CELLS, ids=CELL_IDS)
def test_repeated_relevance_is_identical(connection, activation, input_size, output_size):
    processor, distribution = forward_case(connection, activation, input_size, output_size, 4)

    first = processor.calculate_relevance(1, 3, distribution)
    second = processor.calculate_relevance(1, 3, distribution)

    np.testing.assert_array_equal(first, second)


def test_relevance_range_is_a_subsequence():
    processor, distribution = forward_case(Connection.GRU, "tanh", 4, 3, 5)

    processor.calculate_relevance(2, 3, distribution)

    for i in (2, 3):
        assert processor.get_input_relevance(i).shape == (4,)
    for i in (0, 1, 4):
        with pytest.raises(StructuralMisuseError):
            processor.get_input_relevance(i)


@pytest.mark.parametrize("state_from, state_to", [(-1, 2), (3, 2), (0, 5)])
def test_invalid_relevance_range(state_from, state_to):
    processor, distribution = forward_case(Connection.LSTM, "tanh", 4, 3, 3)
    with pytest.raises(StructuralMisuseError):
        processor.calculate_relevance(state_from, state_to, distribution)


def test_relevance_without_saved_contributions_raises():
    rng = np.random.default_rng(0)
    processor = RecurrentNeuralProcessor(LayerConfig(4, 3, "lstm", activation="tanh"), rng=rng)
    processor.forward([rng.normal(size=4) for _ in range(3)])

    with pytest.raises(StructuralMisuseError):
        processor.calculate_relevance(0, 2, DistributionArray.uniform(3))


def test_relevance_after_plain_forward_on_reused_states_raises():
    processor, distribution = forward_case(Connection.CFN, "tanh", 4, 3, 3)
    # contributions stay allocated but no longer match the latest forward
    processor.forward([np.ones(4)] * 3)

    with pytest.raises(StructuralMisuseError):
        processor.calculate_relevance(0, 2, distribution)


def test_plain_array_distribution_is_accepted():
    processor, _ = forward_case(Connection.SIMPLE_RECURRENT, "tanh", 4, 3, 2)
    relevance = processor.calculate_relevance(0, 1, np.array([0.0, 1.0, 0.0]))
    assert relevance.shape == (4,)


@pytest.mark.parametrize("connection, activation, input_size, output_size", CELLS, ids=CELL_IDS)
def test_relevance_before_the_gates_raises(connection, activation, input_size, output_size):
    processor, distribution = forward_case(connection, activation, input_size, output_size, 2)
    state = processor.sequence.get_state(1)
    state.layer.set_output_relevance(distribution)

    with pytest.raises(StructuralMisuseError):
        state.layer.set_recurrent_relevance(state.contributions)
    with pytest.raises(StructuralMisuseError):
        state.layer.set_input_relevance(state.contributions)

    state.layer.propagate_relevance_to_gates(state.contributions)
    state.layer.set_recurrent_relevance(state.contributions)
    assert processor.sequence.get_layer(0).output_array.has_relevance


def test_new_output_relevance_requires_the_gates_again():
    processor, distribution = forward_case(Connection.GRU, "tanh", 4, 3, 2)
    layer = processor.sequence.get_layer(1)
    contributions = processor.sequence.get_state(1).contributions

    layer.set_output_relevance(distribution)
    layer.propagate_relevance_to_gates(contributions)
    layer.set_output_relevance(DistributionArray.uniform(3))

    with pytest.raises(StructuralMisuseError):
        layer.set_input_relevance(contributions)


# ----------------------------------------------------------------------
# stacked layers
# ----------------------------------------------------------------------
STACKS = [
    [(Connection.SIMPLE_RECURRENT, "tanh", 4, 3), (Connection.SIMPLE_RECURRENT, "tanh", 3, 2)],
    [(Connection.LSTM, "tanh", 4, 3), (Connection.GRU, "tanh", 3, 2)],
    [(Connection.GRU, "tanh", 4, 3), (Connection.LTM, None, 3, 3)],
    [(Connection.DELTA_RNN, "tanh", 4, 3), (Connection.CFN, "tanh", 3, 3)],
    [(Connection.RAN, None, 4, 3), (Connection.LSTM, "tanh", 3, 2)],
]

STACK_IDS = ["+".join(c.value for c, _, _, _ in stack) for stack in STACKS]


def stacked_case(stack, length, seed=3):
    rng = np.random.default_rng(seed)
    configs = [LayerConfig(i, o, c, activation=a) for c, a, i, o in stack]
    processor = RecurrentNeuralProcessor(configs, rng=rng)
    xs = [rng.uniform(-1.0, 1.0, size=configs[0].input_size) for _ in range(length)]
    processor.forward(xs, save_contributions=True)
    distribution = DistributionArray(rng.dirichlet(np.ones(configs[-1].output_size)))
    return processor, distribution


@pytest.mark.parametrize("stack", STACKS, ids=STACK_IDS)
def test_two_layers_conserve_relevance(stack):
    processor, distribution = stacked_case(stack, 4)

    relevance = processor.calculate_relevance(0, 3, distribution)
    total = sum(processor.get_input_relevance(i).sum() for i in range(4))

    assert relevance.shape == (stack[0][2],)
    logger.debug(f"{STACK_IDS[STACKS.index(stack)]}: total relevance {total}")
    assert total == pytest.approx(1.0, abs=1e-6)


@pytest.mark.parametrize("stack", STACKS, ids=STACK_IDS)
def test_two_layers_first_state_conserves_relevance(stack):
    processor, distribution = stacked_case(stack, 1)

    relevance = processor.calculate_relevance(0, 0, distribution)

    assert relevance.sum() == pytest.approx(1.0, abs=1e-8)


def test_lower_layer_adds_relevance_from_both_sources():
    processor, distribution = stacked_case(STACKS[0], 3)
    processor.calculate_relevance(0, 2, distribution)
    last = processor.sequence.get_state(2)
    middle = processor.sequence.get_state(1)

    # the last state has no next state: the layer above is the only source
    np.testing.assert_allclose(
        last.layers[0].output_array.relevance, last.layers[1].input_array.relevance
    )

    from_next = last.layers[0].output_array.get_recurrent_relevance(
        last.layers_contributions[0].unit
    )
    np.testing.assert_allclose(
        middle.layers[0].output_array.relevance,
        middle.layers[1].input_array.relevance + from_next,
    )


def test_stacked_relevance_is_repeatable():
    processor, distribution = stacked_case(STACKS[1], 4)

    first = processor.calculate_relevance(1, 3, distribution)
    second = processor.calculate_relevance(1, 3, distribution)

    np.testing.assert_array_equal(first, second)
