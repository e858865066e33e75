# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

import logging
import pickle

import numpy as np
import pytest

from rnnlrp import (
    DeltaRNNLayerParameters,
    GRULayerParameters,
    InvalidConfigurationError,
    LSTMLayerParameters,
    ParamsErrorsAccumulator,
    ShapeMismatchError,
    StackedParameters,
    StructuralMisuseError,
    glorot_uniform,
    he_init,
)

logger = logging.getLogger(__name__)


def test_lstm_param_names():
    params = LSTMLayerParameters(4, 3, rng=np.random.default_rng(0))
    names = [name for name, _ in params.named_params()]
    assert names == [
        f"{gate}.{param}"
        for gate in ("input_gate", "output_gate", "forget_gate", "candidate")
        for param in ("weights", "biases", "recurrent_weights")
    ]
    assert params.input_gate.weights.shape == (3, 4)
    assert params.input_gate.recurrent_weights.shape == (3, 3)
    assert len(params) == 12


def test_deltarnn_vectors_follow_units():
    params = DeltaRNNLayerParameters(4, 3, rng=np.random.default_rng(0))
    names = [name for name, _ in params.named_params()]
    assert names[-3:] == ["alpha", "beta1", "beta2"]
    assert params.recurrent_unit.weights.shape == (3, 3)


def test_named_params_are_references():
    params = GRULayerParameters(2, 2, rng=np.random.default_rng(0))
    for _, array in params.named_params():
        array[...] = 1.0
    assert np.all(params.reset_gate.weights == 1.0)


def test_initialization_is_seeded():
    a = GRULayerParameters(4, 3, rng=np.random.default_rng(9))
    b = GRULayerParameters(4, 3, rng=np.random.default_rng(9))
    for (_, x), (_, y) in zip(a.named_params(), b.named_params()):
        np.testing.assert_array_equal(x, y)


def test_none_initializer_leaves_zeros():
    params = GRULayerParameters(4, 3, weights_initializer=he_init, biases_initializer=None,
                                rng=np.random.default_rng(0))
    assert np.all(params.candidate.biases == 0.0)
    assert np.any(params.candidate.weights != 0.0)


def test_glorot_bounds():
    values = glorot_uniform((30, 20), np.random.default_rng(0))
    assert np.abs(values).max() <= np.sqrt(6.0 / 50.0)


def test_he_init_scale():
    values = he_init((400, 200), np.random.default_rng(0))
    assert values.std() == pytest.approx(np.sqrt(2.0 / 200.0), rel=0.05)


def test_zeros_like_is_independent():
    params = GRULayerParameters(4, 3, rng=np.random.default_rng(0))
    zeros = params.zeros_like()
    assert type(zeros) is GRULayerParameters
    assert all(np.all(a == 0.0) for a in zeros)
    zeros.candidate.weights[...] = 5.0
    assert not np.any(params.candidate.weights == 5.0)


def test_sum_and_div():
    a = GRULayerParameters(4, 3, rng=np.random.default_rng(0))
    b = a.copy()
    a.assign_sum(b)
    a.assign_div(2.0)
    for x, y in zip(a, b):
        np.testing.assert_allclose(x, y)


def test_incompatible_bundles():
    gru = GRULayerParameters(4, 3, rng=np.random.default_rng(0))
    with pytest.raises(TypeError):
        gru.assign_sum(LSTMLayerParameters(4, 3, rng=np.random.default_rng(0)))
    with pytest.raises(ShapeMismatchError):
        gru.assign_values(GRULayerParameters(5, 3, rng=np.random.default_rng(0)))


def test_pickle_round_trip():
    params = LSTMLayerParameters(4, 3, rng=np.random.default_rng(0))
    restored = pickle.loads(pickle.dumps(params))
    assert restored.output_gate is restored.units["output_gate"]
    for (name, a), (_, b) in zip(params.named_params(), restored.named_params()):
        np.testing.assert_array_equal(a, b, err_msg=name)


# ----------------------------------------------------------------------
# accumulator
# ----------------------------------------------------------------------
def test_accumulator_averages_once():
    accumulator = ParamsErrorsAccumulator()
    assert accumulator.is_empty

    first = GRULayerParameters(2, 2, rng=np.random.default_rng(0))
    second = GRULayerParameters(2, 2, rng=np.random.default_rng(1))
    accumulator.accumulate(first)
    accumulator.accumulate(second)
    accumulator.average_errors()
    accumulator.average_errors()

    assert accumulator.is_averaged
    assert accumulator.count == 2
    np.testing.assert_allclose(
        accumulator.get_params_errors().candidate.weights,
        (first.candidate.weights + second.candidate.weights) / 2.0,
    )


def test_accumulator_copies_the_first_bundle():
    accumulator = ParamsErrorsAccumulator()
    errors = GRULayerParameters(2, 2, rng=np.random.default_rng(0))
    expected = errors.candidate.weights.copy()
    accumulator.accumulate(errors)
    errors.candidate.weights[...] = 0.0
    np.testing.assert_array_equal(accumulator.get_params_errors().candidate.weights, expected)


def test_accumulator_misuse():
    accumulator = ParamsErrorsAccumulator()
    with pytest.raises(StructuralMisuseError):
        accumulator.get_params_errors()

    errors = GRULayerParameters(2, 2, rng=np.random.default_rng(0))
    accumulator.accumulate(errors)
    accumulator.average_errors()
    with pytest.raises(StructuralMisuseError):
        accumulator.accumulate(errors)

    accumulator.reset()
    accumulator.accumulate(errors)
    assert accumulator.count == 1


def test_stacked_params_prefix_each_layer():
    rng = np.random.default_rng(0)
    stack = StackedParameters([GRULayerParameters(4, 3, rng=rng), LSTMLayerParameters(3, 2, rng=rng)])

    names = [name for name, _ in stack.named_params()]
    assert (stack.input_size, stack.output_size, stack.depth) == (4, 2, 2)
    assert names[0] == "layer0.reset_gate.weights"
    assert names[-1].startswith("layer1.")
    assert len(stack) == len(stack[0]) + len(stack[1])
    assert stack.named_params()[0][1] is stack[0].reset_gate.weights


def test_stacked_params_arithmetic_keeps_the_layers():
    rng = np.random.default_rng(0)
    stack = StackedParameters([GRULayerParameters(4, 3, rng=rng), GRULayerParameters(3, 3, rng=rng)])

    grads = stack.zeros_like()
    assert isinstance(grads[1], GRULayerParameters)
    grads.assign_sum(stack)
    grads.assign_div(2.0)
    for a, b in zip(grads, stack):
        np.testing.assert_allclose(a, b / 2.0)


def test_stacked_params_must_chain():
    with pytest.raises(InvalidConfigurationError):
        StackedParameters([GRULayerParameters(4, 3), GRULayerParameters(4, 3)])
    with pytest.raises(InvalidConfigurationError):
        StackedParameters([])
