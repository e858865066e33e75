# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

import logging

import numpy as np
import pytest
from scipy import sparse

from rnnlrp import (
    AugmentedArray,
    DistributionArray,
    GeLU,
    InvalidConfigurationError,
    ShapeMismatchError,
    Tanh,
    UninitializedArrayError,
    UnsupportedOperationError,
)

logger = logging.getLogger(__name__)


@pytest.mark.parametrize("attr", ["values", "errors", "relevance", "recurrent_relevance"])
def test_uninitialized_access_raises(attr):
    array = AugmentedArray(3)
    with pytest.raises(UninitializedArrayError):
        getattr(array, attr)
    # also an AttributeError, so hasattr() works
    assert not hasattr(array, attr)


def test_shape_mismatch():
    array = AugmentedArray(3)
    with pytest.raises(ShapeMismatchError) as info:
        array.assign_values(np.zeros(4))
    assert info.value.expected == (3,)
    assert info.value.actual == (4,)
    with pytest.raises(ValueError):
        array.assign_errors(np.zeros((3, 1)))


@pytest.mark.parametrize("size", [0, -2])
def test_non_positive_size(size):
    with pytest.raises(InvalidConfigurationError):
        AugmentedArray(size)
    # also a ValueError
    with pytest.raises(ValueError):
        AugmentedArray(size)


def test_assign_values_copies_and_resets_errors():
    source = np.array([1.0, 2.0])
    array = AugmentedArray(2)
    array.assign_values(source)
    source[0] = 10.0
    assert array.values[0] == 1.0

    array.assign_errors([0.5, 0.5])
    array.assign_values([3.0, 4.0])
    np.testing.assert_array_equal(array.errors, [0.0, 0.0])


@pytest.mark.parametrize("shape", [(1, 5), (5, 1)])
def test_sparse_values_keep_their_sparse_form(shape):
    dense = np.array([0.0, 1.5, 0.0, 0.0, -2.0])
    array = AugmentedArray(5)
    array.assign_values(sparse.csr_matrix(dense.reshape(shape)))

    assert array.is_sparse
    assert array.operand.shape == (1, 5)
    np.testing.assert_array_equal(array.operand.indices, [1, 4])
    np.testing.assert_array_equal(array.values, dense)

    array.assign_values(dense)
    assert not array.is_sparse
    assert array.operand is array.values


def test_sparse_values_of_the_wrong_size():
    with pytest.raises(ShapeMismatchError):
        AugmentedArray(4).assign_values(sparse.csr_matrix(np.ones((1, 5))))


def test_activation_drops_the_sparse_form():
    array = AugmentedArray(3, activation=Tanh())
    array.assign_values(sparse.csr_matrix([[0.0, 1.0, 0.0]]))
    array.activate()
    assert not array.is_sparse
    np.testing.assert_allclose(array.operand, np.tanh([0.0, 1.0, 0.0]))


def test_activate_keeps_pre_activation_values():
    array = AugmentedArray.from_values([0.0, 1.0, -2.0], activation=Tanh())
    np.testing.assert_array_equal(array.values_not_activated, array.values)

    array.activate()

    np.testing.assert_array_equal(array.values_not_activated, [0.0, 1.0, -2.0])
    np.testing.assert_allclose(array.values, np.tanh([0.0, 1.0, -2.0]))
    np.testing.assert_allclose(array.calculate_activation_deriv(), 1.0 - np.tanh([0.0, 1.0, -2.0]) ** 2)


def test_no_activation_is_identity():
    array = AugmentedArray.from_values([0.5, -0.5])
    array.activate()
    np.testing.assert_array_equal(array.values, [0.5, -0.5])
    np.testing.assert_array_equal(array.calculate_activation_deriv(), [1.0, 1.0])
    np.testing.assert_array_equal(array.get_activated_values(np.array([2.0])), [2.0])


def test_gelu_derivative_from_output_is_unsupported():
    array = AugmentedArray.from_values([0.5, -0.5], activation=GeLU())
    array.activate()
    with pytest.raises(UnsupportedOperationError):
        array.calculate_activation_deriv()


def test_errors_and_relevance_helpers():
    array = AugmentedArray(2)
    array.assign_zero_errors()
    np.testing.assert_array_equal(array.errors, [0.0, 0.0])
    array.assign_errors_by_product(np.array([2.0, 3.0]), np.array([0.5, -1.0]))
    np.testing.assert_array_equal(array.errors, [1.0, -3.0])

    array.assign_recurrent_relevance([0.1, 0.2])
    assert array.has_recurrent_relevance
    array.clear_recurrent_relevance()
    assert not array.has_recurrent_relevance


def test_clone_is_independent():
    array = AugmentedArray.from_values([1.0, 2.0], activation=Tanh())
    array.activate()
    array.assign_relevance([0.3, 0.7])

    other = array.clone()
    other.relevance[0] = 5.0

    assert array.relevance[0] == 0.3
    np.testing.assert_array_equal(other.values_not_activated, [1.0, 2.0])
    assert not other.has_errors


def test_distribution_factories():
    np.testing.assert_allclose(DistributionArray.uniform(4).values, np.full(4, 0.25))
    one_hot = DistributionArray.one_hot(3, 1)
    np.testing.assert_array_equal(one_hot.values, [0.0, 1.0, 0.0])
    assert len(one_hot) == 3


@pytest.mark.parametrize(
    "values",
    [
        [0.5, 0.6],
        [1.2, -0.2],
        [[0.5, 0.5]],
    ],
)
def test_invalid_distribution(values):
    with pytest.raises(ValueError):
        DistributionArray(values)


def test_one_hot_index_out_of_range():
    with pytest.raises(ValueError):
        DistributionArray.one_hot(3, 3)
