# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

import logging

import numpy as np
import pytest

from rnnlrp import GeLU, ReLU, Sigmoid, Tanh, UnsupportedOperationError, get_activation

logger = logging.getLogger(__name__)

X = np.linspace(-3.0, 3.0, 13) + 0.05


@pytest.mark.parametrize("activation", [Tanh(), Sigmoid(), ReLU(), GeLU()], ids=repr)
def test_derivative_matches_finite_differences(activation):
    h = 1e-6
    numeric = (activation.f(X + h) - activation.f(X - h)) / (2.0 * h)
    np.testing.assert_allclose(activation.df(X), numeric, rtol=1e-5, atol=1e-8)


@pytest.mark.parametrize("activation", [Tanh(), Sigmoid(), ReLU()], ids=repr)
def test_optimized_derivative_matches(activation):
    assert activation.supports_optimized_derivative
    np.testing.assert_allclose(activation.df_optimized(activation(X)), activation.df(X))


def test_gelu_has_no_optimized_derivative():
    gelu = GeLU()
    assert not gelu.supports_optimized_derivative
    with pytest.raises(UnsupportedOperationError):
        gelu.df_optimized(gelu(X))
    # also a NotImplementedError
    with pytest.raises(NotImplementedError):
        gelu.df_optimized(gelu(X))


@pytest.mark.parametrize("name, cls", [("tanh", Tanh), ("sigmoid", Sigmoid), ("relu", ReLU), ("gelu", GeLU)])
def test_registry(name, cls):
    activation = get_activation(name)
    assert isinstance(activation, cls)
    assert activation == cls()
    assert activation.name == name


def test_registry_unknown_name():
    with pytest.raises(KeyError):
        get_activation("softsign")
