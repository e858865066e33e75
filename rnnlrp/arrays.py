# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

from typing import Optional

import numpy as np
from scipy import sparse

from .activations import ActivationFunction
from .errors import InvalidConfigurationError, ShapeMismatchError, UninitializedArrayError

DISTRIBUTION_TOL: float = 1e-8


def _as_vector(values, size: int, what: str) -> np.ndarray:
    """Copy `values` into a float vector, checking it has `size` elements."""
    arr = np.array(values, dtype=float)
    if arr.shape != (size,):
        raise ShapeMismatchError(what, (size,), arr.shape)
    return arr


def _as_sparse_row(values, size: int, what: str) -> sparse.csr_matrix:
    """Copy a scipy.sparse vector into a canonical 1 x `size` CSR row."""
    row = sparse.csr_matrix(values, dtype=float, copy=True)
    if row.shape == (size, 1):
        row = row.T.tocsr()
    if row.shape != (1, size):
        raise ShapeMismatchError(what, (1, size), row.shape)
    row.sum_duplicates()
    row.eliminate_zeros()
    return row


class AugmentedArray:
    """
    A vector of values together with the errors and relevance attached to it.

    Parameters
    ----------
    size : int
        Number of elements.
    activation : ActivationFunction | None
        Function applied by `activate()`.

    Notes
    -----
    Reading `values`, `errors`, `relevance` or `recurrent_relevance` before
    assigning them raises `UninitializedArrayError`.

    Values may be assigned as a scipy.sparse row (or column) vector. The
    sparse form is then kept next to the dense copy and returned by
    `operand`, so that the gates read only the non-zero inputs.
    """

    def __init__(self, size: int, activation: Optional[ActivationFunction] = None) -> None:
        if size <= 0:
            raise InvalidConfigurationError(f"size must be positive, got {size}")
        self.size = size
        self.activation = activation
        self._values: Optional[np.ndarray] = None
        self._sparse_values: Optional[sparse.csr_matrix] = None
        self._values_not_activated: Optional[np.ndarray] = None
        self._errors: Optional[np.ndarray] = None
        self._relevance: Optional[np.ndarray] = None
        self._recurrent_relevance: Optional[np.ndarray] = None

    @classmethod
    def from_values(cls, values, activation: Optional[ActivationFunction] = None) -> "AugmentedArray":
        values = np.asarray(values, dtype=float)
        arr = cls(values.shape[0], activation=activation)
        arr.assign_values(values)
        return arr

    @property
    def shape(self) -> tuple:
        return (self.size,)

    # ------------------------------------------------------------------
    # values
    # ------------------------------------------------------------------
    @property
    def values(self) -> np.ndarray:
        if self._values is None:
            raise UninitializedArrayError("values accessed before assignment")
        return self._values

    @property
    def values_not_activated(self) -> np.ndarray:
        """Values before the last `activate()`, or `values` if never activated."""
        if self._values_not_activated is not None:
            return self._values_not_activated
        return self.values

    @property
    def has_values(self) -> bool:
        return self._values is not None

    @property
    def is_sparse(self) -> bool:
        return self._sparse_values is not None

    @property
    def operand(self):
        """The sparse row when the values were assigned sparse, else `values`."""
        if self._sparse_values is not None:
            return self._sparse_values
        return self.values

    def assign_values(self, values) -> None:
        """
        Assign new values. Previously assigned errors are reset to zeros.

        A scipy.sparse vector keeps its sparse form until the next
        assignment or activation.
        """
        if sparse.issparse(values):
            self._sparse_values = _as_sparse_row(values, self.size, "values")
            self._values = self._sparse_values.toarray().ravel()
        else:
            self._sparse_values = None
            self._values = _as_vector(values, self.size, "values")
        self._values_not_activated = None
        if self._errors is not None:
            self._errors = np.zeros(self.size)

    # ------------------------------------------------------------------
    # activation
    # ------------------------------------------------------------------
    @property
    def has_activation(self) -> bool:
        return self.activation is not None

    def set_activation(self, activation: Optional[ActivationFunction]) -> None:
        self.activation = activation

    def activate(self) -> None:
        """Apply the activation in place, keeping the pre-activation values."""
        if self.activation is None:
            return
        not_activated = self.values
        self._values = self.activation.f(not_activated)
        self._sparse_values = None
        self._values_not_activated = not_activated

    def get_activated_values(self, values: np.ndarray) -> np.ndarray:
        """Apply this array's activation to arbitrary values (identity if none)."""
        if self.activation is None:
            return values
        return self.activation.f(values)

    def calculate_activation_deriv(self) -> np.ndarray:
        """Derivative of the activation at the current (activated) values."""
        if self.activation is None:
            return np.ones(self.size)
        return self.activation.df_optimized(self.values)

    # ------------------------------------------------------------------
    # errors
    # ------------------------------------------------------------------
    @property
    def errors(self) -> np.ndarray:
        if self._errors is None:
            raise UninitializedArrayError("errors accessed before assignment")
        return self._errors

    @property
    def has_errors(self) -> bool:
        return self._errors is not None

    def assign_errors(self, errors) -> None:
        self._errors = _as_vector(errors, self.size, "errors")

    def assign_errors_by_product(self, a: np.ndarray, b: np.ndarray) -> None:
        self.assign_errors(a * b)

    def assign_zero_errors(self) -> None:
        self._errors = np.zeros(self.size)

    # ------------------------------------------------------------------
    # relevance
    # ------------------------------------------------------------------
    @property
    def relevance(self) -> np.ndarray:
        if self._relevance is None:
            raise UninitializedArrayError("relevance accessed before assignment")
        return self._relevance

    @property
    def has_relevance(self) -> bool:
        return self._relevance is not None

    def assign_relevance(self, relevance) -> None:
        self._relevance = _as_vector(relevance, self.size, "relevance")

    @property
    def recurrent_relevance(self) -> np.ndarray:
        """Relevance flowing into this array from the next timestep."""
        if self._recurrent_relevance is None:
            raise UninitializedArrayError("recurrent relevance accessed before assignment")
        return self._recurrent_relevance

    @property
    def has_recurrent_relevance(self) -> bool:
        return self._recurrent_relevance is not None

    def assign_recurrent_relevance(self, relevance) -> None:
        self._recurrent_relevance = _as_vector(relevance, self.size, "recurrent relevance")

    def clear_recurrent_relevance(self) -> None:
        self._recurrent_relevance = None

    def clone(self) -> "AugmentedArray":
        other = AugmentedArray(self.size, activation=self.activation)
        for attr in (
            "_values",
            "_values_not_activated",
            "_errors",
            "_relevance",
            "_recurrent_relevance",
        ):
            value = getattr(self, attr)
            setattr(other, attr, None if value is None else value.copy())
        if self._sparse_values is not None:
            other._sparse_values = self._sparse_values.copy()
        return other

    def __repr__(self) -> str:
        values = self._values if self._values is not None else "unassigned"
        return f"AugmentedArray(size={self.size}, values={values})"


class DistributionArray:
    """
    Probability distribution over the elements of an output.

    Used as the relevance assigned to the output of the state a relevance
    pass starts from.
    """

    def __init__(self, values) -> None:
        values = np.array(values, dtype=float)
        if values.ndim != 1:
            raise ShapeMismatchError("distribution", (values.size,), values.shape)
        if np.any(values < 0.0) or np.any(values > 1.0):
            raise ValueError("Required 0 <= value[i] <= 1.0")
        if abs(values.sum() - 1.0) > DISTRIBUTION_TOL:
            raise ValueError("Values sum must be equal to 1.0")
        self.values = values

    @classmethod
    def uniform(cls, length: int) -> "DistributionArray":
        return cls(np.full(length, 1.0 / length))

    @classmethod
    def one_hot(cls, length: int, index: int) -> "DistributionArray":
        if not 0 <= index < length:
            raise ValueError("The index of the 1.0 element exceeds the length of the array")
        values = np.zeros(length)
        values[index] = 1.0
        return cls(values)

    @property
    def size(self) -> int:
        return self.values.shape[0]

    def __len__(self) -> int:
        return self.size
