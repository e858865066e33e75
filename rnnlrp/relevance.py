# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

"""
Epsilon-LRP rules shared by every cell.

All rules conserve relevance exactly (up to rounding) whenever the
contributions passed in sum to the value they decompose.
"""

import numpy as np

RELEVANCE_EPS: float = 0.01


def signed_eps(reference: np.ndarray, eps: float = RELEVANCE_EPS) -> np.ndarray:
    """+eps where reference >= 0, -eps elsewhere."""
    return np.where(reference >= 0.0, eps, -eps)


def linear_relevance(
    y: np.ndarray,
    y_relevance: np.ndarray,
    contributions: np.ndarray,
    eps: float = RELEVANCE_EPS,
) -> np.ndarray:
    """
    Relevance of the inputs of a linear map from the relevance of its output.

        R(x_i) = sum_j R(y_j) * (C[j, i] + eps_j / n) / (y_j + eps_j)

    Parameters
    ----------
    y : (m,) ndarray
        Output values, i.e. the row sums of `contributions`.
    y_relevance : (m,) ndarray
        Relevance of each output element.
    contributions : (m, n) ndarray
        C[j, i] = contribution of x_i to y_j.
    eps : float
        Stabilizer magnitude, sign-matched to y_j.

    Returns
    -------
    (n,) ndarray
        Relevance of each input element.
    """
    n = contributions.shape[1]
    eps_j = signed_eps(y, eps)
    ratio = y_relevance / (y + eps_j)
    return ((contributions + (eps_j / n)[:, np.newaxis]) * ratio[:, np.newaxis]).sum(axis=0)


def partition_relevance(
    y_relevance: np.ndarray,
    y: np.ndarray,
    share: np.ndarray,
    sign_reference: np.ndarray,
    n_partitions: int = 2,
    eps: float = RELEVANCE_EPS,
) -> np.ndarray:
    """
    Portion of the relevance of y = sum(shares) assigned to one share.

    Every share of the same y must use the same `sign_reference` and
    `n_partitions`, so that the portions add up to `y_relevance`.
    """
    e = signed_eps(sign_reference, eps)
    return y_relevance * (share + e / n_partitions) / (y + e)


def input_partition(
    y_relevance: np.ndarray,
    y: np.ndarray,
    y_input: np.ndarray,
    y_rec: np.ndarray,
) -> np.ndarray:
    """Relevance of the input share of y = y_input + y_rec."""
    return partition_relevance(y_relevance, y, y_input, y_rec)


def recurrent_partition(y_relevance: np.ndarray, y: np.ndarray, y_rec: np.ndarray) -> np.ndarray:
    """Relevance of the recurrent share of y = y_input + y_rec."""
    return partition_relevance(y_relevance, y, y_rec, y_rec)
