# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

"""
Exceptions raised by the recurrent engine.

Each class also derives from the closest builtin, so callers that only
know about ``ValueError`` and friends keep working.
"""


class RNNLRPError(Exception):
    """Base class of every error raised by rnnlrp."""


class UninitializedArrayError(RNNLRPError, AttributeError):
    """Values, errors or relevance read before being assigned."""


class ShapeMismatchError(RNNLRPError, ValueError):
    """An array of the wrong shape was assigned."""

    def __init__(self, what: str, expected, actual) -> None:
        self.expected = tuple(expected)
        self.actual = tuple(actual)
        super().__init__(
            f"{what}: expected shape {self.expected}, got {self.actual}"
        )


class InvalidConfigurationError(RNNLRPError, ValueError):
    """Unknown connection type or inconsistent layer configuration."""


class UnsupportedOperationError(RNNLRPError, NotImplementedError):
    """The requested computation path is not available (e.g. optimized derivative)."""


class StructuralMisuseError(RNNLRPError, RuntimeError):
    """Operation incompatible with the sequence structure or call order."""
