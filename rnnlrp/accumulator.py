# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

from typing import Optional

from .errors import StructuralMisuseError
from .params import LayerParameters


class ParamsErrorsAccumulator:
    """
    Running sum of gradient bundles.

    The sum is averaged at most once; accumulating again afterwards requires
    a `reset()`.
    """

    def __init__(self) -> None:
        self._errors: Optional[LayerParameters] = None
        self.count = 0
        self._averaged = False

    @property
    def is_empty(self) -> bool:
        return self.count == 0

    @property
    def is_averaged(self) -> bool:
        return self._averaged

    def accumulate(self, params_errors: LayerParameters, copy: bool = True) -> None:
        """
        Add a gradient bundle. The first one is stored (copied unless
        `copy=False`), the following ones are summed into it.
        """
        if self._averaged:
            raise StructuralMisuseError("Accumulating into averaged errors: reset first")
        if self._errors is None:
            self._errors = params_errors.copy() if copy else params_errors
        else:
            self._errors.assign_sum(params_errors)
        self.count += 1

    def average_errors(self) -> None:
        """Divide the sum by the number of accumulated bundles."""
        if self._averaged:
            return
        if self.count > 1:
            self._errors.assign_div(self.count)
        self._averaged = True

    def get_params_errors(self, copy: bool = True) -> LayerParameters:
        if self._errors is None:
            raise StructuralMisuseError("No params errors accumulated")
        return self._errors.copy() if copy else self._errors

    def reset(self) -> None:
        self._errors = None
        self.count = 0
        self._averaged = False
