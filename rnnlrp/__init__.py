# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

"""
rnnlrp
======

Recurrent cells written out by hand in NumPy: forward pass,
backpropagation through time and layer-wise relevance propagation (LRP),
with no automatic differentiation.

Public API
~~~~~~~~~~
- Configuration
    - `Connection`, `LayerConfig`, `build_params`, `build_layer`
- Sequences
    - `RecurrentNeuralProcessor` (a layer or a stack of layers)
- Cells
    - `SimpleRecurrentLayer`, `CFNLayer`, `LSTMLayer`, `GRULayer`,
      `DeltaRNNLayer`, `LTMLayer`, `RANLayer`
      (each with its `...LayerParameters`), `StackedParameters`
- Arrays and activations
    - `AugmentedArray`, `DistributionArray`
    - `Tanh`, `Sigmoid`, `ReLU`, `GeLU`, `get_activation`
- Training
    - `ParamsErrorsAccumulator`, `ParamsOptimizer`,
      `LearningRateMethod`, `MomentumMethod`, `RMSPropMethod`, `ADAMMethod`

Names not listed here may change between releases.

Example
-------
>>> import numpy as np, rnnlrp
>>> config = rnnlrp.LayerConfig(4, 3, rnnlrp.Connection.GRU, activation="tanh")
>>> processor = rnnlrp.RecurrentNeuralProcessor(config, rng=np.random.default_rng(0))
>>> xs = [np.ones(4), -np.ones(4)]
>>> ys = processor.forward(xs, save_contributions=True)
>>> relevance = processor.calculate_relevance(0, 1, rnnlrp.DistributionArray.uniform(3))
>>> relevance.shape
(4,)
"""

import logging
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as _pkg_version

from .accumulator import ParamsErrorsAccumulator
from .activations import (
    ActivationFunction,
    GeLU,
    ReLU,
    Sigmoid,
    Tanh,
    get_activation,
)
from .arrays import AugmentedArray, DistributionArray
from .cfn import CFNLayer, CFNLayerParameters
from .deltarnn import DeltaRNNLayer, DeltaRNNLayerParameters
from .errors import (
    InvalidConfigurationError,
    RNNLRPError,
    ShapeMismatchError,
    StructuralMisuseError,
    UninitializedArrayError,
    UnsupportedOperationError,
)

from .factory import Connection, LayerConfig, build_layer, build_params
from .gru import GRULayer, GRULayerParameters
from .layer import ContextWindow, FixedContextWindow, RecurrentLayer
from .lstm import LSTMLayer, LSTMLayerParameters
from .ltm import LTMLayer, LTMLayerParameters
from .optimizer import (
    ADAMMethod,
    LearningRateMethod,
    MomentumMethod,
    ParamsOptimizer,
    RMSPropMethod,
    UpdateMethod,
)
from .params import LayerParameters, ParametersUnit, StackedParameters, glorot_uniform, he_init
from .processor import RecurrentNeuralProcessor
from .ran import RANLayer, RANLayerParameters
from .simple import SimpleRecurrentLayer, SimpleRecurrentLayerParameters

__all__ = [
    "Connection",
    "LayerConfig",
    "build_params",
    "build_layer",
    "RecurrentNeuralProcessor",
    "RecurrentLayer",
    "ContextWindow",
    "FixedContextWindow",
    "SimpleRecurrentLayer",
    "SimpleRecurrentLayerParameters",
    "CFNLayer",
    "CFNLayerParameters",
    "LSTMLayer",
    "LSTMLayerParameters",
    "GRULayer",
    "GRULayerParameters",
    "DeltaRNNLayer",
    "DeltaRNNLayerParameters",
    "LTMLayer",
    "LTMLayerParameters",
    "RANLayer",
    "RANLayerParameters",
    "AugmentedArray",
    "DistributionArray",
    "LayerParameters",
    "StackedParameters",
    "ParametersUnit",
    "glorot_uniform",
    "he_init",
    "ActivationFunction",
    "Tanh",
    "Sigmoid",
    "ReLU",
    "GeLU",
    "get_activation",
    "ParamsErrorsAccumulator",
    "ParamsOptimizer",
    "UpdateMethod",
    "LearningRateMethod",
    "MomentumMethod",
    "RMSPropMethod",
    "ADAMMethod",
    "RNNLRPError",
    "UninitializedArrayError",
    "ShapeMismatchError",
    "InvalidConfigurationError",
    "UnsupportedOperationError",
    "StructuralMisuseError",
]

try:
    __version__ = _pkg_version(__name__)
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"

logging.getLogger(__name__).addHandler(logging.NullHandler())
