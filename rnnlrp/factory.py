# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple, Type, Union

import numpy as np

from .activations import ActivationFunction, get_activation
from .arrays import AugmentedArray
from .cfn import CFNLayer, CFNLayerParameters
from .deltarnn import DeltaRNNLayer, DeltaRNNLayerParameters
from .errors import InvalidConfigurationError
from .gru import GRULayer, GRULayerParameters
from .layer import ContextWindow, RecurrentLayer
from .lstm import LSTMLayer, LSTMLayerParameters
from .ltm import LTMLayer, LTMLayerParameters
from .params import Initializer, LayerParameters, glorot_uniform
from .ran import RANLayer, RANLayerParameters
from .simple import SimpleRecurrentLayer, SimpleRecurrentLayerParameters

logger = logging.getLogger(__name__)


class Connection(Enum):
    """Recurrent cell algorithms."""

    SIMPLE_RECURRENT = "simple_recurrent"
    CFN = "cfn"
    LSTM = "lstm"
    GRU = "gru"
    DELTA_RNN = "delta_rnn"
    LTM = "ltm"
    RAN = "ran"


LAYERS: Dict[Connection, Tuple[Type[LayerParameters], Type[RecurrentLayer]]] = {
    Connection.SIMPLE_RECURRENT: (SimpleRecurrentLayerParameters, SimpleRecurrentLayer),
    Connection.CFN: (CFNLayerParameters, CFNLayer),
    Connection.LSTM: (LSTMLayerParameters, LSTMLayer),
    Connection.GRU: (GRULayerParameters, GRULayer),
    Connection.DELTA_RNN: (DeltaRNNLayerParameters, DeltaRNNLayer),
    Connection.LTM: (LTMLayerParameters, LTMLayer),
    Connection.RAN: (RANLayerParameters, RANLayer),
}


@dataclass
class LayerConfig:
    """
    Configuration of a recurrent layer.

    `connection` may be given as a `Connection` or its string value and
    `activation` as an `ActivationFunction` or a registry name.
    """

    input_size: int
    output_size: int
    connection: Connection
    activation: Union[ActivationFunction, str, None] = None
    dropout: float = 0.0

    def __post_init__(self) -> None:
        if not isinstance(self.connection, Connection):
            try:
                self.connection = Connection(self.connection)
            except ValueError:
                raise InvalidConfigurationError(
                    f"Unknown connection: {self.connection!r}. "
                    f"Available: {[c.value for c in Connection]}"
                ) from None
        if self.input_size <= 0 or self.output_size <= 0:
            raise InvalidConfigurationError(
                f"Layer sizes must be positive, got {self.input_size} and {self.output_size}"
            )
        if not 0.0 <= self.dropout < 1.0:
            raise InvalidConfigurationError(f"dropout must be in [0, 1), got {self.dropout}")
        if self.connection is Connection.LTM and self.input_size != self.output_size:
            raise InvalidConfigurationError("LTM requires input size == output size")
        if isinstance(self.activation, str):
            self.activation = get_activation(self.activation)


def _lookup(connection) -> Tuple[Type[LayerParameters], Type[RecurrentLayer]]:
    if connection not in LAYERS:
        raise InvalidConfigurationError(f"Unsupported connection: {connection!r}")
    return LAYERS[connection]


def build_params(
    config: LayerConfig,
    rng: Optional[np.random.Generator] = None,
    weights_initializer: Optional[Initializer] = glorot_uniform,
    biases_initializer: Optional[Initializer] = glorot_uniform,
) -> LayerParameters:
    """Parameters of the layer described by `config`, randomly initialized."""
    params_cls, _ = _lookup(config.connection)
    return params_cls(
        config.input_size,
        config.output_size,
        weights_initializer=weights_initializer,
        biases_initializer=biases_initializer,
        rng=rng,
    )


def build_layer(
    config: LayerConfig,
    params: LayerParameters,
    context_window: ContextWindow,
    rng: Optional[np.random.Generator] = None,
    input_array: Optional[AugmentedArray] = None,
) -> RecurrentLayer:
    """
    One timestep of the layer described by `config`.

    Raises
    ------
    InvalidConfigurationError
        If the connection is unknown or `params` do not belong to it.
    """
    params_cls, layer_cls = _lookup(config.connection)
    if not isinstance(params, params_cls):
        raise InvalidConfigurationError(
            f"{config.connection.name} layer needs {params_cls.__name__}, got {type(params).__name__}"
        )
    if (params.input_size, params.output_size) != (config.input_size, config.output_size):
        raise InvalidConfigurationError(
            f"params sizes {(params.input_size, params.output_size)} do not match "
            f"the configuration {(config.input_size, config.output_size)}"
        )
    layer = layer_cls(
        params,
        context_window,
        activation=config.activation,
        dropout=config.dropout,
        rng=rng,
        input_array=input_array,
    )
    logger.debug("Built %s", layer)
    return layer
