"""
network.py
~~~~~~~~~~

A network ("cake") is a chain of layers.

Construction runs in two steps: add the layers, then connect them once.
Connecting tells every layer the width of the layer after it; the last
layer is connected to itself so it projects and evaluates like any other.

Training one batch looks like this::

    net.zero_changes()
    for x, target in batch:
        output = net.process(x)
        net.evaluate(target - output)
    net.downscale_changes(len(batch))
    net.adjust()

Feedback is ``target - output`` and ``adjust`` adds the averaged changes,
i.e. the network climbs towards the target.
"""

import logging
from typing import Dict, List

import numpy as np

from layercake.layers import Layer, ShapeError
from layercake.randoms import RandomSource

# Configure module logger
logger = logging.getLogger(__name__)

REVERSIBLE_NETWORK_ID = 0x00010000


class Network:
    """
    Ordered, exclusively owned chain of layers.

    Args:
        zero: Additive identity of the layers' number type
    """

    def __init__(self, zero: float = 0.0):
        self.network_id = REVERSIBLE_NETWORK_ID
        self.zero = zero
        self.layers: List[Layer] = []
        self.connected = False

    def __len__(self) -> int:
        return len(self.layers)

    def __repr__(self) -> str:
        kinds = ', '.join(layer.name for layer in self.layers)
        return f"Network([{kinds}], sizes={self.sizes})"

    @property
    def sizes(self) -> List[int]:
        """Width of every layer in chain order."""
        return [layer.n for layer in self.layers]

    def add_layer(self, layer: Layer) -> None:
        """
        Append a layer.

        Raises:
            RuntimeError: If the network is already connected
        """
        if self.connected:
            raise RuntimeError("Cannot add layers to a connected network")
        self.layers.append(layer)

    def connect_layers(self) -> None:
        """Connect each layer to the next, and the last one to itself."""
        if not self.layers:
            logger.warning("Connecting a network without layers")
            return
        for layer, next_layer in zip(self.layers, self.layers[1:]):
            layer.connect_next(next_layer.n)
        last = self.layers[-1]
        last.connect_next(last.n)
        for index, layer in enumerate(self.layers):
            layer.is_first_layer = index == 0
        self.connected = True
        logger.debug(f"Connected network with sizes {self.sizes}")

    def _require_connected(self) -> None:
        if not self.connected or not self.layers:
            raise RuntimeError("Network must have layers and be connected")

    def random_variables(self, source: RandomSource) -> None:
        """Draw every layer's randomized parameters from ``source``."""
        self._require_connected()
        for layer in self.layers:
            layer.random_variables(source)

    def process(self, values) -> np.ndarray:
        """
        Run input values through the chain.

        Args:
            values: Input vector of the first layer's width

        Returns:
            np.ndarray: Copy of the last layer's values

        Raises:
            ShapeError: If the input has the wrong length
            RuntimeError: If the network is not connected
        """
        self._require_connected()
        self.layers[0].set_values(values)
        for layer, next_layer in zip(self.layers, self.layers[1:]):
            layer.project_next(next_layer)
        last = self.layers[-1]
        last.project_next(last)
        return last.get_values()

    def evaluate(self, feedback) -> None:
        """
        Accumulate the desired changes for the last processed input.

        Args:
            feedback: Desired change of the network output

        Raises:
            ShapeError: If the feedback has the wrong length
        """
        self._require_connected()
        self.layers[-1].evaluate(feedback)
        for index in range(len(self.layers) - 2, -1, -1):
            self.layers[index].evaluate(self.layers[index + 1].vC)

    def zero_changes(self) -> None:
        """Reset the accumulated changes; call between batches."""
        for layer in self.layers:
            layer.zero_changes()

    def downscale_changes(self, down: float) -> None:
        """
        Average the accumulated changes over a batch.

        Raises:
            ValueError: If ``down`` is zero
        """
        if down == 0:
            raise ValueError("Cannot downscale changes by zero")
        for layer in self.layers:
            layer.downscale_changes(down)

    def adjust(self) -> None:
        """Apply the accumulated changes."""
        for layer in self.layers:
            layer.adjust()

    def get_config(self) -> List[Dict[str, float]]:
        """Configuration of every layer, in chain order (copies)."""
        return [dict(layer.config) for layer in self.layers]

    def set_config(self, index: int, label: str, value: float) -> None:
        """
        Change one configuration value of one layer.

        Raises:
            IndexError: If there is no layer at ``index``
            KeyError: If the layer has no such configuration label
        """
        layer = self.layers[index]
        if label not in layer.config:
            raise KeyError(
                f"Layer {index} ({layer.name}) has no config '{label}'"
            )
        layer.config[label] = float(value)

    def describe(self) -> List[Dict[str, object]]:
        """Kind and widths of every layer, JSON friendly."""
        return [
            {'kind': layer.name, 'n': layer.n, 'm': layer.m}
            for layer in self.layers
        ]


__all__ = ['Network', 'REVERSIBLE_NETWORK_ID', 'ShapeError']
