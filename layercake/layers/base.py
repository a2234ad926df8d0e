"""
base.py
~~~~~~~

Common layer interface.

A layer owns its value vector ``v`` (its own output, width ``n``), the
gradient ``vC`` of the training objective with respect to ``v``, and a
named configuration of learning rates and coefficients. Layers are chained
by :class:`layercake.network.Network`, which tells every layer the width
``m`` of the layer after it.

Trainable state is declared through :meth:`Layer.parameters` as pairs of a
value array and a change accumulator ("C" suffix). Zeroing, downscaling,
applying and (de)serializing accumulators are shared here so every layer
kind only implements its projection and its feedback rule.

The base class itself is the identity layer: it copies its values to the
next layer and passes feedback straight back.
"""

import logging
from typing import Any, Dict, Iterator, List, NamedTuple, Optional, Tuple

import numpy as np

from layercake.randoms import RandomSource, fill

# Configure module logger
logger = logging.getLogger(__name__)

IDENTITY_LAYER_KIND = 0x0001


class ShapeError(ValueError):
    """Raised when a vector does not have the width a layer expects."""


class Parameter(NamedTuple):
    """A trainable array and the accumulator holding its desired change."""

    name: str
    values: np.ndarray
    changes: np.ndarray
    rate: str
    randomized: bool = True


def format_value(value: float) -> str:
    """Shortest text form that reads back to the same float."""
    return repr(float(value))


def read_values(tokens: Iterator[str], count: int) -> np.ndarray:
    """Read ``count`` floats from a token stream."""
    return np.array([float(next(tokens)) for _ in range(count)], dtype=float)


def resized(
    array: Optional[np.ndarray],
    shape: Tuple[int, ...],
    fill_value: float
) -> np.ndarray:
    """
    Return ``array`` if it already has ``shape``, otherwise a new array of
    that shape holding the overlapping entries and ``fill_value`` elsewhere.
    """
    if array is not None and array.shape == shape:
        return array
    out = np.full(shape, fill_value, dtype=float)
    if array is not None and array.ndim == len(shape):
        overlap = tuple(slice(0, min(a, b)) for a, b in zip(array.shape, shape))
        out[overlap] = array[overlap]
    return out


def read_config(tokens: Iterator[str]) -> List[Tuple[str, float]]:
    """
    Read a configuration block: ``<count>`` then ``<label> <value>`` pairs.

    Args:
        tokens: Token stream positioned at the count

    Returns:
        list: ``(label, value)`` pairs in file order
    """
    count = int(next(tokens))
    if count < 0:
        raise ValueError(f"Negative config count {count}")
    return [(next(tokens), float(next(tokens))) for _ in range(count)]


class Layer:
    """
    Identity layer and base class of every layer kind.

    Args:
        n: Width of this layer
        m: Width of the next layer; leave out to connect later
        zero: Additive identity used to reset vectors
    """

    kind = IDENTITY_LAYER_KIND
    name = 'identity'

    def __init__(self, n: int, m: Optional[int] = None, zero: float = 0.0):
        if n < 1:
            raise ShapeError(f"Layer width must be positive, got {n}")
        self.n = n
        self.m = 0
        self.zero = zero
        self.config = self.default_config()
        self.v = np.full(n, zero, dtype=float)
        self.vC = np.full(n, zero, dtype=float)
        # the first layer of a chain has nobody to pass feedback to
        self.is_first_layer = False
        if m is not None:
            self.connect_next(m)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(n={self.n}, m={self.m})"

    def default_config(self) -> Dict[str, float]:
        return {}

    def load_config(self, pairs: List[Tuple[str, float]]) -> None:
        """
        Merge configuration values read from a file into this layer.

        Known labels are matched by name. Any other label is an annotation
        only: its value goes to the label at the same position, as older
        files spell some labels differently. Labels missing from the file
        keep their current values and surplus values are dropped.

        Args:
            pairs: ``(label, value)`` pairs in file order
        """
        config = dict(self.config)
        labels = list(config)
        for index, (label, value) in enumerate(pairs):
            if label in config:
                config[label] = value
            elif index < len(labels):
                logger.warning(
                    f"{self.name} config '{label}' is unknown, applying it "
                    f"as '{labels[index]}'"
                )
                config[labels[index]] = value
            else:
                logger.warning(
                    f"{self.name} config '{label}' is unknown, ignoring it"
                )
        self.config = config

    @property
    def connected(self) -> bool:
        return self.m > 0

    def connect_next(self, m: int) -> None:
        """
        Connect to a next layer of width ``m`` and allocate storage.

        Args:
            m: Width of the next layer

        Raises:
            ShapeError: If ``m`` is not positive
        """
        if m < 1:
            raise ShapeError(f"Next layer width must be positive, got {m}")
        self.m = m

    def parameters(self) -> List[Parameter]:
        return []

    def set_values(self, values) -> None:
        """
        Replace the value vector.

        Raises:
            ShapeError: If ``values`` does not have length ``n``
        """
        data = np.asarray(values, dtype=float)
        if data.shape != (self.n,):
            raise ShapeError(
                f"{self.name} layer expects {self.n} values, "
                f"got shape {data.shape}"
            )
        self.v = data.copy()

    def get_values(self) -> np.ndarray:
        return self.v.copy()

    def get_changes(self) -> np.ndarray:
        return self.vC.copy()

    def _check_next(self, next_layer: 'Layer') -> None:
        if next_layer.n != self.m:
            raise ShapeError(
                f"{self.name} layer is connected to width {self.m}, "
                f"next layer has width {next_layer.n}"
            )

    def _check_feedback(self, feedback) -> np.ndarray:
        data = np.asarray(feedback, dtype=float)
        if data.shape != (self.m,):
            raise ShapeError(
                f"{self.name} layer expects feedback of length {self.m}, "
                f"got shape {data.shape}"
            )
        return data

    def project_next(self, next_layer: 'Layer') -> None:
        """Copy the first ``min(n, m)`` values to the next layer."""
        self._check_next(next_layer)
        k = min(self.n, self.m)
        next_layer.v[:k] = self.v[:k]

    def evaluate(self, feedback) -> None:
        """Pass feedback on the shared entries straight back."""
        feedback = self._check_feedback(feedback)
        self.vC.fill(self.zero)
        k = min(self.n, self.m)
        self.vC[:k] = feedback[:k]

    def zero_changes(self) -> None:
        """Reset the gradient and every accumulator before a batch."""
        self.vC.fill(self.zero)
        for parameter in self.parameters():
            parameter.changes.fill(self.zero)

    def downscale_changes(self, down: float) -> None:
        """Divide every accumulator by ``down``, usually the batch size."""
        for parameter in self.parameters():
            changes = parameter.changes
            changes /= down

    def adjust(self) -> None:
        """
        Apply the accumulated changes.

        Changes are added: feedback is ``target - output``, so this climbs
        towards the target.
        """
        for parameter in self.parameters():
            values = parameter.values
            values += self.config[parameter.rate] * parameter.changes

    def random_variables(self, source: RandomSource) -> None:
        """Overwrite the randomized parameters with values from ``source``."""
        for parameter in self.parameters():
            if parameter.randomized:
                parameter.values[...] = fill(parameter.values.shape, source)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def header_values(self) -> List[str]:
        return [str(self.n), str(self.m), format_value(self.zero)]

    def config_lines(self) -> List[str]:
        lines = [str(len(self.config))]
        lines.extend(
            f"{label} {format_value(value)}"
            for label, value in self.config.items()
        )
        return lines

    def serialize(self) -> str:
        """
        Text block holding this layer's shape, configuration and parameters.

        The kind id is written twice: the network reader consumes the
        first copy to pick the layer class, :meth:`deserialize` the second.

        Returns:
            str: Newline-terminated block
        """
        lines = [f"{self.kind} {self.kind}", " ".join(self.header_values())]
        lines.extend(self.config_lines())
        for parameter in self.parameters():
            rows = np.atleast_2d(parameter.values)
            lines.extend(
                " ".join(format_value(value) for value in row)
                for row in rows
            )
        return "\n".join(lines) + "\n"

    @classmethod
    def read_extras(cls, tokens: Iterator[str]) -> Dict[str, Any]:
        """Read kind-specific header fields following ``n m zero``."""
        return {}

    @classmethod
    def deserialize(cls, tokens: Iterator[str], **kwargs) -> 'Layer':
        """
        Build a layer from a token stream positioned at its (second) kind id.

        Args:
            tokens: Iterator over whitespace-separated tokens
            **kwargs: Extra constructor arguments (e.g. an FFT engine)

        Returns:
            Layer: The connected layer

        Raises:
            StopIteration: If the stream ends inside the block
            ValueError: If a token cannot be parsed or the kind id differs
        """
        kind = int(next(tokens))
        if kind != cls.kind:
            raise ValueError(
                f"Expected kind {cls.kind} for {cls.name}, got {kind}"
            )
        n = int(next(tokens))
        m = int(next(tokens))
        zero = float(next(tokens))
        extras = cls.read_extras(tokens)

        layer = cls(n, zero=zero, **extras, **kwargs)
        layer.load_config(read_config(tokens))
        layer.connect_next(m)
        for parameter in layer.parameters():
            values = read_values(tokens, parameter.values.size)
            parameter.values[...] = values.reshape(parameter.values.shape)
        return layer
