"""
randoms.py
~~~~~~~~~~

Value sources used to initialise layer parameters.

A source is any zero-argument callable returning a float in (-1, 1). The
return value does not have to be random: :func:`constant` is handy for
tests and for resetting a network to a known state.
"""

from typing import Callable, Optional, Tuple

import numpy as np

RandomSource = Callable[[], float]

_FLOAT24_SCALE = 1 << 24


class Float24Source:
    """
    Uniform values in (-1, 1) with 24 bits of mantissa and a random sign.
    """

    def __init__(self, seed: Optional[int] = None):
        self.rng = np.random.default_rng(seed)

    def __call__(self) -> float:
        value = int(self.rng.integers(0, _FLOAT24_SCALE)) / _FLOAT24_SCALE
        if self.rng.integers(0, 2):
            value = -value
        return value


def constant(value: float) -> RandomSource:
    """Return a source that always yields ``value``."""
    def source() -> float:
        return value
    return source


def fill(shape: Tuple[int, ...], source: RandomSource) -> np.ndarray:
    """
    Draw ``prod(shape)`` values from ``source`` into a new array.

    Args:
        shape: Shape of the array to create
        source: Value source

    Returns:
        np.ndarray: Array of drawn values, filled in row-major order
    """
    count = int(np.prod(shape, dtype=np.int64))
    values = np.fromiter(
        (source() for _ in range(count)), dtype=float, count=count
    )
    return values.reshape(shape)
