"""
compressions.py
~~~~~~~~~~~~~~~

Elementwise compression functions used by the layer family.

Each function squeezes a whole vector in place into the range (0, 1) and
writes the derivative at every point into a caller-provided ``slope``
vector of the same length. Layers keep that slope from the forward pass
and reuse it unmodified as the local Jacobian diagonal when feedback
flows backwards.

The coefficient ``c`` stretches the x-axis: larger values saturate faster.
"""

import numpy as np

# exp(-cx) at or above this value counts as saturated
LOGISTIC_SATURATION = 1e20


def div_x(values: np.ndarray, slope: np.ndarray, c: float) -> None:
    """
    Compress with ``1 - 0.5/(1+cx)`` for positive ``cx``, ``-0.5/(cx-1)``
    otherwise.

    Args:
        values: Vector compressed in place
        slope: Vector receiving dy/dx
        c: x-axis compression coefficient
    """
    scaled = values * c
    positive = scaled > 0
    denom = np.where(positive, scaled + 1.0, scaled - 1.0)
    slope[:] = (0.5 * c) / (denom * denom)
    values[:] = np.where(positive, 1.0 - 0.5 / denom, -0.5 / denom)


def div_xp2(values: np.ndarray, slope: np.ndarray, c: float) -> None:
    """
    Same branches as :func:`div_x` with a squared denominator, which
    saturates more steeply.

    Args:
        values: Vector compressed in place
        slope: Vector receiving dy/dx
        c: x-axis compression coefficient
    """
    scaled = values * c
    positive = scaled > 0
    denom = np.where(positive, scaled + 1.0, scaled - 1.0)
    square = denom * denom
    slope[:] = np.where(positive, c, -c) / (square * denom)
    values[:] = np.where(positive, 1.0 - 0.5 / square, 0.5 / square)


def logistic(values: np.ndarray, slope: np.ndarray, c: float) -> None:
    """
    Standard logistic curve ``1/(1+exp(-cx))``.

    The derivative is forced to zero once the exponential saturates so
    large negative inputs never produce inf/inf.

    Args:
        values: Vector compressed in place
        slope: Vector receiving dy/dx
        c: x-axis compression coefficient
    """
    with np.errstate(over='ignore', invalid='ignore'):
        e = np.exp(-c * values)
        slope[:] = np.where(
            e < LOGISTIC_SATURATION,
            (c * e) / ((e + 1.0) * (e + 1.0)),
            0.0
        )
        values[:] = 1.0 / (e + 1.0)
