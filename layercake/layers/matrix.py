"""
matrix.py
~~~~~~~~~

Dense matrix layer.

Each node ``i`` of this layer feeds each node ``j`` of the next layer with
coefficient ``mx[i][j]``. The two free functions hold the mixing math so
the compressed and bias/sensitivity variants can reuse it.
"""

from typing import Optional

import numpy as np

from layercake.layers.base import Layer, Parameter, resized

MATRIX_LAYER_KIND = 0x0010

MATRIX_RATE = 'matrix_change_speed:'


def matrix_project(mx: np.ndarray, values: np.ndarray) -> np.ndarray:
    """Mix ``values`` (length n) through ``mx`` (n x m)."""
    return values @ mx


def matrix_feedback(
    mx: np.ndarray,
    mxC: np.ndarray,
    values: np.ndarray,
    feedback: np.ndarray
) -> np.ndarray:
    """
    Accumulate matrix changes for one example and return the feedback for
    the mixed values.

    The change of edge ``(i, j)`` is the value of ``i`` times the desired
    change of ``j``; the desired change of ``i`` sums the desired changes
    of every ``j`` weighted by the edge.

    Args:
        mx: Weight matrix (n x m)
        mxC: Change accumulator, updated in place
        values: Values that were mixed (length n)
        feedback: Desired change of the next layer (length m)

    Returns:
        np.ndarray: Desired change of ``values`` (length n)
    """
    mxC += np.outer(values, feedback)
    return mx @ feedback


class MatrixLayer(Layer):
    """Mixes its values through an n x m weight matrix."""

    kind = MATRIX_LAYER_KIND
    name = 'matrix'

    def __init__(self, n: int, m: Optional[int] = None, zero: float = 0.0):
        self.mx = None
        self.mxC = None
        super().__init__(n, m, zero)

    def default_config(self):
        return {MATRIX_RATE: 0.01}

    def connect_next(self, m: int) -> None:
        super().connect_next(m)
        self.mx = resized(self.mx, (self.n, m), self.zero)
        self.mxC = resized(self.mxC, (self.n, m), self.zero)

    def parameters(self):
        if self.mx is None:
            return []
        return [Parameter('mx', self.mx, self.mxC, MATRIX_RATE)]

    def project_next(self, next_layer: Layer) -> None:
        self._check_next(next_layer)
        next_layer.v[:] = matrix_project(self.mx, self.v)

    def evaluate(self, feedback) -> None:
        feedback = self._check_feedback(feedback)
        self.vC[:] = matrix_feedback(self.mx, self.mxC, self.v, feedback)
