"""
bsc.py
~~~~~~

Bias / sensitivity / compression matrix layers.

Values first get an elementwise affine treatment,

    pre[i] = (v[i] + bias[i]) * sens[i]

and ``pre`` is then mixed through the weight matrix. The BSC1dx variant
runs ``div_x`` on the values before the affine step; its slope is what
brings the compression's derivative back into the feedback. Without a
compression the slope stays at ``one``.
"""

from typing import Any, Dict, Iterator, Optional

import numpy as np

from layercake.compressions import div_x
from layercake.layers.base import (
    Layer,
    Parameter,
    format_value,
    resized,
)
from layercake.layers.compression import COMPRESSION_COEFFICIENT
from layercake.layers.matrix import (
    MATRIX_RATE,
    matrix_feedback,
    matrix_project,
)

BSC_MATRIX_LAYER_KIND = 0x0040
BSC1DX_MATRIX_LAYER_KIND = 0x0041

BIAS_RATE = 'bias_change_speed:'
SENSITIVITY_RATE = 'sensetivity_change_speed:'


def affine_forward(
    values: np.ndarray,
    bias: np.ndarray,
    sens: np.ndarray
) -> np.ndarray:
    """Shift by ``bias`` and scale by ``sens``."""
    return (values + bias) * sens


def affine_feedback(
    raw: np.ndarray,
    slope: np.ndarray,
    sens: np.ndarray,
    ucv: np.ndarray,
    biasC: np.ndarray,
    sensC: np.ndarray
) -> np.ndarray:
    """
    Chain the affine step into the feedback of one example.

    Args:
        raw: Feedback for the affine output, from the matrix rule
        slope: Compression derivative recorded on the forward pass
        sens: Sensitivity coefficients
        ucv: Affine output recorded on the forward pass
        biasC: Bias accumulator, updated in place
        sensC: Sensitivity accumulator, updated in place

    Returns:
        np.ndarray: Feedback for the layer's incoming values
    """
    changes = raw * slope
    biasC += changes
    sensC += changes * ucv
    return changes * sens


class BSCMatrixLayer(Layer):
    """
    Affine step followed by a matrix mix.

    Args:
        n: Width of this layer
        m: Width of the next layer; leave out to connect later
        zero: Additive identity
        one: Multiplicative identity, the initial sensitivity and slope
    """

    kind = BSC_MATRIX_LAYER_KIND
    name = 'bsc_matrix'
    compression = None

    def __init__(
        self,
        n: int,
        m: Optional[int] = None,
        zero: float = 0.0,
        one: float = 1.0
    ):
        self.one = one
        self.mx = None
        self.mxC = None
        super().__init__(n, m, zero)
        self.bias = np.full(n, zero, dtype=float)
        self.biasC = np.full(n, zero, dtype=float)
        self.sens = np.full(n, one, dtype=float)
        self.sensC = np.full(n, zero, dtype=float)
        self.slope = np.full(n, one, dtype=float)
        self.ucv = np.full(n, zero, dtype=float)

    def default_config(self):
        return {MATRIX_RATE: 0.01, BIAS_RATE: 0.01, SENSITIVITY_RATE: 0.001}

    def connect_next(self, m: int) -> None:
        super().connect_next(m)
        self.mx = resized(self.mx, (self.n, m), self.zero)
        self.mxC = resized(self.mxC, (self.n, m), self.zero)

    def parameters(self):
        parameters = [
            Parameter('bias', self.bias, self.biasC, BIAS_RATE, False),
            Parameter('sens', self.sens, self.sensC, SENSITIVITY_RATE, False),
        ]
        if self.mx is not None:
            parameters.append(Parameter('mx', self.mx, self.mxC, MATRIX_RATE))
        return parameters

    def project_next(self, next_layer: Layer) -> None:
        self._check_next(next_layer)
        if self.compression is not None:
            self.compression(
                self.v, self.slope, self.config[COMPRESSION_COEFFICIENT]
            )
        self.v[:] = affine_forward(self.v, self.bias, self.sens)
        self.ucv[:] = self.v
        next_layer.v[:] = matrix_project(self.mx, self.v)

    def evaluate(self, feedback) -> None:
        feedback = self._check_feedback(feedback)
        raw = matrix_feedback(self.mx, self.mxC, self.v, feedback)
        self.vC[:] = affine_feedback(
            raw, self.slope, self.sens, self.ucv, self.biasC, self.sensC
        )

    def header_values(self):
        return super().header_values() + [format_value(self.one)]

    @classmethod
    def read_extras(cls, tokens: Iterator[str]) -> Dict[str, Any]:
        return {'one': float(next(tokens))}


class BSC1dxMatrixLayer(BSCMatrixLayer):
    """BSC matrix layer compressing its values with ``div_x`` first."""

    kind = BSC1DX_MATRIX_LAYER_KIND
    name = 'bsc1dx_matrix'
    compression = staticmethod(div_x)

    def default_config(self):
        config = super().default_config()
        config[COMPRESSION_COEFFICIENT] = 1.0
        return config
