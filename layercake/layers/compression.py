"""
compression.py
~~~~~~~~~~~~~~

Layers built around a compression function.

Pure compression layers squeeze their values into (0, 1) and hand them to
the next layer unchanged; compressed matrix layers squeeze and then mix
through a weight matrix. In both cases the slope recorded during the
forward pass scales the feedback on the way back.
"""

from typing import Optional

import numpy as np

from layercake.compressions import div_x, div_xp2, logistic
from layercake.layers.base import Layer
from layercake.layers.matrix import MATRIX_RATE, MatrixLayer, matrix_project

C_1DX_MATRIX_LAYER_KIND = 0x0011
C_1DXP2_MATRIX_LAYER_KIND = 0x0012
C_1DX_LAYER_KIND = 0x0021
C_1DXP2_LAYER_KIND = 0x0022
C_LOGISTIC_LAYER_KIND = 0x0023

COMPRESSION_COEFFICIENT = 'x-axis_compression:'


class CompressionLayer(Layer):
    """
    Compresses its values and copies the first ``min(n, m)`` of them to
    the next layer. Subclasses pick the compression function.
    """

    compression = None

    def __init__(self, n: int, m: Optional[int] = None, zero: float = 0.0):
        super().__init__(n, m, zero)
        self.slope = np.full(n, zero, dtype=float)

    def default_config(self):
        return {COMPRESSION_COEFFICIENT: 1.0}

    def project_next(self, next_layer: Layer) -> None:
        self._check_next(next_layer)
        self.compression(
            self.v, self.slope, self.config[COMPRESSION_COEFFICIENT]
        )
        k = min(self.n, self.m)
        next_layer.v[:k] = self.v[:k]

    def evaluate(self, feedback) -> None:
        # steep slope: big changes; flat slope: changing it won't matter
        feedback = self._check_feedback(feedback)
        self.vC.fill(self.zero)
        k = min(self.n, self.m)
        self.vC[:k] = self.slope[:k] * feedback[:k]


class C1dxLayer(CompressionLayer):
    kind = C_1DX_LAYER_KIND
    name = 'c1dx'
    compression = staticmethod(div_x)


class C1dxp2Layer(CompressionLayer):
    kind = C_1DXP2_LAYER_KIND
    name = 'c1dxp2'
    compression = staticmethod(div_xp2)


class CLogisticLayer(CompressionLayer):
    kind = C_LOGISTIC_LAYER_KIND
    name = 'logistic'
    compression = staticmethod(logistic)


class CompressedMatrixLayer(MatrixLayer):
    """
    Compresses its values, then mixes them through the weight matrix.

    Backward is the matrix rule followed by one multiplication with the
    slope; there is no bias or sensitivity here.
    """

    compression = None

    def __init__(self, n: int, m: Optional[int] = None, zero: float = 0.0):
        super().__init__(n, m, zero)
        self.slope = np.full(n, zero, dtype=float)

    def default_config(self):
        return {MATRIX_RATE: 0.01, COMPRESSION_COEFFICIENT: 1.0}

    def project_next(self, next_layer: Layer) -> None:
        self._check_next(next_layer)
        self.compression(
            self.v, self.slope, self.config[COMPRESSION_COEFFICIENT]
        )
        next_layer.v[:] = matrix_project(self.mx, self.v)

    def evaluate(self, feedback) -> None:
        super().evaluate(feedback)
        self.vC *= self.slope


class C1dxMatrixLayer(CompressedMatrixLayer):
    kind = C_1DX_MATRIX_LAYER_KIND
    name = 'c1dx_matrix'
    compression = staticmethod(div_x)


class C1dxp2MatrixLayer(CompressedMatrixLayer):
    kind = C_1DXP2_MATRIX_LAYER_KIND
    name = 'c1dxp2_matrix'
    compression = staticmethod(div_xp2)
