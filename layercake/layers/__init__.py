"""
layers package
~~~~~~~~~~~~~~

The closed family of layer kinds, indexed by kind id for loading saved
networks and by name for building networks from a description.
"""

from typing import Dict, Type

from layercake.layers.base import IDENTITY_LAYER_KIND, Layer, Parameter, ShapeError
from layercake.layers.bsc import BSC1dxMatrixLayer, BSCMatrixLayer
from layercake.layers.compression import (
    C1dxLayer,
    C1dxMatrixLayer,
    C1dxp2Layer,
    C1dxp2MatrixLayer,
    CLogisticLayer,
)
from layercake.layers.convolution import ConvolutionLayer, SparseConvolutionLayer
from layercake.layers.matrix import MatrixLayer

LAYER_KINDS: Dict[int, Type[Layer]] = {
    layer_class.kind: layer_class
    for layer_class in (
        Layer,
        MatrixLayer,
        C1dxMatrixLayer,
        C1dxp2MatrixLayer,
        C1dxLayer,
        C1dxp2Layer,
        CLogisticLayer,
        ConvolutionLayer,
        SparseConvolutionLayer,
        BSCMatrixLayer,
        BSC1dxMatrixLayer,
    )
}

LAYERS_BY_NAME: Dict[str, Type[Layer]] = {
    layer_class.name: layer_class for layer_class in LAYER_KINDS.values()
}

# layer kinds that take the shared FFT engine
FFT_LAYERS = (ConvolutionLayer,)

__all__ = [
    'IDENTITY_LAYER_KIND',
    'LAYER_KINDS',
    'LAYERS_BY_NAME',
    'FFT_LAYERS',
    'Layer',
    'Parameter',
    'ShapeError',
    'MatrixLayer',
    'C1dxMatrixLayer',
    'C1dxp2MatrixLayer',
    'C1dxLayer',
    'C1dxp2Layer',
    'CLogisticLayer',
    'ConvolutionLayer',
    'SparseConvolutionLayer',
    'BSCMatrixLayer',
    'BSC1dxMatrixLayer',
]
