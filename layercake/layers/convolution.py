"""
convolution.py
~~~~~~~~~~~~~~

Convolution layers backed by the FFT engine.

Read the values and the kernel as polynomial coefficients: the dense layer
multiplies the two polynomials and passes the ``m`` most significant
coefficients of the product to the next layer. Brute force, that is

    for i in range(n):
        for j in range(n + m - 1):
            product[i + j] += cn[j] * v[i]
    next.v = product[n - 1:n + m - 1]

which the FFT turns into O(n log n). Backward holds one operand fixed
while differentiating the other:

    cnC[n - 1 - i + j] += v[i] * feedback[j]
    vC[i] += cn[n - 1 - i + j] * feedback[j]

both of which are correlations, computed as convolutions with the first
operand reversed.
"""

import logging
from typing import Optional

import numpy as np

from layercake.fft import FFT, get_engine
from layercake.layers.base import Layer, Parameter, ShapeError, resized

# Configure module logger
logger = logging.getLogger(__name__)

CONVOLUTION_LAYER_KIND = 0x0030
SPARSE_CONVOLUTION_LAYER_KIND = 0x0031

CONVOLUTION_RATE = 'convolution_change_speed:'


def sampled_positions(n: int, m: int) -> np.ndarray:
    """Offsets ``floor(i*n/m)`` picked from the last ``n`` product terms."""
    return (np.arange(m, dtype=np.int64) * n) // m


def scatter_sampled_feedback(feedback: np.ndarray, n: int) -> np.ndarray:
    """
    Spread the feedback of a sparse convolution over the window it was
    sampled from.

    The forward pass reads product terms ``n-1 + floor(i*n/m)``. Placing
    ``feedback[i]`` at offset ``floor(i*n/m)`` of a zero window of length
    ``n`` turns the sparse layer's backward pass into the dense one with
    ``m = n``. Terms that were not sampled receive no feedback.

    Args:
        feedback: Desired change of the sampled outputs (length m <= n)
        n: Width of the sparse layer

    Returns:
        np.ndarray: Window of length ``n``
    """
    window = np.zeros(n, dtype=float)
    window[sampled_positions(n, len(feedback))] = feedback
    return window


class ConvolutionLayer(Layer):
    """
    Convolves its values with a kernel of length ``n + m - 1``.

    Args:
        n: Width of this layer
        m: Width of the next layer; leave out to connect later
        zero: Additive identity
        fft: Shared transform engine; the global one when left out
        is_first_layer: Skip computing ``vC`` since nothing consumes it
    """

    kind = CONVOLUTION_LAYER_KIND
    name = 'convolution'

    def __init__(
        self,
        n: int,
        m: Optional[int] = None,
        zero: float = 0.0,
        fft: Optional[FFT] = None,
        is_first_layer: bool = False
    ):
        self.fft = fft if fft is not None else get_engine()
        self.cn = None
        self.cnC = None
        super().__init__(n, m, zero)
        self.is_first_layer = is_first_layer

    def default_config(self):
        return {CONVOLUTION_RATE: 0.01}

    def kernel_length(self, m: int) -> int:
        return self.n + m - 1

    def connect_next(self, m: int) -> None:
        super().connect_next(m)
        length = self.kernel_length(m)
        self.cn = resized(self.cn, (length,), self.zero)
        self.cnC = resized(self.cnC, (length,), self.zero)

    def parameters(self):
        if self.cn is None:
            return []
        return [Parameter('cn', self.cn, self.cnC, CONVOLUTION_RATE)]

    def project_next(self, next_layer: Layer) -> None:
        self._check_next(next_layer)
        length = len(self.cn)
        product = self.fft.convolution(self.v, self.cn, length)
        next_layer.v[:] = product[self.n - 1:length]

    def _correlate(self, window: np.ndarray) -> None:
        """Accumulate kernel changes and set ``vC`` for a feedback window."""
        length = len(self.cn)
        self.cnC += self.fft.convolution(self.v, window, length, True)
        if not self.is_first_layer:
            # indices below len(window)-1 may hold wrapped-around terms
            offset = len(window) - 1
            changes = self.fft.convolution(self.cn, window, length, True)
            self.vC[:] = changes[offset:offset + self.n]

    def evaluate(self, feedback) -> None:
        feedback = self._check_feedback(feedback)
        self.vC.fill(self.zero)
        # a frozen kernel makes the whole backward pass unnecessary
        if self.config[CONVOLUTION_RATE] == 0:
            return
        self._correlate(feedback)


class SparseConvolutionLayer(ConvolutionLayer):
    """
    Convolves its values with a kernel of length ``2n - 1`` and samples
    ``m <= n`` outputs at a uniform stride from the last ``n`` terms.
    """

    kind = SPARSE_CONVOLUTION_LAYER_KIND
    name = 'sparse_convolution'

    def kernel_length(self, m: int) -> int:
        return 2 * self.n - 1

    def connect_next(self, m: int) -> None:
        if m > self.n:
            raise ShapeError(
                f"Sparse convolution cannot widen: n={self.n}, m={m}"
            )
        super().connect_next(m)

    def project_next(self, next_layer: Layer) -> None:
        self._check_next(next_layer)
        product = self.fft.convolution(self.v, self.cn, len(self.cn))
        positions = self.n - 1 + sampled_positions(self.n, self.m)
        next_layer.v[:] = product[positions]

    def evaluate(self, feedback) -> None:
        feedback = self._check_feedback(feedback)
        self.vC.fill(self.zero)
        if self.config[CONVOLUTION_RATE] == 0:
            return
        self._correlate(scatter_sampled_feedback(feedback, self.n))
