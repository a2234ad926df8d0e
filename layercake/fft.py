"""
fft.py
~~~~~~

Iterative fast Fourier transform and FFT-based convolution.

The transform uses the bit-reversal technique: the input is permuted into
bit-reversed order and the butterflies of the recursive algorithm are then
run level by level. Twiddle factors are precomputed as

    w[level][k] = e^(i*pi*k / 2^level)

so level ``r`` of the butterfly uses the 2^(r+1)-th roots of unity with a
positive exponent. Applying the transform twice to a sequence of length N
yields N times the sequence with indices 1..N-1 reversed, which is how
:meth:`FFT.convolution` inverts without a separate conjugated table.

Lookup tables only grow. Once a convolution of some size has been computed,
smaller and equal sizes reuse the existing tables.
"""

import logging
from typing import Optional, Sequence

import numpy as np

# Configure module logger
logger = logging.getLogger(__name__)


class FFT:
    """
    Transform engine owning the twiddle and bit-reversal tables.

    The engine is shared by every convolution layer of a network; growing
    its tables is not thread-safe.
    """

    def __init__(self, levels: int = 0):
        """
        Initialize the lookup tables.

        Args:
            levels: Largest power-of-two level to precompute up front
        """
        self.levels = levels
        self._twiddles = []
        self._bit_reverse = np.zeros(1, dtype=np.int64)
        self.resize_tables()

    @property
    def table_size(self) -> int:
        """Length of the largest transform the tables currently cover."""
        return len(self._bit_reverse)

    def resize_tables(self) -> None:
        """Grow the twiddle and bit-reversal tables up to ``self.levels``."""
        while len(self._twiddles) <= self.levels:
            size = 1 << len(self._twiddles)
            self._twiddles.append(
                np.exp(1j * np.pi * np.arange(size) / size)
            )
            if size > 1:
                # reversing b bits: shift the (b-1)-bit table, then append
                # the same entries with the new lowest bit set
                lower = self._bit_reverse[:size // 2] << 1
                self._bit_reverse = np.concatenate((lower, lower + 1))
            logger.debug(f"FFT tables grown to size {size}")

    def transform(self, values: Sequence[complex]) -> np.ndarray:
        """
        Run the transform on a power-of-two length sequence.

        Args:
            values: Sequence whose length is a power of two

        Returns:
            np.ndarray: Transformed complex sequence (a new array)

        Raises:
            ValueError: If the length is not a power of two
        """
        data = np.asarray(values, dtype=complex)
        n = len(data)
        level = n.bit_length() - 1
        if n == 0 or 1 << level != n:
            raise ValueError(
                f"Transform length must be a power of two, got {n}"
            )

        if level > self.levels:
            self.levels = level
            self.resize_tables()

        # the b-bit reversal is the B-bit reversal shifted down
        shift = self.levels - level
        out = data[self._bit_reverse[:n] >> shift]

        for r in range(level):
            half = 1 << r
            blocks = out.reshape(-1, 2 * half)
            even = blocks[:, :half]
            odd = blocks[:, half:] * self._twiddles[r]
            out = np.concatenate((even + odd, even - odd), axis=1).ravel()

        return out

    def convolution(
        self,
        x: Sequence[float],
        y: Sequence[float],
        out_len: int = 0,
        reverse_x: bool = False,
        reverse_y: bool = False
    ) -> np.ndarray:
        """
        Convolve two real sequences.

        Both operands are zero-padded to the smallest power of two that is
        at least ``out_len``. Entries of the full product beyond the padded
        size wrap around onto the lowest indices, so callers asking for a
        truncated product must only read indices that are not aliased.

        Args:
            x: First operand
            y: Second operand
            out_len: Length of the result, defaults to ``len(x)+len(y)-1``
            reverse_x: Reverse the order of ``x`` before convolving
            reverse_y: Reverse the order of ``y`` before convolving

        Returns:
            np.ndarray: Real sequence of length ``out_len``

        Raises:
            ValueError: If an operand is empty or ``out_len`` is shorter
                than either operand
        """
        x = np.asarray(x, dtype=float)
        y = np.asarray(y, dtype=float)
        zx, zy = len(x), len(y)

        if zx == 0 or zy == 0:
            raise ValueError("Cannot convolve an empty sequence")

        if not out_len:
            out_len = zx + zy - 1
        elif out_len < max(zx, zy):
            raise ValueError(
                f"Output length {out_len} is shorter than the operands "
                f"({zx}, {zy})"
            )

        level = (out_len - 1).bit_length()
        size = 1 << level
        if level > self.levels:
            self.levels = level
            self.resize_tables()

        cx = np.zeros(size, dtype=complex)
        cy = np.zeros(size, dtype=complex)
        cx[:zx] = x[::-1] if reverse_x else x
        cy[:zy] = y[::-1] if reverse_y else y

        product = self.transform(cx) * self.transform(cy)

        # inverse: the same transform, then undo the index reversal
        inverse = self.transform(product)
        inverse[1:] = inverse[1:][::-1].copy()

        return inverse[:out_len].real / size


# Global engine instance
_engine: Optional[FFT] = None


def get_engine() -> FFT:
    """
    Get or create the global FFT engine.

    Returns:
        FFT: The engine shared by layers created without an explicit one
    """
    global _engine
    if _engine is None:
        _engine = FFT()
    return _engine
