"""
Integer encoding of binned reference positions used by PS4G files.

A position is packed into a single non-negative 32-bit integer: the chromosome index occupies the
high bits and the position divided by the bin size occupies the low bits.

Examples:
    >>> enc = PositionEncoder(bin_size=256)
    >>> value = enc.encode(1, 1000)
    >>> enc.decode(value)
    (1, 768)
"""
from typing import Union

import numpy as np

from panhap.utils.resources import jit


# Exceptions and Warnings ----------------------------------------------------------------------------------------------
class EncodingError(ValueError): pass


# Classes --------------------------------------------------------------------------------------------------------------
class PositionEncoder:
    """
    Packs ``(chromosome index, position)`` pairs into int32 values and back.

    Layout (most to least significant): 1 unused sign bit, 7 bits of chromosome index,
    24 bits of ``position // bin_size``.

    Args:
        bin_size: Number of base pairs per bin, must be positive.
    """
    CHROM_BITS = 7
    BIN_BITS = 24
    MAX_CHROM_INDEX = (1 << CHROM_BITS) - 1
    MAX_BIN = (1 << BIN_BITS) - 1
    _BIN_MASK = MAX_BIN
    __slots__ = ('_bin_size',)

    def __init__(self, bin_size: int = 256):
        if bin_size <= 0: raise EncodingError(f'Bin size must be positive, got {bin_size}')
        self._bin_size = int(bin_size)

    def __repr__(self): return f'{self.__class__.__name__}(bin_size={self._bin_size})'
    def __eq__(self, other): return isinstance(other, PositionEncoder) and other._bin_size == self._bin_size
    def __hash__(self): return hash(self._bin_size)

    @property
    def bin_size(self) -> int: return self._bin_size

    def encode(self, chrom_index: int, position: int) -> int:
        """
        Encodes a chromosome index and a base-pair position.

        Args:
            chrom_index: Index of the reference contig (0-127).
            position: Non-negative base-pair position.

        Returns:
            The packed integer.

        Raises:
            EncodingError: If either value does not fit its bit field.
        """
        if not 0 <= chrom_index <= self.MAX_CHROM_INDEX:
            raise EncodingError(f'Chromosome index {chrom_index} outside 0-{self.MAX_CHROM_INDEX}')
        if position < 0: raise EncodingError(f'Position must be >= 0, got {position}')
        if (binned := position // self._bin_size) > self.MAX_BIN:
            raise EncodingError(f'Position {position} exceeds the encodable range for bin size {self._bin_size}')
        return (chrom_index << self.BIN_BITS) | binned

    def decode_bin(self, value: int) -> tuple[int, int]:
        """Returns ``(chrom_index, bin)`` for an encoded value."""
        if value < 0: raise EncodingError(f'Encoded positions are non-negative, got {value}')
        return value >> self.BIN_BITS, value & self._BIN_MASK

    def decode(self, value: int) -> tuple[int, int]:
        """Returns ``(chrom_index, position)`` where position is the first base of the bin."""
        chrom_index, binned = self.decode_bin(value)
        return chrom_index, binned * self._bin_size

    def encode_array(self, chrom_indices: Union[np.ndarray, list], positions: Union[np.ndarray, list]) -> np.ndarray:
        """
        Vectorised ``encode``.

        Args:
            chrom_indices: Chromosome indices.
            positions: Base-pair positions, same length as `chrom_indices`.

        Returns:
            An int32 array of encoded values.
        """
        chrom_indices = np.asarray(chrom_indices, dtype=np.int64)
        positions = np.asarray(positions, dtype=np.int64)
        if chrom_indices.shape != positions.shape: raise EncodingError('Index and position arrays differ in shape')
        if len(chrom_indices) and (
                chrom_indices.min() < 0 or chrom_indices.max() > self.MAX_CHROM_INDEX or
                positions.min() < 0 or positions.max() // self._bin_size > self.MAX_BIN):
            raise EncodingError('Chromosome index or position outside the encodable range')
        return _encode_kernel(chrom_indices, positions, self._bin_size, self.BIN_BITS)

    def decode_array(self, values: Union[np.ndarray, list]) -> tuple[np.ndarray, np.ndarray]:
        """Vectorised ``decode``, returning ``(chrom_indices, positions)`` arrays."""
        values = np.asarray(values, dtype=np.int64)
        if len(values) and values.min() < 0: raise EncodingError('Encoded positions are non-negative')
        return _decode_kernel(values, self._bin_size, self.BIN_BITS, self._BIN_MASK)


# Kernels --------------------------------------------------------------------------------------------------------------
@jit(nopython=True, cache=True, nogil=True)
def _encode_kernel(chrom_indices, positions, bin_size, bin_bits):
    out = np.empty(len(positions), dtype=np.int32)
    for i in range(len(positions)):
        out[i] = (chrom_indices[i] << bin_bits) | (positions[i] // bin_size)
    return out


@jit(nopython=True, cache=True, nogil=True)
def _decode_kernel(values, bin_size, bin_bits, bin_mask):
    n = len(values)
    chroms = np.empty(n, dtype=np.int32)
    positions = np.empty(n, dtype=np.int64)
    for i in range(n):
        chroms[i] = values[i] >> bin_bits
        positions[i] = (values[i] & bin_mask) * bin_size
    return chroms, positions
