"""
4D Hilbert curve over a fixed 32-bit grid (128-bit indices).

Positions on S³ are rescaled from [-1, 1] to [0, 1] per axis, quantized to
32 bits per axis, and mapped with Skilling's transpose algorithm
("Programming the Hilbert Curve", AIP Conf. Proc. 707, 2004).

Encoding is vectorised over numpy arrays; every index is kept as four
big-endian uint32 words (`HilbertBatch`) and converted to Python ints or
32-digit hex strings on demand. The grid precision never changes, so
indices from different runs and machines are comparable.
"""

from __future__ import annotations
from dataclasses import dataclass
from functools import total_ordering
from typing import List, Sequence

import numpy as np

from .constants import HILBERT_BITS, HILBERT_DIMENSIONS, HILBERT_INDEX_BITS

_WORD_BITS = 32
_WORDS = HILBERT_INDEX_BITS // _WORD_BITS


# =============================================================================
# Index value
# =============================================================================

@total_ordering
@dataclass(frozen=True)
class HilbertIndex:
    """128-bit Hilbert index."""
    value: int

    def __post_init__(self):
        if not 0 <= self.value < (1 << HILBERT_INDEX_BITS):
            raise ValueError(f"Hilbert index out of range: {self.value}")

    def hex(self) -> str:
        """Zero-padded lowercase hex; lexicographic order equals numeric order."""
        return f"{self.value:0{HILBERT_INDEX_BITS // 4}x}"

    def to_bytes(self) -> bytes:
        return self.value.to_bytes(HILBERT_INDEX_BITS // 8, 'big')

    @classmethod
    def from_hex(cls, text: str) -> 'HilbertIndex':
        return cls(int(text, 16))

    def __int__(self) -> int:
        return self.value

    def __lt__(self, other: 'HilbertIndex') -> bool:
        return self.value < other.value

    def __str__(self) -> str:
        return self.hex()


@dataclass
class HilbertBatch:
    """Indices for a block of points as (n, 4) big-endian uint32 words."""
    words: np.ndarray

    def __len__(self) -> int:
        return len(self.words)

    def value(self, i: int) -> int:
        w = self.words[i]
        return (int(w[0]) << 96) | (int(w[1]) << 64) | (int(w[2]) << 32) | int(w[3])

    def index(self, i: int) -> HilbertIndex:
        return HilbertIndex(self.value(i))

    def hex_strings(self) -> List[str]:
        return [f"{a:08x}{b:08x}{c:08x}{d:08x}" for a, b, c, d in self.words.tolist()]

    def values(self) -> List[int]:
        return [(a << 96) | (b << 64) | (c << 32) | d for a, b, c, d in self.words.tolist()]


# =============================================================================
# Coordinate handling
# =============================================================================

def to_hypercube(positions: np.ndarray) -> np.ndarray:
    """[-1, 1] -> [0, 1] componentwise."""
    return (np.asarray(positions, dtype=np.float64) + 1.0) / 2.0


def quantize(unit_coords: np.ndarray, bits: int = HILBERT_BITS) -> np.ndarray:
    """Clamp to [0, 1] and scale to the integer grid [0, 2^bits - 1] (truncating)."""
    max_val = float((1 << bits) - 1)
    clamped = np.clip(np.asarray(unit_coords, dtype=np.float64), 0.0, 1.0)
    return np.floor(clamped * max_val).astype(np.uint64)


# =============================================================================
# Skilling transform
# =============================================================================

def _axes_to_transpose(X: np.ndarray, bits: int) -> np.ndarray:
    """In-place AxesToTranspose over rows of X ((n, dims) uint64)."""
    n = X.shape[1]
    M = np.uint64(1 << (bits - 1))

    # Inverse undo
    Q = M
    while Q > 1:
        P = Q - np.uint64(1)
        for i in range(n):
            x0 = X[:, 0]
            high = (X[:, i] & Q) != 0
            t = np.where(high, np.uint64(0), (x0 ^ X[:, i]) & P)
            X[:, 0] = np.where(high, x0 ^ P, x0) ^ t
            if i:
                X[:, i] ^= t
        Q >>= np.uint64(1)

    # Gray encode
    for i in range(1, n):
        X[:, i] ^= X[:, i - 1]
    t = np.zeros(len(X), dtype=np.uint64)
    Q = M
    while Q > 1:
        t = np.where((X[:, n - 1] & Q) != 0, t ^ (Q - np.uint64(1)), t)
        Q >>= np.uint64(1)
    X ^= t[:, None]
    return X


def _transpose_to_axes(X: List[int], bits: int) -> List[int]:
    """Scalar TransposeToAxes (inverse of `_axes_to_transpose`)."""
    n = len(X)
    N = 2 << (bits - 1)

    # Gray decode by H ^ (H/2)
    t = X[n - 1] >> 1
    for i in range(n - 1, 0, -1):
        X[i] ^= X[i - 1]
    X[0] ^= t

    # Undo excess work
    Q = 2
    while Q != N:
        P = Q - 1
        for i in range(n - 1, -1, -1):
            if X[i] & Q:
                X[0] ^= P
            else:
                t = (X[0] ^ X[i]) & P
                X[0] ^= t
                X[i] ^= t
        Q <<= 1
    return X


def _interleave(X: np.ndarray, bits: int) -> np.ndarray:
    """Transposed form -> (n, 4) big-endian uint32 words of the index."""
    n_points, dims = X.shape
    words = np.zeros((n_points, _WORDS), dtype=np.uint64)
    # bit position counted from the most significant bit of the 128-bit word
    position = _WORDS * _WORD_BITS - dims * bits
    for j in range(bits - 1, -1, -1):
        for i in range(dims):
            bit = (X[:, i] >> np.uint64(j)) & np.uint64(1)
            word, offset = divmod(position, _WORD_BITS)
            words[:, word] |= bit << np.uint64(_WORD_BITS - 1 - offset)
            position += 1
    return words.astype(np.uint32)


def _deinterleave(value: int, dims: int, bits: int) -> List[int]:
    X = [0] * dims
    position = dims * bits - 1
    for j in range(bits - 1, -1, -1):
        for i in range(dims):
            X[i] |= ((value >> position) & 1) << j
            position -= 1
    return X


# =============================================================================
# Public API
# =============================================================================

def encode_grid(grid: np.ndarray, bits: int = HILBERT_BITS) -> HilbertBatch:
    """
    Hilbert indices of integer grid coordinates.

    Args:
        grid: (n, 4) integer coordinates in [0, 2^bits)
    """
    X = np.array(grid, dtype=np.uint64, copy=True)
    if X.ndim != 2 or X.shape[1] != HILBERT_DIMENSIONS:
        raise ValueError(f"Expected (n, {HILBERT_DIMENSIONS}) grid, got {X.shape}")
    if len(X) == 0:
        return HilbertBatch(np.zeros((0, _WORDS), dtype=np.uint32))
    _axes_to_transpose(X, bits)
    return HilbertBatch(_interleave(X, bits))


def encode(positions: np.ndarray, bits: int = HILBERT_BITS) -> HilbertBatch:
    """Hilbert indices of S³ positions ((n, 4) in [-1, 1])."""
    return encode_grid(quantize(to_hypercube(positions), bits), bits)


def encode_point(position: Sequence[float]) -> HilbertIndex:
    return encode(np.asarray([position], dtype=np.float64)).index(0)


def decode(index: HilbertIndex, bits: int = HILBERT_BITS) -> List[int]:
    """Grid coordinates of a Hilbert index (inverse of `encode_grid`)."""
    X = _deinterleave(int(index), HILBERT_DIMENSIONS, bits)
    return _transpose_to_axes(X, bits)
