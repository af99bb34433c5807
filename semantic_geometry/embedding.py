"""
Spherical Embedding: rank -> point on S³
=========================================

One canonical construction, a Fibonacci lattice on S² lifted to S³ by the
inverse Hopf map:

    t      = (i + 0.5) / N              midpoint rule, never exactly a pole
    y      = 1 - 2t
    r      = sqrt(max(0, 1 - y²))
    θ      = 2π · t · φ                 golden ratio longitude
    (x, z) = (r cos θ, r sin θ)
    ψ      = 2π · t · ρ                 plastic constant fiber phase

    |z1|² = (1 + x) / 2,  |z2|² = (1 - x) / 2,  phase = atan2(z, y)
    z1 = |z1| e^{iψ},     z2 = |z2| e^{i(ψ - phase)}
    position = (Re z1, Im z1, Re z2, Im z2) / ‖·‖

φ and ρ are incommensurate, so the base-sphere angle and the fiber angle
never fall into periodic alignment. The map (i, N) -> position is pure.
"""

from __future__ import annotations
from typing import Union

import numpy as np

from .constants import PHI, PSI, TAU, NORM_TOLERANCE
from .errors import InvariantViolation

ArrayLike = Union[np.ndarray, range, list]


# =============================================================================
# Hopf fibration
# =============================================================================

def hopf_inverse(s2_points: np.ndarray, fiber_angles: np.ndarray) -> np.ndarray:
    """
    Lift points on S² to S³.

    Args:
        s2_points: (n, 3) array of unit vectors (x, y, z)
        fiber_angles: (n,) phase selecting a point on each fiber circle

    Returns:
        (n, 4) array of points on S³
    """
    x, y, z = s2_points[:, 0], s2_points[:, 1], s2_points[:, 2]
    r1 = np.sqrt(np.maximum(0.0, (1.0 + x) / 2.0))
    r2 = np.sqrt(np.maximum(0.0, (1.0 - x) / 2.0))
    phase = np.arctan2(z, y)
    second = fiber_angles - phase
    return np.stack([
        r1 * np.cos(fiber_angles),
        r1 * np.sin(fiber_angles),
        r2 * np.cos(second),
        r2 * np.sin(second),
    ], axis=1)


def hopf_forward(s3_points: np.ndarray) -> np.ndarray:
    """
    Project points on S³ to S² (inverse of `hopf_inverse` up to the fiber).

    h(z1, z2) = (|z1|² - |z2|², 2 Re(z1 z̄2), 2 Im(z1 z̄2))
    """
    z1 = s3_points[:, 0] + 1j * s3_points[:, 1]
    z2 = s3_points[:, 2] + 1j * s3_points[:, 3]
    cross = z1 * np.conj(z2)
    return np.stack([
        np.abs(z1) ** 2 - np.abs(z2) ** 2,
        2.0 * cross.real,
        2.0 * cross.imag,
    ], axis=1)


def normalize_rows(points: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(points, axis=1, keepdims=True)
    if np.any(norms < 1e-15):
        raise InvariantViolation("Degenerate point on S³ (zero norm)")
    return points / norms


# =============================================================================
# Fibonacci lattice on S³
# =============================================================================

def fibonacci_s3(indices: ArrayLike, total: int) -> np.ndarray:
    """
    Embed ranks into S³.

    Args:
        indices: Ranks in [0, total)
        total: N, the number of points in this distribution

    Returns:
        (n, 4) float64 array of unit vectors
    """
    if total <= 0:
        raise ValueError(f"total must be positive, got {total}")
    i = np.asarray(indices, dtype=np.float64)
    if i.ndim != 1:
        raise ValueError("indices must be one-dimensional")
    if len(i) and (i.min() < 0 or i.max() >= total):
        raise ValueError(f"indices must lie in [0, {total})")

    t = (i + 0.5) / float(total)
    y = 1.0 - 2.0 * t
    radius = np.sqrt(np.maximum(0.0, 1.0 - y * y))
    theta = TAU * t * PHI
    s2 = np.stack([radius * np.cos(theta), y, radius * np.sin(theta)], axis=1)
    fiber = TAU * t * PSI
    return normalize_rows(hopf_inverse(s2, fiber))


def point_on_s3(index: int, total: int) -> np.ndarray:
    """Scalar convenience around `fibonacci_s3`."""
    return fibonacci_s3(np.array([index]), total)[0]


def check_unit_norm(positions: np.ndarray, tolerance: float = NORM_TOLERANCE):
    """Every row must have ‖p‖ = 1 within tolerance."""
    if len(positions) == 0:
        return
    deviation = np.abs(np.linalg.norm(positions, axis=1) - 1.0)
    worst = float(deviation.max())
    if worst >= tolerance:
        raise InvariantViolation(f"Position off the unit sphere (|‖p‖ - 1| = {worst:.3e})")
