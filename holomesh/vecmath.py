"""Vector helpers for block-space geometry (units are 1/16 of a block)."""

from __future__ import annotations

import math
from typing import Sequence, Tuple

import numpy as np


Vec2 = Tuple[float, float]
Vec3 = Tuple[float, float, float]

BLOCK_PIVOT: Vec3 = (8.0, 8.0, 8.0)


def add3(a: Sequence[float], b: Sequence[float]) -> Vec3:
    return (a[0] + b[0], a[1] + b[1], a[2] + b[2])


def sub3(a: Sequence[float], b: Sequence[float]) -> Vec3:
    return (a[0] - b[0], a[1] - b[1], a[2] - b[2])


def _cos_sin(deg: float) -> Tuple[float, float]:
    # Quarter turns are exact so axis-aligned geometry stays on the integer grid.
    if float(deg).is_integer() and int(deg) % 90 == 0:
        return ((1.0, 0.0), (0.0, 1.0), (-1.0, 0.0), (0.0, -1.0))[(int(deg) // 90) % 4]
    rad = math.radians(deg)
    return math.cos(rad), math.sin(rad)


def rotate2(x: float, y: float, deg: float) -> Vec2:
    c, s = _cos_sin(deg)
    return (x * c - y * s, x * s + y * c)


def apply_euler_rotation(pos: Sequence[float], rotation: Sequence[float], pivot: Sequence[float] = BLOCK_PIVOT) -> Vec3:
    """Rotate ``pos`` around ``pivot`` by XYZ Euler angles in degrees, applied X then Y then Z.

    Each angle is negated before use, which matches the handedness of the block
    geometry format.
    """

    x, y, z = sub3(pos, pivot)
    y, z = rotate2(y, z, -rotation[0])
    x, z = rotate2(x, z, -rotation[1])
    x, y = rotate2(x, y, -rotation[2])
    return add3((x, y, z), pivot)


def rotate_direction(vec: Sequence[float], rotation: Sequence[float]) -> Vec3:
    return apply_euler_rotation(vec, rotation, (0.0, 0.0, 0.0))


def apply_transform(pos: Sequence[float], matrix: Sequence[Sequence[float]]) -> Vec3:
    """Apply a row-major 4x4 matrix to a point, with homogeneous divide."""

    m = np.asarray(matrix, dtype=np.float64)
    if m.shape != (4, 4):
        raise ValueError("transform must be a 4x4 matrix")
    out = m @ np.array([pos[0], pos[1], pos[2], 1.0], dtype=np.float64)
    w = out[3] if out[3] != 0 else 1.0
    return (float(out[0] / w), float(out[1] / w), float(out[2] / w))


def round3(vec: Sequence[float], digits: int = 4) -> Vec3:
    # +0.0 folds negative zero into the same key as zero.
    return (round(vec[0], digits) + 0.0, round(vec[1], digits) + 0.0, round(vec[2], digits) + 0.0)


def transform_direction(vec: Sequence[float], matrix: Sequence[Sequence[float]]) -> Vec3:
    """Apply the linear part of a 4x4 matrix to a direction and renormalize it."""

    m = np.asarray(matrix, dtype=np.float64)[:3, :3]
    out = m @ np.asarray(vec, dtype=np.float64)
    length = float(np.linalg.norm(out))
    if length == 0:
        return (float(vec[0]), float(vec[1]), float(vec[2]))
    return (float(out[0] / length), float(out[1] / length), float(out[2] / length))
