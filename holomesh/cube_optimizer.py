"""Greedy merging and face culling for the final cubes of one block."""

from __future__ import annotations

import json
import logging
from typing import Any, Hashable, List, Sequence, Tuple

from .model import Cube


logger = logging.getLogger(__name__)

AXES = (0, 1, 2)
# Faces sitting on the positive and negative side of each axis.
POSITIVE_FACES = ("west", "up", "south")
NEGATIVE_FACES = ("east", "down", "north")

_TEXTURE_FIELDS = (
    "textures",
    "texture_size",
    "terrain_texture",
    "variant",
    "ignore_eigenvariant",
    "tint",
    "fullbright",
    "arrays",
)


def is_optimizable(cube: Cube) -> bool:
    return cube.rot is None and not cube.extra_rots and cube.transform is None


def _origin(cube: Cube) -> Tuple[float, float, float]:
    t = cube.translate or (0.0, 0.0, 0.0)
    return (cube.pos[0] + t[0], cube.pos[1] + t[1], cube.pos[2] + t[2])


def merge_group_key(cube: Cube, index: int) -> Hashable:
    """Cubes may merge only when their keys are equal.

    Cubes that opt out of merging, carry a translation or any explicit UV get a
    key nothing else can share.
    """

    if (
        cube.disable_merging
        or cube.translate is not None
        or cube.is_flat
        or cube.uv
        or cube.uv_sizes
        or cube.uv_rot
        or cube.box_uv is not None
    ):
        return ("unmergeable", index)
    parts: List[Any] = [getattr(cube, name) for name in _TEXTURE_FIELDS]
    parts.append(cube.block_override.to_dict() if cube.block_override is not None else None)
    parts.append(sorted(cube.flip_textures_horizontally or []))
    parts.append(sorted(cube.flip_textures_vertically or []))
    return json.dumps(parts, sort_keys=True)


def try_merge_one_way(cube1: Cube, cube2: Cube) -> bool:
    """Grow ``cube1`` over ``cube2`` when ``cube2`` is its congruent neighbour on a positive axis."""

    for axis in AXES:
        if cube1.pos[axis] + cube1.size[axis] != cube2.pos[axis]:
            continue
        if any(cube1.pos[i] != cube2.pos[i] or cube1.size[i] != cube2.size[i] for i in AXES if i != axis):
            continue
        cube1.size[axis] += cube2.size[axis]
        pos_face = POSITIVE_FACES[axis]
        neg_face = NEGATIVE_FACES[axis]
        # A side face stays culled only if both halves were covered.
        culled = {f for f in cube1.culled_faces & cube2.culled_faces if f not in (pos_face, neg_face)}
        if pos_face in cube2.culled_faces:
            culled.add(pos_face)
        if neg_face in cube1.culled_faces:
            culled.add(neg_face)
        cube1.culled_faces = culled
        return True
    return False


def _contains(outer: Tuple[float, float, float, float], inner: Tuple[float, float, float, float]) -> bool:
    return outer[0] <= inner[0] and outer[1] <= inner[1] and inner[2] <= outer[2] and inner[3] <= outer[3]


def cull_touching_faces(cube1: Cube, cube2: Cube) -> None:
    """Mark faces hidden by a touching neighbour whose face covers them entirely."""

    if cube1.is_flat or cube2.is_flat:
        return
    o1 = _origin(cube1)
    o2 = _origin(cube2)
    for axis in AXES:
        u, v = (i for i in AXES if i != axis)
        for (lo, lo_o), (hi, hi_o) in (((cube1, o1), (cube2, o2)), ((cube2, o2), (cube1, o1))):
            if lo_o[axis] + lo.size[axis] != hi_o[axis]:
                continue
            lo_rect = (lo_o[u], lo_o[v], lo_o[u] + lo.size[u], lo_o[v] + lo.size[v])
            hi_rect = (hi_o[u], hi_o[v], hi_o[u] + hi.size[u], hi_o[v] + hi.size[v])
            if _contains(lo_rect, hi_rect):
                hi.culled_faces.add(NEGATIVE_FACES[axis])
            if _contains(hi_rect, lo_rect):
                lo.culled_faces.add(POSITIVE_FACES[axis])


def optimize_cubes(cubes: Sequence[Cube]) -> List[Cube]:
    """Merge and cull cubes, returning them ordered by ascending volume.

    Rotated or transformed cubes are passed through untouched.
    """

    fixed: List[Cube] = []
    accepted: List[Tuple[Hashable, Cube]] = []
    for index, cube in enumerate(cubes):
        if not is_optimizable(cube):
            fixed.append(cube)
            continue
        key = merge_group_key(cube, index)
        restart = True
        while restart:
            restart = False
            for i, (other_key, other) in enumerate(accepted):
                if key == other_key:
                    if try_merge_one_way(cube, other):
                        logger.debug("Merged cube at %s into cube at %s", other.pos, cube.pos)
                        del accepted[i]
                        restart = True
                        break
                    if try_merge_one_way(other, cube):
                        logger.debug("Merged cube at %s into cube at %s", cube.pos, other.pos)
                        del accepted[i]
                        cube = other
                        restart = True
                        break
                cull_touching_faces(cube, other)
        accepted.append((key, cube))

    result = fixed + [cube for _, cube in accepted]
    result.sort(key=lambda c: c.volume)
    return result
