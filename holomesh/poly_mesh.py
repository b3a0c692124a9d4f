"""Poly-mesh builder: deduplicated vertex pools plus quads, with per-palette-entry caching."""

from __future__ import annotations

import logging
from typing import Dict, List, Sequence, Tuple

from .containers import IndexedSet
from .model import PolyMesh, ResolvedFace
from .vecmath import Vec2, Vec3, add3, round3


logger = logging.getLogger(__name__)

Quad = List[Tuple[int, int, int]]
# Normal index and the four UV indices of one face.
FaceIndices = Tuple[int, Tuple[int, ...]]


class PolyMeshBuilder:
    """Accumulates block faces into one poly mesh.

    A block's normals and UVs are the same at every placement, so the indices
    found for a palette entry the first time are reused for its later placements;
    only positions are deduplicated again.
    """

    def __init__(self, template_palette: Sequence[Sequence[ResolvedFace]] = ()) -> None:
        self.template_palette = template_palette
        self.positions: IndexedSet[Vec3] = IndexedSet()
        self.normals: IndexedSet[Vec3] = IndexedSet()
        self.uvs: IndexedSet[Vec2] = IndexedSet()
        self._quads: List[Tuple[float, Quad]] = []
        self._palette_cache: Dict[int, List[FaceIndices]] = {}

    def add(self, faces: Sequence[ResolvedFace], offset: Sequence[float] = (0.0, 0.0, 0.0)) -> List[FaceIndices]:
        """Insert faces translated by ``offset``; returns the normal/UV indices used by each face."""

        indices: List[FaceIndices] = []
        for face in faces:
            normal_index = self.normals.add(tuple(face.normal))
            uv_indices = tuple(self.uvs.add(tuple(vertex.uv)) for vertex in face.vertices)
            indices.append((normal_index, uv_indices))
        self._add_quads(faces, indices, offset)
        return indices

    def add_palette_entry(self, palette_index: int, offset: Sequence[float] = (0.0, 0.0, 0.0)) -> None:
        faces = self.template_palette[palette_index]
        cached = self._palette_cache.get(palette_index)
        if cached is None:
            self._palette_cache[palette_index] = self.add(faces, offset)
        else:
            self._add_quads(faces, cached, offset)

    def _add_quads(self, faces: Sequence[ResolvedFace], indices: Sequence[FaceIndices], offset: Sequence[float]) -> None:
        for face, (normal_index, uv_indices) in zip(faces, indices):
            quad = [
                (self.positions.add(round3(add3(offset, vertex.pos))), normal_index, uv_index)
                for vertex, uv_index in zip(face.vertices, uv_indices)
            ]
            self._quads.append((face.transparency, quad))

    def export(self) -> PolyMesh:
        """The mesh so far, with translucent faces ordered after opaque ones."""

        ordered = sorted(self._quads, key=lambda item: item[0])
        return PolyMesh(
            positions=self.positions.to_list(),
            normals=self.normals.to_list(),
            uvs=self.uvs.to_list(),
            polys=[list(quad) for _, quad in ordered],
        )

    def clear(self) -> None:
        self.positions.clear()
        self.normals.clear()
        self.uvs.clear()
        self._quads.clear()
        self._palette_cache.clear()

    def __len__(self) -> int:
        return len(self._quads)
