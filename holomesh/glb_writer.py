"""Binary glTF preview of compiled poly meshes, with the atlas embedded."""

from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import Dict, List, Sequence, Tuple

import numpy as np
from pygltflib import (
    GLTF2,
    Accessor,
    Asset,
    Attributes,
    Buffer,
    BufferView,
    Image,
    Material,
    Mesh,
    Node,
    PbrMetallicRoughness,
    Primitive,
    Sampler,
    Scene,
    Texture,
    TextureInfo,
)

from .model import PolyMesh


logger = logging.getLogger(__name__)

ARRAY_BUFFER = 34962
ELEMENT_ARRAY_BUFFER = 34963

# Atlas texels must stay crisp and must not bleed into their neighbours.
NEAREST = 9728
CLAMP_TO_EDGE = 33071

_COMPONENT_TYPES = {np.dtype(np.float32): 5126, np.dtype(np.uint32): 5125}
_ACCESSOR_TYPES = {1: "SCALAR", 2: "VEC2", 3: "VEC3"}

# Geometry is in sixteenths of a block; the preview uses one unit per block.
GEOMETRY_SCALE = 1.0 / 16.0
QUAD_TRIANGLES = (0, 1, 2, 0, 2, 3)


def _align4(n: int) -> int:
    return int(math.ceil(n / 4.0) * 4)


def poly_mesh_arrays(mesh: PolyMesh, *, scale: float = GEOMETRY_SCALE) -> Dict[str, np.ndarray]:
    """Unwelded vertex arrays for a poly mesh: four vertices per quad, two triangles each."""

    count = len(mesh.polys)
    positions = np.zeros((count * 4, 3), dtype=np.float32)
    normals = np.zeros((count * 4, 3), dtype=np.float32)
    texcoords = np.zeros((count * 4, 2), dtype=np.float32)
    for qi, quad in enumerate(mesh.polys):
        for vi, (p, n, t) in enumerate(quad):
            positions[qi * 4 + vi] = mesh.positions[p]
            normals[qi * 4 + vi] = mesh.normals[n]
            u, v = mesh.uvs[t]
            # Poly mesh UVs grow upwards; glTF texture coordinates grow downwards.
            texcoords[qi * 4 + vi] = (u, 1.0 - v)
    positions *= scale
    indices = (np.arange(count, dtype=np.uint32)[:, None] * 4 + np.asarray(QUAD_TRIANGLES, dtype=np.uint32)).reshape(-1)
    return {"positions": positions, "normals": normals, "texcoords": texcoords, "indices": indices}


class _GlbBlob:
    """The single binary chunk of a GLB file, plus the views and accessors into it."""

    def __init__(self) -> None:
        self.data = bytearray()
        self.views: List[BufferView] = []
        self.accessors: List[Accessor] = []

    def view(self, payload: bytes, target: int | None = None) -> int:
        offset = len(self.data)
        self.data.extend(payload)
        self.data.extend(b"\x00" * (_align4(len(self.data)) - len(self.data)))
        self.views.append(BufferView(buffer=0, byteOffset=offset, byteLength=len(payload), target=target))
        return len(self.views) - 1

    def accessor(self, array: np.ndarray, target: int, *, bounds: bool = False) -> int:
        width = 1 if array.ndim == 1 else int(array.shape[1])
        self.accessors.append(
            Accessor(
                bufferView=self.view(array.tobytes(), target),
                componentType=_COMPONENT_TYPES[array.dtype],
                count=int(array.shape[0]),
                type=_ACCESSOR_TYPES[width],
                min=array.min(axis=0).tolist() if bounds else None,
                max=array.max(axis=0).tolist() if bounds else None,
            )
        )
        return len(self.accessors) - 1

    def layer_primitive(self, mesh: PolyMesh) -> Primitive:
        arrays = poly_mesh_arrays(mesh)
        attributes = Attributes(
            POSITION=self.accessor(arrays["positions"], ARRAY_BUFFER, bounds=True),
            NORMAL=self.accessor(arrays["normals"], ARRAY_BUFFER),
            TEXCOORD_0=self.accessor(arrays["texcoords"], ARRAY_BUFFER),
        )
        return Primitive(attributes=attributes, indices=self.accessor(arrays["indices"], ELEMENT_ARRAY_BUFFER), material=0)


def _hologram_material(name: str | None) -> Material:
    # Translucent and visible from behind, like the in-game hologram.
    return Material(
        name=name,
        pbrMetallicRoughness=PbrMetallicRoughness(
            baseColorFactor=[1.0, 1.0, 1.0, 1.0],
            baseColorTexture=TextureInfo(index=0),
            metallicFactor=0.0,
            roughnessFactor=1.0,
        ),
        alphaMode="BLEND",
        doubleSided=True,
    )


def write_glb(
    output_path: str | Path,
    *,
    meshes: Sequence[Tuple[str, PolyMesh]],
    texture_png: bytes,
    name_prefix: str | None = None,
) -> None:
    """One glTF node per non-empty layer mesh, all sharing the atlas material."""

    blob = _GlbBlob()
    atlas_view = blob.view(texture_png)

    gltf_meshes: List[Mesh] = []
    for name, mesh in meshes:
        if not mesh.polys:
            logger.debug("Skipping empty mesh %s", name)
            continue
        gltf_meshes.append(Mesh(primitives=[blob.layer_primitive(mesh)], name=name))
    nodes = [Node(mesh=i, name=m.name) for i, m in enumerate(gltf_meshes)]

    def prefixed(suffix: str) -> str | None:
        return f"{name_prefix}_{suffix}" if name_prefix else None

    gltf = GLTF2(
        asset=Asset(version="2.0"),
        buffers=[Buffer(byteLength=len(blob.data))],
        bufferViews=blob.views,
        accessors=blob.accessors,
        meshes=gltf_meshes,
        images=[Image(bufferView=atlas_view, mimeType="image/png", name=prefixed("atlas"))],
        samplers=[Sampler(magFilter=NEAREST, minFilter=NEAREST, wrapS=CLAMP_TO_EDGE, wrapT=CLAMP_TO_EDGE)],
        textures=[Texture(sampler=0, source=0, name=prefixed("texture"))],
        materials=[_hologram_material(prefixed("hologram"))],
        nodes=nodes,
        scenes=[Scene(nodes=list(range(len(nodes))))],
        scene=0,
    )
    gltf.set_binary_blob(bytes(blob.data))

    out_path = Path(output_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    gltf.save_binary(str(out_path))
    logger.info("Wrote %s with %d layer meshes", out_path, len(nodes))
