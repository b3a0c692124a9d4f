"""High-level pipeline tying together shape resolution, atlas packing, mesh building and exporters."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Sequence, Tuple

from . import glb_writer, uv_export
from .atlas import DEFAULT_OPACITIES, AtlasBuildResult, TextureAtlas
from .block_geo import DEFAULT_IGNORED_BLOCKS, DEFAULT_SCALE, BlockGeoMaker, resolve_template_face_uvs
from .entity_geo import EntityModelLibrary
from .model import Block, PolyMesh, ResolvedFace, TextureReference
from .poly_mesh import PolyMeshBuilder
from .resources import LocalResourcePack, ResourceFetcher
from .shapes import ShapeRules
from .terrain import TerrainTextureResolver, TextureAtlasMappings, TextureMetadata
from .vecmath import Vec3


logger = logging.getLogger(__name__)

ATLAS_MAPPINGS_FILE = "textureAtlasMappings.json"
GEOMETRY_FILE = "hologram.geo.json"
GEOMETRY_IDENTIFIER = "geometry.holomesh.hologram"


@dataclass(slots=True)
class AtlasOptions:
    outline_width: float = 0.25  # pixels; 0 disables outlines
    outline_color: str = "#0000FF"
    outline_opacity: float = 0.65
    multiple_opacities: bool = True
    opacity: float = 0.9  # used when multiple_opacities is off
    opacities: List[float] = field(default_factory=lambda: list(DEFAULT_OPACITIES))


@dataclass(slots=True)
class PipelineOptions:
    scale: float = DEFAULT_SCALE
    ignored_blocks: List[str] = field(default_factory=lambda: list(DEFAULT_IGNORED_BLOCKS))
    atlas: AtlasOptions = field(default_factory=AtlasOptions)


@dataclass(slots=True)
class Structure:
    """A parsed structure: its size, block palette, and one or two palette-index layers.

    Indices are flattened as ``(x * size_y + y) * size_z + z``; a negative or
    out-of-palette index is an empty position.
    """

    size: Tuple[int, int, int]
    palette: List[Block]
    layers: List[List[int]]

    def __post_init__(self) -> None:
        if not 1 <= len(self.layers) <= 2:
            raise ValueError("A structure has one or two block layers")
        volume = self.size[0] * self.size[1] * self.size[2]
        for layer in self.layers:
            if len(layer) != volume:
                raise ValueError(f"Block layer has {len(layer)} indices; expected {volume}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Structure":
        size = tuple(int(v) for v in data["size"])
        return cls(
            size=(size[0], size[1], size[2]),
            palette=[Block.from_dict(b) for b in data["palette"]],
            layers=[[int(i) for i in layer] for layer in data["block_indices"]],
        )

    @classmethod
    def load(cls, path: str | Path) -> "Structure":
        return cls.from_dict(json.loads(Path(path).read_text(encoding="utf-8")))

    def palette_index(self, layer: int, x: int, y: int, z: int) -> int:
        return self.layers[layer][(x * self.size[1] + y) * self.size[2] + z]


@dataclass(slots=True)
class CompileResult:
    atlas: AtlasBuildResult
    texture_refs: List[TextureReference]
    templates: List[List[ResolvedFace] | None]
    centers: List[Vec3 | None]
    layers: List[PolyMesh]


def block_offset(x: int, y: int, z: int) -> Vec3:
    """Geometry-space origin of the block at structure position (x, y, z)."""

    return (-16.0 * x - 8.0, 16.0 * y, 16.0 * z - 8.0)


async def compile_structure(
    structure: Structure,
    rules: ShapeRules,
    fetcher: ResourceFetcher,
    metadata: TextureMetadata,
    options: PipelineOptions | None = None,
) -> CompileResult:
    """Resolve every palette entry, pack the atlas, and build one poly mesh per y layer."""

    opts = options or PipelineOptions()
    ignored = set(opts.ignored_blocks)

    entity_models = EntityModelLibrary(fetcher)
    await entity_models.preload(rules)
    maker = BlockGeoMaker(rules, scale=opts.scale, ignored_blocks=ignored, entity_models=entity_models)

    unresolved: List[Any] = []
    centers: List[Vec3 | None] = []
    for block in structure.palette:
        if block.name in ignored:
            unresolved.append(None)
            centers.append(None)
            continue
        faces, center = maker.resolve(block)
        unresolved.append(faces)
        centers.append(center)
    logger.info("Made geometry templates for %d palette entries", len(structure.palette))

    texture_refs = maker.texture_refs.to_list()
    atlas = TextureAtlas(
        fetcher,
        TerrainTextureResolver(metadata),
        outline_width=float(opts.atlas.outline_width),
        outline_color=str(opts.atlas.outline_color),
        outline_opacity=float(opts.atlas.outline_opacity),
        multiple_opacities=bool(opts.atlas.multiple_opacities),
        opacity=float(opts.atlas.opacity),
        opacities=list(opts.atlas.opacities),
    )
    atlas_result = await atlas.pack(texture_refs)

    templates = [resolve_template_face_uvs(faces, atlas_result.uvs) if faces is not None else None for faces in unresolved]
    builder = PolyMeshBuilder([faces or [] for faces in templates])
    layers: List[PolyMesh] = []
    size_x, size_y, size_z = structure.size
    for y in range(size_y):
        for x in range(size_x):
            for z in range(size_z):
                for layer in range(len(structure.layers)):
                    index = structure.palette_index(layer, x, y, z)
                    if not 0 <= index < len(templates) or templates[index] is None:
                        continue
                    builder.add_palette_entry(index, block_offset(x, y, z))
        logger.debug("Layer %d has %d quads", y, len(builder))
        layers.append(builder.export())
        builder.clear()

    return CompileResult(atlas=atlas_result, texture_refs=texture_refs, templates=templates, centers=centers, layers=layers)


def geometry_json(result: CompileResult) -> Dict[str, Any]:
    bones = [
        {"name": f"l_{y}", "pivot": [8, 0, -8], "poly_mesh": mesh.to_dict()}
        for y, mesh in enumerate(result.layers)
    ]
    return {
        "format_version": "1.16.0",
        "minecraft:geometry": [
            {
                "description": {
                    "identifier": GEOMETRY_IDENTIFIER,
                    "texture_width": result.atlas.width,
                    "texture_height": result.atlas.height,
                },
                "bones": bones,
            }
        ],
    }


def convert(
    structure_path: str | Path,
    data_dir: str | Path,
    resource_packs: Sequence[str | Path],
    output_dir: str | Path,
    *,
    glb_out: str | Path | None = None,
    uv_json_out: str | Path | None = None,
    options: PipelineOptions | None = None,
) -> CompileResult:
    """Compile a structure file and write atlas PNGs, the geometry JSON and optional extras."""

    structure = Structure.load(structure_path)
    rules = ShapeRules.load(data_dir)
    fetcher = LocalResourcePack(resource_packs)
    mappings = TextureAtlasMappings.load(Path(data_dir) / ATLAS_MAPPINGS_FILE)

    async def run() -> CompileResult:
        metadata = await TextureMetadata.fetch(fetcher, mappings)
        return await compile_structure(structure, rules, fetcher, metadata, options)

    result = asyncio.run(run())

    out_dir = Path(output_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    for name, png in result.atlas.images:
        (out_dir / f"{name}.png").write_bytes(png)
    (out_dir / GEOMETRY_FILE).write_text(json.dumps(geometry_json(result), separators=(",", ":")), encoding="utf-8")
    logger.info("Wrote %d atlas images and %d layers to %s", len(result.atlas.images), len(result.layers), out_dir)

    if uv_json_out:
        uv_export.write_uv_json(
            uv_json_out,
            width=result.atlas.width,
            height=result.atlas.height,
            refs=result.texture_refs,
            uvs=result.atlas.uvs,
        )

    if glb_out:
        glb_writer.write_glb(
            glb_out,
            meshes=[(f"l_{y}", mesh) for y, mesh in enumerate(result.layers)],
            texture_png=result.atlas.images[-1][1],
            name_prefix=Path(glb_out).stem,
        )
    return result
