"""Compile block shapes and structures into poly meshes and a packed texture atlas."""

from .atlas import AtlasBuildResult, TextureAtlas
from .block_geo import BlockGeoMaker, resolve_template_face_uvs
from .model import Block, Cube, ImageUv, PolyMesh, TextureReference
from .pipeline import AtlasOptions, CompileResult, PipelineOptions, Structure, compile_structure, convert
from .poly_mesh import PolyMeshBuilder
from .shapes import ShapeRules

__all__ = [
    "AtlasBuildResult",
    "AtlasOptions",
    "Block",
    "BlockGeoMaker",
    "CompileResult",
    "Cube",
    "ImageUv",
    "PipelineOptions",
    "PolyMesh",
    "PolyMeshBuilder",
    "ShapeRules",
    "Structure",
    "TextureAtlas",
    "TextureReference",
    "compile_structure",
    "convert",
    "resolve_template_face_uvs",
]
