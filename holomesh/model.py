"""Data records shared by the shape resolver, atlas packer and mesh builder."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Set, Tuple

from .vecmath import Vec2, Vec3


logger = logging.getLogger(__name__)

FACE_NAMES: Tuple[str, ...] = ("west", "east", "down", "up", "north", "south")
SIDE_FACES = frozenset(("west", "east", "north", "south"))


def strip_namespace(name: str) -> str:
    return name[len("minecraft:"):] if name.startswith("minecraft:") else name


@dataclass(slots=True)
class Block:
    """A block palette entry as produced by the structure parser."""

    name: str
    states: Dict[str, Any] | None = None
    block_entity_data: Dict[str, Any] | None = None
    copied_via_copy_block: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Block":
        return cls(
            name=strip_namespace(str(data["name"])),
            states=dict(data["states"]) if data.get("states") is not None else None,
            block_entity_data=copy.deepcopy(data["block_entity_data"]) if data.get("block_entity_data") is not None else None,
            copied_via_copy_block=bool(data.get("#copied_via_copy_block", False)),
        )

    def state_entries(self) -> List[Tuple[str, Any]]:
        """Block states followed by first-level block entity data, the latter prefixed with ``entity.``."""

        entries = list((self.states or {}).items())
        entries.extend((f"entity.{key}", value) for key, value in (self.block_entity_data or {}).items())
        return entries

    def with_states(self, states: Dict[str, Any]) -> "Block":
        merged = dict(self.states or {})
        merged.update(states)
        return Block(
            name=self.name,
            states=merged,
            block_entity_data=copy.deepcopy(self.block_entity_data),
            copied_via_copy_block=self.copied_via_copy_block,
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"name": self.name}
        if self.states is not None:
            out["states"] = self.states
        if self.block_entity_data is not None:
            out["block_entity_data"] = self.block_entity_data
        if self.copied_via_copy_block:
            out["#copied_via_copy_block"] = True
        return out


@dataclass(slots=True)
class ExtraRotation:
    rot: List[float]
    pivot: List[float] = field(default_factory=lambda: [8.0, 8.0, 8.0])


# Cube fields as written in shape tables, keyed by their JSON name.
_CUBE_JSON_FIELDS = {
    "if": "condition",
    "pos": "pos",
    "size": "size",
    "translate": "translate",
    "transform": "transform",
    "rot": "rot",
    "pivot": "pivot",
    "uv": "uv",
    "uv_sizes": "uv_sizes",
    "uv_rot": "uv_rot",
    "box_uv": "box_uv",
    "box_uv_size": "box_uv_size",
    "textures": "textures",
    "texture_size": "texture_size",
    "copy": "copy",
    "copy_block": "copy_block",
    "copy_entity_model": "copy_entity_model",
    "block_states": "block_states",
    "terrain_texture": "terrain_texture",
    "variant": "variant",
    "ignore_eigenvariant": "ignore_eigenvariant",
    "tint": "tint",
    "fullbright": "fullbright",
    "flip_textures_horizontally": "flip_textures_horizontally",
    "flip_textures_vertically": "flip_textures_vertically",
    "arrays": "arrays",
    "disable_merging": "disable_merging",
}

# Fields a copying cube hands down to the cubes it copies.
INHERITED_FIELDS: Tuple[str, ...] = (
    "transform",
    "uv",
    "uv_sizes",
    "uv_rot",
    "box_uv",
    "box_uv_size",
    "textures",
    "texture_size",
    "block_states",
    "terrain_texture",
    "variant",
    "ignore_eigenvariant",
    "tint",
    "fullbright",
    "flip_textures_horizontally",
    "flip_textures_vertically",
    "arrays",
    "disable_merging",
    "extra_rots",
    "block_override",
)

FLIP_FIELDS = ("flip_textures_horizontally", "flip_textures_vertically")


@dataclass(slots=True)
class Cube:
    """One geometry primitive of a block shape. ``None`` means the attribute is absent."""

    pos: List[float] = field(default_factory=lambda: [0.0, 0.0, 0.0])
    size: List[float] = field(default_factory=lambda: [16.0, 16.0, 16.0])
    condition: str | None = None
    translate: List[float] | None = None
    transform: List[List[float]] | None = None
    rot: List[float] | None = None
    pivot: List[float] | None = None
    uv: Dict[str, List[float]] | None = None
    uv_sizes: Dict[str, List[float]] | None = None
    uv_rot: Dict[str, float] | None = None
    box_uv: List[float] | None = None
    box_uv_size: List[float] | None = None
    textures: Dict[str, str] | None = None
    texture_size: List[float] | None = None
    copy: str | None = None
    copy_block: str | None = None
    copy_entity_model: Dict[str, str] | None = None
    block_states: Dict[str, Any] | None = None
    terrain_texture: str | None = None
    variant: int | None = None
    ignore_eigenvariant: bool | None = None
    tint: str | None = None
    fullbright: bool | None = None
    flip_textures_horizontally: List[str] | None = None
    flip_textures_vertically: List[str] | None = None
    arrays: Dict[str, List[Any]] | None = None
    disable_merging: bool | None = None
    extra_rots: List[ExtraRotation] | None = None
    block_override: Block | None = None
    culled_faces: Set[str] = field(default_factory=set)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Cube":
        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            attr = _CUBE_JSON_FIELDS.get(key)
            if attr is None:
                logger.debug("Ignoring unknown cube field %s", key)
                continue
            kwargs[attr] = copy.deepcopy(value)
        for attr in ("pos", "size"):
            if attr in kwargs:
                kwargs[attr] = [float(v) for v in kwargs[attr]]
        if "tint" in kwargs and kwargs["tint"] is not None:
            kwargs["tint"] = str(kwargs["tint"])
        return cls(**kwargs)

    def clone(self) -> "Cube":
        return copy.deepcopy(self)

    @property
    def x(self) -> float:
        return self.pos[0]

    @property
    def y(self) -> float:
        return self.pos[1]

    @property
    def z(self) -> float:
        return self.pos[2]

    @property
    def w(self) -> float:
        return self.size[0]

    @property
    def h(self) -> float:
        return self.size[1]

    @property
    def d(self) -> float:
        return self.size[2]

    @property
    def volume(self) -> float:
        return self.size[0] * self.size[1] * self.size[2]

    @property
    def is_flat(self) -> bool:
        return any(s == 0 for s in self.size)


@dataclass(frozen=True, slots=True)
class TextureReference:
    """A texture sample before atlas packing. UVs are fractions of the source texture."""

    uv: Vec2
    uv_size: Vec2
    block_name: str | None = None
    texture_face: str | None = None
    variant: int | None = None
    texture_path_override: str | None = None
    terrain_texture_override: str | None = None
    tint: Vec3 | None = None


@dataclass(slots=True)
class TemplateVertex:
    pos: Vec3
    corner: int  # 0=top-left 1=top-right 2=bottom-left 3=bottom-right


@dataclass(slots=True)
class TemplateFace:
    normal: Vec3
    texture_ref_index: int
    vertices: List[TemplateVertex]


@dataclass(slots=True)
class ResolvedVertex:
    pos: Vec3
    uv: Vec2


@dataclass(slots=True)
class ResolvedFace:
    normal: Vec3
    vertices: List[ResolvedVertex]
    transparency: float = 0.0


@dataclass(frozen=True, slots=True)
class Crop:
    """Tight bounding box of a fragment, as fractions of its source rectangle."""

    x: float
    y: float
    w: float
    h: float


@dataclass(slots=True)
class ImageUv:
    """Placement of one texture reference in the atlas, as fractions of the atlas size."""

    uv: Vec2
    uv_size: Vec2
    transparency: float = 0.0
    crop: Crop | None = None


@dataclass(slots=True)
class PolyMesh:
    positions: List[Vec3]
    normals: List[Vec3]
    uvs: List[Vec2]
    polys: List[List[Tuple[int, int, int]]]
    normalized_uvs: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "normalized_uvs": self.normalized_uvs,
            "positions": [list(p) for p in self.positions],
            "normals": [list(n) for n in self.normals],
            "uvs": [list(uv) for uv in self.uvs],
            "polys": [[list(v) for v in poly] for poly in self.polys],
        }


@dataclass(frozen=True, slots=True)
class TextureFragment:
    """A unique region of a texture file after tint and opacity are decided; one atlas slot each."""

    texture_path: str
    uv: Vec2
    uv_size: Vec2
    tint: Vec3 | None = None
    tint_like_png: bool = False
    opacity: float = 1.0
