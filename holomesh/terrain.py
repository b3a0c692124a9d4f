"""Texture metadata and the lookups from a texture reference to a texture file."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Tuple

from .images import hex_color_to_triplet
from .model import SIDE_FACES, TextureFragment, TextureReference
from .resources import ResourceFetcher, fetch_json


logger = logging.getLogger(__name__)

MISSING_KEY = "missing"
MISSING_TEXTURE_PATH = "textures/misc/missing_texture"


@dataclass(slots=True)
class TextureAtlasMappings:
    """Corrections applied on top of the resource pack's own texture metadata."""

    blocks_dot_json_patches: Dict[str, str] = field(default_factory=dict)
    blocks_to_use_carried_textures: List[str] = field(default_factory=list)
    transparent_blocks: Dict[str, float] = field(default_factory=dict)
    tint_colors: Dict[str, str] = field(default_factory=dict)
    terrain_texture_tints: Dict[str, Any] = field(default_factory=dict)
    missing_flipbook_textures: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any] | None) -> "TextureAtlasMappings":
        data = data or {}
        tints = data.get("terrain_texture_tints") or {}
        return cls(
            blocks_dot_json_patches=dict(data.get("blocks_dot_json_patches") or {}),
            blocks_to_use_carried_textures=list(data.get("blocks_to_use_carried_textures") or []),
            transparent_blocks=dict(data.get("transparent_blocks") or {}),
            tint_colors=dict(tints.get("colors") or {}),
            terrain_texture_tints=dict(tints.get("terrain_texture_keys") or {}),
            missing_flipbook_textures=list(data.get("missing_flipbook_textures") or []),
        )

    @classmethod
    def load(cls, path: str | Path) -> "TextureAtlasMappings":
        path = Path(path)
        if not path.exists():
            logger.warning("Texture atlas mappings %s not found; using none", path)
            return cls()
        return cls.from_dict(json.loads(path.read_text(encoding="utf-8")))


@dataclass(slots=True)
class TextureMetadata:
    blocks_json: Dict[str, Any]
    terrain_texture: Dict[str, Any]
    flipbook_textures: List[Dict[str, Any]] = field(default_factory=list)
    mappings: TextureAtlasMappings = field(default_factory=TextureAtlasMappings)

    @classmethod
    async def fetch(cls, fetcher: ResourceFetcher, mappings: TextureAtlasMappings | None = None) -> "TextureMetadata":
        blocks_json = await fetch_json(fetcher, "blocks.json")
        terrain_texture = await fetch_json(fetcher, "textures/terrain_texture.json")
        flipbook = await fetch_json(fetcher, "textures/flipbook_textures.json")
        return cls(
            blocks_json=blocks_json or {},
            terrain_texture=terrain_texture or {"texture_data": {}},
            flipbook_textures=flipbook or [],
            mappings=mappings or TextureAtlasMappings(),
        )


class TerrainTextureResolver:
    """Turns texture references into texture fragments using the pack's texture metadata."""

    def __init__(self, metadata: TextureMetadata) -> None:
        self.metadata = metadata
        self.mappings = metadata.mappings
        self.flipbook_sizes: Dict[str, int] = {path: 1 for path in self.mappings.missing_flipbook_textures}
        for entry in metadata.flipbook_textures:
            self.flipbook_sizes[entry["flipbook_texture"]] = int(entry.get("replicate", 1))

    @property
    def texture_data(self) -> Dict[str, Any]:
        return self.metadata.terrain_texture.get("texture_data") or {}

    def terrain_key(self, ref: TextureReference) -> Tuple[str, int]:
        """terrain_texture.json key and variant for a reference."""

        variant = ref.variant if ref.variant is not None else -1
        if ref.terrain_texture_override is not None:
            return ref.terrain_texture_override, variant
        blocks_json = self.metadata.blocks_json
        block_name = ref.block_name or ""
        if block_name not in blocks_json and block_name in self.mappings.blocks_dot_json_patches:
            block_name = self.mappings.blocks_dot_json_patches[block_name]
            if "." in block_name:
                block_name, patched_variant = block_name.split(".", 1)
                variant = int(patched_variant)
        entry = blocks_json.get(block_name)
        if not entry:
            logger.error("No blocks.json entry for %s", block_name)
            return MISSING_KEY, variant

        face = ref.texture_face or "*"
        if face.startswith("carried"):
            carried = entry.get("carried_textures")
            if carried is None:
                logger.error("No carried texture for %s", block_name)
            elif face == "carried":
                if isinstance(carried, str):
                    return carried, variant
                logger.error("Specified carried texture for %s has multiple faces", block_name)
            else:
                carried_face = face[len("carried."):]
                key = carried.get(carried_face) if isinstance(carried, dict) else carried
                if key is None and carried_face in SIDE_FACES and isinstance(carried, dict):
                    key = carried.get("side")
                if key is not None:
                    return key, variant
                logger.error("Could not find carried texture face %s for %s", carried_face, block_name)

        keys: Any = None
        if block_name in self.mappings.blocks_to_use_carried_textures:
            keys = entry.get("carried_textures")
            if keys is None:
                logger.error("Specified carried texture in blocks.json for %s could not be found", block_name)
            else:
                logger.debug("Using carried textures for %s", block_name)
        if keys is None:
            keys = entry.get("textures")
        if keys is None:
            if "carried_textures" in entry:
                keys = entry["carried_textures"]
                logger.error("No texture entry found in blocks.json for block %s; defaulting to carried texture", block_name)
            else:
                logger.error("No texture entry found in blocks.json for block %s", block_name)
                return MISSING_KEY, variant

        if isinstance(keys, str):
            return keys, variant
        key = keys.get(face)
        if key is None and face in SIDE_FACES:
            key = keys.get("side")
        if key is None:
            default_face = next(iter(keys), None)
            logger.error("Unknown texture face %s for %s; defaulting to %s", face, block_name, default_face)
            key = keys.get(default_face) if default_face is not None else MISSING_KEY
        return key, variant

    def texture_path_and_tint(self, key: str, variant: int) -> Tuple[str | None, str | None]:
        textures = (self.texture_data.get(key) or {}).get("textures")
        if not textures:
            logger.warning("No terrain_texture.json entry for key %s", key)
            return None, None
        if isinstance(textures, list):
            if len(textures) == 1:
                textures = textures[0]
            else:
                if variant == -1:
                    logger.warning("Unknown variant to choose for terrain texture key %s; defaulting to the first", key)
                    variant = 0
                if not 0 <= variant < len(textures):
                    logger.error("Variant %s does not exist for terrain texture key %s; defaulting to 0", variant, key)
                    variant = 0
                textures = textures[variant]
        if isinstance(textures, str):
            return textures, None
        return textures.get("path"), textures.get("overlay_color") or textures.get("tint_color")

    def _key_tint(self, key: str) -> Tuple[Tuple[float, float, float] | None, bool]:
        tint = self.mappings.terrain_texture_tints.get(key)
        if tint is None:
            return None, False
        tint_like_png = False
        if isinstance(tint, dict):
            tint_like_png = bool(tint.get("tint_like_png", False))
            tint = tint.get("tint", "")
        if tint.startswith("#"):
            return hex_color_to_triplet(tint), tint_like_png
        if tint in self.mappings.tint_colors:
            return hex_color_to_triplet(self.mappings.tint_colors[tint]), tint_like_png
        logger.error("No tint color %s", tint)
        return None, tint_like_png

    def fragment_for(self, ref: TextureReference) -> TextureFragment:
        tint = ref.tint
        tint_like_png = False
        opacity = 1.0
        if ref.texture_path_override is not None:
            path = ref.texture_path_override
        else:
            key, variant = self.terrain_key(ref)
            path, entry_tint = self.texture_path_and_tint(key, variant)
            if tint is None and entry_tint:
                tint = hex_color_to_triplet(entry_tint)
            if not path:
                logger.error("No texture for block %s on side %s", ref.block_name, ref.texture_face)
                path = self.texture_path_and_tint(MISSING_KEY, -1)[0] or MISSING_TEXTURE_PATH
            if tint is None:
                tint, tint_like_png = self._key_tint(key)
            if ref.block_name is not None and ref.block_name in self.mappings.transparent_blocks:
                opacity = float(self.mappings.transparent_blocks[ref.block_name])
        return TextureFragment(
            texture_path=path,
            uv=ref.uv,
            uv_size=ref.uv_size,
            tint=tint,
            tint_like_png=tint_like_png,
            opacity=opacity,
        )
