"""Shape rule tables: block shapes, cube geometry, state-driven rotations and texture variants."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Tuple

from .containers import PatternMap
from .expressions import to_js_string
from .model import Block, Cube
from .vecmath import Vec3


logger = logging.getLogger(__name__)

DEFAULT_SHAPE = "block"
EXCLUSIVE_ADD = "#exclusive_add"

SHAPE_FILES = {
    "block_shapes": "blockShapes.json",
    "block_shape_geos": "blockShapeGeos.json",
    "block_state_definitions": "blockStateDefinitions.json",
    "eigenvariants": "blockEigenvariants.json",
}

_SPECIAL_TEXTURE_RE = re.compile(r"^(\w+)\{(textures/[\w/]+)\}$")


def lookup_state_value(table: Any, value: Any) -> Tuple[bool, Any]:
    """Look a block state value up in a dict (keyed by stringified value) or list table."""

    if isinstance(table, dict):
        key = to_js_string(value)
        if key in table:
            return True, table[key]
        return False, None
    if isinstance(table, list):
        key = to_js_string(value)
        if key.isdigit() and int(key) < len(table):
            return True, table[int(key)]
    return False, None


def _split_keys(table: Dict[str, Any] | None) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for keys, value in (table or {}).items():
        for key in keys.split(","):
            out[key] = value
    return out


@dataclass(slots=True)
class ShapeRules:
    """Immutable shape rule tables, shared by every resolution in a session."""

    individual_blocks: Dict[str, str]
    patterns: List[Tuple[re.Pattern[str], str]]
    geos: Dict[str, List[Cube]]
    eigenvariants: Dict[str, int]
    global_rotations: Dict[str, Any]
    shape_rotations: Dict[str, Dict[str, Any]]
    name_rotations: Dict[str, Dict[str, Any]]
    global_variants: Dict[str, Any]
    shape_variants: Dict[str, Dict[str, Any]]
    name_variants: PatternMap[Dict[str, Any]]
    _shape_cache: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dicts(
        cls,
        *,
        block_shapes: Dict[str, Any],
        block_shape_geos: Dict[str, List[Dict[str, Any]]],
        block_state_definitions: Dict[str, Any] | None = None,
        eigenvariants: Dict[str, int] | None = None,
    ) -> "ShapeRules":
        if DEFAULT_SHAPE not in block_shape_geos:
            raise ValueError(f'Shape geometry table must define the "{DEFAULT_SHAPE}" shape')
        defs = block_state_definitions or {}
        rotations = defs.get("rotations") or {}
        variants = defs.get("texture_variants") or {}

        name_variants: List[Tuple[str, Dict[str, Any]]] = []
        for keys, table in (variants.get("block_names") or {}).items():
            if keys.startswith("/") and keys.endswith("/"):
                name_variants.append((keys, table))
            else:
                name_variants.extend((key, table) for key in keys.split(","))

        return cls(
            individual_blocks=dict(block_shapes.get("individual_blocks") or {}),
            patterns=[(re.compile(rule), shape) for rule, shape in (block_shapes.get("patterns") or {}).items()],
            geos={name: [Cube.from_dict(c) for c in cubes] for name, cubes in block_shape_geos.items()},
            eigenvariants=dict(eigenvariants or {}),
            global_rotations=dict(rotations.get("*") or {}),
            shape_rotations=_split_keys(rotations.get("block_shapes")),
            name_rotations=_split_keys(rotations.get("block_names")),
            global_variants=dict(variants.get("*") or {}),
            shape_variants=_split_keys(variants.get("block_shapes")),
            name_variants=PatternMap(name_variants),
        )

    @classmethod
    def load(cls, data_dir: str | Path) -> "ShapeRules":
        data_dir = Path(data_dir)
        tables: Dict[str, Any] = {}
        for key, filename in SHAPE_FILES.items():
            path = data_dir / filename
            if not path.exists():
                if key in ("block_shapes", "block_shape_geos"):
                    raise FileNotFoundError(path)
                logger.warning("Optional shape table %s not found", path)
                continue
            tables[key] = json.loads(path.read_text(encoding="utf-8"))
        return cls.from_dicts(**tables)

    def shape_for(self, block_name: str) -> str:
        """Shape name for a block: exact entry, else first matching pattern, else ``"block"``."""

        cached = self._shape_cache.get(block_name)
        if cached is not None:
            return cached
        shape = self.individual_blocks.get(block_name)
        if shape is None:
            shape = next((s for pattern, s in self.patterns if pattern.search(block_name)), DEFAULT_SHAPE)
        self._shape_cache[block_name] = shape
        return shape

    def cubes_for(self, shape: str) -> List[Cube] | None:
        """Deep copies of a shape's cubes, or ``None`` when the shape has no geometry."""

        cubes = self.geos.get(shape)
        if cubes is None:
            return None
        return [cube.clone() for cube in cubes]

    def block_rotation(self, block: Block, shape: str) -> Vec3 | None:
        """Sum of the rotations selected by the block's states, or ``None`` when no state rotates it."""

        shape_table = self.shape_rotations.get(shape) or {}
        name_table = self.name_rotations.get(block.name) or {}
        rotation: Vec3 | None = None
        for state_name, value in block.state_entries():
            table = name_table.get(state_name) or shape_table.get(state_name) or self.global_rotations.get(state_name)
            if not table:
                continue
            found, triplet = lookup_state_value(table, value)
            if not found:
                logger.error("Block state value %s for rotation block state %s not found on %s", to_js_string(value), state_name, block.name)
                continue
            triplet = (float(triplet[0]), float(triplet[1]), float(triplet[2]))
            if rotation is None:
                rotation = triplet
            else:
                logger.warning("Multiple rotation block states for block %s; adding them all together", block.name)
                rotation = (rotation[0] + triplet[0], rotation[1] + triplet[1], rotation[2] + triplet[2])
        return rotation

    def texture_variant(self, block: Block, ignore_eigenvariant: bool = False) -> int:
        """Index into a terrain texture's variant list for ``block``, or -1 when undetermined."""

        has_eigenvariant = block.name in self.eigenvariants
        if has_eigenvariant and not ignore_eigenvariant:
            variant = self.eigenvariants[block.name]
            logger.debug("Using eigenvariant %s for block %s", variant, block.name)
            return int(variant)
        if ignore_eigenvariant and not has_eigenvariant:
            logger.warning("Cannot ignore eigenvariant of %s as it doesn't exist", block.name)

        if block.states is None and block.block_entity_data is None:
            return -1
        # Copied shapes still look at the variants of the block's own shape.
        shape_table = self.shape_variants.get(self.shape_for(block.name))
        name_table = self.name_variants.get(block.name)
        entries = block.state_entries()
        for table in (shape_table, name_table):
            if table and table.get(EXCLUSIVE_ADD):
                return self._exclusive_add(block, table, entries)

        variant = -1
        for state_name, value in entries:
            table = (name_table or {}).get(state_name) or (shape_table or {}).get(state_name) or self.global_variants.get(state_name)
            if table is None:
                continue
            found, new_variant = lookup_state_value(table, value)
            if not found:
                logger.error("Block state value %s for texture-variating block state %s not found on %s", to_js_string(value), state_name, block.name)
                continue
            if variant != -1:
                logger.warning("Multiple texture-variating block states for block %s; using %s", block.name, state_name)
            variant = int(new_variant)
        return variant

    @staticmethod
    def _exclusive_add(block: Block, table: Dict[str, Any], entries: List[Tuple[str, Any]]) -> int:
        variant = 0
        for state_name, value in entries:
            if state_name not in table or state_name == EXCLUSIVE_ADD:
                continue
            found, contribution = lookup_state_value(table[state_name], value)
            if not found:
                logger.error("Block state value %s for texture-variating block state %s not found on %s", to_js_string(value), state_name, block.name)
                continue
            variant += int(contribution)
        return variant


def split_special_texture(shape: str) -> Tuple[str, str | None]:
    """Split ``name{textures/path}`` into the shape name and the ``#tex`` texture path."""

    if "{" not in shape:
        return shape, None
    m = _SPECIAL_TEXTURE_RE.match(shape)
    if m is None:
        logger.error("Malformed special texture in block shape %s", shape)
        return shape[: shape.index("{")], None
    return m.group(1), m.group(2)
