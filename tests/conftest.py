from __future__ import annotations

import copy
import io
import sys
from pathlib import Path
from typing import Dict

import numpy as np
import pytest
from PIL import Image

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from holomesh.shapes import ShapeRules  # noqa: E402
from holomesh.terrain import TextureAtlasMappings, TextureMetadata  # noqa: E402


BLOCK_SHAPES = {
    "individual_blocks": {
        "wide": "wide",
        "door": "door_like",
        "box_thing": "box",
        "copier_block": "copier",
        "looper": "self_copy",
        "textured_block": "textured",
        "tinted_block": "tinted",
        "carpet": "carpet",
        "torch": "torch{textures/blocks/torch_on}",
        "flower_pot": "pot",
        "panel": "panel",
        "missing_geo": "no_such_shape",
        "wool_block": "wool",
        "lamp": "lamp",
    },
    "patterns": {
        "_stairs$": "stairs",
        "slab": "half",
    },
}

BLOCK_SHAPE_GEOS = {
    "block": [{}],
    "half": [{"size": [16, 8, 16]}],
    "stairs": [{"size": [16, 8, 16]}, {"pos": [0, 8, 8], "size": [16, 8, 8]}],
    "wide": [{"size": [16, 16, 16]}, {"pos": [16, 0, 0], "size": [16, 16, 16]}],
    "door_like": [{"if": "facing==north", "size": [16, 16, 2]}],
    "box": [{"box_uv": [0, 0], "size": [4, 4, 4]}],
    "rotated_part": [{"pos": [0, 0, 0], "size": [4, 4, 4], "rot": [0, 90, 0]}],
    "copier": [{"copy": "rotated_part", "rot": [90, 0, 0]}],
    "self_copy": [{"copy": "self_copy"}],
    "textured": [{"textures": {"up": "textures/blocks/custom_top", "side": "none", "down": "bottom"}}],
    "tinted": [{"tint": "#ff0000"}],
    "carpet": [{"size": [16, 0, 16]}],
    "torch": [{"pos": [7, 0, 7], "size": [2, 10, 2], "textures": {"*": "#tex"}}],
    "pot": [
        {"copy_block": "entity.item", "translate": [0, 4, 0]},
        {"pos": [6, 0, 6], "size": [4, 4, 4]},
    ],
    "panel": [{"size": [16, 16, 2]}],
    "wool": [{"textures": {"*": "${#block_states.color}_wool"}}],
    "lamp": [{"if": "lit==1", "terrain_texture": "lamp_on"}, {"if": "lit==0", "terrain_texture": "lamp_off"}],
}

BLOCK_STATE_DEFINITIONS = {
    "rotations": {
        "*": {
            "facing": {"north": [0, 0, 0], "east": [0, 90, 0], "south": [0, 180, 0], "west": [0, 270, 0]},
            "upside_down_bit": [[0, 0, 0], [180, 0, 0]],
        },
        "block_shapes": {},
        "block_names": {},
    },
    "texture_variants": {
        "*": {"color": {"white": 0, "red": 1}},
        "block_shapes": {},
        "block_names": {"/_sandstone$/": {"sand_stone_type": {"default": 0, "cut": 2}}},
    },
}

EIGENVARIANTS = {"stone": 0}


@pytest.fixture()
def shape_tables() -> Dict[str, object]:
    return {
        "block_shapes": copy.deepcopy(BLOCK_SHAPES),
        "block_shape_geos": copy.deepcopy(BLOCK_SHAPE_GEOS),
        "block_state_definitions": copy.deepcopy(BLOCK_STATE_DEFINITIONS),
        "eigenvariants": dict(EIGENVARIANTS),
    }


@pytest.fixture()
def rules(shape_tables) -> ShapeRules:
    return ShapeRules.from_dicts(**shape_tables)


def image_bytes(width: int, height: int, color=(255, 0, 0, 255), *, opaque_box=None, fmt: str = "PNG") -> bytes:
    """An image of one colour; with ``opaque_box`` (x0, y0, x1, y1) everything else is transparent."""

    pixels = np.zeros((height, width, 4), dtype=np.uint8)
    if opaque_box is None:
        pixels[:, :] = color
    else:
        x0, y0, x1, y1 = opaque_box
        pixels[y0:y1, x0:x1] = color
    bio = io.BytesIO()
    Image.fromarray(pixels, "RGBA").save(bio, format=fmt)
    return bio.getvalue()


class MemoryFetcher:
    def __init__(self, files: Dict[str, bytes] | None = None) -> None:
        self.files = dict(files or {})
        self.requests = []

    async def fetch(self, path: str) -> bytes | None:
        self.requests.append(path)
        return self.files.get(path)


@pytest.fixture()
def fetcher() -> MemoryFetcher:
    return MemoryFetcher(
        {
            "textures/blocks/stone.png": image_bytes(16, 16, (120, 120, 120, 255)),
            "textures/blocks/glass.png": image_bytes(16, 16, (200, 230, 255, 255)),
            "textures/blocks/custom_top.png": image_bytes(16, 16, (0, 255, 0, 255)),
            "textures/blocks/torch_on.png": image_bytes(16, 16, (255, 200, 0, 255), opaque_box=(7, 6, 9, 16)),
        }
    )


@pytest.fixture()
def metadata() -> TextureMetadata:
    return TextureMetadata(
        blocks_json={
            "stone": {"textures": "stone"},
            "glass": {"textures": "glass"},
            "tinted_glass": {"textures": "glass"},
            "grass": {"textures": {"up": "grass_top", "down": "dirt", "side": "grass_side"}, "carried_textures": "grass_carried"},
        },
        terrain_texture={
            "texture_data": {
                "stone": {"textures": "textures/blocks/stone"},
                "glass": {"textures": "textures/blocks/glass"},
                "grass_top": {"textures": "textures/blocks/grass_top"},
                "grass_side": {"textures": ["textures/blocks/grass_side", "textures/blocks/grass_side_snowed"]},
                "dirt": {"textures": "textures/blocks/dirt"},
                "grass_carried": {"textures": {"path": "textures/blocks/grass_carried", "overlay_color": "#79c05a"}},
                "missing": {"textures": "textures/misc/missing_texture"},
            }
        },
        mappings=TextureAtlasMappings(transparent_blocks={"glass": 0.8}),
    )
