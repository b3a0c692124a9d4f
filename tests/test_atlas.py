from __future__ import annotations

import asyncio
import io
import logging
import random

import numpy as np
import pytest
from PIL import Image

from conftest import MemoryFetcher, image_bytes
from holomesh.atlas import TextureAtlas, _pack_rects, pack_best
from holomesh.model import Crop, TextureReference
from holomesh.terrain import TerrainTextureResolver, TextureMetadata


def _decode(png: bytes) -> np.ndarray:
    with Image.open(io.BytesIO(png)) as img:
        return np.array(img.convert("RGBA"))


def _path_ref(path: str) -> TextureReference:
    return TextureReference(uv=(0.0, 0.0), uv_size=(1.0, 1.0), texture_path_override=path)


def _atlas(fetcher, metadata, **kwargs) -> TextureAtlas:
    kwargs.setdefault("outline_width", 0)
    kwargs.setdefault("multiple_opacities", False)
    return TextureAtlas(fetcher, TerrainTextureResolver(metadata), **kwargs)


def test_pack_rects_stacks_equal_squares():
    width, height, positions, fill = _pack_rects([(0, 4, 4), (1, 4, 4)])
    assert (width, height) == (4, 8)
    assert positions == {0: (0, 0), 1: (0, 4)}
    assert fill == 1.0


def test_pack_rects_empty():
    assert _pack_rects([]) == (0, 0, {}, 0.0)


def test_packed_rects_never_overlap():
    rng = random.Random(7)
    rects = [(i, rng.randint(1, 24), rng.randint(1, 24)) for i in range(60)]
    width, height, positions, fill = pack_best(rects)
    assert set(positions) == {r[0] for r in rects}
    placed = [(positions[i][0], positions[i][1], w, h) for i, w, h in rects]
    for x, y, w, h in placed:
        assert x + w <= width and y + h <= height
    for i, a in enumerate(placed):
        for b in placed[i + 1:]:
            assert a[0] + a[2] <= b[0] or b[0] + b[2] <= a[0] or a[1] + a[3] <= b[1] or b[1] + b[3] <= a[1]
    assert 0 < fill <= 1


def test_pack_best_keeps_the_fuller_packing():
    rects = [(0, 3, 9), (1, 9, 3), (2, 5, 5), (3, 2, 7), (4, 7, 2)]
    best = pack_best(rects)
    presorted = _pack_rects(sorted(rects, key=lambda r: (r[2], r[1]), reverse=True))
    assert best[3] == max(_pack_rects(rects)[3], presorted[3])


def test_atlas_crops_fragments_to_their_opaque_pixels(metadata):
    fetcher = MemoryFetcher(
        {
            "textures/a.png": image_bytes(16, 16, (10, 20, 30, 255)),
            "textures/b.png": image_bytes(16, 16, (200, 100, 0, 255), opaque_box=(4, 2, 12, 14)),
        }
    )
    result = asyncio.run(_atlas(fetcher, metadata, opacity=0.9).pack([_path_ref("textures/a"), _path_ref("textures/b")]))

    assert (result.width, result.height) == (16, 28)
    a, b = result.uvs
    assert a.crop is None
    assert b.crop == Crop(4 / 16, 2 / 16, 8 / 16, 12 / 16)
    assert b.uv == pytest.approx((0.0, 16 / 28))
    assert (b.uv_size[0] * result.width, b.uv_size[1] * result.height) == pytest.approx((8, 12))
    assert a.transparency == b.transparency == 0.0

    assert [name for name, _ in result.images] == ["hologram"]
    pixels = _decode(result.images[0][1])
    assert pixels.shape == (28, 16, 4)
    assert tuple(pixels[0, 0]) == (10, 20, 30, 230)
    assert tuple(pixels[16, 0]) == (200, 100, 0, 230)
    assert pixels[20, 12, 3] == 0


def test_transparent_blocks_get_their_own_fragment(metadata, fetcher):
    refs = [
        TextureReference(uv=(0.0, 0.0), uv_size=(1.0, 1.0), block_name="glass", texture_face="up", variant=-1),
        TextureReference(uv=(0.0, 0.0), uv_size=(1.0, 1.0), block_name="tinted_glass", texture_face="up", variant=-1),
    ]
    result = asyncio.run(_atlas(fetcher, metadata).pack(refs))
    assert result.fragment_indices == [0, 1]
    assert len(result.fragment_rects) == 2
    assert result.uvs[0].transparency == pytest.approx(51.0)
    assert result.uvs[1].transparency == 0.0


def test_identical_references_share_one_slot(metadata, fetcher):
    ref = TextureReference(uv=(0.0, 0.0), uv_size=(1.0, 1.0), block_name="stone", texture_face="up", variant=0)
    result = asyncio.run(_atlas(fetcher, metadata).pack([ref, ref]))
    assert result.fragment_indices == [0, 0]
    assert result.uvs[0] == result.uvs[1]
    assert fetcher.requests.count("textures/blocks/stone.png") == 1


def test_missing_texture_becomes_placeholder(metadata, caplog):
    fetcher = MemoryFetcher()
    with caplog.at_level(logging.WARNING):
        result = asyncio.run(_atlas(fetcher, metadata).pack([_path_ref("textures/blocks/nope")]))
    assert "No texture found at textures/blocks/nope" in caplog.text
    assert fetcher.requests == ["textures/blocks/nope.png", "textures/blocks/nope.tga"]
    assert result.height == 20
    assert result.uvs[0].uv_size == (1.0, 1.0)


def test_tga_tint_only_touches_opaque_pixels(metadata):
    fetcher = MemoryFetcher(
        {"textures/blocks/leaves.tga": image_bytes(16, 16, (200, 100, 50, 255), opaque_box=(0, 0, 8, 16), fmt="TGA")}
    )
    ref = TextureReference(uv=(0.0, 0.0), uv_size=(1.0, 1.0), texture_path_override="textures/blocks/leaves", tint=(1.0, 0.0, 0.0))
    result = asyncio.run(_atlas(fetcher, metadata, opacity=1.0).pack([ref]))
    pixels = _decode(result.images[0][1])
    assert tuple(pixels[0, 0]) == (200, 0, 0, 255)
    assert tuple(pixels[0, 12]) == (0, 0, 0, 255)


def test_one_image_per_opacity_level(metadata, fetcher):
    ref = TextureReference(uv=(0.0, 0.0), uv_size=(1.0, 1.0), block_name="stone", texture_face="up", variant=0)
    result = asyncio.run(_atlas(fetcher, metadata, multiple_opacities=True).pack([ref]))
    names = [name for name, _ in result.images]
    assert names == [f"hologram_opacity_{x}" for x in ("0.4", "0.5", "0.6", "0.7", "0.8", "0.9", "1")]
    assert _decode(result.images[0][1])[0, 0, 3] == 102
    assert _decode(result.images[-1][1])[0, 0, 3] == 255


def test_flipbook_textures_use_the_first_frame():
    fetcher = MemoryFetcher({"textures/blocks/fire.png": image_bytes(16, 64, (255, 128, 0, 255))})
    metadata = TextureMetadata(
        blocks_json={},
        terrain_texture={"texture_data": {}},
        flipbook_textures=[{"flipbook_texture": "textures/blocks/fire", "atlas_tile": "fire"}],
    )
    result = asyncio.run(_atlas(fetcher, metadata).pack([_path_ref("textures/blocks/fire")]))
    assert (result.width, result.height) == (16, 16)


def test_outlines_upscale_the_atlas(metadata, fetcher):
    result = asyncio.run(
        _atlas(fetcher, metadata, outline_width=0.5, outline_opacity=1.0, opacity=1.0).pack([_path_ref("textures/blocks/stone")])
    )
    pixels = _decode(result.images[0][1])
    assert (result.width, result.height) == (16, 16)
    assert pixels.shape == (32, 32, 4)
    assert tuple(pixels[0, 0]) == (0, 0, 255, 255)
    assert tuple(pixels[16, 16]) == (120, 120, 120, 255)


def test_invalid_options_are_rejected(metadata, fetcher):
    with pytest.raises(ValueError):
        _atlas(fetcher, metadata, outline_width=-1)
    with pytest.raises(ValueError):
        _atlas(fetcher, metadata, multiple_opacities=True, opacities=())


def test_fractional_sources_keep_their_offset_in_the_uv(metadata):
    fetcher = MemoryFetcher({"textures/blocks/sheet.png": image_bytes(16, 16, (40, 80, 120, 255))})
    refs = [
        TextureReference(uv=(2.5 / 16, 0.0), uv_size=(3 / 16, 4 / 16), texture_path_override="textures/blocks/sheet"),
        TextureReference(uv=(0.0, 1.25 / 16), uv_size=(5 / 16, 2 / 16), texture_path_override="textures/blocks/sheet"),
    ]
    result = asyncio.run(_atlas(fetcher, metadata, opacity=1.0).pack(refs))

    assert [(w, h) for _, _, w, h in result.fragment_rects] == [(4, 4), (5, 3)]
    offsets = [(0.5, 0.0), (0.0, 0.25)]
    sizes = [(3, 4), (5, 2)]
    for uv, (dst_x, dst_y, _, _), (off_x, off_y), size in zip(result.uvs, result.fragment_rects, offsets, sizes):
        assert uv.crop is None
        assert (uv.uv[0] * result.width, uv.uv[1] * result.height) == pytest.approx((dst_x + off_x, dst_y + off_y))
        assert (uv.uv_size[0] * result.width, uv.uv_size[1] * result.height) == pytest.approx(size)

    pixels = _decode(result.images[0][1])
    for dst_x, dst_y, _, _ in result.fragment_rects:
        assert tuple(pixels[dst_y, dst_x]) == (40, 80, 120, 255)
