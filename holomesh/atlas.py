"""Texture atlas construction: fragment loading, packing, compositing and variants."""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Tuple

import numpy as np

from . import images
from .containers import IndexedSet
from .model import Crop, ImageUv, TextureFragment, TextureReference
from .resources import ResourceFetcher
from .terrain import TerrainTextureResolver


logger = logging.getLogger(__name__)

DEFAULT_OPACITIES: Tuple[float, ...] = tuple(x / 10 for x in range(4, 11))


@dataclass(slots=True)
class LoadedImage:
    pixels: np.ndarray
    is_tga: bool = False
    not_found: bool = False


@dataclass(slots=True)
class ImageFragment:
    """Pixels for one fragment plus the source rectangle to copy from them."""

    pixels: np.ndarray
    source_x: float
    source_y: float
    w: float
    h: float
    crop: Crop | None = None


@dataclass(slots=True)
class AtlasBuildResult:
    width: int
    height: int
    fill: float
    uvs: List[ImageUv]
    images: List[Tuple[str, bytes]]
    fragment_indices: List[int] = field(default_factory=list)
    fragment_rects: List[Tuple[int, int, int, int]] = field(default_factory=list)


def _is_int(value: float) -> bool:
    return float(value).is_integer()


def _pack_rects(rects: List[Tuple[int, int, int]]) -> Tuple[int, int, Dict[int, Tuple[int, int]], float]:
    """Guillotine packing of (id, w, h) boxes into a near-square container.

    Boxes go tallest first into the smallest free space that fits them, searching
    free spaces from the most recently created one.
    """

    positions: Dict[int, Tuple[int, int]] = {}
    if not rects:
        return 0, 0, positions, 0.0

    area = sum(w * h for _, w, h in rects)
    max_w = max(w for _, w, _ in rects)
    start_w = max(int(math.ceil(math.sqrt(area / 0.95))), max_w)
    spaces: List[List[float]] = [[0, 0, start_w, math.inf]]

    width = 0
    height = 0
    for rid, w, h in sorted(rects, key=lambda r: r[2], reverse=True):
        for i in range(len(spaces) - 1, -1, -1):
            sx, sy, sw, sh = spaces[i]
            if w > sw or h > sh:
                continue
            positions[rid] = (int(sx), int(sy))
            width = max(width, int(sx) + w)
            height = max(height, int(sy) + h)
            if w == sw and h == sh:
                last = spaces.pop()
                if i < len(spaces):
                    spaces[i] = last
            elif h == sh:
                spaces[i] = [sx + w, sy, sw - w, sh]
            elif w == sw:
                spaces[i] = [sx, sy + h, sw, sh - h]
            else:
                spaces.append([sx + w, sy, sw - w, h])
                spaces[i] = [sx, sy + h, sw, sh - h]
            break

    fill = area / float(width * height) if width and height else 0.0
    return width, height, positions, fill


def pack_best(rects: List[Tuple[int, int, int]]) -> Tuple[int, int, Dict[int, Tuple[int, int]], float]:
    """Pack in the given order and presorted by height then width; keep the fuller result."""

    packed = _pack_rects(rects)
    presorted = _pack_rects(sorted(rects, key=lambda r: (r[2], r[1]), reverse=True))
    # Ties go to the presorted packing.
    return presorted if presorted[3] >= packed[3] else packed


class TextureAtlas:
    """Packs every unique texture fragment referenced by a palette into one image."""

    def __init__(
        self,
        fetcher: ResourceFetcher,
        resolver: TerrainTextureResolver,
        *,
        outline_width: float = 0.25,
        outline_color: str = "#0000FF",
        outline_opacity: float = 0.65,
        multiple_opacities: bool = True,
        opacity: float = 0.9,
        opacities: Sequence[float] = DEFAULT_OPACITIES,
    ) -> None:
        if outline_width < 0:
            raise ValueError("outline_width must be >= 0")
        if multiple_opacities and not opacities:
            raise ValueError("opacities must not be empty when multiple_opacities is set")
        self.fetcher = fetcher
        self.resolver = resolver
        self.outline_width = float(outline_width)
        self.outline_color = outline_color
        self.outline_opacity = float(outline_opacity)
        self.multiple_opacities = bool(multiple_opacities)
        self.opacity = float(opacity)
        self.opacities = tuple(opacities)

    async def pack(self, refs: Sequence[TextureReference]) -> AtlasBuildResult:
        fragments: IndexedSet[TextureFragment] = IndexedSet()
        fragment_indices = [fragments.add(self.resolver.fragment_for(ref)) for ref in refs]
        logger.debug("%d texture references map to %d fragments", len(refs), len(fragments))

        image_fragments = await self._load_fragments(fragments.to_list())
        result = await self._stitch(image_fragments)
        result.uvs = [result.uvs[i] for i in fragment_indices]
        result.fragment_indices = fragment_indices
        return result

    async def _load_image(self, path: str) -> LoadedImage:
        data = await self.fetcher.fetch(f"{path}.png")
        pixels = images.decode_image(data) if data is not None else None
        if pixels is not None:
            return LoadedImage(pixels)
        data = await self.fetcher.fetch(f"{path}.tga")
        pixels = images.decode_image(data) if data is not None else None
        if pixels is not None:
            logger.debug("Fetched TGA texture %s.tga", path)
            return LoadedImage(pixels, is_tga=True)
        logger.warning("No texture found at %s", path)
        return LoadedImage(images.placeholder_image(path), not_found=True)

    async def _load_fragments(self, fragments: Sequence[TextureFragment]) -> List[ImageFragment]:
        paths = list(dict.fromkeys(f.texture_path for f in fragments))
        logger.info("Loading %d images for %d texture fragments", len(paths), len(fragments))
        loaded = await asyncio.gather(*(self._load_image(path) for path in paths))
        by_path = dict(zip(paths, loaded))
        return [self._prepare(fragment, by_path[fragment.texture_path]) for fragment in fragments]

    def _prepare(self, fragment: TextureFragment, loaded: LoadedImage) -> ImageFragment:
        pixels = loaded.pixels
        uv, uv_size = fragment.uv, fragment.uv_size
        if loaded.not_found:
            uv, uv_size = (0.0, 0.0), (1.0, 1.0)
        if fragment.tint is not None:
            pixels = images.tint_pixels(pixels, fragment.tint, only_opaque=loaded.is_tga and not fragment.tint_like_png)
        if fragment.opacity != 1:
            pixels = images.scale_alpha(pixels, fragment.opacity)

        image_h, image_w = pixels.shape[:2]
        frames = self.resolver.flipbook_sizes.get(fragment.texture_path)
        if frames:
            image_w = image_h = image_w / frames
            logger.debug("Using flipbook texture for %s, %sx%s", fragment.texture_path, image_w, image_h)

        source_x = uv[0] * image_w
        source_y = uv[1] * image_h
        w = uv_size[0] * image_w
        h = uv_size[1] * image_h
        crop = None
        if all(_is_int(v) for v in (source_x, source_y, w, h)) and w > 0 and h > 0:
            bounds = images.opaque_bounds(pixels, int(source_x), int(source_y), int(w), int(h))
            if bounds is not None:
                min_x, min_y, max_x, max_y = bounds
                new_w = max_x - min_x + 1
                new_h = max_y - min_y + 1
                crop = Crop(
                    x=(min_x - source_x) / w,
                    y=(min_y - source_y) / h,
                    w=new_w / w,
                    h=new_h / h,
                )
                if (crop.x, crop.y, crop.w, crop.h) == (0, 0, 1, 1):
                    crop = None
                else:
                    logger.debug("Cropped part of image %s to %s", fragment.texture_path, crop)
                source_x, source_y, w, h = float(min_x), float(min_y), float(new_w), float(new_h)
        return ImageFragment(pixels=pixels, source_x=source_x, source_y=source_y, w=w, h=h, crop=crop)

    async def _stitch(self, fragments: Sequence[ImageFragment]) -> AtlasBuildResult:
        # Fractional source rectangles copy whole pixels; the fraction is kept in the UV.
        rects: List[Tuple[int, int, int]] = []
        sources: List[Tuple[int, int]] = []
        offsets: List[Tuple[float, float]] = []
        for i, frag in enumerate(fragments):
            off_x = frag.source_x % 1
            off_y = frag.source_y % 1
            w = int(math.ceil(frag.w + off_x))
            h = int(math.ceil(frag.h + off_y))
            rects.append((i, w, h))
            sources.append((int(math.floor(frag.source_x)), int(math.floor(frag.source_y))))
            offsets.append((off_x, off_y))

        width, height, positions, fill = pack_best(rects)
        logger.info("Packed texture atlas with %.2f%% space efficiency", fill * 100)
        canvas = np.zeros((max(height, 1), max(width, 1), 4), dtype=np.uint8)

        uvs: List[ImageUv] = []
        placed: List[Tuple[int, int, int, int]] = []
        atlas_w = float(max(width, 1))
        atlas_h = float(max(height, 1))
        for (i, w, h), (src_x, src_y), (off_x, off_y), frag in zip(rects, sources, offsets, fragments):
            dst_x, dst_y = positions[i]
            images.blit(canvas, frag.pixels, src_x, src_y, w, h, dst_x, dst_y)
            placed.append((dst_x, dst_y, w, h))
            uvs.append(
                ImageUv(
                    uv=((dst_x + off_x) / atlas_w, (dst_y + off_y) / atlas_h),
                    uv_size=(frag.w / atlas_w, frag.h / atlas_h),
                    crop=frag.crop,
                )
            )
        for uv, transparency in zip(uvs, images.transparencies(canvas, placed)):
            uv.transparency = transparency

        if self.outline_width != 0:
            canvas = images.add_outlines(
                canvas,
                placed,
                width=self.outline_width,
                color=self.outline_color,
                opacity=self.outline_opacity,
            )

        if self.multiple_opacities:
            names = [f"hologram_opacity_{opacity:g}" for opacity in self.opacities]
            variants = [images.with_opacity(canvas, opacity) for opacity in self.opacities]
        else:
            names = ["hologram"]
            variants = [images.with_opacity(canvas, self.opacity)]
        encoded = await asyncio.gather(*(asyncio.to_thread(images.encode_png, v) for v in variants))

        return AtlasBuildResult(
            width=int(width),
            height=int(height),
            fill=float(fill),
            uvs=uvs,
            images=list(zip(names, encoded)),
            fragment_rects=placed,
        )
