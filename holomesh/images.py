"""Pixel operations on RGBA arrays of shape (H, W, 4), dtype uint8."""

from __future__ import annotations

import io
import logging
import math
import re
from typing import List, Sequence, Tuple

import numpy as np
from PIL import Image, ImageDraw, ImageFont, UnidentifiedImageError

from .vecmath import Vec3


logger = logging.getLogger(__name__)

_HEX_RE = re.compile(r"^#([0-9a-f]{2})([0-9a-f]{2})([0-9a-f]{2})", re.IGNORECASE)
_SHORT_HEX_RE = re.compile(r"^#([0-9a-f])([0-9a-f])([0-9a-f])$", re.IGNORECASE)

Rect = Tuple[int, int, int, int]  # x, y, w, h


def hex_color_to_triplet(color: str) -> Vec3:
    """``#rrggbb`` (or ``#rgb``) to an RGB triplet in 0..1."""

    m = _HEX_RE.match(color) or _SHORT_HEX_RE.match(color)
    if m is None:
        raise ValueError(f"Not a hex colour: {color!r}")
    channels = [int(c * (2 if len(c) == 1 else 1), 16) / 255 for c in m.groups()]
    return (channels[0], channels[1], channels[2])


def decode_image(data: bytes) -> np.ndarray | None:
    """Decode PNG/TGA bytes into RGBA, or ``None`` when Pillow cannot read them."""

    try:
        with Image.open(io.BytesIO(data)) as img:
            return np.array(img.convert("RGBA"), dtype=np.uint8)
    except (UnidentifiedImageError, OSError) as exc:
        logger.warning("Could not decode image: %s", exc)
        return None


def encode_png(rgba: np.ndarray) -> bytes:
    bio = io.BytesIO()
    Image.fromarray(np.ascontiguousarray(rgba, dtype=np.uint8)).save(bio, format="PNG")
    return bio.getvalue()


def placeholder_image(text: str, height: int = 20) -> np.ndarray:
    """Black text on white, used in place of a texture that could not be found."""

    font = ImageFont.load_default()
    probe = ImageDraw.Draw(Image.new("RGBA", (1, 1)))
    width = max(1, int(math.ceil(probe.textlength(text, font=font))))
    img = Image.new("RGBA", (width, height), (255, 255, 255, 255))
    ImageDraw.Draw(img).text((0, 4), text, fill=(0, 0, 0, 255), font=font)
    return np.array(img, dtype=np.uint8)


def tint_pixels(rgba: np.ndarray, tint: Sequence[float], only_opaque: bool = False) -> np.ndarray:
    """Multiply RGB by ``tint``.

    With ``only_opaque``, only fully opaque pixels are tinted and every pixel is
    made opaque afterwards, which is how tinted TGA textures render in game.
    """

    out = rgba.copy()
    rgb = out[..., :3].astype(np.float64) * np.asarray(tint, dtype=np.float64)
    tinted = np.clip(np.rint(rgb), 0, 255).astype(np.uint8)
    if only_opaque:
        mask = out[..., 3] == 255
        out[mask, :3] = tinted[mask]
        out[..., 3] = 255
    else:
        out[..., :3] = tinted
    return out


def scale_alpha(rgba: np.ndarray, opacity: float) -> np.ndarray:
    out = rgba.copy()
    out[..., 3] = np.clip(np.rint(out[..., 3].astype(np.float64) * opacity), 0, 255).astype(np.uint8)
    return out


def opaque_bounds(rgba: np.ndarray, x: int, y: int, w: int, h: int) -> Tuple[int, int, int, int] | None:
    """Inclusive (min_x, min_y, max_x, max_y) of pixels with alpha > 0 inside a rectangle."""

    region = rgba[y : y + h, x : x + w, 3]
    ys, xs = np.nonzero(region > 0)
    if xs.size == 0:
        return None
    return int(x + xs.min()), int(y + ys.min()), int(x + xs.max()), int(y + ys.max())


def blit(canvas: np.ndarray, image: np.ndarray, src_x: int, src_y: int, w: int, h: int, dst_x: int, dst_y: int) -> None:
    """Copy a source rectangle into the canvas without blending, clipped to both images."""

    w = min(w, image.shape[1] - src_x, canvas.shape[1] - dst_x)
    h = min(h, image.shape[0] - src_y, canvas.shape[0] - dst_y)
    if w <= 0 or h <= 0:
        return
    canvas[dst_y : dst_y + h, dst_x : dst_x + w] = image[src_y : src_y + h, src_x : src_x + w]


def transparencies(canvas: np.ndarray, rects: Sequence[Rect]) -> List[float]:
    """Mean of ``255 - alpha`` over each rectangle."""

    out: List[float] = []
    alpha = canvas[..., 3].astype(np.float64)
    for x, y, w, h in rects:
        if w <= 0 or h <= 0:
            out.append(0.0)
            continue
        out.append(float(np.sum(255.0 - alpha[y : y + h, x : x + w]) / (w * h)))
    return out


def _source_over(dst: np.ndarray, mask: np.ndarray, color: Sequence[int], opacity: float) -> None:
    d = dst[mask].astype(np.float64) / 255.0
    da = d[:, 3:4]
    sa = float(opacity)
    out_a = sa + da * (1.0 - sa)
    src = np.asarray(color, dtype=np.float64) / 255.0
    safe_a = np.where(out_a > 0, out_a, 1.0)
    out_rgb = (src * sa + d[:, :3] * da * (1.0 - sa)) / safe_a
    dst[mask] = np.clip(np.rint(np.concatenate([out_rgb, out_a], axis=1) * 255.0), 0, 255).astype(np.uint8)


def add_outlines(
    canvas: np.ndarray,
    rects: Sequence[Rect],
    *,
    width: float,
    color: str,
    opacity: float,
) -> np.ndarray:
    """Upscale the canvas and draw an outline around the visible pixels of every rectangle.

    The canvas is supersampled by ``max(round(1 / width), 1)`` so each source pixel
    becomes a block of cells; outline cells are the edge rows/columns of blocks
    bordering a transparent neighbour (or the rectangle's border), plus the
    block corners touching any such edge.
    """

    scale = max(int(round(1.0 / width)), 1)
    height_px, width_px = canvas.shape[:2]
    big = np.repeat(np.repeat(canvas, scale, axis=0), scale, axis=1)
    mask = np.zeros((height_px, scale, width_px, scale), dtype=bool)
    alpha = canvas[..., 3].astype(np.int32)

    for x, y, w, h in rects:
        if w <= 0 or h <= 0:
            continue
        a = alpha[y : y + h, x : x + w]
        p = np.pad(a, 1, mode="constant", constant_values=0)
        visible = a != 0
        left = (p[1:-1, :-2] <= 0) & visible
        right = (p[1:-1, 2:] <= 0) & visible
        top = (p[:-2, 1:-1] <= 0) & visible
        bottom = (p[2:, 1:-1] <= 0) & visible
        top_left = (top | left | (p[:-2, :-2] <= 0)) & visible
        top_right = (top | right | (p[:-2, 2:] <= 0)) & visible
        bottom_left = (bottom | left | (p[2:, :-2] <= 0)) & visible
        bottom_right = (bottom | right | (p[2:, 2:] <= 0)) & visible

        cells = np.zeros((h, scale, w, scale), dtype=bool)
        if scale > 2:
            cells[:, 1:-1, :, 0] |= left[:, None, :]
            cells[:, 1:-1, :, -1] |= right[:, None, :]
            cells[:, 0, :, 1:-1] |= top[:, :, None]
            cells[:, -1, :, 1:-1] |= bottom[:, :, None]
        cells[:, 0, :, 0] |= top_left
        cells[:, 0, :, -1] |= top_right
        cells[:, -1, :, 0] |= bottom_left
        cells[:, -1, :, -1] |= bottom_right
        mask[y : y + h, :, x : x + w, :] |= cells

    flat_mask = mask.reshape(height_px * scale, width_px * scale)
    if flat_mask.any():
        r, g, b = (int(round(c * 255)) for c in hex_color_to_triplet(color))
        _source_over(big, flat_mask, (r, g, b), opacity)
    return big


def with_opacity(canvas: np.ndarray, opacity: float) -> np.ndarray:
    """The canvas drawn at a global alpha onto a transparent background."""

    return scale_alpha(canvas, opacity)
