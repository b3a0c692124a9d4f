"""UV JSON export helper."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, List, Sequence, Tuple

from .model import ImageUv, TextureReference


def texture_ref_label(ref: TextureReference) -> str:
    if ref.texture_path_override is not None:
        return ref.texture_path_override
    if ref.terrain_texture_override is not None:
        label = ref.terrain_texture_override
    else:
        label = f"{ref.block_name}:{ref.texture_face}"
    if ref.variant is not None and ref.variant != -1:
        label = f"{label}#{ref.variant}"
    return label


def uv_rects(refs: Sequence[TextureReference], uvs: Sequence[ImageUv]) -> Dict[str, Tuple[float, float, float, float]]:
    """[u0, v0, u1, v1] per texture reference, keyed by a readable label made unique with a counter."""

    name_counts: Dict[str, int] = {}
    rects: Dict[str, Tuple[float, float, float, float]] = {}
    for ref, uv in zip(refs, uvs):
        name = texture_ref_label(ref)
        if name in name_counts:
            name_counts[name] += 1
            key = f"{name}_{name_counts[name]}"
        else:
            name_counts[name] = 0
            key = name
        rects[key] = (uv.uv[0], uv.uv[1], uv.uv[0] + uv.uv_size[0], uv.uv[1] + uv.uv_size[1])
    return rects


def write_uv_json(
    path: str | Path,
    *,
    width: int,
    height: int,
    refs: Sequence[TextureReference],
    uvs: Sequence[ImageUv],
) -> None:
    """Write UV extents as {"width":W,"height":H,"<texture>":[u0,v0,u1,v1],...}, one entry per line."""

    out_path = Path(path)
    if out_path.parent:
        out_path.parent.mkdir(parents=True, exist_ok=True)

    items: List[Tuple[str, object]] = [("width", width), ("height", height)]
    items.extend(uv_rects(refs, uvs).items())
    lines = ["{"]
    for idx, (key, value) in enumerate(items):
        ks = json.dumps(key, ensure_ascii=False)
        vs = json.dumps(value, ensure_ascii=False, separators=(",", ":"))
        comma = "," if idx != len(items) - 1 else ""
        lines.append(f"  {ks}:{vs}{comma}")
    lines.append("}")
    out_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
