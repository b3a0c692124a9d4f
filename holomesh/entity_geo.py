"""Entity geometry files as box-UV cubes, for shapes that copy an entity model."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Tuple

from .model import Cube
from .resources import ResourceFetcher, fetch_json
from .shapes import ShapeRules


logger = logging.getLogger(__name__)

# Entity models are centred on the block horizontally and sit on its floor.
ENTITY_MODEL_OFFSET = [8.0, 0.0, 8.0]


def _model_key(info: Dict[str, str]) -> Tuple[str, str, str]:
    return (info.get("geo_file", ""), info.get("identifier", ""), info.get("texture", ""))


def entity_model_to_cubes(geo_json: Dict[str, Any], info: Dict[str, str]) -> List[Cube] | None:
    """Every bone cube of the geometry named ``info["identifier"]``, or ``None`` if it is absent."""

    identifier = info.get("identifier")
    geo = next(
        (g for g in geo_json.get("minecraft:geometry") or [] if (g.get("description") or {}).get("identifier") == identifier),
        None,
    )
    if geo is None:
        logger.error("Geometry %s not found in %s", identifier, info.get("geo_file"))
        return None
    description = geo["description"]
    texture_size = [float(description.get("texture_width", 16)), float(description.get("texture_height", 16))]

    cubes: List[Cube] = []
    for bone in geo.get("bones") or []:
        for geo_cube in bone.get("cubes") or []:
            pos = [float(v) for v in geo_cube["origin"]]
            size = [float(v) for v in geo_cube["size"]]
            cube = Cube(
                pos=pos,
                size=size,
                translate=list(ENTITY_MODEL_OFFSET),
                box_uv=[float(v) for v in geo_cube.get("uv", (0, 0))],
                box_uv_size=list(size),
                textures={"*": info["texture"]},
                texture_size=list(texture_size),
            )
            inflate = geo_cube.get("inflate")
            if inflate:
                cube.pos = [p - inflate for p in pos]
                cube.size = [s + 2 * inflate for s in size]
            if "rotation" in geo_cube:
                cube.rot = [float(v) for v in geo_cube["rotation"]]
                cube.pivot = [float(v) for v in geo_cube["pivot"]] if "pivot" in geo_cube else None
            cubes.append(cube)
    return cubes


class EntityModelLibrary:
    """Entity models referenced by shape rules, fetched up front so resolution stays synchronous."""

    def __init__(self, fetcher: ResourceFetcher) -> None:
        self.fetcher = fetcher
        self._cubes: Dict[Tuple[str, str, str], List[Cube] | None] = {}

    async def load(self, info: Dict[str, str]) -> List[Cube] | None:
        key = _model_key(info)
        if key not in self._cubes:
            geo_json = await fetch_json(self.fetcher, info["geo_file"])
            self._cubes[key] = entity_model_to_cubes(geo_json, info) if geo_json is not None else None
        return self._cubes[key]

    async def preload(self, rules: ShapeRules) -> None:
        infos: Dict[Tuple[str, str, str], Dict[str, str]] = {}
        for cubes in rules.geos.values():
            for cube in cubes:
                if cube.copy_entity_model is not None:
                    infos.setdefault(_model_key(cube.copy_entity_model), cube.copy_entity_model)
        if infos:
            logger.info("Loading %d entity models", len(infos))
        await asyncio.gather(*(self.load(info) for info in infos.values()))

    def cubes_for(self, info: Dict[str, str]) -> List[Cube] | None:
        """Fresh copies of a preloaded model's cubes."""

        cubes = self._cubes.get(_model_key(info))
        if cubes is None:
            return None
        return [cube.clone() for cube in cubes]
