"""Shape resolver: turns a block and its shape rules into textured template faces."""

from __future__ import annotations

import copy
import logging
import math
import re
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Iterable, List, Sequence, Tuple

from .containers import IndexedSet
from .cube_optimizer import optimize_cubes
from .expressions import evaluate_condition, interpolate
from .images import hex_color_to_triplet
from .model import (
    FACE_NAMES,
    FLIP_FIELDS,
    INHERITED_FIELDS,
    SIDE_FACES,
    Block,
    Cube,
    ExtraRotation,
    ImageUv,
    ResolvedFace,
    ResolvedVertex,
    TemplateFace,
    TemplateVertex,
    TextureReference,
)
from .shapes import DEFAULT_SHAPE, ShapeRules, split_special_texture
from .vecmath import (
    BLOCK_PIVOT,
    Vec2,
    Vec3,
    add3,
    apply_euler_rotation,
    apply_transform,
    rotate_direction,
    sub3,
    transform_direction,
)


logger = logging.getLogger(__name__)

DEFAULT_SCALE = 0.95
DEFAULT_IGNORED_BLOCKS: Tuple[str, ...] = ("air", "piston_arm_collision", "sticky_piston_arm_collision")
DEFAULT_TEXTURE_SIZE = (16.0, 16.0)
FULLBRIGHT_NORMAL: Vec3 = (0.0, 1.0, 0.0)

# Unit-cube corners of each face, in corner-id order (top-left, top-right, bottom-left, bottom-right).
FACE_CORNERS: Dict[str, Tuple[Tuple[int, int, int], ...]] = {
    "west": ((1, 1, 0), (1, 1, 1), (1, 0, 0), (1, 0, 1)),
    "east": ((0, 1, 1), (0, 1, 0), (0, 0, 1), (0, 0, 0)),
    "down": ((0, 0, 0), (1, 0, 0), (0, 0, 1), (1, 0, 1)),
    "up": ((0, 1, 1), (1, 1, 1), (0, 1, 0), (1, 1, 0)),
    "north": ((0, 1, 0), (1, 1, 0), (0, 0, 0), (1, 0, 0)),
    "south": ((1, 1, 1), (0, 1, 1), (1, 0, 1), (0, 0, 1)),
}
FACE_NORMALS: Dict[str, Vec3] = {
    "west": (1.0, 0.0, 0.0),
    "east": (-1.0, 0.0, 0.0),
    "down": (0.0, -1.0, 0.0),
    "up": (0.0, 1.0, 0.0),
    "north": (0.0, 0.0, -1.0),
    "south": (0.0, 0.0, 1.0),
}
# A flat cube keeps one face; culling is disabled for it so it renders from both sides.
_FLAT_FACES = ("west", "down", "north")
# Corner ids after one clockwise quarter turn of the texture.
_UV_ROT_CORNERS = (2, 0, 3, 1)

_TEXTURE_PATH_RE = re.compile(r"^textures/.+[^/]$")
_COPY_BLOCK_RE = re.compile(r"^entity\.(.+)$")


@dataclass(slots=True)
class FaceUv:
    uv: Vec2
    uv_size: Vec2


@dataclass(slots=True)
class _Mass:
    volume: float
    flat_mass: float
    centroid: Vec3


@dataclass(slots=True)
class _Emission:
    faces: List[TemplateFace] = field(default_factory=list)
    fullbright: List[bool] = field(default_factory=list)
    masses: List[_Mass] = field(default_factory=list)

    def extend(self, other: "_Emission") -> None:
        self.faces.extend(other.faces)
        self.fullbright.extend(other.fullbright)
        self.masses.extend(other.masses)


def parse_tint(tint: str) -> Vec3 | None:
    """``#rrggbb`` or a 32-bit ARGB integer (as cauldron water colours are stored) to RGB in 0..1."""

    if tint.startswith("#"):
        try:
            return hex_color_to_triplet(tint)
        except ValueError:
            logger.error("Invalid tint colour %s", tint)
            return None
    try:
        code = int(float(tint)) % 2**32
    except (ValueError, OverflowError):
        logger.error("Invalid tint %r; expected a hex colour or ARGB integer", tint)
        return None
    return ((code >> 16 & 0xFF) / 255, (code >> 8 & 0xFF) / 255, (code & 0xFF) / 255)


def box_uvs(cube: Cube) -> Dict[str, FaceUv]:
    """The six unfolded face rectangles anchored at ``cube.box_uv``."""

    w, h, d = cube.box_uv_size or cube.size
    u0, v0 = cube.box_uv or (0.0, 0.0)
    layout = {
        "up": ((d, 0), (w, d)),
        "down": ((w + d, 0), (w, d)),
        "west": ((0, d), (d, h)),
        "north": ((d, d), (w, h)),
        "east": ((w + d, d), (d, h)),
        "south": ((w + 2 * d, d), (w, h)),
    }
    return {
        face: FaceUv((u0 + uv[0], v0 + uv[1]), (float(size[0]), float(size[1])))
        for face, (uv, size) in layout.items()
    }


def _face_override(table: Dict[str, Any] | None, face: str) -> Any:
    if not table:
        return None
    value = table.get(face)
    if value is None and face in SIDE_FACES:
        value = table.get("side")
    if value is None:
        value = table.get("*")
    return value


def offset_uvs(cube: Cube) -> Dict[str, FaceUv]:
    """Face rectangles projected from the cube's place in the 16x16 block space, unless overridden."""

    x, y, z = cube.pos
    w, h, d = cube.size
    defaults = {
        "west": ((z, 16 - y - h), (d, h)),
        "east": ((16 - z - d, 16 - y - h), (d, h)),
        "down": ((16 - x - w, 16 - z - d), (w, d)),
        "up": ((16 - x - w, z), (w, d)),
        "north": ((x, 16 - y - h), (w, h)),
        "south": ((16 - x - w, 16 - y - h), (w, h)),
    }
    out: Dict[str, FaceUv] = {}
    for face, (uv, size) in defaults.items():
        uv = _face_override(cube.uv, face) or uv
        size = _face_override(cube.uv_sizes, face) or size
        out[face] = FaceUv((float(uv[0]), float(uv[1])), (float(size[0]), float(size[1])))
    return out


def rendered_faces(cube: Cube) -> List[str]:
    faces = [face for face in FACE_NAMES if face not in cube.culled_faces]
    for dim, keep in zip(cube.size, _FLAT_FACES):
        if dim == 0:
            faces = [face for face in faces if face == keep]
    return faces


def _is_matrix4(value: Any) -> bool:
    return (
        isinstance(value, (list, tuple))
        and len(value) == 4
        and all(
            isinstance(row, (list, tuple)) and len(row) == 4 and all(isinstance(v, (int, float)) and math.isfinite(v) for v in row)
            for row in value
        )
    )


def _flag(faces: Sequence[str] | None, face: str) -> bool:
    if not faces:
        return False
    return (face in faces) ^ (face in SIDE_FACES and "side" in faces) ^ ("*" in faces)


def center_of_mass(masses: Sequence[_Mass]) -> Vec3:
    """Volume-weighted centroid; if everything is flat, weight by area (zero dimensions count as 1)."""

    for weight_of in (lambda m: m.volume, lambda m: m.flat_mass):
        total = 0.0
        acc = (0.0, 0.0, 0.0)
        for mass in masses:
            weight = weight_of(mass)
            total += weight
            acc = add3(acc, tuple(c * weight for c in mass.centroid))
        if total != 0:
            return (acc[0] / total, acc[1] / total, acc[2] / total)
    if masses:
        logger.error("Cubes have no mass; using the block centre")
    return BLOCK_PIVOT


def _scale_toward(pos: Sequence[float], center: Sequence[float], scale: float) -> Vec3:
    return add3(tuple(c * scale for c in sub3(pos, center)), center)


class BlockGeoMaker:
    """Resolves blocks into template faces, collecting texture references as it goes.

    ``texture_refs`` accumulates every unique :class:`TextureReference`; template
    faces refer to them by index.
    """

    def __init__(
        self,
        rules: ShapeRules,
        *,
        scale: float = DEFAULT_SCALE,
        ignored_blocks: Iterable[str] = DEFAULT_IGNORED_BLOCKS,
        entity_models: Any = None,
    ) -> None:
        self.rules = rules
        self.scale = float(scale)
        self.ignored_blocks = frozenset(ignored_blocks)
        self.entity_models = entity_models
        self.texture_refs: IndexedSet[TextureReference] = IndexedSet()

    def make_templates(self, palette: Sequence[Block]) -> List[List[TemplateFace]]:
        return [self.resolve(block)[0] for block in palette]

    def resolve(self, block: Block) -> Tuple[List[TemplateFace], Vec3]:
        """Template faces for ``block`` scaled toward its center of mass, plus that center."""

        shape = self.rules.shape_for(block.name)
        emission = self._make_faces(block, shape)
        if not emission.faces:
            logger.debug("No faces are being rendered for block %s", block.name)

        center = center_of_mass(emission.masses)
        for face in emission.faces:
            for vertex in face.vertices:
                vertex.pos = _scale_toward(vertex.pos, center, self.scale)

        rotation = self.rules.block_rotation(block, shape.split("{", 1)[0])
        if rotation is not None:
            for face in emission.faces:
                for vertex in face.vertices:
                    vertex.pos = apply_euler_rotation(vertex.pos, rotation, BLOCK_PIVOT)
                face.normal = rotate_direction(face.normal, rotation)
            center = apply_euler_rotation(center, rotation, BLOCK_PIVOT)

        for face, fullbright in zip(emission.faces, emission.fullbright):
            if fullbright:
                face.normal = FULLBRIGHT_NORMAL
        return emission.faces, center

    # --- cube expansion -------------------------------------------------------

    def _make_faces(self, block: Block, shape: str) -> _Emission:
        shape, special_texture = split_special_texture(shape)
        cubes = self.rules.cubes_for(shape)
        if cubes is None:
            logger.error('Could not find geometry for block shape %s; defaulting to "%s"', shape, DEFAULT_SHAPE)
            cubes = self.rules.cubes_for(DEFAULT_SHAPE) or []

        emission = _Emission()
        final: List[Cube] = []
        queue: Deque[Cube] = deque(cubes)
        while queue:
            cube = queue.popleft()
            if cube.block_states is not None:
                states = {
                    name: interpolate(value, block, cube.arrays) if isinstance(value, str) else value
                    for name, value in cube.block_states.items()
                }
                cube.block_states = states
                cube.block_override = block.with_states(states)
            target = cube.block_override or block
            if cube.condition is not None:
                if not evaluate_condition(cube.condition, target):
                    continue
                cube.condition = None
            if cube.terrain_texture is not None:
                cube.terrain_texture = interpolate(cube.terrain_texture, target, cube.arrays)

            if cube.copy is not None:
                if cube.copy == shape:
                    logger.error("Cannot copy the same block shape: %s", shape)
                    continue
                copied = self.rules.cubes_for(cube.copy)
                if copied is None:
                    logger.error('Could not find geometry for copied block shape %s; defaulting to "%s"', cube.copy, DEFAULT_SHAPE)
                    copied = self.rules.cubes_for(DEFAULT_SHAPE) or []
                queue.extend(self._inherit(cube, copied))
            elif cube.copy_entity_model is not None:
                copied = self.entity_models.cubes_for(cube.copy_entity_model) if self.entity_models is not None else None
                if copied is None:
                    logger.error("Entity model %s is not loaded", cube.copy_entity_model.get("identifier"))
                    continue
                queue.extend(self._inherit(cube, copied))
            elif cube.copy_block is not None:
                inner = self._copy_block(block, cube)
                if inner is not None:
                    emission.extend(inner)
            else:
                if cube.transform is not None and not _is_matrix4(cube.transform):
                    logger.error("Ignoring transform of block shape %s; expected a 4x4 matrix, got %r", shape, cube.transform)
                    cube.transform = None
                final.append(cube)

        if not final:
            return emission

        own = _Emission()
        cubes = optimize_cubes(final)
        default_variant: int | None = None
        variant_without_eigenvariant: int | None = None
        for cube in cubes:
            if cube.variant is not None:
                variant = int(cube.variant)
            elif cube.ignore_eigenvariant:
                if cube.block_override is not None:
                    variant = self.rules.texture_variant(cube.block_override, True)
                else:
                    if variant_without_eigenvariant is None:
                        variant_without_eigenvariant = self.rules.texture_variant(block, True)
                    variant = variant_without_eigenvariant
            elif cube.block_override is not None:
                variant = self.rules.texture_variant(cube.block_override)
            else:
                if default_variant is None:
                    default_variant = self.rules.texture_variant(block)
                variant = default_variant

            faces = self._cube_faces(block, cube, variant, special_texture, shape)
            own.faces.extend(faces)
            own.fullbright.extend([bool(cube.fullbright)] * len(faces))
            own.masses.append(self._mass(cube))

        # Single-faced cubes such as carpets and pressure plates look wrong with directional shading.
        if all(len(rendered_faces(c)) == 1 and not c.culled_faces for c in cubes):
            own.fullbright = [True] * len(own.faces)
        emission.extend(own)
        return emission

    @staticmethod
    def _inherit(copier: Cube, copied: List[Cube]) -> List[Cube]:
        """Hand the copier's fields down to the copied cubes; the copied cubes' own values win."""

        for target in copied:
            if copier.translate is not None:
                target.translate = list(add3(target.translate or (0.0, 0.0, 0.0), copier.translate))
            for name in INHERITED_FIELDS:
                value = getattr(copier, name)
                if value is None:
                    continue
                current = getattr(target, name)
                if name in FLIP_FIELDS:
                    # Flip lists are sets: copying toggles faces rather than unioning them.
                    merged = list(current or [])
                    for face in value:
                        if face in merged:
                            merged.remove(face)
                        else:
                            merged.append(face)
                    setattr(target, name, merged)
                elif isinstance(value, dict):
                    setattr(target, name, {**copy.deepcopy(value), **(current or {})})
                elif current is None:
                    setattr(target, name, copy.deepcopy(value))
            if copier.rot is not None:
                if target.rot is not None:
                    # Rotations are not combined; each copier becomes a wrapper rotation.
                    target.extra_rots = list(target.extra_rots or [])
                    target.extra_rots.append(ExtraRotation(list(copier.rot), list(copier.pivot or BLOCK_PIVOT)))
                else:
                    target.rot = list(copier.rot)
                    target.pivot = list(copier.pivot) if copier.pivot is not None else target.pivot
        return copied

    def _copy_block(self, block: Block, cube: Cube) -> _Emission | None:
        m = _COPY_BLOCK_RE.match(cube.copy_block or "")
        if m is None:
            logger.error("Incorrectly formatted copy_block property: %s", cube.copy_block)
            return None
        data: Any = block.block_entity_data
        for key in m.group(1).split("."):
            data = data.get(key) if isinstance(data, dict) else None
        if not isinstance(data, dict) or "name" not in data:
            logger.error("Cannot find block entity property %s on block %s", m.group(1), block.name)
            return None
        inner_block = Block.from_dict(data)
        if inner_block.name in self.ignored_blocks:
            return None
        inner_block.copied_via_copy_block = True
        emission = self._make_faces(inner_block, self.rules.shape_for(inner_block.name))
        if cube.translate is not None:
            for face in emission.faces:
                for vertex in face.vertices:
                    vertex.pos = add3(vertex.pos, cube.translate)
            for mass in emission.masses:
                mass.centroid = add3(mass.centroid, cube.translate)
        return emission

    # --- faces ------------------------------------------------------------------

    @staticmethod
    def _place(cube: Cube, pos: Sequence[float]) -> Vec3:
        """Cube rotation, then wrapper rotations innermost first, then translate, then transform."""

        out: Vec3 = (pos[0], pos[1], pos[2])
        if cube.rot is not None:
            out = apply_euler_rotation(out, cube.rot, cube.pivot or BLOCK_PIVOT)
        for extra in reversed(cube.extra_rots or []):
            out = apply_euler_rotation(out, extra.rot, extra.pivot)
        if cube.translate is not None:
            out = add3(out, cube.translate)
        if cube.transform is not None:
            out = apply_transform(out, cube.transform)
        return out

    @staticmethod
    def _orient(cube: Cube, normal: Vec3) -> Vec3:
        if cube.rot is not None:
            normal = rotate_direction(normal, cube.rot)
        for extra in reversed(cube.extra_rots or []):
            normal = rotate_direction(normal, extra.rot)
        if cube.transform is not None:
            normal = transform_direction(normal, cube.transform)
        return normal

    def _mass(self, cube: Cube) -> _Mass:
        w, h, d = cube.size
        centroid = self._place(cube, (cube.x + w / 2, cube.y + h / 2, cube.z + d / 2))
        return _Mass(volume=w * h * d, flat_mass=max(w, 1) * max(h, 1) * max(d, 1), centroid=centroid)

    def _texture_ref(
        self,
        block: Block,
        cube: Cube,
        face: str,
        face_uv: FaceUv,
        variant: int,
        special_texture: str | None,
        shape: str,
    ) -> TextureReference | None:
        target = cube.block_override or block
        token = _face_override(cube.textures, face) or face
        if token == "none":
            return None
        token = interpolate(token, target, cube.arrays)

        size = cube.texture_size or DEFAULT_TEXTURE_SIZE
        fields: Dict[str, Any] = {
            "uv": (face_uv.uv[0] / size[0], face_uv.uv[1] / size[1]),
            "uv_size": (face_uv.uv_size[0] / size[0], face_uv.uv_size[1] / size[1]),
            "block_name": block.name,
            "texture_face": token,
            "variant": variant,
        }
        if token == "#tex":
            if special_texture is not None:
                fields["texture_path_override"] = special_texture
            else:
                logger.error("No #tex for block %s and block shape %s", block.name, shape)
        elif _TEXTURE_PATH_RE.match(token):
            fields["texture_path_override"] = token
        elif cube.terrain_texture:
            fields["block_name"] = None
            fields["texture_face"] = None
            fields["terrain_texture_override"] = cube.terrain_texture
        if "texture_path_override" in fields:
            fields["block_name"] = None
            fields["texture_face"] = None
            fields["variant"] = None
        if cube.tint is not None:
            fields["tint"] = parse_tint(interpolate(cube.tint, target, cube.arrays))
        return TextureReference(**fields)

    def _cube_faces(
        self,
        block: Block,
        cube: Cube,
        variant: int,
        special_texture: str | None,
        shape: str,
    ) -> List[TemplateFace]:
        uvs = box_uvs(cube) if cube.box_uv is not None else offset_uvs(cube)
        faces: List[TemplateFace] = []
        for face in rendered_faces(cube):
            ref = self._texture_ref(block, cube, face, uvs[face], variant, special_texture, shape)
            if ref is None:
                continue
            ref_index = self.texture_refs.add(ref)

            vertices = [
                TemplateVertex(pos=(cube.x + cube.w * a, cube.y + cube.h * b, cube.z + cube.d * c), corner=i)
                for i, (a, b, c) in enumerate(FACE_CORNERS[face])
            ]
            uv_rot = _face_override(cube.uv_rot, face)
            if uv_rot:
                if float(uv_rot) % 90 != 0:
                    logger.error("UV rotation %s on face %s of block %s is not a multiple of 90", uv_rot, face, block.name)
                else:
                    for _ in range(int(float(uv_rot) // 90) % 4):
                        for vertex in vertices:
                            vertex.corner = _UV_ROT_CORNERS[vertex.corner]

            flip_h = _flag(cube.flip_textures_horizontally, face)
            flip_v = _flag(cube.flip_textures_vertically, face)
            if cube.box_uv is not None:
                flip_h ^= face not in ("north", "south")
                flip_v ^= face == "up"
            # Up and down textures are turned 180 degrees relative to the geometry.
            vertical = face in ("down", "up")
            if vertical ^ flip_h:
                vertices[0].corner, vertices[1].corner = vertices[1].corner, vertices[0].corner
                vertices[2].corner, vertices[3].corner = vertices[3].corner, vertices[2].corner
            if vertical ^ flip_v:
                vertices[0].corner, vertices[2].corner = vertices[2].corner, vertices[0].corner
                vertices[1].corner, vertices[3].corner = vertices[3].corner, vertices[1].corner

            for vertex in vertices:
                vertex.pos = self._place(cube, vertex.pos)
            faces.append(TemplateFace(normal=self._orient(cube, FACE_NORMALS[face]), texture_ref_index=ref_index, vertices=vertices))
        return faces


def _crop_vertices(vertices: List[TemplateVertex], uv: ImageUv) -> List[Vec3]:
    p0, p1, p2, p3 = (v.pos for v in vertices)
    crop = uv.crop
    if crop is None:
        return [p0, p1, p2, p3]
    x_dir = sub3(p1, p0)
    y_dir = sub3(p2, p0)
    x_rem = 1 - crop.w - crop.x
    y_rem = 1 - crop.h - crop.y

    def shift(p: Vec3, sx: float, sy: float) -> Vec3:
        return tuple(p[i] + x_dir[i] * sx + y_dir[i] * sy for i in range(3))

    return [
        shift(p0, crop.x, crop.y),
        shift(p1, -x_rem, crop.y),
        shift(p2, crop.x, -y_rem),
        shift(p3, -x_rem, -y_rem),
    ]


def resolve_template_face_uvs(faces: Sequence[TemplateFace], uvs: Sequence[ImageUv]) -> List[ResolvedFace]:
    """Swap texture reference indices for atlas UVs, cropping faces to their visible texture.

    Templates are left untouched so they can be resolved again against another atlas.
    """

    resolved: List[ResolvedFace] = []
    for face in faces:
        image_uv = uvs[face.texture_ref_index]
        ordered = sorted(face.vertices, key=lambda v: v.corner)
        positions = _crop_vertices(ordered, image_uv)
        (u, v), (us, vs) = image_uv.uv, image_uv.uv_size
        # Corners 0, 1, 3, 2 walk around the quad.
        vertices = [
            ResolvedVertex(pos=positions[corner], uv=(u + us * (corner & 1), 1 - (v + vs * (corner >> 1))))
            for corner in (0, 1, 3, 2)
        ]
        resolved.append(ResolvedFace(normal=face.normal, vertices=vertices, transparency=image_uv.transparency))
    return resolved
