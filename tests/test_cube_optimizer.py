from __future__ import annotations

from holomesh.cube_optimizer import cull_touching_faces, merge_group_key, optimize_cubes, try_merge_one_way
from holomesh.model import Cube


def _cube(pos, size, **kwargs) -> Cube:
    return Cube(pos=[float(v) for v in pos], size=[float(v) for v in size], **kwargs)


def test_merges_in_either_order():
    merged = optimize_cubes([_cube((16, 0, 0), (16, 16, 16)), _cube((0, 0, 0), (16, 16, 16))])
    assert len(merged) == 1
    assert merged[0].pos == [0.0, 0.0, 0.0]
    assert merged[0].size == [32.0, 16.0, 16.0]


def test_merge_requires_congruent_faces():
    a = _cube((0, 0, 0), (16, 8, 16))
    b = _cube((0, 8, 0), (16, 8, 8))
    assert not try_merge_one_way(a, b)
    result = optimize_cubes([a, b])
    assert len(result) == 2
    # The smaller top cube is fully covered underneath; the bottom one is not covered on top.
    top = next(c for c in result if c.pos[1] == 8)
    bottom = next(c for c in result if c.pos[1] == 0)
    assert top.culled_faces == {"down"}
    assert bottom.culled_faces == set()


def test_chained_merge_restarts():
    cubes = [_cube((0, 0, 0), (4, 4, 4)), _cube((8, 0, 0), (4, 4, 4)), _cube((4, 0, 0), (4, 4, 4))]
    result = optimize_cubes(cubes)
    assert [(c.pos, c.size) for c in result] == [([0.0, 0.0, 0.0], [12.0, 4.0, 4.0])]


def test_different_textures_do_not_merge_but_cull():
    a = _cube((0, 0, 0), (16, 16, 16), textures={"*": "a"})
    b = _cube((16, 0, 0), (16, 16, 16), textures={"*": "b"})
    assert merge_group_key(a, 0) != merge_group_key(b, 1)
    result = optimize_cubes([a, b])
    assert len(result) == 2
    assert a.culled_faces == {"west"}
    assert b.culled_faces == {"east"}


def test_rotated_and_flat_cubes_pass_through():
    rotated = _cube((0, 0, 0), (16, 16, 16), rot=[0, 45, 0])
    flat = _cube((16, 0, 0), (16, 0, 16))
    plain = _cube((0, 0, 16), (16, 16, 16))
    result = optimize_cubes([rotated, flat, plain])
    assert len(result) == 3
    assert rotated.culled_faces == set() and flat.culled_faces == set()
    assert result[0] is flat


def test_translated_cubes_cull_but_never_merge():
    a = _cube((0, 0, 0), (16, 16, 16), translate=[0.0, 16.0, 0.0])
    b = _cube((0, 32, 0), (16, 16, 16))
    result = optimize_cubes([a, b])
    assert len(result) == 2
    assert a.culled_faces == {"up"}
    assert b.culled_faces == {"down"}


def test_merge_keeps_culls_of_both_halves():
    a = _cube((0, 0, 0), (4, 4, 4))
    b = _cube((4, 0, 0), (4, 4, 4))
    a.culled_faces = {"up", "east"}
    b.culled_faces = {"up", "west"}
    assert try_merge_one_way(a, b)
    assert a.culled_faces == {"up", "east", "west"}


def test_cull_ignores_partial_overlap():
    a = _cube((0, 0, 0), (16, 16, 16))
    b = _cube((16, 8, 0), (16, 16, 16))
    cull_touching_faces(a, b)
    assert a.culled_faces == set() and b.culled_faces == set()
