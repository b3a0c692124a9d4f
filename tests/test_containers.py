from __future__ import annotations

from holomesh.containers import IndexedSet, PatternMap


def test_indexed_set_assigns_dense_indices():
    s = IndexedSet(["a", "b"])
    assert s.add("c") == 2
    assert s.add("a") == 0
    assert s.index("b") == 1
    assert s.index("z") == -1
    assert "c" in s and "z" not in s
    assert list(s) == ["a", "b", "c"]
    assert s[2] == "c"
    assert len(s) == 3


def test_indexed_set_with_key():
    s = IndexedSet(key=lambda v: round(v, 2))
    assert s.add(0.101) == 0
    assert s.add(0.1) == 0
    assert s.to_list() == [0.101]
    s.clear()
    assert len(s) == 0
    assert s.add(0.5) == 0


def test_pattern_map_exact_before_patterns():
    m = PatternMap({"/_stairs$/": "stairs", "oak_stairs": "special", "/^oak/": "oak"}.items())
    assert m.get("oak_stairs") == "special"
    assert m.get("stone_stairs") == "stairs"
    assert m.get("oak_log") == "oak"
    assert m.get("dirt", "block") == "block"
    assert "birch_stairs" in m
    assert "dirt" not in m
