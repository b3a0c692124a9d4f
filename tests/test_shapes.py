from __future__ import annotations

import json
import logging

import pytest

from holomesh.model import Block
from holomesh.shapes import ShapeRules, lookup_state_value, split_special_texture


def test_shape_lookup_order(rules):
    assert rules.shape_for("wide") == "wide"
    assert rules.shape_for("oak_stairs") == "stairs"
    assert rules.shape_for("stone_slab") == "half"
    assert rules.shape_for("dirt") == "block"


def test_cubes_are_fresh_copies(rules):
    first = rules.cubes_for("half")
    first[0].size[1] = 1.0
    assert rules.cubes_for("half")[0].size == [16.0, 8.0, 16.0]
    assert rules.cubes_for("nothing") is None


def test_block_shape_table_must_define_block(shape_tables):
    del shape_tables["block_shape_geos"]["block"]
    with pytest.raises(ValueError):
        ShapeRules.from_dicts(**shape_tables)


def test_load_reads_table_files(tmp_path, shape_tables):
    (tmp_path / "blockShapes.json").write_text(json.dumps(shape_tables["block_shapes"]))
    (tmp_path / "blockShapeGeos.json").write_text(json.dumps(shape_tables["block_shape_geos"]))
    rules = ShapeRules.load(tmp_path)
    assert rules.shape_for("panel") == "panel"
    assert rules.eigenvariants == {}
    with pytest.raises(FileNotFoundError):
        ShapeRules.load(tmp_path / "missing")


def test_block_rotation_sums_states(rules, caplog):
    assert rules.block_rotation(Block(name="stone"), "block") is None
    assert rules.block_rotation(Block(name="door", states={"facing": "east"}), "door_like") == (0.0, 90.0, 0.0)
    with caplog.at_level(logging.WARNING):
        rotation = rules.block_rotation(Block(name="door", states={"facing": "east", "upside_down_bit": 1}), "door_like")
    assert rotation == (180.0, 90.0, 0.0)
    assert "Multiple rotation block states" in caplog.text


def test_block_rotation_unknown_value_is_skipped(rules, caplog):
    with caplog.at_level(logging.ERROR):
        assert rules.block_rotation(Block(name="door", states={"facing": "up"}), "door_like") is None
    assert "not found" in caplog.text


def test_texture_variant_sources(rules):
    assert rules.texture_variant(Block(name="stone")) == 0
    assert rules.texture_variant(Block(name="wool", states={"color": "red"})) == 1
    assert rules.texture_variant(Block(name="red_sandstone", states={"sand_stone_type": "cut"})) == 2
    assert rules.texture_variant(Block(name="dirt")) == -1


def test_ignore_eigenvariant(rules, caplog):
    stone = Block(name="stone", states={"color": "red"})
    assert rules.texture_variant(stone, ignore_eigenvariant=True) == 1
    with caplog.at_level(logging.WARNING):
        assert rules.texture_variant(Block(name="dirt"), ignore_eigenvariant=True) == -1
    assert "Cannot ignore eigenvariant" in caplog.text


def test_exclusive_add_sums_contributions(shape_tables):
    shape_tables["block_state_definitions"]["texture_variants"]["block_shapes"] = {
        "half": {"#exclusive_add": True, "top_slot_bit": [0, 1], "stone_slab_type": {"smooth": 0, "brick": 2}}
    }
    rules = ShapeRules.from_dicts(**shape_tables)
    block = Block(name="stone_slab", states={"top_slot_bit": 1, "stone_slab_type": "brick", "color": "red"})
    assert rules.texture_variant(block) == 3


def test_lookup_state_value():
    assert lookup_state_value({"true": 4}, True) == (True, 4)
    assert lookup_state_value(["a", "b"], 1) == (True, "b")
    assert lookup_state_value(["a", "b"], 2) == (False, None)
    assert lookup_state_value({"x": 1}, "y") == (False, None)


def test_split_special_texture(caplog):
    assert split_special_texture("torch{textures/blocks/torch_on}") == ("torch", "textures/blocks/torch_on")
    assert split_special_texture("block") == ("block", None)
    with caplog.at_level(logging.ERROR):
        assert split_special_texture("torch{bad path}") == ("torch", None)
