from __future__ import annotations

import asyncio
import json

import pytest

from conftest import BLOCK_SHAPE_GEOS, BLOCK_SHAPES, BLOCK_STATE_DEFINITIONS, EIGENVARIANTS, image_bytes
from holomesh import cli
from holomesh.model import Block
from holomesh.pipeline import AtlasOptions, PipelineOptions, Structure, block_offset, compile_structure, convert, geometry_json


def _options() -> PipelineOptions:
    return PipelineOptions(atlas=AtlasOptions(outline_width=0, multiple_opacities=False))


def test_block_offset():
    assert block_offset(0, 0, 0) == (-8.0, 0.0, -8.0)
    assert block_offset(1, 2, 3) == (-24.0, 32.0, 40.0)


def test_structure_indexing_and_validation():
    structure = Structure(size=(2, 1, 2), palette=[Block(name="stone")], layers=[[0, 1, 2, 3]])
    assert structure.palette_index(0, 1, 0, 1) == 3
    assert structure.palette_index(0, 0, 0, 1) == 1
    with pytest.raises(ValueError):
        Structure(size=(2, 1, 2), palette=[], layers=[[0, 1, 2]])
    with pytest.raises(ValueError):
        Structure(size=(1, 1, 1), palette=[], layers=[[0], [0], [0]])


def test_structure_from_dict_strips_namespaces():
    structure = Structure.from_dict(
        {"size": [1, 1, 1], "palette": [{"name": "minecraft:stone", "states": {}}], "block_indices": [[0], [-1]]}
    )
    assert structure.palette[0].name == "stone"
    assert structure.layers == [[0], [-1]]


def test_compile_skips_ignored_blocks(rules, fetcher, metadata):
    structure = Structure(size=(1, 1, 2), palette=[Block(name="stone"), Block(name="air")], layers=[[0, 1]])
    result = asyncio.run(compile_structure(structure, rules, fetcher, metadata, _options()))

    assert result.centers == [(8.0, 8.0, 8.0), None]
    assert result.templates[1] is None
    assert len(result.layers) == 1
    mesh = result.layers[0]
    assert len(mesh.polys) == 6
    assert len(mesh.positions) == 8
    assert len(mesh.normals) == 6
    assert len(mesh.uvs) == 4
    assert (result.atlas.width, result.atlas.height) == (16, 16)
    xs = sorted({p[0] for p in mesh.positions})
    assert xs == pytest.approx([-7.6, 7.6])


def test_compile_builds_one_mesh_per_layer(rules, fetcher, metadata):
    structure = Structure(size=(1, 2, 1), palette=[Block(name="stone")], layers=[[0, 0]])
    result = asyncio.run(compile_structure(structure, rules, fetcher, metadata, _options()))
    assert [len(mesh.polys) for mesh in result.layers] == [6, 6]
    assert min(p[1] for p in result.layers[1].positions) == pytest.approx(16.4)
    assert result.layers[1].polys[0][0][0] == 0

    data = geometry_json(result)
    bones = data["minecraft:geometry"][0]["bones"]
    assert [bone["name"] for bone in bones] == ["l_0", "l_1"]


def test_secondary_layer_faces_are_included(rules, fetcher, metadata):
    structure = Structure(size=(1, 1, 1), palette=[Block(name="glass"), Block(name="stone")], layers=[[0], [1]])
    result = asyncio.run(compile_structure(structure, rules, fetcher, metadata, _options()))
    mesh = result.layers[0]
    assert len(mesh.polys) == 12
    # Translucent glass sorts after the opaque stone.
    glass_uvs = {v.uv for face in result.templates[0] for v in face.vertices}
    assert result.templates[0][0].transparency == pytest.approx(51.0)
    assert {mesh.uvs[v[2]] for v in mesh.polys[-1]} <= glass_uvs
    assert not {mesh.uvs[v[2]] for v in mesh.polys[0]} <= glass_uvs


@pytest.fixture()
def project(tmp_path):
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    (data_dir / "blockShapes.json").write_text(json.dumps(BLOCK_SHAPES))
    (data_dir / "blockShapeGeos.json").write_text(json.dumps(BLOCK_SHAPE_GEOS))
    (data_dir / "blockStateDefinitions.json").write_text(json.dumps(BLOCK_STATE_DEFINITIONS))
    (data_dir / "blockEigenvariants.json").write_text(json.dumps(EIGENVARIANTS))

    pack = tmp_path / "pack"
    (pack / "textures" / "blocks").mkdir(parents=True)
    (pack / "blocks.json").write_text(json.dumps({"stone": {"textures": "stone"}}))
    (pack / "textures" / "terrain_texture.json").write_text(
        json.dumps({"texture_data": {"stone": {"textures": "textures/blocks/stone"}}})
    )
    (pack / "textures" / "blocks" / "stone.png").write_bytes(image_bytes(16, 16, (120, 120, 120, 255)))

    structure = tmp_path / "structure.json"
    structure.write_text(
        json.dumps({"size": [1, 1, 1], "palette": [{"name": "minecraft:stone"}], "block_indices": [[0]]})
    )
    return tmp_path


def test_convert_writes_every_output(project):
    out = project / "out"
    result = convert(
        project / "structure.json",
        project / "data",
        [project / "pack"],
        out,
        glb_out=project / "preview.glb",
        uv_json_out=project / "uvs.json",
    )

    assert sorted(p.name for p in out.glob("*.png")) == sorted(f"{name}.png" for name, _ in result.atlas.images)
    assert len(result.atlas.images) == 7

    geometry = json.loads((out / "hologram.geo.json").read_text())
    description = geometry["minecraft:geometry"][0]["description"]
    assert (description["texture_width"], description["texture_height"]) == (16, 16)
    assert len(geometry["minecraft:geometry"][0]["bones"][0]["poly_mesh"]["polys"]) == 6

    uvs = json.loads((project / "uvs.json").read_text())
    assert (uvs["width"], uvs["height"]) == (16, 16)
    assert uvs["stone:west#0"] == [0.0, 0.0, 1.0, 1.0]
    assert len(uvs) == 8

    assert (project / "preview.glb").read_bytes()[:4] == b"glTF"


def test_cli_runs_the_pipeline(project):
    code = cli.main(
        [
            "--structure",
            str(project / "structure.json"),
            "--data-dir",
            str(project / "data"),
            "--resource-pack",
            str(project / "pack"),
            "--output-dir",
            str(project / "cli_out"),
            "--single-opacity",
            "--outline-width",
            "0",
        ]
    )
    assert code == 0
    assert (project / "cli_out" / "hologram.png").exists()
    assert (project / "cli_out" / "hologram.geo.json").exists()
