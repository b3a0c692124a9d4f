"""Command line interface for the holomesh structure compiler."""

from __future__ import annotations

import argparse

from .block_geo import DEFAULT_IGNORED_BLOCKS
from .logs import configure_logging
from .pipeline import AtlasOptions, PipelineOptions, convert


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="holomesh")
    parser.add_argument("--structure", required=True, help="Path to a parsed structure JSON (size, palette, block_indices)")
    parser.add_argument("--data-dir", required=True, help="Directory holding the block shape and texture mapping tables")
    parser.add_argument(
        "--resource-pack",
        action="append",
        required=True,
        help="Resource pack directory; repeat to stack packs, earlier ones take priority",
    )
    parser.add_argument("--output-dir", required=True, help="Directory for atlas PNGs and the geometry JSON")

    parser.add_argument("--glb", help="Also write a GLB preview to this path")
    parser.add_argument("--uv-out", help="Write per-texture UV rectangles to this JSON file")

    parser.add_argument("--scale", type=float, default=0.95, help="Shrink factor of each block toward its center of mass")
    parser.add_argument("--ignore-block", action="append", default=[], help="Block name to leave out; may be repeated")

    parser.add_argument("--opacity", type=float, default=0.9, help="Atlas opacity when a single atlas is written")
    parser.add_argument("--single-opacity", action="store_true", help="Write one atlas at --opacity instead of one per opacity level")
    parser.add_argument("--outline-width", type=float, default=0.25, help="Texture outline width in pixels (0 disables)")
    parser.add_argument("--outline-color", default="#0000FF", help="Texture outline colour as #RRGGBB")
    parser.add_argument("--outline-opacity", type=float, default=0.65, help="Texture outline opacity")

    parser.add_argument("--log-level", help="Logging level (defaults to $LOG_LEVEL or INFO)")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(level=args.log_level)

    atlas_opts = AtlasOptions(
        outline_width=args.outline_width,
        outline_color=args.outline_color,
        outline_opacity=args.outline_opacity,
        multiple_opacities=not args.single_opacity,
        opacity=args.opacity,
    )
    pipeline_opts = PipelineOptions(
        scale=args.scale,
        ignored_blocks=list(DEFAULT_IGNORED_BLOCKS) + list(args.ignore_block),
        atlas=atlas_opts,
    )

    convert(
        args.structure,
        args.data_dir,
        args.resource_pack,
        args.output_dir,
        glb_out=args.glb,
        uv_json_out=args.uv_out,
        options=pipeline_opts,
    )
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
