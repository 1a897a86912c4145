"""Command-line interface for the layerchef pipeline.

Usage:
    layerchef plan [--source DIR] [--output recipe.json]
    layerchef cook --profile debug
    layerchef build --config layerchef.toml
    layerchef emit-dockerfile --output Dockerfile
"""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Sequence
from dataclasses import replace
from pathlib import Path

from layerchef.config import CONFIG_FILENAME, PipelineConfig, load_config, resolve_profile
from layerchef.emit import render_dockerfile
from layerchef.errors import LayerchefError
from layerchef.models import BUILD_PROFILES
from layerchef.pipeline import build_pipeline, with_source
from layerchef.recipe import write_recipe


def _load(args: argparse.Namespace) -> PipelineConfig:
    if args.config is not None:
        config = load_config(args.config)
    else:
        source = Path(args.source or ".")
        default_path = source / CONFIG_FILENAME
        config = load_config(default_path) if default_path.is_file() else PipelineConfig(source)
    if args.source is not None:
        config = with_source(config, args.source)
    if args.toolchain is not None:
        config = replace(config, toolchain=args.toolchain)
    if args.installer is not None:
        config = replace(config, installer=args.installer)
    return config


def cmd_plan(args: argparse.Namespace) -> int:
    pipeline = build_pipeline(_load(args), profile=args.profile)
    recipe = pipeline.execute("plan")["recipe"]
    path = pipeline.recipe_path
    if args.output is not None:
        path = write_recipe(recipe, args.output)
    print(json.dumps({"recipe": str(path), "digest": recipe.digest}, sort_keys=True))
    return 0


def cmd_cook(args: argparse.Namespace) -> int:
    pipeline = build_pipeline(_load(args), profile=args.profile)
    layer = pipeline.execute("cook")["layer"]
    summary = {
        "profile": layer.profile,
        "key": layer.key,
        "cache_hit": layer.cache_hit,
        "path": str(layer.path),
    }
    print(json.dumps(summary, sort_keys=True))
    return 0


def cmd_build(args: argparse.Namespace) -> int:
    result = build_pipeline(_load(args), profile=args.profile).run()
    summary = {
        "profile": result.profile,
        "recipe_digest": result.recipe_digest,
        "layer_key": result.layer.key,
        "cache_hit": result.layer.cache_hit,
        "artifact_sha256": result.artifact.sha256,
        "image": str(result.image.path),
        "report": str(result.report_path),
    }
    print(json.dumps(summary, indent=2, sort_keys=True))
    return 0


def cmd_emit_dockerfile(args: argparse.Namespace) -> int:
    config = _load(args)
    config = replace(config, profile=resolve_profile(args.profile, config=config))
    rendered = render_dockerfile(config)
    if args.output is None:
        sys.stdout.write(rendered)
    else:
        output = Path(args.output)
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(rendered, encoding="utf-8")
        print(f"Wrote {output}")
    return 0


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", help=f"Path to {CONFIG_FILENAME}")
    parser.add_argument("--source", help="Source tree root (defaults to the current directory)")
    parser.add_argument(
        "--profile",
        choices=BUILD_PROFILES,
        help="Build profile (overrides BUILD_PROFILE and the config file)",
    )
    parser.add_argument("--toolchain", help="Toolchain name: cargo or inprocess")
    parser.add_argument("--installer", help="System package installer: apt or preinstalled")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="layerchef", description="Layered service image builder")
    sub = parser.add_subparsers(dest="command", required=True)

    plan_p = sub.add_parser("plan", help="Scan manifests and write the dependency recipe")
    _add_common(plan_p)
    plan_p.add_argument("--output", help="Also write the recipe to this path")
    plan_p.set_defaults(handler=cmd_plan)

    cook_p = sub.add_parser("cook", help="Build or reuse the cached dependency layer")
    _add_common(cook_p)
    cook_p.set_defaults(handler=cmd_cook)

    build_p = sub.add_parser("build", help="Run the full pipeline and assemble the image")
    _add_common(build_p)
    build_p.set_defaults(handler=cmd_build)

    emit_p = sub.add_parser("emit-dockerfile", help="Render the equivalent multi-stage Dockerfile")
    _add_common(emit_p)
    emit_p.add_argument("--output", help="Write to this path instead of stdout")
    emit_p.set_defaults(handler=cmd_emit_dockerfile)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return args.handler(args)
    except LayerchefError as exc:
        print(json.dumps(exc.to_dict(), indent=2, sort_keys=True), file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
