"""Recipe parser and serializer."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from layerchef.errors import PlanError
from layerchef.recipe.model import (
    RECIPE_FORMAT_VERSION,
    ExternalDependency,
    LocalPackage,
    Recipe,
    RecipeFile,
    TargetStub,
)

STUB_KINDS = ("lib", "bin", "build", "aux")


def serialize_recipe(recipe: Recipe) -> str:
    return json.dumps(recipe.payload(), indent=2, sort_keys=True) + "\n"


def parse_recipe(raw: str) -> Recipe:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise PlanError("Invalid recipe JSON.", hint=str(exc)) from exc

    if not isinstance(payload, dict):
        raise PlanError("Invalid recipe payload type.")

    version = payload.get("version")
    if version != RECIPE_FORMAT_VERSION:
        raise PlanError(
            "Unsupported recipe format version.",
            hint="Regenerate the recipe with this version of layerchef.",
            context={"version": str(version)},
        )
    return Recipe(
        files=tuple(_parse_file(item) for item in _required_list(payload, "files")),
        packages=tuple(_parse_package(item) for item in _required_list(payload, "packages")),
        dependencies=tuple(
            _parse_dependency(item) for item in _required_list(payload, "dependencies")
        ),
        version=version,
    )


def read_recipe(path: str | Path) -> Recipe:
    recipe_path = Path(path)
    try:
        raw = recipe_path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise PlanError(
            "Recipe file does not exist.",
            hint="Run `layerchef plan` first.",
            context={"path": str(recipe_path)},
        ) from exc
    return parse_recipe(raw)


def write_recipe(recipe: Recipe, path: str | Path) -> Path:
    recipe_path = Path(path)
    recipe_path.parent.mkdir(parents=True, exist_ok=True)
    recipe_path.write_text(serialize_recipe(recipe), encoding="utf-8")
    return recipe_path


def _parse_file(item: Any) -> RecipeFile:
    if not isinstance(item, dict):
        raise PlanError("Invalid file entry in recipe.")
    return RecipeFile(path=_required_str(item, "path"), contents=_required_text(item, "contents"))


def _parse_package(item: Any) -> LocalPackage:
    if not isinstance(item, dict):
        raise PlanError("Invalid package entry in recipe.")
    targets: list[TargetStub] = []
    for target in _required_list(item, "targets"):
        if not isinstance(target, dict) or target.get("kind") not in STUB_KINDS:
            raise PlanError("Invalid target stub in recipe.")
        targets.append(TargetStub(path=_required_str(target, "path"), kind=target["kind"]))
    return LocalPackage(
        name=_required_str(item, "name"),
        manifest=_required_str(item, "manifest"),
        targets=tuple(targets),
    )


def _parse_dependency(item: Any) -> ExternalDependency:
    if not isinstance(item, dict):
        raise PlanError("Invalid dependency entry in recipe.")
    checksum = item.get("checksum")
    if checksum is not None and not isinstance(checksum, str):
        raise PlanError("Invalid recipe `checksum` value.")
    return ExternalDependency(
        name=_required_str(item, "name"),
        version=_required_str(item, "version"),
        source=_required_str(item, "source"),
        checksum=checksum,
    )


def _required_str(payload: dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value:
        raise PlanError(f"Invalid recipe `{key}` value.")
    return value


def _required_text(payload: dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str):
        raise PlanError(f"Invalid recipe `{key}` value.")
    return value


def _required_list(payload: dict[str, Any], key: str) -> list[Any]:
    value = payload.get(key)
    if not isinstance(value, list):
        raise PlanError(f"Invalid recipe `{key}` value.")
    return value
