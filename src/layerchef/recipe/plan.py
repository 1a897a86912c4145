"""Dependency plan generation from scanned manifests."""

from __future__ import annotations

import fnmatch
import posixpath
import re
import tomllib
from collections.abc import Iterator
from typing import Any

from layerchef.errors import PlanError
from layerchef.models import ScanResult
from layerchef.recipe.model import (
    ExternalDependency,
    LocalPackage,
    Recipe,
    RecipeFile,
    StubKind,
    TargetStub,
)
from layerchef.scan import LOCK_NAME, MANIFEST_NAME

DEPENDENCY_TABLES: tuple[str, ...] = ("dependencies", "dev-dependencies", "build-dependencies")

EXACT_PIN_PATTERN = re.compile(r"^=\s*([0-9A-Za-z.+\-]+)$")

# Explicit auxiliary targets fall back to these directories when no path is set.
AUX_TARGET_DIRS: dict[str, str] = {
    "bench": "benches",
    "example": "examples",
    "test": "tests",
}


def plan_recipe(scan: ScanResult) -> Recipe:
    """Derive a deterministic recipe from the scanner output alone."""
    files = tuple(
        RecipeFile(path=item.path, contents=_decode(item.path, item.content))
        for item in scan.files
    )
    by_path = {item.path: item.contents for item in files}

    if MANIFEST_NAME not in by_path:
        raise PlanError(
            "Root Cargo.toml is missing from the scanned manifests.",
            context={"operation": "plan"},
        )
    lock_text = by_path.get(LOCK_NAME)
    if lock_text is None:
        raise PlanError(
            "Cargo.lock is required for locked dependency builds.",
            hint="Run `cargo generate-lockfile` and commit the lock file.",
            context={"operation": "plan"},
        )

    manifest_texts = {
        path: text
        for path, text in sorted(by_path.items())
        if posixpath.basename(path) == MANIFEST_NAME
    }
    locked = _parse_lock(_parse_toml(LOCK_NAME, lock_text))
    locked_names = {name for name, _, _, _ in locked}

    root = _parse_toml(MANIFEST_NAME, manifest_texts[MANIFEST_NAME])
    workspace = root.get("workspace", {})
    workspace_deps = workspace.get("dependencies", {}) if isinstance(workspace, dict) else {}
    if not isinstance(workspace_deps, dict):
        raise PlanError(
            "Invalid `workspace.dependencies` table.",
            context={"operation": "plan", "manifest": MANIFEST_NAME},
        )

    pins: dict[str, dict[str, str]] = {}
    for name, spec in workspace_deps.items():
        if _is_path_dependency(spec):
            continue
        _record_pin(pins, name=_package_name(name, spec), spec=spec, manifest=MANIFEST_NAME)

    packages: list[LocalPackage] = []
    for path, manifest in _workspace_manifests(manifest_texts, root, workspace_deps).items():
        package = manifest.get("package")
        if package is None and "workspace" not in manifest:
            raise PlanError(
                "Manifest declares neither [package] nor [workspace].",
                context={"operation": "plan", "manifest": path},
            )
        if package is not None:
            if not isinstance(package, dict) or not isinstance(package.get("name"), str):
                raise PlanError(
                    "Package manifest is missing a name.",
                    context={"operation": "plan", "manifest": path},
                )
            packages.append(
                LocalPackage(
                    name=package["name"],
                    manifest=path,
                    targets=_target_stubs(path, manifest),
                )
            )

        for dep_name, spec in _iter_dependencies(manifest):
            if isinstance(spec, dict) and spec.get("workspace") is True:
                if dep_name not in workspace_deps:
                    raise PlanError(
                        "Dependency inherits from the workspace but is not declared there.",
                        hint="Add it to [workspace.dependencies] in the root Cargo.toml.",
                        context={"operation": "plan", "manifest": path, "dependency": dep_name},
                    )
                spec = workspace_deps[dep_name]
            package_name = _package_name(dep_name, spec)
            if _is_path_dependency(spec):
                continue
            _record_pin(pins, name=package_name, spec=spec, manifest=path)
            if package_name not in locked_names:
                raise PlanError(
                    "Dependency is not present in Cargo.lock.",
                    hint="The lock file is stale; regenerate it with cargo.",
                    context={"operation": "plan", "manifest": path, "dependency": package_name},
                )

    for name, versions in sorted(pins.items()):
        if len(versions) > 1:
            raise PlanError(
                "Conflicting exact version constraints.",
                context={
                    "operation": "plan",
                    "dependency": name,
                    "constraints": ", ".join(
                        f"{manifest}={version}" for version, manifest in sorted(versions.items())
                    ),
                },
            )

    dependencies = tuple(
        ExternalDependency(name=name, version=version, source=source, checksum=checksum)
        for name, version, source, checksum in sorted(
            locked, key=lambda item: (item[0], item[1], item[2] or "")
        )
        if source is not None
    )
    return Recipe(
        files=files,
        packages=tuple(sorted(packages, key=lambda item: (item.manifest, item.name))),
        dependencies=dependencies,
    )


def _decode(path: str, content: bytes) -> str:
    try:
        text = content.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise PlanError(
            "Manifest is not valid UTF-8.",
            context={"operation": "plan", "manifest": path},
        ) from exc
    return text.replace("\r\n", "\n")


def _parse_toml(path: str, text: str) -> dict[str, Any]:
    try:
        return tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        raise PlanError(
            "Manifest is not valid TOML.",
            hint=str(exc),
            context={"operation": "plan", "manifest": path},
        ) from exc


def _parse_lock(lock: dict[str, Any]) -> list[tuple[str, str, str | None, str | None]]:
    entries = lock.get("package")
    if not isinstance(entries, list):
        raise PlanError(
            "Cargo.lock has no package list.",
            context={"operation": "plan", "manifest": LOCK_NAME},
        )

    checksums: dict[tuple[str, str, str | None], str | None] = {}
    for entry in entries:
        if not isinstance(entry, dict):
            raise PlanError("Invalid Cargo.lock package entry.", context={"operation": "plan"})
        name = entry.get("name")
        version = entry.get("version")
        if not isinstance(name, str) or not isinstance(version, str):
            raise PlanError(
                "Cargo.lock package entry is missing a name or version.",
                context={"operation": "plan", "manifest": LOCK_NAME},
            )
        source = entry.get("source")
        checksum = entry.get("checksum")
        key = (name, version, source if isinstance(source, str) else None)
        if key in checksums and checksums[key] != checksum:
            raise PlanError(
                "Cargo.lock pins one package version to two different checksums.",
                context={"operation": "plan", "dependency": f"{name}@{version}"},
            )
        checksums[key] = checksum if isinstance(checksum, str) else None

    return [
        (name, version, source, checksum)
        for (name, version, source), checksum in checksums.items()
    ]


def _workspace_manifests(
    texts: dict[str, str],
    root: dict[str, Any],
    workspace_deps: dict[str, Any],
) -> dict[str, dict[str, Any]]:
    """Parse the root manifest and every workspace member, keyed by sorted path.

    Members come from the root ``workspace.members`` globs minus
    ``workspace.exclude``, plus local crates reached through path
    dependencies. Other manifests in the tree (nested workspaces, excluded
    crates, test fixtures) are carried verbatim but never validated.
    """
    parsed = {MANIFEST_NAME: root}
    workspace = root.get("workspace")
    if isinstance(workspace, dict):
        patterns = _string_list(workspace, "members")
        excluded = [posixpath.normpath(item) for item in _string_list(workspace, "exclude")]
        for path in texts:
            directory = posixpath.dirname(path)
            if not directory or any(
                directory == item or directory.startswith(item + "/") for item in excluded
            ):
                continue
            if any(_member_matches(directory, pattern) for pattern in patterns):
                parsed[path] = _parse_toml(path, texts[path])

    pending = sorted(parsed)
    while pending:
        path = pending.pop()
        for dep_name, spec in _iter_dependencies(parsed[path]):
            base = posixpath.dirname(path)
            if isinstance(spec, dict) and spec.get("workspace") is True:
                spec = workspace_deps.get(dep_name)
                base = ""
            if not _is_path_dependency(spec) or not isinstance(spec["path"], str):
                continue
            target = posixpath.normpath(posixpath.join(base, spec["path"], MANIFEST_NAME))
            if target in texts and target not in parsed:
                parsed[target] = _parse_toml(target, texts[target])
                pending.append(target)
    return dict(sorted(parsed.items()))


def _member_matches(directory: str, pattern: str) -> bool:
    parts = posixpath.normpath(pattern).split("/")
    segments = directory.split("/")
    if len(parts) != len(segments):
        return False
    return all(fnmatch.fnmatchcase(segment, part) for segment, part in zip(segments, parts))


def _string_list(workspace: dict[str, Any], key: str) -> list[str]:
    value = workspace.get(key, [])
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise PlanError(
            f"`workspace.{key}` must be an array of paths.",
            context={"operation": "plan", "manifest": MANIFEST_NAME},
        )
    return value


def _iter_dependencies(manifest: dict[str, Any]) -> Iterator[tuple[str, Any]]:
    tables: list[Any] = [manifest.get(table) for table in DEPENDENCY_TABLES]
    targets = manifest.get("target", {})
    if isinstance(targets, dict):
        for platform in sorted(targets):
            section = targets[platform]
            if isinstance(section, dict):
                tables.extend(section.get(table) for table in DEPENDENCY_TABLES)
    for table in tables:
        if isinstance(table, dict):
            yield from sorted(table.items())


def _package_name(dep_name: str, spec: Any) -> str:
    if isinstance(spec, dict) and isinstance(spec.get("package"), str):
        return spec["package"]
    return dep_name


def _is_path_dependency(spec: Any) -> bool:
    return isinstance(spec, dict) and "path" in spec


def _record_pin(pins: dict[str, dict[str, str]], *, name: str, spec: Any, manifest: str) -> None:
    requirement = spec if isinstance(spec, str) else None
    if isinstance(spec, dict) and isinstance(spec.get("version"), str):
        requirement = spec["version"]
    if requirement is None:
        return
    for part in requirement.split(","):
        match = EXACT_PIN_PATTERN.match(part.strip())
        if match:
            pins.setdefault(name, {}).setdefault(match.group(1), manifest)


def _target_stubs(manifest_path: str, manifest: dict[str, Any]) -> tuple[TargetStub, ...]:
    """Derive the stub sources cargo needs to accept the package.

    Default ``src/lib.rs`` and ``src/main.rs`` stubs are only added when the
    manifest leaves target discovery on: ``autolib``/``autobins`` are not
    false, no explicit ``[[bin]]`` list replaces the default binary, and the
    library is not a proc-macro or cdylib.
    """
    base = posixpath.dirname(manifest_path)
    package = manifest["package"]
    stubs: dict[str, StubKind] = {}

    lib = manifest.get("lib")
    if isinstance(lib, dict):
        lib_path = lib.get("path")
        stubs[lib_path if isinstance(lib_path, str) else "src/lib.rs"] = "lib"
    elif package.get("autolib") is not False:
        stubs["src/lib.rs"] = "lib"

    bins = _array_of_tables(manifest.get("bin"))
    if package.get("autobins") is not False and not bins and not _is_special_lib(lib):
        stubs.setdefault("src/main.rs", "bin")

    for entry in bins:
        path = entry.get("path")
        if not isinstance(path, str) and entry.get("name") == package.get("name"):
            path = "src/main.rs"
        elif not isinstance(path, str) and isinstance(entry.get("name"), str):
            path = f"src/bin/{entry['name']}.rs"
        if isinstance(path, str):
            stubs.setdefault(path, "bin")

    for section, directory in AUX_TARGET_DIRS.items():
        for entry in _array_of_tables(manifest.get(section)):
            path = entry.get("path")
            if not isinstance(path, str) and isinstance(entry.get("name"), str):
                path = f"{directory}/{entry['name']}.rs"
            if isinstance(path, str):
                stubs.setdefault(path, "aux")

    build = package.get("build")
    if build is True:
        build = "build.rs"
    if isinstance(build, str):
        stubs[build] = "build"

    return tuple(
        TargetStub(path=posixpath.normpath(posixpath.join(base, path)), kind=kind)
        for path, kind in sorted(stubs.items())
    )


def _array_of_tables(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _is_special_lib(lib: Any) -> bool:
    if not isinstance(lib, dict):
        return False
    if lib.get("proc-macro") is True or lib.get("proc_macro") is True:
        return True
    crate_types = lib.get("crate-type", lib.get("crate_type"))
    return isinstance(crate_types, list) and set(crate_types) <= {"cdylib", "proc-macro"}
