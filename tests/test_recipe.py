import json
from pathlib import Path

import pytest

from layerchef.errors import PlanError
from layerchef.recipe import (
    RECIPE_FORMAT_VERSION,
    parse_recipe,
    plan_recipe,
    read_recipe,
    serialize_recipe,
    write_recipe,
)
from layerchef.scan import scan_manifests


def _plan(root: Path):
    return plan_recipe(scan_manifests(root))


def test_recipe_is_deterministic_across_source_edits(workspace: Path) -> None:
    first = _plan(workspace)
    (workspace / "bin/reth/src/main.rs").write_text("fn main() {}\n", encoding="utf-8")
    (workspace / "README.md").write_text("changed\n", encoding="utf-8")
    (workspace / "crates/net/src/extra.rs").write_text("pub fn x() {}\n", encoding="utf-8")
    second = _plan(workspace)

    assert first == second
    assert first.canonical_bytes() == second.canonical_bytes()
    assert first.digest == second.digest


def test_recipe_changes_when_manifest_changes(workspace: Path) -> None:
    before = _plan(workspace).digest
    manifest = workspace / "crates/net/Cargo.toml"
    manifest.write_text(
        manifest.read_text(encoding="utf-8").replace('version = "0.1.0"', 'version = "0.2.0"'),
        encoding="utf-8",
    )

    assert _plan(workspace).digest != before


def test_recipe_normalizes_line_endings(workspace: Path) -> None:
    lf_digest = _plan(workspace).digest
    for name in ("Cargo.toml", "bin/reth/Cargo.toml"):
        path = workspace / name
        path.write_bytes(path.read_bytes().replace(b"\n", b"\r\n"))

    assert _plan(workspace).digest == lf_digest


def test_recipe_has_no_absolute_paths_or_source_content(workspace: Path) -> None:
    canonical = _plan(workspace).canonical_bytes().decode("utf-8")

    assert str(workspace) not in canonical
    assert "println!" not in canonical
    assert "pub fn listen" not in canonical


def test_recipe_lists_external_dependencies_sorted(workspace: Path) -> None:
    recipe = _plan(workspace)

    assert [(dep.name, dep.version) for dep in recipe.dependencies] == [
        ("serde", "1.0.190"),
        ("tokio", "1.33.0"),
    ]
    assert all(dep.checksum for dep in recipe.dependencies)
    assert recipe.local_package_names() == ("reth", "reth-net")


def test_recipe_derives_target_stubs_from_manifests(workspace: Path) -> None:
    recipe = _plan(workspace)
    packages = {package.name: package for package in recipe.packages}

    reth_stubs = {stub.path: stub.kind for stub in packages["reth"].targets}
    assert reth_stubs["bin/reth/src/main.rs"] == "bin"
    assert reth_stubs["bin/reth/src/lib.rs"] == "lib"
    net_stubs = {stub.path: stub.kind for stub in packages["reth-net"].targets}
    assert net_stubs["crates/net/src/lib.rs"] == "lib"


def test_recipe_skips_default_binary_stub_for_proc_macro(workspace: Path) -> None:
    (workspace / "crates/net/Cargo.toml").write_text(
        '[package]\nname = "reth-net"\nversion = "0.1.0"\n\n'
        "[lib]\nproc-macro = true\n",
        encoding="utf-8",
    )
    packages = {package.name: package for package in _plan(workspace).packages}

    net_stubs = {stub.path: stub.kind for stub in packages["reth-net"].targets}
    assert net_stubs == {"crates/net/src/lib.rs": "lib"}


def test_recipe_honors_autobins_and_autolib(workspace: Path) -> None:
    (workspace / "crates/net/Cargo.toml").write_text(
        '[package]\nname = "reth-net"\nversion = "0.1.0"\nautobins = false\nautolib = false\n\n'
        '[[bin]]\nname = "net-tool"\n',
        encoding="utf-8",
    )
    packages = {package.name: package for package in _plan(workspace).packages}

    net_stubs = {stub.path: stub.kind for stub in packages["reth-net"].targets}
    assert net_stubs == {"crates/net/src/bin/net-tool.rs": "bin"}


def test_recipe_explicit_binaries_replace_default_main(workspace: Path) -> None:
    (workspace / "crates/net/Cargo.toml").write_text(
        '[package]\nname = "reth-net"\nversion = "0.1.0"\n\n'
        '[[bin]]\nname = "reth-net"\n\n[[bin]]\nname = "netctl"\npath = "tools/netctl.rs"\n',
        encoding="utf-8",
    )
    packages = {package.name: package for package in _plan(workspace).packages}

    net_stubs = {stub.path: stub.kind for stub in packages["reth-net"].targets}
    assert net_stubs == {
        "crates/net/src/lib.rs": "lib",
        "crates/net/src/main.rs": "bin",
        "crates/net/tools/netctl.rs": "bin",
    }


def test_plan_ignores_manifests_outside_the_workspace(workspace: Path) -> None:
    root = workspace / "Cargo.toml"
    root.write_text(
        root.read_text(encoding="utf-8").replace(
            'resolver = "2"\n',
            'exclude = ["fuzz"]\nresolver = "2"\n',
        ),
        encoding="utf-8",
    )
    fuzz = workspace / "fuzz/Cargo.toml"
    fuzz.parent.mkdir()
    fuzz.write_text(
        '[package]\nname = "reth-fuzz"\nversion = "0.0.0"\n\n'
        '[dependencies]\nlibfuzzer-sys = "0.4"\n\n[workspace]\nmembers = ["."]\n',
        encoding="utf-8",
    )
    fixture = workspace / "crates/net/tests/fixtures/virtual/Cargo.toml"
    fixture.parent.mkdir(parents=True)
    fixture.write_text('[dependencies]\nanyhow = "1"\n', encoding="utf-8")

    recipe = _plan(workspace)

    paths = [item.path for item in recipe.files]
    assert "fuzz/Cargo.toml" in paths
    assert "crates/net/tests/fixtures/virtual/Cargo.toml" in paths
    assert recipe.local_package_names() == ("reth", "reth-net")
    assert [dep.name for dep in recipe.dependencies] == ["serde", "tokio"]


def test_plan_resolves_member_globs(workspace: Path) -> None:
    root = workspace / "Cargo.toml"
    root.write_text(
        root.read_text(encoding="utf-8").replace(
            'members = ["bin/reth", "crates/net"]',
            'members = ["bin/*", "crates/*"]\nexclude = ["crates/legacy"]',
        ),
        encoding="utf-8",
    )
    legacy = workspace / "crates/legacy/Cargo.toml"
    legacy.parent.mkdir(parents=True)
    legacy.write_text(
        '[package]\nname = "legacy"\nversion = "0.1.0"\n\n[dependencies]\nanyhow = "1"\n',
        encoding="utf-8",
    )

    recipe = _plan(workspace)

    assert recipe.local_package_names() == ("reth", "reth-net")


def test_plan_validates_workspace_members(workspace: Path) -> None:
    member = workspace / "crates/extra/Cargo.toml"
    member.parent.mkdir(parents=True)
    member.write_text('[dependencies]\nanyhow = "1"\n', encoding="utf-8")
    root = workspace / "Cargo.toml"
    root.write_text(
        root.read_text(encoding="utf-8").replace(
            '"crates/net"]',
            '"crates/net", "crates/extra"]',
        ),
        encoding="utf-8",
    )

    with pytest.raises(PlanError, match="neither \\[package\\] nor \\[workspace\\]"):
        _plan(workspace)


def test_plan_requires_lock_file(workspace: Path) -> None:
    (workspace / "Cargo.lock").unlink()

    with pytest.raises(PlanError) as exc_info:
        _plan(workspace)

    assert exc_info.value.stage == "plan"


def test_plan_rejects_stale_lock(workspace: Path) -> None:
    manifest = workspace / "crates/net/Cargo.toml"
    manifest.write_text(
        manifest.read_text(encoding="utf-8") + 'bytes = "1.5"\n',
        encoding="utf-8",
    )

    with pytest.raises(PlanError, match="not present in Cargo.lock"):
        _plan(workspace)


def test_plan_rejects_conflicting_exact_pins(workspace: Path) -> None:
    (workspace / "crates/net/Cargo.toml").write_text(
        '[package]\nname = "reth-net"\nversion = "0.1.0"\n\n'
        '[dependencies]\ntokio = "=1.32.0"\n',
        encoding="utf-8",
    )

    with pytest.raises(PlanError, match="Conflicting exact version"):
        _plan(workspace)


def test_plan_rejects_undeclared_workspace_dependency(workspace: Path) -> None:
    manifest = workspace / "crates/net/Cargo.toml"
    manifest.write_text(
        manifest.read_text(encoding="utf-8").replace(
            "[dependencies]\n",
            "[dependencies]\nfutures = { workspace = true }\n",
        ),
        encoding="utf-8",
    )

    with pytest.raises(PlanError, match="not declared there"):
        _plan(workspace)


def test_plan_rejects_invalid_toml(workspace: Path) -> None:
    (workspace / "crates/net/Cargo.toml").write_text("[package\nname = ", encoding="utf-8")

    with pytest.raises(PlanError, match="not valid TOML"):
        _plan(workspace)


def test_plan_rejects_lock_with_conflicting_checksums(workspace: Path) -> None:
    lock = workspace / "Cargo.lock"
    lock.write_text(
        lock.read_text(encoding="utf-8")
        + '\n[[package]]\nname = "serde"\nversion = "1.0.190"\n'
        'source = "registry+https://github.com/rust-lang/crates.io-index"\n'
        'checksum = "0000"\n',
        encoding="utf-8",
    )

    with pytest.raises(PlanError, match="two different checksums"):
        _plan(workspace)


def test_recipe_file_roundtrip(workspace: Path, tmp_path: Path) -> None:
    recipe = _plan(workspace)
    path = write_recipe(recipe, tmp_path / "out" / "recipe.json")

    loaded = read_recipe(path)

    assert loaded == recipe
    assert loaded.digest == recipe.digest
    assert path.read_text(encoding="utf-8") == serialize_recipe(recipe)


def test_parse_recipe_rejects_unknown_version(workspace: Path) -> None:
    payload = json.loads(serialize_recipe(_plan(workspace)))
    payload["version"] = RECIPE_FORMAT_VERSION + 1

    with pytest.raises(PlanError, match="Unsupported recipe format"):
        parse_recipe(json.dumps(payload))


def test_read_recipe_missing_file(tmp_path: Path) -> None:
    with pytest.raises(PlanError, match="does not exist"):
        read_recipe(tmp_path / "recipe.json")
