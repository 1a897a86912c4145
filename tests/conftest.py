"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from layerchef.config import PipelineConfig
from layerchef.toolchain import InProcessToolchain

REGISTRY = "registry+https://github.com/rust-lang/crates.io-index"

WORKSPACE_FILES: dict[str, str] = {
    "Cargo.toml": """\
[workspace]
members = ["bin/reth", "crates/net"]
resolver = "2"

[workspace.dependencies]
serde = "1.0.190"
tokio = { version = "=1.33.0", features = ["rt"] }
reth-net = { path = "crates/net" }
""",
    "Cargo.lock": f"""\
version = 3

[[package]]
name = "reth"
version = "0.1.0"
dependencies = ["reth-net", "serde", "tokio"]

[[package]]
name = "reth-net"
version = "0.1.0"
dependencies = ["tokio"]

[[package]]
name = "serde"
version = "1.0.190"
source = "{REGISTRY}"
checksum = "91d3c334ca1ee894a2c6f6ad698fe8c435b76d504b13d436f0685d648d6d96f7"

[[package]]
name = "tokio"
version = "1.33.0"
source = "{REGISTRY}"
checksum = "4f38200e3ef7995e5ef13baec2f432a6da0aa9ac495b2c0e8f3b7eec2c92d653"
""",
    "bin/reth/Cargo.toml": """\
[package]
name = "reth"
version = "0.1.0"
edition = "2021"

[[bin]]
name = "reth"
path = "src/main.rs"

[dependencies]
serde = { workspace = true }
tokio = { workspace = true }
reth-net = { workspace = true }
""",
    "bin/reth/src/main.rs": 'fn main() {\n    println!("reth");\n}\n',
    "crates/net/Cargo.toml": """\
[package]
name = "reth-net"
version = "0.1.0"
edition = "2021"

[dependencies]
tokio = { workspace = true }

[dev-dependencies]
serde = "1"
""",
    "crates/net/src/lib.rs": "pub fn listen() {}\n",
    "LICENSE-MIT": "MIT License\n",
    "LICENSE-APACHE": "Apache License 2.0\n",
    "README.md": "# reth\n",
}


def write_tree(root: Path, files: dict[str, str]) -> Path:
    for relative, contents in files.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(contents, encoding="utf-8")
    return root


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """A small Cargo workspace with one binary crate and one library crate."""
    return write_tree(tmp_path / "workspace", WORKSPACE_FILES)


@pytest.fixture
def toolchain() -> InProcessToolchain:
    return InProcessToolchain()


@pytest.fixture
def pipeline_config(tmp_path: Path, workspace: Path) -> PipelineConfig:
    return PipelineConfig(
        source_root=workspace,
        toolchain="inprocess",
        installer="preinstalled",
        jobs=2,
        cache_dir=tmp_path / "cache",
        work_dir=tmp_path / "work",
        output_dir=tmp_path / "images",
    )


@pytest.fixture(autouse=True)
def _clear_profile_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("BUILD_PROFILE", raising=False)
