"""Multi-stage Dockerfile emission.

Renders the same staging discipline the pipeline runs in-process as a
container build with four stages:
- ``chef``: toolchain base image with cargo-chef
- ``planner``: copies the tree and prepares ``recipe.json``
- ``builder``: installs system packages, cooks dependencies from the recipe
  alone, then copies the tree and builds the application
- ``runtime``: minimal image with the binary, the license files and the
  lifecycle contract
"""

from __future__ import annotations

import json
import shlex
from pathlib import Path, PurePosixPath

from layerchef.config import DEFAULT_PROFILE, PipelineConfig
from layerchef.contract import LifecycleContract
from layerchef.models import CARGO_PROFILE_DIRS, CARGO_PROFILE_NAMES

DEFAULT_CHEF_IMAGE = "lukemathwalker/cargo-chef:latest-rust-1-slim-bookworm"
DEFAULT_RUNTIME_IMAGE = "debian:bookworm-slim"

_CHEF_WORKDIR = "/app"


def render_dockerfile(
    config: PipelineConfig,
    contract: LifecycleContract | None = None,
    *,
    chef_image: str = DEFAULT_CHEF_IMAGE,
    runtime_image: str = DEFAULT_RUNTIME_IMAGE,
) -> str:
    contract = contract or config.contract()
    contract.validate()
    profile = config.profile or DEFAULT_PROFILE
    binary = config.binary
    built = PurePosixPath(_CHEF_WORKDIR, "target", CARGO_PROFILE_DIRS[profile], binary)

    lines: list[str] = [
        f"FROM {chef_image} AS chef",
        f"WORKDIR {_CHEF_WORKDIR}",
    ]
    for name, value in sorted(config.labels.items()):
        lines.append(f"LABEL {name}={json.dumps(value)}")
    lines.extend(
        [
            "",
            "FROM chef AS planner",
            "COPY . .",
            "RUN cargo chef prepare --recipe-path recipe.json",
            "",
            "FROM chef AS builder",
            f"COPY --from=planner {_CHEF_WORKDIR}/recipe.json recipe.json",
            f"ARG BUILD_PROFILE={CARGO_PROFILE_NAMES[profile]}",
            "ENV BUILD_PROFILE=$BUILD_PROFILE",
        ]
    )
    if config.system_packages:
        packages = " ".join(shlex.quote(package) for package in config.system_packages)
        lines.append(
            "RUN set -eux; apt-get update -qq && "
            f"apt-get install -qqy --assume-yes --no-install-recommends {packages}; "
            "rm -rf /var/lib/apt/lists/*"
        )
    # The profile ARG must match the output directory baked into the COPY below.
    lines.extend(
        [
            "RUN cargo chef cook --profile $BUILD_PROFILE --recipe-path recipe.json",
            "COPY . .",
            f"RUN cargo build --profile $BUILD_PROFILE --locked --bin {shlex.quote(binary)}",
            "",
            f"FROM {runtime_image} AS runtime",
            f"WORKDIR {contract.working_dir}",
            f"COPY --from=builder {built} {contract.entrypoint}",
            f"COPY {config.license_prefix}* ./",
        ]
    )
    for endpoint in contract.endpoints:
        lines.append(f"EXPOSE {endpoint}")
    lines.extend(
        [
            f"STOPSIGNAL {contract.stop_signal}",
            f"ENTRYPOINT {json.dumps([contract.entrypoint])}",
        ]
    )
    return "\n".join(lines) + "\n"


def emit_dockerfile(
    config: PipelineConfig,
    destination: str | Path,
    contract: LifecycleContract | None = None,
) -> Path:
    path = Path(destination)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_dockerfile(config, contract), encoding="utf-8")
    return path
