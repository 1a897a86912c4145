"""Pipeline configuration loaded from ``layerchef.toml``."""

from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from layerchef.contract import (
    DEFAULT_ENDPOINTS,
    DEFAULT_STOP_SIGNAL,
    DEFAULT_WORKING_DIR,
    Endpoint,
    LifecycleContract,
    default_entrypoint,
)
from layerchef.errors import ValidationError
from layerchef.models import BuildProfile, parse_profile
from layerchef.toolchain import DEFAULT_SYSTEM_PACKAGES

CONFIG_FILENAME = "layerchef.toml"
PROFILE_ENV_VAR = "BUILD_PROFILE"
DEFAULT_PROFILE: BuildProfile = "release"
DEFAULT_BINARY = "reth"
DEFAULT_STATE_DIR = ".layerchef"

_SECTION_KEYS: dict[str, frozenset[str]] = {
    "build": frozenset(
        {
            "source",
            "binary",
            "profile",
            "toolchain",
            "toolchain_version",
            "installer",
            "system_packages",
            "jobs",
        }
    ),
    "cache": frozenset({"dir", "work_dir"}),
    "image": frozenset(
        {
            "name",
            "output_dir",
            "entrypoint",
            "stop_signal",
            "working_dir",
            "license_prefix",
            "endpoints",
            "labels",
        }
    ),
}
_ENDPOINT_KEYS = frozenset({"port", "transport", "role"})


@dataclass(frozen=True, slots=True)
class PipelineConfig:
    source_root: Path
    binary: str = DEFAULT_BINARY
    profile: BuildProfile | None = None
    toolchain: str = "cargo"
    toolchain_version: str | None = None
    installer: str = "apt"
    system_packages: tuple[str, ...] = DEFAULT_SYSTEM_PACKAGES
    jobs: int | None = None
    cache_dir: Path | None = None
    work_dir: Path | None = None
    output_dir: Path | None = None
    image_name: str | None = None
    entrypoint: str | None = None
    stop_signal: str = DEFAULT_STOP_SIGNAL
    working_dir: str = DEFAULT_WORKING_DIR
    license_prefix: str = "LICENSE-"
    endpoints: tuple[Endpoint, ...] = DEFAULT_ENDPOINTS
    labels: Mapping[str, str] = field(default_factory=dict)

    @property
    def state_dir(self) -> Path:
        return self.source_root / DEFAULT_STATE_DIR

    @property
    def resolved_cache_dir(self) -> Path:
        return self.cache_dir or self.state_dir / "cache"

    @property
    def resolved_work_dir(self) -> Path:
        return self.work_dir or self.state_dir / "work"

    @property
    def resolved_output_dir(self) -> Path:
        return self.output_dir or self.state_dir / "images"

    @property
    def resolved_image_name(self) -> str:
        return self.image_name or self.binary

    @property
    def resolved_entrypoint(self) -> str:
        return self.entrypoint or default_entrypoint(self.binary)

    def contract(self) -> LifecycleContract:
        return LifecycleContract(
            entrypoint=self.resolved_entrypoint,
            endpoints=self.endpoints,
            stop_signal=self.stop_signal,
            working_dir=self.working_dir,
        )


def resolve_profile(
    cli_profile: str | None = None,
    *,
    config: PipelineConfig | None = None,
    environ: Mapping[str, str] | None = None,
) -> BuildProfile:
    """Pick the run's profile: CLI flag, then ``BUILD_PROFILE``, then config, then release."""
    if cli_profile:
        return parse_profile(cli_profile)
    env = os.environ if environ is None else environ
    from_env = env.get(PROFILE_ENV_VAR, "").strip()
    if from_env:
        return parse_profile(from_env)
    if config is not None and config.profile is not None:
        return config.profile
    return DEFAULT_PROFILE


def load_config(path: str | Path) -> PipelineConfig:
    config_path = Path(path)
    try:
        with config_path.open("rb") as handle:
            data = tomllib.load(handle)
    except FileNotFoundError as exc:
        raise ValidationError(
            "Configuration file does not exist.",
            context={"path": str(config_path)},
        ) from exc
    except tomllib.TOMLDecodeError as exc:
        raise ValidationError(
            "Configuration file is not valid TOML.",
            context={"path": str(config_path), "error": str(exc)},
        ) from exc
    return config_from_mapping(data, base_dir=config_path.resolve().parent)


def config_from_mapping(data: Mapping[str, Any], *, base_dir: Path) -> PipelineConfig:
    """Build a config from parsed TOML; relative paths resolve against *base_dir*."""
    unknown_sections = sorted(set(data) - set(_SECTION_KEYS))
    if unknown_sections:
        raise ValidationError(
            "Unknown configuration section.",
            hint=f"Supported sections: {', '.join(sorted(_SECTION_KEYS))}.",
            context={"sections": ",".join(unknown_sections)},
        )
    build = _section(data, "build")
    cache = _section(data, "cache")
    image = _section(data, "image")

    def resolve_path(value: Any, key: str) -> Path | None:
        if value is None:
            return None
        if not isinstance(value, str) or not value:
            raise ValidationError("Path settings must be non-empty strings.", context={"key": key})
        candidate = Path(value)
        return candidate if candidate.is_absolute() else base_dir / candidate

    source_root = resolve_path(build.get("source", "."), "build.source") or base_dir

    profile_value = _optional_string(build, "profile")
    system_packages = build.get("system_packages", list(DEFAULT_SYSTEM_PACKAGES))
    if not isinstance(system_packages, list) or not all(
        isinstance(item, str) for item in system_packages
    ):
        raise ValidationError(
            "build.system_packages must be a list of package names.",
            context={"key": "build.system_packages"},
        )
    jobs = build.get("jobs")
    if jobs is not None and (isinstance(jobs, bool) or not isinstance(jobs, int) or jobs < 1):
        raise ValidationError("build.jobs must be a positive integer.", context={"jobs": str(jobs)})

    labels = image.get("labels", {})
    if not isinstance(labels, dict) or not all(isinstance(v, str) for v in labels.values()):
        raise ValidationError(
            "image.labels must map label names to strings.",
            context={"key": "image.labels"},
        )

    endpoints = DEFAULT_ENDPOINTS
    if "endpoints" in image:
        endpoints = _parse_endpoints(image["endpoints"])

    return PipelineConfig(
        source_root=source_root,
        binary=_string(build, "binary", DEFAULT_BINARY),
        profile=parse_profile(profile_value) if profile_value is not None else None,
        toolchain=_string(build, "toolchain", "cargo"),
        toolchain_version=_optional_string(build, "toolchain_version"),
        installer=_string(build, "installer", "apt"),
        system_packages=tuple(system_packages),
        jobs=jobs,
        cache_dir=resolve_path(cache.get("dir"), "cache.dir"),
        work_dir=resolve_path(cache.get("work_dir"), "cache.work_dir"),
        output_dir=resolve_path(image.get("output_dir"), "image.output_dir"),
        image_name=_optional_string(image, "name"),
        entrypoint=_optional_string(image, "entrypoint"),
        stop_signal=_string(image, "stop_signal", DEFAULT_STOP_SIGNAL),
        working_dir=_string(image, "working_dir", DEFAULT_WORKING_DIR),
        license_prefix=_string(image, "license_prefix", "LICENSE-"),
        endpoints=endpoints,
        labels=dict(sorted(labels.items())),
    )


def _section(data: Mapping[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name, {})
    if not isinstance(section, dict):
        raise ValidationError("Configuration section must be a table.", context={"section": name})
    unknown = sorted(set(section) - _SECTION_KEYS[name])
    if unknown:
        raise ValidationError(
            "Unknown configuration key.",
            hint=f"Supported keys in [{name}]: {', '.join(sorted(_SECTION_KEYS[name]))}.",
            context={"section": name, "keys": ",".join(unknown)},
        )
    return section


def _string(section: Mapping[str, Any], key: str, default: str) -> str:
    value = section.get(key, default)
    if not isinstance(value, str) or not value:
        raise ValidationError("Setting must be a non-empty string.", context={"key": key})
    return value


def _optional_string(section: Mapping[str, Any], key: str) -> str | None:
    if key not in section:
        return None
    return _string(section, key, "")


def _parse_endpoints(raw: Any) -> tuple[Endpoint, ...]:
    if not isinstance(raw, list):
        raise ValidationError(
            "image.endpoints must be an array of tables.",
            context={"key": "image.endpoints"},
        )
    endpoints: list[Endpoint] = []
    for index, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ValidationError(
                "Endpoint entries must be tables.",
                context={"index": str(index)},
            )
        unknown = sorted(set(item) - _ENDPOINT_KEYS)
        missing = sorted(_ENDPOINT_KEYS - set(item))
        if unknown or missing:
            raise ValidationError(
                "Endpoint entries need exactly port, transport and role.",
                context={
                    "index": str(index),
                    "unknown": ",".join(unknown),
                    "missing": ",".join(missing),
                },
            )
        endpoints.append(
            Endpoint(port=item["port"], transport=item["transport"], role=item["role"])
        )
    return tuple(endpoints)


__all__ = [
    "CONFIG_FILENAME",
    "DEFAULT_PROFILE",
    "PROFILE_ENV_VAR",
    "PipelineConfig",
    "config_from_mapping",
    "load_config",
    "resolve_profile",
]
