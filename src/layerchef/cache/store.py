"""Content-addressed, write-once dependency layer store."""

from __future__ import annotations

import hashlib
import json
import os
import shutil
import tempfile
from dataclasses import replace
from pathlib import Path

from layerchef.cache.keys import LayerCacheInput, _to_payload, layer_key
from layerchef.errors import CacheIntegrityError
from layerchef.models import DependencyLayer

MANIFEST_NAME = "manifest.json"
STAGING_PREFIX = ".staging-"


class LayerStore:
    """Layers live under ``<root>/<key>/`` and become visible only by atomic rename.

    Writers build into a staging directory inside the store root. The first
    rename onto a key wins; later writers for the same key discard their
    staging directory and read the published entry instead.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def entry_path(self, key: str) -> Path:
        return self.root / key

    def keys(self) -> tuple[str, ...]:
        return tuple(
            sorted(
                entry.name
                for entry in self.root.iterdir()
                if entry.is_dir()
                and not entry.name.startswith(".")
                and (entry / MANIFEST_NAME).is_file()
            )
        )

    def load(self, *, inputs: LayerCacheInput) -> DependencyLayer | None:
        key = layer_key(inputs)
        entry = self.entry_path(key)
        manifest_path = entry / MANIFEST_NAME
        if not manifest_path.exists():
            return None

        manifest = self._read_manifest(manifest_path)
        if manifest.get("key") != key:
            raise CacheIntegrityError(
                "Layer manifest key mismatch.",
                hint="Remove the cache entry and rebuild.",
                context={"operation": "layer_load", "key": key},
            )
        if manifest.get("inputs") != _to_payload(inputs):
            raise CacheIntegrityError(
                "Layer manifest inputs do not match expected cook inputs.",
                hint="Remove the cache entry and rebuild.",
                context={"operation": "layer_load", "key": key},
            )
        return DependencyLayer(
            key=key,
            recipe_digest=inputs.recipe_digest,
            profile=inputs.profile,
            toolchain=inputs.toolchain,
            path=entry,
            cache_hit=True,
        )

    def staging_dir(self) -> Path:
        return Path(tempfile.mkdtemp(prefix=STAGING_PREFIX, dir=str(self.root)))

    def publish(self, *, inputs: LayerCacheInput, staging: Path) -> DependencyLayer:
        """Atomically publish *staging* as the layer for *inputs*."""
        key = layer_key(inputs)
        manifest = {
            "key": key,
            "inputs": _to_payload(inputs),
            "tree_sha256": tree_digest(staging / "target"),
        }
        (staging / MANIFEST_NAME).write_text(
            json.dumps(manifest, indent=2, sort_keys=True) + "\n",
            encoding="utf-8",
        )

        entry = self.entry_path(key)
        try:
            os.rename(staging, entry)
        except OSError:
            if not (entry / MANIFEST_NAME).exists():
                raise
            shutil.rmtree(staging, ignore_errors=True)
            existing = self.load(inputs=inputs)
            if existing is None:
                raise
            return replace(existing, cache_hit=False)

        return DependencyLayer(
            key=key,
            recipe_digest=inputs.recipe_digest,
            profile=inputs.profile,
            toolchain=inputs.toolchain,
            path=entry,
            cache_hit=False,
        )

    def verify(self, key: str) -> None:
        """Recompute the tree digest of a published layer."""
        entry = self.entry_path(key)
        manifest = self._read_manifest(entry / MANIFEST_NAME)
        actual = tree_digest(entry / "target")
        if manifest.get("tree_sha256") != actual:
            raise CacheIntegrityError(
                "Layer contents digest mismatch.",
                hint="Remove the cache entry and rebuild.",
                context={"operation": "layer_verify", "key": key},
            )

    def _read_manifest(self, path: Path) -> dict[str, object]:
        try:
            parsed = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise CacheIntegrityError(
                "Layer manifest is missing.",
                context={"operation": "layer_load", "path": str(path)},
            ) from exc
        except json.JSONDecodeError as exc:
            raise CacheIntegrityError(
                "Layer manifest is not valid JSON.",
                hint="Remove the cache entry and rebuild.",
                context={"operation": "layer_load", "path": str(path)},
            ) from exc
        if not isinstance(parsed, dict):
            raise CacheIntegrityError(
                "Layer manifest has invalid structure.",
                hint="Remove the cache entry and rebuild.",
                context={"operation": "layer_load", "path": str(path)},
            )
        return parsed


def tree_digest(root: Path) -> str:
    digest = hashlib.sha256()
    if not root.exists():
        return digest.hexdigest()
    for path in sorted(p for p in root.rglob("*") if p.is_file()):
        digest.update(path.relative_to(root).as_posix().encode("utf-8"))
        digest.update(b"\0")
        digest.update(hashlib.sha256(path.read_bytes()).digest())
    return digest.hexdigest()

