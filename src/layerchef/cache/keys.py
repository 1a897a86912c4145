"""Dependency layer cache key derivation."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Any

import cbor2

from layerchef.models import BuildProfile


@dataclass(frozen=True, slots=True)
class LayerCacheInput:
    recipe_digest: str
    profile: BuildProfile
    toolchain: str


def layer_key(inputs: LayerCacheInput) -> str:
    encoded = cbor2.dumps(_to_payload(inputs), canonical=True)
    return hashlib.sha256(encoded).hexdigest()


def _to_payload(inputs: LayerCacheInput) -> dict[str, Any]:
    return {
        "recipe_digest": inputs.recipe_digest,
        "profile": inputs.profile,
        "toolchain": inputs.toolchain,
    }
