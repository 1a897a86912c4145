"""Content-addressed dependency layer cache APIs."""

from .keys import LayerCacheInput, layer_key
from .store import LayerStore, tree_digest

__all__ = ["LayerCacheInput", "LayerStore", "layer_key", "tree_digest"]
