"""Emitters that render the pipeline as external build definitions."""

from .dockerfile import (
    DEFAULT_CHEF_IMAGE,
    DEFAULT_RUNTIME_IMAGE,
    emit_dockerfile,
    render_dockerfile,
)

__all__ = ["DEFAULT_CHEF_IMAGE", "DEFAULT_RUNTIME_IMAGE", "emit_dockerfile", "render_dockerfile"]
