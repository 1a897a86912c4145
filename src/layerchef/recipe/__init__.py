"""Recipe model, planner, and recipe file helpers."""

from .io import parse_recipe, read_recipe, serialize_recipe, write_recipe
from .model import (
    RECIPE_FORMAT_VERSION,
    ExternalDependency,
    LocalPackage,
    Recipe,
    RecipeFile,
    TargetStub,
)
from .plan import plan_recipe

__all__ = [
    "RECIPE_FORMAT_VERSION",
    "ExternalDependency",
    "LocalPackage",
    "Recipe",
    "RecipeFile",
    "TargetStub",
    "parse_recipe",
    "plan_recipe",
    "read_recipe",
    "serialize_recipe",
    "write_recipe",
]
