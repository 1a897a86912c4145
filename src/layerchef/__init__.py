"""Public package entrypoint for the layerchef build pipeline."""

from .assemble import RuntimeImageAssembler, collect_legal_files
from .cache import LayerCacheInput, LayerStore, layer_key
from .compile import ApplicationCompiler
from .config import PipelineConfig, load_config, resolve_profile
from .contract import DEFAULT_ENDPOINTS, Endpoint, LifecycleContract
from .cook import Cook
from .emit import emit_dockerfile, render_dockerfile
from .errors import (
    AssemblyError,
    CacheIntegrityError,
    CompileError,
    ContractError,
    DependencyBuildError,
    ErrorCode,
    LayerchefError,
    PlanError,
    ProfileMismatchError,
    ScanError,
    StageError,
    ValidationError,
)
from .models import (
    Artifact,
    BuildProfile,
    DependencyLayer,
    PipelineResult,
    RuntimeImage,
    ScanResult,
)
from .pipeline import Pipeline, Stage, StageGraph, build_pipeline, run_pipeline
from .recipe import Recipe, plan_recipe
from .scan import scan_manifests

__all__ = [
    "DEFAULT_ENDPOINTS",
    "ApplicationCompiler",
    "Artifact",
    "AssemblyError",
    "BuildProfile",
    "CacheIntegrityError",
    "CompileError",
    "ContractError",
    "Cook",
    "DependencyBuildError",
    "DependencyLayer",
    "Endpoint",
    "ErrorCode",
    "LayerCacheInput",
    "LayerStore",
    "LayerchefError",
    "LifecycleContract",
    "Pipeline",
    "PipelineConfig",
    "PipelineResult",
    "PlanError",
    "ProfileMismatchError",
    "Recipe",
    "RuntimeImage",
    "RuntimeImageAssembler",
    "ScanError",
    "ScanResult",
    "Stage",
    "StageError",
    "StageGraph",
    "ValidationError",
    "build_pipeline",
    "collect_legal_files",
    "emit_dockerfile",
    "layer_key",
    "load_config",
    "plan_recipe",
    "render_dockerfile",
    "resolve_profile",
    "run_pipeline",
    "scan_manifests",
]
