"""Stage graph and the end-to-end build pipeline.

The pipeline is an explicit DAG: each ``Stage`` names the values it requires
and the values it produces. ``StageGraph.validate()`` rejects duplicate stage
names, values produced twice, requirements nobody produces, and cycles before
any stage runs. Stages execute in topological order and the first failure
stops the run.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from graphlib import CycleError, TopologicalSorter
from pathlib import Path
from typing import Any

from layerchef.assemble import RuntimeImageAssembler, collect_legal_files
from layerchef.cache import LayerStore
from layerchef.compile import ApplicationCompiler
from layerchef.config import PipelineConfig, resolve_profile
from layerchef.cook import Cook
from layerchef.errors import LayerchefError, StageError, ValidationError
from layerchef.models import BuildProfile, PipelineResult
from layerchef.observability import StructuredLogger
from layerchef.recipe import plan_recipe, write_recipe
from layerchef.scan import scan_manifests
from layerchef.toolchain import SystemPackageInstaller, Toolchain, get_installer, get_toolchain

StageFn = Callable[[Mapping[str, Any]], Mapping[str, Any]]

RECIPE_FILENAME = "recipe.json"
REPORT_FILENAME = "report.json"
LOG_FILENAME = "run.jsonl"


@dataclass(frozen=True, slots=True)
class Stage:
    name: str
    requires: tuple[str, ...]
    produces: tuple[str, ...]
    run: StageFn


@dataclass(frozen=True, slots=True)
class StageGraph:
    stages: tuple[Stage, ...]
    inputs: frozenset[str] = frozenset()

    def validate(self) -> tuple[Stage, ...]:
        """Check the graph and return its stages in execution order."""
        by_name: dict[str, Stage] = {}
        producers: dict[str, str] = {}
        for stage in self.stages:
            if stage.name in by_name:
                raise ValidationError("Duplicate stage name.", context={"stage": stage.name})
            by_name[stage.name] = stage
            for value in stage.produces:
                if value in producers or value in self.inputs:
                    raise ValidationError(
                        "Value is produced more than once.",
                        context={"value": value, "stage": stage.name},
                    )
                producers[value] = stage.name

        sorter: TopologicalSorter[str] = TopologicalSorter()
        for stage in self.stages:
            upstream: list[str] = []
            for value in stage.requires:
                if value in self.inputs:
                    continue
                if value not in producers:
                    raise ValidationError(
                        "Stage requires a value no stage produces.",
                        hint="Supply it as a pipeline input or add a producing stage.",
                        context={"stage": stage.name, "value": value},
                    )
                upstream.append(producers[value])
            sorter.add(stage.name, *upstream)
        try:
            order = tuple(sorter.static_order())
        except CycleError as exc:
            raise ValidationError(
                "Stage graph contains a cycle.",
                context={"cycle": " -> ".join(exc.args[1])},
            ) from exc
        return tuple(by_name[name] for name in order)

    def upstream_of(self, target: str) -> StageGraph:
        """Return the subgraph needed to run *target*."""
        by_name = {stage.name: stage for stage in self.stages}
        if target not in by_name:
            raise ValidationError("Unknown stage.", context={"stage": target})
        producers = {value: stage.name for stage in self.stages for value in stage.produces}
        needed: set[str] = set()
        pending = [target]
        while pending:
            name = pending.pop()
            if name in needed:
                continue
            needed.add(name)
            pending.extend(
                producers[value] for value in by_name[name].requires if value in producers
            )
        return StageGraph(
            stages=tuple(stage for stage in self.stages if stage.name in needed),
            inputs=self.inputs,
        )

    def execute(
        self,
        values: Mapping[str, Any],
        *,
        logger: StructuredLogger,
        profile: str | None = None,
        completed: list[str] | None = None,
    ) -> dict[str, Any]:
        missing = sorted(self.inputs - set(values))
        if missing:
            raise ValidationError(
                "Pipeline inputs are missing.",
                context={"inputs": ",".join(missing)},
            )
        ordered = self.validate()
        state = dict(values)
        for stage in ordered:
            logger.log(
                operation="stage_start",
                profile=profile,
                stage=stage.name,
                message="Starting stage.",
            )
            try:
                outputs = stage.run({name: state[name] for name in stage.requires})
                absent = sorted(set(stage.produces) - set(outputs))
                if absent:
                    raise ValidationError(
                        "Stage did not produce its declared outputs.",
                        context={"outputs": ",".join(absent)},
                    )
            except LayerchefError as exc:
                _record_failure(logger, profile, stage.name, exc)
                raise
            except Exception as exc:
                error = StageError(
                    "Stage raised an unexpected error.",
                    hint="See the chained exception for the underlying cause.",
                    context={"error": type(exc).__name__, "detail": str(exc)},
                )
                _record_failure(logger, profile, stage.name, error)
                raise error from exc
            state.update({name: outputs[name] for name in stage.produces})
            if completed is not None:
                completed.append(stage.name)
            logger.log(
                operation="stage_complete",
                profile=profile,
                stage=stage.name,
                message="Completed stage.",
            )
        return state


def _record_failure(
    logger: StructuredLogger,
    profile: str | None,
    stage: str,
    error: LayerchefError,
) -> None:
    error.stage = stage
    logger.log(
        operation="stage_failed",
        profile=profile,
        stage=stage,
        message="Stage failed.",
        level="error",
        extra=error.to_dict(),
    )


@dataclass(slots=True)
class Pipeline:
    """Scan, plan, cook, compile and assemble one service for one profile."""

    config: PipelineConfig
    profile: BuildProfile
    toolchain: Toolchain
    installer: SystemPackageInstaller
    logger: StructuredLogger = field(default_factory=StructuredLogger)

    @property
    def report_path(self) -> Path:
        return self.config.resolved_work_dir / "reports" / self.profile / REPORT_FILENAME

    @property
    def log_path(self) -> Path:
        return self.report_path.with_name(LOG_FILENAME)

    @property
    def recipe_path(self) -> Path:
        return self.config.resolved_work_dir / RECIPE_FILENAME

    def graph(self) -> StageGraph:
        return StageGraph(
            stages=(
                Stage("contract", (), ("contract",), self._contract),
                Stage("scan", ("source_root",), ("scan",), self._scan),
                Stage("plan", ("scan",), ("recipe",), self._plan),
                Stage("cook", ("recipe",), ("layer",), self._cook),
                Stage("compile", ("source_root", "layer"), ("artifact",), self._compile),
                Stage(
                    "assemble",
                    ("source_root", "artifact", "contract"),
                    ("image",),
                    self._assemble,
                ),
            ),
            inputs=frozenset({"source_root"}),
        )

    def execute(self, target: str | None = None) -> dict[str, Any]:
        """Run the stages needed for *target*, or every stage when it is None."""
        graph = self.graph()
        if target is not None:
            graph = graph.upstream_of(target)
        return graph.execute(
            {"source_root": self.config.source_root},
            logger=self.logger,
            profile=self.profile,
        )

    def run(self) -> PipelineResult:
        completed: list[str] = []
        try:
            state = self.graph().execute(
                {"source_root": self.config.source_root},
                logger=self.logger,
                profile=self.profile,
                completed=completed,
            )
        except LayerchefError as exc:
            self._write_report({"status": "failed", "stages": completed, "error": exc.to_dict()})
            raise

        layer = state["layer"]
        artifact = state["artifact"]
        image = state["image"]
        recipe = state["recipe"]
        report_path = self._write_report(
            {
                "status": "succeeded",
                "stages": completed,
                "recipe_digest": recipe.digest,
                "layer": {
                    "key": layer.key,
                    "cache_hit": layer.cache_hit,
                    "toolchain": layer.toolchain,
                },
                "artifact": {
                    "binary": artifact.binary,
                    "sha256": artifact.sha256,
                    "entrypoint": artifact.entrypoint,
                },
                "image": {
                    "name": image.name,
                    "path": str(image.path),
                    "files": list(image.files),
                },
                "contract": state["contract"].to_config(),
            }
        )
        return PipelineResult(
            profile=self.profile,
            recipe_digest=recipe.digest,
            layer=layer,
            artifact=artifact,
            image=image,
            report_path=report_path,
            stages=completed,
        )

    def _contract(self, values: Mapping[str, Any]) -> Mapping[str, Any]:
        contract = self.config.contract()
        contract.validate()
        return {"contract": contract}

    def _scan(self, values: Mapping[str, Any]) -> Mapping[str, Any]:
        result = scan_manifests(values["source_root"])
        self.logger.log(
            operation="scan_complete",
            profile=self.profile,
            stage="scan",
            message="Collected dependency manifests.",
            extra={"files": list(result.paths())},
        )
        return {"scan": result}

    def _plan(self, values: Mapping[str, Any]) -> Mapping[str, Any]:
        recipe = plan_recipe(values["scan"])
        write_recipe(recipe, self.recipe_path)
        self.logger.log(
            operation="plan_complete",
            profile=self.profile,
            stage="plan",
            message="Planned recipe.",
            extra={"digest": recipe.digest, "dependencies": len(recipe.dependencies)},
        )
        return {"recipe": recipe}

    def _cook(self, values: Mapping[str, Any]) -> Mapping[str, Any]:
        cook = Cook(
            store=LayerStore(self.config.resolved_cache_dir),
            toolchain=self.toolchain,
            installer=self.installer,
            system_packages=self.config.system_packages,
            jobs=self.config.jobs,
            toolchain_version=self.config.toolchain_version,
            logger=self.logger,
        )
        return {"layer": cook.cook(values["recipe"], self.profile)}

    def _compile(self, values: Mapping[str, Any]) -> Mapping[str, Any]:
        compiler = ApplicationCompiler(
            toolchain=self.toolchain,
            work_dir=self.config.resolved_work_dir,
            jobs=self.config.jobs,
            logger=self.logger,
        )
        artifact = compiler.compile(
            source_root=values["source_root"],
            layer=values["layer"],
            profile=self.profile,
            binary=self.config.binary,
            entrypoint=self.config.resolved_entrypoint,
        )
        return {"artifact": artifact}

    def _assemble(self, values: Mapping[str, Any]) -> Mapping[str, Any]:
        assembler = RuntimeImageAssembler(
            output_dir=self.config.resolved_output_dir,
            logger=self.logger,
        )
        image = assembler.assemble(
            name=self.config.resolved_image_name,
            artifact=values["artifact"],
            legal_files=collect_legal_files(
                values["source_root"],
                prefix=self.config.license_prefix,
            ),
            contract=values["contract"],
            labels=self.config.labels,
        )
        return {"image": image}

    def _write_report(self, payload: dict[str, Any]) -> Path:
        report = {
            "profile": self.profile,
            **payload,
            "failures": self.logger.failures(self.profile),
            "logs": self.logger.records_for_profile(self.profile),
        }
        path = self.report_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(report, indent=2, sort_keys=True) + "\n", encoding="utf-8")
        self.logger.to_json_lines(self.log_path, profile=self.profile)
        return path


def build_pipeline(
    config: PipelineConfig,
    *,
    profile: str | None = None,
    toolchain: Toolchain | None = None,
    installer: SystemPackageInstaller | None = None,
    logger: StructuredLogger | None = None,
) -> Pipeline:
    return Pipeline(
        config=config,
        profile=resolve_profile(profile, config=config),
        toolchain=toolchain or get_toolchain(config.toolchain),
        installer=installer or get_installer(config.installer),
        logger=logger or StructuredLogger(),
    )


def run_pipeline(
    config: PipelineConfig,
    *,
    profile: str | None = None,
    toolchain: Toolchain | None = None,
    installer: SystemPackageInstaller | None = None,
    logger: StructuredLogger | None = None,
) -> PipelineResult:
    pipeline = build_pipeline(
        config,
        profile=profile,
        toolchain=toolchain,
        installer=installer,
        logger=logger,
    )
    return pipeline.run()


def with_source(config: PipelineConfig, source_root: str | Path) -> PipelineConfig:
    return replace(config, source_root=Path(source_root))


__all__ = [
    "Pipeline",
    "Stage",
    "StageGraph",
    "build_pipeline",
    "run_pipeline",
    "with_source",
]
