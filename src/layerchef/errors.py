"""Typed pipeline error model with stable, machine-readable error codes."""

from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum
from typing import ClassVar, Literal

DependencyFailureKind = Literal["missing_system_library", "compile_failed"]


class ErrorCode(StrEnum):
    """Stable error identifiers used across API surfaces."""

    VALIDATION = "E_VALIDATION"
    SCAN = "E_SCAN"
    PLAN = "E_PLAN"
    DEPENDENCY_BUILD = "E_DEPENDENCY_BUILD"
    PROFILE_MISMATCH = "E_PROFILE_MISMATCH"
    COMPILE = "E_COMPILE"
    ASSEMBLY = "E_ASSEMBLY"
    CONTRACT = "E_CONTRACT"
    CACHE_INTEGRITY = "E_CACHE_INTEGRITY"
    STAGE = "E_STAGE"


class LayerchefError(Exception):
    """Base error class that carries code, stage, optional hint, and context."""

    default_stage: ClassVar[str | None] = None

    code: str
    hint: str | None
    context: Mapping[str, str]
    stage: str | None

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code.value
        self.hint = hint
        self.context = dict(context or {})
        self.stage = self.default_stage

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.hint:
            parts.append(f"Hint: {self.hint}")
        if self.context:
            for k, v in self.context.items():
                if v:
                    parts.append(f"  {k}: {v}")
        return "\n".join(parts)

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "code": self.code,
            "message": str(self),
            "context": dict(self.context),
            "stage": self.stage,
        }
        if self.hint is not None:
            payload["hint"] = self.hint
        return payload


class ValidationError(LayerchefError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.VALIDATION, hint=hint, context=context)


class ScanError(LayerchefError):
    default_stage = "scan"

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.SCAN, hint=hint, context=context)


class PlanError(LayerchefError):
    default_stage = "plan"

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.PLAN, hint=hint, context=context)


class DependencyBuildError(LayerchefError):
    """Dependency layer build failure.

    ``kind`` separates a missing native library or header on the build host
    from an external crate that failed to compile.
    """

    default_stage = "cook"

    kind: DependencyFailureKind

    def __init__(
        self,
        message: str,
        *,
        kind: DependencyFailureKind,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.DEPENDENCY_BUILD, hint=hint, context=context)
        self.kind = kind

    def to_dict(self) -> dict[str, object]:
        payload = super().to_dict()
        payload["kind"] = self.kind
        return payload


class ProfileMismatchError(LayerchefError):
    default_stage = "compile"

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.PROFILE_MISMATCH, hint=hint, context=context)


class CompileError(LayerchefError):
    default_stage = "compile"

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.COMPILE, hint=hint, context=context)


class AssemblyError(LayerchefError):
    default_stage = "assemble"

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.ASSEMBLY, hint=hint, context=context)


class ContractError(LayerchefError):
    default_stage = "assemble"

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.CONTRACT, hint=hint, context=context)


class CacheIntegrityError(LayerchefError):
    default_stage = "cook"

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.CACHE_INTEGRITY, hint=hint, context=context)


class StageError(LayerchefError):
    """Unexpected exception raised inside a pipeline stage.

    The original exception is chained as ``__cause__``.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.STAGE, hint=hint, context=context)


__all__ = [
    "AssemblyError",
    "CacheIntegrityError",
    "CompileError",
    "ContractError",
    "DependencyBuildError",
    "DependencyFailureKind",
    "ErrorCode",
    "LayerchefError",
    "PlanError",
    "ProfileMismatchError",
    "ScanError",
    "StageError",
    "ValidationError",
]
