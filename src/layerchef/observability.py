"""In-memory structured run log.

Every pipeline stage appends records here. ``Pipeline.run`` embeds the
records in ``report.json`` and exports them as ``run.jsonl`` next to it.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


@dataclass(slots=True)
class StructuredLogger:
    records: list[dict[str, Any]] = field(default_factory=list)

    def log(
        self,
        *,
        operation: str,
        profile: str | None,
        stage: str | None,
        message: str,
        level: str = "info",
        extra: dict[str, Any] | None = None,
    ) -> None:
        record: dict[str, Any] = {
            "seq": len(self.records),
            "level": level,
            "operation": operation,
            "profile": profile,
            "stage": stage,
            "message": message,
        }
        if extra is not None:
            record["extra"] = extra
        self.records.append(record)

    def records_for_profile(self, profile: str) -> list[dict[str, Any]]:
        return [record for record in self.records if record.get("profile") == profile]

    def records_for_stage(self, stage: str) -> list[dict[str, Any]]:
        return [record for record in self.records if record.get("stage") == stage]

    def failures(self, profile: str | None = None) -> list[dict[str, Any]]:
        """Error records, optionally limited to one profile."""
        return [
            record
            for record in self.records
            if record["level"] == "error" and (profile is None or record["profile"] == profile)
        ]

    def to_json_lines(self, path: str | Path, *, profile: str | None = None) -> Path:
        records = self.records if profile is None else self.records_for_profile(profile)
        output_path = Path(path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        lines = [json.dumps(record, sort_keys=True) for record in records]
        output_path.write_text("".join(line + "\n" for line in lines), encoding="utf-8")
        return output_path
