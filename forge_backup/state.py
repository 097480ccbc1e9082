"""Local record of the last dump, backup and check runs."""

from __future__ import annotations

import json
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any


@dataclass(frozen=True)
class RunState:
    last_dump_at: str | None = None
    last_dump_count: int | None = None
    last_backup_at: str | None = None
    last_check_at: str | None = None
    last_error: str | None = None
    last_error_at: str | None = None

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "RunState":
        known = {field.name for field in fields(RunState)}
        return RunState(**{key: value for key, value in data.items() if key in known})

    def to_dict(self) -> dict[str, Any]:
        return {field.name: getattr(self, field.name) for field in fields(self)}

    def with_error(self, message: str, at: str) -> "RunState":
        return replace(self, last_error=message, last_error_at=at)


def load_state(path: Path) -> RunState:
    if not path.exists():
        return RunState()
    with path.open("r", encoding="utf-8") as handle:
        data = json.load(handle)
    return RunState.from_dict(data)


def save_state(path: Path, state: RunState) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_suffix(".tmp")
    with temp_path.open("w", encoding="utf-8") as handle:
        json.dump(state.to_dict(), handle, indent=2, sort_keys=True)
        handle.write("\n")
    temp_path.replace(path)
