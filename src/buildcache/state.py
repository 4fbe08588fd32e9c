"""Cross-phase state handed from the restore phase to the save phase."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from jsonschema import Draft7Validator

logger = logging.getLogger(__name__)

STEP_RESTORE = "restore"
STEP_SAVE = "save"

PHASE_STATE_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["step", "failure_key", "upload_chunk_size", "cross_os_archive"],
    "properties": {
        "step": {"type": "string", "enum": [STEP_RESTORE, STEP_SAVE]},
        "failure_key": {"type": ["string", "null"], "minLength": 1},
        "upload_chunk_size": {"type": "integer", "minimum": -1},
        "cross_os_archive": {"type": "boolean"},
    },
    "additionalProperties": False,
}

_validator = Draft7Validator(PHASE_STATE_SCHEMA)


def validate_state(payload: Dict[str, Any]) -> None:
    errors = sorted(_validator.iter_errors(payload), key=lambda e: list(e.path))
    if errors:
        messages = ", ".join(error.message for error in errors)
        raise ValueError(f"phase state validation failed: {messages}")


@dataclass(frozen=True)
class PhaseState:
    step: str
    failure_key: Optional[str] = None
    upload_chunk_size: int = -1
    cross_os_archive: bool = False

    @property
    def chunk_size(self) -> Optional[int]:
        return self.upload_chunk_size if self.upload_chunk_size > 0 else None

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "step": self.step,
            "failure_key": self.failure_key,
            "upload_chunk_size": self.upload_chunk_size,
            "cross_os_archive": self.cross_os_archive,
        }
        validate_state(payload)
        return payload

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PhaseState":
        validate_state(data)
        return cls(
            step=data["step"],
            failure_key=data["failure_key"],
            upload_chunk_size=data["upload_chunk_size"],
            cross_os_archive=data["cross_os_archive"],
        )


class PhaseStateStore:
    """Written once by the restore phase, consumed once by the save phase."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(os.path.expanduser(str(path)))
        self._written = False

    def write(self, state: PhaseState) -> None:
        if self._written:
            raise RuntimeError(f"phase state already written to {self.path}")
        payload = state.to_dict()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(payload), encoding="utf-8")
        self._written = True
        logger.debug(f"Phase state written to {self.path}: {payload}")

    def discard(self) -> None:
        """Drop state left behind by an earlier job on the same machine."""
        self.path.unlink(missing_ok=True)

    def consume(self) -> Optional[PhaseState]:
        if not self.path.exists():
            return None
        data = json.loads(self.path.read_text(encoding="utf-8"))
        self.path.unlink()
        return PhaseState.from_dict(data)


class RestoreKeyMarker:
    """File holding the success key; its presence means "save after a good build"."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(os.path.expanduser(str(path)))

    def exists(self) -> bool:
        return self.path.is_file()

    def write(self, key: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(key, encoding="utf-8")

    def read(self) -> Optional[str]:
        if not self.exists():
            return None
        return self.path.read_text(encoding="utf-8").strip() or None

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)
