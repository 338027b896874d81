"""Structured logging utilities for automation runs."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

log = logging.getLogger(__name__)


@dataclass(slots=True)
class LogPaths:
    base: Path
    shots: Path
    events: Path


class StructuredLogger:
    """Writes one JSONL event for each executed action."""

    def __init__(self, run_id: str, paths: LogPaths) -> None:
        self.run_id = run_id
        self.paths = paths
        self._step = 0
        self._events_file = paths.events.open("a", encoding="utf-8")

    def next_step_index(self) -> int:
        return self._step + 1

    def log_event(
        self,
        *,
        action: Any,
        ok: bool,
        attempt: int = 1,
        error: Optional[Dict[str, Any]] = None,
        trail: Optional[List[str]] = None,
        duration_ms: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> int:
        self._step += 1
        payload = {
            "ts": time.time(),
            "run_id": self.run_id,
            "step": self._step,
            "attempt": attempt,
            "action": action,
            "ok": ok,
            "error": error,
            "trail": trail or [],
            "duration_ms": duration_ms,
            "metadata": metadata or {},
        }
        self._events_file.write(json.dumps(payload, ensure_ascii=False, default=str) + "\n")
        self._events_file.flush()
        return self._step

    def close(self) -> None:
        try:
            self._events_file.close()
        except OSError as exc:  # pragma: no cover - closing a local file
            log.debug("Closing event log failed: %s", exc)


def prepare_log_paths(run_id: str, base_dir: Path) -> LogPaths:
    base_dir.mkdir(parents=True, exist_ok=True)
    shots_dir = base_dir / "shots"
    shots_dir.mkdir(parents=True, exist_ok=True)
    events_file = base_dir / "events.jsonl"
    return LogPaths(base=base_dir, shots=shots_dir, events=events_file)
