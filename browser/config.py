"""Configuration loader for the automation runtime."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

DEFAULT_FAILURE_SCREENSHOT = "failure_{attempt}_{timestamp}.png"

DEFAULTS: Dict[str, Any] = {
    "action_timeout_ms": 10000,
    "navigation_timeout_ms": 30000,
    "poll_interval_ms": 100,
    "log_root": "runs",
    "headless": None,
    "record_events": True,
    "failure_screenshot": DEFAULT_FAILURE_SCREENSHOT,
}

_TRUTHY = {"true", "1", "yes", "on"}


def _as_bool(value: Any) -> bool:
    return str(value).strip().lower() in _TRUTHY


@dataclass(slots=True)
class RunConfig:
    action_timeout_ms: int = DEFAULTS["action_timeout_ms"]
    navigation_timeout_ms: int = DEFAULTS["navigation_timeout_ms"]
    poll_interval_ms: int = DEFAULTS["poll_interval_ms"]
    log_root: Path = field(default_factory=lambda: Path(DEFAULTS["log_root"]))
    # None keeps the configuration file's browser.headless setting.
    headless: Optional[bool] = DEFAULTS["headless"]
    record_events: bool = DEFAULTS["record_events"]
    # Relative templates are placed in <log_root>/<run_id>/shots.
    failure_screenshot: str = DEFAULTS["failure_screenshot"]

    @classmethod
    def from_mapping(cls, mapping: Dict[str, Any]) -> "RunConfig":
        data = dict(DEFAULTS)
        data.update(mapping)
        headless = data.get("headless")
        return cls(
            action_timeout_ms=int(data["action_timeout_ms"]),
            navigation_timeout_ms=int(data["navigation_timeout_ms"]),
            poll_interval_ms=max(1, int(data["poll_interval_ms"])),
            log_root=Path(data["log_root"]),
            headless=None if headless in (None, "") else _as_bool(headless),
            record_events=_as_bool(data["record_events"]),
            failure_screenshot=str(data["failure_screenshot"]),
        )


def _load_toml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("rb") as fh:
        return tomllib.load(fh)


def load_config(config_path: Path | None = None) -> RunConfig:
    """Load configuration from environment, optional TOML file, and defaults."""

    env_map: Dict[str, Any] = {}
    for key, value in os.environ.items():
        if key.startswith("RUNNER_"):
            env_map[key[7:].lower()] = value

    file_map: Dict[str, Any] = {}
    path = config_path or Path("runner.toml")
    if path.exists():
        file_map = _load_toml(path).get("runner", {})

    merged = {**file_map, **env_map}
    known = {key: value for key, value in merged.items() if key in DEFAULTS}
    return RunConfig.from_mapping(known)


def ensure_run_directories(run_id: str, config: RunConfig) -> Dict[str, Path]:
    base = config.log_root / run_id
    shots = base / "shots"
    base.mkdir(parents=True, exist_ok=True)
    shots.mkdir(parents=True, exist_ok=True)
    return {"base": base, "shots": shots}
