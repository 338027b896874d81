"""HTTP surface for validating and running automation configurations."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from flask import Flask, jsonify, request

from automation.dsl.loader import loads_configuration, parse_configuration
from automation.dsl.schema import BrowserSettings, Configuration
from automation.errors import AutomationError, ConfigError
from automation.service import AutomationService, compile_program

from .config import RunConfig, load_config
from .session import PlaywrightSession

app = Flask(__name__)
log = logging.getLogger(__name__)

LOOP = asyncio.new_event_loop()

_run_config: RunConfig | None = None


def _get_run_config() -> RunConfig:
    global _run_config
    if _run_config is None:
        _run_config = load_config()
    return _run_config


async def _open_session(settings: BrowserSettings, config: RunConfig) -> Any:
    return await PlaywrightSession.launch(
        settings,
        headless=config.headless,
        navigation_timeout_ms=config.navigation_timeout_ms,
    )


@app.errorhandler(AutomationError)
def handle_automation_error(error: AutomationError):
    log.info("Rejected request: %s", error)
    return jsonify({"error": error.to_dict()}), 400


def _parse_request() -> Tuple[Configuration, Dict[str, str], Optional[Path]]:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ConfigError("request body must be a JSON object")
    raw = payload.get("config")
    if isinstance(raw, str):
        configuration = loads_configuration(raw, source="<request>")
    elif isinstance(raw, dict):
        configuration = parse_configuration(raw, source="<request>")
    else:
        raise ConfigError("'config' must be a mapping or YAML text")

    params = payload.get("params") or {}
    if not isinstance(params, dict):
        raise ConfigError("'params' must be an object")
    base_path = payload.get("base_path")
    return configuration, {str(k): str(v) for k, v in params.items()}, Path(base_path) if base_path else None


@app.get("/health")
def health():
    return jsonify({"status": "ok"})


@app.post("/check")
def check():
    configuration, params, base_path = _parse_request()
    program = compile_program(configuration, params, base_path)
    return jsonify({"ok": True, "summary": program.summary()})


@app.post("/run")
def run():
    configuration, params, base_path = _parse_request()
    program = compile_program(configuration, params, base_path)
    config = _get_run_config()

    async def _execute() -> Dict[str, Any]:
        session = await _open_session(program.configuration.browser, config)
        try:
            result = await AutomationService(session, config).execute(program)
        finally:
            await session.close()
        return result.as_dict()

    payload = LOOP.run_until_complete(_execute())
    log.info("Run %s finished (success=%s)", payload["run_id"], payload["success"])
    return jsonify(payload)


if __name__ == "__main__":  # pragma: no cover - manual run helper
    logging.basicConfig(level=logging.INFO)
    app.run("0.0.0.0", 7000, threaded=False)
