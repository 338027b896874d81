"""Load configuration files into typed models."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import ValidationError

from automation.errors import ConfigError

from .schema import Configuration

log = logging.getLogger(__name__)


def parse_configuration(data: Any, *, source: str = "<memory>") -> Configuration:
    """Validate an already decoded mapping."""

    if isinstance(data, Configuration):
        return data
    if not isinstance(data, Mapping):
        raise ConfigError(f"{source}: configuration must be a mapping", details={"source": source})
    try:
        return Configuration.model_validate(dict(data))
    except ConfigError as exc:
        exc.details.setdefault("source", source)
        exc.message = f"{source}: {exc.message}"
        exc.args = (exc.message,)
        raise
    except ValidationError as exc:
        errors = [
            {"loc": ".".join(str(part) for part in err.get("loc", ())), "msg": err.get("msg", "")}
            for err in exc.errors()
        ]
        first = errors[0] if errors else {"loc": "", "msg": str(exc)}
        where = f"{first['loc']}: " if first["loc"] else ""
        raise ConfigError(
            f"{source}: {where}{first['msg']}",
            details={"source": source, "errors": errors},
        ) from exc


def loads_configuration(text: str, *, source: str = "<string>") -> Configuration:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"{source}: yaml parse error: {exc}", details={"source": source}) from exc
    return parse_configuration(data, source=source)


def load_configuration(path: Path | str) -> Configuration:
    """Read and validate a YAML configuration file."""

    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"cannot read {path}: {exc}", details={"source": str(path)}) from exc
    log.debug("Loaded configuration file %s", path)
    return loads_configuration(text, source=str(path))
