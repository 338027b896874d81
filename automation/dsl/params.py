"""Parameter binding and ``${name}`` substitution."""

from __future__ import annotations

import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, TypeVar

from pydantic import BaseModel

from automation.errors import ConfigError, MissingRequiredParameter, ParameterError

from .models import ActionBase
from .schema import Configuration, ParamSpec

TOKEN_RE = re.compile(r"\$\{([^}]*)\}")

M = TypeVar("M", bound=BaseModel)


def parse_param_args(args: Iterable[str]) -> Dict[str, str]:
    """Parse ``key=value`` strings as given to ``-P`` on the command line."""

    params: Dict[str, str] = {}
    for arg in args:
        key, sep, value = arg.partition("=")
        if not sep or not key.strip():
            raise ConfigError(f"invalid param '{arg}', expected key=value")
        params[key.strip()] = value
    return params


def resolve_bindings(
    specs: Mapping[str, ParamSpec],
    supplied: Optional[Mapping[str, Any]] = None,
    *,
    source: Optional[str] = None,
) -> Dict[str, str]:
    """Merge defaults with supplied bindings.

    Every required parameter without a binding is reported at once.
    Optional parameters with neither default nor binding bind to ``""``.
    """

    supplied = supplied or {}
    table: Dict[str, str] = {}
    missing: List[str] = []
    for name, spec in specs.items():
        if name in supplied and supplied[name] is not None:
            continue
        if spec.default is not None:
            table[name] = spec.default
        elif spec.required:
            missing.append(name)
        else:
            table[name] = ""
    if missing:
        raise MissingRequiredParameter(missing, source=source)
    for name, value in supplied.items():
        if value is not None:
            table[name] = str(value)
    return table


def substitute(template: str, table: Mapping[str, str]) -> str:
    """Replace every ``${name}`` token in a single pass."""

    def _replace(match: "re.Match[str]") -> str:
        name = match.group(1).strip()
        try:
            return table[name]
        except KeyError:
            raise ParameterError(
                f"unresolved parameter '${{{name}}}'",
                details={"name": name, "known": sorted(table)},
            ) from None

    return TOKEN_RE.sub(_replace, template)


def _substitute_value(value: Any, table: Mapping[str, str]) -> Any:
    if isinstance(value, str):
        return substitute(value, table) if "${" in value else value
    if isinstance(value, BaseModel):
        return substitute_model(value, table)
    if isinstance(value, list):
        return [_substitute_value(item, table) for item in value]
    if isinstance(value, dict):
        return {key: _substitute_value(item, table) for key, item in value.items()}
    return value


def substitute_model(model: M, table: Mapping[str, str]) -> M:
    """Return a copy of ``model`` with every string field substituted."""

    updates: Dict[str, Any] = {}
    for name in type(model).model_fields:
        current = getattr(model, name)
        replaced = _substitute_value(current, table)
        if replaced is not current:
            updates[name] = replaced
    if not updates:
        return model
    return model.model_copy(update=updates)


def substitute_actions(actions: List[ActionBase], table: Mapping[str, str]) -> List[ActionBase]:
    return [substitute_model(action, table) for action in actions]


def substitute_configuration(config: Configuration, table: Mapping[str, str]) -> Configuration:
    """Substitute the whole configuration except its parameter declarations."""

    updates = {
        name: _substitute_value(getattr(config, name), table)
        for name in ("browser", "target", "actions", "success", "on_failure")
    }
    return config.model_copy(update=updates)


def find_tokens(value: Any) -> List[str]:
    """List every ``${...}`` token left in a model tree."""

    found: List[str] = []
    if isinstance(value, str):
        found.extend(TOKEN_RE.findall(value))
    elif isinstance(value, BaseModel):
        for name in type(value).model_fields:
            found.extend(find_tokens(getattr(value, name)))
    elif isinstance(value, (list, tuple)):
        for item in value:
            found.extend(find_tokens(item))
    elif isinstance(value, dict):
        for item in value.values():
            found.extend(find_tokens(item))
    return found
