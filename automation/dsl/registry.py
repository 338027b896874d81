"""Typed action registry built on top of pydantic models."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Tuple, Type, TypeVar

from pydantic import ValidationError

from automation.errors import ConfigError

from .models import (
    ActionBase,
    AssertTextAction,
    AssertUrlAction,
    BackAction,
    ClearAction,
    ClickAction,
    DeleteCookieAction,
    ExecuteAction,
    FillAction,
    ForwardAction,
    GotoAction,
    HoverAction,
    IfSelectorExistsAction,
    IfTextExistsAction,
    IncludeAction,
    LogAction,
    PressKeyAction,
    ReloadAction,
    RepeatAction,
    ScreenshotAction,
    ScrollAction,
    ScrollToAction,
    SelectAction,
    SetCookieAction,
    TryClickAction,
    TryClickAnyAction,
    TypeAction,
    WaitAction,
    WaitForHiddenAction,
    WaitForNetworkIdleAction,
    WaitForSelectorAction,
    WaitForTextAction,
    WaitForUrlAction,
    WaitForVisibleAction,
)


@dataclass(slots=True)
class ActionSpec:
    name: str
    model: Type[ActionBase]
    family: str
    aliases: Tuple[str, ...] = ()
    description: str | None = None

    def to_metadata(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "family": self.family,
            "aliases": list(self.aliases),
            "description": self.description or "",
        }


A = TypeVar("A", bound=ActionBase)


class ActionRegistry:
    """Central registry holding strongly typed action definitions."""

    def __init__(self) -> None:
        self._actions: Dict[str, ActionSpec] = {}
        self._aliases: Dict[str, str] = {}

    def register(
        self,
        model: Type[A],
        *,
        family: str,
        name: Optional[str] = None,
        aliases: Tuple[str, ...] = (),
        description: str | None = None,
    ) -> Type[A]:
        if not issubclass(model, ActionBase):
            raise TypeError("model must subclass ActionBase")
        action_name = name or getattr(model, "__action_name__", None) or model.__name__
        if model.__dict__.get("__action_name__") != action_name:
            model.__action_name__ = action_name
        spec = ActionSpec(
            name=action_name,
            model=model,
            family=family,
            aliases=aliases,
            description=description,
        )
        self._actions[action_name] = spec
        for alias in aliases:
            self._aliases[alias] = action_name
        return model

    def get(self, name: str) -> ActionSpec:
        canonical = self._aliases.get(name, name)
        try:
            return self._actions[canonical]
        except KeyError as exc:
            raise KeyError(f"Unknown action '{name}'") from exc

    def names(self) -> List[str]:
        return sorted([*self._actions, *self._aliases])

    def models(self) -> List[Type[ActionBase]]:
        return [spec.model for spec in self._actions.values()]

    def __contains__(self, name: str) -> bool:  # pragma: no cover - trivial
        return name in self._actions or name in self._aliases

    def __iter__(self) -> Iterator[ActionSpec]:  # pragma: no cover - trivial
        return iter(self._actions.values())

    def parse_action(self, data: Any) -> ActionBase:
        """Parse one entry of an ``actions`` list.

        Accepted forms are a bare name (``- back``) or a single-key mapping
        whose value is the action body, ``null`` or a shorthand scalar.
        """

        if isinstance(data, ActionBase):
            return data
        if isinstance(data, str):
            name, body = data, None
        elif isinstance(data, dict) and len(data) == 1:
            name, body = next(iter(data.items()))
        else:
            raise ConfigError(
                "an action must be a name or a mapping with a single action key",
                details={"entry": _preview(data)},
            )

        try:
            spec = self.get(str(name))
        except KeyError:
            raise ConfigError(
                f"unknown action '{name}'",
                details={"action": name, "known": self.names()},
            ) from None

        if body is None:
            body = {}
        elif not isinstance(body, dict):
            shorthand = spec.model.__shorthand__
            if shorthand is None:
                raise ConfigError(
                    f"action '{spec.name}' expects a mapping",
                    details={"action": spec.name, "value": _preview(body)},
                )
            body = {shorthand: body}

        try:
            return spec.model.model_validate(body)
        except ConfigError:
            raise
        except ValidationError as exc:
            raise ConfigError(
                f"invalid '{spec.name}' action: {_first_error(exc)}",
                details={"action": spec.name, "errors": _errors(exc)},
            ) from exc

    def parse_actions(self, data: Any) -> List[ActionBase]:
        if data is None:
            return []
        if not isinstance(data, list):
            raise ConfigError("'actions' must be a list")
        return [self.parse_action(entry) for entry in data]

    def schema(self) -> Dict[str, Any]:
        return {name: spec.to_metadata() for name, spec in self._actions.items()}


def _preview(value: Any, limit: int = 80) -> str:
    text = repr(value)
    return text if len(text) <= limit else text[: limit - 3] + "..."


def _errors(exc: ValidationError) -> List[Dict[str, Any]]:
    return [
        {"loc": ".".join(str(part) for part in err.get("loc", ())), "msg": err.get("msg", "")}
        for err in exc.errors()
    ]


def _first_error(exc: ValidationError) -> str:
    errors = _errors(exc)
    if not errors:
        return str(exc)
    first = errors[0]
    return f"{first['loc']}: {first['msg']}" if first["loc"] else first["msg"]


registry = ActionRegistry()

registry.register(GotoAction, family="navigation")
registry.register(BackAction, family="navigation")
registry.register(ForwardAction, family="navigation")
registry.register(ReloadAction, family="navigation")

registry.register(WaitAction, family="wait", description="Fixed delay")
registry.register(WaitForNetworkIdleAction, family="wait")
registry.register(WaitForSelectorAction, family="wait", aliases=("wait_for",))
registry.register(WaitForVisibleAction, family="wait")
registry.register(WaitForHiddenAction, family="wait")
registry.register(WaitForTextAction, family="wait")
registry.register(WaitForUrlAction, family="wait")

registry.register(ClickAction, family="interaction")
registry.register(TryClickAction, family="interaction", description="Click if present")
registry.register(TryClickAnyAction, family="interaction", description="Click the first match")
registry.register(FillAction, family="interaction")
registry.register(TypeAction, family="interaction")
registry.register(ClearAction, family="interaction")
registry.register(SelectAction, family="interaction")
registry.register(PressKeyAction, family="interaction")
registry.register(HoverAction, family="interaction")

registry.register(SetCookieAction, family="cookie")
registry.register(DeleteCookieAction, family="cookie")

registry.register(ExecuteAction, family="script")

registry.register(ScrollAction, family="scroll")
registry.register(ScrollToAction, family="scroll")

registry.register(ScreenshotAction, family="debug")
registry.register(LogAction, family="debug")
registry.register(AssertTextAction, family="debug")
registry.register(AssertUrlAction, family="debug")

registry.register(IfTextExistsAction, family="control")
registry.register(IfSelectorExistsAction, family="control")
registry.register(RepeatAction, family="control")
registry.register(IncludeAction, family="control")
