"""Typed DSL models for automation actions."""

from __future__ import annotations

from typing import Any, ClassVar, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

_TARGET_KEYS: Tuple[str, ...] = ("selector", "text", "id", "placeholder", "role")


class Target(BaseModel):
    """Element reference resolved by the session at action time."""

    model_config = ConfigDict(extra="forbid", coerce_numbers_to_str=True)

    selector: Optional[str] = None
    text: Optional[str] = None
    id: Optional[str] = None
    placeholder: Optional[str] = None
    role: Optional[str] = None

    @model_validator(mode="after")
    def _exactly_one(self) -> "Target":
        given = [key for key in _TARGET_KEYS if getattr(self, key) is not None]
        if len(given) != 1:
            raise ValueError(f"target needs exactly one of {', '.join(_TARGET_KEYS)}")
        return self

    @property
    def kind(self) -> str:
        for key in _TARGET_KEYS:
            if getattr(self, key) is not None:
                return key
        return "unknown"  # pragma: no cover - guarded by the validator

    @property
    def value(self) -> str:
        return getattr(self, self.kind)

    def __str__(self) -> str:
        return f"{self.kind} '{self.value}'"


class ActionBase(BaseModel):
    """Base class for all DSL actions."""

    model_config = ConfigDict(
        populate_by_name=True,
        extra="forbid",
        coerce_numbers_to_str=True,
    )

    __action_name__: ClassVar[str]
    # Fields holding nested action lists.
    __child_fields__: ClassVar[Tuple[str, ...]] = ()
    # Field populated when the action is written as a bare scalar (`goto: "https://..."`).
    __shorthand__: ClassVar[Optional[str]] = None

    @property
    def action_name(self) -> str:
        return self.__action_name__

    def describe(self) -> str:
        return self.action_name

    def children(self) -> List[List["ActionBase"]]:
        return [getattr(self, name) for name in self.__child_fields__]

    def payload(self) -> Any:
        """Dump back to the YAML tagged form (``{name: {...}}``)."""

        fields = type(self).model_fields
        data = self.model_dump(by_alias=True, exclude_defaults=True, exclude=set(self.__child_fields__))
        for name in self.__child_fields__:
            alias = fields[name].alias or name
            data[alias] = [child.payload() for child in getattr(self, name)]
        if not data:
            return self.action_name
        return {self.action_name: data}


def _parse_children(value: Any) -> Any:
    if value is None:
        return []
    if not isinstance(value, list):
        return value
    from .registry import registry

    return [registry.parse_action(entry) for entry in value]


# ---------------------------------------------------------------------------
# navigation


class GotoAction(ActionBase):
    __action_name__ = "goto"
    __shorthand__ = "url"

    url: str

    def describe(self) -> str:
        return f"goto {self.url}"


class BackAction(ActionBase):
    __action_name__ = "back"


class ForwardAction(ActionBase):
    __action_name__ = "forward"


class ReloadAction(ActionBase):
    __action_name__ = "reload"


# ---------------------------------------------------------------------------
# waiting

DEFAULT_WAIT_TIMEOUT_MS = 10_000


class WaitAction(ActionBase):
    """Fixed delay. Cannot time out."""

    __action_name__ = "wait"
    __shorthand__ = "ms"

    ms: int = Field(ge=0)


class WaitForNetworkIdleAction(ActionBase):
    __action_name__ = "wait_for_network_idle"

    idle_ms: int = Field(default=500, ge=0)
    timeout_ms: int = Field(default=DEFAULT_WAIT_TIMEOUT_MS, ge=0)


class WaitForSelectorAction(ActionBase):
    __action_name__ = "wait_for_selector"
    __shorthand__ = "selector"

    selector: str
    timeout_ms: int = Field(default=DEFAULT_WAIT_TIMEOUT_MS, ge=0)

    def describe(self) -> str:
        return f"{self.action_name} '{self.selector}'"


class WaitForVisibleAction(WaitForSelectorAction):
    __action_name__ = "wait_for_visible"


class WaitForHiddenAction(WaitForSelectorAction):
    __action_name__ = "wait_for_hidden"


class WaitForTextAction(ActionBase):
    __action_name__ = "wait_for_text"
    __shorthand__ = "text"

    text: str
    timeout_ms: int = Field(default=DEFAULT_WAIT_TIMEOUT_MS, ge=0)

    def describe(self) -> str:
        return f"wait_for_text '{self.text}'"


class WaitForUrlAction(ActionBase):
    __action_name__ = "wait_for_url"
    __shorthand__ = "contains"

    contains: str
    timeout_ms: int = Field(default=DEFAULT_WAIT_TIMEOUT_MS, ge=0)

    def describe(self) -> str:
        return f"wait_for_url contains '{self.contains}'"


# ---------------------------------------------------------------------------
# interaction


class InteractionAction(ActionBase):
    """Action bounded by an interaction deadline."""

    timeout_ms: Optional[int] = Field(default=None, ge=1)


class TargetedAction(InteractionAction):
    """Interaction addressed through a flat target descriptor."""

    __shorthand__ = "selector"

    target: Target

    @model_validator(mode="before")
    @classmethod
    def _collect_target(cls, value: Any) -> Any:
        if isinstance(value, dict) and "target" not in value:
            data = dict(value)
            target = {key: data.pop(key) for key in _TARGET_KEYS if key in data}
            data["target"] = target
            return data
        return value

    def describe(self) -> str:
        return f"{self.action_name} {self.target}"

    def payload(self) -> Any:
        data = self.model_dump(by_alias=True, exclude_defaults=True)
        data.update(data.pop("target"))
        return {self.action_name: data}


class ClickAction(TargetedAction):
    __action_name__ = "click"

    human: bool = False
    scroll_into_view: bool = False


class TryClickAction(TargetedAction):
    __action_name__ = "try_click"


class TryClickAnyAction(InteractionAction):
    __action_name__ = "try_click_any"

    selectors: Optional[List[str]] = None
    texts: Optional[List[str]] = None

    @model_validator(mode="after")
    def _needs_candidates(self) -> "TryClickAnyAction":
        if self.selectors is None and self.texts is None:
            raise ValueError("try_click_any needs 'selectors' or 'texts'")
        return self


class FillAction(TargetedAction):
    __action_name__ = "fill"

    value: str
    human: bool = False


class TypeAction(TargetedAction):
    __action_name__ = "type"

    value: str


class ClearAction(TargetedAction):
    __action_name__ = "clear"


class SelectAction(TargetedAction):
    __action_name__ = "select"

    value: str


class PressKeyAction(InteractionAction):
    __action_name__ = "press_key"
    __shorthand__ = "key"

    key: str

    def describe(self) -> str:
        return f"press_key {self.key}"


class HoverAction(TargetedAction):
    __action_name__ = "hover"


# ---------------------------------------------------------------------------
# cookies and scripts


class SetCookieAction(ActionBase):
    __action_name__ = "set_cookie"

    name: str
    value: str
    domain: Optional[str] = None
    path: Optional[str] = None


class DeleteCookieAction(ActionBase):
    __action_name__ = "delete_cookie"
    __shorthand__ = "name"

    name: str
    domain: Optional[str] = None


class ExecuteAction(ActionBase):
    __action_name__ = "execute"
    __shorthand__ = "js"

    js: str

    def describe(self) -> str:
        return f"execute {self.js[:50]}"


# ---------------------------------------------------------------------------
# scrolling

SCROLL_STEP_PX = 300


class ScrollAction(ActionBase):
    __action_name__ = "scroll"
    __shorthand__ = "direction"

    direction: Literal["up", "down", "left", "right"]
    amount: int = Field(default=1, ge=1)

    def offsets(self) -> Tuple[int, int]:
        distance = self.amount * SCROLL_STEP_PX
        return {
            "up": (0, -distance),
            "down": (0, distance),
            "left": (-distance, 0),
            "right": (distance, 0),
        }[self.direction]


class ScrollToAction(TargetedAction):
    __action_name__ = "scroll_to"


# ---------------------------------------------------------------------------
# debugging


class ScreenshotAction(ActionBase):
    __action_name__ = "screenshot"
    __shorthand__ = "path"

    path: str


class LogAction(ActionBase):
    __action_name__ = "log"
    __shorthand__ = "message"

    message: str


class AssertTextAction(ActionBase):
    __action_name__ = "assert_text"
    __shorthand__ = "text"

    text: str


class AssertUrlAction(ActionBase):
    __action_name__ = "assert_url"
    __shorthand__ = "contains"

    contains: str


# ---------------------------------------------------------------------------
# control flow


class ConditionalAction(ActionBase):
    __child_fields__ = ("then", "else_")

    then: List[ActionBase] = Field(default_factory=list)
    else_: List[ActionBase] = Field(default_factory=list, alias="else")

    @field_validator("then", "else_", mode="before")
    @classmethod
    def _parse_branches(cls, value: Any) -> Any:
        return _parse_children(value)


class IfTextExistsAction(ConditionalAction):
    __action_name__ = "if_text_exists"

    text: str

    def describe(self) -> str:
        return f"if_text_exists '{self.text}'"


class IfSelectorExistsAction(ConditionalAction):
    __action_name__ = "if_selector_exists"

    selector: str

    def describe(self) -> str:
        return f"if_selector_exists '{self.selector}'"


class RepeatAction(ActionBase):
    __action_name__ = "repeat"
    __child_fields__ = ("actions",)

    times: int = Field(ge=1)
    actions: List[ActionBase] = Field(default_factory=list)

    @field_validator("actions", mode="before")
    @classmethod
    def _parse_actions(cls, value: Any) -> Any:
        return _parse_children(value)

    def describe(self) -> str:
        return f"repeat x{self.times}"


class IncludeAction(ActionBase):
    """Reference to another program, expanded at load time."""

    __action_name__ = "include"
    __shorthand__ = "path"

    path: Optional[str] = None
    name: Optional[str] = None
    params: Dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _path_or_name(self) -> "IncludeAction":
        if (self.path is None) == (self.name is None):
            raise ValueError("include needs exactly one of 'path' or 'name'")
        return self

    @property
    def reference(self) -> str:
        return self.path if self.path is not None else f"name:{self.name}"

    def describe(self) -> str:
        return f"include {self.reference}"


class IncludedProgram(ActionBase):
    """Expanded form of :class:`IncludeAction`.

    Produced by the include resolver only; it is not registered and therefore
    cannot be written in a configuration file.
    """

    __action_name__ = "included"
    __child_fields__ = ("actions",)

    source: str
    bindings: Dict[str, str] = Field(default_factory=dict)
    actions: List[ActionBase] = Field(default_factory=list)

    def describe(self) -> str:
        return f"include {self.source}"


def walk(actions: List[ActionBase]):
    """Yield every node of an action tree, depth first, in execution order."""

    for action in actions:
        yield action
        for branch in action.children():
            yield from walk(branch)
