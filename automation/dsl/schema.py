"""Configuration file schema."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from automation.errors import ConfigError

from .models import ActionBase, _parse_children


class ParamSpec(BaseModel):
    model_config = ConfigDict(extra="forbid", coerce_numbers_to_str=True)

    required: bool = False
    default: Optional[str] = None
    description: Optional[str] = None


class Viewport(BaseModel):
    model_config = ConfigDict(extra="forbid")

    width: int = Field(gt=0)
    height: int = Field(gt=0)


class BrowserSettings(BaseModel):
    """Session launch settings. Only the root configuration's are used."""

    model_config = ConfigDict(extra="forbid")

    headless: bool = False
    proxy: Optional[str] = None
    user_agent: Optional[str] = None
    viewport: Optional[Viewport] = None


class TargetUrl(BaseModel):
    model_config = ConfigDict(extra="forbid")

    url: str


class SuccessCondition(BaseModel):
    """Node of the success predicate tree.

    Either an atom (``url_contains`` / ``text_contains``) or a group
    (``any`` / ``all``) of further nodes.
    """

    model_config = ConfigDict(extra="forbid", coerce_numbers_to_str=True)

    url_contains: Optional[str] = None
    text_contains: Optional[str] = None
    any: Optional[List["SuccessCondition"]] = None
    all: Optional[List["SuccessCondition"]] = None

    @model_validator(mode="after")
    def _single_key(self) -> "SuccessCondition":
        given = [
            key
            for key in ("url_contains", "text_contains", "any", "all")
            if getattr(self, key) is not None
        ]
        if len(given) > 1:
            if set(given) == {"any", "all"}:
                raise ValueError("specify either 'any' or 'all', not both")
            raise ValueError(f"a success condition takes a single key, got {', '.join(given)}")
        return self

    def is_empty(self) -> bool:
        return all(
            getattr(self, key) is None for key in ("url_contains", "text_contains", "any", "all")
        )

    def count(self) -> int:
        """Number of atomic predicates in the tree."""

        if self.url_contains is not None or self.text_contains is not None:
            return 1
        group = self.any if self.any is not None else self.all
        return sum(child.count() for child in group or [])


class RetrySpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    attempts: int = Field(default=1, ge=1)
    delay_ms: int = Field(default=0, ge=0)


class OnFailure(BaseModel):
    model_config = ConfigDict(extra="forbid")

    # Supports {timestamp}, {attempt} and {run_id}.
    screenshot: Optional[str] = None
    retry: Optional[RetrySpec] = None


class Configuration(BaseModel):
    """A named, parameterized automation program."""

    model_config = ConfigDict(extra="forbid")

    name: str
    params: Dict[str, ParamSpec] = Field(default_factory=dict)
    browser: BrowserSettings = Field(default_factory=BrowserSettings)
    target: Optional[TargetUrl] = None
    actions: List[ActionBase] = Field(default_factory=list)
    success: Optional[SuccessCondition] = None
    on_failure: Optional[OnFailure] = None

    @field_validator("name")
    @classmethod
    def _non_empty_name(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("name is required")
        return value

    @field_validator("params", mode="before")
    @classmethod
    def _coerce_params(cls, value: Any) -> Any:
        if value is None:
            return {}
        if isinstance(value, dict):
            return {name: spec if spec is not None else {} for name, spec in value.items()}
        return value

    @field_validator("actions", mode="before")
    @classmethod
    def _coerce_actions(cls, value: Any) -> Any:
        return _parse_children(value)

    @field_validator("success", mode="before")
    @classmethod
    def _empty_success(cls, value: Any) -> Any:
        if value == {}:
            return None
        return value

    @property
    def attempts(self) -> int:
        if self.on_failure and self.on_failure.retry:
            return self.on_failure.retry.attempts
        return 1

    @property
    def retry_delay_ms(self) -> int:
        if self.on_failure and self.on_failure.retry:
            return self.on_failure.retry.delay_ms
        return 0

    @property
    def failure_screenshot(self) -> Optional[str]:
        return self.on_failure.screenshot if self.on_failure else None

    def require_target(self) -> str:
        if self.target is None or not self.target.url.strip():
            raise ConfigError(f"{self.name}: target.url is required")
        return self.target.url
