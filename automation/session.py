"""Session capability consumed by the executor.

The engine never talks to a browser directly.  Everything it does to the remote
target goes through an object implementing :class:`Session`; the Playwright
backed implementation lives in :mod:`browser.session` and the test-suite uses
an in-memory double.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Optional, Protocol

if TYPE_CHECKING:  # pragma: no cover
    from automation.dsl.models import Target


@dataclass(slots=True)
class AdapterResult:
    """Small helper structure describing the outcome of a session operation."""

    success: bool
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def error(self) -> Optional[str]:
        value = self.details.get("error")
        return str(value) if value is not None else None

    def to_dict(self) -> Dict[str, Any]:
        payload = dict(self.details)
        payload.setdefault("success", self.success)
        return payload


class Session(Protocol):
    """Asynchronous capability surface of a remote browser session."""

    # navigation
    async def navigate(self, url: str) -> AdapterResult: ...

    async def back(self) -> AdapterResult: ...

    async def forward(self) -> AdapterResult: ...

    async def reload(self) -> AdapterResult: ...

    async def wait_for_network_idle(self, idle_ms: int, timeout_ms: int) -> AdapterResult: ...

    # queries
    async def find(self, target: "Target") -> Optional[str]:
        """Resolve a target descriptor to a handle, or ``None`` when absent."""

    async def has_text(self, text: str) -> bool: ...

    async def has_selector(self, selector: str) -> bool: ...

    async def is_visible(self, selector: str) -> bool: ...

    async def current_url(self) -> str: ...

    async def visible_text(self) -> str: ...

    # interaction
    async def click(self, handle: str, *, human: bool = False) -> AdapterResult: ...

    async def fill(self, handle: str, value: str, *, human: bool = False) -> AdapterResult: ...

    async def type_text(self, handle: str, value: str) -> AdapterResult: ...

    async def select_option(self, handle: str, value: str) -> AdapterResult: ...

    async def press_key(self, key: str) -> AdapterResult: ...

    async def hover(self, handle: str) -> AdapterResult: ...

    async def scroll_by(self, dx: int, dy: int) -> AdapterResult: ...

    async def scroll_into_view(self, handle: str) -> AdapterResult: ...

    # cookies, scripts, diagnostics
    async def set_cookie(
        self,
        name: str,
        value: str,
        *,
        domain: Optional[str] = None,
        path: Optional[str] = None,
    ) -> AdapterResult: ...

    async def delete_cookie(self, name: str, *, domain: Optional[str] = None) -> AdapterResult: ...

    async def execute_script(self, js: str) -> Any: ...

    async def screenshot(self, path: str) -> AdapterResult: ...
