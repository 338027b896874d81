"""Pytest configuration ensuring local packages are importable."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest

_ROOT = Path(__file__).resolve().parents[1]
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

from automation.session import AdapterResult  # noqa: E402


class FakeSession:
    """In-memory stand-in for a browser session.

    ``selectors`` maps CSS selectors present on the page to their visibility.
    Text targets match against ``text``. Handles are ``"<kind>:<value>"``.
    """

    def __init__(
        self,
        *,
        url: str = "about:blank",
        text: str = "",
        selectors: Optional[Dict[str, bool]] = None,
        pages: Optional[Dict[str, str]] = None,
    ) -> None:
        self.url = url
        self.text = text
        self.selectors: Dict[str, bool] = dict(selectors or {})
        self.pages: Dict[str, str] = dict(pages or {})
        self.calls: List[tuple] = []
        self.values: Dict[str, str] = {}
        self.cookies: Dict[str, str] = {}
        self.screenshots: List[str] = []
        self.fail_clicks: set[str] = set()
        self.on_click: Dict[str, Callable[["FakeSession"], None]] = {}
        self.screenshot_fails = False
        self.closed = False

    # navigation
    async def navigate(self, url: str) -> AdapterResult:
        self.calls.append(("navigate", url))
        self.url = url
        if url in self.pages:
            self.text = self.pages[url]
        return AdapterResult(True, {"url": url})

    async def back(self) -> AdapterResult:
        self.calls.append(("back",))
        return AdapterResult(True, {})

    async def forward(self) -> AdapterResult:
        self.calls.append(("forward",))
        return AdapterResult(True, {})

    async def reload(self) -> AdapterResult:
        self.calls.append(("reload",))
        return AdapterResult(True, {})

    async def wait_for_network_idle(self, idle_ms: int, timeout_ms: int) -> AdapterResult:
        self.calls.append(("wait_for_network_idle", idle_ms, timeout_ms))
        return AdapterResult(True, {})

    # queries
    async def find(self, target: Any) -> Optional[str]:
        self.calls.append(("find", target.kind, target.value))
        if target.kind == "text":
            present = target.value in self.text
        elif target.kind == "id":
            present = f"#{target.value}" in self.selectors
        else:
            present = target.value in self.selectors
        return f"{target.kind}:{target.value}" if present else None

    async def has_text(self, text: str) -> bool:
        return text in self.text

    async def has_selector(self, selector: str) -> bool:
        return selector in self.selectors

    async def is_visible(self, selector: str) -> bool:
        return self.selectors.get(selector, False)

    async def current_url(self) -> str:
        return self.url

    async def visible_text(self) -> str:
        return self.text

    # interaction
    async def click(self, handle: str, *, human: bool = False) -> AdapterResult:
        self.calls.append(("click", handle))
        if handle in self.fail_clicks:
            return AdapterResult(False, {"selector": handle, "error": "forced"})
        hook = self.on_click.get(handle)
        if hook is not None:
            hook(self)
        return AdapterResult(True, {"selector": handle})

    async def fill(self, handle: str, value: str, *, human: bool = False) -> AdapterResult:
        self.calls.append(("fill", handle, value))
        self.values[handle] = value
        return AdapterResult(True, {"selector": handle})

    async def type_text(self, handle: str, value: str) -> AdapterResult:
        self.calls.append(("type", handle, value))
        self.values[handle] = self.values.get(handle, "") + value
        return AdapterResult(True, {"selector": handle})

    async def select_option(self, handle: str, value: str) -> AdapterResult:
        self.calls.append(("select", handle, value))
        return AdapterResult(True, {"selector": handle})

    async def press_key(self, key: str) -> AdapterResult:
        self.calls.append(("press_key", key))
        return AdapterResult(True, {"key": key})

    async def hover(self, handle: str) -> AdapterResult:
        self.calls.append(("hover", handle))
        return AdapterResult(True, {})

    async def scroll_by(self, dx: int, dy: int) -> AdapterResult:
        self.calls.append(("scroll_by", dx, dy))
        return AdapterResult(True, {})

    async def scroll_into_view(self, handle: str) -> AdapterResult:
        self.calls.append(("scroll_into_view", handle))
        return AdapterResult(True, {})

    # cookies, scripts, diagnostics
    async def set_cookie(self, name: str, value: str, *, domain=None, path=None) -> AdapterResult:
        self.calls.append(("set_cookie", name, value, domain, path))
        self.cookies[name] = value
        return AdapterResult(True, {})

    async def delete_cookie(self, name: str, *, domain=None) -> AdapterResult:
        self.calls.append(("delete_cookie", name, domain))
        self.cookies.pop(name, None)
        return AdapterResult(True, {})

    async def execute_script(self, js: str) -> Any:
        self.calls.append(("execute", js))
        return None

    async def screenshot(self, path: str) -> AdapterResult:
        self.calls.append(("screenshot", path))
        if self.screenshot_fails:
            return AdapterResult(False, {"error": "no page"})
        self.screenshots.append(path)
        return AdapterResult(True, {"path": path})

    async def close(self) -> None:
        self.closed = True

    def names(self) -> List[str]:
        return [call[0] for call in self.calls]


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()
