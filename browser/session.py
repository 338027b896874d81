"""Playwright backed implementation of the session capability.

Handles returned by :meth:`PlaywrightSession.find` are Playwright selector
strings pinned to the first match; they are re-resolved by Playwright on every
use, so nothing about element identity is cached between actions.
"""

from __future__ import annotations

import asyncio
import logging
import random
from pathlib import Path
from typing import Any, Optional

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

from automation.dsl.models import Target
from automation.dsl.schema import BrowserSettings
from automation.session import AdapterResult

log = logging.getLogger(__name__)

DEFAULT_VIEWPORT = {"width": 1280, "height": 720}
# Playwright reports "networkidle" after 500ms without connections.
PLAYWRIGHT_IDLE_MS = 500


def target_selector(target: Target) -> str:
    """Map a target descriptor onto a Playwright selector."""

    value = target.value
    if target.kind == "selector":
        return value
    if target.kind == "text":
        return f"text={value}"
    if target.kind == "id":
        return f"#{value}"
    if target.kind == "placeholder":
        escaped = value.replace('"', '\\"')
        return f'[placeholder="{escaped}"]'
    return f"role={value}"


class PlaywrightSession:
    """Session capability on top of ``playwright.async_api``."""

    def __init__(
        self,
        page: Page,
        *,
        context: Optional[BrowserContext] = None,
        browser: Optional[Browser] = None,
        playwright: Optional[Playwright] = None,
        navigation_timeout_ms: int = 30000,
    ) -> None:
        self.page = page
        self.context = context or page.context
        self.browser = browser
        self.playwright = playwright
        self.navigation_timeout_ms = navigation_timeout_ms

    @classmethod
    async def launch(
        cls,
        settings: Optional[BrowserSettings] = None,
        *,
        headless: Optional[bool] = None,
        navigation_timeout_ms: int = 30000,
    ) -> "PlaywrightSession":
        """Start Chromium with the configuration's browser settings."""

        settings = settings or BrowserSettings()
        if headless is None:
            headless = settings.headless
        launch_args: dict[str, Any] = {"headless": headless}
        if settings.proxy:
            launch_args["proxy"] = {"server": settings.proxy}

        context_args: dict[str, Any] = {
            "viewport": settings.viewport.model_dump() if settings.viewport else dict(DEFAULT_VIEWPORT)
        }
        if settings.user_agent:
            context_args["user_agent"] = settings.user_agent

        playwright = await async_playwright().start()
        try:
            browser = await playwright.chromium.launch(**launch_args)
            context = await browser.new_context(**context_args)
            page = await context.new_page()
        except Exception:
            await playwright.stop()
            raise
        log.info("Launched Chromium (headless=%s)", headless)
        return cls(
            page,
            context=context,
            browser=browser,
            playwright=playwright,
            navigation_timeout_ms=navigation_timeout_ms,
        )

    async def close(self) -> None:
        """Close all Playwright objects owned by this session."""

        try:
            if self.browser is not None:
                await self.browser.close()
            if self.playwright is not None:
                await self.playwright.stop()
        finally:
            self.browser = None
            self.playwright = None

    async def __aenter__(self) -> "PlaywrightSession":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # navigation
    # ------------------------------------------------------------------
    async def navigate(self, url: str) -> AdapterResult:
        try:
            await self.page.goto(url, wait_until="load", timeout=self.navigation_timeout_ms)
            return AdapterResult(True, {"url": url})
        except Exception as exc:
            log.exception("Navigation failure: %s", exc)
            return AdapterResult(False, {"url": url, "error": str(exc)})

    async def back(self) -> AdapterResult:
        try:
            await self.page.go_back(timeout=self.navigation_timeout_ms)
            return AdapterResult(True, {"url": self.page.url})
        except Exception as exc:
            log.exception("Back navigation failed: %s", exc)
            return AdapterResult(False, {"error": str(exc)})

    async def forward(self) -> AdapterResult:
        try:
            await self.page.go_forward(timeout=self.navigation_timeout_ms)
            return AdapterResult(True, {"url": self.page.url})
        except Exception as exc:
            log.exception("Forward navigation failed: %s", exc)
            return AdapterResult(False, {"error": str(exc)})

    async def reload(self) -> AdapterResult:
        try:
            await self.page.reload(timeout=self.navigation_timeout_ms)
            return AdapterResult(True, {"url": self.page.url})
        except Exception as exc:
            log.exception("Reload failed: %s", exc)
            return AdapterResult(False, {"error": str(exc)})

    async def wait_for_network_idle(self, idle_ms: int, timeout_ms: int) -> AdapterResult:
        try:
            await self.page.wait_for_load_state("networkidle", timeout=timeout_ms)
        except Exception as exc:
            log.debug("Network idle wait failed: %s", exc)
            return AdapterResult(False, {"error": str(exc), "timeout_ms": timeout_ms})
        if idle_ms > PLAYWRIGHT_IDLE_MS:
            await asyncio.sleep((idle_ms - PLAYWRIGHT_IDLE_MS) / 1000)
        return AdapterResult(True, {"idle_ms": idle_ms})

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------
    async def find(self, target: Target) -> Optional[str]:
        selector = target_selector(target)
        try:
            count = await self.page.locator(selector).count()
        except Exception as exc:
            log.debug("Lookup of %s failed: %s", target, exc)
            return None
        if count == 0:
            return None
        return f"{selector} >> nth=0"

    async def has_text(self, text: str) -> bool:
        return text in await self.visible_text()

    async def has_selector(self, selector: str) -> bool:
        try:
            return await self.page.locator(selector).count() > 0
        except Exception as exc:
            log.debug("Selector check for %s failed: %s", selector, exc)
            return False

    async def is_visible(self, selector: str) -> bool:
        try:
            return await self.page.locator(selector).first.is_visible()
        except Exception as exc:
            log.debug("Visibility check for %s failed: %s", selector, exc)
            return False

    async def current_url(self) -> str:
        return self.page.url

    async def visible_text(self) -> str:
        try:
            return await self.page.inner_text("body")
        except Exception as exc:
            log.debug("Reading page text failed: %s", exc)
            return ""

    # ------------------------------------------------------------------
    # interaction
    # ------------------------------------------------------------------
    async def click(self, handle: str, *, human: bool = False) -> AdapterResult:
        locator = self.page.locator(handle)
        try:
            if human:
                await locator.hover()
                await asyncio.sleep(random.uniform(0.05, 0.25))
            await locator.click()
            return AdapterResult(True, {"selector": handle})
        except Exception as exc:
            log.exception("Click failed: %s", exc)
            return AdapterResult(False, {"selector": handle, "error": str(exc)})

    async def fill(self, handle: str, value: str, *, human: bool = False) -> AdapterResult:
        locator = self.page.locator(handle)
        try:
            if human:
                await locator.fill("")
                await locator.press_sequentially(value, delay=random.randint(40, 120))
            else:
                await locator.fill(value)
            return AdapterResult(True, {"selector": handle})
        except Exception as exc:
            log.exception("Fill failed: %s", exc)
            return AdapterResult(False, {"selector": handle, "error": str(exc)})

    async def type_text(self, handle: str, value: str) -> AdapterResult:
        try:
            await self.page.locator(handle).press_sequentially(value)
            return AdapterResult(True, {"selector": handle})
        except Exception as exc:
            log.exception("Typing failed: %s", exc)
            return AdapterResult(False, {"selector": handle, "error": str(exc)})

    async def select_option(self, handle: str, value: str) -> AdapterResult:
        try:
            await self.page.locator(handle).select_option(value)
            return AdapterResult(True, {"selector": handle, "value": value})
        except Exception as exc:
            log.exception("Select option failed: %s", exc)
            return AdapterResult(False, {"selector": handle, "error": str(exc)})

    async def press_key(self, key: str) -> AdapterResult:
        try:
            await self.page.keyboard.press(key)
            return AdapterResult(True, {"key": key})
        except Exception as exc:
            log.exception("Press key failed: %s", exc)
            return AdapterResult(False, {"key": key, "error": str(exc)})

    async def hover(self, handle: str) -> AdapterResult:
        try:
            await self.page.locator(handle).hover()
            return AdapterResult(True, {"selector": handle})
        except Exception as exc:
            log.exception("Hover failed: %s", exc)
            return AdapterResult(False, {"selector": handle, "error": str(exc)})

    async def scroll_by(self, dx: int, dy: int) -> AdapterResult:
        try:
            await self.page.mouse.wheel(dx, dy)
            return AdapterResult(True, {"x": dx, "y": dy})
        except Exception as exc:
            log.exception("Scroll failed: %s", exc)
            return AdapterResult(False, {"x": dx, "y": dy, "error": str(exc)})

    async def scroll_into_view(self, handle: str) -> AdapterResult:
        try:
            await self.page.locator(handle).scroll_into_view_if_needed()
            return AdapterResult(True, {"selector": handle})
        except Exception as exc:
            log.exception("Scroll into view failed: %s", exc)
            return AdapterResult(False, {"selector": handle, "error": str(exc)})

    # ------------------------------------------------------------------
    # cookies, scripts, diagnostics
    # ------------------------------------------------------------------
    async def set_cookie(
        self,
        name: str,
        value: str,
        *,
        domain: Optional[str] = None,
        path: Optional[str] = None,
    ) -> AdapterResult:
        cookie: dict[str, Any] = {"name": name, "value": value}
        if domain:
            cookie["domain"] = domain
            cookie["path"] = path or "/"
        else:
            cookie["url"] = self.page.url
        try:
            await self.context.add_cookies([cookie])
            return AdapterResult(True, {"name": name})
        except Exception as exc:
            log.exception("Setting cookie failed: %s", exc)
            return AdapterResult(False, {"name": name, "error": str(exc)})

    async def delete_cookie(self, name: str, *, domain: Optional[str] = None) -> AdapterResult:
        try:
            if domain:
                await self.context.clear_cookies(name=name, domain=domain)
            else:
                await self.context.clear_cookies(name=name)
            return AdapterResult(True, {"name": name})
        except Exception as exc:
            log.exception("Deleting cookie failed: %s", exc)
            return AdapterResult(False, {"name": name, "error": str(exc)})

    async def execute_script(self, js: str) -> Any:
        return await self.page.evaluate(js)

    async def screenshot(self, path: str) -> AdapterResult:
        target = Path(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            await self.page.screenshot(path=str(target), type="png")
            return AdapterResult(True, {"path": str(target)})
        except Exception as exc:
            log.exception("Screenshot failed: %s", exc)
            return AdapterResult(False, {"path": str(target), "error": str(exc)})
