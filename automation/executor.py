"""Deterministic execution of an expanded action graph against a session."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import ChainMap
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional, Type

from automation.dsl.models import (
    ActionBase,
    AssertTextAction,
    AssertUrlAction,
    BackAction,
    ClearAction,
    ClickAction,
    ConditionalAction,
    DeleteCookieAction,
    ExecuteAction,
    FillAction,
    ForwardAction,
    GotoAction,
    HoverAction,
    IfSelectorExistsAction,
    IfTextExistsAction,
    IncludeAction,
    IncludedProgram,
    InteractionAction,
    LogAction,
    PressKeyAction,
    ReloadAction,
    RepeatAction,
    ScreenshotAction,
    ScrollAction,
    ScrollToAction,
    SelectAction,
    SetCookieAction,
    Target,
    TargetedAction,
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
from automation.errors import (
    ActionError,
    ActionFailed,
    ActionTimeout,
    AssertionFailed,
    AutomationError,
    ConfigError,
    TargetNotFound,
)
from automation.session import AdapterResult, Session

if TYPE_CHECKING:  # pragma: no cover
    from browser.structured_logging import StructuredLogger

log = logging.getLogger(__name__)

Handler = Callable[[Any, "ExecutionContext"], Awaitable[None]]

_COMPOSITE = (ConditionalAction, RepeatAction, IncludedProgram)


@dataclass
class ExecutionContext:
    """Mutable state of a single attempt."""

    bindings: ChainMap = field(default_factory=ChainMap)
    frames: List[str] = field(default_factory=list)
    attempt: int = 1
    last_error: Optional[ActionError] = None
    actions_executed: int = 0

    def push_frame(self, label: str) -> None:
        self.frames.append(label)

    def pop_frame(self) -> None:
        if self.frames:
            self.frames.pop()

    def push_bindings(self, layer: Dict[str, str]) -> None:
        self.bindings = self.bindings.new_child(dict(layer))

    def pop_bindings(self) -> None:
        if self.bindings.maps[1:]:
            self.bindings = self.bindings.parents

    def trail(self) -> List[str]:
        return list(self.frames)


class Executor:
    """Walks an action list in order, dispatching each node to its handler."""

    def __init__(
        self,
        session: Session,
        *,
        action_timeout_ms: int = 10000,
        navigation_timeout_ms: int = 30000,
        poll_interval_ms: int = 100,
        events: Optional["StructuredLogger"] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.session = session
        self.action_timeout_ms = action_timeout_ms
        self.navigation_timeout_ms = navigation_timeout_ms
        self.poll_interval_ms = max(1, poll_interval_ms)
        self.events = events
        self._sleep = sleep
        self.handlers: Dict[Type[ActionBase], Handler] = {
            GotoAction: self._goto,
            BackAction: self._back,
            ForwardAction: self._forward,
            ReloadAction: self._reload,
            WaitAction: self._wait,
            WaitForNetworkIdleAction: self._wait_for_network_idle,
            WaitForSelectorAction: self._wait_for_selector,
            WaitForVisibleAction: self._wait_for_visible,
            WaitForHiddenAction: self._wait_for_hidden,
            WaitForTextAction: self._wait_for_text,
            WaitForUrlAction: self._wait_for_url,
            ClickAction: self._click,
            TryClickAction: self._try_click,
            TryClickAnyAction: self._try_click_any,
            FillAction: self._fill,
            TypeAction: self._type,
            ClearAction: self._clear,
            SelectAction: self._select,
            PressKeyAction: self._press_key,
            HoverAction: self._hover,
            SetCookieAction: self._set_cookie,
            DeleteCookieAction: self._delete_cookie,
            ExecuteAction: self._execute,
            ScrollAction: self._scroll,
            ScrollToAction: self._scroll_to,
            ScreenshotAction: self._screenshot,
            LogAction: self._log,
            AssertTextAction: self._assert_text,
            AssertUrlAction: self._assert_url,
            IfTextExistsAction: self._if_text_exists,
            IfSelectorExistsAction: self._if_selector_exists,
            RepeatAction: self._repeat,
            IncludeAction: self._unexpanded_include,
            IncludedProgram: self._included,
        }

    async def run(self, actions: List[ActionBase], context: ExecutionContext) -> None:
        for index, action in enumerate(actions):
            await self.execute(action, context, index=index)

    async def execute(self, action: ActionBase, context: ExecutionContext, *, index: int = 0) -> None:
        handler = self.handlers.get(type(action))
        if handler is None:
            raise ConfigError(
                f"no handler registered for action '{action.action_name}'",
                details={"action": action.action_name},
            )
        if isinstance(action, _COMPOSITE) or isinstance(action, IncludeAction):
            try:
                await handler(action, context)
            except AutomationError:
                raise
            except Exception as exc:
                # children are wrapped as leaves, so this is the condition query
                wrapped = ActionFailed(str(exc) or exc.__class__.__name__, action=action.describe())
                self._stamp(wrapped, action, context, index)
                raise wrapped from exc
            return

        started = time.monotonic()
        try:
            await handler(action, context)
        except ActionError as exc:
            self._stamp(exc, action, context, index)
            self._record(action, context, started, error=exc)
            raise
        except AutomationError:
            raise
        except Exception as exc:
            wrapped = ActionFailed(str(exc) or exc.__class__.__name__, action=action.describe())
            self._stamp(wrapped, action, context, index)
            self._record(action, context, started, error=wrapped)
            raise wrapped from exc
        context.actions_executed += 1
        self._record(action, context, started)

    # ------------------------------------------------------------------
    # bookkeeping
    # ------------------------------------------------------------------
    def _stamp(self, exc: ActionError, action: ActionBase, context: ExecutionContext, index: int) -> None:
        if exc.action is None:
            exc.action = action.describe()
        if "index" not in exc.details:
            exc.details["index"] = index
            exc.trail = context.trail()
        context.last_error = exc

    def _record(
        self,
        action: ActionBase,
        context: ExecutionContext,
        started: float,
        *,
        error: Optional[ActionError] = None,
    ) -> None:
        if self.events is None:
            return
        self.events.log_event(
            action=action.payload(),
            ok=error is None,
            attempt=context.attempt,
            error=error.to_dict() if error is not None else None,
            trail=context.trail(),
            duration_ms=int((time.monotonic() - started) * 1000),
        )

    async def _bounded(self, action: ActionBase, awaitable: Awaitable[Any], timeout_ms: int) -> Any:
        try:
            return await asyncio.wait_for(awaitable, timeout_ms / 1000)
        except asyncio.TimeoutError as exc:
            raise ActionTimeout(
                f"timed out after {timeout_ms}ms",
                action=action.describe(),
                details={"timeout_ms": timeout_ms},
            ) from exc

    def _interaction_timeout(self, action: InteractionAction) -> int:
        return action.timeout_ms or self.action_timeout_ms

    def _check(self, action: ActionBase, result: AdapterResult) -> AdapterResult:
        if not result.success:
            raise ActionFailed(result.error or "session reported failure", action=action.describe(), details=result.details)
        return result

    async def _find(self, action: ActionBase, target: Target) -> str:
        handle = await self.session.find(target)
        if handle is None:
            raise TargetNotFound(
                f"no element matches {target}",
                action=action.describe(),
                details={"target": {target.kind: target.value}},
            )
        return handle

    async def _poll(
        self,
        action: ActionBase,
        condition: Callable[[], Awaitable[bool]],
        timeout_ms: int,
    ) -> None:
        interval = self.poll_interval_ms / 1000

        async def until_met() -> None:
            while not await condition():
                await asyncio.sleep(interval)

        # the deadline also bounds a condition query that never returns
        try:
            await asyncio.wait_for(until_met(), timeout_ms / 1000)
        except asyncio.TimeoutError as exc:
            raise ActionTimeout(
                f"condition not met within {timeout_ms}ms",
                action=action.describe(),
                details={"timeout_ms": timeout_ms},
            ) from exc

    # ------------------------------------------------------------------
    # navigation
    # ------------------------------------------------------------------
    async def _goto(self, action: GotoAction, context: ExecutionContext) -> None:
        log.info("Navigating to %s", action.url)
        self._check(action, await self._bounded(action, self.session.navigate(action.url), self.navigation_timeout_ms))

    async def _back(self, action: BackAction, context: ExecutionContext) -> None:
        log.debug("Navigating back")
        self._check(action, await self._bounded(action, self.session.back(), self.navigation_timeout_ms))

    async def _forward(self, action: ForwardAction, context: ExecutionContext) -> None:
        log.debug("Navigating forward")
        self._check(action, await self._bounded(action, self.session.forward(), self.navigation_timeout_ms))

    async def _reload(self, action: ReloadAction, context: ExecutionContext) -> None:
        log.debug("Reloading page")
        self._check(action, await self._bounded(action, self.session.reload(), self.navigation_timeout_ms))

    # ------------------------------------------------------------------
    # waits
    # ------------------------------------------------------------------
    async def _wait(self, action: WaitAction, context: ExecutionContext) -> None:
        log.debug("Waiting %dms", action.ms)
        await self._sleep(action.ms / 1000)

    async def _wait_for_network_idle(self, action: WaitForNetworkIdleAction, context: ExecutionContext) -> None:
        log.debug("Waiting for network idle (idle=%dms, timeout=%dms)", action.idle_ms, action.timeout_ms)
        result = await self.session.wait_for_network_idle(action.idle_ms, action.timeout_ms)
        if not result.success:
            raise ActionTimeout(
                result.error or f"network not idle within {action.timeout_ms}ms",
                action=action.describe(),
                details={"timeout_ms": action.timeout_ms},
            )

    async def _wait_for_selector(self, action: WaitForSelectorAction, context: ExecutionContext) -> None:
        log.debug("Waiting for selector %s", action.selector)
        await self._poll(action, lambda: self.session.has_selector(action.selector), action.timeout_ms)

    async def _wait_for_visible(self, action: WaitForVisibleAction, context: ExecutionContext) -> None:
        log.debug("Waiting for %s to become visible", action.selector)
        await self._poll(action, lambda: self.session.is_visible(action.selector), action.timeout_ms)

    async def _wait_for_hidden(self, action: WaitForHiddenAction, context: ExecutionContext) -> None:
        log.debug("Waiting for %s to become hidden", action.selector)

        async def hidden() -> bool:
            return not await self.session.is_visible(action.selector)

        await self._poll(action, hidden, action.timeout_ms)

    async def _wait_for_text(self, action: WaitForTextAction, context: ExecutionContext) -> None:
        log.debug("Waiting for text '%s'", action.text)
        await self._poll(action, lambda: self.session.has_text(action.text), action.timeout_ms)

    async def _wait_for_url(self, action: WaitForUrlAction, context: ExecutionContext) -> None:
        log.debug("Waiting for URL containing '%s'", action.contains)

        async def matches() -> bool:
            return action.contains in await self.session.current_url()

        await self._poll(action, matches, action.timeout_ms)

    # ------------------------------------------------------------------
    # interaction
    # ------------------------------------------------------------------
    async def _click(self, action: ClickAction, context: ExecutionContext) -> None:
        log.info("Clicking %s", action.target)

        async def perform() -> None:
            handle = await self._find(action, action.target)
            if action.scroll_into_view:
                self._check(action, await self.session.scroll_into_view(handle))
            self._check(action, await self.session.click(handle, human=action.human))

        await self._bounded(action, perform(), self._interaction_timeout(action))

    async def _try_click(self, action: TryClickAction, context: ExecutionContext) -> None:
        async def perform() -> None:
            handle = await self.session.find(action.target)
            if handle is None:
                log.debug("try_click: %s not found, skipping", action.target)
                return
            result = await self.session.click(handle)
            if result.success:
                log.info("Clicked %s", action.target)
            else:
                log.debug("try_click: click on %s failed: %s", action.target, result.error)

        await self._bounded(action, perform(), self._interaction_timeout(action))

    async def _try_click_any(self, action: TryClickAnyAction, context: ExecutionContext) -> None:
        candidates = [Target(selector=value) for value in action.selectors or []]
        candidates += [Target(text=value) for value in action.texts or []]

        async def perform() -> None:
            for target in candidates:
                handle = await self.session.find(target)
                if handle is None:
                    continue
                result = await self.session.click(handle)
                if result.success:
                    log.info("try_click_any: clicked %s", target)
                    return
            log.debug("try_click_any: no candidate matched")

        await self._bounded(action, perform(), self._interaction_timeout(action))

    async def _targeted(
        self,
        action: TargetedAction,
        operation: Callable[[str], Awaitable[AdapterResult]],
    ) -> None:
        async def perform() -> None:
            handle = await self._find(action, action.target)
            self._check(action, await operation(handle))

        await self._bounded(action, perform(), self._interaction_timeout(action))

    async def _fill(self, action: FillAction, context: ExecutionContext) -> None:
        log.info("Filling %s", action.target)
        await self._targeted(action, lambda handle: self.session.fill(handle, action.value, human=action.human))

    async def _type(self, action: TypeAction, context: ExecutionContext) -> None:
        log.debug("Typing into %s", action.target)
        await self._targeted(action, lambda handle: self.session.type_text(handle, action.value))

    async def _clear(self, action: ClearAction, context: ExecutionContext) -> None:
        log.debug("Clearing %s", action.target)
        await self._targeted(action, lambda handle: self.session.fill(handle, ""))

    async def _select(self, action: SelectAction, context: ExecutionContext) -> None:
        log.info("Selecting '%s' in %s", action.value, action.target)
        await self._targeted(action, lambda handle: self.session.select_option(handle, action.value))

    async def _hover(self, action: HoverAction, context: ExecutionContext) -> None:
        log.debug("Hovering %s", action.target)
        await self._targeted(action, self.session.hover)

    async def _scroll_to(self, action: ScrollToAction, context: ExecutionContext) -> None:
        log.debug("Scrolling to %s", action.target)
        await self._targeted(action, self.session.scroll_into_view)

    async def _press_key(self, action: PressKeyAction, context: ExecutionContext) -> None:
        log.debug("Pressing %s", action.key)
        result = await self._bounded(action, self.session.press_key(action.key), self._interaction_timeout(action))
        self._check(action, result)

    # ------------------------------------------------------------------
    # cookies, scripts, scrolling
    # ------------------------------------------------------------------
    async def _set_cookie(self, action: SetCookieAction, context: ExecutionContext) -> None:
        log.debug("Setting cookie %s", action.name)
        result = await self.session.set_cookie(action.name, action.value, domain=action.domain, path=action.path)
        self._check(action, result)

    async def _delete_cookie(self, action: DeleteCookieAction, context: ExecutionContext) -> None:
        log.debug("Deleting cookie %s", action.name)
        self._check(action, await self.session.delete_cookie(action.name, domain=action.domain))

    async def _execute(self, action: ExecuteAction, context: ExecutionContext) -> None:
        value = await self.session.execute_script(action.js)
        log.debug("Script returned %r", value)

    async def _scroll(self, action: ScrollAction, context: ExecutionContext) -> None:
        dx, dy = action.offsets()
        log.debug("Scrolling %s by (%d, %d)", action.direction, dx, dy)
        self._check(action, await self.session.scroll_by(dx, dy))

    # ------------------------------------------------------------------
    # debugging
    # ------------------------------------------------------------------
    async def _screenshot(self, action: ScreenshotAction, context: ExecutionContext) -> None:
        log.info("Saving screenshot to %s", action.path)
        self._check(action, await self.session.screenshot(action.path))

    async def _log(self, action: LogAction, context: ExecutionContext) -> None:
        log.info("[log] %s", action.message)

    async def _assert_text(self, action: AssertTextAction, context: ExecutionContext) -> None:
        if not await self.session.has_text(action.text):
            raise AssertionFailed(f"text '{action.text}' not found on page", action=action.describe())

    async def _assert_url(self, action: AssertUrlAction, context: ExecutionContext) -> None:
        url = await self.session.current_url()
        if action.contains not in url:
            raise AssertionFailed(
                f"URL '{url}' does not contain '{action.contains}'",
                action=action.describe(),
                details={"url": url},
            )

    # ------------------------------------------------------------------
    # control flow
    # ------------------------------------------------------------------
    async def _branch(self, action: ConditionalAction, matched: bool, context: ExecutionContext) -> None:
        branch = action.then if matched else action.else_
        label = "then" if matched else "else"
        log.debug("%s -> %s (%d action(s))", action.describe(), label, len(branch))
        context.push_frame(f"{action.describe()} [{label}]")
        try:
            await self.run(branch, context)
        finally:
            context.pop_frame()

    async def _if_text_exists(self, action: IfTextExistsAction, context: ExecutionContext) -> None:
        await self._branch(action, await self.session.has_text(action.text), context)

    async def _if_selector_exists(self, action: IfSelectorExistsAction, context: ExecutionContext) -> None:
        await self._branch(action, await self.session.has_selector(action.selector), context)

    async def _repeat(self, action: RepeatAction, context: ExecutionContext) -> None:
        for iteration in range(1, action.times + 1):
            log.debug("repeat iteration %d/%d", iteration, action.times)
            context.push_frame(f"repeat [{iteration}/{action.times}]")
            try:
                await self.run(action.actions, context)
            except ActionError as exc:
                exc.details.setdefault("iteration", iteration)
                raise
            finally:
                context.pop_frame()

    async def _included(self, action: IncludedProgram, context: ExecutionContext) -> None:
        log.info("Running include %s", action.source)
        context.push_bindings(action.bindings)
        context.push_frame(f"include {action.source}")
        try:
            await self.run(action.actions, context)
        finally:
            context.pop_frame()
            context.pop_bindings()

    async def _unexpanded_include(self, action: IncludeAction, context: ExecutionContext) -> None:
        raise ConfigError(
            f"include '{action.reference}' was not expanded before execution",
            details={"include": action.reference},
        )
