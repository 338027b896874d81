"""Run orchestration: composition, whole-graph retry and result aggregation.

The service turns a validated :class:`~automation.dsl.schema.Configuration`
into a compiled program (bindings resolved, tokens substituted, includes
expanded, implicit ``goto`` prepended) and replays that program against a
session until it succeeds or the configured attempts are exhausted.  The
session is never reset between attempts; every attempt starts from the target
URL instead.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections import ChainMap
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from automation.dsl.includes import IncludeResolver
from automation.dsl.loader import load_configuration
from automation.dsl.models import ActionBase, GotoAction, walk
from automation.dsl.params import resolve_bindings, substitute_configuration
from automation.dsl.schema import Configuration
from automation.errors import ActionError, ActionFailed, ConfigError, RetryExhausted, SuccessConditionNotMet
from automation.executor import ExecutionContext, Executor
from automation.session import Session
from automation.success import evaluate_success
from browser.config import RunConfig, ensure_run_directories
from browser.structured_logging import StructuredLogger, prepare_log_paths

log = logging.getLogger(__name__)


@dataclass(slots=True)
class CompiledProgram:
    """A configuration ready to execute."""

    configuration: Configuration
    declared: Configuration
    bindings: Dict[str, str]
    actions: List[ActionBase]
    source: Optional[str] = None

    @property
    def name(self) -> str:
        return self.configuration.name

    @property
    def target_url(self) -> str:
        return self.configuration.require_target()

    def summary(self) -> Dict[str, Any]:
        params = {
            name: {
                "required": spec.required,
                "default": spec.default,
                "description": spec.description,
            }
            for name, spec in self.declared.params.items()
        }
        success = self.configuration.success
        return {
            "name": self.name,
            "target": self.target_url,
            "actions": len(self.declared.actions),
            "expanded_actions": sum(1 for _ in walk(self.actions)),
            "params": params,
            "success_conditions": success.count() if success is not None else 0,
            "attempts": self.configuration.attempts,
        }


@dataclass(slots=True)
class RunResult:
    """Structured payload returned by :class:`AutomationService`."""

    run_id: str
    success: bool
    duration_ms: int
    attempts: int
    actions_executed: int
    error: Optional[str] = None
    error_code: Optional[str] = None
    screenshot_path: Optional[str] = None
    screenshots: List[str] = field(default_factory=list)
    events_path: Optional[str] = None
    exception: Optional[RetryExhausted] = None

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "run_id": self.run_id,
            "success": self.success,
            "duration_ms": self.duration_ms,
            "attempts": self.attempts,
            "actions_executed": self.actions_executed,
            "error": self.error,
            "error_code": self.error_code,
            "screenshot_path": self.screenshot_path,
            "screenshots": list(self.screenshots),
            "events_path": self.events_path,
        }
        if self.exception is not None:
            payload["failure"] = self.exception.to_dict()
        return payload


def compile_program(
    configuration: Configuration,
    params: Optional[Mapping[str, str]] = None,
    base_path: Path | str | None = None,
    *,
    source: Optional[str] = None,
    programs: Optional[Mapping[str, Configuration]] = None,
) -> CompiledProgram:
    """Resolve parameters and includes. Every composition error surfaces here."""

    bindings = resolve_bindings(configuration.params, params or {}, source=configuration.name)
    resolved = substitute_configuration(configuration, bindings)
    url = resolved.require_target()
    resolver = IncludeResolver(base_path or ".", programs=programs)
    expanded = resolver.expand(resolved.actions, root=source)
    log.debug("Compiled %s: %d top-level action(s)", resolved.name, len(expanded))
    return CompiledProgram(
        configuration=resolved.model_copy(update={"actions": expanded}),
        declared=configuration,
        bindings=bindings,
        actions=[GotoAction(url=url), *expanded],
        source=source,
    )


def compile_file(
    path: Path | str,
    params: Optional[Mapping[str, str]] = None,
    *,
    programs: Optional[Mapping[str, Configuration]] = None,
) -> CompiledProgram:
    resolved = Path(path).resolve()
    configuration = load_configuration(resolved)
    return compile_program(configuration, params, resolved.parent, source=str(resolved), programs=programs)


class AutomationService:
    """Executes configurations against a session with whole-graph retry."""

    def __init__(
        self,
        session: Session,
        config: Optional[RunConfig] = None,
        *,
        programs: Optional[Mapping[str, Configuration]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.session = session
        self.config = config or RunConfig()
        self.programs: Dict[str, Configuration] = dict(programs or {})
        self._sleep = sleep

    # ------------------------------------------------------------------
    # composition
    # ------------------------------------------------------------------
    def compile(
        self,
        configuration: Configuration,
        params: Optional[Mapping[str, str]] = None,
        base_path: Path | str | None = None,
        *,
        source: Optional[str] = None,
    ) -> CompiledProgram:
        return compile_program(configuration, params, base_path, source=source, programs=self.programs)

    def compile_file(self, path: Path | str, params: Optional[Mapping[str, str]] = None) -> CompiledProgram:
        return compile_file(path, params, programs=self.programs)

    # ------------------------------------------------------------------
    # execution
    # ------------------------------------------------------------------
    async def run(
        self,
        configuration: Configuration,
        params: Optional[Mapping[str, str]] = None,
        base_path: Path | str | None = None,
        *,
        source: Optional[str] = None,
        run_id: Optional[str] = None,
    ) -> RunResult:
        program = self.compile(configuration, params, base_path, source=source)
        return await self.execute(program, run_id=run_id)

    async def run_file(
        self,
        path: Path | str,
        params: Optional[Mapping[str, str]] = None,
        *,
        run_id: Optional[str] = None,
    ) -> RunResult:
        program = self.compile_file(path, params)
        return await self.execute(program, run_id=run_id)

    async def execute(self, program: CompiledProgram, *, run_id: Optional[str] = None) -> RunResult:
        run_id = run_id or f"run-{int(time.time())}-{uuid.uuid4().hex[:6]}"
        started = time.monotonic()
        events = self._open_events(run_id)
        executor = Executor(
            self.session,
            action_timeout_ms=self.config.action_timeout_ms,
            navigation_timeout_ms=self.config.navigation_timeout_ms,
            poll_interval_ms=self.config.poll_interval_ms,
            events=events,
            sleep=self._sleep,
        )
        attempts = program.configuration.attempts
        delay_ms = program.configuration.retry_delay_ms
        executed = 0
        screenshots: List[str] = []

        log.info("Running %s (run_id=%s)", program.name, run_id)
        try:
            for attempt in range(1, attempts + 1):
                context = ExecutionContext(bindings=ChainMap(dict(program.bindings)), attempt=attempt)
                log.info("Attempt %d/%d", attempt, attempts)
                try:
                    await executor.run(program.actions, context)
                    await self._check_success(program)
                except ActionError as exc:
                    executed += context.actions_executed
                    log.warning("Attempt %d/%d failed: %s", attempt, attempts, exc)
                    shot = await self._failure_screenshot(program, run_id, attempt)
                    if shot is not None:
                        screenshots.append(shot)
                    if attempt == attempts:
                        return RunResult(
                            run_id=run_id,
                            success=False,
                            duration_ms=self._elapsed_ms(started),
                            attempts=attempts,
                            actions_executed=executed,
                            error=str(exc),
                            error_code=exc.code.value,
                            screenshot_path=screenshots[-1] if screenshots else None,
                            screenshots=screenshots,
                            events_path=str(events.paths.events) if events else None,
                            exception=RetryExhausted(exc, attempts),
                        )
                    if delay_ms > 0:
                        log.info("Retrying in %dms", delay_ms)
                        await self._sleep(delay_ms / 1000)
                    continue

                executed += context.actions_executed
                log.info("%s succeeded on attempt %d", program.name, attempt)
                return RunResult(
                    run_id=run_id,
                    success=True,
                    duration_ms=self._elapsed_ms(started),
                    attempts=attempt,
                    actions_executed=executed,
                    screenshots=screenshots,
                    events_path=str(events.paths.events) if events else None,
                )
        finally:
            if events is not None:
                events.close()

        raise ConfigError(
            f"retry attempts must be at least 1, got {attempts}",
            details={"attempts": attempts},
        )

    async def _check_success(self, program: CompiledProgram) -> None:
        try:
            met = await evaluate_success(program.configuration.success, self.session)
        except Exception as exc:
            raise ActionFailed(str(exc) or exc.__class__.__name__, action="success") from exc
        if not met:
            raise SuccessConditionNotMet()

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def _open_events(self, run_id: str) -> Optional[StructuredLogger]:
        if not self.config.record_events:
            return None
        dirs = ensure_run_directories(run_id, self.config)
        return StructuredLogger(run_id, prepare_log_paths(run_id, dirs["base"]))

    def screenshot_path(self, template: Optional[str], run_id: str, attempt: int) -> Path:
        if template is None:
            base = Path(self.config.failure_screenshot)
            if not base.is_absolute():
                base = self.config.log_root / run_id / "shots" / base
            template = str(base)
        rendered = (
            template.replace("{timestamp}", str(int(time.time())))
            .replace("{attempt}", str(attempt))
            .replace("{run_id}", run_id)
        )
        return Path(rendered)

    async def _failure_screenshot(self, program: CompiledProgram, run_id: str, attempt: int) -> Optional[str]:
        path = self.screenshot_path(program.configuration.failure_screenshot, run_id, attempt)
        try:
            result = await self.session.screenshot(str(path))
        except Exception as exc:
            log.warning("Failure screenshot could not be taken: %s", exc)
            return None
        if not result.success:
            log.warning("Failure screenshot could not be taken: %s", result.error)
            return None
        log.info("Failure screenshot saved to %s", path)
        return str(path)

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.monotonic() - started) * 1000)
