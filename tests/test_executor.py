import asyncio
import json
import time

import pytest

from automation.dsl import IncludedProgram, registry
from automation.dsl.models import IncludeAction, LogAction
from automation.errors import (
    ActionFailed,
    ActionTimeout,
    AssertionFailed,
    ConfigError,
    ErrorCode,
    TargetNotFound,
)
from automation.executor import ExecutionContext, Executor
from browser.structured_logging import StructuredLogger, prepare_log_paths


def _actions(entries):
    return registry.parse_actions(entries)


async def _run(session, entries, **kwargs):
    context = ExecutionContext()
    await Executor(session, **kwargs).run(_actions(entries), context)
    return context


def test_dispatch_table_covers_every_registered_action(session):
    handlers = Executor(session).handlers
    missing = [model.__name__ for model in registry.models() if model not in handlers]
    assert missing == []
    assert IncludedProgram in handlers


@pytest.mark.asyncio
async def test_navigation_and_simple_actions(session):
    session.selectors = {"#q": True, "select#lang": True}
    context = await _run(
        session,
        [
            {"goto": "https://example.com"},
            {"fill": {"selector": "#q", "value": "kiwi"}},
            {"type": {"selector": "#q", "value": "!"}},
            {"select": {"selector": "select#lang", "value": "ja"}},
            {"press_key": "Enter"},
            {"scroll": {"direction": "up", "amount": 2}},
            {"set_cookie": {"name": "sid", "value": "1"}},
            {"delete_cookie": "sid"},
            "back",
            "forward",
            "reload",
        ],
    )
    assert session.url == "https://example.com"
    assert session.values["selector:#q"] == "kiwi!"
    assert ("select", "selector:select#lang", "ja") in session.calls
    assert ("press_key", "Enter") in session.calls
    assert ("scroll_by", 0, -600) in session.calls
    assert session.cookies == {}
    assert context.actions_executed == 11


@pytest.mark.asyncio
async def test_wait_uses_injected_sleep(session):
    slept = []

    async def fake_sleep(seconds):
        slept.append(seconds)

    await _run(session, [{"wait": 250}], sleep=fake_sleep)
    assert slept == [0.25]


@pytest.mark.asyncio
async def test_click_missing_target_raises_target_not_found(session):
    with pytest.raises(TargetNotFound) as excinfo:
        await _run(session, [{"log": "start"}, {"click": {"text": "Login"}}])
    error = excinfo.value
    assert error.code is ErrorCode.ELEMENT_NOT_FOUND
    assert error.details["index"] == 1
    assert error.action == "click text 'Login'"


@pytest.mark.asyncio
async def test_click_scrolls_into_view_first(session):
    session.selectors = {"#buy": True}
    await _run(session, [{"click": {"selector": "#buy", "scroll_into_view": True}}])
    assert [name for name in session.names() if name != "find"] == ["scroll_into_view", "click"]


@pytest.mark.asyncio
async def test_failed_click_raises_action_failed(session):
    session.selectors = {"#buy": True}
    session.fail_clicks = {"selector:#buy"}
    with pytest.raises(ActionFailed, match="forced"):
        await _run(session, [{"click": "#buy"}])


@pytest.mark.asyncio
async def test_try_click_swallows_missing_and_failed_clicks(session):
    session.selectors = {"#broken": True}
    session.fail_clicks = {"selector:#broken"}
    context = await _run(session, [{"try_click": "#absent"}, {"try_click": "#broken"}])
    assert context.actions_executed == 2


@pytest.mark.asyncio
async def test_try_click_any_is_noop_when_nothing_matches(session):
    context = await _run(session, [{"try_click_any": {"selectors": ["#a", "#b"], "texts": ["Accept"]}}])
    assert "click" not in session.names()
    assert context.actions_executed == 1


@pytest.mark.asyncio
async def test_try_click_any_stops_at_first_successful_click(session):
    session.selectors = {"#a": True, "#b": True}
    session.text = "OK"
    session.fail_clicks = {"selector:#a"}
    await _run(session, [{"try_click_any": {"selectors": ["#a", "#b"], "texts": ["OK"]}}])
    clicks = [call[1] for call in session.calls if call[0] == "click"]
    assert clicks == ["selector:#a", "selector:#b"]


@pytest.mark.asyncio
async def test_try_click_any_tries_texts_after_selectors(session):
    session.text = "Accept all cookies"
    await _run(session, [{"try_click_any": {"selectors": ["#consent"], "texts": ["Accept all"]}}])
    clicks = [call[1] for call in session.calls if call[0] == "click"]
    assert clicks == ["text:Accept all"]


@pytest.mark.asyncio
@pytest.mark.parametrize("page_text, expected", [("Cookies here", "then"), ("Nothing", "else")])
async def test_if_text_exists_runs_exactly_one_branch(session, page_text, expected):
    session.text = page_text
    await _run(
        session,
        [
            {
                "if_text_exists": {
                    "text": "Cookies",
                    "then": [{"execute": "then"}],
                    "else": [{"execute": "else"}],
                }
            }
        ],
    )
    scripts = [call[1] for call in session.calls if call[0] == "execute"]
    assert scripts == [expected]


@pytest.mark.asyncio
async def test_if_without_else_is_noop(session):
    context = await _run(session, [{"if_selector_exists": {"selector": "#banner", "then": ["reload"]}}])
    assert "reload" not in session.names()
    assert context.actions_executed == 0


@pytest.mark.asyncio
async def test_repeat_runs_body_times_in_order(session):
    session.selectors = {"#next": True}
    context = await _run(
        session,
        [{"repeat": {"times": 3, "actions": [{"execute": "tick"}, {"click": "#next"}]}}],
    )
    body = [call[0] for call in session.calls if call[0] in ("execute", "click")]
    assert body == ["execute", "click"] * 3
    assert context.actions_executed == 6
    assert context.frames == []


@pytest.mark.asyncio
async def test_repeat_aborts_on_first_failure_and_records_iteration(session):
    session.selectors = {"#next": True}
    clicks = {"count": 0}

    def on_click(fake):
        clicks["count"] += 1
        if clicks["count"] == 2:
            del fake.selectors["#next"]

    session.on_click["selector:#next"] = on_click
    context = ExecutionContext()
    actions = _actions([{"repeat": {"times": 5, "actions": [{"click": "#next"}]}}])

    with pytest.raises(TargetNotFound) as excinfo:
        await Executor(session).run(actions, context)

    assert clicks["count"] == 2
    assert excinfo.value.details["iteration"] == 3
    assert excinfo.value.trail == ["repeat [3/5]"]
    assert context.last_error is excinfo.value
    assert context.frames == []


@pytest.mark.asyncio
async def test_wait_for_text_times_out_within_window(session):
    started = time.monotonic()
    with pytest.raises(ActionTimeout) as excinfo:
        await _run(session, [{"wait_for_text": {"text": "never", "timeout_ms": 150}}], poll_interval_ms=10)
    elapsed = time.monotonic() - started
    assert elapsed >= 0.15
    assert elapsed < 0.15 + 0.5
    assert excinfo.value.details["timeout_ms"] == 150


@pytest.mark.asyncio
async def test_wait_for_text_returns_once_text_appears(session):
    asyncio.get_running_loop().call_later(0.05, setattr, session, "text", "Ready")
    started = time.monotonic()
    await _run(session, [{"wait_for_text": {"text": "Ready", "timeout_ms": 2000}}], poll_interval_ms=10)
    assert time.monotonic() - started < 1.0


@pytest.mark.asyncio
async def test_selector_waits(session):
    session.selectors = {"#ready": True, "#spinner": False}
    context = await _run(
        session,
        [
            {"wait_for_selector": "#ready"},
            {"wait_for_visible": "#ready"},
            {"wait_for_hidden": "#spinner"},
            {"wait_for_url": {"contains": "blank"}},
            "wait_for_network_idle",
        ],
    )
    assert context.actions_executed == 5


@pytest.mark.asyncio
async def test_wait_for_visible_times_out_for_hidden_element(session):
    session.selectors = {"#modal": False}
    with pytest.raises(ActionTimeout):
        await _run(session, [{"wait_for_visible": {"selector": "#modal", "timeout_ms": 30}}], poll_interval_ms=5)


@pytest.mark.asyncio
async def test_wait_deadline_bounds_a_hanging_query(session):
    async def hanging(text):
        await asyncio.sleep(2)
        return True

    session.has_text = hanging
    started = time.monotonic()
    with pytest.raises(ActionTimeout, match="condition not met within 100ms"):
        await _run(session, [{"wait_for_text": {"text": "late", "timeout_ms": 100}}], poll_interval_ms=10)
    assert time.monotonic() - started < 1.0


@pytest.mark.asyncio
async def test_condition_query_error_is_wrapped_and_stamped(session):
    async def broken(selector):
        raise RuntimeError("Execution context was destroyed")

    session.has_selector = broken
    entries = [{"log": "first"}, {"if_selector_exists": {"selector": "#x", "then": ["back"]}}]
    with pytest.raises(ActionFailed, match="Execution context was destroyed") as excinfo:
        await _run(session, entries)

    error = excinfo.value
    assert isinstance(error.__cause__, RuntimeError)
    assert error.details["index"] == 1
    assert "#x" in error.action
    assert "back" not in session.names()


@pytest.mark.asyncio
async def test_interaction_deadline(session):
    session.selectors = {"#slow": True}

    async def slow_click(handle, *, human=False):
        await asyncio.sleep(1)

    session.click = slow_click
    with pytest.raises(ActionTimeout, match="timed out after 50ms"):
        await _run(session, [{"click": {"selector": "#slow", "timeout_ms": 50}}])


@pytest.mark.asyncio
async def test_assertions(session):
    session.url = "https://example.com/home"
    session.text = "Welcome"
    await _run(session, [{"assert_text": "Welcome"}, {"assert_url": "/home"}])

    with pytest.raises(AssertionFailed) as excinfo:
        await _run(session, [{"assert_url": "/admin"}])
    assert excinfo.value.code is ErrorCode.ASSERTION_FAILED
    assert excinfo.value.details["url"] == "https://example.com/home"


@pytest.mark.asyncio
async def test_unexpected_session_error_is_wrapped(session):
    async def broken(js):
        raise RuntimeError("page crashed")

    session.execute_script = broken
    with pytest.raises(ActionFailed, match="page crashed") as excinfo:
        await _run(session, [{"execute": "1 + 1"}])
    assert isinstance(excinfo.value.__cause__, RuntimeError)


@pytest.mark.asyncio
async def test_included_program_pushes_frame_and_bindings(session):
    program = IncludedProgram(
        source="flows/login.yaml",
        bindings={"user": "alice"},
        actions=[LogAction(message="hi"), registry.parse_action({"click": "#missing"})],
    )
    context = ExecutionContext()
    with pytest.raises(TargetNotFound) as excinfo:
        await Executor(session).run([program], context)
    assert excinfo.value.trail == ["include flows/login.yaml"]
    assert context.frames == []
    assert len(context.bindings.maps) == 1


@pytest.mark.asyncio
async def test_included_program_layers_bindings_while_running(session):
    seen = []
    executor = Executor(session)

    async def capture(action, context):
        seen.append(dict(context.bindings))

    executor.handlers[LogAction] = capture
    context = ExecutionContext()
    context.bindings["root"] = "r"
    program = IncludedProgram(source="x", bindings={"user": "alice"}, actions=[LogAction(message="x")])
    await executor.run([program], context)
    assert seen == [{"root": "r", "user": "alice"}]
    assert dict(context.bindings) == {"root": "r"}


@pytest.mark.asyncio
async def test_unexpanded_include_is_config_error(session):
    with pytest.raises(ConfigError, match="not expanded"):
        await Executor(session).run([IncludeAction(path="other.yaml")], ExecutionContext())


@pytest.mark.asyncio
async def test_events_are_written_per_leaf_action(session, tmp_path):
    events = StructuredLogger("run-1", prepare_log_paths("run-1", tmp_path / "run-1"))
    try:
        with pytest.raises(TargetNotFound):
            await _run(
                session,
                [{"log": "hello"}, {"repeat": {"times": 1, "actions": [{"click": "#nope"}]}}],
                events=events,
            )
    finally:
        events.close()

    lines = (tmp_path / "run-1" / "events.jsonl").read_text(encoding="utf-8").splitlines()
    records = [json.loads(line) for line in lines]
    assert [record["ok"] for record in records] == [True, False]
    assert records[0]["action"] == {"log": {"message": "hello"}}
    assert records[1]["error"]["code"] == "ELEMENT_NOT_FOUND"
    assert records[1]["trail"] == ["repeat [1/1]"]
