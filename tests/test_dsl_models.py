import pytest

from automation.dsl import loads_configuration, models, registry
from automation.errors import ConfigError


def test_registry_parses_bare_name():
    action = registry.parse_action("back")
    assert isinstance(action, models.BackAction)


def test_registry_parses_shorthand_scalar():
    goto = registry.parse_action({"goto": "https://example.com"})
    assert isinstance(goto, models.GotoAction)
    assert goto.url == "https://example.com"

    wait = registry.parse_action({"wait": 250})
    assert isinstance(wait, models.WaitAction)
    assert wait.ms == 250


def test_targeted_actions_collect_flat_target():
    click = registry.parse_action({"click": {"text": "Login", "human": True}})
    assert isinstance(click, models.ClickAction)
    assert click.target.kind == "text"
    assert click.target.value == "Login"
    assert click.human is True

    fill = registry.parse_action({"fill": {"placeholder": "Email", "value": "a@b.c"}})
    assert fill.target.kind == "placeholder"
    assert fill.value == "a@b.c"


def test_target_requires_exactly_one_key():
    with pytest.raises(ConfigError, match="exactly one"):
        registry.parse_action({"click": {"selector": "#a", "text": "A"}})
    with pytest.raises(ConfigError):
        registry.parse_action({"click": {"human": True}})


def test_wait_for_alias_resolves_to_wait_for_selector():
    action = registry.parse_action({"wait_for": {"selector": ".ready"}})
    assert type(action) is models.WaitForSelectorAction
    assert action.timeout_ms == models.DEFAULT_WAIT_TIMEOUT_MS


def test_network_idle_defaults():
    action = registry.parse_action("wait_for_network_idle")
    assert action.idle_ms == 500
    assert action.timeout_ms == 10000


def test_unknown_action_is_config_error():
    with pytest.raises(ConfigError, match="unknown action 'teleport'"):
        registry.parse_action({"teleport": {}})


def test_multi_key_entry_is_config_error():
    with pytest.raises(ConfigError, match="single action key"):
        registry.parse_action({"click": {"selector": "#a"}, "back": None})


def test_unknown_field_is_rejected():
    with pytest.raises(ConfigError, match="invalid 'goto' action"):
        registry.parse_action({"goto": {"url": "https://x", "wait": True}})


def test_try_click_any_requires_candidates():
    with pytest.raises(ConfigError):
        registry.parse_action({"try_click_any": {}})
    action = registry.parse_action({"try_click_any": {"texts": ["Accept", "OK"]}})
    assert action.texts == ["Accept", "OK"]
    assert action.selectors is None


def test_scroll_offsets_use_step_of_300px():
    down = registry.parse_action({"scroll": {"direction": "down", "amount": 2}})
    assert down.offsets() == (0, 600)
    left = registry.parse_action({"scroll": "left"})
    assert left.offsets() == (-300, 0)


def test_repeat_requires_positive_times():
    with pytest.raises(ConfigError):
        registry.parse_action({"repeat": {"times": 0, "actions": ["back"]}})


def test_include_requires_path_or_name():
    with pytest.raises(ConfigError, match="exactly one of 'path' or 'name'"):
        registry.parse_action({"include": {"path": "a.yaml", "name": "a"}})
    include = registry.parse_action({"include": "login.yaml"})
    assert include.reference == "login.yaml"


def test_nested_control_flow_parses_and_dumps():
    entry = {
        "if_text_exists": {
            "text": "Cookies",
            "then": [{"click": {"text": "Accept"}}],
            "else": ["reload"],
        }
    }
    action = registry.parse_action(entry)
    assert isinstance(action, models.IfTextExistsAction)
    assert isinstance(action.then[0], models.ClickAction)
    assert isinstance(action.else_[0], models.ReloadAction)
    assert action.payload() == {
        "if_text_exists": {
            "text": "Cookies",
            "then": [{"click": {"text": "Accept"}}],
            "else": ["reload"],
        }
    }


def test_walk_visits_nested_nodes_in_order():
    action = registry.parse_action(
        {"repeat": {"times": 2, "actions": [{"log": "a"}, {"if_selector_exists": {"selector": "#x", "then": ["back"]}}]}}
    )
    names = [node.action_name for node in models.walk([action])]
    assert names == ["repeat", "log", "if_selector_exists", "back"]


def test_configuration_loads_from_yaml():
    config = loads_configuration(
        """
name: login
params:
  user:
    required: true
    description: account name
  greeting:
target:
  url: https://example.com/login
actions:
  - fill: {id: user, value: "${user}"}
  - click: {text: Sign in}
success:
  any:
    - url_contains: /home
    - text_contains: Welcome
on_failure:
  screenshot: shot.png
  retry: {attempts: 3, delay_ms: 50}
"""
    )
    assert config.name == "login"
    assert config.params["user"].required is True
    assert config.params["greeting"].default is None
    assert config.attempts == 3
    assert config.retry_delay_ms == 50
    assert config.failure_screenshot == "shot.png"
    assert config.success.count() == 2


def test_configuration_rejects_any_and_all_together():
    with pytest.raises(ConfigError, match="either 'any' or 'all'"):
        loads_configuration(
            """
name: bad
target: {url: https://example.com}
success:
  any: [{url_contains: a}]
  all: [{url_contains: b}]
"""
        )


def test_configuration_requires_name():
    with pytest.raises(ConfigError, match="name"):
        loads_configuration("name: ''\nactions: []\n")


def test_yaml_syntax_error_is_config_error():
    with pytest.raises(ConfigError, match="yaml parse error"):
        loads_configuration("name: [unterminated\n")


def test_error_in_nested_action_is_reported():
    with pytest.raises(ConfigError, match="unknown action 'jump'"):
        loads_configuration(
            """
name: nested
actions:
  - repeat:
      times: 2
      actions:
        - jump
"""
        )
