"""Load-time expansion of ``include`` actions."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from automation.errors import ConfigError, CyclicInclude

from .loader import load_configuration
from .models import (
    ActionBase,
    ConditionalAction,
    IncludeAction,
    IncludedProgram,
    RepeatAction,
)
from .params import resolve_bindings, substitute_actions
from .schema import Configuration

log = logging.getLogger(__name__)

MAX_INCLUDE_DEPTH = 10

Loader = Callable[[Path], Configuration]


class IncludeResolver:
    """Expands include nodes into :class:`IncludedProgram` nodes.

    ``programs`` maps names to in-memory configurations that ``include: {name:
    ...}`` may refer to; unknown names fall back to ``<dir>/<name>.yaml``.
    Paths are resolved against the directory of the including file.
    """

    def __init__(
        self,
        base_path: Path | str = ".",
        *,
        programs: Optional[Mapping[str, Configuration]] = None,
        loader: Loader = load_configuration,
        max_depth: int = MAX_INCLUDE_DEPTH,
    ) -> None:
        self.base_path = Path(base_path)
        self.programs: Dict[str, Configuration] = dict(programs or {})
        self.loader = loader
        self.max_depth = max_depth

    def expand(
        self,
        actions: List[ActionBase],
        *,
        root: Optional[str] = None,
    ) -> List[ActionBase]:
        """Expand every include in an already substituted action list."""

        stack: List[str] = [root] if root else []
        return self._expand_list(actions, self.base_path, stack)

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def _expand_list(self, actions: List[ActionBase], base: Path, stack: List[str]) -> List[ActionBase]:
        return [self._expand_node(action, base, stack) for action in actions]

    def _expand_node(self, action: ActionBase, base: Path, stack: List[str]) -> ActionBase:
        if isinstance(action, IncludeAction):
            return self._expand_include(action, base, stack)
        if isinstance(action, ConditionalAction):
            return action.model_copy(
                update={
                    "then": self._expand_list(action.then, base, stack),
                    "else_": self._expand_list(action.else_, base, stack),
                }
            )
        if isinstance(action, RepeatAction):
            return action.model_copy(update={"actions": self._expand_list(action.actions, base, stack)})
        return action

    def _expand_include(self, action: IncludeAction, base: Path, stack: List[str]) -> IncludedProgram:
        source, config, child_base = self._locate(action, base)
        if source in stack:
            cycle = stack[stack.index(source):] + [source]
            raise CyclicInclude(cycle)
        if len(stack) >= self.max_depth:
            raise ConfigError(
                f"maximum include depth ({self.max_depth}) exceeded at {source}",
                details={"stack": list(stack)},
            )

        log.debug("Expanding include %s with %d override(s)", source, len(action.params))
        bindings = resolve_bindings(config.params, action.params, source=source)
        body = substitute_actions(config.actions, bindings)
        stack.append(source)
        try:
            expanded = self._expand_list(body, child_base, stack)
        finally:
            stack.pop()
        return IncludedProgram(source=source, bindings=bindings, actions=expanded)

    def _locate(self, action: IncludeAction, base: Path) -> Tuple[str, Configuration, Path]:
        if action.name is not None:
            if action.name in self.programs:
                return f"name:{action.name}", self.programs[action.name], base
            for suffix in (".yaml", ".yml"):
                candidate = base / f"{action.name}{suffix}"
                if candidate.exists():
                    return self._load(candidate)
            raise ConfigError(
                f"include: no program named '{action.name}'",
                details={"name": action.name, "known": sorted(self.programs)},
            )
        assert action.path is not None
        path = Path(action.path)
        if not path.is_absolute():
            path = base / path
        return self._load(path)

    def _load(self, path: Path) -> Tuple[str, Configuration, Path]:
        resolved = path.resolve()
        try:
            config = self.loader(resolved)
        except ConfigError as exc:
            raise ConfigError(
                f"failed to load include '{path}': {exc.message}",
                details={"source": str(resolved), **exc.details},
            ) from exc
        return str(resolved), config, resolved.parent
