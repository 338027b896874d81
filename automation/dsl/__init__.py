"""Typed automation DSL: action models, registry, parameters and includes."""

from . import models
from .includes import IncludeResolver
from .loader import load_configuration, loads_configuration, parse_configuration
from .models import ActionBase, IncludedProgram, Target
from .params import parse_param_args, resolve_bindings, substitute, substitute_actions
from .registry import ActionRegistry, registry
from .schema import Configuration, SuccessCondition

__all__ = [
    "ActionBase",
    "ActionRegistry",
    "Configuration",
    "IncludeResolver",
    "IncludedProgram",
    "SuccessCondition",
    "Target",
    "load_configuration",
    "loads_configuration",
    "models",
    "parse_configuration",
    "parse_param_args",
    "registry",
    "resolve_bindings",
    "substitute",
    "substitute_actions",
]
