"""Declarative browser automation engine."""

from .dsl import models, registry
from .executor import ExecutionContext, Executor
from .service import AutomationService, CompiledProgram, RunResult, compile_file, compile_program
from .success import evaluate_success

__all__ = [
    "AutomationService",
    "CompiledProgram",
    "ExecutionContext",
    "Executor",
    "RunResult",
    "compile_file",
    "compile_program",
    "evaluate_success",
    "models",
    "registry",
]
