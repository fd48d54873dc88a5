"""
Pytest configuration for interpreter tests.

Provides a parameterized fixture running the same task against the production
interpreter (on a temporary directory) and the dry-run interpreter, so shared
behaviour tests check that both agree.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

import pytest

from conjure._memory_fs import normalize_path
from conjure._vendor import Err, Ok, Result
from conjure.dry_run import DryRunInterpreter, default_answer
from conjure.effects import Effect, Prompt
from conjure.errors import TaskExecutionError
from conjure.interpreter import InterpreterOptions, ProductionInterpreter
from conjure.task import Task


@dataclass
class RunOutcome:
    """Interpreter-agnostic view of one run."""

    result: Result[Any]
    context: dict[str, Any]
    effects: list[Effect] = field(default_factory=list)
    logs: list[tuple[str, str]] = field(default_factory=list)

    @property
    def is_ok(self) -> bool:
        return self.result.is_ok()

    @property
    def value(self) -> Any:
        return self.result.unwrap()

    @property
    def error(self) -> TaskExecutionError:
        if isinstance(self.result, Err):
            return self.result.error  # type: ignore[return-value]
        raise ValueError("Cannot access error on successful result")


class Interpreter(Protocol):
    interpreter_type: str

    async def run(
        self,
        task: Task[Any],
        *,
        files: Mapping[str, str] | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> RunOutcome: ...

    def read(self, path: str) -> str | None: ...


def _answer_with_defaults(effect: Prompt) -> Any:
    return default_answer(effect.question)


class ProductionAdapter:
    """Runs tasks for real inside ``root``."""

    interpreter_type = "production"

    def __init__(self, root: Path) -> None:
        self.root = root

    async def run(
        self,
        task: Task[Any],
        *,
        files: Mapping[str, str] | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> RunOutcome:
        for path, content in (files or {}).items():
            target = self.root / path
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        effects: list[Effect] = []
        logs: list[tuple[str, str]] = []
        state = dict(context or {})
        interpreter = ProductionInterpreter(
            InterpreterOptions(
                context=state,
                cwd=self.root,
                prompt_handler=_answer_with_defaults,
                on_effect_start=effects.append,
                on_log=lambda level, message: logs.append((level, message)),
            )
        )
        try:
            value = await interpreter.run(task)
        except TaskExecutionError as exc:
            return RunOutcome(Err(exc), state, effects, logs)
        return RunOutcome(Ok(value), state, effects, logs)

    def read(self, path: str) -> str | None:
        target = self.root / path
        return target.read_text(encoding="utf-8") if target.is_file() else None


class DryRunAdapter:
    """Simulates tasks against an in-memory file system."""

    interpreter_type = "dry_run"

    def __init__(self) -> None:
        self._last: DryRunInterpreter | None = None

    async def run(
        self,
        task: Task[Any],
        *,
        files: Mapping[str, str] | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> RunOutcome:
        interpreter = DryRunInterpreter(files, dict(context or {}))
        self._last = interpreter
        try:
            result = interpreter.run(task)
        except TaskExecutionError as exc:
            return RunOutcome(
                Err(exc), dict(interpreter.context), list(interpreter.effects), interpreter.logs
            )
        return RunOutcome(Ok(result.value), dict(result.context), list(result.effects), interpreter.logs)

    def read(self, path: str) -> str | None:
        assert self._last is not None, "run() must be called before read()"
        return self._last.fs.files.get(normalize_path(path))


@pytest.fixture(params=["production", "dry_run"])
def interpreter(request: pytest.FixtureRequest, tmp_path: Path) -> Interpreter:
    """
    Parameterized fixture providing both interpreter implementations.

    Each adapter has an ``interpreter_type`` attribute ("production" or
    "dry_run") that can be used to skip tests for one implementation.
    """
    if request.param == "production":
        return ProductionAdapter(tmp_path)
    return DryRunAdapter()


@pytest.fixture
def production(tmp_path: Path) -> ProductionAdapter:
    return ProductionAdapter(tmp_path)


@pytest.fixture
def simulated() -> DryRunAdapter:
    return DryRunAdapter()
