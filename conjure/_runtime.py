"""Machinery shared by the production and dry-run interpreters."""

from __future__ import annotations

from collections.abc import MutableMapping
from enum import Enum
from typing import Any

from conjure._vendor import Err, Result
from conjure.effects import MISSING, PromptQuestion, ReadContext, WriteContext
from conjure.errors import InterpreterStateError, TaskExecutionError, ValidationError


class InterpreterState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class RunOnceMixin:
    """Idle -> Running -> Succeeded | Failed; an instance interprets one task."""

    _state: InterpreterState = InterpreterState.IDLE

    @property
    def state(self) -> InterpreterState:
        return self._state

    def _begin(self) -> None:
        if self._state is not InterpreterState.IDLE:
            raise InterpreterStateError(
                f"{type(self).__name__} has already been used ({self._state.value}); "
                "create a new interpreter for each run"
            )
        self._state = InterpreterState.RUNNING

    def _settle(self, outcome: Result[Any]) -> Any:
        """Record the final state; return the value or raise at the boundary."""
        if isinstance(outcome, Err):
            self._state = InterpreterState.FAILED
            raise TaskExecutionError.from_error(outcome.error)  # type: ignore[arg-type]
        self._state = InterpreterState.SUCCEEDED
        return outcome.unwrap()


def apply_context(effect: ReadContext | WriteContext, context: MutableMapping[str, Any]) -> Any:
    match effect:
        case ReadContext(key=key, default=default):
            return context.get(key, default)
        case WriteContext(key=key, value=value) if value is MISSING:
            context.pop(key, None)
        case WriteContext(key=key, value=value):
            context[key] = value
    return None


def check_answer(question: PromptQuestion, answer: Any) -> Any:
    """Apply ``question.validate`` to an answer; raises ``ValidationError``."""
    if question.validate is None:
        return answer
    verdict = question.validate(answer)
    if verdict is True or verdict is None:
        return answer
    reason = verdict if isinstance(verdict, str) else "invalid answer"
    raise ValidationError(
        f"{question.name}: {reason}",
        context={"prompt": question.name, "answer": repr(answer)},
    )


__all__ = ["InterpreterState", "RunOnceMixin", "apply_context", "check_answer"]
