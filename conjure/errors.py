"""Error taxonomy for tasks.

Errors are ordinary values while a task is being interpreted: a failing step
produces a ``Fail`` node holding a :class:`TaskError`. Interpreters raise
:class:`TaskExecutionError` only at the boundary, when a failure reaches the
top of the task uncaught.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Final

from conjure._vendor import FrozenDict

if TYPE_CHECKING:
    from conjure.effects import Effect

VALIDATION_ERROR: Final = "ValidationError"
EXECUTION_ERROR: Final = "TaskExecutionError"
TIMEOUT_ERROR: Final = "TimeoutError"
PARALLEL_ERROR: Final = "ParallelError"
UNEXPECTED_ERROR: Final = "UnexpectedError"
NO_PROMPT_HANDLER: Final = "NO_PROMPT_HANDLER"


class TaskError(Exception):
    """A failure carried by a task.

    ``kind`` is a short machine-readable code, ``message`` the human-readable
    text, ``cause`` the underlying exception (if any) and ``context`` extra
    structured detail. Interpreters set ``effect`` when the error was raised
    while performing one.
    """

    default_kind: str = "TaskError"
    effect: Effect | None = None

    def __init__(
        self,
        message: str,
        *,
        kind: str | None = None,
        cause: BaseException | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind or self.default_kind
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause
        self.context: FrozenDict = FrozenDict(context or {})

    def _clone(self) -> TaskError:
        clone = type(self).__new__(type(self))
        clone.__dict__.update(self.__dict__)
        clone.args = self.args
        clone.__cause__ = self.__cause__
        if clone.__dict__.get("error") is self:
            clone.error = clone
        return clone

    def with_message(self, message: str) -> TaskError:
        """Return a copy with a different message, keeping kind and cause."""
        clone = self._clone()
        clone.message = message
        clone.args = (message,)
        return clone

    def with_effect(self, effect: Effect) -> TaskError:
        """Return a copy that records ``effect`` as where the failure happened."""
        clone = self._clone()
        clone.effect = effect
        return clone

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind!r}, message={self.message!r})"


class ValidationError(TaskError):
    """Malformed arguments detected while building a task."""

    default_kind = VALIDATION_ERROR


class TaskExecutionError(TaskError):
    """A failure while performing an effect, or an uncaught failure of a run.

    ``effect`` is the effect whose execution failed (``None`` when the failure
    did not originate from an effect, e.g. a validation error surfaced by
    ``run``) and ``error`` is the task-level error being reported.
    """

    default_kind = EXECUTION_ERROR

    def __init__(
        self,
        message: str,
        *,
        effect: Effect | None = None,
        kind: str | None = None,
        cause: BaseException | None = None,
        context: Mapping[str, Any] | None = None,
        error: TaskError | None = None,
    ) -> None:
        super().__init__(message, kind=kind, cause=cause, context=context)
        self.effect = effect
        self.error: TaskError = error if error is not None else self

    @classmethod
    def from_effect(cls, effect: Effect, cause: BaseException) -> TaskExecutionError:
        """Wrap an exception raised while performing ``effect``."""
        description = effect.describe()
        return cls(
            f"{description}: {type(cause).__name__}: {cause}",
            effect=effect,
            cause=cause,
            context={"effect": effect.tag},
        )

    @classmethod
    def from_error(cls, error: TaskError) -> TaskExecutionError:
        """Return ``error`` as the boundary exception raised by interpreters."""
        if isinstance(error, TaskExecutionError):
            return error
        return cls(
            error.message,
            effect=error.effect,
            kind=error.kind,
            cause=error.cause if error.cause is not None else error,
            context=error.context,
            error=error,
        )

    def format_full(self) -> str:
        """Format the error with its effect description and cause."""
        parts = [f"[{self.kind}] {self.message}"]
        if self.effect is not None:
            parts.append(f"\n  effect: {self.effect.describe()}")
        cause = self.cause
        if cause is not None and cause is not self.error:
            parts.append(f"\n  caused by: {type(cause).__name__}: {cause}")
        return "".join(parts)


class TaskTimeoutError(TaskError):
    """Raised by ``timeout`` when the guarded task does not settle in time."""

    default_kind = TIMEOUT_ERROR

    def __init__(self, ms: float, *, context: Mapping[str, Any] | None = None) -> None:
        super().__init__(f"Task timed out after {ms}ms", context=context)
        self.ms = ms


class ParallelError(TaskError):
    """The first failure observed among the branches of a parallel run."""

    default_kind = PARALLEL_ERROR

    def __init__(self, index: int, error: TaskError) -> None:
        super().__init__(
            f"Parallel task {index} failed: {error.message}",
            cause=error,
            context={"index": index, "kind": error.kind},
        )
        self.index = index
        self.error = error


class InterpreterStateError(RuntimeError):
    """An interpreter instance was asked to run more than once."""


def coerce_error(exc: BaseException, *, kind: str | None = None) -> TaskError:
    """Turn any exception into a :class:`TaskError`.

    ``TaskError`` instances pass through untouched; anything else is wrapped
    with ``kind`` (defaulting to the exception's class name) and kept as the
    ``cause``.
    """
    if isinstance(exc, TaskError):
        return exc
    return TaskError(
        f"{type(exc).__name__}: {exc}",
        kind=kind or type(exc).__name__,
        cause=exc,
    )


__all__ = [
    "EXECUTION_ERROR",
    "NO_PROMPT_HANDLER",
    "PARALLEL_ERROR",
    "TIMEOUT_ERROR",
    "UNEXPECTED_ERROR",
    "VALIDATION_ERROR",
    "InterpreterStateError",
    "ParallelError",
    "TaskError",
    "TaskExecutionError",
    "TaskTimeoutError",
    "ValidationError",
    "coerce_error",
]
