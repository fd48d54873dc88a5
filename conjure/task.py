"""
Task monad.

A :class:`Task` is an immutable description of a program. It is one of

* :class:`Pure`    - finished with a value,
* :class:`Fail`    - finished with a :class:`~conjure.errors.TaskError`,
* :class:`Suspend` - waiting for the outcome of one effect, followed by a
  continuation.

The continuation of a ``Suspend`` is kept as a flat tuple of frames rather
than nested closures. ``Suspend.resume`` unwinds the frames with a loop, so a
chain of thousands of ``flat_map`` calls never grows the Python stack.

Nothing here performs I/O; interpreters feed effect outcomes back through
``resume`` until the task is ``Pure`` or ``Fail``.
"""

from __future__ import annotations

from abc import ABC
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, TypeAlias, TypeVar

from conjure._vendor import Ok, Result
from conjure.errors import UNEXPECTED_ERROR, TaskError, coerce_error

if TYPE_CHECKING:
    from conjure.effects import Effect

T = TypeVar("T")
U = TypeVar("U")


class Task(ABC, Generic[T]):
    """Base class of the three task nodes, with the fluent combinators."""

    __slots__ = ()

    def map(self, f: Callable[[T], U]) -> Task[U]:
        """Transform the success value with a plain function."""
        return map(self, f)

    def flat_map(self, f: Callable[[T], Task[U]]) -> Task[U]:
        """Monadic bind."""
        return flat_map(self, f)

    def then(self, next_task: Task[U]) -> Task[U]:
        """Run ``next_task`` after this one, discarding this task's value."""
        return flat_map(self, lambda _: next_task)

    def recover(self, handler: Callable[[TaskError], Task[T]]) -> Task[T]:
        return recover(self, handler)

    def map_error(self, f: Callable[[TaskError], TaskError]) -> Task[T]:
        return map_error(self, f)

    def tap(self, f: Callable[[T], Task[Any]]) -> Task[T]:
        """Run ``f(value)`` for its effects and keep the original value."""
        return flat_map(self, lambda value: flat_map(f(value), lambda _: pure(value)))

    @staticmethod
    def pure(value: U) -> Task[U]:
        return pure(value)

    @staticmethod
    def lift(value: Task[U] | U) -> Task[U]:
        if isinstance(value, Task):
            return value
        return pure(value)


@dataclass(frozen=True)
class Pure(Task[T], Generic[T]):
    value: T


@dataclass(frozen=True)
class Fail(Task[Any]):
    error: TaskError


# ============================================================================
# Continuation frames
# ============================================================================


@dataclass(frozen=True)
class BindFrame:
    """Applied to a success value; failures pass through untouched."""

    binder: Callable[[Any], Task[Any]]


@dataclass(frozen=True)
class RecoverFrame:
    """Applied to a failure; success values pass through untouched."""

    handler: Callable[[TaskError], Task[Any]]


Frame: TypeAlias = BindFrame | RecoverFrame


@dataclass(frozen=True)
class Suspend(Task[T], Generic[T]):
    """One effect plus the frames that consume its outcome."""

    effect: Effect
    frames: tuple[Frame, ...] = ()

    def resume(self, outcome: Result[Any]) -> Task[T]:
        """Feed the effect's outcome into the continuation."""
        if isinstance(outcome, Ok):
            start: Task[Any] = Pure(outcome.value)
        else:
            start = Fail(coerce_error(outcome.unwrap_err()))
        return _unwind(start, self.frames)


def _apply(fn: Callable[[Any], Any], arg: Any) -> Task[Any]:
    """Call a user continuation, turning exceptions and bad returns into ``Fail``."""
    try:
        produced = fn(arg)
    except Exception as exc:
        return Fail(coerce_error(exc, kind=UNEXPECTED_ERROR))
    if not isinstance(produced, Task):
        return Fail(
            TaskError(
                f"continuation must return a Task; got {type(produced).__name__}",
                kind=UNEXPECTED_ERROR,
            )
        )
    return produced


def _unwind(task: Task[Any], frames: tuple[Frame, ...]) -> Task[Any]:
    for index, frame in enumerate(frames):
        match task:
            case Suspend(effect=eff, frames=inner):
                return Suspend(eff, inner + frames[index:])
            case Pure(value=value) if isinstance(frame, BindFrame):
                task = _apply(frame.binder, value)
            case Fail(error=error) if isinstance(frame, RecoverFrame):
                task = _apply(frame.handler, error)
    return task


# ============================================================================
# Constructors
# ============================================================================


def pure(value: T) -> Task[T]:
    """A task that succeeds with ``value`` and performs nothing."""
    return Pure(value)


def fail(error: BaseException) -> Task[Any]:
    """A task that fails with ``error``. Plain exceptions are wrapped."""
    return Fail(coerce_error(error))


def fail_with(kind: str, message: str, **context: Any) -> Task[Any]:
    """A failed task built from an error code and message."""
    return Fail(TaskError(message, kind=kind, context=context))


def effect(eff: Effect) -> Task[Any]:
    """A task that performs exactly one effect and yields its result."""
    return Suspend(eff)


# ============================================================================
# Monad operations
# ============================================================================


def flat_map(task: Task[T], f: Callable[[T], Task[U]]) -> Task[U]:
    """Sequence ``task`` into ``f``; ``f`` is never called if ``task`` fails."""
    match task:
        case Pure(value=value):
            return _apply(f, value)
        case Fail():
            return task
        case Suspend(effect=eff, frames=frames):
            return Suspend(eff, frames + (BindFrame(f),))
    raise TypeError(f"flat_map expects a Task, got {type(task).__name__}")


def map(task: Task[T], f: Callable[[T], U]) -> Task[U]:  # noqa: A001
    return flat_map(task, lambda value: Pure(f(value)))


def recover(task: Task[T], handler: Callable[[TaskError], Task[T]]) -> Task[T]:
    """Turn a failure of ``task`` into the task returned by ``handler``."""
    match task:
        case Pure():
            return task
        case Fail(error=error):
            return _apply(handler, error)
        case Suspend(effect=eff, frames=frames):
            return Suspend(eff, frames + (RecoverFrame(handler),))
    raise TypeError(f"recover expects a Task, got {type(task).__name__}")


def map_error(task: Task[T], f: Callable[[TaskError], TaskError]) -> Task[T]:
    """Transform the error of a failing task; successes are untouched."""
    return recover(task, lambda error: fail(f(error)))


def from_result(result: Result[T]) -> Task[T]:
    return result.to_task()


def is_pure(task: Task[Any]) -> bool:
    return isinstance(task, Pure)


def is_failed(task: Task[Any]) -> bool:
    return isinstance(task, Fail)


def has_effects(task: Task[Any]) -> bool:
    return isinstance(task, Suspend)


__all__ = [
    "BindFrame",
    "Fail",
    "Frame",
    "Pure",
    "RecoverFrame",
    "Suspend",
    "Task",
    "effect",
    "fail",
    "fail_with",
    "flat_map",
    "from_result",
    "has_effects",
    "is_failed",
    "is_pure",
    "map",
    "map_error",
    "pure",
    "recover",
]
