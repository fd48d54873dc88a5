"""
Task combinators.

Control flow built from the task primitives: sequencing, concurrency,
conditionals, retries, timeouts, resource safety and outcome folding.

Concurrency note: ``parallel``, ``race`` and ``timeout`` never force-cancel
work that has already been dispatched. A losing ``race`` branch, a timed-out
task or the siblings of a failed ``parallel`` branch keep running until their
current effect completes.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any, TypeVar

from conjure._validators import (
    ensure_callable,
    ensure_non_negative_int,
    ensure_non_negative_number,
    ensure_positive_int,
    ensure_positive_number,
    ensure_task,
    ensure_task_sequence,
    validated,
)
from conjure._vendor import Err, Ok, Result
from conjure.effects import Parallel, Race, Timeout
from conjure.errors import UNEXPECTED_ERROR, TaskError, ValidationError, coerce_error
from conjure.primitives import noop, sleep, warn
from conjure.task import Fail, Pure, Task, effect, fail, pure

A = TypeVar("A")
B = TypeVar("B")
C = TypeVar("C")


def _call(fn: Callable[..., Any], *args: Any) -> Task[Any]:
    """Call a user callback and lift its result into a task."""
    try:
        return Task.lift(fn(*args))
    except Exception as exc:
        return Fail(coerce_error(exc, kind=UNEXPECTED_ERROR))


# ============================================================================
# Sequencing
# ============================================================================


@validated
def sequence(tasks: Iterable[Task[A]]) -> Task[list[A]]:
    """Run ``tasks`` in order and collect their values; stop at the first failure."""
    items = ensure_task_sequence(tasks, name="tasks")

    def step(index: int, results: tuple[Any, ...]) -> Task[list[A]]:
        while index < len(items):
            current = items[index]
            if isinstance(current, Pure):
                results = (*results, current.value)
                index += 1
                continue
            if isinstance(current, Fail):
                return current
            return current.flat_map(
                lambda value, i=index, acc=results: step(i + 1, (*acc, value))
            )
        return pure(list(results))

    return step(0, ())


def sequence_(tasks: Iterable[Task[Any]]) -> Task[None]:
    return sequence(tasks).map(lambda _: None)


@validated
def traverse(items: Iterable[A], f: Callable[[A], Task[B]]) -> Task[list[B]]:
    """Map each item to a task and run the tasks in order."""
    ensure_callable(f, name="f")
    return sequence([_call(f, item) for item in items])


def traverse_(items: Iterable[A], f: Callable[[A], Task[Any]]) -> Task[None]:
    return traverse(items, f).map(lambda _: None)


# ============================================================================
# Concurrency
# ============================================================================


@validated
def parallel(tasks: Iterable[Task[A]]) -> Task[list[A]]:
    """Run ``tasks`` concurrently; values keep input order, first failure wins."""
    items = ensure_task_sequence(tasks, name="tasks")
    if not items:
        return pure([])
    return effect(Parallel(items))


@validated
def parallel_n(n: int, tasks: Iterable[Task[A]]) -> Task[list[A]]:
    """Like :func:`parallel` with at most ``n`` tasks in flight."""
    limit = ensure_positive_int(n, name="n")
    items = ensure_task_sequence(tasks, name="tasks")
    if not items:
        return pure([])
    return effect(Parallel(items, concurrency=limit))


@validated
def race(tasks: Iterable[Task[A]]) -> Task[A]:
    """Settle with whichever task settles first, success or failure."""
    items = ensure_task_sequence(tasks, name="tasks")
    if not items:
        raise ValidationError("race requires at least one task")
    return effect(Race(items))


def zip(task_a: Task[A], task_b: Task[B]) -> Task[tuple[A, B]]:  # noqa: A001
    return parallel([task_a, task_b]).map(tuple)


def zip3(task_a: Task[A], task_b: Task[B], task_c: Task[C]) -> Task[tuple[A, B, C]]:
    return parallel([task_a, task_b, task_c]).map(tuple)


# ============================================================================
# Conditionals
# ============================================================================


def if_else(condition: bool | Task[bool], on_true: Task[A], on_false: Task[A]) -> Task[A]:
    if isinstance(condition, Task):
        return if_else_m(condition, on_true, on_false)
    return on_true if condition else on_false


def if_else_m(condition: Task[bool], on_true: Task[A], on_false: Task[A]) -> Task[A]:
    return condition.flat_map(lambda flag: on_true if flag else on_false)


def when(condition: bool | Task[bool], task: Task[Any]) -> Task[None]:
    return if_else(condition, task.map(lambda _: None), noop)


def unless(condition: bool | Task[bool], task: Task[Any]) -> Task[None]:
    return if_else(condition, noop, task.map(lambda _: None))


def when_m(condition: Task[bool], task: Task[Any]) -> Task[None]:
    return when(condition, task)


def unless_m(condition: Task[bool], task: Task[Any]) -> Task[None]:
    return unless(condition, task)


# ============================================================================
# Retries and time
# ============================================================================


@validated
def retry(task: Task[A], n: int) -> Task[A]:
    """Re-run a failing ``task`` up to ``n`` more times; surfaces the last error."""
    ensure_task(task, name="task")
    retries = ensure_non_negative_int(n, name="n")

    def attempt_from(remaining: int) -> Task[A]:
        if remaining == 0:
            return task
        return task.recover(lambda _: attempt_from(remaining - 1))

    return attempt_from(retries)


@validated
def retry_with_backoff(task: Task[A], n: int, base_delay_ms: float) -> Task[A]:
    """Like :func:`retry`, sleeping ``base_delay_ms * 2 ** attempt`` between attempts."""
    ensure_task(task, name="task")
    retries = ensure_non_negative_int(n, name="n")
    base = ensure_non_negative_number(base_delay_ms, name="base_delay_ms")

    def attempt_from(attempt: int) -> Task[A]:
        if attempt >= retries:
            return task
        return task.recover(
            lambda _: sleep(base * 2**attempt).flat_map(lambda _: attempt_from(attempt + 1))
        )

    return attempt_from(0)


@validated
def timeout(task: Task[A], ms: float) -> Task[A]:
    """Fail with ``TaskTimeoutError`` if ``task`` has not settled after ``ms``."""
    ensure_task(task, name="task")
    return effect(Timeout(task, ensure_positive_number(ms, name="ms")))


def delay(ms: float, value: Task[A] | A = None) -> Task[A]:
    """Wait ``ms`` and then run ``value`` (a task) or yield it (a plain value)."""
    return sleep(ms).then(Task.lift(value))


# ============================================================================
# Outcomes
# ============================================================================


def attempt(task: Task[A]) -> Task[Result[A]]:
    """Always succeed, with ``Ok(value)`` or ``Err(error)``."""
    return task.map(Ok).recover(lambda error: pure(Err(error)))


def optional(task: Task[A]) -> Task[A | None]:
    return task.recover(lambda _: pure(None))


def or_else(primary: Task[A], fallback: Task[A]) -> Task[A]:
    return primary.recover(lambda _: fallback)


def fold(
    task: Task[A],
    on_success: Callable[[A], Task[B] | B],
    on_failure: Callable[[TaskError], Task[B] | B],
) -> Task[B]:
    """Dispatch on the outcome of ``task``.

    Handlers may return a task or a plain value. A failure raised by
    ``on_success`` itself is not routed to ``on_failure``.
    """

    def dispatch(outcome: Result[A]) -> Task[B]:
        if isinstance(outcome, Ok):
            return _call(on_success, outcome.value)
        return _call(on_failure, outcome.unwrap_err())

    return attempt(task).flat_map(dispatch)


def tap(task: Task[A], f: Callable[[A], Task[Any] | None]) -> Task[A]:
    """Observe the value of ``task``; a failing observer fails the whole task."""
    return task.flat_map(lambda value: _call(f, value).then(pure(value)))


def tap_error(task: Task[A], f: Callable[[TaskError], Task[Any] | None]) -> Task[A]:
    """Observe the error of ``task``; the original error is re-raised afterwards."""
    return task.recover(lambda error: _call(f, error).then(fail(error)))


# ============================================================================
# Resource safety
# ============================================================================


def _finish(outcome: Result[A], cleanup: Task[Any], label: str) -> Task[A]:
    if isinstance(outcome, Ok):
        return cleanup.then(outcome.to_task())

    def report(cleaned: Result[Any]) -> Task[A]:
        if isinstance(cleaned, Err):
            error = coerce_error(cleaned.error)
            return warn(f"{label} failed after an earlier failure: {error.message}").then(
                outcome.to_task()
            )
        return outcome.to_task()

    return attempt(cleanup).flat_map(report)


def bracket(
    acquire: Task[A],
    use: Callable[[A], Task[B]],
    release: Callable[[A], Task[Any]],
) -> Task[B]:
    """Acquire a resource, use it and always release it exactly once.

    When ``use`` fails its original error is surfaced after ``release`` has
    run; a failure of ``release`` at that point is logged as a warning.
    """
    return acquire.flat_map(
        lambda resource: attempt(_call(use, resource)).flat_map(
            lambda outcome: _finish(outcome, _call(release, resource), "release")
        )
    )


def ensure(task: Task[A], finalizer: Task[Any]) -> Task[A]:
    """Run ``finalizer`` after ``task`` whatever its outcome."""
    return attempt(task).flat_map(lambda outcome: _finish(outcome, finalizer, "finalizer"))


__all__ = [
    "attempt",
    "bracket",
    "delay",
    "ensure",
    "fold",
    "if_else",
    "if_else_m",
    "optional",
    "or_else",
    "parallel",
    "parallel_n",
    "race",
    "retry",
    "retry_with_backoff",
    "sequence",
    "sequence_",
    "tap",
    "tap_error",
    "timeout",
    "traverse",
    "traverse_",
    "unless",
    "unless_m",
    "when",
    "when_m",
    "zip",
    "zip3",
]
