"""
Combinator semantics, run against both interpreters.

Tests parameterized over the ``interpreter`` fixture check that production
and dry-run interpretation agree on values and failure kinds.
"""

from __future__ import annotations

import asyncio

import pytest

from conjure._vendor import Err, Ok
from conjure.combinators import (
    attempt,
    bracket,
    delay,
    ensure,
    fold,
    if_else,
    if_else_m,
    optional,
    or_else,
    parallel,
    parallel_n,
    race,
    retry,
    retry_with_backoff,
    sequence,
    sequence_,
    tap,
    tap_error,
    timeout,
    traverse,
    traverse_,
    unless,
    when,
    when_m,
    zip,
    zip3,
)
from conjure.dry_run import DryRunInterpreter, dry_run, dry_run_with
from conjure.effects import Exec, ExecResult, Log, ReadContext, Sleep, WriteContext
from conjure.errors import ParallelError, TaskError, TaskExecutionError, ValidationError
from conjure.interpreter import InterpreterOptions, ProductionInterpreter
from conjure.primitives import (
    exec_,
    get_context,
    info,
    noop,
    read_file,
    set_context,
    sleep,
    write_file,
)
from conjure.task import Fail, Pure, effect, fail, pure


def counter_step(key: str = "attempts"):
    """Increment a context counter and yield the new count."""
    return get_context(key, 0).flat_map(
        lambda count: set_context(key, count + 1).then(pure(count + 1))
    )


def fail_until(successful_attempt: int, key: str = "attempts"):
    """Fail on every attempt before ``successful_attempt``."""

    def check(count: int):
        if count < successful_attempt:
            return fail(TaskError(f"attempt {count} failed", kind="Flaky"))
        return pure(f"ok after {count}")

    return counter_step(key).flat_map(check)


# ============================================================================
# Sequencing
# ============================================================================


@pytest.mark.asyncio
async def test_sequence_collects_in_order(interpreter) -> None:
    outcome = await interpreter.run(
        sequence([write_file("a.txt", "A"), read_file("a.txt"), pure(3)])
    )
    assert outcome.value == [None, "A", 3]


@pytest.mark.asyncio
async def test_sequence_stops_at_first_failure(interpreter) -> None:
    outcome = await interpreter.run(
        sequence_([write_file("a.txt", "A"), fail(TaskError("stop")), write_file("b.txt", "B")])
    )
    assert not outcome.is_ok
    assert outcome.error.message == "stop"
    assert interpreter.read("a.txt") == "A"
    assert interpreter.read("b.txt") is None


@pytest.mark.asyncio
async def test_traverse_maps_each_item(interpreter) -> None:
    outcome = await interpreter.run(
        traverse(["a", "b"], lambda name: write_file(f"{name}.txt", name.upper()).then(pure(name)))
    )
    assert outcome.value == ["a", "b"]
    assert interpreter.read("b.txt") == "B"


def test_traverse_with_index_through_enumerate() -> None:
    task = traverse(enumerate(["x", "y"]), lambda pair: pure(f"{pair[0]}:{pair[1]}"))
    assert task == Pure(["0:x", "1:y"])


def test_traverse_callback_raising_fails() -> None:
    task = traverse_([1, 0], lambda n: pure(1 / n))
    assert isinstance(task, Fail)
    assert isinstance(task.error.cause, ZeroDivisionError)


def test_sequence_of_pure_tasks_is_pure() -> None:
    assert sequence([pure(1), pure(2)]) == Pure([1, 2])
    assert sequence([]) == Pure([])


# ============================================================================
# Conditionals
# ============================================================================


def test_static_conditionals() -> None:
    assert if_else(True, pure("yes"), pure("no")) == Pure("yes")
    assert if_else(False, pure("yes"), pure("no")) == Pure("no")
    assert when(False, fail(TaskError("never"))) == Pure(None)
    assert unless(True, fail(TaskError("never"))) == Pure(None)


@pytest.mark.asyncio
async def test_monadic_conditionals(interpreter) -> None:
    task = sequence(
        [
            if_else_m(get_context("flag", False), pure("on"), pure("off")),
            when_m(get_context("flag", False), set_context("touched", True)),
            if_else(get_context("flag", False), pure("on"), pure("off")),
        ]
    )
    outcome = await interpreter.run(task, context={"flag": True})
    assert outcome.value == ["on", None, "on"]
    assert outcome.context["touched"] is True


# ============================================================================
# Retry
# ============================================================================


@pytest.mark.asyncio
async def test_retry_succeeds_within_budget(interpreter) -> None:
    outcome = await interpreter.run(retry(fail_until(3), 2))
    assert outcome.value == "ok after 3"
    assert outcome.context["attempts"] == 3


@pytest.mark.asyncio
async def test_retry_surfaces_last_error(interpreter) -> None:
    outcome = await interpreter.run(retry(fail_until(10), 2))
    assert not outcome.is_ok
    assert outcome.error.kind == "Flaky"
    assert outcome.error.message == "attempt 3 failed"
    assert outcome.context["attempts"] == 3


def test_retry_zero_makes_one_attempt() -> None:
    interpreter = DryRunInterpreter()
    with pytest.raises(TaskExecutionError):
        interpreter.run(retry(fail_until(2), 0))
    assert interpreter.context["attempts"] == 1


def test_retry_counts_attempts_of_failing_effect() -> None:
    calls: list[Exec] = []

    def flaky(eff: Exec) -> ExecResult:
        calls.append(eff)
        if len(calls) < 3:
            raise OSError("network down")
        return ExecResult(stdout="installed")

    result = dry_run_with(retry(exec_("npm", ["install"]), 5), {Exec: flaky})
    assert result.value.stdout == "installed"
    assert len(calls) == 3


def test_retry_validates_count() -> None:
    assert isinstance(retry(noop, -1), Fail)
    assert isinstance(retry("task", 1), Fail)  # type: ignore[arg-type]


def test_retry_with_backoff_sleeps_exponentially() -> None:
    interpreter = DryRunInterpreter()
    with pytest.raises(TaskExecutionError):
        interpreter.run(retry_with_backoff(fail_until(10), 3, 100))
    sleeps = [eff.ms for eff in interpreter.effects if isinstance(eff, Sleep)]
    assert sleeps == [100, 200, 400]
    assert interpreter.elapsed_ms == 700


# ============================================================================
# Time
# ============================================================================


@pytest.mark.asyncio
async def test_race_resolves_with_fastest(interpreter) -> None:
    outcome = await interpreter.run(race([delay(50, "slow"), delay(10, "fast")]))
    assert outcome.value == "fast"


@pytest.mark.asyncio
async def test_race_settles_with_first_failure(interpreter) -> None:
    outcome = await interpreter.run(
        race([delay(50, "slow"), sleep(5).then(fail(TaskError("early", kind="Early")))])
    )
    assert outcome.error.kind == "Early"


def test_race_of_nothing_is_a_validation_error() -> None:
    task = race([])
    assert isinstance(task, Fail)
    assert isinstance(task.error, ValidationError)


def test_race_tie_goes_to_lowest_index() -> None:
    assert dry_run(race([delay(10, "first"), delay(10, "second")])).value == "first"


@pytest.mark.asyncio
async def test_timeout_fails_slow_task(interpreter) -> None:
    outcome = await interpreter.run(timeout(delay(200, "late"), 20))
    assert not outcome.is_ok
    assert outcome.error.kind == "TimeoutError"


@pytest.mark.asyncio
async def test_timeout_passes_fast_task(interpreter) -> None:
    outcome = await interpreter.run(timeout(delay(1, "quick"), 500))
    assert outcome.value == "quick"


def test_timeout_validates_ms() -> None:
    assert isinstance(timeout(noop, 0), Fail)


def test_delay_advances_virtual_clock() -> None:
    result = dry_run(delay(25, pure("x")).flat_map(lambda v: delay(5, v + "y")))
    assert result.value == "xy"
    assert result.elapsed_ms == 30


# ============================================================================
# Concurrency
# ============================================================================


@pytest.mark.asyncio
async def test_parallel_preserves_input_order(interpreter) -> None:
    outcome = await interpreter.run(
        parallel([delay(30, "a"), delay(1, "b"), delay(15, "c")])
    )
    assert outcome.value == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_parallel_fails_fast_with_index(interpreter) -> None:
    outcome = await interpreter.run(
        parallel([delay(50, "slow"), sleep(1).then(fail(TaskError("bad", kind="Broken")))])
    )
    assert outcome.error.kind == "ParallelError"
    parallel_error = outcome.error.error
    assert isinstance(parallel_error, ParallelError)
    assert parallel_error.index == 1
    assert parallel_error.error.kind == "Broken"


def test_parallel_of_nothing_is_empty() -> None:
    assert parallel([]) == Pure([])
    assert parallel_n(2, []) == Pure([])


def test_parallel_n_validates_limit() -> None:
    assert isinstance(parallel_n(0, [noop]), Fail)
    assert isinstance(parallel_n(True, [noop]), Fail)  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_parallel_n_bounds_in_flight_effects() -> None:
    """parallel_n(2, ...) never has more than two effects in flight."""
    in_flight = 0
    peak = 0

    async def slow_exec(eff: Exec) -> ExecResult:
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        return ExecResult(stdout=eff.args[0])

    tasks = [exec_("echo", [str(index)]).map(lambda r: r.stdout) for index in range(5)]
    interpreter = ProductionInterpreter(InterpreterOptions(handlers={Exec: slow_exec}))
    value = await interpreter.run(parallel_n(2, tasks))

    assert value == ["0", "1", "2", "3", "4"]
    assert peak == 2


@pytest.mark.asyncio
async def test_parallel_runs_branches_concurrently() -> None:
    in_flight = 0
    peak = 0

    async def slow_exec(eff: Exec) -> ExecResult:
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        return ExecResult()

    interpreter = ProductionInterpreter(InterpreterOptions(handlers={Exec: slow_exec}))
    await interpreter.run(parallel([exec_("true") for _ in range(4)]))
    assert peak == 4


def test_parallel_n_simulates_slots() -> None:
    result = dry_run(parallel_n(2, [delay(10, 1), delay(10, 2), delay(10, 3)]))
    assert result.value == [1, 2, 3]
    assert result.elapsed_ms == 20


@pytest.mark.asyncio
async def test_parallel_n_starts_nothing_after_failure(interpreter) -> None:
    """Once a branch has failed no waiting branch starts."""
    task = parallel_n(
        1,
        [
            sleep(5).then(fail(TaskError("bad"))),
            info("second branch"),
            info("third branch"),
        ],
    )
    outcome = await interpreter.run(task)
    assert outcome.error.kind == "ParallelError"
    assert outcome.logs == []
    assert not any(isinstance(eff, Log) for eff in outcome.effects)


def test_zip_pairs_values() -> None:
    result = dry_run(zip(get_context("a", 1), delay(5, "b")))
    assert result.value == (1, "b")
    assert dry_run(zip3(pure(1), pure(2), pure(3))).value == (1, 2, 3)


# ============================================================================
# Outcomes
# ============================================================================


@pytest.mark.asyncio
async def test_attempt_returns_result(interpreter) -> None:
    outcome = await interpreter.run(
        sequence(
            [
                attempt(get_context("n", 1)),
                attempt(set_context("n", 2).then(fail(TaskError("x", kind="E_X")))),
            ]
        )
    )
    ok, err = outcome.value
    assert ok == Ok(1)
    assert isinstance(err, Err)
    assert err.error.kind == "E_X"
    assert outcome.context["n"] == 2


def test_optional_and_or_else() -> None:
    assert optional(fail(TaskError("x"))) == Pure(None)
    assert or_else(fail(TaskError("x")), pure("fallback")) == Pure("fallback")
    assert or_else(pure("primary"), pure("fallback")) == Pure("primary")


def test_fold_dispatches_and_lifts_values() -> None:
    assert fold(pure(2), lambda n: n * 10, lambda err: -1) == Pure(20)
    assert fold(fail(TaskError("x")), lambda n: n, lambda err: pure(err.message)) == Pure("x")


def test_fold_success_handler_failure_is_not_rerouted() -> None:
    task = fold(pure(1), lambda _: fail(TaskError("from success")), lambda _: pure("recovered"))
    assert isinstance(task, Fail)
    assert task.error.message == "from success"


def test_tap_observes_and_keeps_value() -> None:
    seen: list[int] = []
    assert tap(pure(4), lambda n: seen.append(n)) == Pure(4)
    assert seen == [4]


def test_tap_observer_failure_propagates() -> None:
    task = tap(pure(4), lambda _: fail(TaskError("observer")))
    assert task.error.message == "observer"


def test_tap_error_rethrows_original() -> None:
    seen: list[str] = []
    task = tap_error(fail(TaskError("orig")), lambda err: seen.append(err.message))
    assert task.error.message == "orig"
    assert seen == ["orig"]


# ============================================================================
# Resource safety
# ============================================================================


def _resource_task(use):
    acquire = set_context("lock", "held").then(pure("handle"))
    release = lambda handle: effect(WriteContext("released", handle))  # noqa: E731
    return bracket(acquire, use, release)


@pytest.mark.asyncio
async def test_bracket_releases_after_success(interpreter) -> None:
    outcome = await interpreter.run(_resource_task(lambda handle: pure(handle.upper())))
    assert outcome.value == "HANDLE"
    assert outcome.context["released"] == "handle"


@pytest.mark.asyncio
async def test_bracket_releases_once_and_reraises(interpreter) -> None:
    outcome = await interpreter.run(_resource_task(lambda _: fail(TaskError("use failed"))))
    assert outcome.error.message == "use failed"
    assert outcome.context["released"] == "handle"
    releases = [eff for eff in outcome.effects if isinstance(eff, WriteContext) and eff.key == "released"]
    assert len(releases) == 1


@pytest.mark.asyncio
async def test_bracket_logs_release_failure_after_use_failure(interpreter) -> None:
    task = bracket(
        pure("handle"),
        lambda _: fail(TaskError("use failed")),
        lambda _: fail(TaskError("release failed")),
    )
    outcome = await interpreter.run(task)
    assert outcome.error.message == "use failed"
    assert outcome.logs == [("warn", "release failed after an earlier failure: release failed")]


def test_bracket_release_failure_after_success_propagates() -> None:
    task = bracket(pure("h"), lambda h: pure(h), lambda _: fail(TaskError("release failed")))
    assert task.error.message == "release failed"


def test_bracket_skips_release_when_acquire_fails() -> None:
    released: list[str] = []
    task = bracket(
        fail(TaskError("no resource")),
        lambda h: pure(h),
        lambda h: pure(released.append(h)),
    )
    assert task.error.message == "no resource"
    assert released == []


@pytest.mark.asyncio
async def test_ensure_runs_finalizer_on_failure(interpreter) -> None:
    outcome = await interpreter.run(
        ensure(fail(TaskError("boom")), set_context("cleaned", True))
    )
    assert outcome.error.message == "boom"
    assert outcome.context["cleaned"] is True


def test_ensure_with_pure_finalizer_adds_no_effects() -> None:
    result = dry_run(ensure(get_context("x", 1), noop))
    assert result.effects == (ReadContext("x", 1),)
