"""
Dry-run interpreter.

Walks the same task tree as the production interpreter without touching real
storage. Every effect is recorded in order, file effects are applied to a
:class:`~conjure._memory_fs.MemoryFileSystem` so a read after a write sees
the written content, and context effects use a mapping owned by the run.

Time is simulated. ``Sleep`` advances a virtual clock; ``Parallel`` branches
start at the same instant (as far as ``concurrency`` slots allow), ``Race``
settles with the branch that finishes first in virtual time (ties go to the
lowest index) and ``Timeout`` fails when its task takes longer than the
limit. Branches are simulated one after another in index order, so their
effects appear grouped per branch in the log.

Mocks override the result of an effect by class or tag. A mock may be a
plain value, a callable receiving the effect, or an exception instance that
simulates a failure::

    result = (
        DryRunInterpreter(files={"package.json": "{}"})
        .mock(Exec, ExecResult(stdout="v20.0.0"))
        .mock("Prompt", lambda eff: "my-app")
        .run(task)
    )
"""

from __future__ import annotations

import heapq
from collections import Counter
from collections.abc import Callable, Iterable, Mapping, MutableMapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from loguru import logger

from conjure._memory_fs import MemoryFileSystem, placeholder_content
from conjure._runtime import RunOnceMixin, apply_context, check_answer
from conjure._vendor import Err, FrozenDict, Ok, Result
from conjure.effects import (
    AppendFile,
    CopyDirectory,
    CopyFile,
    DeleteDirectory,
    DeleteFile,
    Effect,
    EffectBase,
    Exec,
    ExecResult,
    Exists,
    Glob,
    Log,
    MakeDir,
    Parallel,
    Prompt,
    PromptQuestion,
    Race,
    ReadContext,
    ReadFile,
    Sleep,
    Timeout,
    WriteContext,
    WriteFile,
)
from conjure.errors import (
    UNEXPECTED_ERROR,
    ParallelError,
    TaskError,
    TaskExecutionError,
    TaskTimeoutError,
    ValidationError,
    coerce_error,
)
from conjure.task import Fail, Pure, Suspend, Task

T = TypeVar("T")

logger = logger.bind(component="dry_run")

MockKey = type[EffectBase] | str
Outcome = tuple[Result[Any], float]

_UNSET = object()


@dataclass(frozen=True)
class DryRunResult(Generic[T]):
    """Outcome of a dry run.

    ``files`` is the synthetic file view at the end of the run (seeded files
    plus everything written), ``deleted`` the paths removed during the run
    and ``elapsed_ms`` the simulated duration.
    """

    value: T
    effects: tuple[Effect, ...]
    files: FrozenDict = field(default_factory=FrozenDict)
    deleted: frozenset[str] = frozenset()
    context: FrozenDict = field(default_factory=FrozenDict)
    elapsed_ms: float = 0.0


def default_answer(question: PromptQuestion) -> Any:
    """The answer a non-interactive run gives: the default, else the first choice."""
    match question.type:
        case "text":
            return question.default if question.default is not None else ""
        case "confirm":
            return bool(question.default) if question.default is not None else False
        case "select":
            if question.default is not None:
                return question.default
            return question.choices[0].value if question.choices else ""
        case "multiselect":
            return list(question.default) if question.default is not None else []
    raise ValueError(f"unknown prompt type: {question.type!r}")


def mock_effect(effect: Effect) -> Any:
    """Default result of a leaf effect against an empty file system and context."""
    match effect:
        case ReadFile(path=path):
            return placeholder_content(path)
        case Exists():
            return False
        case Glob():
            return []
        case Exec():
            return ExecResult()
        case Prompt(question=question):
            return default_answer(question)
        case ReadContext(default=default):
            return default
        case (
            WriteFile()
            | AppendFile()
            | CopyFile()
            | CopyDirectory()
            | DeleteFile()
            | DeleteDirectory()
            | MakeDir()
            | Log()
            | WriteContext()
            | Sleep()
        ):
            return None
        case Parallel() | Race() | Timeout():
            raise TypeError(f"{effect.tag} has no default result; interpret it instead")
    raise TypeError(f"not an effect: {type(effect).__name__}")


def _mock_tag(key: MockKey) -> str:
    if isinstance(key, str):
        return key
    if isinstance(key, type) and issubclass(key, EffectBase):
        return key.tag
    raise TypeError(f"mock key must be an effect class or tag, got {key!r}")


def _effect_failure(effect: Effect, exc: BaseException) -> TaskError:
    if isinstance(exc, TaskError):
        return exc if exc.effect is not None else exc.with_effect(effect)
    return TaskExecutionError.from_effect(effect, exc)


class DryRunInterpreter(RunOnceMixin):
    """Simulate a task. Each instance runs once; ``effects`` survives a failure."""

    def __init__(
        self,
        files: Mapping[str, str] | None = None,
        context: MutableMapping[str, Any] | None = None,
        *,
        strict: bool = False,
    ) -> None:
        self.fs = MemoryFileSystem(files, strict=strict)
        self.context: MutableMapping[str, Any] = dict(context or {})
        self.effects: list[Effect] = []
        self.logs: list[tuple[str, str]] = []
        self.elapsed_ms = 0.0
        self._mocks: dict[str, Any] = {}

    def mock(self, key: MockKey, result: Any) -> DryRunInterpreter:
        """Override the result of every effect matching ``key``."""
        self._mocks[_mock_tag(key)] = result
        return self

    def run(self, task: Task[T]) -> DryRunResult[T]:
        if not isinstance(task, Task):
            raise TypeError(f"run expects a Task, got {type(task).__name__}")
        self._begin()
        outcome, self.elapsed_ms = self._evaluate(task, 0.0)
        value = self._settle(outcome)
        return DryRunResult(
            value=value,
            effects=tuple(self.effects),
            files=self.fs.files,
            deleted=self.fs.deleted,
            context=FrozenDict(self.context),
            elapsed_ms=self.elapsed_ms,
        )

    def _evaluate(self, task: Task[Any], now: float) -> Outcome:
        while True:
            match task:
                case Pure(value=value):
                    return Ok(value), now
                case Fail(error=error):
                    return Err(error), now
                case Suspend(effect=eff):
                    self.effects.append(eff)
                    logger.trace("simulate {} at {}ms", eff.describe(), now)
                    outcome, now = self._perform(eff, now)
                    task = task.resume(outcome)
                case _:
                    return (
                        Err(TaskError(f"not a Task: {type(task).__name__}", kind=UNEXPECTED_ERROR)),
                        now,
                    )

    def _perform(self, effect: Effect, now: float) -> Outcome:
        mock = self._mocks.get(effect.tag, _UNSET)
        if mock is not _UNSET:
            finished = now + effect.ms if isinstance(effect, Sleep) else now
            return self._apply_mock(effect, mock), finished
        match effect:
            case Parallel():
                return self._parallel(effect, now)
            case Race():
                return self._race(effect, now)
            case Timeout():
                return self._timeout(effect, now)
            case Sleep(ms=ms):
                return Ok(None), now + ms
        try:
            return Ok(self._simulate(effect)), now
        except Exception as exc:
            return Err(_effect_failure(effect, exc)), now

    def _apply_mock(self, effect: Effect, mock: Any) -> Result[Any]:
        if isinstance(mock, BaseException):
            return Err(_effect_failure(effect, mock))
        if callable(mock):
            try:
                return Ok(mock(effect))
            except Exception as exc:
                return Err(_effect_failure(effect, exc))
        return Ok(mock)

    def _simulate(self, effect: Effect) -> Any:
        fs = self.fs
        match effect:
            case ReadFile(path=path):
                return fs.read(path)
            case WriteFile(path=path, content=content):
                fs.write(path, content)
            case AppendFile(path=path, content=content, create_if_missing=create):
                fs.append(path, content, create_if_missing=create)
            case Exists(path=path):
                return fs.exists(path)
            case Glob(pattern=pattern, cwd=cwd):
                return fs.glob(pattern, cwd)
            case CopyFile(source=source, dest=dest):
                fs.copy_file(source, dest)
            case CopyDirectory(source=source, dest=dest):
                fs.copy_directory(source, dest)
            case DeleteFile(path=path):
                fs.delete_file(path)
            case DeleteDirectory(path=path):
                fs.delete_directory(path)
            case MakeDir(path=path, recursive=recursive):
                fs.mkdir(path, recursive=recursive)
            case Prompt(question=question):
                return check_answer(question, default_answer(question))
            case Log(level=level, message=message):
                self.logs.append((level, message))
            case ReadContext() | WriteContext():
                return apply_context(effect, self.context)
            case _:
                return mock_effect(effect)
        return None

    # ------------------------------------------------------------------
    # Virtual-time concurrency
    # ------------------------------------------------------------------

    def _parallel(self, effect: Parallel, now: float) -> Outcome:
        count = len(effect.tasks)
        slots = [now] * min(effect.concurrency or count, count)
        values: list[Any] = [None] * count
        failure: tuple[float, int, TaskError] | None = None
        finished = now
        for index, sub in enumerate(effect.tasks):
            start = heapq.heappop(slots)
            if effect.concurrency and failure is not None and start >= failure[0]:
                break
            outcome, end = self._evaluate(sub, start)
            heapq.heappush(slots, end)
            finished = max(finished, end)
            if isinstance(outcome, Err):
                if failure is None or (end, index) < failure[:2]:
                    failure = (end, index, coerce_error(outcome.error))
            else:
                values[index] = outcome.value
        if failure is not None:
            end, index, error = failure
            return Err(ParallelError(index, error)), end
        return Ok(values), finished

    def _race(self, effect: Race, now: float) -> Outcome:
        winner: Outcome | None = None
        for sub in effect.tasks:
            outcome, end = self._evaluate(sub, now)
            if winner is None or end < winner[1]:
                winner = (outcome, end)
        if winner is None:
            return Err(ValidationError("race requires at least one task")), now
        return winner

    def _timeout(self, effect: Timeout, now: float) -> Outcome:
        outcome, end = self._evaluate(effect.task, now)
        if end - now > effect.ms:
            return Err(TaskTimeoutError(effect.ms)), now + effect.ms
        return outcome, end


# ============================================================================
# Convenience entry points
# ============================================================================


def dry_run(
    task: Task[T],
    *,
    files: Mapping[str, str] | None = None,
    context: MutableMapping[str, Any] | None = None,
    strict: bool = False,
) -> DryRunResult[T]:
    """Simulate ``task``; raises ``TaskExecutionError`` if it fails."""
    return DryRunInterpreter(files, context, strict=strict).run(task)


def dry_run_with(
    task: Task[T],
    mocks: Mapping[MockKey, Any],
    **kwargs: Any,
) -> DryRunResult[T]:
    """Like :func:`dry_run` with mock results keyed by effect class or tag."""
    interpreter = DryRunInterpreter(
        kwargs.pop("files", None), kwargs.pop("context", None), **kwargs
    )
    for key, result in mocks.items():
        interpreter.mock(key, result)
    return interpreter.run(task)


def collect_effects(task: Task[Any], **kwargs: Any) -> list[Effect]:
    """Effects a dry run of ``task`` records, up to and including a failure."""
    interpreter = DryRunInterpreter(
        kwargs.pop("files", None), kwargs.pop("context", None), **kwargs
    )
    try:
        interpreter.run(task)
    except TaskExecutionError as exc:
        logger.debug("collect_effects stopped at failure: {}", exc.message)
    return list(interpreter.effects)


EffectSource = DryRunResult[Any] | Task[Any] | Iterable[Effect]


def _effects_of(source: EffectSource) -> list[Effect]:
    if isinstance(source, DryRunResult):
        return list(source.effects)
    if isinstance(source, Task):
        return collect_effects(source)
    return list(source)


def count_effects(source: EffectSource) -> dict[str, int]:
    """Number of effects per tag."""
    return dict(Counter(effect.tag for effect in _effects_of(source)))


def filter_effects(source: EffectSource, kind: MockKey) -> list[Effect]:
    tag = _mock_tag(kind)
    return [effect for effect in _effects_of(source) if effect.tag == tag]


def get_file_writes(source: EffectSource) -> list[tuple[str, str]]:
    """``(path, content)`` of every ``WriteFile`` in order."""
    return [
        (effect.path, effect.content)
        for effect in _effects_of(source)
        if isinstance(effect, WriteFile)
    ]


def get_affected_files(source: EffectSource) -> list[str]:
    """Sorted paths that would be created, modified or removed."""
    paths: set[str] = set()
    for effect in _effects_of(source):
        match effect:
            case (
                WriteFile(path=path)
                | AppendFile(path=path)
                | DeleteFile(path=path)
                | DeleteDirectory(path=path)
                | MakeDir(path=path)
            ):
                paths.add(path)
            case CopyFile(dest=dest) | CopyDirectory(dest=dest):
                paths.add(dest)
    return sorted(paths)


# ============================================================================
# Test helpers
# ============================================================================


def _matches(actual: Effect, expected: Any) -> str | None:
    """Return a mismatch description, or ``None`` when ``actual`` matches."""
    if isinstance(expected, type):
        if not isinstance(actual, expected):
            return f"expected {expected.__name__}, got {actual.tag}"
        return None
    if isinstance(expected, EffectBase):
        return None if actual == expected else f"expected {expected!r}, got {actual!r}"
    for key, value in expected.items():
        current = actual.tag if key == "tag" else getattr(actual, key, _UNSET)
        if current is _UNSET:
            return f"{actual.tag} has no attribute {key!r}"
        if current != value:
            return f"expected {key}={value!r}, got {current!r}"
    return None


def assert_effects(task: Task[Any], expected: Sequence[Any], **kwargs: Any) -> None:
    """Assert that ``task`` performs exactly ``expected`` effects in order.

    Each expectation is an effect instance (compared by equality), an effect
    class, or a mapping of attribute values where ``"tag"`` names the variant.
    """
    effects = dry_run(task, **kwargs).effects
    if len(effects) != len(expected):
        raise AssertionError(f"Expected {len(expected)} effects, got {len(effects)}")
    for index, (actual, wanted) in enumerate(zip(effects, expected)):
        mismatch = _matches(actual, wanted)
        if mismatch is not None:
            raise AssertionError(f"Effect {index}: {mismatch}")


def assert_file_writes(task: Task[Any], expected: Iterable[str], **kwargs: Any) -> None:
    actual = get_affected_files(dry_run(task, **kwargs))
    wanted = sorted(expected)
    if actual != wanted:
        raise AssertionError(
            f"Expected {len(wanted)} file writes, got {len(actual)}\n"
            f"Expected: {', '.join(wanted)}\n"
            f"Actual: {', '.join(actual)}"
        )


class TaskExpectation(Generic[T]):
    """Fluent assertions over a dry run; every check returns ``self``."""

    def __init__(self, result: DryRunResult[T]) -> None:
        self.result = result

    @property
    def value(self) -> T:
        return self.result.value

    @property
    def effects(self) -> tuple[Effect, ...]:
        return self.result.effects

    def _written(self) -> set[str]:
        return {path for path, _ in get_file_writes(self.result)}

    def to_have_value(self, expected: T) -> TaskExpectation[T]:
        if self.value != expected:
            raise AssertionError(f"Expected value {expected!r}, got {self.value!r}")
        return self

    def to_have_effect_count(self, count: int) -> TaskExpectation[T]:
        if len(self.effects) != count:
            raise AssertionError(f"Expected {count} effects, got {len(self.effects)}")
        return self

    def to_write_file(self, path: str, content: str | None = None) -> TaskExpectation[T]:
        if path not in self._written():
            raise AssertionError(f"Expected task to write file {path}")
        if content is not None and self.result.files.get(path) != content:
            raise AssertionError(
                f"Expected {path} to contain {content!r}, got {self.result.files.get(path)!r}"
            )
        return self

    def to_not_write_file(self, path: str) -> TaskExpectation[T]:
        if path in self._written():
            raise AssertionError(f"Expected task to not write file {path}")
        return self


def expect_task(task: Task[T], **kwargs: Any) -> TaskExpectation[T]:
    return TaskExpectation(dry_run(task, **kwargs))


__all__ = [
    "DryRunInterpreter",
    "DryRunResult",
    "TaskExpectation",
    "assert_effects",
    "assert_file_writes",
    "collect_effects",
    "count_effects",
    "default_answer",
    "dry_run",
    "dry_run_with",
    "expect_task",
    "filter_effects",
    "get_affected_files",
    "get_file_writes",
    "mock_effect",
]
