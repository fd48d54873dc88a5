"""
Production interpreter.

Walks a task and performs each effect for real: file I/O through
:mod:`pathlib`/:mod:`shutil`, processes through asyncio subprocesses,
prompts through a caller-supplied handler and context through a mapping owned
by the run. ``Parallel``, ``Race`` and ``Timeout`` branches run as asyncio
tasks on the current event loop.

Branches that lose a race, exceed a timeout or are still running when a
sibling fails are detached rather than cancelled; the interpreter keeps a
reference to them until they finish.
"""

from __future__ import annotations

import asyncio
import inspect
import os
import shutil
import time
from collections.abc import Awaitable, Callable, Mapping, MutableMapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TypeVar, assert_never

from loguru import logger

from conjure._runtime import RunOnceMixin, apply_context, check_answer
from conjure._vendor import Err, Ok, Result
from conjure.effects import (
    AppendFile,
    CopyDirectory,
    CopyFile,
    DeleteDirectory,
    DeleteFile,
    Effect,
    Exec,
    ExecResult,
    Exists,
    Glob,
    Log,
    LogLevel,
    MakeDir,
    Parallel,
    Prompt,
    Race,
    ReadContext,
    ReadFile,
    Sleep,
    Timeout,
    WriteContext,
    WriteFile,
)
from conjure.errors import (
    NO_PROMPT_HANDLER,
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

logger = logger.bind(component="interpreter")
task_logger = logger.bind(component="task")

PromptHandler = Callable[[Prompt], Any]
EffectHandler = Callable[[Any], Awaitable[Any] | Any]

LOGURU_LEVELS: Mapping[str, str] = {
    "debug": "DEBUG",
    "info": "INFO",
    "warn": "WARNING",
    "error": "ERROR",
}


@dataclass
class InterpreterOptions:
    """Configuration for one production run.

    ``handlers`` maps an effect class to a replacement implementation (sync or
    async) used instead of the built-in one; tests use it to instrument or
    stub individual effects. ``cwd`` is the base directory for relative paths.
    """

    context: MutableMapping[str, Any] | None = None
    prompt_handler: PromptHandler | None = None
    on_effect_start: Callable[[Effect], None] | None = None
    on_effect_complete: Callable[[Effect, float], None] | None = None
    on_log: Callable[[LogLevel, str], None] | None = None
    handlers: Mapping[type, EffectHandler] = field(default_factory=dict)
    cwd: str | os.PathLike[str] | None = None


async def _resolve_awaitable(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _resolve_path(path: str, cwd: str | os.PathLike[str] | None) -> Path:
    target = Path(path)
    if cwd is None or target.is_absolute():
        return target
    return Path(cwd) / target


async def _exec(effect: Exec, cwd: str | os.PathLike[str] | None) -> ExecResult:
    workdir = _resolve_path(effect.cwd, cwd) if effect.cwd is not None else cwd
    process = await asyncio.create_subprocess_exec(
        effect.command,
        *effect.args,
        cwd=workdir,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await process.communicate()
    return ExecResult(
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
        exit_code=process.returncode if process.returncode is not None else 0,
    )


async def execute_effect(
    effect: Effect,
    context: MutableMapping[str, Any],
    *,
    prompt_handler: PromptHandler | None = None,
    on_log: Callable[[LogLevel, str], None] | None = None,
    cwd: str | os.PathLike[str] | None = None,
) -> Any:
    """Perform one leaf effect and return its raw result.

    Exceptions propagate to the caller; :class:`ProductionInterpreter` wraps
    them into :class:`TaskExecutionError`.
    """
    match effect:
        case ReadFile(path=path):
            return _resolve_path(path, cwd).read_text(encoding="utf-8")

        case WriteFile(path=path, content=content):
            target = _resolve_path(path, cwd)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
            return None

        case AppendFile(path=path, content=content, create_if_missing=create):
            target = _resolve_path(path, cwd)
            if not create and not target.exists():
                raise FileNotFoundError(f"No such file: {path}")
            target.parent.mkdir(parents=True, exist_ok=True)
            with target.open("a", encoding="utf-8") as handle:
                handle.write(content)
            return None

        case Exists(path=path):
            return _resolve_path(path, cwd).exists()

        case Glob(pattern=pattern, cwd=root):
            base = _resolve_path(root, cwd)
            return sorted(
                found.relative_to(base).as_posix()
                for found in base.glob(pattern)
                if found.is_file()
            )

        case CopyFile(source=source, dest=dest):
            target = _resolve_path(dest, cwd)
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(_resolve_path(source, cwd), target)
            return None

        case CopyDirectory(source=source, dest=dest):
            shutil.copytree(
                _resolve_path(source, cwd), _resolve_path(dest, cwd), dirs_exist_ok=True
            )
            return None

        case DeleteFile(path=path):
            _resolve_path(path, cwd).unlink()
            return None

        case DeleteDirectory(path=path):
            target = _resolve_path(path, cwd)
            if target.exists():
                shutil.rmtree(target)
            return None

        case MakeDir(path=path, recursive=recursive):
            _resolve_path(path, cwd).mkdir(parents=recursive, exist_ok=recursive)
            return None

        case Exec():
            return await _exec(effect, cwd)

        case Prompt(question=question):
            if prompt_handler is None:
                raise TaskExecutionError(
                    "No prompt handler provided for interactive prompts",
                    effect=effect,
                    kind=NO_PROMPT_HANDLER,
                    context={"prompt": question.name},
                )
            answer = await _resolve_awaitable(prompt_handler(effect))
            return check_answer(question, answer)

        case Log(level=level, message=message):
            if on_log is not None:
                on_log(level, message)
            else:
                task_logger.log(LOGURU_LEVELS[level], message)
            return None

        case ReadContext() | WriteContext():
            return apply_context(effect, context)

        case Sleep(ms=ms):
            await asyncio.sleep(ms / 1000)
            return None

        case Parallel() | Race() | Timeout():
            raise TypeError(f"{effect.tag} must be interpreted by ProductionInterpreter")

        case _:
            assert_never(effect)


class ProductionInterpreter(RunOnceMixin):
    """Interpret a task by performing its effects. Each instance runs once."""

    def __init__(self, options: InterpreterOptions | None = None) -> None:
        self.options = options or InterpreterOptions()
        self.context: MutableMapping[str, Any] = (
            self.options.context if self.options.context is not None else {}
        )
        self._background: set[asyncio.Task[Any]] = set()

    async def run(self, task: Task[T]) -> T:
        """Run ``task`` to completion; raises ``TaskExecutionError`` on failure."""
        if not isinstance(task, Task):
            raise TypeError(f"run expects a Task, got {type(task).__name__}")
        self._begin()
        outcome = await self._evaluate(task)
        return self._settle(outcome)

    async def _evaluate(self, task: Task[Any]) -> Result[Any]:
        while True:
            match task:
                case Pure(value=value):
                    return Ok(value)
                case Fail(error=error):
                    return Err(error)
                case Suspend(effect=eff):
                    outcome = await self._dispatch(eff)
                    task = task.resume(outcome)
                case _:
                    return Err(
                        TaskError(f"not a Task: {type(task).__name__}", kind=UNEXPECTED_ERROR)
                    )

    async def _dispatch(self, effect: Effect) -> Result[Any]:
        options = self.options
        logger.debug("perform {}", effect.describe())
        started = time.perf_counter()
        try:
            if options.on_effect_start is not None:
                options.on_effect_start(effect)
            outcome = await self._perform(effect)
            if options.on_effect_complete is not None:
                options.on_effect_complete(effect, (time.perf_counter() - started) * 1000)
        except TaskError as exc:
            outcome = Err(exc if exc.effect is not None else exc.with_effect(effect))
        except Exception as exc:
            outcome = Err(TaskExecutionError.from_effect(effect, exc))
        if isinstance(outcome, Err):
            logger.debug("failed {}: {}", effect.describe(), outcome.error)
        return outcome

    async def _perform(self, effect: Effect) -> Result[Any]:
        match effect:
            case Parallel():
                return await self._parallel(effect)
            case Race():
                return await self._race(effect)
            case Timeout():
                return await self._timeout(effect)
        handler = self.options.handlers.get(type(effect))
        if handler is not None:
            return Ok(await _resolve_awaitable(handler(effect)))
        value = await execute_effect(
            effect,
            self.context,
            prompt_handler=self.options.prompt_handler,
            on_log=self.options.on_log,
            cwd=self.options.cwd,
        )
        return Ok(value)

    # ------------------------------------------------------------------
    # Concurrency
    # ------------------------------------------------------------------

    def _spawn(self, task: Task[Any]) -> asyncio.Task[Result[Any]]:
        return asyncio.get_running_loop().create_task(self._evaluate(task))

    def _detach(self, pending: Any) -> None:
        for running in pending:
            self._background.add(running)
            running.add_done_callback(self._background.discard)

    async def drain(self) -> None:
        """Wait for detached branches, including any they detach in turn."""
        while self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    async def _parallel(self, effect: Parallel) -> Result[list[Any]]:
        semaphore = asyncio.Semaphore(effect.concurrency) if effect.concurrency else None
        failed = asyncio.Event()

        async def branch(sub: Task[Any]) -> Result[Any] | None:
            if semaphore is None:
                return await self._evaluate(sub)
            async with semaphore:
                if failed.is_set():
                    return None
                outcome = await self._evaluate(sub)
                # flag before the slot is released so no waiting branch starts
                if isinstance(outcome, Err):
                    failed.set()
                return outcome

        loop = asyncio.get_running_loop()
        pending = {loop.create_task(branch(sub)): index for index, sub in enumerate(effect.tasks)}
        values: list[Any] = [None] * len(effect.tasks)
        while pending:
            done, _ = await asyncio.wait(pending.keys(), return_when=asyncio.FIRST_COMPLETED)
            for finished in sorted(done, key=pending.__getitem__):
                index = pending.pop(finished)
                outcome = finished.result()
                if isinstance(outcome, Err):
                    failed.set()
                    self._detach(pending)
                    return Err(ParallelError(index, coerce_error(outcome.error)))
                if outcome is not None:
                    values[index] = outcome.value
        return Ok(values)

    async def _race(self, effect: Race) -> Result[Any]:
        if not effect.tasks:
            return Err(ValidationError("race requires at least one task"))
        branches = [self._spawn(sub) for sub in effect.tasks]
        done, pending = await asyncio.wait(branches, return_when=asyncio.FIRST_COMPLETED)
        self._detach(pending)
        winner = min(done, key=branches.index)
        return winner.result()

    async def _timeout(self, effect: Timeout) -> Result[Any]:
        inner = self._spawn(effect.task)
        done, _ = await asyncio.wait({inner}, timeout=effect.ms / 1000)
        if inner in done:
            return inner.result()
        self._detach([inner])
        return Err(TaskTimeoutError(effect.ms))


async def run_task(task: Task[T], options: InterpreterOptions | None = None) -> T:
    """Run ``task`` with a fresh :class:`ProductionInterpreter`."""
    return await ProductionInterpreter(options).run(task)


async def run(task: Task[T], prompt_handler: PromptHandler | None = None) -> T:
    return await run_task(task, InterpreterOptions(prompt_handler=prompt_handler))


def run_sync(task: Task[T], options: InterpreterOptions | None = None) -> T:
    """Blocking wrapper around :func:`run_task` for scripts and the CLI.

    Detached branches are awaited before the event loop closes, so a race
    loser's in-flight writes still land.
    """

    async def main() -> T:
        interpreter = ProductionInterpreter(options)
        try:
            return await interpreter.run(task)
        finally:
            await interpreter.drain()

    return asyncio.run(main())


__all__ = [
    "InterpreterOptions",
    "ProductionInterpreter",
    "execute_effect",
    "run",
    "run_sync",
    "run_task",
]
