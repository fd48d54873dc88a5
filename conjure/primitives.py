"""
Primitive tasks.

One task-returning constructor per effect. Arguments are validated eagerly:
a malformed call returns a failed task holding a
:class:`~conjure.errors.ValidationError` and no effect is described.
"""

from __future__ import annotations

import shlex
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any, TypeVar

from conjure._validators import (
    ensure_callable,
    ensure_non_empty_str,
    ensure_non_negative_number,
    ensure_one_of,
    ensure_path,
    ensure_str,
    ensure_str_sequence,
    ensure_task,
    validated,
)
from conjure.effects import (
    LOG_LEVELS,
    MISSING,
    PROMPT_TYPES,
    AppendFile,
    Choice,
    CopyDirectory,
    CopyFile,
    DeleteDirectory,
    DeleteFile,
    Exec,
    ExecResult,
    Exists,
    Glob,
    Log,
    LogLevel,
    MakeDir,
    Prompt,
    PromptQuestion,
    ReadContext,
    ReadFile,
    Sleep,
    WriteContext,
    WriteFile,
)
from conjure.errors import ValidationError
from conjure.task import Task, effect, fail, pure

A = TypeVar("A")

# ============================================================================
# File system
# ============================================================================


@validated
def read_file(path: str) -> Task[str]:
    """Read a file and yield its contents."""
    return effect(ReadFile(ensure_path(path)))


@validated
def write_file(path: str, content: str) -> Task[None]:
    """Write ``content`` to ``path``, creating parent directories."""
    return effect(WriteFile(ensure_path(path), ensure_str(content, name="content")))


@validated
def append_file(path: str, content: str, *, create_if_missing: bool = True) -> Task[None]:
    return effect(
        AppendFile(
            ensure_path(path),
            ensure_str(content, name="content"),
            create_if_missing=bool(create_if_missing),
        )
    )


@validated
def mkdir(path: str, recursive: bool = True) -> Task[None]:
    return effect(MakeDir(ensure_path(path), recursive=bool(recursive)))


@validated
def exists(path: str) -> Task[bool]:
    return effect(Exists(ensure_path(path)))


@validated
def glob(pattern: str, cwd: str = ".") -> Task[list[str]]:
    """Find files matching ``pattern`` below ``cwd``; yields relative paths."""
    return effect(
        Glob(ensure_non_empty_str(pattern, name="pattern"), ensure_path(cwd, name="cwd"))
    )


@validated
def copy_file(source: str, dest: str) -> Task[None]:
    return effect(CopyFile(ensure_path(source, name="source"), ensure_path(dest, name="dest")))


@validated
def copy_directory(source: str, dest: str) -> Task[None]:
    return effect(
        CopyDirectory(ensure_path(source, name="source"), ensure_path(dest, name="dest"))
    )


@validated
def delete_file(path: str) -> Task[None]:
    return effect(DeleteFile(ensure_path(path)))


@validated
def delete_directory(path: str) -> Task[None]:
    return effect(DeleteDirectory(ensure_path(path)))


@dataclass(frozen=True)
class SortFileLinesOptions:
    unique: bool = False
    reverse: bool = False
    ignore_case: bool = False
    keep_blank_lines: bool = False


def sort_lines(content: str, options: SortFileLinesOptions | None = None) -> str:
    """Sort the lines of ``content``; a trailing newline is kept."""
    opts = options or SortFileLinesOptions()
    lines = content.splitlines()
    if not opts.keep_blank_lines:
        lines = [line for line in lines if line.strip()]
    key: Callable[[str], str] = str.casefold if opts.ignore_case else (lambda line: line)
    if opts.unique:
        seen: set[str] = set()
        unique_lines = []
        for line in lines:
            if key(line) not in seen:
                seen.add(key(line))
                unique_lines.append(line)
        lines = unique_lines
    lines = sorted(lines, key=key, reverse=opts.reverse)
    result = "\n".join(lines)
    if lines and content.endswith("\n"):
        result += "\n"
    return result


@validated
def sort_file_lines(path: str, options: SortFileLinesOptions | None = None) -> Task[None]:
    """Rewrite a file with its lines sorted (barrel files, ignore lists)."""
    target = ensure_path(path)
    if options is not None and not isinstance(options, SortFileLinesOptions):
        raise ValidationError(
            f"options must be SortFileLinesOptions, got {type(options).__name__}"
        )
    return read_file(target).flat_map(
        lambda content: write_file(target, sort_lines(content, options))
    )


# ============================================================================
# Processes
# ============================================================================


@validated
def exec_(command: str, args: Iterable[str] = (), cwd: str | None = None) -> Task[ExecResult]:
    """Run ``command`` with ``args``; yields an :class:`ExecResult`."""
    return effect(
        Exec(
            ensure_non_empty_str(command, name="command"),
            ensure_str_sequence(args, name="args"),
            None if cwd is None else ensure_path(cwd, name="cwd"),
        )
    )


@validated
def exec_simple(command_line: str, cwd: str | None = None) -> Task[ExecResult]:
    """Run a command line, split the way a POSIX shell would split it."""
    try:
        parts = shlex.split(ensure_non_empty_str(command_line, name="command_line"))
    except ValueError as exc:
        raise ValidationError(f"command_line cannot be parsed: {exc}") from exc
    command, *args = parts
    return exec_(command, args, cwd)


# ============================================================================
# Prompts
# ============================================================================


def _normalize_choices(choices: Iterable[Any]) -> tuple[Choice, ...]:
    normalized: list[Choice] = []
    for index, item in enumerate(choices):
        match item:
            case Choice():
                normalized.append(item)
            case str():
                normalized.append(Choice(label=item, value=item))
            case (str() as label, str() as value):
                normalized.append(Choice(label=label, value=value))
            case Mapping():
                normalized.append(
                    Choice(
                        label=ensure_str(item.get("label"), name=f"choices[{index}].label"),
                        value=ensure_str(item.get("value"), name=f"choices[{index}].value"),
                    )
                )
            case _:
                raise ValidationError(
                    f"choices[{index}] must be Choice, str, (label, value) or mapping; "
                    f"got {type(item).__name__}"
                )
    return tuple(normalized)


def make_question(
    name: str,
    type: str,
    message: str,
    *,
    default: Any = None,
    choices: Iterable[Any] = (),
    validate: Callable[[Any], bool | str] | None = None,
) -> PromptQuestion:
    """Build and check a :class:`PromptQuestion`; raises ``ValidationError``."""
    ensure_non_empty_str(name, name="name")
    ensure_one_of(type, PROMPT_TYPES, name="type")
    ensure_str(message, name="message")
    if validate is not None:
        ensure_callable(validate, name="validate")
    options = _normalize_choices(choices)
    values = [choice.value for choice in options]
    if type in ("select", "multiselect") and not options:
        raise ValidationError(f"{type} prompt {name!r} requires at least one choice")
    if type == "select" and default is not None and default not in values:
        raise ValidationError(f"default {default!r} is not one of the choices of {name!r}")
    if type == "multiselect" and default is not None:
        selected = ensure_str_sequence(default, name="default")
        missing = [item for item in selected if item not in values]
        if missing:
            raise ValidationError(f"defaults {missing!r} are not choices of {name!r}")
        default = list(selected)
    if type == "confirm" and default is not None and not isinstance(default, bool):
        raise ValidationError(f"confirm prompt {name!r} default must be bool")
    if type == "text" and default is not None:
        ensure_str(default, name="default")
    return PromptQuestion(
        name=name,
        type=type,  # type: ignore[arg-type]
        message=message,
        default=default,
        choices=options,
        validate=validate,
    )


@validated
def prompt(question: PromptQuestion) -> Task[Any]:
    if not isinstance(question, PromptQuestion):
        raise ValidationError(f"question must be PromptQuestion, got {type(question).__name__}")
    return effect(Prompt(question))


@validated
def prompt_text(
    name: str,
    message: str,
    default: str | None = None,
    *,
    validate: Callable[[Any], bool | str] | None = None,
) -> Task[str]:
    return prompt(make_question(name, "text", message, default=default, validate=validate))


@validated
def prompt_confirm(name: str, message: str, default: bool = False) -> Task[bool]:
    return prompt(make_question(name, "confirm", message, default=default))


@validated
def prompt_select(
    name: str, message: str, choices: Iterable[Any], default: str | None = None
) -> Task[str]:
    return prompt(make_question(name, "select", message, default=default, choices=choices))


@validated
def prompt_multiselect(
    name: str, message: str, choices: Iterable[Any], default: Iterable[str] | None = None
) -> Task[list[str]]:
    return prompt(
        make_question(name, "multiselect", message, default=default, choices=choices)
    )


# ============================================================================
# Logging
# ============================================================================


@validated
def log(level: LogLevel, message: str) -> Task[None]:
    return effect(
        Log(ensure_one_of(level, LOG_LEVELS, name="level"), ensure_str(message, name="message"))  # type: ignore[arg-type]
    )


def debug(message: str) -> Task[None]:
    return log("debug", message)


def info(message: str) -> Task[None]:
    return log("info", message)


def warn(message: str) -> Task[None]:
    return log("warn", message)


def error(message: str) -> Task[None]:
    return log("error", message)


# ============================================================================
# Generator context
# ============================================================================


@validated
def get_context(key: str, default: Any = None) -> Task[Any]:
    """Read a context entry, yielding ``default`` when it is absent."""
    return effect(ReadContext(ensure_non_empty_str(key, name="key"), default))


@validated
def set_context(key: str, value: Any) -> Task[None]:
    return effect(WriteContext(ensure_non_empty_str(key, name="key"), value))


@validated
def with_context(key: str, value: Any, task: Task[A]) -> Task[A]:
    """Run ``task`` with ``key`` set to ``value``, then restore the prior entry.

    The prior value (or its absence) is restored whether ``task`` succeeds or
    fails; the outcome of ``task`` is preserved.
    """
    ensure_non_empty_str(key, name="key")
    ensure_task(task, name="task")

    def scoped(prior: Any) -> Task[A]:
        restore = effect(WriteContext(key, prior))
        guarded = effect(WriteContext(key, value)).then(task)
        return guarded.recover(lambda err: restore.then(fail(err))).flat_map(
            lambda result: restore.then(pure(result))
        )

    return effect(ReadContext(key, MISSING)).flat_map(scoped)


# ============================================================================
# Time and pure values
# ============================================================================


@validated
def sleep(ms: float) -> Task[None]:
    """Wait ``ms`` milliseconds (simulated by the dry-run interpreter)."""
    return effect(Sleep(ensure_non_negative_number(ms, name="ms")))


noop: Task[None] = pure(None)


def succeed(value: A) -> Task[A]:
    return pure(value)


__all__ = [
    "SortFileLinesOptions",
    "append_file",
    "copy_directory",
    "copy_file",
    "debug",
    "delete_directory",
    "delete_file",
    "error",
    "exec_",
    "exec_simple",
    "exists",
    "get_context",
    "glob",
    "info",
    "log",
    "make_question",
    "mkdir",
    "noop",
    "prompt",
    "prompt_confirm",
    "prompt_multiselect",
    "prompt_select",
    "prompt_text",
    "read_file",
    "set_context",
    "sleep",
    "sort_file_lines",
    "sort_lines",
    "succeed",
    "warn",
    "with_context",
    "write_file",
]
