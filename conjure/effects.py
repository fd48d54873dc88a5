"""
Effect algebra.

Every side effect a task can request is one of the frozen dataclasses below.
Effects are plain data: building one performs no I/O and never fails. The
production interpreter performs them, the dry-run interpreter simulates them,
and :func:`describe` renders them for previews and error messages.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar, Final, Literal, TypeAlias, assert_never

if TYPE_CHECKING:
    from conjure.task import Task

LogLevel: TypeAlias = Literal["debug", "info", "warn", "error"]
LOG_LEVELS: Final[tuple[str, ...]] = ("debug", "info", "warn", "error")

PromptType: TypeAlias = Literal["text", "confirm", "select", "multiselect"]
PROMPT_TYPES: Final[tuple[str, ...]] = ("text", "confirm", "select", "multiselect")


class _Missing:
    """Marker for an absent context entry."""

    __slots__ = ()
    _instance: _Missing | None = None

    def __new__(cls) -> _Missing:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Final = _Missing()


@dataclass(frozen=True)
class Choice:
    label: str
    value: str


@dataclass(frozen=True)
class PromptQuestion:
    """A single interactive question."""

    name: str
    type: PromptType
    message: str
    default: Any = None
    choices: tuple[Choice, ...] = ()
    validate: Callable[[Any], bool | str] | None = field(default=None, compare=False)


@dataclass(frozen=True)
class ExecResult:
    """Captured output of a finished process. A non-zero exit is still a result."""

    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class EffectBase:
    """Base class for all effects; ``tag`` is the variant name."""

    tag: ClassVar[str] = "Effect"

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        cls.tag = cls.__name__

    def describe(self) -> str:
        return describe(self)  # type: ignore[arg-type]


# =========================================================
# File system
# =========================================================


@dataclass(frozen=True)
class ReadFile(EffectBase):
    """Read a file as UTF-8 text."""

    path: str


@dataclass(frozen=True)
class WriteFile(EffectBase):
    """Write text to a file, creating parent directories."""

    path: str
    content: str


@dataclass(frozen=True)
class AppendFile(EffectBase):
    """Append text to a file."""

    path: str
    content: str
    create_if_missing: bool = True


@dataclass(frozen=True)
class Exists(EffectBase):
    path: str


@dataclass(frozen=True)
class Glob(EffectBase):
    """Find files under ``cwd`` matching ``pattern``; yields relative paths."""

    pattern: str
    cwd: str = "."


@dataclass(frozen=True)
class CopyFile(EffectBase):
    source: str
    dest: str


@dataclass(frozen=True)
class CopyDirectory(EffectBase):
    source: str
    dest: str


@dataclass(frozen=True)
class DeleteFile(EffectBase):
    path: str


@dataclass(frozen=True)
class DeleteDirectory(EffectBase):
    """Recursively delete a directory; a missing directory is not an error."""

    path: str


@dataclass(frozen=True)
class MakeDir(EffectBase):
    path: str
    recursive: bool = True


# =========================================================
# Process, prompt, log
# =========================================================


@dataclass(frozen=True)
class Exec(EffectBase):
    """Run ``command`` with ``args`` and capture its output as :class:`ExecResult`."""

    command: str
    args: tuple[str, ...] = ()
    cwd: str | None = None


@dataclass(frozen=True)
class Prompt(EffectBase):
    question: PromptQuestion


@dataclass(frozen=True)
class Log(EffectBase):
    level: LogLevel
    message: str


# =========================================================
# Generator context
# =========================================================


@dataclass(frozen=True)
class ReadContext(EffectBase):
    """Read a context entry, yielding ``default`` when it is absent."""

    key: str
    default: Any = None


@dataclass(frozen=True)
class WriteContext(EffectBase):
    """Set a context entry; writing :data:`MISSING` removes it."""

    key: str
    value: Any


# =========================================================
# Concurrency and time
# =========================================================


@dataclass(frozen=True)
class Parallel(EffectBase):
    """Run sub-tasks concurrently; at most ``concurrency`` in flight when set."""

    tasks: tuple[Task[Any], ...]
    concurrency: int | None = None


@dataclass(frozen=True)
class Race(EffectBase):
    """Settle with whichever sub-task settles first."""

    tasks: tuple[Task[Any], ...]


@dataclass(frozen=True)
class Sleep(EffectBase):
    ms: float


@dataclass(frozen=True)
class Timeout(EffectBase):
    """Run ``task``, failing with a timeout if it has not settled after ``ms``."""

    task: Task[Any]
    ms: float


Effect: TypeAlias = (
    ReadFile
    | WriteFile
    | AppendFile
    | Exists
    | Glob
    | CopyFile
    | CopyDirectory
    | DeleteFile
    | DeleteDirectory
    | MakeDir
    | Exec
    | Prompt
    | Log
    | ReadContext
    | WriteContext
    | Parallel
    | Race
    | Sleep
    | Timeout
)

EFFECT_TYPES: Final[tuple[type[EffectBase], ...]] = (
    ReadFile,
    WriteFile,
    AppendFile,
    Exists,
    Glob,
    CopyFile,
    CopyDirectory,
    DeleteFile,
    DeleteDirectory,
    MakeDir,
    Exec,
    Prompt,
    Log,
    ReadContext,
    WriteContext,
    Parallel,
    Race,
    Sleep,
    Timeout,
)

_WRITE_EFFECTS: Final = (
    WriteFile,
    AppendFile,
    CopyFile,
    CopyDirectory,
    DeleteFile,
    DeleteDirectory,
    MakeDir,
)


def _byte_count(content: str) -> int:
    return len(content.encode("utf-8"))


def describe(effect: Effect) -> str:
    """Human-readable one-line description of ``effect``."""
    match effect:
        case ReadFile(path=path):
            return f"Read file: {path}"
        case WriteFile(path=path, content=content):
            return f"Write file: {path} ({_byte_count(content)} bytes)"
        case AppendFile(path=path, content=content):
            return f"Append to file: {path} ({_byte_count(content)} bytes)"
        case Exists(path=path):
            return f"Check exists: {path}"
        case Glob(pattern=pattern, cwd=cwd):
            return f"Glob: {pattern} in {cwd}"
        case CopyFile(source=source, dest=dest):
            return f"Copy file: {source} -> {dest}"
        case CopyDirectory(source=source, dest=dest):
            return f"Copy directory: {source} -> {dest}"
        case DeleteFile(path=path):
            return f"Delete file: {path}"
        case DeleteDirectory(path=path):
            return f"Delete directory: {path}"
        case MakeDir(path=path, recursive=recursive):
            return f"Create directory: {path}{' (recursive)' if recursive else ''}"
        case Exec(command=command, args=args):
            return f"Execute: {' '.join((command, *args))}"
        case Prompt(question=question):
            return f"Prompt: {question.message}"
        case Log(level=level, message=message):
            return f"Log [{level}]: {message}"
        case ReadContext(key=key):
            return f"Read context: {key}"
        case WriteContext(key=key, value=value):
            if value is MISSING:
                return f"Clear context: {key}"
            return f"Write context: {key}"
        case Parallel(tasks=tasks, concurrency=concurrency):
            limit = f" (max {concurrency} concurrent)" if concurrency else ""
            return f"Parallel: {len(tasks)} tasks{limit}"
        case Race(tasks=tasks):
            return f"Race: {len(tasks)} tasks"
        case Sleep(ms=ms):
            return f"Sleep: {ms:g}ms"
        case Timeout(ms=ms):
            return f"Timeout: {ms:g}ms"
        case _:
            assert_never(effect)


def is_write_effect(effect: Effect) -> bool:
    """Whether ``effect`` modifies the file system."""
    return isinstance(effect, _WRITE_EFFECTS)


def get_affected_paths(effect: Effect) -> list[str]:
    """Paths read or written by ``effect`` (empty for non-file effects)."""
    match effect:
        case (
            ReadFile(path=path)
            | WriteFile(path=path)
            | AppendFile(path=path)
            | Exists(path=path)
            | DeleteFile(path=path)
            | DeleteDirectory(path=path)
            | MakeDir(path=path)
        ):
            return [path]
        case CopyFile(source=source, dest=dest) | CopyDirectory(source=source, dest=dest):
            return [source, dest]
        case Glob(cwd=cwd):
            return [cwd]
        case _:
            return []


__all__ = [
    "EFFECT_TYPES",
    "LOG_LEVELS",
    "MISSING",
    "PROMPT_TYPES",
    "AppendFile",
    "Choice",
    "CopyDirectory",
    "CopyFile",
    "DeleteDirectory",
    "DeleteFile",
    "Effect",
    "EffectBase",
    "Exec",
    "ExecResult",
    "Exists",
    "Glob",
    "Log",
    "LogLevel",
    "MakeDir",
    "Parallel",
    "Prompt",
    "PromptQuestion",
    "PromptType",
    "Race",
    "ReadContext",
    "ReadFile",
    "Sleep",
    "Timeout",
    "WriteContext",
    "WriteFile",
    "describe",
    "get_affected_paths",
    "is_write_effect",
]
