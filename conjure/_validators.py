"""Eager argument validation for primitives and combinators.

The ``ensure_*`` helpers raise :class:`~conjure.errors.ValidationError`;
builders decorated with :func:`validated` turn that into a failed task, so a
malformed call never describes an effect.
"""

from __future__ import annotations

import functools
import os
from collections.abc import Callable, Iterable
from typing import Any, ParamSpec, TypeVar

from conjure.errors import ValidationError

P = ParamSpec("P")
R = TypeVar("R")


def _type_name(value: object) -> str:
    return type(value).__name__


def validated(builder: Callable[P, R]) -> Callable[P, R]:
    """Return ``Fail(ValidationError)`` instead of raising from ``builder``."""

    @functools.wraps(builder)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        from conjure.task import Fail

        try:
            return builder(*args, **kwargs)
        except ValidationError as exc:
            return Fail(exc)  # type: ignore[return-value]

    return wrapper


def ensure_str(value: object, *, name: str) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"{name} must be str, got {_type_name(value)}")
    return value


def ensure_non_empty_str(value: object, *, name: str) -> str:
    text = ensure_str(value, name=name)
    if not text.strip():
        raise ValidationError(f"{name} must not be empty")
    return text


def ensure_path(value: object, *, name: str = "path") -> str:
    """Accept ``str`` or ``os.PathLike`` and return a non-empty string path."""
    if isinstance(value, os.PathLike):
        value = os.fspath(value)
    if isinstance(value, bytes):
        raise ValidationError(f"{name} must be str or PathLike, got bytes")
    path = ensure_non_empty_str(value, name=name)
    if "\x00" in path:
        raise ValidationError(f"{name} must not contain NUL bytes")
    return path


def ensure_str_sequence(values: object, *, name: str) -> tuple[str, ...]:
    if isinstance(values, str) or not isinstance(values, Iterable):
        raise ValidationError(f"{name} must be a sequence of str, got {_type_name(values)}")
    items = tuple(values)
    for index, item in enumerate(items):
        ensure_str(item, name=f"{name}[{index}]")
    return items


def ensure_callable(value: object, *, name: str) -> None:
    if not callable(value):
        raise ValidationError(f"{name} must be callable, got {_type_name(value)}")


def ensure_one_of(value: object, allowed: Iterable[str], *, name: str) -> str:
    options = tuple(allowed)
    if value not in options:
        raise ValidationError(f"{name} must be one of {', '.join(options)}; got {value!r}")
    return value  # type: ignore[return-value]


def ensure_positive_int(value: object, *, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{name} must be positive int, got {_type_name(value)}={value!r}")
    return value


def ensure_non_negative_int(value: object, *, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(
            f"{name} must be non-negative int, got {_type_name(value)}={value!r}"
        )
    return value


def ensure_non_negative_number(value: object, *, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise ValidationError(
            f"{name} must be a non-negative number, got {_type_name(value)}={value!r}"
        )
    return value


def ensure_positive_number(value: object, *, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ValidationError(
            f"{name} must be a positive number, got {_type_name(value)}={value!r}"
        )
    return value


def ensure_task(value: object, *, name: str) -> Any:
    from conjure.task import Task

    if not isinstance(value, Task):
        raise ValidationError(f"{name} must be Task, got {_type_name(value)}")
    return value


def ensure_task_sequence(values: object, *, name: str) -> tuple[Any, ...]:
    if not isinstance(values, Iterable):
        raise ValidationError(f"{name} must be a sequence of Task, got {_type_name(values)}")
    items = tuple(values)
    for index, item in enumerate(items):
        ensure_task(item, name=f"{name}[{index}]")
    return items


__all__ = [
    "ensure_callable",
    "ensure_non_empty_str",
    "ensure_non_negative_int",
    "ensure_non_negative_number",
    "ensure_one_of",
    "ensure_path",
    "ensure_positive_int",
    "ensure_positive_number",
    "ensure_str",
    "ensure_str_sequence",
    "ensure_task",
    "ensure_task_sequence",
    "validated",
]
