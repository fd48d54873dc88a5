"""
Small value types shared across conjure.

``Result`` carries the outcome of one step (an effect, a sub-task, an
``attempt``) and ``FrozenDict`` is used wherever an immutable mapping is
handed back to callers.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, NoReturn, TypeVar, cast

from frozendict import frozendict

if TYPE_CHECKING:
    from conjure.task import Task

# =========================================================
# Type Vars
# =========================================================
T = TypeVar("T")
T_co = TypeVar("T_co", covariant=True)


class Result(Generic[T_co]):
    """Sum type representing either a successful value or an error."""

    __slots__ = ()

    def is_ok(self) -> bool:
        """Return ``True`` when the result is successful."""

        return isinstance(self, Ok)

    def unwrap(self) -> T_co:
        """Return the value or raise the stored error."""

        if isinstance(self, Ok):
            return self.value
        raise cast(Err, self).error

    def unwrap_err(self) -> Exception:
        """Return the error or raise ``RuntimeError`` if this is a success."""

        if isinstance(self, Err):
            return self.error
        raise RuntimeError("Called unwrap_err on Ok value")

    def to_task(self) -> Task[T_co]:
        """Lift this outcome back into a task.

        ``Ok`` becomes ``pure(value)`` and ``Err`` becomes ``fail(error)``,
        which is how ``bracket`` and ``ensure`` replay the outcome of the
        guarded task after cleanup.
        """
        from conjure.task import fail, pure

        if isinstance(self, Ok):
            return pure(self.value)
        return fail(cast(Err, self).error)

    def __bool__(self) -> bool:
        return self.is_ok()


@dataclass(frozen=True)
class Ok(Result[T], Generic[T]):
    value: T


@dataclass(frozen=True)
class Err(Result[NoReturn]):
    error: Exception


FrozenDict = frozendict

__all__ = [
    "Err",
    "FrozenDict",
    "Ok",
    "Result",
]
