"""
Generator boundary.

A :class:`GeneratorDefinition` pairs the questions a generator asks with a
``build`` function turning the answers into a task. This module collects the
answers (pre-supplied ones first, prompts for the rest), chains them into
``build`` and picks an interpreter: the dry run for previews, the production
interpreter otherwise.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from conjure._runtime import check_answer
from conjure.dry_run import DryRunInterpreter, DryRunResult, MockKey
from conjure.effects import PromptQuestion, PromptType
from conjure.errors import UNEXPECTED_ERROR, ValidationError, coerce_error
from conjure.interpreter import InterpreterOptions, run_sync, run_task
from conjure.primitives import make_question, prompt
from conjure.task import Fail, Task, pure

logger = logger.bind(component="generator")

Answers = dict[str, Any]

_TRUE = frozenset({"1", "true", "yes", "y", "on"})
_FALSE = frozenset({"0", "false", "no", "n", "off"})


@dataclass(frozen=True)
class PromptDefinition:
    """One question of a generator.

    ``when`` receives the answers collected so far and decides whether the
    question is asked at all. ``positional`` and ``group`` are hints for
    command line front-ends.
    """

    name: str
    type: PromptType
    message: str
    default: Any = None
    choices: Sequence[Any] = ()
    validate: Callable[[Any], bool | str] | None = field(default=None, compare=False)
    when: Callable[[Answers], bool] | None = field(default=None, compare=False)
    positional: bool = False
    group: str | None = None

    def to_question(self) -> PromptQuestion:
        return make_question(
            self.name,
            self.type,
            self.message,
            default=self.default,
            choices=self.choices,
            validate=self.validate,
        )


@dataclass(frozen=True)
class GeneratorDefinition:
    name: str
    description: str
    prompts: Sequence[PromptDefinition]
    build: Callable[[Answers], Task[Any]] = field(compare=False)
    version: str = "0.0.0"


def coerce_answer(question: PromptQuestion, value: Any) -> Any:
    """Convert a textual answer (e.g. from ``--set``) to the question's type."""
    if not isinstance(value, str):
        return value
    match question.type:
        case "confirm":
            lowered = value.strip().lower()
            if lowered in _TRUE:
                return True
            if lowered in _FALSE:
                return False
            raise ValidationError(f"{question.name}: expected yes or no, got {value!r}")
        case "multiselect":
            return [item.strip() for item in value.split(",") if item.strip()]
    return value


def _check_provided(question: PromptQuestion, value: Any) -> Any:
    answer = coerce_answer(question, value)
    values = [choice.value for choice in question.choices]
    if question.type == "select" and answer not in values:
        raise ValidationError(f"{question.name}: {answer!r} is not one of {', '.join(values)}")
    if question.type == "multiselect":
        unknown = [item for item in answer if item not in values]
        if unknown:
            raise ValidationError(f"{question.name}: unknown choices {unknown!r}")
    return check_answer(question, answer)


def collect_answers(
    prompts: Sequence[PromptDefinition], provided: Mapping[str, Any] | None = None
) -> Task[Answers]:
    """Build a task yielding all answers.

    Provided answers are coerced and validated without prompting; skipped
    questions (``when`` is false) get no entry; every other question issues
    a ``Prompt`` effect. Extra provided keys are passed through.
    """
    given = dict(provided or {})
    definitions = tuple(prompts)

    def step(index: int, answers: Answers) -> Task[Answers]:
        while index < len(definitions):
            definition = definitions[index]
            try:
                if definition.when is not None and not definition.when(dict(answers)):
                    index += 1
                    continue
                question = definition.to_question()
                if definition.name in given:
                    value = _check_provided(question, given[definition.name])
                    answers = {**answers, definition.name: value}
                    index += 1
                    continue
            except Exception as exc:
                return Fail(coerce_error(exc, kind=UNEXPECTED_ERROR))
            return prompt(question).flat_map(
                lambda value, i=index, acc=answers, key=definition.name: step(
                    i + 1, {**acc, key: value}
                )
            )
        return pure({**given, **answers})

    return step(0, {})


def build_task(
    generator: GeneratorDefinition, provided: Mapping[str, Any] | None = None
) -> Task[Any]:
    """Chain answer collection into ``generator.build``."""
    return collect_answers(generator.prompts, provided).flat_map(generator.build)


def _dry_run(
    task: Task[Any],
    files: Mapping[str, str] | None,
    mocks: Mapping[MockKey, Any] | None,
) -> DryRunResult[Any]:
    interpreter = DryRunInterpreter(files)
    for key, result in (mocks or {}).items():
        interpreter.mock(key, result)
    return interpreter.run(task)


def run_generator(
    generator: GeneratorDefinition,
    answers: Mapping[str, Any] | None = None,
    *,
    dry_run: bool = False,
    options: InterpreterOptions | None = None,
    files: Mapping[str, str] | None = None,
    mocks: Mapping[MockKey, Any] | None = None,
) -> Any:
    """Run ``generator`` and return its value, or the ``DryRunResult`` in preview mode.

    Raises ``TaskExecutionError`` when the generator fails.
    """
    task = build_task(generator, answers)
    mode = "dry run" if dry_run else "production"
    logger.info("running generator {} {} ({})", generator.name, generator.version, mode)
    if dry_run:
        return _dry_run(task, files, mocks)
    return run_sync(task, options)


async def run_generator_async(
    generator: GeneratorDefinition,
    answers: Mapping[str, Any] | None = None,
    *,
    options: InterpreterOptions | None = None,
) -> Any:
    """Production run of ``generator`` on the current event loop."""
    logger.info("running generator {} {}", generator.name, generator.version)
    return await run_task(build_task(generator, answers), options)


def describe_generator(generator: GeneratorDefinition) -> str:
    lines = [f"{generator.name} {generator.version}", f"  {generator.description}"]
    if generator.prompts:
        lines.append("  prompts:")
    for definition in generator.prompts:
        extra = f" (default: {definition.default!r})" if definition.default is not None else ""
        lines.append(f"    {definition.name} [{definition.type}] {definition.message}{extra}")
    return "\n".join(lines)


__all__ = [
    "Answers",
    "GeneratorDefinition",
    "PromptDefinition",
    "build_task",
    "coerce_answer",
    "collect_answers",
    "describe_generator",
    "run_generator",
    "run_generator_async",
]
