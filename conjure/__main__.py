from __future__ import annotations

import argparse
import importlib
import json
import os
import sys
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, TextIO

from loguru import logger

from conjure.dry_run import (
    DryRunResult,
    collect_effects,
    default_answer,
    dry_run,
    get_affected_files,
)
from conjure.effects import Prompt, PromptQuestion
from conjure.errors import TaskExecutionError
from conjure.generator import GeneratorDefinition, describe_generator, run_generator
from conjure.interpreter import InterpreterOptions, run_sync
from conjure.task import Task

LOG_LEVEL_ENV = "CONJURE_LOG_LEVEL"


@dataclass
class RunContext:
    target_path: str
    answers: dict[str, str]
    dry_run: bool
    assume_yes: bool
    cwd: str | None
    output_format: str


def configure_logging(verbose: bool) -> None:
    """Send loguru output to stderr; ``CONJURE_LOG_LEVEL`` overrides the level."""
    level = os.environ.get(LOG_LEVEL_ENV) or ("DEBUG" if verbose else "INFO")
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format="<level>{level: <8}</level> {message}")


def _import_symbol(path: str) -> Any:
    if ":" in path:
        module_name, attr_path = path.split(":", 1)
        module = importlib.import_module(module_name)
        return _resolve_attr(module, attr_path)
    parts = path.split(".")
    if len(parts) < 2:
        raise ValueError(f"'{path}' is not a fully-qualified symbol. Use module:attr format.")
    module = importlib.import_module(".".join(parts[:-1]))
    return getattr(module, parts[-1])


def _resolve_attr(obj: Any, attr_path: str) -> Any:
    current = obj
    for attr in attr_path.split("."):
        current = getattr(current, attr)
    return current


def _ensure_target(obj: Any, description: str) -> GeneratorDefinition | Task[Any]:
    if isinstance(obj, (GeneratorDefinition, Task)):
        return obj
    if callable(obj):
        produced = obj()
        if isinstance(produced, (GeneratorDefinition, Task)):
            return produced
    raise TypeError(f"{description} did not resolve to a GeneratorDefinition or Task")


def _parse_assignments(items: Iterable[str]) -> dict[str, str]:
    answers: dict[str, str] = {}
    for item in items:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"--set expects KEY=VALUE, got {item!r}")
        answers[key.strip()] = value
    return answers


class StdinPromptHandler:
    """Answer prompts from a plain text stream; ``assume_yes`` takes the defaults."""

    def __init__(
        self,
        assume_yes: bool = False,
        stdin: TextIO | None = None,
        stdout: TextIO | None = None,
    ) -> None:
        self.assume_yes = assume_yes
        self.stdin = stdin or sys.stdin
        self.stdout = stdout or sys.stdout

    def __call__(self, effect: Prompt) -> Any:
        question = effect.question
        if self.assume_yes:
            return default_answer(question)
        self.stdout.write(self._render(question))
        self.stdout.flush()
        reply = self.stdin.readline().strip()
        if not reply:
            return default_answer(question)
        return self._parse(question, reply)

    @staticmethod
    def _render(question: PromptQuestion) -> str:
        lines = [question.message]
        for index, choice in enumerate(question.choices, start=1):
            lines.append(f"  {index}) {choice.label}")
        default = default_answer(question)
        suffix = f" [{default}]" if default not in ("", [], None) else ""
        return "\n".join(lines) + f"{suffix}: "

    @staticmethod
    def _parse(question: PromptQuestion, reply: str) -> Any:
        def pick(token: str) -> str:
            if token.isdigit() and 1 <= int(token) <= len(question.choices):
                return question.choices[int(token) - 1].value
            return token

        match question.type:
            case "confirm":
                return reply.lower() in ("y", "yes", "true", "1")
            case "select":
                return pick(reply)
            case "multiselect":
                return [pick(token.strip()) for token in reply.split(",") if token.strip()]
        return reply


def _render_preview(result: DryRunResult[Any], output_format: str) -> None:
    affected = get_affected_files(result)
    if output_format == "json":
        payload = {
            "status": "ok",
            "effects": [effect.describe() for effect in result.effects],
            "files": affected,
            "value": repr(result.value),
        }
        print(json.dumps(payload))
        return
    for effect in result.effects:
        print(effect.describe())
    if affected:
        print("\nAffected files:")
        for path in affected:
            print(f"  {path}")


def _render_value(value: Any, output_format: str) -> None:
    if output_format == "json":
        print(json.dumps({"status": "ok", "value": repr(value)}))
    elif value is not None:
        print(value)


def handle_run(args: argparse.Namespace) -> int:
    context = RunContext(
        target_path=args.target,
        answers=_parse_assignments(args.set or []),
        dry_run=args.dry_run,
        assume_yes=args.yes,
        cwd=args.cwd,
        output_format=args.format,
    )
    target = _ensure_target(_import_symbol(context.target_path), context.target_path)
    try:
        if context.dry_run:
            if isinstance(target, GeneratorDefinition):
                result = run_generator(target, context.answers, dry_run=True)
            else:
                result = dry_run(target, context=dict(context.answers))
            _render_preview(result, context.output_format)
            return 0
        options = InterpreterOptions(
            prompt_handler=StdinPromptHandler(assume_yes=context.assume_yes),
            cwd=context.cwd,
        )
        if isinstance(target, GeneratorDefinition):
            value = run_generator(target, context.answers, options=options)
        else:
            options.context = dict(context.answers)
            value = run_sync(target, options)
    except TaskExecutionError as exc:
        if context.output_format == "json":
            print(json.dumps({"status": "error", "kind": exc.kind, "message": exc.message}))
        print(exc.format_full(), file=sys.stderr)
        return 1
    _render_value(value, context.output_format)
    return 0


def handle_describe(args: argparse.Namespace) -> int:
    target = _ensure_target(_import_symbol(args.target), args.target)
    if isinstance(target, GeneratorDefinition):
        print(describe_generator(target))
    else:
        for effect in collect_effects(target):
            print(effect.describe())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="conjure", description="Run and preview code generators")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser(
        "run",
        help="Run a generator or task",
        description=(
            "Run a GeneratorDefinition or Task.\n\n"
            "Examples:\n"
            "  conjure run myapp.generators:component --set name=Button\n"
            "  conjure run myapp.generators:component --set name=Button --dry-run"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    run_parser.add_argument("target", help="MODULE:ATTR of a GeneratorDefinition or Task")
    run_parser.add_argument(
        "--set",
        action="append",
        metavar="KEY=VALUE",
        help="Provide an answer (or a context entry for plain tasks); repeatable",
    )
    run_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Preview the effects and affected files without touching the file system",
    )
    run_parser.add_argument("--yes", action="store_true", help="Accept defaults for every prompt")
    run_parser.add_argument("--cwd", help="Base directory for relative paths")
    run_parser.add_argument("--verbose", action="store_true", help="Log effect dispatch at debug level")
    run_parser.add_argument(
        "--format",
        choices=("text", "json"),
        default="text",
        help="Output format (default: text)",
    )
    run_parser.set_defaults(func=handle_run)

    describe_parser = subparsers.add_parser("describe", help="Describe a generator or task")
    describe_parser.add_argument("target", help="MODULE:ATTR of a GeneratorDefinition or Task")
    describe_parser.add_argument("--verbose", action="store_true", help="Log at debug level")
    describe_parser.set_defaults(func=handle_describe)

    return parser


def main(argv: Iterable[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    configure_logging(args.verbose)
    try:
        return args.func(args)
    except Exception as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
