"""
conjure - a task/effect engine for code generators.

Generators describe their side effects as immutable tasks; interpreters decide
whether those effects happen for real or are simulated for a preview.

Example:
    >>> from conjure import dry_run, read_file, write_file
    >>>
    >>> task = write_file("a.txt", "hi").then(read_file("a.txt"))
    >>> dry_run(task).value
    'hi'
"""

from conjure._vendor import Err, FrozenDict, Ok, Result
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
    unless_m,
    when,
    when_m,
    zip,
    zip3,
)
from conjure.dry_run import (
    DryRunInterpreter,
    DryRunResult,
    TaskExpectation,
    assert_effects,
    assert_file_writes,
    collect_effects,
    count_effects,
    default_answer,
    dry_run,
    dry_run_with,
    expect_task,
    filter_effects,
    get_affected_files,
    get_file_writes,
    mock_effect,
)
from conjure.effects import (
    MISSING,
    AppendFile,
    Choice,
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
    describe,
    get_affected_paths,
    is_write_effect,
)
from conjure.errors import (
    InterpreterStateError,
    ParallelError,
    TaskError,
    TaskExecutionError,
    TaskTimeoutError,
    ValidationError,
)
from conjure.generator import (
    GeneratorDefinition,
    PromptDefinition,
    build_task,
    collect_answers,
    run_generator,
    run_generator_async,
)
from conjure.interpreter import (
    InterpreterOptions,
    ProductionInterpreter,
    execute_effect,
    run,
    run_sync,
    run_task,
)
from conjure.primitives import (
    SortFileLinesOptions,
    append_file,
    copy_directory,
    copy_file,
    debug,
    delete_directory,
    delete_file,
    error,
    exec_,
    exec_simple,
    exists,
    get_context,
    glob,
    info,
    log,
    mkdir,
    noop,
    prompt,
    prompt_confirm,
    prompt_multiselect,
    prompt_select,
    prompt_text,
    read_file,
    set_context,
    sleep,
    sort_file_lines,
    succeed,
    warn,
    with_context,
    write_file,
)
from conjure.task import (
    Fail,
    Pure,
    Suspend,
    Task,
    effect,
    fail,
    fail_with,
    flat_map,
    from_result,
    has_effects,
    is_failed,
    is_pure,
    map_error,
    pure,
    recover,
)

__version__ = "0.1.0"

__all__ = [
    "MISSING",
    "AppendFile",
    "Choice",
    "CopyDirectory",
    "CopyFile",
    "DeleteDirectory",
    "DeleteFile",
    "DryRunInterpreter",
    "DryRunResult",
    "Effect",
    "Err",
    "Exec",
    "ExecResult",
    "Exists",
    "Fail",
    "FrozenDict",
    "GeneratorDefinition",
    "Glob",
    "InterpreterOptions",
    "InterpreterStateError",
    "Log",
    "MakeDir",
    "Ok",
    "Parallel",
    "ParallelError",
    "ProductionInterpreter",
    "Prompt",
    "PromptDefinition",
    "PromptQuestion",
    "Pure",
    "Race",
    "ReadContext",
    "ReadFile",
    "Result",
    "Sleep",
    "SortFileLinesOptions",
    "Suspend",
    "Task",
    "TaskError",
    "TaskExecutionError",
    "TaskExpectation",
    "TaskTimeoutError",
    "Timeout",
    "ValidationError",
    "WriteContext",
    "WriteFile",
    "append_file",
    "assert_effects",
    "assert_file_writes",
    "attempt",
    "bracket",
    "build_task",
    "collect_answers",
    "collect_effects",
    "copy_directory",
    "copy_file",
    "count_effects",
    "debug",
    "default_answer",
    "delay",
    "delete_directory",
    "delete_file",
    "describe",
    "dry_run",
    "dry_run_with",
    "effect",
    "ensure",
    "error",
    "exec_",
    "exec_simple",
    "execute_effect",
    "exists",
    "expect_task",
    "fail",
    "fail_with",
    "filter_effects",
    "flat_map",
    "fold",
    "from_result",
    "get_affected_files",
    "get_affected_paths",
    "get_context",
    "get_file_writes",
    "glob",
    "has_effects",
    "if_else",
    "if_else_m",
    "info",
    "is_failed",
    "is_pure",
    "is_write_effect",
    "log",
    "map_error",
    "mkdir",
    "mock_effect",
    "noop",
    "optional",
    "or_else",
    "parallel",
    "parallel_n",
    "prompt",
    "prompt_confirm",
    "prompt_multiselect",
    "prompt_select",
    "prompt_text",
    "pure",
    "race",
    "read_file",
    "recover",
    "retry",
    "retry_with_backoff",
    "run",
    "run_generator",
    "run_generator_async",
    "run_sync",
    "run_task",
    "sequence",
    "sequence_",
    "set_context",
    "sleep",
    "sort_file_lines",
    "succeed",
    "tap",
    "tap_error",
    "timeout",
    "traverse",
    "traverse_",
    "unless",
    "unless_m",
    "warn",
    "when",
    "when_m",
    "with_context",
    "write_file",
    "zip",
    "zip3",
]
