"""Glob pattern matching over slash-separated relative paths.

Follows the rules of :meth:`pathlib.Path.glob`: ``*`` and ``?`` never cross
a ``/``, ``**/`` matches zero or more whole directories and ``[...]`` is a
character class (``[!...]`` negated).
"""

from __future__ import annotations

import functools
import re
from collections.abc import Iterable


@functools.lru_cache(maxsize=256)
def compile_glob(pattern: str) -> re.Pattern[str]:
    """Translate ``pattern`` into an anchored regular expression."""
    out: list[str] = []
    i, n = 0, len(pattern)
    while i < n:
        char = pattern[i]
        if pattern.startswith("**/", i):
            out.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            out.append(".*")
            i += 2
        elif char == "*":
            out.append("[^/]*")
            i += 1
        elif char == "?":
            out.append("[^/]")
            i += 1
        elif char == "[":
            end = pattern.find("]", i + 2)
            if end == -1:
                out.append(re.escape(char))
                i += 1
                continue
            body = pattern[i + 1 : end]
            if body.startswith("!"):
                body = "^" + body[1:]
            out.append(f"[{body.replace(chr(92), chr(92) * 2)}]")
            i = end + 1
        else:
            out.append(re.escape(char))
            i += 1
    return re.compile("".join(out) + r"\Z")


def match_glob(pattern: str, path: str) -> bool:
    return compile_glob(pattern).match(path) is not None


def filter_glob(pattern: str, paths: Iterable[str]) -> list[str]:
    """Return the sorted subset of ``paths`` matching ``pattern``."""
    regex = compile_glob(pattern)
    return sorted(path for path in paths if regex.match(path))


__all__ = ["compile_glob", "filter_glob", "match_glob"]
