"""Glob matching shared by the ignore policy and the dependency map.

Two dialects live here so their semantics stay in one place:

- path globs (``cross_segments=False``): ``**`` spans directories, ``*`` and
  ``?`` stay inside one path segment, ``[...]`` is a character class.
- glob-lite (``cross_segments=True``): ``*`` matches any run of characters
  *including* ``/`` and ``?`` matches one character. This is what ignore
  patterns use. It is not gitignore: there is no negation, no directory-only
  trailing slash and no implicit basename matching. ``node_modules`` only
  ignores a path that is exactly ``node_modules``; write ``node_modules/*``.

Both dialects are anchored on the whole path.
"""
from __future__ import annotations

import re
from functools import lru_cache
from typing import Pattern

from .errors import PatternInvalid

WILDCARDS = ("*", "?", "[")


def has_wildcard(pattern: str) -> bool:
    return any(c in pattern for c in WILDCARDS)


def _translate_path_glob(pattern: str) -> str:
    out = []
    i, n = 0, len(pattern)
    while i < n:
        c = pattern[i]
        if c == "*":
            if pattern.startswith("**", i):
                i += 2
                if i < n and pattern[i] == "/":
                    # "**/" may also match zero directories
                    out.append("(?:.*/)?")
                    i += 1
                else:
                    out.append(".*")
                continue
            out.append("[^/]*")
        elif c == "?":
            out.append("[^/]")
        elif c == "[":
            j = pattern.find("]", i + 1)
            if j == -1:
                raise PatternInvalid(f"unterminated character class in {pattern!r}")
            body = pattern[i + 1:j]
            if not body:
                raise PatternInvalid(f"empty character class in {pattern!r}")
            if body[0] == "!":
                body = "^" + body[1:]
            out.append("[" + body.replace("\\", "\\\\") + "]")
            i = j
        else:
            out.append(re.escape(c))
        i += 1
    return "".join(out)


def _translate_glob_lite(pattern: str) -> str:
    return "".join(".*" if c == "*" else "." if c == "?" else re.escape(c) for c in pattern)


def compile_pattern(pattern: str, cross_segments: bool = False) -> Pattern[str]:
    if not isinstance(pattern, str) or not pattern.strip():
        raise PatternInvalid(f"empty or non-string pattern: {pattern!r}")
    return _compile(pattern, cross_segments)


@lru_cache(maxsize=2048)
def _compile(pattern: str, cross_segments: bool) -> Pattern[str]:
    body = _translate_glob_lite(pattern) if cross_segments else _translate_path_glob(pattern)
    try:
        return re.compile(r"\A" + body + r"\Z", re.DOTALL)
    except re.error as e:
        raise PatternInvalid(f"{pattern!r}: {e}") from e


def matches(pattern: str, path: str, cross_segments: bool = False) -> bool:
    """Return True if ``path`` matches ``pattern`` (whole-string, anchored)."""
    return compile_pattern(pattern, cross_segments).match(path) is not None
