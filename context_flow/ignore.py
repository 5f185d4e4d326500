from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from .errors import IgnoreSourceUnavailable, PatternInvalid
from .models import normalize_path
from .patterns import compile_pattern

logger = logging.getLogger("context_flow.ignore")

STATE_DIR_NAME = ".context-flow"

# Noise that is never worth a context update
DEFAULT_IGNORE_NAMES = [
    ".git", ".hg", ".svn", ".vs", ".idea", ".vscode",
    "node_modules", ".venv", "venv", "__pycache__",
    ".pytest_cache", ".mypy_cache", ".ruff_cache", ".tox",
    "dist", "build", STATE_DIR_NAME,
]
DEFAULT_IGNORE_PATTERNS = (
    [f"{name}/*" for name in DEFAULT_IGNORE_NAMES]
    + [f"*/{name}/*" for name in DEFAULT_IGNORE_NAMES]
    + ["*.log", "*.db"]
)


def read_ignore_file(path: Path) -> List[str]:
    """Read line-oriented patterns, skipping blanks and ``#`` comments."""
    try:
        text = path.read_text(encoding="utf-8", errors="ignore")
    except OSError as e:
        raise IgnoreSourceUnavailable(f"{path}: {e}") from e
    out = []
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("!"):
            logger.debug("Negated ignore pattern %r is not supported, skipping", line)
            continue
        out.append(line)
    return out


class IgnorePolicy:
    """Union of ignore-file patterns, configured patterns and built-in defaults.

    Patterns use glob-lite semantics (see ``patterns``): ``*`` crosses ``/``.
    Immutable once built; reloads build a new instance.
    """

    def __init__(self, patterns: Iterable[str] = (), include_defaults: bool = True):
        seen = set()
        compiled: List[Tuple[str, object]] = []
        source = list(DEFAULT_IGNORE_PATTERNS) if include_defaults else []
        source.extend(patterns)
        for pat in source:
            if not isinstance(pat, str):
                logger.warning("Ignoring non-string ignore pattern %r", pat)
                continue
            pat = pat.strip().replace("\\", "/")
            while pat.startswith("./"):
                pat = pat[2:]
            # ignore-file "/dist" is root-anchored; paths here are already relative
            pat = pat.lstrip("/")
            if not pat or pat in seen:
                continue
            seen.add(pat)
            try:
                compiled.append((pat, compile_pattern(pat, cross_segments=True)))
            except PatternInvalid as e:
                logger.warning("Skipping ignore pattern: %s", e)
        self._compiled = tuple(compiled)

    @property
    def patterns(self) -> List[str]:
        return [p for p, _ in self._compiled]

    def __len__(self) -> int:
        return len(self._compiled)

    def should_ignore(self, path: str) -> bool:
        rel = normalize_path(path)
        return any(rx.match(rel) for _, rx in self._compiled)

    @classmethod
    def from_sources(
        cls,
        ignore_file: Optional[Path] = None,
        patterns: Iterable[str] = (),
        extra: Iterable[str] = (),
    ) -> "IgnorePolicy":
        """Build from an ignore file (optional), configured patterns and ``extra``.

        An unreadable ignore file is logged and treated as empty.
        """
        file_patterns: List[str] = []
        if ignore_file is not None:
            if ignore_file.exists():
                try:
                    file_patterns = read_ignore_file(ignore_file)
                    logger.info("Loaded %d pattern(s) from %s", len(file_patterns), ignore_file)
                except IgnoreSourceUnavailable as e:
                    logger.warning("Could not read ignore file, using defaults only: %s", e)
            else:
                logger.info("No ignore file at %s, using defaults only", ignore_file)
        return cls([*file_patterns, *patterns, *extra])
