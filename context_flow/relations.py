from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Pattern, Tuple

from .errors import PatternInvalid
from .models import normalize_path
from .patterns import compile_pattern, has_wildcard

logger = logging.getLogger("context_flow.relations")


@dataclass(frozen=True)
class _Term:
    text: str
    rx: Pattern[str]
    wild: bool

    def hit(self, path: str) -> bool:
        if self.text == path:
            return True
        return self.wild and self.rx.match(path) is not None

    @classmethod
    def parse(cls, raw: Any) -> "_Term":
        if not isinstance(raw, str):
            raise PatternInvalid(f"expected a path or glob string, got {raw!r}")
        text = normalize_path(raw)
        return cls(text, compile_pattern(text), has_wildcard(text))


@dataclass(frozen=True)
class DependencyEntry:
    key: _Term
    targets: Tuple[_Term, ...]


class DependencyMap:
    """Bidirectional, glob-aware index of declared file relationships.

    ``{"a.ts": ["b.ts"]}`` means a change to ``a.ts`` affects ``b.ts``
    (forward) and that ``b.ts`` is affected by ``a.ts`` (reverse). Keys and
    targets may be globs (``**`` spans directories, ``*`` stays in a segment).
    """

    def __init__(self, entries: Iterable[DependencyEntry] = ()):
        self._entries: Tuple[DependencyEntry, ...] = tuple(entries)

    def __len__(self) -> int:
        return len(self._entries)

    @classmethod
    def from_mapping(cls, mapping: Mapping[Any, Any]) -> "DependencyMap":
        entries: List[DependencyEntry] = []
        for raw_key, raw_targets in (mapping or {}).items():
            try:
                if isinstance(raw_targets, str):
                    raw_targets = [raw_targets]
                if not isinstance(raw_targets, (list, tuple)):
                    raise PatternInvalid(f"targets must be a list, got {raw_targets!r}")
                key = _Term.parse(raw_key)
                seen = set()
                targets = []
                for t in raw_targets:
                    term = _Term.parse(t)
                    if term.text not in seen:
                        seen.add(term.text)
                        targets.append(term)
            except PatternInvalid as e:
                logger.warning("Skipping relational map entry %r: %s", raw_key, e)
                continue
            entries.append(DependencyEntry(key, tuple(targets)))
        return cls(entries)

    def as_mapping(self) -> Dict[str, List[str]]:
        return {e.key.text: [t.text for t in e.targets] for e in self._entries}

    def watch_terms(self) -> List[str]:
        """Every key and target, in declaration order."""
        out: List[str] = []
        for e in self._entries:
            for t in (e.key, *e.targets):
                if t.text not in out:
                    out.append(t.text)
        return out

    def forward(self, path: str) -> List[str]:
        rel = normalize_path(path)
        out: List[str] = []
        for e in self._entries:
            if e.key.hit(rel):
                _extend(out, (t.text for t in e.targets), rel)
        return out

    def reverse(self, path: str) -> List[str]:
        rel = normalize_path(path)
        out: List[str] = []
        for e in self._entries:
            if any(t.hit(rel) for t in e.targets):
                _extend(out, (e.key.text,), rel)
        return out

    def related_to(self, path: str) -> List[str]:
        """Union of forward and reverse relations, in order of first discovery.

        The queried path itself is never reported as related to itself.
        """
        out = self.forward(path)
        _extend(out, self.reverse(path), normalize_path(path))
        return out


def _extend(out: List[str], items: Iterable[str], own: str) -> None:
    for item in items:
        if item != own and item not in out:
            out.append(item)
