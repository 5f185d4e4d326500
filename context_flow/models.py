from __future__ import annotations

import posixpath
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

# Raw and settled change kinds
ADDED = "added"
MODIFIED = "modified"
REMOVED = "removed"
CHANGE_KINDS = (ADDED, MODIFIED, REMOVED)

# Diff statuses
DELETED = "deleted"
UNKNOWN = "unknown"
DIFF_STATUSES = (ADDED, MODIFIED, DELETED, UNKNOWN)

_KIND_TO_STATUS = {ADDED: ADDED, MODIFIED: MODIFIED, REMOVED: DELETED}


def normalize_path(path: str) -> str:
    """Forward-slash, project-relative form used for every comparison."""
    s = str(path).replace("\\", "/").strip()
    if not s:
        return s
    s = posixpath.normpath(s)
    while s.startswith("./"):
        s = s[2:]
    return "" if s == "." else s


def relative_to_root(path: str, root: Path) -> Optional[str]:
    """Return the normalized path of ``path`` relative to ``root``, or None if outside."""
    p = Path(path)
    if not p.is_absolute():
        return normalize_path(str(p))
    try:
        rel = p.relative_to(root)
    except ValueError:
        try:
            rel = p.resolve().relative_to(root.resolve())
        except (ValueError, OSError):
            return None
    return normalize_path(rel.as_posix())


@dataclass
class FileEvent:
    kind: str  # "added" | "modified" | "removed"
    path: str
    ts: float


@dataclass(frozen=True)
class ChangeEvent:
    path: str
    kind: str
    timestamp: float


@dataclass(frozen=True)
class DiffRecord:
    path: str
    status: str = MODIFIED

    @classmethod
    def for_change(cls, event: ChangeEvent) -> "DiffRecord":
        return cls(event.path, _KIND_TO_STATUS.get(event.kind, UNKNOWN))

    def to_dict(self) -> Dict[str, str]:
        return {"file": self.path, "status": self.status}


@dataclass
class ContextArtifact:
    timestamp: str
    trigger: ChangeEvent
    changed_files: List[DiffRecord] = field(default_factory=list)
    related_files: List[str] = field(default_factory=list)
    branch: Optional[str] = None
    format: str = "markdown"

    def counts(self) -> Dict[str, int]:
        out = {s: 0 for s in DIFF_STATUSES}
        for rec in self.changed_files:
            out[rec.status] = out.get(rec.status, 0) + 1
        return out

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "trigger": {"file": self.trigger.path, "kind": self.trigger.kind},
            "branch": self.branch,
            "changes": [r.to_dict() for r in self.changed_files],
            "relatedFiles": list(self.related_files),
            "format": self.format,
        }
