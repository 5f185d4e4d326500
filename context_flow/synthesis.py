"""Render change context for downstream consumers and keep a bounded history.

Each enabled output target gets the artifact in its own format, written over
the previous one. When history is on, a timestamp-named copy is added to the
history directory and the oldest copies beyond the target's limit are removed.
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import yaml

from .config import OutputConfig, OutputTarget
from .errors import PublishFailure
from .models import ChangeEvent, ContextArtifact, DiffRecord, UNKNOWN, relative_to_root
from .templating import artifact_context, render_template

logger = logging.getLogger("context_flow.synthesis")

CHANGED_HEADING = "### Changed Files"
RELATED_HEADING = "### Related Files"


def utc_timestamp(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def history_stamp(now: Optional[datetime] = None) -> str:
    """ISO timestamp with ``:`` and ``.`` replaced so it is a safe, sortable file name part."""
    now = now or datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.%fZ").replace(":", "-").replace(".", "-")


def render_markdown(artifact: ContextArtifact, header: str) -> str:
    parts = []
    if header:
        parts.append(render_template(header, artifact_context(artifact)).rstrip() + "\n\n")
    parts.append(CHANGED_HEADING + "\n")
    for rec in artifact.changed_files:
        parts.append(f"- `{rec.path}` ({rec.status})\n")
    if artifact.related_files:
        parts.append("\n" + RELATED_HEADING + "\n")
        for p in artifact.related_files:
            parts.append(f"- `{p}`\n")
    return "".join(parts)


def render_structured(artifact: ContextArtifact, header: str, fmt: str) -> str:
    doc: Dict[str, Any] = artifact.to_dict()
    if header:
        doc["header"] = render_template(header, artifact_context(artifact))
    if fmt == "yaml":
        return yaml.safe_dump(doc, sort_keys=False, allow_unicode=True)
    return json.dumps(doc, indent=2, ensure_ascii=False) + "\n"


def render(artifact: ContextArtifact, header: str = "") -> str:
    if artifact.format == "markdown":
        return render_markdown(artifact, header)
    if artifact.format in ("json", "yaml"):
        return render_structured(artifact, header, artifact.format)
    raise ValueError(f"unsupported format {artifact.format!r}")


def _parse_markdown(text: str) -> Dict[str, List[Any]]:
    # The header may quote the section headings; the generated lists come last
    changed: List[Dict[str, str]] = []
    related: List[str] = []
    start = text.rfind(CHANGED_HEADING)
    if start == -1:
        return {"changedFiles": changed, "relatedFiles": related}
    section = None
    for line in text[start:].splitlines():
        s = line.strip()
        if s == CHANGED_HEADING:
            section = changed
            continue
        if s == RELATED_HEADING:
            section = related
            continue
        if not s.startswith("- `"):
            continue
        end = s.find("`", 3)
        if end == -1:
            continue
        path = s[3:end]
        if section is changed:
            rest = s[end + 1:].strip()
            status = rest[1:-1] if rest.startswith("(") and rest.endswith(")") else UNKNOWN
            changed.append({"file": path, "status": status})
        elif section is related:
            related.append(path)
    return {"changedFiles": changed, "relatedFiles": related}


def read_artifact(path: Path, fmt: str) -> Dict[str, List[Any]]:
    """Parse a published artifact back into ``{changedFiles, relatedFiles}``."""
    text = path.read_text(encoding="utf-8")
    if fmt == "markdown":
        return _parse_markdown(text)
    doc = yaml.safe_load(text) if fmt == "yaml" else json.loads(text)
    return {"changedFiles": list(doc.get("changes", [])), "relatedFiles": list(doc.get("relatedFiles", []))}


class ContextSynthesizer:
    def __init__(self, root: Path, output: OutputConfig):
        self.root = root
        self.output = output

    def _resolve(self, p: str) -> Path:
        path = Path(p)
        return path if path.is_absolute() else self.root / path

    @property
    def history_dir(self) -> Path:
        return self._resolve(self.output.history_path)

    def managed_paths(self) -> List[str]:
        """Project-relative outputs written by this synthesizer, for the ignore list.

        Absolute output paths are made relative to the root; those outside it are dropped.
        """
        out = []
        for target in self.output.targets.values():
            rel = relative_to_root(str(self._resolve(target.output_path)), self.root)
            if rel:
                out.append(rel)
        hist = relative_to_root(str(self.history_dir), self.root)
        if hist:
            out.append(hist + "/*")
        return out

    def synthesize(
        self,
        change: ChangeEvent,
        diff_records: Sequence[DiffRecord],
        related_paths: Sequence[str],
        branch: Optional[str] = None,
    ) -> ContextArtifact:
        """Build the artifact; the triggering path is always among the changed files."""
        changed: List[DiffRecord] = []
        seen = set()
        for rec in diff_records:
            if rec.path not in seen:
                seen.add(rec.path)
                changed.append(rec)
        if change.path not in seen:
            changed.insert(0, DiffRecord.for_change(change))
        related = []
        for p in related_paths:
            if p not in related:
                related.append(p)
        return ContextArtifact(
            timestamp=utc_timestamp(),
            trigger=change,
            changed_files=changed,
            related_files=related,
            branch=branch,
        )

    def _header(self, target: OutputTarget) -> str:
        if not target.template_path:
            return target.header_template
        path = self._resolve(target.template_path)
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise PublishFailure(target.name, f"cannot read template {path}: {e}") from e

    def _ensure_dir(self, target: OutputTarget, directory: Path) -> None:
        if directory.is_dir():
            return
        if not self.output.create_missing_directories:
            raise PublishFailure(target.name, f"directory {directory} does not exist")
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PublishFailure(target.name, f"cannot create {directory}: {e}") from e

    def publish(self, artifact: ContextArtifact, target: OutputTarget) -> Path:
        """Write ``artifact`` for ``target``; raises PublishFailure."""
        content = render(replace(artifact, format=target.format), self._header(target))
        out = self._resolve(target.output_path)
        self._ensure_dir(target, out.parent)
        try:
            out.write_text(content, encoding="utf-8")
        except OSError as e:
            raise PublishFailure(target.name, f"cannot write {out}: {e}") from e
        logger.info("Context written for %s -> %s", target.name, out)
        if self.output.keeps_history(target):
            self.save_history(target, content)
        return out

    def publish_all(self, artifact: ContextArtifact) -> Dict[str, Path]:
        """Publish to every enabled target; one target failing never blocks the others."""
        written: Dict[str, Path] = {}
        if not self.output.enabled:
            return written
        for target in self.output.targets.values():
            if not target.enabled:
                continue
            try:
                written[target.name] = self.publish(artifact, target)
            except PublishFailure as e:
                logger.error("Failed to publish context: %s", e)
            except Exception:
                logger.exception("Unexpected error publishing context for %s", target.name)
        return written

    def save_history(self, target: OutputTarget, content: str) -> Path:
        hist = self.history_dir
        self._ensure_dir(target, hist)
        stamp = history_stamp()
        n = 0
        while True:
            # zero-padded counter keeps name order equal to creation order
            path = hist / f"{target.name}_{stamp}-{n:03d}.{target.extension}"
            try:
                # exclusive create: concurrent pipelines never share a history file
                with path.open("x", encoding="utf-8") as f:
                    f.write(content)
                break
            except FileExistsError:
                n += 1
            except OSError as e:
                raise PublishFailure(target.name, f"cannot write history {path}: {e}") from e
        self.cleanup_history(target)
        return path

    def history_entries(self, target: OutputTarget) -> List[Path]:
        """History files of ``target``, newest first."""
        hist = self.history_dir
        if not hist.is_dir():
            return []
        prefix = f"{target.name}_"
        names = sorted(
            (n for n in os.listdir(hist) if n.startswith(prefix) and n[len(prefix):][:1].isdigit()),
            reverse=True,
        )
        return [hist / n for n in names]

    def cleanup_history(self, target: OutputTarget) -> int:
        limit = self.output.history_limit(target)
        removed = 0
        for path in self.history_entries(target)[limit:]:
            try:
                path.unlink()
                removed += 1
            except FileNotFoundError:
                # another pipeline got there first
                continue
            except OSError as e:
                logger.warning("Failed to remove history file %s: %s", path, e)
        return removed
