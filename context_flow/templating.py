from __future__ import annotations

from typing import Any, Dict

from .models import ContextArtifact


def _render_value(val: Any, ctx: Dict[str, Any]) -> Any:
    if isinstance(val, str):
        out = val
        for k, v in ctx.items():
            if isinstance(v, (str, int, float)):
                out = out.replace("{{" + k + "}}", str(v))
        return out
    elif isinstance(val, dict):
        return {k: _render_value(v, ctx) for k, v in val.items()}
    elif isinstance(val, list):
        return [_render_value(x, ctx) for x in val]
    return val


def render_template(template: Any, context: Dict[str, Any]) -> Any:
    """Render {{placeholders}} in a template string (or nested dict/list of strings).

    Unknown placeholders are left as-is.
    """
    return _render_value(template, context)


def artifact_context(artifact: ContextArtifact) -> Dict[str, Any]:
    """Placeholder values exposed to header templates."""
    counts = artifact.counts()
    changes = "\n".join(f"- `{r.path}` ({r.status})" for r in artifact.changed_files) or "- (none)"
    related = "\n".join(f"- `{p}`" for p in artifact.related_files) or "- (none)"
    git_status = (
        f"{counts['added']} added, {counts['modified']} modified, "
        f"{counts['deleted']} deleted, {counts['unknown']} other"
    )
    return {
        "timestamp": artifact.timestamp,
        "branch": artifact.branch or "unknown",
        "trigger": artifact.trigger.path,
        "triggerKind": artifact.trigger.kind,
        "totalChanges": len(artifact.changed_files),
        "changes": changes,
        "relatedFiles": related,
        "gitStatus": git_status,
        "addedCount": counts["added"],
        "modifiedCount": counts["modified"],
        "deletedCount": counts["deleted"],
    }
