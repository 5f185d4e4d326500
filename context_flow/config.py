from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import yaml

from .errors import ConfigMalformed, ConfigUnavailable

logger = logging.getLogger("context_flow.config")

FORMATS = ("markdown", "json", "yaml")
FORMAT_EXTENSIONS = {"markdown": "md", "json": "json", "yaml": "yaml"}

DEFAULT_HEADER = (
    "# Project Update Context\n\n"
    "- Trigger: `{{trigger}}` ({{triggerKind}})\n"
    "- Branch: {{branch}}\n"
    "- Timestamp: {{timestamp}}\n"
    "- Total Changes: {{totalChanges}}"
)


@dataclass
class GitConfig:
    enabled: bool = True
    repository_path: str = "."
    branch: str = "HEAD"
    show_git_status: bool = True
    timeout: float = 10.0


@dataclass
class OutputTarget:
    name: str
    enabled: bool = True
    output_path: str = ""
    format: str = "markdown"
    header_template: str = ""
    template_path: Optional[str] = None
    keep_history: Optional[bool] = None
    max_history_files: Optional[int] = None

    @property
    def extension(self) -> str:
        return FORMAT_EXTENSIONS.get(self.format, "txt")


@dataclass
class OutputConfig:
    enabled: bool = True
    targets: Dict[str, OutputTarget] = field(default_factory=dict)
    keep_history: bool = True
    history_path: str = "AI_Context/history"
    max_history_files: int = 10
    create_missing_directories: bool = True

    def keeps_history(self, target: OutputTarget) -> bool:
        return self.keep_history if target.keep_history is None else target.keep_history

    def history_limit(self, target: OutputTarget) -> int:
        return self.max_history_files if target.max_history_files is None else target.max_history_files


def _default_targets() -> Dict[str, OutputTarget]:
    return {
        "claude": OutputTarget(
            name="claude", output_path="AI_Context/claude/context.md",
            format="markdown", header_template=DEFAULT_HEADER,
        ),
        "chatgpt": OutputTarget(
            name="chatgpt", output_path="AI_Context/chatgpt/context.json", format="json",
        ),
    }


@dataclass
class MonitorConfig:
    watch_all_files: bool = True
    debounce_time: int = 100  # milliseconds
    ignored_patterns: List[str] = field(default_factory=lambda: ["node_modules/*", "dist/*", ".git/*", "*.log"])
    watch_directories: List[str] = field(default_factory=list)
    relational_map: Dict[str, List[str]] = field(default_factory=dict)
    git: GitConfig = field(default_factory=GitConfig)
    output: OutputConfig = field(default_factory=lambda: OutputConfig(targets=_default_targets()))
    ignore_file: str = ".gitignore"
    status_interval: float = 300.0
    poll_interval: float = 0.5

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_time / 1000.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MonitorConfig":
        """Validate a parsed document; bad or missing fields fall back to defaults."""
        d = cls()
        r = _Reader(data, "")
        cfg = cls(
            watch_all_files=r.get("watchAllFiles", d.watch_all_files, _bool),
            debounce_time=r.get("debounceTime", d.debounce_time, _non_negative_int),
            ignored_patterns=r.get("ignoredPatterns", d.ignored_patterns, _str_list),
            watch_directories=r.get("watchDirectories", d.watch_directories, _str_list),
            relational_map=r.get("relationalMap", d.relational_map, _relational_map),
            ignore_file=r.get("ignoreFile", d.ignore_file, _str),
            status_interval=r.get("statusInterval", d.status_interval, _positive_float),
            poll_interval=r.get("pollInterval", d.poll_interval, _positive_float),
        )
        g = r.section("gitConfig")
        cfg.git = GitConfig(
            enabled=g.get("enabled", d.git.enabled, _bool),
            repository_path=g.get("repositoryPath", d.git.repository_path, _str),
            branch=g.get("branch", d.git.branch, _str),
            show_git_status=g.get("showGitStatus", d.git.show_git_status, _bool),
            timeout=g.get("timeout", d.git.timeout, _positive_float),
        )
        o = r.section("outputConfig")
        cfg.output = OutputConfig(
            enabled=o.get("enabled", d.output.enabled, _bool),
            targets=d.output.targets,
            keep_history=o.get("keepHistory", d.output.keep_history, _bool),
            history_path=o.get("historyPath", d.output.history_path, _str),
            max_history_files=o.get("maxHistoryFiles", d.output.max_history_files, _non_negative_int),
            create_missing_directories=o.get(
                "createMissingDirectories", d.output.create_missing_directories, _bool
            ),
        )
        raw_targets = o.get("targets", None, _dict)
        if raw_targets is not None:
            cfg.output.targets = {}
            for name, raw in raw_targets.items():
                target = _parse_target(str(name), raw, o.path)
                if target is not None:
                    cfg.output.targets[target.name] = target
        return cfg


def _parse_target(name: str, raw: Any, parent: str) -> Optional[OutputTarget]:
    if not isinstance(raw, dict):
        logger.warning("%s.targets.%s: expected a mapping, skipping target", parent, name)
        return None
    t = _Reader(raw, f"{parent}.targets.{name}")
    output_path = t.get("outputPath", "", _str)
    if not output_path:
        logger.warning("%s: missing outputPath, skipping target", t.path)
        return None
    fmt = t.get("format", "markdown", _format)
    return OutputTarget(
        name=name,
        enabled=t.get("enabled", True, _bool),
        output_path=output_path,
        format=fmt,
        header_template=t.get("headerTemplate", DEFAULT_HEADER if fmt == "markdown" else "", _str),
        template_path=t.get("templatePath", None, _str),
        keep_history=t.get("keepHistory", None, _bool),
        max_history_files=t.get("maxHistoryFiles", None, _non_negative_int),
    )


class _Reader:
    def __init__(self, data: Any, path: str):
        self.data = data if isinstance(data, dict) else {}
        self.path = path

    def get(self, key: str, default: Any, conv: Callable[[Any], Any]) -> Any:
        if key not in self.data or self.data[key] is None:
            return default
        try:
            return conv(self.data[key])
        except (TypeError, ValueError) as e:
            where = f"{self.path}.{key}" if self.path else key
            logger.warning("Invalid value for %s (%s), using default %r", where, e, default)
            return default

    def section(self, key: str) -> "_Reader":
        val = self.data.get(key)
        where = f"{self.path}.{key}" if self.path else key
        if val is not None and not isinstance(val, dict):
            logger.warning("Invalid value for %s (expected a mapping), using defaults", where)
        return _Reader(val, where)


def _bool(v: Any) -> bool:
    if isinstance(v, bool):
        return v
    raise TypeError(f"expected a boolean, got {v!r}")


def _str(v: Any) -> str:
    if isinstance(v, str):
        return v
    raise TypeError(f"expected a string, got {v!r}")


def _non_negative_int(v: Any) -> int:
    if isinstance(v, bool) or not isinstance(v, (int, float)) or v < 0:
        raise ValueError(f"expected a non-negative number, got {v!r}")
    return int(v)


def _positive_float(v: Any) -> float:
    if isinstance(v, bool) or not isinstance(v, (int, float)) or v <= 0:
        raise ValueError(f"expected a positive number, got {v!r}")
    return float(v)


def _str_list(v: Any) -> List[str]:
    if isinstance(v, str):
        return [v]
    if not isinstance(v, list) or not all(isinstance(x, str) for x in v):
        raise TypeError(f"expected a list of strings, got {v!r}")
    return list(v)


def _dict(v: Any) -> Dict[str, Any]:
    if not isinstance(v, dict):
        raise TypeError(f"expected a mapping, got {v!r}")
    return v


def _relational_map(v: Any) -> Dict[Any, Any]:
    # Entry-level validation happens in DependencyMap so one bad entry only drops itself
    return {k: ([t] if isinstance(t, str) else t) for k, t in _dict(v).items()}


def _format(v: Any) -> str:
    s = _str(v).lower()
    if s == "md":
        s = "markdown"
    if s not in FORMATS:
        raise ValueError(f"unsupported format {v!r}")
    return s


def default_config_yaml() -> str:
    return """# context-flow configuration
watchAllFiles: true        # set to false to only watch watchDirectories and relationalMap paths
debounceTime: 100          # milliseconds of quiet before a change is processed
ignoredPatterns:           # in addition to the ignore file; '*' also matches '/'
  - "node_modules/*"
  - "dist/*"
  - ".git/*"
  - "*.log"
watchDirectories: []       # globs, used when watchAllFiles is false
ignoreFile: .gitignore
statusInterval: 300        # seconds between idle status checks
pollInterval: 0.5          # seconds between filesystem scans

# a change to a key affects its targets; a change to a target is reported
# against its key. '**' spans directories, '*' stays within one.
relationalMap:
  src/components/sidebar.tsx:
    - src/layout.tsx
    - src/app.tsx
    - tailwind.config.js
  tailwind.config.js:
    - "src/components/**/*.tsx"

gitConfig:
  enabled: true
  repositoryPath: .
  branch: HEAD             # ref the working tree is compared against
  showGitStatus: true      # include added/modified/deleted status per file
  timeout: 10              # seconds before a hanging git call is abandoned

outputConfig:
  enabled: true
  keepHistory: true
  historyPath: AI_Context/history
  maxHistoryFiles: 10
  createMissingDirectories: true
  targets:
    claude:
      enabled: true
      outputPath: AI_Context/claude/context.md
      format: markdown
      headerTemplate: |-
        # Project Update Context

        - Trigger: `{{trigger}}` ({{triggerKind}})
        - Branch: {{branch}}
        - Timestamp: {{timestamp}}
        - Total Changes: {{totalChanges}}
    chatgpt:
      enabled: true
      outputPath: AI_Context/chatgpt/context.json
      format: json
"""


def read_config(path: Path) -> Dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigUnavailable(f"{path}: {e}") from e
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigMalformed(f"{path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigMalformed(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def ensure_config(path: Path) -> bool:
    """Write the default config if ``path`` is missing. Returns True if written."""
    if path.exists():
        return False
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(default_config_yaml(), encoding="utf-8")
    return True


def load_config(path: Path) -> MonitorConfig:
    """Load and validate the config; never raises.

    A missing file is replaced by the default document. Unreadable or
    malformed files yield the built-in defaults.
    """
    if not path.exists():
        logger.warning("Config not found at %s, creating default", path)
        try:
            ensure_config(path)
        except OSError as e:
            logger.error("Failed to create default config: %s", e)
            return MonitorConfig()
    try:
        data = read_config(path)
    except ConfigUnavailable as e:
        logger.warning("Config unavailable, using defaults: %s", e)
        return MonitorConfig()
    except ConfigMalformed as e:
        logger.error("Failed to parse config, using defaults: %s", e)
        return MonitorConfig()
    return MonitorConfig.from_dict(data)
