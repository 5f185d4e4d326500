from pathlib import Path

import yaml

from context_flow.config import (
    DEFAULT_HEADER,
    MonitorConfig,
    default_config_yaml,
    ensure_config,
    load_config,
)


def test_missing_config_is_created_with_defaults(tmp_path: Path):
    path = tmp_path / ".context-flow" / "config.yaml"
    cfg = load_config(path)
    assert path.exists()
    assert cfg.watch_all_files is True
    assert cfg.debounce_time == 100
    assert cfg.debounce_seconds == 0.1
    assert set(cfg.output.targets) == {"claude", "chatgpt"}
    assert cfg.output.targets["claude"].header_template == DEFAULT_HEADER
    assert cfg.output.targets["chatgpt"].format == "json"
    assert cfg.relational_map["tailwind.config.js"] == ["src/components/**/*.tsx"]
    assert cfg.git.branch == "HEAD"
    # second call does not rewrite
    assert ensure_config(path) is False


def test_malformed_config_falls_back_to_defaults(tmp_path: Path):
    path = tmp_path / "config.yaml"
    path.write_text("watchAllFiles: [unclosed\n  debounceTime: : :\n", encoding="utf-8")
    cfg = load_config(path)
    assert cfg == MonitorConfig()
    # the broken file is left for the user to fix
    assert "unclosed" in path.read_text(encoding="utf-8")


def test_non_mapping_document_is_malformed(tmp_path: Path):
    path = tmp_path / "config.yaml"
    path.write_text("- just\n- a list\n", encoding="utf-8")
    assert load_config(path) == MonitorConfig()


def test_unreadable_config_falls_back_to_defaults(tmp_path: Path):
    path = tmp_path / "config.yaml"
    path.mkdir()
    assert load_config(path) == MonitorConfig()


def test_invalid_fields_are_replaced_individually(tmp_path: Path):
    path = tmp_path / "config.yaml"
    path.write_text(
        """
watchAllFiles: 3            # not a bool
debounceTime: fast          # not a number
ignoredPatterns: "*.tmp"    # single string is promoted
relationalMap:
  a.ts: b.ts
gitConfig: "nope"
outputConfig:
  maxHistoryFiles: 2
  targets:
    notes:
      outputPath: out/notes.yaml
      format: yaml
      maxHistoryFiles: 5
    broken: 7
    nopath:
      format: json
    weird:
      outputPath: out/weird.txt
      format: docx
""",
        encoding="utf-8",
    )
    cfg = load_config(path)
    assert cfg.watch_all_files is True
    assert cfg.debounce_time == 100
    assert cfg.ignored_patterns == ["*.tmp"]
    assert cfg.relational_map == {"a.ts": ["b.ts"]}
    assert cfg.git.enabled is True
    assert set(cfg.output.targets) == {"notes", "weird"}
    notes = cfg.output.targets["notes"]
    assert notes.format == "yaml" and notes.extension == "yaml"
    assert cfg.output.history_limit(notes) == 5
    assert cfg.output.keeps_history(notes) is True
    assert cfg.output.targets["weird"].format == "markdown"
    assert cfg.output.history_limit(cfg.output.targets["weird"]) == 2


def test_empty_document_means_defaults(tmp_path: Path):
    path = tmp_path / "config.yaml"
    path.write_text("# nothing here\n", encoding="utf-8")
    assert load_config(path) == MonitorConfig()


def test_default_document_round_trips():
    data = yaml.safe_load(default_config_yaml())
    cfg = MonitorConfig.from_dict(data)
    defaults = MonitorConfig()
    assert cfg.ignored_patterns == defaults.ignored_patterns
    assert cfg.output == defaults.output
    assert cfg.git == defaults.git
