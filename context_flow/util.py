import os
from pathlib import Path

from .ignore import STATE_DIR_NAME


def project_root_from_cwd() -> Path:
    return Path(os.getcwd())


def ensure_state_dir(root: Path) -> Path:
    state = root / STATE_DIR_NAME
    state.mkdir(parents=True, exist_ok=True)
    return state


def default_config_path(root: Path) -> Path:
    return root / STATE_DIR_NAME / "config.yaml"


def is_git_repo(root: Path) -> bool:
    return (root / ".git").exists()


def is_in_gitignore(root: Path, entry: str) -> bool:
    gi = root / ".gitignore"
    if not gi.exists():
        return False
    content = gi.read_text(encoding="utf-8", errors="ignore").splitlines()
    return any(line.strip().rstrip("/") == entry for line in content)


def add_to_gitignore(root: Path, entry: str) -> bool:
    gi = root / ".gitignore"
    if is_in_gitignore(root, entry):
        return False
    if gi.exists():
        content = gi.read_text(encoding="utf-8", errors="ignore").splitlines()
        content.append(entry)
        gi.write_text("\n".join(content) + "\n", encoding="utf-8")
    else:
        gi.write_text(entry + "\n", encoding="utf-8")
    return True
