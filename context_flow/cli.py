import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import typer

from .errors import WatcherFault


app = typer.Typer(help="Context Flow: watch a project and publish change context for AI assistants")

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format=LOG_FORMAT)


def _project(dir: Optional[str]) -> Path:
    from .util import project_root_from_cwd

    return Path(dir).resolve() if dir else project_root_from_cwd()


@app.command()
def start(
    dir: Optional[str] = typer.Option(None, "--dir", help="Project directory to watch (defaults to CWD)", metavar="PATH"),
    config: Optional[str] = typer.Option(None, "--config", help="Config file (defaults to .context-flow/config.yaml)", metavar="FILE"),
    poll: Optional[float] = typer.Option(None, help="Override the polling interval in seconds"),
    yes: bool = typer.Option(False, "--yes", help="Auto-confirm prompts like adding .context-flow to .gitignore"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug messages"),
):
    """Run the monitor on a project.

    - Creates a `.context-flow/` directory (and a default config) under the project root.
    - Offers to add `.context-flow` to `.gitignore` if a Git repo is detected.
    - Exits non-zero if the watcher fails so a supervisor can restart it.
    """
    from .ignore import STATE_DIR_NAME
    from .runtime import run_monitor
    from .util import add_to_gitignore, default_config_path, ensure_state_dir, is_git_repo, is_in_gitignore

    configure_logging(verbose)
    logger = logging.getLogger("context_flow.cli")
    project = _project(dir)
    try:
        ensure_state_dir(project)
    except OSError as e:
        logger.error("Failed to create state directory under %s: %s", project, e)
        raise typer.Exit(code=2)

    if is_git_repo(project):
        gi = project / ".gitignore"
        if is_in_gitignore(project, STATE_DIR_NAME):
            typer.echo(f"{STATE_DIR_NAME} already present in {gi}")
        elif yes or typer.confirm(f"Add '{STATE_DIR_NAME}' to {gi}?"):
            if add_to_gitignore(project, STATE_DIR_NAME):
                typer.echo(f"Added {STATE_DIR_NAME} to {gi}")

    config_path = Path(config).resolve() if config else default_config_path(project)
    logger.info("Starting file monitoring system...")
    try:
        asyncio.run(run_monitor(project, config_path, poll_interval=poll))
    except WatcherFault as e:
        logger.error("Fatal watcher error: %s", e)
        raise typer.Exit(code=1)
    except KeyboardInterrupt:
        logger.info("Monitor stopped.")


@app.command()
def init(
    dir: Optional[str] = typer.Option(None, "--dir", help="Project directory (defaults to CWD)", metavar="PATH"),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing config"),
):
    """Write the default configuration to .context-flow/config.yaml."""
    from .config import default_config_yaml, ensure_config
    from .util import default_config_path, ensure_state_dir

    project = _project(dir)
    ensure_state_dir(project)
    path = default_config_path(project)
    if force and path.exists():
        path.write_text(default_config_yaml(), encoding="utf-8")
        typer.echo(f"Overwrote {path}")
    elif ensure_config(path):
        typer.echo(f"Created {path}")
    else:
        typer.echo(f"{path} already exists (use --force to overwrite)")


@app.command()
def related(
    path: str,
    dir: Optional[str] = typer.Option(None, "--dir", help="Project directory (defaults to CWD)", metavar="PATH"),
    config: Optional[str] = typer.Option(None, "--config", metavar="FILE"),
):
    """Show files related to PATH through the relational map (both directions)."""
    from .config import load_config
    from .models import relative_to_root
    from .relations import DependencyMap
    from .util import default_config_path

    configure_logging()
    project = _project(dir)
    cfg = load_config(Path(config) if config else default_config_path(project))
    dm = DependencyMap.from_mapping(cfg.relational_map)
    rel = relative_to_root(path, project) or path
    typer.echo(json.dumps({
        "path": rel,
        "affects": dm.forward(rel),
        "affectedBy": dm.reverse(rel),
        "related": dm.related_to(rel),
    }, indent=2))


@app.command()
def diff(
    dir: Optional[str] = typer.Option(None, "--dir", help="Project directory (defaults to CWD)", metavar="PATH"),
    config: Optional[str] = typer.Option(None, "--config", metavar="FILE"),
):
    """Show which files differ from the configured git ref."""
    from .config import load_config
    from .util import default_config_path
    from .vcs import DiffOracle

    configure_logging()
    project = _project(dir)
    cfg = load_config(Path(config) if config else default_config_path(project))
    oracle = DiffOracle(timeout=cfg.git.timeout)
    repo = (project / cfg.git.repository_path).resolve()
    records = asyncio.run(oracle.collect(repo, cfg.git.branch, cfg.git.show_git_status))
    typer.echo(json.dumps([r.to_dict() for r in records], indent=2))


def main():
    """Entry point for console_scripts."""
    app()


if __name__ == "__main__":
    main()
