from __future__ import annotations

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Callable, Dict, Iterable, List, Optional, Pattern, Tuple

from .config import MonitorConfig, load_config
from .debounce import Debouncer
from .errors import PatternInvalid, WatcherFault
from .ignore import DEFAULT_IGNORE_NAMES, IgnorePolicy
from .models import ADDED, MODIFIED, REMOVED, ChangeEvent, ContextArtifact, FileEvent, normalize_path, relative_to_root
from .patterns import compile_pattern, has_wildcard
from .relations import DependencyMap
from .state import MonitorState
from .synthesis import ContextSynthesizer
from .vcs import DiffOracle

logger = logging.getLogger("context_flow.runtime")

CONFIG_DEBOUNCE = 0.05  # seconds; reloads settle faster than file changes
CONFIG_KEY = "config"


class DirWatcher:
    """Polling watcher yielding added/modified/removed FileEvents.

    Watches a directory tree (pruning ``exclude_names`` directories and
    ``exclude_prefixes`` paths) or, with ``single_file``, one file. A watched
    directory that disappears or cannot be scanned raises WatcherFault.
    """

    def __init__(
        self,
        path: str,
        poll_interval: float = 1.0,
        exclude_prefixes: Optional[List[str]] = None,
        exclude_names: Iterable[str] = (),
        single_file: bool = False,
        on_ready: Optional[Callable[[int], None]] = None,
    ):
        self.root = Path(path)
        self.poll = poll_interval
        self.single_file = single_file
        self.on_ready = on_ready
        self._snapshot_files: Dict[str, float] = {}
        self._running = False
        self._excl: List[str] = [str(Path(p)) for p in (exclude_prefixes or [])]
        self._excl_names = set(exclude_names)

    def _excluded(self, sp: str) -> bool:
        for ex in self._excl:
            if sp == ex or sp.startswith(ex + os.sep):
                return True
        return False

    def _scan(self) -> Dict[str, float]:
        files: Dict[str, float] = {}
        if self.single_file:
            try:
                files[str(self.root)] = self.root.stat().st_mtime
            except FileNotFoundError:
                # editors may replace the file; it comes back on a later poll
                pass
            return files
        if not self.root.is_dir():
            raise WatcherFault(f"watch root {self.root} is missing or not a directory")

        def _fail(err: OSError) -> None:
            if err.filename and str(err.filename) == str(self.root):
                raise WatcherFault(f"cannot scan {self.root}: {err}") from err
            logger.debug("Skipping unreadable path: %s", err)

        for dirpath, dirnames, filenames in os.walk(self.root, onerror=_fail):
            dirnames[:] = [
                d for d in dirnames
                if d not in self._excl_names and not self._excluded(os.path.join(dirpath, d))
            ]
            for name in filenames:
                sp = os.path.join(dirpath, name)
                if self._excluded(sp):
                    continue
                try:
                    files[sp] = os.stat(sp).st_mtime
                except FileNotFoundError:
                    continue
        return files

    async def run(self) -> AsyncIterator[FileEvent]:
        self._running = True
        try:
            self._snapshot_files = self._scan()
        except WatcherFault:
            raise
        except OSError as e:
            raise WatcherFault(f"cannot scan {self.root}: {e}") from e
        if self.on_ready:
            self.on_ready(len(self._snapshot_files))
        while self._running:
            await asyncio.sleep(self.poll)
            try:
                new_files = self._scan()
            except WatcherFault:
                raise
            except OSError as e:
                raise WatcherFault(f"cannot scan {self.root}: {e}") from e
            oldf, newf = set(self._snapshot_files), set(new_files)
            created = newf - oldf
            deleted = oldf - newf
            modified = {p for p in (newf & oldf) if new_files[p] != self._snapshot_files[p]}
            self._snapshot_files = new_files
            ts = time.time()
            for p in sorted(created):
                yield FileEvent(ADDED, p, ts)
            for p in sorted(modified):
                yield FileEvent(MODIFIED, p, ts)
            for p in sorted(deleted):
                yield FileEvent(REMOVED, p, ts)

    def stop(self):
        self._running = False


@dataclass(frozen=True)
class WatchTargets:
    """Which project-relative paths the monitor reacts to."""

    watch_all: bool
    terms: Tuple[Tuple[str, Optional[Pattern[str]]], ...] = ()

    @classmethod
    def build(cls, config: MonitorConfig, relations: DependencyMap) -> "WatchTargets":
        if config.watch_all_files:
            return cls(True)
        terms = []
        for raw in [*config.watch_directories, *relations.watch_terms()]:
            term = normalize_path(raw).rstrip("/")
            if not term:
                continue
            try:
                rx = compile_pattern(term) if has_wildcard(term) else None
            except PatternInvalid as e:
                logger.warning("Skipping watch target: %s", e)
                continue
            terms.append((term, rx))
        return cls(False, tuple(terms))

    def accepts(self, rel: str) -> bool:
        if self.watch_all:
            return True
        for term, rx in self.terms:
            if rx is not None:
                if rx.match(rel):
                    return True
            elif rel == term or rel.startswith(term + "/"):
                return True
        return False


@dataclass(frozen=True)
class Snapshot:
    """One consistent view of the configuration, swapped wholesale on reload."""

    config: MonitorConfig
    ignore: IgnorePolicy
    relations: DependencyMap
    targets: WatchTargets
    synthesizer: ContextSynthesizer
    ignore_file: str


def build_snapshot(root: Path, config_path: Path) -> Snapshot:
    config = load_config(config_path)
    synthesizer = ContextSynthesizer(root, config.output)
    extra = synthesizer.managed_paths()
    cfg_rel = relative_to_root(str(config_path), root)
    if cfg_rel:
        extra.append(cfg_rel)
    ignore_file = root / config.ignore_file
    ignore = IgnorePolicy.from_sources(ignore_file, config.ignored_patterns, extra)
    relations = DependencyMap.from_mapping(config.relational_map)
    return Snapshot(
        config=config,
        ignore=ignore,
        relations=relations,
        targets=WatchTargets.build(config, relations),
        synthesizer=synthesizer,
        ignore_file=relative_to_root(str(ignore_file), root) or "",
    )


class Monitor:
    """Wire watcher, coalescer, diff oracle, dependency map and synthesizer together."""

    def __init__(
        self,
        root: Path,
        config_path: Path,
        diff_oracle: Optional[DiffOracle] = None,
        poll_interval: Optional[float] = None,
    ):
        self.root = Path(root).resolve()
        self.config_path = Path(config_path).resolve()
        self.state = MonitorState()
        self.snapshot = build_snapshot(self.root, self.config_path)
        self.diff = diff_oracle or DiffOracle(timeout=self.snapshot.config.git.timeout)
        self._poll_override = poll_interval
        self.debouncer = Debouncer(
            self.snapshot.config.debounce_seconds, self.process_change, should_ignore=self._ignored
        )
        self.config_debouncer = Debouncer(CONFIG_DEBOUNCE, self._on_config_settled, name=CONFIG_KEY)
        self.event_count = 0
        self.change_count = 0
        self._watchers: List[DirWatcher] = []
        self._tasks: List[asyncio.Task] = []

    @property
    def poll_interval(self) -> float:
        return self._poll_override or self.snapshot.config.poll_interval

    def _ignored(self, path: str) -> bool:
        return self.snapshot.ignore.should_ignore(path)

    def reload(self) -> Snapshot:
        """Rebuild config, ignore policy, dependency map and watch targets; swap atomically.

        Pipelines already running keep the snapshot they started with.
        """
        snap = build_snapshot(self.root, self.config_path)
        self.snapshot = snap
        self.debouncer.quiet = snap.config.debounce_seconds
        self.diff.timeout = snap.config.git.timeout
        logger.info(
            "Configuration reloaded: %d ignore pattern(s), %d relational entr%s, %d output target(s)",
            len(snap.ignore), len(snap.relations), "y" if len(snap.relations) == 1 else "ies",
            len(snap.config.output.targets),
        )
        return snap

    async def _on_config_settled(self, _change: ChangeEvent) -> None:
        logger.info("Configuration changed. Reloading...")
        self.reload()

    def on_file_event(self, ev: FileEvent) -> bool:
        """Feed one raw event; return True if it was handed to the coalescer."""
        rel = relative_to_root(ev.path, self.root)
        if not rel:
            return False
        snap = self.snapshot
        if snap.ignore_file and rel == snap.ignore_file:
            self.config_debouncer.push(CONFIG_KEY, ev.kind, ev.ts)
        if not snap.targets.accepts(rel):
            return False
        accepted = self.debouncer.push(rel, ev.kind, ev.ts)
        if not accepted:
            logger.debug("Ignored %s %s", ev.kind, rel)
        return accepted

    async def process_change(self, change: ChangeEvent) -> Optional[ContextArtifact]:
        """Run the full pipeline for one settled change: diff, relations, publish."""
        snap = self.snapshot
        if not self.state.begin_change():
            return None
        self.change_count += 1
        logger.info("File %s: %s", change.kind, change.path)
        try:
            cfg = snap.config
            records = []
            branch = None
            if cfg.git.enabled:
                repo = (self.root / cfg.git.repository_path).resolve()
                records = await self.diff.collect(repo, cfg.git.branch, cfg.git.show_git_status)
                branch = await self.diff.current_branch(repo)
            related = snap.relations.related_to(change.path)
            if related:
                logger.info("Related files that may need attention: %s", ", ".join(related))
            else:
                logger.info("No related files found for %s", change.path)
            artifact = snap.synthesizer.synthesize(change, records, related, branch)
            snap.synthesizer.publish_all(artifact)
            return artifact
        except Exception:
            logger.exception("Pipeline failed for %s", change.path)
            return None
        finally:
            self.state.finish_change()

    def report_status(self) -> bool:
        if self.state.take_idle_report():
            logger.info("Status: [IDLE] (no tasks in progress, monitoring for changes).")
            return True
        return False

    async def _report_loop(self) -> None:
        while True:
            await asyncio.sleep(self.snapshot.config.status_interval)
            self.report_status()

    def _on_ready(self, count: int) -> None:
        logger.info(
            "Watcher is now active: %d file(s) under %s, using %d ignore pattern(s)",
            count, self.root, len(self.snapshot.ignore),
        )

    async def _watch_tree(self) -> None:
        watcher = DirWatcher(
            str(self.root),
            poll_interval=self.poll_interval,
            exclude_names=DEFAULT_IGNORE_NAMES,
            on_ready=self._on_ready,
        )
        self._watchers.append(watcher)
        async for ev in watcher.run():
            self.event_count += 1
            self.on_file_event(ev)

    async def _watch_config(self) -> None:
        watcher = DirWatcher(str(self.config_path), poll_interval=self.poll_interval, single_file=True)
        self._watchers.append(watcher)
        async for ev in watcher.run():
            self.config_debouncer.push(CONFIG_KEY, ev.kind, ev.ts)

    async def run(self) -> None:
        """Watch until stopped. Raises WatcherFault (state ``error``) if watching breaks."""
        logger.info("Initializing monitoring process in %s", self.root)
        self._tasks = [
            asyncio.create_task(self._watch_tree()),
            asyncio.create_task(self._watch_config()),
            asyncio.create_task(self._report_loop()),
        ]
        try:
            done, _pending = await asyncio.wait(self._tasks, return_when=asyncio.FIRST_EXCEPTION)
            for task in done:
                if task.cancelled() or task.exception() is None:
                    continue
                exc = task.exception()
                if isinstance(exc, WatcherFault):
                    self.state.fail(exc)
                    logger.error("Watcher error: %s", exc)
                    raise exc
                fault = WatcherFault(f"watcher crashed: {exc!r}")
                self.state.fail(fault)
                logger.error("Watcher error: %s", fault)
                raise fault from exc
        finally:
            await self.stop()

    async def stop(self) -> None:
        for w in self._watchers:
            w.stop()
        for t in self._tasks:
            t.cancel()
        self.debouncer.cancel_all()
        self.config_debouncer.cancel_all()
        await self.debouncer.drain()
        await self.config_debouncer.drain()


async def run_monitor(project: Path, config_path: Path, poll_interval: Optional[float] = None) -> Monitor:
    monitor = Monitor(project, config_path, poll_interval=poll_interval)
    logger.info("Monitor running on %s. Press Ctrl-C to stop.", monitor.root)
    try:
        await monitor.run()
    except asyncio.CancelledError:
        logger.info("Monitor stopped.")
    return monitor
