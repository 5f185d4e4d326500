import asyncio
import os
from pathlib import Path

import pytest

from context_flow.errors import WatcherFault
from context_flow.runtime import DirWatcher


def test_dir_watcher_add_modify_remove(tmp_path: Path):
    async def run_case():
        events = []
        got = {"added": False, "modified": False, "removed": False}
        ready = []

        async def collect():
            watcher = DirWatcher(str(tmp_path), poll_interval=0.05, on_ready=ready.append)
            async for ev in watcher.run():
                events.append((ev.kind, ev.path))
                got[ev.kind] = True
                if all(got.values()):
                    watcher.stop()
                    break

        task = asyncio.create_task(collect())
        await asyncio.sleep(0.1)

        f = tmp_path / "a.txt"
        f.write_text("hello\n", encoding="utf-8")
        await asyncio.sleep(0.15)

        st = f.stat()
        os.utime(f, (st.st_atime, st.st_mtime + 5))
        await asyncio.sleep(0.15)

        f.unlink()
        await asyncio.sleep(0.15)

        await asyncio.sleep(0.1)
        if not all(got.values()):
            task.cancel()
        return events, got, ready

    events, got, ready = asyncio.run(run_case())
    assert all(got.values()), f"Missing events, got flags: {got}, events: {events}"
    assert ready == [0]
    assert [k for k, _ in events] == ["added", "modified", "removed"]


def test_dir_watcher_prunes_excluded_directories(tmp_path: Path):
    (tmp_path / "node_modules" / "pkg").mkdir(parents=True)
    (tmp_path / "node_modules" / "pkg" / "index.js").write_text("", encoding="utf-8")
    (tmp_path / "skip").mkdir()
    (tmp_path / "skip" / "x.txt").write_text("", encoding="utf-8")
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "a.py").write_text("", encoding="utf-8")

    watcher = DirWatcher(
        str(tmp_path),
        exclude_names=["node_modules"],
        exclude_prefixes=[str(tmp_path / "skip")],
    )
    assert list(watcher._scan()) == [str(tmp_path / "src" / "a.py")]


def test_single_file_watch_tolerates_missing_file(tmp_path: Path):
    cfg = tmp_path / "config.yaml"
    watcher = DirWatcher(str(cfg), single_file=True)
    assert watcher._scan() == {}
    cfg.write_text("a: 1\n", encoding="utf-8")
    assert list(watcher._scan()) == [str(cfg)]


def test_missing_root_raises_watcher_fault(tmp_path: Path):
    watcher = DirWatcher(str(tmp_path / "gone"), poll_interval=0.01)

    async def run_case():
        async for _ev in watcher.run():
            pass

    with pytest.raises(WatcherFault):
        asyncio.run(run_case())
