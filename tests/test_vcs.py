import asyncio
import shutil
import subprocess
from pathlib import Path

import pytest

from context_flow.errors import DiffUnavailable
from context_flow.models import DiffRecord
from context_flow.vcs import DiffOracle, parse_name_only, parse_name_status

HAVE_GIT = shutil.which("git") is not None


def _git(cwd: Path, *args: str) -> None:
    subprocess.run(
        ["git", "-c", "user.email=dev@example.com", "-c", "user.name=dev", *args],
        cwd=str(cwd), check=True, capture_output=True,
    )


def test_parse_name_only():
    out = "src/a.ts\n\nsrc\\b.ts\r\n"
    assert parse_name_only(out) == [DiffRecord("src/a.ts", "modified"), DiffRecord("src/b.ts", "modified")]


def test_parse_name_status_maps_letters():
    out = "M\tsrc/a.ts\nA\tnew.ts\nD\told.ts\nR100\tbefore.ts\tafter.ts\nT\tlink\ngarbage\n"
    assert parse_name_status(out) == [
        DiffRecord("src/a.ts", "modified"),
        DiffRecord("new.ts", "added"),
        DiffRecord("old.ts", "deleted"),
        DiffRecord("after.ts", "unknown"),
        DiffRecord("link", "unknown"),
    ]


def test_non_vcs_directory_is_unavailable(tmp_path: Path):
    oracle = DiffOracle()

    async def run_case():
        with pytest.raises(DiffUnavailable):
            await oracle.get_changes(tmp_path)
        return await oracle.collect(tmp_path)

    assert asyncio.run(run_case()) == []


def test_missing_path_is_unavailable(tmp_path: Path):
    oracle = DiffOracle()

    async def run_case():
        with pytest.raises(DiffUnavailable):
            await oracle.get_changes(tmp_path / "nope")
        return await oracle.collect(tmp_path / "nope"), await oracle.current_branch(tmp_path / "nope")

    assert asyncio.run(run_case()) == ([], None)


def test_missing_executable_is_unavailable(tmp_path: Path):
    oracle = DiffOracle(executable="definitely-not-a-vcs-binary")
    assert asyncio.run(oracle.collect(tmp_path)) == []


@pytest.mark.skipif(shutil.which("sleep") is None, reason="needs a sleep binary")
def test_hanging_process_times_out(tmp_path: Path):
    oracle = DiffOracle(executable="sleep", timeout=0.1)

    async def run_case():
        with pytest.raises(DiffUnavailable):
            await oracle._run(["5"], tmp_path)

    asyncio.run(run_case())


@pytest.mark.skipif(not HAVE_GIT, reason="git not installed")
def test_git_repository_changes(tmp_path: Path):
    _git(tmp_path, "init", "-q")
    (tmp_path / "a.txt").write_text("one\n", encoding="utf-8")
    (tmp_path / "b.txt").write_text("two\n", encoding="utf-8")
    _git(tmp_path, "add", ".")
    _git(tmp_path, "commit", "-q", "-m", "init")

    (tmp_path / "a.txt").write_text("one\nmore\n", encoding="utf-8")
    (tmp_path / "b.txt").unlink()
    (tmp_path / "c.txt").write_text("three\n", encoding="utf-8")
    _git(tmp_path, "add", "c.txt")

    oracle = DiffOracle()

    async def run_case():
        with_status = await oracle.get_changes(tmp_path, "HEAD", with_status=True)
        names = await oracle.get_changes(tmp_path, "HEAD", with_status=False)
        branch = await oracle.current_branch(tmp_path)
        return with_status, names, branch

    with_status, names, branch = asyncio.run(run_case())
    assert sorted((r.path, r.status) for r in with_status) == [
        ("a.txt", "modified"), ("b.txt", "deleted"), ("c.txt", "added"),
    ]
    assert sorted(r.path for r in names) == ["a.txt", "b.txt", "c.txt"]
    assert branch


@pytest.mark.skipif(not HAVE_GIT, reason="git not installed")
def test_bad_ref_is_unavailable(tmp_path: Path):
    _git(tmp_path, "init", "-q")
    oracle = DiffOracle()

    async def run_case():
        with pytest.raises(DiffUnavailable):
            await oracle.get_changes(tmp_path, "no-such-ref")
        return await oracle.collect(tmp_path, "no-such-ref")

    assert asyncio.run(run_case()) == []
