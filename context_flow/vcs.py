from __future__ import annotations

import asyncio
import logging
import shutil
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from .errors import DiffUnavailable
from .models import ADDED, DELETED, MODIFIED, UNKNOWN, DiffRecord, normalize_path

logger = logging.getLogger("context_flow.vcs")

_STATUS_LETTERS = {"M": MODIFIED, "A": ADDED, "D": DELETED}


def parse_name_only(stdout: str) -> List[DiffRecord]:
    """Parse ``git diff --name-only`` output. Every listed path differs, so it is ``modified``."""
    out: List[DiffRecord] = []
    for line in stdout.splitlines():
        line = line.strip()
        if line:
            out.append(DiffRecord(normalize_path(line), MODIFIED))
    return out


def parse_name_status(stdout: str) -> List[DiffRecord]:
    """Parse ``git diff --name-status`` output.

    ``M``/``A``/``D`` map to modified/added/deleted, anything else (renames,
    copies, type changes) is ``unknown``. For renames the new path is kept.
    """
    out: List[DiffRecord] = []
    for line in stdout.splitlines():
        if not line.strip():
            continue
        parts = line.split("\t")
        if len(parts) < 2:
            parts = line.split(None, 1)
        if len(parts) < 2:
            logger.debug("Unparseable status line: %r", line)
            continue
        letter = parts[0].strip()[:1].upper()
        out.append(DiffRecord(normalize_path(parts[-1].strip()), _STATUS_LETTERS.get(letter, UNKNOWN)))
    return out


class DiffOracle:
    """Ask git which tracked files differ from a ref.

    ``get_changes`` raises :class:`DiffUnavailable`; ``collect`` is the
    pipeline-facing variant that logs and returns an empty list instead.
    """

    def __init__(self, executable: str = "git", timeout: float = 10.0):
        self.executable = executable
        self.timeout = timeout

    async def _run(self, args: Sequence[str], cwd: Path) -> Tuple[int, str, str]:
        try:
            proc = await asyncio.create_subprocess_exec(
                self.executable, *args,
                cwd=str(cwd),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise DiffUnavailable(f"cannot run {self.executable}: {e}") from e
        try:
            out, err = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            proc.kill()
            await proc.wait()
            raise DiffUnavailable(f"{self.executable} {' '.join(args)} timed out after {self.timeout}s") from e
        return proc.returncode, out.decode(errors="ignore"), err.decode(errors="ignore")

    async def is_work_tree(self, repo_path: Path) -> bool:
        if not repo_path.is_dir():
            return False
        try:
            code, out, _ = await self._run(["rev-parse", "--is-inside-work-tree"], repo_path)
        except DiffUnavailable:
            return False
        return code == 0 and out.strip() == "true"

    async def _check(self, repo_path: Path) -> None:
        if shutil.which(self.executable) is None:
            raise DiffUnavailable(f"{self.executable} executable not found")
        if not repo_path.exists():
            raise DiffUnavailable(f"{repo_path} does not exist")
        if not await self.is_work_tree(repo_path):
            raise DiffUnavailable(f"{repo_path} is not inside a version-controlled working tree")

    async def get_changes(self, repo_path: Path, ref: str = "HEAD", with_status: bool = True) -> List[DiffRecord]:
        await self._check(repo_path)
        args = ["diff", "--name-status" if with_status else "--name-only"]
        if ref:
            args.append(ref)
        logger.info("Executing: %s %s", self.executable, " ".join(args))
        code, out, err = await self._run(args, repo_path)
        if code != 0:
            raise DiffUnavailable(f"{self.executable} diff exited with {code}: {err.strip()}")
        records = parse_name_status(out) if with_status else parse_name_only(out)
        logger.info("Diff returned %d change(s)", len(records))
        return records

    async def collect(self, repo_path: Path, ref: str = "HEAD", with_status: bool = True) -> List[DiffRecord]:
        try:
            return await self.get_changes(repo_path, ref, with_status)
        except DiffUnavailable as e:
            logger.warning("Diff unavailable: %s", e)
        except Exception:
            logger.warning("Failed to get diff", exc_info=True)
        return []

    async def current_branch(self, repo_path: Path) -> Optional[str]:
        try:
            if not await self.is_work_tree(repo_path):
                return None
            code, out, _ = await self._run(["rev-parse", "--abbrev-ref", "HEAD"], repo_path)
        except DiffUnavailable:
            return None
        if code != 0:
            return None
        return out.strip() or None
