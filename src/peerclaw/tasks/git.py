"""Local repository operations via the git CLI.

All commands run through ``asyncio.create_subprocess_exec`` with a bounded
wait, so a hung git process never blocks the event loop.
"""

from __future__ import annotations

import asyncio
import json
import logging
import shutil
from pathlib import Path

from peerclaw.collaborators import Result

logger = logging.getLogger(__name__)

COMMAND_NOT_FOUND = 127
DEFAULT_REMOTE_TEMPLATE = "https://github.com/{owner}/{repo}.git"


async def run_command(
    *cmd: str, cwd: Path | None = None, timeout: float = 120
) -> tuple[int, str, str]:
    """Run a command and return (returncode, stdout, stderr).

    A missing executable is reported as exit code 127. Raises ``TimeoutError``
    after killing the process if it outlives ``timeout``.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=str(cwd) if cwd else None,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError:
        return COMMAND_NOT_FOUND, "", f"{cmd[0]}: command not found"

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except TimeoutError:
        proc.kill()
        await proc.wait()
        raise
    return (
        proc.returncode or 0,
        stdout.decode(errors="replace"),
        stderr.decode(errors="replace"),
    )


def discover_test_command(path: Path) -> list[str] | None:
    """Find the project's test command, or None if it has no test suite."""
    package_json = path / "package.json"
    if package_json.exists():
        try:
            scripts = json.loads(package_json.read_text()).get("scripts", {})
        except (json.JSONDecodeError, OSError, AttributeError):
            logger.info("Unreadable package.json in %s, skipping tests", path)
            return None
        script = scripts.get("test") if isinstance(scripts, dict) else None
        if script and "no test specified" not in script:
            return ["npm", "test"]
        return None

    if (path / "pytest.ini").exists() or (path / "tests").is_dir():
        return ["pytest", "-q"]
    pyproject = path / "pyproject.toml"
    if pyproject.exists() and "[tool.pytest" in pyproject.read_text(errors="replace"):
        return ["pytest", "-q"]
    setup_cfg = path / "setup.cfg"
    if setup_cfg.exists() and "[tool:pytest]" in setup_cfg.read_text(errors="replace"):
        return ["pytest", "-q"]
    return None


def _runner_missing(returncode: int, output: str) -> bool:
    lowered = output.lower()
    return (
        returncode == COMMAND_NOT_FOUND
        or "command not found" in lowered
        or ("not found" in lowered and "err!" in lowered)
    )


class GitCLI:
    """``RepositoryOps`` backed by the local git binary."""

    def __init__(self, timeout: float = 120, remote_template: str = DEFAULT_REMOTE_TEMPLATE):
        self.timeout = timeout
        self.remote_template = remote_template

    async def _git(self, path: Path | None, *args: str) -> Result[str]:
        try:
            code, out, err = await run_command(
                "git", "--no-pager", *args, cwd=path, timeout=self.timeout
            )
        except TimeoutError:
            return Result.fail(f"git {args[0]} timed out after {self.timeout}s")
        if code != 0:
            return Result.fail(err.strip() or out.strip() or f"git {args[0]} exited {code}")
        return Result.ok(out)

    async def clone(self, owner: str, repo: str, dest: Path) -> Result[None]:
        if dest.exists():
            shutil.rmtree(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        url = self.remote_template.format(owner=owner, repo=repo)
        result = await self._git(None, "clone", url, str(dest))
        return Result.ok() if result.success else Result.fail(result.error or "clone failed")

    async def create_branch(self, path: Path, branch: str) -> Result[None]:
        result = await self._git(path, "checkout", "-B", branch)
        return Result.ok() if result.success else Result.fail(result.error or "")

    async def checkout(self, path: Path, branch: str) -> Result[None]:
        result = await self._git(path, "checkout", branch)
        return Result.ok() if result.success else Result.fail(result.error or "")

    async def current_branch(self, path: Path) -> Result[str]:
        result = await self._git(path, "rev-parse", "--abbrev-ref", "HEAD")
        if not result.success:
            return result
        return Result.ok((result.data or "").strip())

    async def commits_ahead(self, path: Path, base: str = "main") -> Result[list[str]]:
        result = await self._git(path, "log", f"{base}..HEAD", "--oneline")
        if not result.success:
            return Result.fail(result.error or "")
        return Result.ok([line for line in (result.data or "").splitlines() if line.strip()])

    async def changed_files(self, path: Path, base: str = "main") -> Result[list[str]]:
        result = await self._git(path, "diff", base, "--name-only")
        if not result.success:
            return Result.fail(result.error or "")
        return Result.ok([line for line in (result.data or "").splitlines() if line.strip()])

    async def diff_shortstat(self, path: Path, base: str = "main") -> Result[str]:
        result = await self._git(path, "diff", base, "--shortstat")
        if not result.success:
            return result
        return Result.ok((result.data or "").strip())

    async def push(self, path: Path, branch: str) -> Result[None]:
        result = await self._git(path, "push", "-u", "origin", branch)
        return Result.ok() if result.success else Result.fail(result.error or "push failed")

    async def verify_remote_branch(self, path: Path, branch: str) -> Result[bool]:
        result = await self._git(path, "ls-remote", "--heads", "origin", branch)
        if not result.success:
            return Result.fail(result.error or "")
        return Result.ok(bool((result.data or "").strip()))

    async def list_remote_branches(self, path: Path) -> Result[list[str]]:
        result = await self._git(path, "ls-remote", "--heads", "origin")
        if not result.success:
            return Result.fail(result.error or "")
        branches = []
        for line in (result.data or "").splitlines():
            _, _, ref = line.partition("\t")
            if ref.startswith("refs/heads/"):
                branches.append(ref[len("refs/heads/") :])
        return Result.ok(branches)

    async def run_tests(self, path: Path, timeout: float) -> Result[str]:
        """Run the discovered test suite.

        No suite, or a runner that isn't installed, counts as a pass
        (``data`` starts with "skipped").
        """
        cmd = discover_test_command(path)
        if cmd is None:
            return Result.ok("skipped: no test suite found")

        try:
            code, out, err = await run_command(*cmd, cwd=path, timeout=timeout)
        except TimeoutError:
            return Result.fail(f"tests timed out after {timeout:.0f}s")

        output = f"{out}\n{err}".strip()
        if code == 0:
            return Result.ok(output[-2000:])
        if _runner_missing(code, output):
            logger.info("Test runner %s not available in %s, skipping", cmd[0], path)
            return Result.ok(f"skipped: {cmd[0]} not installed")
        return Result.fail(output[-2000:] or f"{' '.join(cmd)} exited {code}")
