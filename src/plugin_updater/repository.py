"""git working copy operations for the plugin checkout.

Defines the ``RepositoryBackend`` protocol the updater depends on and
``GitRepository``, which satisfies it by running the ``git`` CLI.
All subprocess calls are confined to this module.
"""

from __future__ import annotations

import asyncio
import shutil
from pathlib import Path
from typing import Protocol, runtime_checkable

from plugin_updater.constants import DEFAULT_REMOTE_NAME, FETCH_TIMEOUT_SECONDS
from plugin_updater.errors import (
    CheckoutError,
    FetchError,
    KeysFileMissingError,
    RepoInitError,
    RepoMissingError,
    RevisionReadError,
)
from plugin_updater.logging import get_logger

log = get_logger("plugin_updater.repository")

_READ_CHUNK = 64 * 1024


class GitCommandError(Exception):
    """Raised when a git subprocess exits non-zero, times out, or cannot start."""

    def __init__(
        self,
        args: tuple[str, ...],
        returncode: int | None,
        output: str = "",
        timed_out: bool = False,
    ) -> None:
        self.command = ("git", *args)
        self.returncode = returncode
        self.output = output
        self.timed_out = timed_out
        cmd = " ".join(self.command)
        if timed_out:
            reason = "timed out"
        elif returncode is None:
            reason = "could not be started"
        else:
            reason = f"exited with status {returncode}"
        super().__init__(f"{cmd} {reason}")


@runtime_checkable
class RepositoryBackend(Protocol):
    """Operations the updater needs from a version-control working copy."""

    @property
    def path(self) -> Path: ...

    def exists(self) -> bool: ...

    async def ensure_repository(self, remote_url: str) -> None: ...

    async def fetch(self) -> None: ...

    async def read_revision(self, revision: str) -> str: ...

    async def checkout(self, revision: str) -> None: ...

    async def resolve_introducing_revision(self, revision: str, file_path: str) -> str: ...

    async def has_file(self, revision: str, file_path: str) -> bool: ...

    async def read_file(self, revision: str, file_path: str) -> str: ...

    async def current_revision(self) -> str: ...

    async def force_reset(self) -> None: ...


class GitRepository:
    """A local git clone bound to a single ``origin`` remote."""

    def __init__(
        self,
        path: str | Path,
        fetch_timeout: float = FETCH_TIMEOUT_SECONDS,
        git_binary: str = "git",
    ) -> None:
        self._path = Path(path)
        self._fetch_timeout = fetch_timeout
        self._git = git_binary

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.exists()

    # ------------------------------------------------------------------
    # Working copy lifecycle
    # ------------------------------------------------------------------

    async def ensure_repository(self, remote_url: str) -> None:
        """Initialize the working copy and register its remote if absent.

        When the remote cannot be registered the half-created directory is
        removed so the next attempt starts from scratch.
        """
        if self._path.exists():
            return

        log.info("plugin_repo_creating", path=str(self._path))
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise RepoInitError(f"can't create parent of plugin repo: {exc}") from exc

        try:
            await self._run("init", str(self._path), cwd=self._path.parent)
        except GitCommandError as exc:
            raise RepoInitError(f"can't init plugin repo: {exc}", exc.output) from exc

        try:
            await self._run("remote", "add", DEFAULT_REMOTE_NAME, remote_url)
        except GitCommandError as exc:
            shutil.rmtree(self._path, ignore_errors=True)
            log.warning("plugin_repo_removed", path=str(self._path), reason="remote add failed")
            raise RepoInitError(f"can't set repo remote, aborting: {exc}", exc.output) from exc

    async def fetch(self) -> None:
        """Fetch new history from ``origin`` without touching the working tree."""
        self._require_repo(FetchError)
        try:
            await self._run("fetch", DEFAULT_REMOTE_NAME, timeout=self._fetch_timeout)
        except GitCommandError as exc:
            if exc.timed_out:
                raise FetchError(
                    f"update plugins by fetch timed out after {self._fetch_timeout:g}s",
                    exc.output,
                ) from exc
            raise FetchError(f"update plugins by fetch error: {exc}", exc.output) from exc

    async def checkout(self, revision: str) -> None:
        """Hard-reset the working tree to *revision*, discarding local changes."""
        self._require_repo(CheckoutError)
        try:
            await self._run("reset", "--hard", revision)
        except GitCommandError as exc:
            raise CheckoutError(f"git reset --hard {revision} failed: {exc}", exc.output) from exc

    async def force_reset(self) -> None:
        """Discard local modifications without moving to another revision."""
        if not self._path.exists():
            return
        try:
            await self._run("reset", "--hard")
        except GitCommandError as exc:
            raise CheckoutError(f"git reset --hard failed: {exc}", exc.output) from exc

    # ------------------------------------------------------------------
    # History queries
    # ------------------------------------------------------------------

    async def read_revision(self, revision: str) -> str:
        """Return the raw text of *revision*'s commit object."""
        self._require_repo(RevisionReadError)
        try:
            return await self._run("cat-file", "commit", revision)
        except GitCommandError as exc:
            raise RevisionReadError(
                f"can't get content of desired commit {revision}: {exc}", exc.output
            ) from exc

    async def resolve_introducing_revision(self, revision: str, file_path: str) -> str:
        """Return the newest commit at or before *revision* that changed *file_path*."""
        self._require_repo(RevisionReadError)
        try:
            out = await self._run("rev-list", "-1", revision, "--", file_path)
        except GitCommandError as exc:
            raise RevisionReadError(
                f"can't get most recent commit of {file_path}: {exc}", exc.output
            ) from exc
        commit = out.strip()
        if not commit:
            raise KeysFileMissingError(f"no commit at or before {revision} touches {file_path}")
        return commit

    async def has_file(self, revision: str, file_path: str) -> bool:
        """Check whether *file_path* exists in the tree of *revision*."""
        self._require_repo(RevisionReadError)
        try:
            await self._run("cat-file", "-e", f"{revision}:{file_path}")
        except GitCommandError as exc:
            if exc.returncode is None:
                raise RevisionReadError(f"can't query {file_path}: {exc}") from exc
            return False
        return True

    async def read_file(self, revision: str, file_path: str) -> str:
        """Return the content of *file_path* as stored at *revision*."""
        self._require_repo(RevisionReadError)
        try:
            return await self._run("show", f"{revision}:{file_path}")
        except GitCommandError as exc:
            raise RevisionReadError(
                f"can't read {file_path} at {revision}: {exc}", exc.output
            ) from exc

    async def current_revision(self) -> str:
        """Return the commit id currently checked out."""
        if not self._path.exists():
            raise RepoMissingError(self._path)
        try:
            out = await self._run("rev-parse", "HEAD")
        except GitCommandError as exc:
            raise RevisionReadError(f"git rev-parse HEAD failed: {exc}", exc.output) from exc
        return out.strip()

    # ------------------------------------------------------------------
    # Subprocess helper
    # ------------------------------------------------------------------

    def _require_repo(self, error: type[Exception]) -> None:
        if not self._path.exists():
            raise error(f"plugin working copy does not exist: {self._path}")

    async def _run(
        self,
        *args: str,
        cwd: Path | None = None,
        timeout: float | None = None,
    ) -> str:
        """Run git with *args* and return stdout.

        Raises ``GitCommandError`` carrying stdout and stderr when git fails,
        cannot be started, or exceeds *timeout*. A timed-out process is
        killed and whatever it printed before then is kept on the error.
        """
        try:
            proc = await asyncio.create_subprocess_exec(
                self._git,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                stdin=asyncio.subprocess.DEVNULL,
                cwd=cwd or self._path,
            )
        except OSError as exc:
            raise GitCommandError(args, None, str(exc)) from exc

        stdout, stderr = bytearray(), bytearray()
        try:
            await asyncio.wait_for(
                asyncio.gather(
                    _drain(proc.stdout, stdout),
                    _drain(proc.stderr, stderr),
                    proc.wait(),
                ),
                timeout=timeout,
            )
        except TimeoutError:
            proc.kill()
            await proc.wait()
            log.warning("git_cmd_timeout", args=list(args), timeout=timeout)
            raise GitCommandError(
                args, None, _join_output(stdout, stderr), timed_out=True
            ) from None

        if proc.returncode != 0:
            log.debug(
                "git_cmd_failed",
                args=list(args),
                returncode=proc.returncode,
                stderr=stderr.decode(errors="replace")[:500],
            )
            raise GitCommandError(args, proc.returncode, _join_output(stdout, stderr))
        return stdout.decode(errors="replace")


async def _drain(stream: asyncio.StreamReader, sink: bytearray) -> None:
    while chunk := await stream.read(_READ_CHUNK):
        sink.extend(chunk)


def _join_output(stdout: bytearray, stderr: bytearray) -> str:
    parts = (stdout.decode(errors="replace"), stderr.decode(errors="replace"))
    return "\n".join(p for p in parts if p)
