"""Replace the running agent binary with the one shipped in the plugin checkout.

The candidate is trusted because the checkout it came from was verified.
The swap is rename-then-copy: the old binary moves to a backup path named
after its own digest, and the candidate is copied into its place. At every
point at least one of {backup, new binary} is intact. There is no
automatic rollback; a failure part-way is reported as-is.

After a successful swap the process execs the new binary in place with its
original argv and environment, keeping its PID and supervisor.
"""

from __future__ import annotations

import hashlib
import os
import shutil
import sys
from collections.abc import Callable, Mapping, Sequence
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

from plugin_updater.errors import SelfUpdateExecFailedError, SelfUpdateIOError
from plugin_updater.logging import get_logger

if TYPE_CHECKING:
    from plugin_updater.config import Settings

log = get_logger("plugin_updater.selfupdate")

ProcessReplacer = Callable[[str, Sequence[str], Mapping[str, str]], object]

_CHUNK_SIZE = 1024 * 1024


class SelfUpdateOutcome(StrEnum):
    """Non-error outcomes of a self-update check."""

    DISABLED = "disabled"
    CANDIDATE_MISSING = "candidate_missing"
    UP_TO_DATE = "up_to_date"
    UNSUPPORTED_LAUNCH = "unsupported_launch"


def file_digest(path: Path) -> str:
    """Return the hex SHA-256 digest of the full contents of *path*."""
    h = hashlib.sha256()
    with path.open("rb") as fh:
        while chunk := fh.read(_CHUNK_SIZE):
            h.update(chunk)
    return h.hexdigest()


def current_executable() -> Path | None:
    """Path of the running agent binary, or None if it was not launched as one.

    A frozen build is its own executable. Otherwise ``argv[0]`` must be an
    executable file such as the installed console script; under
    ``python -m plugin_updater`` it is a module path and cannot be replaced.
    """
    if getattr(sys, "frozen", False):
        return Path(sys.executable).resolve()
    path = Path(sys.argv[0]).resolve()
    if path.suffix == ".py" or not path.is_file() or not os.access(path, os.X_OK):
        return None
    return path


def backup_path_for(current: Path, digest: str) -> Path:
    return current.with_name(f"{current.name}.{digest}")


class SelfUpdater:
    """Swap in and re-exec a newer agent binary."""

    def __init__(
        self,
        argv: Sequence[str] | None = None,
        env: Mapping[str, str] | None = None,
        replace_process: ProcessReplacer = os.execve,
        enabled: bool = True,
    ) -> None:
        self._argv = list(argv) if argv is not None else list(sys.argv)
        self._env = dict(env) if env is not None else dict(os.environ)
        self._replace_process = replace_process
        self._enabled = enabled

    @classmethod
    def from_settings(cls, settings: Settings) -> SelfUpdater:
        return cls(enabled=settings.self_update)

    @property
    def enabled(self) -> bool:
        return self._enabled

    def try_self_update(self, settings: Settings) -> SelfUpdateOutcome:
        """Look for ``<checkout>/<binary name>`` and replace the running binary with it."""
        if not self._enabled:
            return SelfUpdateOutcome.DISABLED
        current = current_executable()
        if current is None:
            log.warning("self_update_unsupported_launch", argv=self._argv[:1])
            return SelfUpdateOutcome.UNSUPPORTED_LAUNCH
        name = settings.self_update_binary_name or current.name
        return self.try_replace(current, settings.plugin_checkout_path / name)

    def try_replace(self, current: Path, candidate: Path) -> SelfUpdateOutcome:
        """Replace *current* with *candidate* if their contents differ.

        Returns only when no replacement was needed. On a swap the process
        image is replaced and this call does not return.

        Raises:
            SelfUpdateIOError: hashing, removing, renaming or copying failed.
            SelfUpdateExecFailedError: the swap succeeded but exec did not.
        """
        if not candidate.is_file():
            log.debug("self_update_candidate_missing", path=str(candidate))
            return SelfUpdateOutcome.CANDIDATE_MISSING

        try:
            current_hash = file_digest(current)
            candidate_hash = file_digest(candidate)
        except OSError as exc:
            raise SelfUpdateIOError(f"can't hash agent binaries: {exc}") from exc

        if current_hash == candidate_hash:
            return SelfUpdateOutcome.UP_TO_DATE

        backup = backup_path_for(current, current_hash)
        log.info(
            "self_update_swapping",
            current=str(current),
            candidate=str(candidate),
            backup=str(backup),
            new_digest=candidate_hash,
        )
        self._swap(current, candidate, backup)
        self._exec(current)
        # unreachable unless replace_process returned
        raise SelfUpdateExecFailedError(f"process replacement with {current} returned")

    @staticmethod
    def _swap(current: Path, candidate: Path, backup: Path) -> None:
        try:
            backup.unlink(missing_ok=True)
        except OSError as exc:
            raise SelfUpdateIOError(f"can't remove stale backup {backup}: {exc}") from exc
        try:
            os.rename(current, backup)
        except OSError as exc:
            raise SelfUpdateIOError(f"can't move {current} to {backup}: {exc}") from exc
        try:
            shutil.copy2(candidate, current)
        except OSError as exc:
            raise SelfUpdateIOError(
                f"can't copy {candidate} to {current}, previous binary kept at {backup}: {exc}"
            ) from exc

    def _exec(self, current: Path) -> None:
        log.info("self_update_triggered", path=str(current))
        try:
            self._replace_process(str(current), self._argv, self._env)
        except OSError as exc:
            raise SelfUpdateExecFailedError(f"can't exec {current}: {exc}") from exc
