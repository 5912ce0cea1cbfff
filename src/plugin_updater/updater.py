"""Plugin update orchestration.

One attempt runs these stages strictly in order::

    checking_guards → ensuring_repo → fetching → resolving_trust
        → verifying → checking_out → complete | failed

Trust resolution and verification are skipped, with a warning, when no
primary signing keys are configured. Any failure other than alternate-key
resolution aborts the attempt before checkout, is reported to the failure
sink and is returned to the caller on the ``UpdateResult``. The cooldown runs
from the moment an attempt starts fetching.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, StrEnum
from typing import TYPE_CHECKING, Any

from plugin_updater.constants import DEFAULT_REVISION, SIGNATURE_MARKER
from plugin_updater.errors import (
    NotEnabledError,
    RepoMissingError,
    UpdateInFlightError,
    UpdaterError,
    UpdateTooRecentError,
)
from plugin_updater.guard import UpdateGuard
from plugin_updater.logging import get_logger, update_context
from plugin_updater.reporting import FailureReporter, LogReporter, reporter_from_settings
from plugin_updater.repository import GitRepository, RepositoryBackend
from plugin_updater.signature import TrustedKey, parse_trusted_keys, verify_commit
from plugin_updater.trust import resolve_alternate_keys

if TYPE_CHECKING:
    from plugin_updater.config import Settings

log = get_logger("plugin_updater.updater")


class UpdateStatus(Enum):
    """Outcome of an update attempt."""

    SUCCESS = "success"
    FAILED = "failed"
    NOT_ENABLED = "not_enabled"
    IN_FLIGHT = "in_flight"
    TOO_RECENT = "too_recent"


class UpdateStage(StrEnum):
    """Stages of a single update attempt."""

    CHECKING_GUARDS = "checking_guards"
    ENSURING_REPO = "ensuring_repo"
    FETCHING = "fetching"
    RESOLVING_TRUST = "resolving_trust"
    VERIFYING = "verifying"
    CHECKING_OUT = "checking_out"
    COMPLETE = "complete"


# Failure report subject per aborting stage
STAGE_SUBJECTS: dict[UpdateStage, str] = {
    UpdateStage.ENSURING_REPO: "repo-init-fail",
    UpdateStage.FETCHING: "fetch-fail",
    UpdateStage.RESOLVING_TRUST: "alt-key-fail",
    UpdateStage.VERIFYING: "signature-fail",
    UpdateStage.CHECKING_OUT: "checkout-fail",
}


@dataclass
class UpdateResult:
    """Result of an update attempt."""

    status: UpdateStatus
    revision: str
    stage: UpdateStage = UpdateStage.CHECKING_GUARDS
    error: UpdaterError | None = None
    verified: bool = False
    signed_by: str | None = None
    alt_keys_error: str | None = None
    steps_completed: list[str] = field(default_factory=list)
    started_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())
    completed_at: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is UpdateStatus.SUCCESS

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "revision": self.revision,
            "stage": self.stage.value,
            "error": str(self.error) if self.error else None,
            "error_kind": type(self.error).__name__ if self.error else None,
            "verified": self.verified,
            "signed_by": self.signed_by,
            "alt_keys_error": self.alt_keys_error,
            "steps_completed": self.steps_completed,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }


class PluginUpdater:
    """Drives signed updates of the plugin working copy.

    Typical flow:
    1. ``update_plugin()``: fetch, verify and check out the target revision
    2. ``current_version()``: report the checked-out commit
    3. ``force_reset()``: discard local edits out of band
    """

    def __init__(
        self,
        repository: RepositoryBackend,
        remote_url: str,
        signing_keys: Sequence[TrustedKey] = (),
        alt_keys_file: str | None = None,
        reporter: FailureReporter | None = None,
        guard: UpdateGuard | None = None,
        enabled: bool = True,
        default_revision: str = DEFAULT_REVISION,
        signature_marker: str = SIGNATURE_MARKER,
        debug: bool = False,
    ) -> None:
        self._repo = repository
        self._remote = remote_url
        self._signing_keys = tuple(signing_keys)
        self._alt_keys_file = alt_keys_file
        self._reporter = reporter or LogReporter()
        self._guard = guard or UpdateGuard()
        self._enabled = enabled
        self._default_revision = default_revision
        self._marker = signature_marker
        self._debug = debug

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        reporter: FailureReporter | None = None,
        guard: UpdateGuard | None = None,
    ) -> PluginUpdater:
        """Build an updater for the configured checkout."""
        repository = GitRepository(
            settings.plugin_checkout_path,
            fetch_timeout=settings.plugin_fetch_timeout_seconds,
        )
        return cls(
            repository=repository,
            remote_url=settings.plugin_git_remote,
            signing_keys=parse_trusted_keys(settings.plugin_signing_keys),
            alt_keys_file=settings.plugin_alt_signing_keys_file,
            reporter=reporter or reporter_from_settings(settings),
            guard=guard or UpdateGuard(settings.plugin_update_cooldown_seconds),
            enabled=settings.plugin_enabled,
            default_revision=settings.plugin_default_revision,
            signature_marker=settings.plugin_signature_marker,
            debug=settings.debug,
        )

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def guard(self) -> UpdateGuard:
        return self._guard

    @property
    def repository(self) -> RepositoryBackend:
        return self._repo

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    async def update_plugin(self, revision: str | None = None) -> UpdateResult:
        """Advance the working copy to *revision* once it is verified.

        Never raises for expected failures; inspect ``result.status`` and
        ``result.error``. Guard rejections are not reported as failures.
        """
        target = revision or self._default_revision
        result = UpdateResult(status=UpdateStatus.FAILED, revision=target)

        if not self._enabled:
            if self._debug:
                log.debug("plugin_update_skipped", reason="not enabled")
            result.status = UpdateStatus.NOT_ENABLED
            result.error = NotEnabledError()
            return self._finish(result)

        with update_context(target):
            try:
                with self._guard.hold():
                    await self._run_stages(result)
            except UpdateInFlightError as exc:
                log.info("plugin_update_rejected", reason=str(exc))
                result.status = UpdateStatus.IN_FLIGHT
                result.error = exc
            except UpdateTooRecentError as exc:
                log.info("plugin_update_rejected", reason=str(exc))
                result.status = UpdateStatus.TOO_RECENT
                result.error = exc
            except UpdaterError as exc:
                result.status = UpdateStatus.FAILED
                result.error = exc
                log.error(
                    "plugin_update_failed",
                    stage=result.stage.value,
                    error_kind=type(exc).__name__,
                    error=str(exc),
                )
                await self._report(STAGE_SUBJECTS.get(result.stage, "git-fail"), str(exc))

        return self._finish(result)

    async def _run_stages(self, result: UpdateResult) -> None:
        target = result.revision

        result.stage = UpdateStage.ENSURING_REPO
        await self._repo.ensure_repository(self._remote)
        result.steps_completed.append("ensure_repo")

        result.stage = UpdateStage.FETCHING
        self._guard.stamp()
        log.info("plugin_update_started")
        await self._repo.fetch()
        result.steps_completed.append("fetch")

        if self._signing_keys:
            keys = await self._trusted_keys_for(result)

            result.stage = UpdateStage.VERIFYING
            raw = await self._repo.read_revision(target)
            verified = verify_commit(raw, keys, self._marker)
            result.verified = True
            result.signed_by = verified.key.label or verified.key.identifier[:8]
            result.steps_completed.append("verify")
            log.info(
                "plugin_signature_verified",
                tree=verified.tree_hash,
                signed_by=result.signed_by,
            )
        else:
            log.warning(
                "plugin_signature_verification_skipped", reason="no signing keys configured"
            )

        result.stage = UpdateStage.CHECKING_OUT
        await self._repo.checkout(target)
        result.steps_completed.append("checkout")

        result.stage = UpdateStage.COMPLETE
        result.status = UpdateStatus.SUCCESS
        log.info("plugin_update_complete")

    async def _trusted_keys_for(self, result: UpdateResult) -> list[TrustedKey]:
        """Primary keys first, then any alternate keys the target vouches for."""
        keys = list(self._signing_keys)
        if not self._alt_keys_file:
            return keys

        result.stage = UpdateStage.RESOLVING_TRUST
        try:
            alt_keys = await resolve_alternate_keys(
                self._repo,
                result.revision,
                self._alt_keys_file,
                self._signing_keys,
                self._marker,
            )
        except UpdaterError as exc:
            result.alt_keys_error = str(exc)
            log.warning("plugin_alt_keys_failed", error_kind=type(exc).__name__, error=str(exc))
            await self._report(STAGE_SUBJECTS[UpdateStage.RESOLVING_TRUST], str(exc))
            return keys

        if self._debug:
            for key in alt_keys:
                log.debug("plugin_alt_key", key=str(key))
        result.steps_completed.append("resolve_alt_keys")
        return keys + alt_keys

    # ------------------------------------------------------------------
    # Out-of-band operations
    # ------------------------------------------------------------------

    async def current_version(self) -> str:
        """Return the commit id of the checked-out plugin revision."""
        if not self._enabled:
            raise NotEnabledError()
        if not self._repo.exists():
            await self._report("plugin-dir-missing", str(self._repo.path))
            raise RepoMissingError(self._repo.path)
        try:
            return await self._repo.current_revision()
        except UpdaterError as exc:
            await self._report("git-fail", str(exc))
            raise

    async def force_reset(self) -> None:
        """Discard local modifications in the working copy."""
        if not self._enabled:
            raise NotEnabledError()
        await self._repo.force_reset()
        log.info("plugin_force_reset", path=str(self._repo.path))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _report(self, subject: str, description: str) -> None:
        try:
            await self._reporter.report(subject, description)
        except Exception as exc:
            log.warning("plugin_failure_report_error", subject=subject, error=str(exc))

    @staticmethod
    def _finish(result: UpdateResult) -> UpdateResult:
        result.completed_at = datetime.now(UTC).isoformat()
        return result
