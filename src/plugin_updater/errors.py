"""Error taxonomy for plugin updates and self-update.

Every failure an operator may need to tell apart gets its own class.
Captured subprocess output travels on ``output`` and is appended to the
message so logs and failure reports carry the underlying diagnostics.
"""

from __future__ import annotations


class UpdaterError(Exception):
    """Base exception for plugin update operations."""

    def __init__(self, message: str, output: str = "") -> None:
        self.message = message
        self.output = output.strip()
        super().__init__(f"{message}\n{self.output}" if self.output else message)


class NotEnabledError(UpdaterError):
    """Raised when plugin updates are disabled in configuration."""

    def __init__(self, message: str = "plugin updates are not enabled") -> None:
        super().__init__(message)


class RepoMissingError(UpdaterError):
    """Raised when the plugin working copy has never been initialized."""

    def __init__(self, path: object) -> None:
        self.path = path
        super().__init__(f"plugin working copy does not exist: {path}")


class RepoInitError(UpdaterError):
    """Raised when the working copy cannot be created or bound to its remote."""


class FetchError(UpdaterError):
    """Raised when fetching from the remote fails or times out."""


class RevisionReadError(UpdaterError):
    """Raised when a revision's commit object cannot be read."""


class CheckoutError(UpdaterError):
    """Raised when resetting the working tree to a revision fails."""


class KeysFileMissingError(UpdaterError):
    """Raised when the alternate signing keys file is absent from the target tree."""


# --- Signature verification ---


class SignatureError(UpdaterError):
    """Base exception for commit signature verification failures."""


class NoTreeHashError(SignatureError):
    """Raised when a commit object carries no tree hash."""

    def __init__(self) -> None:
        super().__init__("can't find tree hash")


class NoSignatureError(SignatureError):
    """Raised when a commit carries no single well-formed signature record."""


class UntrustedKeyError(SignatureError):
    """Raised when the signing key id matches no trusted key."""

    def __init__(self, key_id: str) -> None:
        self.key_id = key_id
        super().__init__(f"signing key untrusted: {key_id!r}")


class EncodingError(SignatureError):
    """Raised when a public key or signature is not valid base64 of the right size."""


class SignatureInvalidError(SignatureError):
    """Raised when the signature does not verify against the tree hash."""

    def __init__(self, key_id: str) -> None:
        self.key_id = key_id
        super().__init__(f"signature invalid for key {key_id!r}")


# --- Update guard ---


class GuardRejectedError(UpdaterError):
    """Base for "try again later" rejections; never reported as incidents."""


class UpdateInFlightError(GuardRejectedError):
    """Raised when another update attempt is still running."""

    def __init__(self) -> None:
        super().__init__("previous update in flight, do nothing")


class UpdateTooRecentError(GuardRejectedError):
    """Raised when the previous attempt started inside the cooldown window."""

    def __init__(self, retry_after: float) -> None:
        self.retry_after = retry_after
        super().__init__(f"previous update too recent, retry in {retry_after:.0f}s")


# --- Self-update ---


class SelfUpdateError(UpdaterError):
    """Base exception for replacing the running agent binary."""


class SelfUpdateIOError(SelfUpdateError):
    """Raised when hashing, renaming or copying a binary fails."""


class SelfUpdateExecFailedError(SelfUpdateError):
    """Raised when the swapped binary could not be executed in place.

    Fatal: the new binary is on disk but the old code is still running.
    """
