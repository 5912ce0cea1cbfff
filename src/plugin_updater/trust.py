"""Alternate signing keys delegated through a signed keys file.

The plugin repository may carry a file listing extra trusted keys. Its
entries are honoured only when the most recent commit that changed the
file, at or before the target revision, is signed by a primary key.
Alternate keys cannot vouch for further alternate keys.
"""

from __future__ import annotations

from collections.abc import Sequence

from plugin_updater.constants import SIGNATURE_MARKER
from plugin_updater.errors import KeysFileMissingError
from plugin_updater.logging import get_logger
from plugin_updater.repository import RepositoryBackend
from plugin_updater.signature import TrustedKey, parse_trusted_keys, verify_commit

log = get_logger("plugin_updater.trust")


async def resolve_alternate_keys(
    repository: RepositoryBackend,
    target_revision: str,
    keys_file: str,
    primary_keys: Sequence[TrustedKey],
    marker: str = SIGNATURE_MARKER,
) -> list[TrustedKey]:
    """Return the keys listed in *keys_file*, vouched for by *primary_keys*.

    The file content is read from the same commit whose signature was
    checked, so what is trusted is exactly what was signed.

    Raises:
        KeysFileMissingError: the file is not in the target revision's tree.
        SignatureError: the file's last change is not signed by a primary key.
        RevisionReadError: git could not answer one of the history queries.
    """
    if not await repository.has_file(target_revision, keys_file):
        raise KeysFileMissingError(f"keys file {keys_file} does not exist at {target_revision}")

    introducing = await repository.resolve_introducing_revision(target_revision, keys_file)
    raw = await repository.read_revision(introducing)
    verified = verify_commit(raw, primary_keys, marker)
    log.debug(
        "alt_keys_file_verified",
        keys_file=keys_file,
        revision=introducing,
        signed_by=verified.key.label or verified.key.identifier[:8],
    )

    content = await repository.read_file(introducing, keys_file)
    return parse_trusted_keys(content.split("\n"))
