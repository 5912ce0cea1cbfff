"""Ed25519 verification of plugin revisions.

A revision is signed over its tree hash, not over the whole commit, so
author, dates and parents play no part in trust. The signature travels in
the commit object on a single line::

    satori-sign <key id prefix>:<base64 signature>

The key id is matched as a prefix of the base64 text of each trusted
public key, in configured order.
"""

from __future__ import annotations

import base64
import binascii
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from plugin_updater.constants import PUBLIC_KEY_SIZE, SIGNATURE_MARKER, SIGNATURE_SIZE, TREE_MARKER
from plugin_updater.errors import (
    EncodingError,
    NoSignatureError,
    NoTreeHashError,
    SignatureInvalidError,
    UntrustedKeyError,
)


@dataclass(frozen=True)
class TrustedKey:
    """A trusted Ed25519 public key.

    ``identifier`` is the base64 text of the raw 32-byte key; signature
    records name a key by a prefix of it. ``label`` is free text.
    """

    identifier: str
    label: str = ""

    @classmethod
    def parse(cls, entry: str) -> TrustedKey:
        """Parse a ``'<base64 key> [label...]'`` entry."""
        fields = entry.split(None, 1)
        if not fields:
            raise ValueError("empty trusted key entry")
        label = fields[1].strip() if len(fields) > 1 else ""
        return cls(identifier=fields[0], label=label)

    def public_key_bytes(self) -> bytes:
        return decode_fixed(self.identifier, PUBLIC_KEY_SIZE, "public key")

    def __str__(self) -> str:
        return f"{self.identifier} {self.label}".rstrip()


@dataclass(frozen=True)
class SignatureRecord:
    """The ``keyid:signature`` pair carried by a signed commit."""

    key_id: str
    signature: str


@dataclass(frozen=True)
class RevisionMetadata:
    """Trust-relevant attributes parsed from a commit object."""

    tree_hash: str | None
    signature_lines: tuple[str, ...] = ()

    def signature_record(self) -> SignatureRecord:
        """Return the single signature record.

        Raises ``NoSignatureError`` when there is none, more than one, or
        the only one is malformed.
        """
        if not self.signature_lines:
            raise NoSignatureError("signature not found")
        if len(self.signature_lines) > 1:
            raise NoSignatureError(
                f"{len(self.signature_lines)} signature records found, expected exactly one"
            )
        line = self.signature_lines[0]
        parts = line.split(":")
        if len(parts) != 2 or not parts[0] or not parts[1]:
            raise NoSignatureError(f"malformed signature record: {line!r}")
        return SignatureRecord(key_id=parts[0], signature=parts[1])


@dataclass(frozen=True)
class VerifiedRevision:
    """A tree hash and the trusted key that signed it."""

    tree_hash: str
    key: TrustedKey


def parse_trusted_keys(entries: Iterable[str]) -> list[TrustedKey]:
    """Parse key entries, skipping blank lines and ``#`` comments."""
    keys: list[TrustedKey] = []
    for entry in entries:
        line = entry.strip()
        if not line or line.startswith("#"):
            continue
        keys.append(TrustedKey.parse(line))
    return keys


def decode_fixed(value: str, size: int, what: str) -> bytes:
    """Decode strict base64 *value* and require exactly *size* bytes."""
    try:
        raw = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise EncodingError(f"{what} is not valid base64: {exc}") from exc
    if len(raw) != size:
        raise EncodingError(f"{what} must be {size} bytes, got {len(raw)}")
    return raw


def parse_revision_metadata(raw: str, marker: str = SIGNATURE_MARKER) -> RevisionMetadata:
    """Extract the tree hash and signature lines from a raw commit object."""
    tree_hash: str | None = None
    records: list[str] = []
    for line in raw.split("\n"):
        if tree_hash is None and line.startswith(TREE_MARKER):
            tree_hash = line[len(TREE_MARKER) :].strip() or None
            continue
        if line.startswith(marker):
            records.append(line[len(marker) :].strip())
    return RevisionMetadata(tree_hash=tree_hash, signature_lines=tuple(records))


def find_trusted_key(key_id: str, trusted_keys: Sequence[TrustedKey]) -> TrustedKey | None:
    """Return the first trusted key whose identifier starts with *key_id*."""
    if not key_id:
        return None
    for key in trusted_keys:
        if key.identifier.startswith(key_id):
            return key
    return None


def verify_commit(
    raw: str,
    trusted_keys: Sequence[TrustedKey],
    marker: str = SIGNATURE_MARKER,
) -> VerifiedRevision:
    """Verify that the commit object *raw* is signed by one of *trusted_keys*.

    Checks run in a fixed order so every failure maps to exactly one error:
    missing tree hash, missing or malformed signature, untrusted key,
    bad encoding, and finally an invalid signature.
    """
    meta = parse_revision_metadata(raw, marker)
    if meta.tree_hash is None:
        raise NoTreeHashError()
    record = meta.signature_record()

    key = find_trusted_key(record.key_id, trusted_keys)
    if key is None:
        raise UntrustedKeyError(record.key_id)

    public_bytes = key.public_key_bytes()
    signature = decode_fixed(record.signature, SIGNATURE_SIZE, "signature")

    try:
        public_key = Ed25519PublicKey.from_public_bytes(public_bytes)
    except ValueError as exc:
        raise EncodingError(f"public key is not a valid Ed25519 key: {exc}") from exc

    try:
        public_key.verify(signature, meta.tree_hash.encode("utf-8"))
    except InvalidSignature:
        raise SignatureInvalidError(record.key_id) from None

    return VerifiedRevision(tree_hash=meta.tree_hash, key=key)
