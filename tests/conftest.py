"""Shared fixtures: Ed25519 signers and raw commit objects."""

from __future__ import annotations

import base64
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from pathlib import Path

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from plugin_updater.config import get_settings
from plugin_updater.constants import SIGNATURE_MARKER
from plugin_updater.errors import KeysFileMissingError, RevisionReadError
from plugin_updater.signature import TrustedKey

TREE_HASH = "4b825dc642cb6eb9a060e54bf8d69288fbee4904"


@dataclass
class Signer:
    """An Ed25519 key pair that signs tree hashes the way release tooling does."""

    private_key: Ed25519PrivateKey
    label: str

    @property
    def identifier(self) -> str:
        raw = self.private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        return base64.b64encode(raw).decode()

    @property
    def entry(self) -> str:
        return f"{self.identifier} {self.label}"

    def trusted(self) -> TrustedKey:
        return TrustedKey(identifier=self.identifier, label=self.label)

    def sign(self, tree_hash: str) -> str:
        return base64.b64encode(self.private_key.sign(tree_hash.encode())).decode()

    def signature_line(self, tree_hash: str, prefix_len: int = 8) -> str:
        return f"{SIGNATURE_MARKER}{self.identifier[:prefix_len]}:{self.sign(tree_hash)}"


def make_commit(tree_hash: str | None = TREE_HASH, *signature_lines: str) -> str:
    """Build the text of a commit object as ``git cat-file commit`` prints it."""
    header = []
    if tree_hash is not None:
        header.append(f"tree {tree_hash}")
    header += [
        "parent 9fceb02d0ae598e95dc970b74767f19372d61af8",
        "author Release Bot <release@example.com> 1760000000 +0000",
        "committer Release Bot <release@example.com> 1760000000 +0000",
    ]
    body = ["Update plugins", "", *signature_lines]
    return "\n".join([*header, "", *body]) + "\n"


@pytest.fixture()
def make_signer() -> Callable[[str], Signer]:
    def _make(label: str = "release") -> Signer:
        return Signer(private_key=Ed25519PrivateKey.generate(), label=label)

    return _make


@pytest.fixture()
def signer(make_signer: Callable[[str], Signer]) -> Signer:
    return make_signer("primary")


@pytest.fixture()
def other_signer(make_signer: Callable[[str], Signer]) -> Signer:
    return make_signer("stranger")


@pytest.fixture(autouse=True)
def _clear_settings_cache() -> Iterator[None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def commit() -> Callable[..., str]:
    """Factory for raw commit object text."""
    return make_commit


@pytest.fixture()
def tree_hash() -> str:
    return TREE_HASH


class FakeRepository:
    """In-memory stand-in for ``GitRepository`` that records every call."""

    def __init__(self, path: str = "/srv/plugin") -> None:
        self._path = Path(path)
        self.created = False
        self.head: str | None = None
        self.commits: dict[str, str] = {}
        self.files: dict[tuple[str, str], str] = {}
        self.introducing: dict[tuple[str, str], str] = {}
        self.failures: dict[str, Exception] = {}
        self.calls: list[str] = []

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self.created

    def _call(self, name: str) -> None:
        self.calls.append(name)
        if name in self.failures:
            raise self.failures[name]

    async def ensure_repository(self, remote_url: str) -> None:
        self._call("ensure_repository")
        self.created = True

    async def fetch(self) -> None:
        self._call("fetch")

    async def read_revision(self, revision: str) -> str:
        self._call("read_revision")
        if revision not in self.commits:
            raise RevisionReadError(f"unknown revision {revision}")
        return self.commits[revision]

    async def checkout(self, revision: str) -> None:
        self._call("checkout")
        self.head = revision

    async def resolve_introducing_revision(self, revision: str, file_path: str) -> str:
        self._call("resolve_introducing_revision")
        try:
            return self.introducing[(revision, file_path)]
        except KeyError:
            raise KeysFileMissingError(f"{file_path} never committed") from None

    async def has_file(self, revision: str, file_path: str) -> bool:
        self._call("has_file")
        return (revision, file_path) in self.files

    async def read_file(self, revision: str, file_path: str) -> str:
        self._call("read_file")
        return self.files[(revision, file_path)]

    async def current_revision(self) -> str:
        self._call("current_revision")
        return self.head or ""

    async def force_reset(self) -> None:
        self._call("force_reset")


@pytest.fixture()
def fake_repo() -> FakeRepository:
    return FakeRepository()
