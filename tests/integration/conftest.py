"""Real git repositories for end-to-end update tests.

``PluginSource`` plays the release side: it commits plugin files and signs
each commit's tree hash with an Ed25519 key, the way release tooling does.
"""

from __future__ import annotations

import os
import subprocess
from pathlib import Path

import pytest

from plugin_updater.constants import SIGNATURE_MARKER

GIT_ENV = {
    "GIT_AUTHOR_NAME": "Release Bot",
    "GIT_AUTHOR_EMAIL": "release@example.com",
    "GIT_COMMITTER_NAME": "Release Bot",
    "GIT_COMMITTER_EMAIL": "release@example.com",
    "GIT_CONFIG_NOSYSTEM": "1",
}


class PluginSource:
    """The upstream plugin repository."""

    def __init__(self, path: Path, env: dict[str, str]) -> None:
        self.path = path
        self._env = env
        path.mkdir(parents=True)
        self.git("init", "-q")
        self.git("symbolic-ref", "HEAD", "refs/heads/master")

    def git(self, *args: str) -> str:
        proc = subprocess.run(
            ["git", *args],
            cwd=self.path,
            env=self._env,
            capture_output=True,
            text=True,
            check=True,
        )
        return proc.stdout.strip()

    def commit(self, files: dict[str, str], signer=None, message: str = "Update plugins") -> str:
        """Commit *files*, signing the resulting tree with *signer* if given."""
        for name, content in files.items():
            target = self.path / name
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content)
        self.git("add", "-A")
        tree = self.git("write-tree")
        body = message
        if signer is not None:
            body += f"\n\n{SIGNATURE_MARKER}{signer.identifier[:8]}:{signer.sign(tree)}"
        self.git("commit", "-q", "--allow-empty", "-m", body)
        return self.git("rev-parse", "HEAD")


@pytest.fixture()
def git_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    for key, value in GIT_ENV.items():
        monkeypatch.setenv(key, value)
    return dict(os.environ)


@pytest.fixture()
def plugin_source(tmp_path: Path, git_env: dict[str, str]) -> PluginSource:
    return PluginSource(tmp_path / "upstream", git_env)
