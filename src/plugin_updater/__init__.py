"""Signed plugin checkout and self-update for the monitoring agent.

Pulls the plugin bundle from git, verifies that the target revision was
signed by a trusted Ed25519 key, advances the working copy, and swaps in
a newer agent binary when one is shipped with the plugins.
"""

__version__ = "0.1.0"
