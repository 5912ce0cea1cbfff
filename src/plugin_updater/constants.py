"""Centralized constants for the plugin updater."""

# Update guard
UPDATE_COOLDOWN_SECONDS = 300

# git
FETCH_TIMEOUT_SECONDS = 120
DEFAULT_REMOTE_NAME = "origin"
DEFAULT_REVISION = "origin/master"

# Commit object markers
TREE_MARKER = "tree "
SIGNATURE_MARKER = "satori-sign "

# Ed25519 sizes (bytes)
PUBLIC_KEY_SIZE = 32
SIGNATURE_SIZE = 64

# Failure reporting
METRIC_PREFIX = ".satori.agent.plugin."
REPORT_TIMEOUT_SECONDS = 5

# Scheduler
UPDATE_INTERVAL_SECONDS = 600
