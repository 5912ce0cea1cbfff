"""Entry point for ``python -m plugin_updater``."""

from plugin_updater.main import run

if __name__ == "__main__":
    run()
