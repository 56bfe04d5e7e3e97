"""Allow ``python -m taskgraph``."""

from taskgraph.cli import app

if __name__ == "__main__":
    app()
