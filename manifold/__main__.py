"""Allow ``python -m manifold``."""

from manifold.cli.commands import app

if __name__ == "__main__":
    app()
