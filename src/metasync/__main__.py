"""Allow running as `python -m metasync`."""

from metasync.cli import app

if __name__ == "__main__":
    app()
