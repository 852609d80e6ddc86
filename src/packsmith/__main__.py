"""Module entrypoint for ``python -m packsmith``."""

from __future__ import annotations

from packsmith.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
