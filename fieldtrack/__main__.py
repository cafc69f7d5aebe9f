"""Module entry point: python -m fieldtrack ..."""

from __future__ import annotations

from fieldtrack.cli import main


if __name__ == "__main__":
    raise SystemExit(main())
