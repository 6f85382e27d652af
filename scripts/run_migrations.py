#!/usr/bin/env python
"""Helper script to run Alembic migrations via `python scripts/run_migrations.py`."""

from __future__ import annotations

import sys
from pathlib import Path

from alembic.config import main as alembic_main

ROOT_DIR = Path(__file__).resolve().parent.parent


def run(revision: str = "head"):
    """Upgrade the database to ``revision`` using the repository's alembic.ini."""
    alembic_main(argv=["-c", str(ROOT_DIR / "alembic.ini"), "upgrade", revision])


if __name__ == "__main__":
    run(sys.argv[1] if len(sys.argv) > 1 else "head")
