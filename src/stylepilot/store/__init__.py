from __future__ import annotations

from stylepilot.store.db import Database
from stylepilot.store.migrations import run_migrations
from stylepilot.store.repositories import ArtifactRepository

__all__ = [
    "ArtifactRepository",
    "Database",
    "run_migrations",
]
