from __future__ import annotations

import sqlite3
import uuid
from datetime import datetime, timezone

from stylepilot.model.artifact import Artifact
from stylepilot.store.db import Database


class ArtifactRepository:
    """Saved stylesheets, newest first."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def save_artifact(self, label: str, payload: str, description: str = "") -> Artifact:
        """Store *payload* under *label* and return the new artifact."""
        if not label.strip():
            raise ValueError("Artifact label must not be empty")
        artifact = Artifact(
            id=uuid.uuid4().hex[:12],
            label=label.strip(),
            css=payload,
            created_at=datetime.now(timezone.utc).isoformat(),
            description=description,
        )
        self._db.execute(
            """INSERT INTO artifacts (id, label, css, description, created_at)
               VALUES (?, ?, ?, ?, ?)""",
            (artifact.id, artifact.label, artifact.css, artifact.description, artifact.created_at),
        )
        self._db.commit()
        return artifact

    def get_artifact(self, artifact_id: str) -> Artifact | None:
        row = self._db.fetch_one("SELECT * FROM artifacts WHERE id = ?", (artifact_id,))
        if row is None:
            return None
        return _row_to_artifact(row)

    def list_artifacts(self, limit: int = 100, offset: int = 0) -> tuple[Artifact, ...]:
        rows = self._db.fetch_all(
            "SELECT * FROM artifacts ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?",
            (limit, offset),
        )
        return tuple(_row_to_artifact(r) for r in rows)

    def delete_artifact(self, artifact_id: str) -> bool:
        """Delete an artifact; False if it did not exist."""
        cursor = self._db.execute("DELETE FROM artifacts WHERE id = ?", (artifact_id,))
        self._db.commit()
        return cursor.rowcount > 0

    def count(self) -> int:
        row = self._db.fetch_one("SELECT COUNT(*) AS cnt FROM artifacts")
        assert row is not None
        return row["cnt"]


def _row_to_artifact(row: sqlite3.Row) -> Artifact:
    return Artifact(
        id=row["id"],
        label=row["label"],
        css=row["css"],
        created_at=row["created_at"],
        description=row["description"],
    )
