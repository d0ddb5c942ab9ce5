"""SQLite state store used by the CLI host."""

import json
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from types import TracebackType
from typing import Any

import structlog

from ..models.state import ResourceState
from .private_state import PrivateState

logger = structlog.get_logger(__name__)


@dataclass
class StoredResource:
    """A resource row: its kind, the config it was applied with, and its state."""

    name: str
    kind: str
    config: dict[str, Any]
    state: ResourceState
    updated_at: str


class StateStore:
    """
    SQLite-backed store of resource states.

    Public state is stored as JSON; private state is stored separately as
    the opaque bytes the engine hands out, mirroring how a host keeps it.
    """

    def __init__(self, db_path: str | Path) -> None:
        """
        Initialize StateStore.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn: sqlite3.Connection = self._initialize_db()

        logger.debug("StateStore initialized", db_path=str(self.db_path))

    def _initialize_db(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS resources (
                name TEXT PRIMARY KEY,
                kind TEXT NOT NULL,
                config TEXT NOT NULL,
                state TEXT NOT NULL,
                private BLOB,
                updated_at TEXT NOT NULL
            )
        """
        )
        conn.commit()
        return conn

    def save(self, name: str, kind: str, config: dict[str, Any], state: ResourceState) -> None:
        """Insert or replace the state of ``name``."""
        public = state.to_dict()
        public.pop("private", None)
        self.conn.execute(
            """
            INSERT OR REPLACE INTO resources (name, kind, config, state, private, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                name,
                kind,
                json.dumps(config),
                json.dumps(public),
                state.private.to_bytes(),
                datetime.now(timezone.utc).isoformat(),
            ),
        )
        self.conn.commit()
        logger.debug("State saved", name=name, kind=kind, id=state.id)

    def load(self, name: str) -> StoredResource | None:
        """Load the state of ``name``, None if unknown."""
        row = self.conn.execute("SELECT * FROM resources WHERE name = ?", (name,)).fetchone()
        if row is None:
            return None
        return self._row_to_resource(row)

    def delete(self, name: str) -> bool:
        """Forget ``name``; returns whether a row was removed."""
        cursor = self.conn.execute("DELETE FROM resources WHERE name = ?", (name,))
        self.conn.commit()
        return cursor.rowcount > 0

    def list_all(self) -> list[StoredResource]:
        cursor = self.conn.execute("SELECT * FROM resources ORDER BY name")
        return [self._row_to_resource(row) for row in cursor.fetchall()]

    def _row_to_resource(self, row: sqlite3.Row) -> StoredResource:
        public = json.loads(row["state"])
        state = ResourceState.from_dict(public)
        state.private = PrivateState.from_bytes(row["private"])
        return StoredResource(
            name=row["name"],
            kind=row["kind"],
            config=json.loads(row["config"]),
            state=state,
            updated_at=row["updated_at"],
        )

    def close(self) -> None:
        """Close database connection."""
        if self.conn:
            self.conn.close()

    def __enter__(self) -> "StateStore":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()
