"""SQLite storage layer for encrypted secret envelopes and templates."""

import json
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from .protocol import PersistencePort, SecretInfo, SecretTemplate, TemplateRepository

_ENVELOPE_COLUMNS = (
    "owner_id",
    "key",
    "ciphertext",
    "iv",
    "auth_tag",
    "salt",
    "description",
    "created_at",
    "updated_at",
)


class SecretsDatabase(PersistencePort, TemplateRepository):
    """SQLite-backed storage for secret envelopes and secret templates."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._init_db()

    @contextmanager
    def _get_conn(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self._get_conn() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS secrets (
                    owner_id TEXT NOT NULL,
                    key TEXT NOT NULL,
                    ciphertext TEXT NOT NULL,
                    iv TEXT NOT NULL,
                    auth_tag TEXT NOT NULL,
                    salt TEXT NOT NULL,
                    description TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (owner_id, key)
                );

                CREATE TABLE IF NOT EXISTS secret_templates (
                    owner_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    description TEXT,
                    template TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (owner_id, name)
                );
            """)

    # ── Envelope operations ────────────────────────────────────────

    def upsert_envelope(self, owner_id: str, key: str, record: dict) -> None:
        row = {name: record.get(name) for name in _ENVELOPE_COLUMNS}
        row["owner_id"] = owner_id
        row["key"] = key
        with self._get_conn() as conn:
            conn.execute(
                "INSERT INTO secrets "
                "(owner_id, key, ciphertext, iv, auth_tag, salt, "
                "description, created_at, updated_at) "
                "VALUES (:owner_id, :key, :ciphertext, :iv, :auth_tag, :salt, "
                ":description, :created_at, :updated_at) "
                "ON CONFLICT (owner_id, key) DO UPDATE SET "
                "ciphertext = excluded.ciphertext, iv = excluded.iv, "
                "auth_tag = excluded.auth_tag, salt = excluded.salt, "
                "description = excluded.description, "
                "updated_at = excluded.updated_at",
                row,
            )

    def get_envelope(self, owner_id: str, key: str) -> dict | None:
        with self._get_conn() as conn:
            row = conn.execute(
                f"SELECT {', '.join(_ENVELOPE_COLUMNS)} "
                "FROM secrets WHERE owner_id = ? AND key = ?",
                (owner_id, key),
            ).fetchone()
        if row is None:
            return None
        return dict(row)

    def list_envelopes(self, owner_id: str) -> list[SecretInfo]:
        with self._get_conn() as conn:
            rows = conn.execute(
                "SELECT key, description, created_at, updated_at "
                "FROM secrets WHERE owner_id = ? ORDER BY key",
                (owner_id,),
            ).fetchall()
        return [SecretInfo(**dict(row)) for row in rows]

    def delete_envelope(self, owner_id: str, key: str) -> bool:
        with self._get_conn() as conn:
            cursor = conn.execute(
                "DELETE FROM secrets WHERE owner_id = ? AND key = ?",
                (owner_id, key),
            )
            return cursor.rowcount > 0

    # ── Template operations ────────────────────────────────────────

    def upsert_template(self, template: SecretTemplate) -> None:
        with self._get_conn() as conn:
            conn.execute(
                "INSERT INTO secret_templates "
                "(owner_id, name, description, template, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?) "
                "ON CONFLICT (owner_id, name) DO UPDATE SET "
                "description = excluded.description, "
                "template = excluded.template, "
                "updated_at = excluded.updated_at",
                (
                    template.owner_id,
                    template.name,
                    template.description,
                    json.dumps(template.values),
                    template.created_at,
                    template.updated_at,
                ),
            )

    def get_template(self, owner_id: str, name: str) -> SecretTemplate | None:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT owner_id, name, description, template, created_at, updated_at "
                "FROM secret_templates WHERE owner_id = ? AND name = ?",
                (owner_id, name),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_template(row)

    def list_templates(self, owner_id: str) -> list[SecretTemplate]:
        with self._get_conn() as conn:
            rows = conn.execute(
                "SELECT owner_id, name, description, template, created_at, updated_at "
                "FROM secret_templates WHERE owner_id = ? ORDER BY name",
                (owner_id,),
            ).fetchall()
        return [self._row_to_template(row) for row in rows]

    def delete_template(self, owner_id: str, name: str) -> bool:
        with self._get_conn() as conn:
            cursor = conn.execute(
                "DELETE FROM secret_templates WHERE owner_id = ? AND name = ?",
                (owner_id, name),
            )
            return cursor.rowcount > 0

    @staticmethod
    def _row_to_template(row: sqlite3.Row) -> SecretTemplate:
        return SecretTemplate(
            owner_id=row["owner_id"],
            name=row["name"],
            values=json.loads(row["template"]),
            description=row["description"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
