from __future__ import annotations

import sqlite3
from datetime import datetime, timezone

SCHEMA_VERSION = 1

_MIGRATIONS: dict[int, str] = {
    1: """
CREATE TABLE IF NOT EXISTS accounts (
  account_id TEXT PRIMARY KEY,
  tenant TEXT NOT NULL,
  provider TEXT NOT NULL,
  access_token TEXT NOT NULL,
  remote_account_id TEXT,
  username TEXT,
  expires_at TEXT,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  UNIQUE (tenant, provider)
);

CREATE TABLE IF NOT EXISTS sync_runs (
  run_id TEXT PRIMARY KEY,
  tenant TEXT NOT NULL,
  provider TEXT NOT NULL,
  started_at TEXT NOT NULL,
  ended_at TEXT,
  status TEXT,
  username TEXT,
  remote_posts INTEGER,
  synced_posts INTEGER,
  config_hash TEXT
);

CREATE INDEX IF NOT EXISTS idx_sync_runs_tenant_ended
  ON sync_runs(tenant, provider, ended_at);
""".strip(),
}


def initialize_sqlite(conn: sqlite3.Connection) -> None:
    """
    Prepare the state database: connection pragmas, then any pending migrations.

    Safe to call on every open.
    """
    conn.execute("PRAGMA busy_timeout = 5000")
    # In-memory databases reject WAL; they keep the default journal.
    try:
        conn.execute("PRAGMA journal_mode = WAL")
    except sqlite3.DatabaseError:
        pass

    with conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations (
              version INTEGER PRIMARY KEY,
              applied_at TEXT NOT NULL
            )
            """.strip()
        )

    done = _applied_versions(conn)
    pending = [v for v in range(1, SCHEMA_VERSION + 1) if v not in done]
    for version in pending:
        if version not in _MIGRATIONS:
            raise RuntimeError(f"No migration registered for schema version {version}")
        with conn:
            conn.executescript(_MIGRATIONS[version])
            conn.execute(
                "INSERT INTO schema_migrations(version, applied_at) VALUES (?, ?)",
                (version, datetime.now(timezone.utc).isoformat()),
            )


def _applied_versions(conn: sqlite3.Connection) -> set[int]:
    return {int(row[0]) for row in conn.execute("SELECT version FROM schema_migrations")}
