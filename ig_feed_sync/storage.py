from __future__ import annotations

import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .errors import StorageError
from .storage_schema import initialize_sqlite


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse a stored ISO-8601 timestamp; naive values are treated as UTC."""
    raw = (value or "").strip()
    if not raw:
        return None
    try:
        dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass(frozen=True)
class Account:
    account_id: str
    tenant: str
    provider: str
    access_token: str
    remote_account_id: str | None
    username: str | None
    expires_at: str | None
    created_at: str
    updated_at: str

    def is_expired(self, now: datetime) -> bool:
        """Naive `now` values are read as UTC, like stored timestamps."""
        expiry = parse_timestamp(self.expires_at)
        if expiry is None:
            return False
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return expiry < now


@dataclass(frozen=True)
class SyncRunRecord:
    run_id: str
    tenant: str
    provider: str
    started_at: str
    ended_at: str | None
    status: str | None
    username: str | None
    remote_posts: int | None
    synced_posts: int | None


def _account_from_row(row: sqlite3.Row) -> Account:
    return Account(
        account_id=str(row["account_id"]),
        tenant=str(row["tenant"]),
        provider=str(row["provider"]),
        access_token=str(row["access_token"]),
        remote_account_id=str(row["remote_account_id"]) if row["remote_account_id"] is not None else None,
        username=str(row["username"]) if row["username"] is not None else None,
        expires_at=str(row["expires_at"]) if row["expires_at"] is not None else None,
        created_at=str(row["created_at"]),
        updated_at=str(row["updated_at"]),
    )


def _run_from_row(row: sqlite3.Row) -> SyncRunRecord:
    return SyncRunRecord(
        run_id=str(row["run_id"]),
        tenant=str(row["tenant"]),
        provider=str(row["provider"]),
        started_at=str(row["started_at"]),
        ended_at=str(row["ended_at"]) if row["ended_at"] is not None else None,
        status=str(row["status"]) if row["status"] is not None else None,
        username=str(row["username"]) if row["username"] is not None else None,
        remote_posts=int(row["remote_posts"]) if row["remote_posts"] is not None else None,
        synced_posts=int(row["synced_posts"]) if row["synced_posts"] is not None else None,
    )


class SQLiteStateStore:
    """
    Local state for the sync CLI: the linked account per (tenant, provider) and a
    history of sync runs.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._conn.row_factory = sqlite3.Row

    @classmethod
    def open(cls, path: str | Path) -> "SQLiteStateStore":
        target = str(path)
        if target != ":memory:":
            Path(target).parent.mkdir(parents=True, exist_ok=True)

        try:
            conn = sqlite3.connect(target)
            try:
                initialize_sqlite(conn)
            except Exception:
                conn.close()
                raise
        except (sqlite3.Error, RuntimeError) as e:
            raise StorageError(f"Cannot open state database {target}: {e}") from e

        return cls(conn)

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "SQLiteStateStore":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    @property
    def conn(self) -> sqlite3.Connection:
        return self._conn

    def upsert_account(
        self,
        *,
        tenant: str,
        provider: str,
        access_token: str,
        expires_at: str | None = None,
        remote_account_id: str | None = None,
        username: str | None = None,
    ) -> Account:
        """
        Link (or re-link) the account for (tenant, provider).

        A re-link keeps the stored username unless a new one is given, so an identity
        change is still detected by the next sync.
        """
        t = (tenant or "").strip()
        p = (provider or "").strip()
        token = (access_token or "").strip()
        if not t or not p or not token:
            raise ValueError("tenant, provider, and access_token must be non-empty")

        uname = (username or "").strip() or None
        remote_id = (remote_account_id or "").strip() or None
        expiry = (expires_at or "").strip() or None
        now = _utc_now_iso()

        try:
            with self._conn:
                self._conn.execute(
                    """
                    INSERT INTO accounts(
                      account_id, tenant, provider, access_token, remote_account_id,
                      username, expires_at, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(tenant, provider) DO UPDATE SET
                      access_token = excluded.access_token,
                      remote_account_id = COALESCE(excluded.remote_account_id, accounts.remote_account_id),
                      username = COALESCE(excluded.username, accounts.username),
                      expires_at = excluded.expires_at,
                      updated_at = excluded.updated_at
                    """.strip(),
                    (uuid.uuid4().hex, t, p, token, remote_id, uname, expiry, now, now),
                )
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to upsert account: {e}") from e

        account = self.get_account(t, p)
        if account is None:
            raise StorageError("Failed to read account after upsert")
        return account

    def get_account(self, tenant: str, provider: str) -> Account | None:
        row = self._conn.execute(
            """
            SELECT account_id, tenant, provider, access_token, remote_account_id,
                   username, expires_at, created_at, updated_at
            FROM accounts
            WHERE tenant = ? AND provider = ?
            """.strip(),
            ((tenant or "").strip(), (provider or "").strip()),
        ).fetchone()
        if row is None:
            return None
        return _account_from_row(row)

    def update_username(self, account_id: str, username: str) -> None:
        aid = (account_id or "").strip()
        uname = (username or "").strip()
        if not aid or not uname:
            raise ValueError("account_id and username must be non-empty")

        try:
            with self._conn:
                cur = self._conn.execute(
                    "UPDATE accounts SET username = ?, updated_at = ? WHERE account_id = ?",
                    (uname, _utc_now_iso(), aid),
                )
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to update account username: {e}") from e

        if cur.rowcount == 0:
            raise StorageError(f"No account with id {aid}")

    def delete_account(self, tenant: str, provider: str) -> bool:
        try:
            with self._conn:
                cur = self._conn.execute(
                    "DELETE FROM accounts WHERE tenant = ? AND provider = ?",
                    ((tenant or "").strip(), (provider or "").strip()),
                )
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to delete account: {e}") from e
        return cur.rowcount > 0

    def start_sync_run(
        self,
        *,
        tenant: str,
        provider: str,
        config_hash: str | None = None,
        run_id: str | None = None,
        started_at: str | None = None,
    ) -> str:
        rid = (run_id or uuid.uuid4().hex).strip()
        start = (started_at or _utc_now_iso()).strip()

        try:
            with self._conn:
                self._conn.execute(
                    """
                    INSERT INTO sync_runs(run_id, tenant, provider, started_at, config_hash)
                    VALUES (?, ?, ?, ?, ?)
                    """.strip(),
                    (rid, tenant, provider, start, config_hash),
                )
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to record sync run: {e}") from e
        return rid

    def finish_sync_run(
        self,
        run_id: str,
        *,
        status: str,
        username: str | None = None,
        remote_posts: int | None = None,
        synced_posts: int | None = None,
        ended_at: str | None = None,
    ) -> None:
        rid = (run_id or "").strip()
        if not rid:
            raise ValueError("run_id must be non-empty")

        end = (ended_at or _utc_now_iso()).strip()

        try:
            with self._conn:
                self._conn.execute(
                    """
                    UPDATE sync_runs
                    SET ended_at = ?, status = ?, username = ?, remote_posts = ?, synced_posts = ?
                    WHERE run_id = ?
                    """.strip(),
                    (end, status, username, remote_posts, synced_posts, rid),
                )
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to finish sync run: {e}") from e

    def get_sync_run(self, run_id: str) -> SyncRunRecord | None:
        row = self._conn.execute(
            "SELECT * FROM sync_runs WHERE run_id = ?",
            ((run_id or "").strip(),),
        ).fetchone()
        if row is None:
            return None
        return _run_from_row(row)

    def last_successful_sync(self, tenant: str, provider: str) -> SyncRunRecord | None:
        row = self._conn.execute(
            """
            SELECT *
            FROM sync_runs
            WHERE tenant = ? AND provider = ? AND status IN ('synced', 'nothing_to_sync')
            ORDER BY ended_at DESC
            LIMIT 1
            """.strip(),
            (tenant, provider),
        ).fetchone()
        if row is None:
            return None
        return _run_from_row(row)

    def sync_run_count(self, *, status: str | None = None) -> int:
        sql = "SELECT COUNT(1) AS n FROM sync_runs"
        params: tuple[Any, ...] = ()
        if status is not None:
            sql += " WHERE status = ?"
            params = (status,)
        row = self._conn.execute(sql, params).fetchone()
        return int(row["n"]) if row is not None else 0
