from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, Sequence

from .config_schema import StoreConfig
from .errors import StoreError
from .handles import list_handle, media_alt_prefix, post_handle_prefix
from .run_log import RunLogger
from .storage import Account, SQLiteStateStore
from .store_client import Store

IDENTITY_FIRST_LINK = "first_link"
IDENTITY_UNCHANGED = "unchanged"
IDENTITY_SWITCHED = "switched"


def identity_transition(stored_username: str | None, current_username: str) -> str:
    stored = (stored_username or "").strip()
    if not stored:
        return IDENTITY_FIRST_LINK
    if stored == (current_username or "").strip():
        return IDENTITY_UNCHANGED
    return IDENTITY_SWITCHED


def _chunked(values: Sequence[str], size: int) -> Iterator[list[str]]:
    if size <= 0:
        raise ValueError("chunk size must be positive")

    batch: list[str] = []
    for item in values:
        batch.append(item)
        if len(batch) >= size:
            yield batch
            batch = []
    if batch:
        yield batch


@dataclass
class TeardownReport:
    """What a teardown removed for one username, and which steps failed."""

    username: str
    deleted_post_records: list[str] = field(default_factory=list)
    deleted_list_record: str | None = None
    deleted_files: list[str] = field(default_factory=list)
    failures: list[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failures


def teardown_username(
    store: Store,
    username: str,
    *,
    store_cfg: StoreConfig,
    logger: RunLogger | None = None,
) -> TeardownReport:
    """
    Delete every post record, the list record and every media file tagged with `username`.

    Best effort: each step is idempotent and can be rerun; a failed step is logged
    and reported, and the remaining steps still run. Never raises StoreError.
    """
    log = logger or RunLogger.discard()
    report = TeardownReport(username=username)

    _delete_post_records(store, username, store_cfg=store_cfg, report=report, log=log)
    _delete_list_record(store, username, store_cfg=store_cfg, report=report, log=log)
    _delete_media_files(store, username, store_cfg=store_cfg, report=report, log=log)

    log.info(
        "teardown_finished",
        username=username,
        deleted_post_records=len(report.deleted_post_records),
        deleted_list_record=report.deleted_list_record is not None,
        deleted_files=len(report.deleted_files),
        failures=report.failures,
    )
    return report


def _delete_post_records(
    store: Store,
    username: str,
    *,
    store_cfg: StoreConfig,
    report: TeardownReport,
    log: RunLogger,
) -> None:
    prefix = post_handle_prefix(username)

    try:
        targets = [
            r for r in store.iter_metaobjects(store_cfg.post_type, page_size=store_cfg.page_size)
            if r.handle.startswith(prefix)
        ]
    except StoreError as e:
        log.exception("teardown_list_posts_failed", exc=e, username=username)
        report.failures.append(f"list post records: {e}")
        return

    for record in targets:
        try:
            result = store.delete_metaobject(record.id)
        except StoreError as e:
            log.exception("teardown_delete_post_failed", exc=e, handle=record.handle)
            report.failures.append(f"delete {record.handle}: {e}")
            continue

        if result.user_errors:
            errors = [str(err) for err in result.user_errors]
            log.error("teardown_delete_post_user_errors", handle=record.handle, errors=errors)
            report.failures.append(f"delete {record.handle}: {'; '.join(errors)}")
            continue

        report.deleted_post_records.append(record.id)


def _delete_list_record(
    store: Store,
    username: str,
    *,
    store_cfg: StoreConfig,
    report: TeardownReport,
    log: RunLogger,
) -> None:
    handle = list_handle(username)

    try:
        record = store.metaobject_by_handle(store_cfg.list_type, handle)
        if record is None:
            return
        result = store.delete_metaobject(record.id)
    except StoreError as e:
        log.exception("teardown_delete_list_failed", exc=e, handle=handle)
        report.failures.append(f"delete {handle}: {e}")
        return

    if result.user_errors:
        errors = [str(err) for err in result.user_errors]
        log.error("teardown_delete_list_user_errors", handle=handle, errors=errors)
        report.failures.append(f"delete {handle}: {'; '.join(errors)}")
        return

    report.deleted_list_record = record.id


def _delete_media_files(
    store: Store,
    username: str,
    *,
    store_cfg: StoreConfig,
    report: TeardownReport,
    log: RunLogger,
) -> None:
    prefix = media_alt_prefix(username)

    # The files search is fuzzy; the prefix check is what decides.
    try:
        file_ids = [
            f.id for f in store.iter_files(f"alt:{prefix}", page_size=store_cfg.page_size)
            if (f.alt or "").startswith(prefix)
        ]
    except StoreError as e:
        log.exception("teardown_list_files_failed", exc=e, username=username)
        report.failures.append(f"list media files: {e}")
        return

    for batch in _chunked(file_ids, store_cfg.page_size):
        try:
            result = store.delete_files(batch)
        except StoreError as e:
            log.exception("teardown_delete_files_failed", exc=e, username=username, count=len(batch))
            report.failures.append(f"delete {len(batch)} media files: {e}")
            continue

        if result.user_errors:
            errors = [str(err) for err in result.user_errors]
            log.error("teardown_delete_files_user_errors", username=username, errors=errors)
            report.failures.append(f"delete media files: {'; '.join(errors)}")

        report.deleted_files.extend(result.deleted_ids)


class AccountReconciler:
    """
    Tracks the linked account's username and tears down old data on an identity switch.
    """

    def __init__(
        self,
        store: Store,
        state: SQLiteStateStore,
        *,
        store_cfg: StoreConfig,
        logger: RunLogger | None = None,
    ) -> None:
        self._store = store
        self._state = state
        self._cfg = store_cfg
        self._log = logger or RunLogger.discard()

    def reconcile(self, account: Account, current_username: str) -> TeardownReport | None:
        """
        Run before any per-post work.

        On a switch the old username's data is torn down and the new username is
        persisted right away. A first link is left for `record_first_link` after
        the upserts.
        """
        transition = identity_transition(account.username, current_username)
        self._log.info(
            "identity_checked",
            transition=transition,
            stored_username=account.username,
            current_username=current_username,
        )

        if transition != IDENTITY_SWITCHED:
            return None

        old = (account.username or "").strip()
        report = teardown_username(self._store, old, store_cfg=self._cfg, logger=self._log)
        if not report.complete:
            self._log.warning(
                "teardown_incomplete",
                old_username=old,
                failures=len(report.failures),
            )

        self._state.update_username(account.account_id, current_username)
        return report

    def record_first_link(self, account: Account, current_username: str) -> bool:
        if identity_transition(account.username, current_username) != IDENTITY_FIRST_LINK:
            return False
        self._state.update_username(account.account_id, current_username)
        return True


def purge_account(
    store: Store,
    state: SQLiteStateStore,
    account: Account,
    *,
    store_cfg: StoreConfig,
    forget: bool = False,
    logger: RunLogger | None = None,
) -> TeardownReport | None:
    """
    Delete everything synced for the account's stored username.

    With `forget=True` the local account row is removed afterwards, but only once
    the teardown is complete; otherwise the row (and its username) is kept so the
    command can be rerun.
    """
    log = logger or RunLogger.discard()
    username = (account.username or "").strip()

    report: TeardownReport | None = None
    if username:
        report = teardown_username(store, username, store_cfg=store_cfg, logger=log)
    else:
        log.info("purge_skipped", reason="no username recorded for account")

    if not forget:
        return report

    if report is not None and not report.complete:
        log.warning(
            "disconnect_deferred",
            provider=account.provider,
            username=username,
            failures=len(report.failures),
        )
        return report

    state.delete_account(account.tenant, account.provider)
    log.info("account_disconnected", provider=account.provider)
    return report
