from __future__ import annotations

from dataclasses import dataclass

from .config_schema import StoreConfig
from .handles import list_handle, media_alt_prefix, post_handle_prefix
from .records import FIELD_POSTS, decode_id_list
from .storage import Account, SQLiteStateStore
from .store_client import Store


@dataclass(frozen=True)
class SyncStats:
    username: str | None
    post_records: int
    media_files: int
    list_posts: int
    last_synced_at: str | None


def collect_sync_stats(
    store: Store,
    state: SQLiteStateStore,
    account: Account | None,
    *,
    store_cfg: StoreConfig,
) -> SyncStats:
    """Count what is currently synced for the linked account's username."""
    last = None
    if account is not None:
        run = state.last_successful_sync(account.tenant, account.provider)
        last = run.ended_at if run is not None else None

    username = (account.username or "").strip() if account is not None else ""
    if not username:
        return SyncStats(username=None, post_records=0, media_files=0, list_posts=0, last_synced_at=last)

    handle_prefix = post_handle_prefix(username)
    post_records = sum(
        1
        for r in store.iter_metaobjects(store_cfg.post_type, page_size=store_cfg.page_size)
        if r.handle.startswith(handle_prefix)
    )

    alt_prefix = media_alt_prefix(username)
    media_files = sum(
        1
        for f in store.iter_files(f"alt:{alt_prefix}", page_size=store_cfg.page_size)
        if (f.alt or "").startswith(alt_prefix)
    )

    list_posts = 0
    handle = list_handle(username)
    record = store.metaobject_by_handle(store_cfg.list_type, handle)
    if record is not None:
        list_posts = len(decode_id_list(record.fields.get(FIELD_POSTS), handle=handle))

    return SyncStats(
        username=username,
        post_records=post_records,
        media_files=media_files,
        list_posts=list_posts,
        last_synced_at=last,
    )
