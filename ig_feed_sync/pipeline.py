from __future__ import annotations

from contextlib import ExitStack
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from .config import RuntimeSecrets, config_sha256, resolve_tenant
from .config_schema import AppConfig
from .errors import AuthExpired, ConfigError, RemoteAPIError, StoreError
from .graph_client import GraphClient, InstagramGraphClient, fetch_remote_feed
from .handles import child_media_alt, media_alt, post_handle
from .media import MediaTransferService
from .post import RemotePost
from .reconcile import AccountReconciler, TeardownReport
from .records import find_existing_post, upsert_list_record, upsert_post_record
from .run_log import RunLogger
from .storage import SQLiteStateStore
from .store_client import ShopifyStoreClient, Store

STATUS_SYNCED = "synced"
STATUS_NOTHING_TO_SYNC = "nothing_to_sync"
STATUS_NO_ACCOUNT = "no_account"
STATUS_AUTH_EXPIRED = "auth_expired"
STATUS_REMOTE_API_ERROR = "remote_api_error"


class PostStage(str, Enum):
    PENDING = "pending"
    LOOKED_UP = "looked_up"
    MEDIA_REUSED = "media_reused"
    MEDIA_TRANSFERRED = "media_transferred"
    UPSERTED = "upserted"
    FAILED = "failed"


@dataclass
class PostOutcome:
    post_id: str
    handle: str
    stage: PostStage = PostStage.PENDING
    media_ids: tuple[str, ...] = ()
    record_id: str | None = None
    transfers: int = 0
    message: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.stage is PostStage.UPSERTED and self.record_id is not None

    def fail(self, message: str) -> "PostOutcome":
        self.stage = PostStage.FAILED
        self.message = message
        return self


@dataclass(frozen=True)
class SyncResult:
    success: bool
    status: str
    message: str
    run_id: str | None = None
    username: str | None = None
    display_name: str | None = None
    remote_posts: int = 0
    synced_posts: int = 0
    list_record_id: str | None = None
    remote_error: dict[str, Any] | None = None
    teardown: TeardownReport | None = None
    outcomes: tuple[PostOutcome, ...] = field(default=(), repr=False)

    @property
    def failed_post_ids(self) -> list[str]:
        return [o.post_id for o in self.outcomes if not o.succeeded]


class PostSyncer:
    """
    Moves one remote post through lookup → transfer-or-reuse → upsert.

    Every failure stays inside the returned PostOutcome.
    """

    def __init__(
        self,
        store: Store,
        transfer: MediaTransferService,
        *,
        username: str,
        post_type: str,
        logger: RunLogger | None = None,
    ) -> None:
        self._store = store
        self._transfer = transfer
        self._username = username
        self._post_type = post_type
        self._log = logger or RunLogger.discard()

    def sync(self, post: RemotePost) -> PostOutcome:
        outcome = PostOutcome(post_id=post.id, handle=post_handle(self._username, post.id))

        try:
            self._advance(post, outcome)
        except StoreError as e:
            self._log.exception("post_store_error", exc=e, handle=outcome.handle, stage=outcome.stage.value)
            outcome.fail(str(e))

        if outcome.succeeded:
            self._log.info(
                "post_synced",
                handle=outcome.handle,
                record_id=outcome.record_id,
                media=len(outcome.media_ids),
                transfers=outcome.transfers,
            )
        else:
            self._log.warning("post_skipped", handle=outcome.handle, message=outcome.message)
        return outcome

    def _advance(self, post: RemotePost, outcome: PostOutcome) -> None:
        existing = find_existing_post(
            self._store,
            post_type=self._post_type,
            username=self._username,
            post_id=post.id,
        )
        outcome.stage = PostStage.LOOKED_UP

        if existing is not None:
            outcome.media_ids = existing.media_ids
            outcome.stage = PostStage.MEDIA_REUSED
        else:
            media_ids, transfers = self._transfer_media(post)
            outcome.transfers = transfers
            if not media_ids:
                outcome.fail("No media could be transferred")
                return
            outcome.media_ids = media_ids
            outcome.stage = PostStage.MEDIA_TRANSFERRED

        record_id = upsert_post_record(
            self._store,
            post,
            outcome.media_ids,
            self._username,
            post_type=self._post_type,
            logger=self._log,
        )
        if record_id is None:
            outcome.fail("Store rejected the post record")
            return

        outcome.record_id = record_id
        outcome.stage = PostStage.UPSERTED

    def _transfer_media(self, post: RemotePost) -> tuple[tuple[str, ...], int]:
        if post.is_carousel and post.children:
            ids: list[str] = []
            for child in post.children:
                result = self._transfer.transfer(
                    child.media_url,
                    child.media_type,
                    child_media_alt(self._username, post.id, child.id),
                )
                ids.extend(result.file_ids)
            return tuple(ids), len(post.children)

        result = self._transfer.transfer(
            post.media_url,
            post.media_type,
            media_alt(self._username, post.id),
        )
        return result.file_ids, 1


def _build_store(config: AppConfig, secrets: RuntimeSecrets | None) -> ShopifyStoreClient:
    if secrets is None:
        raise ConfigError("Store credentials are required when no store client is supplied")
    if not config.store.shop_domain:
        raise ConfigError("store.shop_domain must be set to reach the store Admin API")
    return ShopifyStoreClient(
        config.store.shop_domain,
        secrets.store_access_token,
        store=config.store,
    )


def run_sync(
    config: AppConfig,
    secrets: RuntimeSecrets | None,
    *,
    state: SQLiteStateStore,
    store: Store | None = None,
    graph_client: GraphClient | None = None,
    transfer: MediaTransferService | None = None,
    http: Any | None = None,
    logger: RunLogger | None = None,
    now: datetime | None = None,
) -> SyncResult:
    """
    Run one sync for the configured tenant.

    Fatal conditions (no account, expired token, remote API error) come back as a
    SyncResult with success=False and nothing written to the store. Clients built
    here are closed before returning; injected ones are left to the caller.
    """
    log = logger or RunLogger.discard()
    tenant = resolve_tenant(config)
    provider = config.account.provider

    run_id = state.start_sync_run(tenant=tenant, provider=provider, config_hash=config_sha256(config))
    log.set_run_id(run_id)
    log.bind(tenant=tenant)
    log.info("sync_started", provider=provider)

    def _finish(result: SyncResult) -> SyncResult:
        state.finish_sync_run(
            run_id,
            status=result.status,
            username=result.username,
            remote_posts=result.remote_posts,
            synced_posts=result.synced_posts,
        )
        summary = {
            "status": result.status,
            "message": result.message,
            "remote_posts": result.remote_posts,
            "synced_posts": result.synced_posts,
        }
        if result.success:
            log.info("sync_finished", **summary)
        else:
            log.error("sync_failed", **summary)
        return result

    account = state.get_account(tenant, provider)
    if account is None:
        return _finish(
            SyncResult(
                success=False,
                status=STATUS_NO_ACCOUNT,
                message="No Instagram account connected",
                run_id=run_id,
            )
        )

    with ExitStack() as owned:
        client = graph_client or owned.enter_context(
            InstagramGraphClient(account.access_token, instagram=config.instagram)
        )

        try:
            feed = fetch_remote_feed(account, client=client, now=now)
        except AuthExpired as e:
            return _finish(
                SyncResult(success=False, status=STATUS_AUTH_EXPIRED, message=str(e), run_id=run_id)
            )
        except RemoteAPIError as e:
            return _finish(
                SyncResult(
                    success=False,
                    status=STATUS_REMOTE_API_ERROR,
                    message=f"{e}. Please reconnect your Instagram account.",
                    run_id=run_id,
                    remote_error=e.payload or None,
                )
            )

        username = feed.profile.username
        display_name = feed.profile.name
        log.bind(username=username)
        log.info("remote_feed_fetched", posts=len(feed.posts), items=len(feed.media_items))

        if feed.is_empty:
            return _finish(
                SyncResult(
                    success=True,
                    status=STATUS_NOTHING_TO_SYNC,
                    message="No Instagram posts found to sync",
                    run_id=run_id,
                    username=username,
                    display_name=display_name,
                )
            )

        target = store or owned.enter_context(_build_store(config, secrets))

        reconciler = AccountReconciler(target, state, store_cfg=config.store, logger=log)
        teardown = reconciler.reconcile(account, username)

        mover = transfer
        if mover is None:
            mover = MediaTransferService(target, media=config.media, http=http, logger=log)
            owned.callback(mover.close)

        syncer = PostSyncer(
            target,
            mover,
            username=username,
            post_type=config.store.post_type,
            logger=log,
        )

        # One post at a time, so at most one video is buffered.
        outcomes = tuple(syncer.sync(post) for post in feed.posts)

        reconciler.record_first_link(account, username)

        record_ids = [o.record_id for o in outcomes if o.succeeded and o.record_id]

        list_record_id: str | None = None
        if record_ids:
            try:
                list_record_id = upsert_list_record(
                    target,
                    feed.media_items,
                    record_ids,
                    username,
                    display_name,
                    list_type=config.store.list_type,
                    profile=feed.profile,
                    logger=log,
                )
            except StoreError as e:
                log.exception("list_upsert_failed", exc=e)
        else:
            log.warning("list_upsert_skipped", reason="no posts upserted this run")

        return _finish(
            SyncResult(
                success=True,
                status=STATUS_SYNCED,
                message=f"Synced {len(record_ids)} of {len(feed.posts)} Instagram posts for @{username}",
                run_id=run_id,
                username=username,
                display_name=display_name,
                remote_posts=len(feed.posts),
                synced_posts=len(record_ids),
                list_record_id=list_record_id,
                teardown=teardown,
                outcomes=outcomes,
            )
        )
