from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Sequence

from .errors import StoreError
from .handles import list_handle, post_handle
from .post import RemotePost, RemoteProfile
from .run_log import RunLogger
from .store_client import Store

FIELD_DATA = "data"
FIELD_IMAGES = "images"
FIELD_CAPTION = "caption"
FIELD_LIKES = "likes"
FIELD_COMMENTS = "comments"
FIELD_POSTS = "posts"
FIELD_USERNAME = "username"
FIELD_NAME = "name"

DEFAULT_CAPTION = "No caption"
DEFAULT_USERNAME = "instagram_user"
DEFAULT_DISPLAY_NAME = "Instagram User"


def _json_dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"), default=str)


def _count_field(value: int | None) -> str:
    return str(value) if value is not None else "0"


@dataclass(frozen=True)
class ExistingPost:
    record_id: str
    media_ids: tuple[str, ...]
    handle: str


def decode_id_list(raw: str | None, *, handle: str) -> tuple[str, ...]:
    if raw is None or not raw.strip():
        return ()
    try:
        value = json.loads(raw)
    except ValueError as e:
        raise StoreError(f"Stored id list for {handle} is not valid JSON") from e

    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise StoreError(f"Stored id list for {handle} is not a list of ids")
    return tuple(value)


def find_existing_post(
    store: Store,
    *,
    post_type: str,
    username: str,
    post_id: str,
) -> ExistingPost | None:
    """
    Look up the per-post record by its deterministic handle.

    The returned media ids are reused as-is, so an existing post never triggers a
    second upload of its media.
    """
    handle = post_handle(username, post_id)
    record = store.metaobject_by_handle(post_type, handle)
    if record is None:
        return None

    return ExistingPost(
        record_id=record.id,
        media_ids=decode_id_list(record.fields.get(FIELD_IMAGES), handle=record.handle or handle),
        handle=record.handle or handle,
    )


def post_record_fields(post: RemotePost, media_ids: Sequence[str]) -> dict[str, str]:
    return {
        FIELD_DATA: _json_dumps(dict(post.raw)),
        FIELD_IMAGES: _json_dumps(list(media_ids)),
        FIELD_CAPTION: post.caption or DEFAULT_CAPTION,
        FIELD_LIKES: _count_field(post.like_count),
        FIELD_COMMENTS: _count_field(post.comments_count),
    }


def upsert_post_record(
    store: Store,
    post: RemotePost,
    media_ids: Sequence[str],
    username: str,
    *,
    post_type: str,
    logger: RunLogger | None = None,
) -> str | None:
    """
    Create or update the per-post record by handle and return its id.

    User errors are logged and yield None so the post drops out of this run's list.
    """
    log = logger or RunLogger.discard()
    handle = post_handle(username, post.id)

    result = store.upsert_metaobject(post_type, handle, post_record_fields(post, media_ids))
    if result.user_errors:
        log.error(
            "post_upsert_user_errors",
            handle=handle,
            errors=[str(e) for e in result.user_errors],
        )
        return None

    if result.record is None:
        log.error("post_upsert_missing_record", handle=handle)
        return None

    return result.record.id


def list_record_fields(
    media_items: Sequence[Any],
    profile: RemoteProfile | None,
    post_record_ids: Sequence[str],
    username: str,
    display_name: str | None,
) -> dict[str, str]:
    payload: dict[str, Any] = {"data": list(media_items)}
    if profile is not None:
        payload["profile"] = dict(profile.raw)

    return {
        FIELD_DATA: _json_dumps(payload),
        FIELD_POSTS: _json_dumps(list(post_record_ids)),
        FIELD_USERNAME: username or DEFAULT_USERNAME,
        FIELD_NAME: display_name or DEFAULT_DISPLAY_NAME,
    }


def upsert_list_record(
    store: Store,
    media_items: Sequence[Any],
    post_record_ids: Sequence[str],
    username: str,
    display_name: str | None,
    *,
    list_type: str,
    profile: RemoteProfile | None = None,
    logger: RunLogger | None = None,
) -> str | None:
    """
    Overwrite the feed list record with this run's successful post record ids.
    """
    log = logger or RunLogger.discard()
    handle = list_handle(username)

    fields = list_record_fields(media_items, profile, post_record_ids, username, display_name)
    result = store.upsert_metaobject(list_type, handle, fields)
    if result.user_errors:
        log.error(
            "list_upsert_user_errors",
            handle=handle,
            errors=[str(e) for e in result.user_errors],
        )
        return None

    if result.record is None:
        log.error("list_upsert_missing_record", handle=handle)
        return None

    log.info("list_upserted", handle=handle, record_id=result.record.id, posts=len(post_record_ids))
    return result.record.id
