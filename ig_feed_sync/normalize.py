from __future__ import annotations

from typing import Any, Iterable, Mapping

from .post import RemoteChild, RemotePost, RemoteProfile


def _coerce_str(value: Any) -> str | None:
    if isinstance(value, str):
        s = value.strip()
        return s if s else None
    return None


def _coerce_id(value: Any) -> str | None:
    if isinstance(value, str):
        v = value.strip()
        return v if v else None
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return None


def _coerce_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _media_type(value: Any) -> str | None:
    s = _coerce_str(value)
    return s.upper() if s else None


def _children_items(value: Any) -> list[Mapping[str, Any]]:
    # Graph API nests edges as {"data": [...]}; tolerate a bare list too.
    if isinstance(value, Mapping):
        value = value.get("data")
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, Mapping)]


def remote_child_from_graph_item(item: Mapping[str, Any]) -> RemoteChild | None:
    child_id = _coerce_id(item.get("id"))
    if not child_id:
        return None

    return RemoteChild(
        id=child_id,
        media_type=_media_type(item.get("media_type")) or "IMAGE",
        media_url=_coerce_str(item.get("media_url")),
        thumbnail_url=_coerce_str(item.get("thumbnail_url")),
    )


def remote_post_from_graph_item(item: Mapping[str, Any]) -> RemotePost | None:
    """
    Build a RemotePost from one `/me/media` item.

    Returns None for items without an id. Carousel children keep their remote order.
    """
    post_id = _coerce_id(item.get("id"))
    if not post_id:
        return None

    children: list[RemoteChild] = []
    for child_item in _children_items(item.get("children")):
        child = remote_child_from_graph_item(child_item)
        if child is not None:
            children.append(child)

    return RemotePost(
        id=post_id,
        media_type=_media_type(item.get("media_type")) or "IMAGE",
        media_url=_coerce_str(item.get("media_url")),
        thumbnail_url=_coerce_str(item.get("thumbnail_url")),
        permalink=_coerce_str(item.get("permalink")),
        caption=_coerce_str(item.get("caption")),
        timestamp=_coerce_str(item.get("timestamp")),
        like_count=_coerce_int(item.get("like_count")),
        comments_count=_coerce_int(item.get("comments_count")),
        children=tuple(children),
        raw=dict(item),
    )


def remote_posts_from_graph_items(items: Iterable[Mapping[str, Any]]) -> list[RemotePost]:
    out: list[RemotePost] = []
    seen: set[str] = set()
    for item in items:
        post = remote_post_from_graph_item(item)
        if post is None or post.id in seen:
            continue
        seen.add(post.id)
        out.append(post)
    return out


def remote_profile_from_graph(payload: Mapping[str, Any]) -> RemoteProfile | None:
    username = _coerce_str(payload.get("username"))
    if not username:
        return None

    return RemoteProfile(
        username=username,
        name=_coerce_str(payload.get("name")),
        followers_count=_coerce_int(payload.get("followers_count")),
        raw=dict(payload),
    )
