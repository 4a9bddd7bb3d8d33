from __future__ import annotations

# These formats must match records already stored by earlier versions of the app.


def _require(value: str, name: str) -> str:
    v = (value or "").strip()
    if not v:
        raise ValueError(f"{name} must be non-empty")
    return v


def post_handle(username: str, post_id: str) -> str:
    return f"{_require(username, 'username')}-post-{_require(post_id, 'post_id')}"


def post_handle_prefix(username: str) -> str:
    return f"{_require(username, 'username')}-post-"


def list_handle(username: str) -> str:
    return f"{_require(username, 'username')}-feed-list"


def media_alt(username: str, post_id: str) -> str:
    return f"{_require(username, 'username')}-post_{_require(post_id, 'post_id')}"


def child_media_alt(username: str, post_id: str, child_id: str) -> str:
    return f"{media_alt(username, post_id)}_{_require(child_id, 'child_id')}"


def media_alt_prefix(username: str) -> str:
    return f"{_require(username, 'username')}-post_"
