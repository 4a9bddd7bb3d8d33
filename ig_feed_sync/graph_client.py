from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Protocol

import requests

from .config_schema import InstagramConfig
from .errors import AuthExpired, RemoteAPIError
from .normalize import remote_posts_from_graph_items, remote_profile_from_graph
from .post import RemotePost, RemoteProfile
from .storage import Account

_EXPIRED_MESSAGE = "Instagram token has expired. Please reconnect your Instagram account."


class GraphClient(Protocol):
    def fetch_media(self) -> list[dict[str, Any]]: ...

    def fetch_profile(self) -> dict[str, Any]: ...


@dataclass(frozen=True)
class RemoteFeed:
    posts: list[RemotePost]
    profile: RemoteProfile
    media_items: list[dict[str, Any]]

    @property
    def is_empty(self) -> bool:
        return not self.posts


def _error_message(error: Any) -> str:
    if isinstance(error, Mapping):
        msg = error.get("message")
        if isinstance(msg, str) and msg.strip():
            return msg.strip()
    elif isinstance(error, str) and error.strip():
        return error.strip()
    return "Invalid or expired token"


class InstagramGraphClient:
    """
    Read-only client for the caller's own media and profile on the Instagram Graph API.

    The bearer token travels as the `access_token` query parameter; request URLs are
    therefore never logged.
    """

    def __init__(
        self,
        access_token: str,
        *,
        instagram: InstagramConfig | None = None,
        session: requests.Session | None = None,
    ) -> None:
        token = (access_token or "").strip()
        if not token:
            raise ValueError("access_token must be non-empty")

        self._token = token
        self._cfg = instagram or InstagramConfig()
        self._owns_session = session is None
        self._session = session or requests.Session()

    def close(self) -> None:
        if self._owns_session:
            self._session.close()

    def __enter__(self) -> "InstagramGraphClient":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    def fetch_media(self) -> list[dict[str, Any]]:
        """
        Fetch every media item, following `paging.next` until exhausted or capped by max_posts.
        """
        cap = int(self._cfg.max_posts)
        url: str | None = f"{self._cfg.graph_base_url}/me/media"
        params: dict[str, Any] | None = {
            "fields": self._cfg.media_fields,
            "limit": int(self._cfg.page_limit),
            "access_token": self._token,
        }

        items: list[dict[str, Any]] = []
        seen_urls: set[str] = set()

        while url:
            payload = self._get_json(url, params=params)

            data = payload.get("data")
            if data is None:
                data = []
            if not isinstance(data, list):
                raise RemoteAPIError("Instagram media response has a non-list 'data' field")

            for item in data:
                if isinstance(item, dict):
                    items.append(item)
                    if cap and len(items) >= cap:
                        return items

            paging = payload.get("paging")
            next_url = paging.get("next") if isinstance(paging, Mapping) else None
            if not isinstance(next_url, str) or not next_url.strip() or next_url in seen_urls:
                break

            # The next link already carries fields, limit, cursor and token.
            seen_urls.add(next_url)
            url = next_url
            params = None

        return items

    def fetch_profile(self) -> dict[str, Any]:
        return self._get_json(
            f"{self._cfg.graph_base_url}/me",
            params={"fields": self._cfg.profile_fields, "access_token": self._token},
        )

    def _get_json(self, url: str, *, params: Mapping[str, Any] | None) -> dict[str, Any]:
        try:
            resp = self._session.get(url, params=params, timeout=self._cfg.timeout_seconds)
        except requests.RequestException as e:
            raise RemoteAPIError(f"Instagram API request failed: {type(e).__name__}") from e

        try:
            payload = resp.json()
        except ValueError as e:
            raise RemoteAPIError(
                f"Instagram API returned a non-JSON response (HTTP {resp.status_code})"
            ) from e

        if not isinstance(payload, dict):
            raise RemoteAPIError("Instagram API returned an unexpected response shape")

        # The error envelope signals failure regardless of HTTP status.
        error = payload.get("error")
        if error:
            body = dict(error) if isinstance(error, Mapping) else {"message": str(error)}
            raise RemoteAPIError(f"Instagram API error: {_error_message(error)}", payload=body)

        if not (200 <= int(resp.status_code) < 300):
            raise RemoteAPIError(f"Instagram API request failed with HTTP {resp.status_code}")

        return payload


def fetch_remote_feed(
    account: Account,
    *,
    client: GraphClient,
    now: datetime | None = None,
) -> RemoteFeed:
    """
    Fetch and normalize the caller's media and profile.

    Raises AuthExpired before any remote call when the stored expiry is in the past,
    and RemoteAPIError when either call fails. An empty media list is a valid result.
    """
    current = now or datetime.now(timezone.utc)
    if account.is_expired(current):
        raise AuthExpired(_EXPIRED_MESSAGE)

    media_items = client.fetch_media()
    profile_payload = client.fetch_profile()

    profile = remote_profile_from_graph(profile_payload)
    if profile is None:
        raise RemoteAPIError(
            "Instagram profile response did not include a username",
            payload=profile_payload,
        )

    return RemoteFeed(
        posts=remote_posts_from_graph_items(media_items),
        profile=profile,
        media_items=media_items,
    )
