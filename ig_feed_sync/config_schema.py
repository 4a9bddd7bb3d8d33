from __future__ import annotations

import re
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator

_ENV_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_API_VERSION_RE = re.compile(r"^(\d{4}-\d{2}|unstable)$")

DEFAULT_MEDIA_FIELDS = (
    "id,media_type,media_url,thumbnail_url,view_count,like_count,comments_count,"
    "permalink,caption,timestamp,children{media_url,media_type,thumbnail_url}"
)
DEFAULT_PROFILE_FIELDS = "followers_count,name,username"


def _validate_env_var_name(value: str) -> str:
    name = (value or "").strip()
    if not _ENV_NAME_RE.fullmatch(name):
        raise ValueError("must be a valid environment variable name")
    return name


def _normalize_shop_domain(value: str) -> str:
    domain = (value or "").strip()
    for scheme in ("https://", "http://"):
        if domain.lower().startswith(scheme):
            domain = domain[len(scheme) :]
    return domain.strip("/").lower()


def _non_empty(value: str) -> str:
    v = (value or "").strip()
    if not v:
        raise ValueError("must be non-empty")
    return v


PositiveInt = Annotated[int, Field(ge=1)]
NonNegativeInt = Annotated[int, Field(ge=0)]


class InstagramConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    graph_base_url: str = "https://graph.instagram.com"
    media_fields: str = DEFAULT_MEDIA_FIELDS
    profile_fields: str = DEFAULT_PROFILE_FIELDS
    page_limit: PositiveInt = 25
    max_posts: NonNegativeInt = 0  # 0 disables the cap
    timeout_seconds: PositiveInt = 30

    @field_validator("graph_base_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return _non_empty(v).rstrip("/")

    @field_validator("media_fields", "profile_fields")
    @classmethod
    def _fields_non_empty(cls, v: str) -> str:
        return _non_empty(v)


class StoreConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    shop_domain: str = ""
    api_version: str = "2025-01"
    access_token_env: str = "SHOPIFY_ACCESS_TOKEN"
    post_type: str = "nn_instagram_post"
    list_type: str = "nn_instagram_list"
    page_size: int = Field(250, ge=1, le=250)
    timeout_seconds: PositiveInt = 30

    @field_validator("shop_domain")
    @classmethod
    def _normalize_domain(cls, v: str) -> str:
        return _normalize_shop_domain(v)

    @field_validator("api_version")
    @classmethod
    def _api_version_must_be_valid(cls, v: str) -> str:
        version = (v or "").strip()
        if not _API_VERSION_RE.fullmatch(version):
            raise ValueError("must look like YYYY-MM or 'unstable'")
        return version

    @field_validator("access_token_env")
    @classmethod
    def _token_env_must_be_valid(cls, v: str) -> str:
        return _validate_env_var_name(v)

    @field_validator("post_type", "list_type")
    @classmethod
    def _types_non_empty(cls, v: str) -> str:
        return _non_empty(v)


class MediaConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    video_mime_type: str = "video/mp4"
    video_extension: str = "mp4"
    download_timeout_seconds: PositiveInt = 120

    @field_validator("video_extension")
    @classmethod
    def _strip_dot(cls, v: str) -> str:
        return _non_empty(v).lstrip(".")


class AccountConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    tenant: str | None = None  # defaults to store.shop_domain
    provider: str = "instagram"

    @field_validator("provider")
    @classmethod
    def _provider_non_empty(cls, v: str) -> str:
        return _non_empty(v)


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    instagram: InstagramConfig = Field(default_factory=InstagramConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    media: MediaConfig = Field(default_factory=MediaConfig)
    account: AccountConfig = Field(default_factory=AccountConfig)
