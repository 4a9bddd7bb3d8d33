from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator, Mapping, Sequence

from .errors import StorageError
from .store_client import (
    DeleteResult,
    FileCreateResult,
    StagedTarget,
    StagedUploadResult,
    StoredFile,
    StoredRecord,
    UpsertResult,
    UserError,
)

OFFLINE_USERNAME = "offline_user"
OFFLINE_DISPLAY_NAME = "Offline User"

_DEFAULT_OFFLINE_MEDIA: list[dict[str, Any]] = [
    {
        "id": "1001",
        "media_type": "IMAGE",
        "media_url": "https://offline.invalid/media/1001.jpg",
        "permalink": "https://offline.invalid/p/1001",
        "caption": "Morning light over the workshop.",
        "like_count": 12,
        "comments_count": 2,
        "timestamp": "2025-01-01T09:00:00+0000",
    },
    {
        "id": "1002",
        "media_type": "VIDEO",
        "media_url": "https://offline.invalid/media/1002.mp4",
        "thumbnail_url": "https://offline.invalid/media/1002.jpg",
        "permalink": "https://offline.invalid/p/1002",
        "caption": "Behind the scenes of the new collection.",
        "like_count": 40,
        "comments_count": 5,
        "timestamp": "2025-01-02T09:00:00+0000",
    },
    {
        "id": "1003",
        "media_type": "CAROUSEL_ALBUM",
        "media_url": "https://offline.invalid/media/1003-a.jpg",
        "permalink": "https://offline.invalid/p/1003",
        "like_count": 7,
        "comments_count": 0,
        "timestamp": "2025-01-03T09:00:00+0000",
        "children": {
            "data": [
                {"id": "1003-a", "media_type": "IMAGE", "media_url": "https://offline.invalid/media/1003-a.jpg"},
                {"id": "1003-b", "media_type": "IMAGE", "media_url": "https://offline.invalid/media/1003-b.jpg"},
            ]
        },
    },
]


@dataclass
class OfflineGraphClient:
    """
    Network-free Graph API stand-in for `sync --offline` and tests.

    Serves one image, one video and one two-item carousel for a fixed username.
    """

    media: Sequence[dict[str, Any]] = tuple(_DEFAULT_OFFLINE_MEDIA)
    profile: dict[str, Any] = field(
        default_factory=lambda: {
            "username": OFFLINE_USERNAME,
            "name": OFFLINE_DISPLAY_NAME,
            "followers_count": 123,
        }
    )

    def fetch_media(self) -> list[dict[str, Any]]:
        return [dict(item) for item in self.media]

    def fetch_profile(self) -> dict[str, Any]:
        return dict(self.profile)


@dataclass
class OfflineResponse:
    status_code: int = 200
    content: bytes = b""
    reason: str = "OK"

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return json.loads(self.content.decode("utf-8"))


class OfflineHttpSession:
    """Answers video downloads with fixed bytes and accepts every staged upload."""

    def __init__(self, *, video_bytes: bytes = b"\x00\x00\x00\x18ftypmp42offline") -> None:
        self._video = bytes(video_bytes)
        self.downloads: list[str] = []
        self.uploads: list[str] = []

    def get(self, url: str, **_: Any) -> OfflineResponse:
        self.downloads.append(url)
        return OfflineResponse(status_code=200, content=self._video)

    def post(self, url: str, **_: Any) -> OfflineResponse:
        self.uploads.append(url)
        return OfflineResponse(status_code=201, reason="Created")


def _file_gid(content_type: str, n: int) -> str:
    kind = "Video" if content_type == "VIDEO" else "MediaImage"
    return f"gid://shopify/{kind}/{n}"


class InMemoryStore:
    """
    Store stand-in keeping Files and metaobjects in dicts.

    Ids are deterministic counters. `fail_upsert_handles` and `fail_file_alts` make
    the matching calls answer with userErrors; every call is recorded in `calls`.
    """

    def __init__(self) -> None:
        self.files: dict[str, StoredFile] = {}
        self.records: dict[tuple[str, str], StoredRecord] = {}
        self.calls: list[tuple[str, Any]] = []
        self.fail_upsert_handles: set[str] = set()
        self.fail_file_alts: set[str] = set()
        self._next_id = 1

    def _new_id(self) -> int:
        n = self._next_id
        self._next_id += 1
        return n

    def calls_named(self, name: str) -> list[Any]:
        return [args for (n, args) in self.calls if n == name]

    def create_file(self, source_url: str, *, alt: str, content_type: str) -> FileCreateResult:
        self.calls.append(("create_file", (source_url, alt, content_type)))
        if alt in self.fail_file_alts:
            return FileCreateResult(user_errors=(UserError(message="Invalid source", field=("files", "0")),))

        f = StoredFile(id=_file_gid(content_type, self._new_id()), alt=alt, status="UPLOADED")
        self.files[f.id] = f
        return FileCreateResult(files=(f,))

    def create_staged_upload(
        self, *, filename: str, mime_type: str, file_size: int, resource: str = "VIDEO"
    ) -> StagedUploadResult:
        self.calls.append(("create_staged_upload", (filename, mime_type, file_size, resource)))
        n = self._new_id()
        return StagedUploadResult(
            target=StagedTarget(
                url=f"https://offline.invalid/upload/{n}",
                resource_url=f"https://offline.invalid/staged/{n}/{filename}",
                parameters=(("key", f"tmp/{n}/{filename}"), ("Content-Type", mime_type)),
            )
        )

    def upsert_metaobject(self, type_: str, handle: str, fields: Mapping[str, str]) -> UpsertResult:
        self.calls.append(("upsert_metaobject", (type_, handle, dict(fields))))
        if handle in self.fail_upsert_handles:
            return UpsertResult(user_errors=(UserError(message="Value is invalid", field=("fields",)),))

        key = (type_, handle)
        existing = self.records.get(key)
        merged = dict(existing.fields) if existing is not None else {}
        merged.update(fields)
        record_id = existing.id if existing is not None else f"gid://shopify/Metaobject/{self._new_id()}"
        record = StoredRecord(id=record_id, handle=handle, fields=merged)
        self.records[key] = record
        return UpsertResult(record=record)

    def metaobject_by_handle(self, type_: str, handle: str) -> StoredRecord | None:
        self.calls.append(("metaobject_by_handle", (type_, handle)))
        return self.records.get((type_, handle))

    def delete_metaobject(self, record_id: str) -> DeleteResult:
        self.calls.append(("delete_metaobject", record_id))
        for key, record in list(self.records.items()):
            if record.id == record_id:
                del self.records[key]
                return DeleteResult(deleted_ids=(record_id,))
        return DeleteResult(user_errors=(UserError(message="Record does not exist", field=("id",)),))

    def iter_metaobjects(self, type_: str, *, page_size: int) -> Iterator[StoredRecord]:
        self.calls.append(("iter_metaobjects", (type_, page_size)))
        matching = [r for (t, _), r in self.records.items() if t == type_]
        for start in range(0, len(matching), max(1, int(page_size))):
            yield from matching[start : start + page_size]

    def iter_files(self, query: str, *, page_size: int) -> Iterator[StoredFile]:
        self.calls.append(("iter_files", (query, page_size)))
        term = query[len("alt:") :] if query.startswith("alt:") else ""
        # Search is substring-based, like the Admin API's fuzzy alt match.
        matching = [f for f in self.files.values() if term in (f.alt or "")]
        for start in range(0, len(matching), max(1, int(page_size))):
            yield from matching[start : start + page_size]

    def delete_files(self, file_ids: Sequence[str]) -> DeleteResult:
        ids = [str(i) for i in file_ids if i]
        if not ids:
            return DeleteResult()
        self.calls.append(("delete_files", tuple(ids)))

        deleted = [i for i in ids if self.files.pop(i, None) is not None]
        return DeleteResult(deleted_ids=tuple(deleted))

    def to_json(self) -> dict[str, Any]:
        return {
            "next_id": self._next_id,
            "files": [{"id": f.id, "alt": f.alt, "status": f.status} for f in self.files.values()],
            "records": [
                {"type": t, "id": r.id, "handle": r.handle, "fields": dict(r.fields)}
                for (t, _), r in self.records.items()
            ],
        }

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> "InMemoryStore":
        store = cls()
        store._next_id = int(payload.get("next_id") or 1)
        for f in payload.get("files") or []:
            store.files[f["id"]] = StoredFile(id=f["id"], alt=f.get("alt"), status=f.get("status"))
        for r in payload.get("records") or []:
            store.records[(r["type"], r["handle"])] = StoredRecord(
                id=r["id"], handle=r["handle"], fields=dict(r.get("fields") or {})
            )
        return store


def load_offline_store(path: str | Path) -> InMemoryStore:
    """Load the offline store snapshot kept next to the state database, or start empty."""
    p = Path(path)
    if not p.exists():
        return InMemoryStore()
    try:
        return InMemoryStore.from_json(json.loads(p.read_text(encoding="utf-8")))
    except (OSError, ValueError, KeyError, TypeError) as e:
        raise StorageError(f"Failed to read offline store snapshot: {p}: {e}") from e


def save_offline_store(store: InMemoryStore, path: str | Path) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    try:
        p.write_text(json.dumps(store.to_json(), ensure_ascii=False, sort_keys=True, indent=2), encoding="utf-8")
    except OSError as e:
        raise StorageError(f"Failed to write offline store snapshot: {p}: {e}") from e
