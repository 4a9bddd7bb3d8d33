from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterator, Mapping, Protocol, Sequence

import requests

from .config_schema import StoreConfig
from .errors import StoreError


FILE_CREATE = """
mutation fileCreate($files: [FileCreateInput!]!) {
  fileCreate(files: $files) {
    files {
      id
      fileStatus
      alt
    }
    userErrors {
      field
      message
    }
  }
}
""".strip()

STAGED_UPLOADS_CREATE = """
mutation stagedUploadsCreate($input: [StagedUploadInput!]!) {
  stagedUploadsCreate(input: $input) {
    stagedTargets {
      url
      resourceUrl
      parameters {
        name
        value
      }
    }
    userErrors {
      field
      message
    }
  }
}
""".strip()

METAOBJECT_UPSERT = """
mutation metaobjectUpsert($handle: MetaobjectHandleInput!, $metaobject: MetaobjectUpsertInput!) {
  metaobjectUpsert(handle: $handle, metaobject: $metaobject) {
    metaobject {
      id
      handle
      fields {
        key
        value
      }
    }
    userErrors {
      field
      message
    }
  }
}
""".strip()

METAOBJECT_BY_HANDLE = """
query metaobjectByHandle($handle: MetaobjectHandleInput!) {
  metaobjectByHandle(handle: $handle) {
    id
    handle
    fields {
      key
      value
    }
  }
}
""".strip()

METAOBJECT_DELETE = """
mutation metaobjectDelete($id: ID!) {
  metaobjectDelete(id: $id) {
    deletedId
    userErrors {
      field
      message
    }
  }
}
""".strip()

METAOBJECTS_PAGE = """
query metaobjects($type: String!, $first: Int!, $after: String) {
  metaobjects(type: $type, first: $first, after: $after) {
    edges {
      node {
        id
        handle
      }
    }
    pageInfo {
      hasNextPage
      endCursor
    }
  }
}
""".strip()

FILES_PAGE = """
query files($query: String!, $first: Int!, $after: String) {
  files(first: $first, after: $after, query: $query) {
    edges {
      node {
        id
        alt
      }
    }
    pageInfo {
      hasNextPage
      endCursor
    }
  }
}
""".strip()

FILE_DELETE = """
mutation fileDelete($fileIds: [ID!]!) {
  fileDelete(fileIds: $fileIds) {
    deletedFileIds
    userErrors {
      field
      message
    }
  }
}
""".strip()


@dataclass(frozen=True)
class UserError:
    message: str
    field: tuple[str, ...] = ()

    def __str__(self) -> str:
        if self.field:
            return f"{'.'.join(self.field)}: {self.message}"
        return self.message


@dataclass(frozen=True)
class StoredFile:
    id: str
    alt: str | None = None
    status: str | None = None


@dataclass(frozen=True)
class FileCreateResult:
    files: tuple[StoredFile, ...] = ()
    user_errors: tuple[UserError, ...] = ()


@dataclass(frozen=True)
class StagedTarget:
    url: str
    resource_url: str
    parameters: tuple[tuple[str, str], ...] = ()


@dataclass(frozen=True)
class StagedUploadResult:
    target: StagedTarget | None = None
    user_errors: tuple[UserError, ...] = ()


@dataclass(frozen=True)
class StoredRecord:
    id: str
    handle: str
    fields: Mapping[str, str | None]


@dataclass(frozen=True)
class UpsertResult:
    record: StoredRecord | None = None
    user_errors: tuple[UserError, ...] = ()


@dataclass(frozen=True)
class DeleteResult:
    deleted_ids: tuple[str, ...] = ()
    user_errors: tuple[UserError, ...] = ()


class Store(Protocol):
    """The store operations the sync pipeline depends on."""

    def create_file(self, source_url: str, *, alt: str, content_type: str) -> FileCreateResult: ...

    def create_staged_upload(
        self, *, filename: str, mime_type: str, file_size: int, resource: str = "VIDEO"
    ) -> StagedUploadResult: ...

    def upsert_metaobject(
        self, type_: str, handle: str, fields: Mapping[str, str]
    ) -> UpsertResult: ...

    def metaobject_by_handle(self, type_: str, handle: str) -> StoredRecord | None: ...

    def delete_metaobject(self, record_id: str) -> DeleteResult: ...

    def iter_metaobjects(self, type_: str, *, page_size: int) -> Iterator[StoredRecord]: ...

    def iter_files(self, query: str, *, page_size: int) -> Iterator[StoredFile]: ...

    def delete_files(self, file_ids: Sequence[str]) -> DeleteResult: ...


def _user_errors(payload: Any) -> tuple[UserError, ...]:
    if not isinstance(payload, list):
        return ()

    out: list[UserError] = []
    for item in payload:
        if not isinstance(item, Mapping):
            continue
        message = str(item.get("message") or "unknown error")
        raw_field = item.get("field")
        field: tuple[str, ...] = ()
        if isinstance(raw_field, list):
            field = tuple(str(f) for f in raw_field)
        elif isinstance(raw_field, str) and raw_field:
            field = (raw_field,)
        out.append(UserError(message=message, field=field))
    return tuple(out)


def _record_from_node(node: Mapping[str, Any]) -> StoredRecord:
    fields: dict[str, str | None] = {}
    raw_fields = node.get("fields")
    if isinstance(raw_fields, list):
        for f in raw_fields:
            if isinstance(f, Mapping) and isinstance(f.get("key"), str):
                value = f.get("value")
                fields[f["key"]] = value if isinstance(value, str) else None

    return StoredRecord(
        id=str(node.get("id") or ""),
        handle=str(node.get("handle") or ""),
        fields=fields,
    )


def _edges(connection: Any) -> list[Mapping[str, Any]]:
    if not isinstance(connection, Mapping):
        return []
    out: list[Mapping[str, Any]] = []
    for edge in connection.get("edges") or []:
        node = edge.get("node") if isinstance(edge, Mapping) else None
        if isinstance(node, Mapping):
            out.append(node)
    return out


def _next_cursor(connection: Any) -> str | None:
    if not isinstance(connection, Mapping):
        return None
    info = connection.get("pageInfo")
    if not isinstance(info, Mapping) or not info.get("hasNextPage"):
        return None
    cursor = info.get("endCursor")
    return cursor if isinstance(cursor, str) and cursor else None


class ShopifyStoreClient:
    """
    Admin GraphQL client for the store's Files and metaobjects.

    Transport failures and top-level GraphQL errors raise StoreError; field-level
    userErrors are returned to the caller as data.
    """

    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        *,
        store: StoreConfig | None = None,
        session: requests.Session | None = None,
    ) -> None:
        domain = (shop_domain or "").strip()
        token = (access_token or "").strip()
        if not domain or not token:
            raise ValueError("shop_domain and access_token must be non-empty")

        self._cfg = store or StoreConfig(shop_domain=domain)
        self._endpoint = f"https://{domain}/admin/api/{self._cfg.api_version}/graphql.json"
        self._headers = {
            "X-Shopify-Access-Token": token,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        self._owns_session = session is None
        self._session = session or requests.Session()

    def close(self) -> None:
        if self._owns_session:
            self._session.close()

    def __enter__(self) -> "ShopifyStoreClient":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    @property
    def endpoint(self) -> str:
        return self._endpoint

    def graphql(self, query: str, variables: Mapping[str, Any] | None = None) -> dict[str, Any]:
        body = {"query": query, "variables": dict(variables or {})}

        try:
            resp = self._session.post(
                self._endpoint,
                json=body,
                headers=self._headers,
                timeout=self._cfg.timeout_seconds,
            )
        except requests.RequestException as e:
            raise StoreError(f"Store API request failed: {e}") from e

        if not (200 <= int(resp.status_code) < 300):
            raise StoreError(f"Store API request failed {resp.status_code}: {resp.text[:500]}")

        try:
            payload = resp.json()
        except ValueError as e:
            raise StoreError("Store API returned a non-JSON response") from e

        if not isinstance(payload, dict):
            raise StoreError("Store API returned an unexpected response shape")

        errors = payload.get("errors")
        if errors:
            messages = []
            for err in errors if isinstance(errors, list) else [errors]:
                if isinstance(err, Mapping):
                    messages.append(str(err.get("message") or err))
                else:
                    messages.append(str(err))
            raise StoreError(f"Store API GraphQL errors: {'; '.join(messages)}")

        data = payload.get("data")
        return data if isinstance(data, dict) else {}

    def create_file(self, source_url: str, *, alt: str, content_type: str) -> FileCreateResult:
        data = self.graphql(
            FILE_CREATE,
            {"files": [{"alt": alt, "contentType": content_type, "originalSource": source_url}]},
        )
        result = data.get("fileCreate") or {}

        files: list[StoredFile] = []
        for node in result.get("files") or []:
            if isinstance(node, Mapping) and node.get("id"):
                files.append(
                    StoredFile(
                        id=str(node["id"]),
                        alt=node.get("alt"),
                        status=node.get("fileStatus"),
                    )
                )

        return FileCreateResult(files=tuple(files), user_errors=_user_errors(result.get("userErrors")))

    def create_staged_upload(
        self,
        *,
        filename: str,
        mime_type: str,
        file_size: int,
        resource: str = "VIDEO",
    ) -> StagedUploadResult:
        data = self.graphql(
            STAGED_UPLOADS_CREATE,
            {
                "input": [
                    {
                        "resource": resource,
                        "filename": filename,
                        "mimeType": mime_type,
                        "fileSize": str(int(file_size)),
                        "httpMethod": "POST",
                    }
                ]
            },
        )
        result = data.get("stagedUploadsCreate") or {}
        user_errors = _user_errors(result.get("userErrors"))

        targets = result.get("stagedTargets") or []
        first = targets[0] if targets and isinstance(targets[0], Mapping) else None
        if first is None or not first.get("url") or not first.get("resourceUrl"):
            return StagedUploadResult(target=None, user_errors=user_errors)

        params: list[tuple[str, str]] = []
        for p in first.get("parameters") or []:
            if isinstance(p, Mapping) and p.get("name") is not None:
                params.append((str(p["name"]), str(p.get("value") or "")))

        return StagedUploadResult(
            target=StagedTarget(
                url=str(first["url"]),
                resource_url=str(first["resourceUrl"]),
                parameters=tuple(params),
            ),
            user_errors=user_errors,
        )

    def upsert_metaobject(self, type_: str, handle: str, fields: Mapping[str, str]) -> UpsertResult:
        data = self.graphql(
            METAOBJECT_UPSERT,
            {
                "handle": {"type": type_, "handle": handle},
                "metaobject": {"fields": [{"key": k, "value": v} for k, v in fields.items()]},
            },
        )
        result = data.get("metaobjectUpsert") or {}
        node = result.get("metaobject")
        record = _record_from_node(node) if isinstance(node, Mapping) and node.get("id") else None
        return UpsertResult(record=record, user_errors=_user_errors(result.get("userErrors")))

    def metaobject_by_handle(self, type_: str, handle: str) -> StoredRecord | None:
        data = self.graphql(METAOBJECT_BY_HANDLE, {"handle": {"type": type_, "handle": handle}})
        node = data.get("metaobjectByHandle")
        if not isinstance(node, Mapping) or not node.get("id"):
            return None
        return _record_from_node(node)

    def delete_metaobject(self, record_id: str) -> DeleteResult:
        data = self.graphql(METAOBJECT_DELETE, {"id": record_id})
        result = data.get("metaobjectDelete") or {}
        deleted = result.get("deletedId")
        return DeleteResult(
            deleted_ids=(str(deleted),) if deleted else (),
            user_errors=_user_errors(result.get("userErrors")),
        )

    def iter_metaobjects(self, type_: str, *, page_size: int) -> Iterator[StoredRecord]:
        """Yield every metaobject of a type (id and handle only), page by page."""
        after: str | None = None
        while True:
            data = self.graphql(METAOBJECTS_PAGE, {"type": type_, "first": int(page_size), "after": after})
            connection = data.get("metaobjects")
            for node in _edges(connection):
                yield _record_from_node(node)

            after = _next_cursor(connection)
            if after is None:
                return

    def iter_files(self, query: str, *, page_size: int) -> Iterator[StoredFile]:
        after: str | None = None
        while True:
            data = self.graphql(FILES_PAGE, {"query": query, "first": int(page_size), "after": after})
            connection = data.get("files")
            for node in _edges(connection):
                if node.get("id"):
                    alt = node.get("alt")
                    yield StoredFile(id=str(node["id"]), alt=alt if isinstance(alt, str) else None)

            after = _next_cursor(connection)
            if after is None:
                return

    def delete_files(self, file_ids: Sequence[str]) -> DeleteResult:
        ids = [str(i) for i in file_ids if i]
        if not ids:
            return DeleteResult()

        data = self.graphql(FILE_DELETE, {"fileIds": ids})
        result = data.get("fileDelete") or {}
        return DeleteResult(
            deleted_ids=tuple(str(i) for i in result.get("deletedFileIds") or []),
            user_errors=_user_errors(result.get("userErrors")),
        )
