from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import requests

from .config_schema import MediaConfig
from .errors import MediaTransferError
from .post import MEDIA_VIDEO
from .run_log import RunLogger
from .store_client import FileCreateResult, Store, UserError

CONTENT_TYPE_IMAGE = "IMAGE"
CONTENT_TYPE_VIDEO = "VIDEO"


@dataclass(frozen=True)
class TransferResult:
    """Outcome of moving one remote asset into the store."""

    file_ids: tuple[str, ...] = ()
    message: str | None = None

    @property
    def ok(self) -> bool:
        return bool(self.file_ids) and self.message is None

    @classmethod
    def failed(cls, message: str) -> "TransferResult":
        return cls(file_ids=(), message=(message or "").strip() or "Unknown error")


def _join_errors(errors: tuple[UserError, ...]) -> str:
    return "; ".join(str(e) for e in errors)


def _result_from_file_create(created: FileCreateResult) -> TransferResult:
    # Any userError fails the transfer, even when ids came back with it.
    if created.user_errors:
        return TransferResult.failed(_join_errors(created.user_errors))
    ids = tuple(f.id for f in created.files)
    if not ids:
        return TransferResult.failed("Store did not return a file id")
    return TransferResult(file_ids=ids)


class MediaTransferService:
    """
    Move one remote asset into the store's Files.

    Images are ingested by the store straight from their remote URL. Videos are
    downloaded, pushed to a staged upload target, then created from the staged
    resource URL. Failures never raise; they come back as a TransferResult with
    no file ids and a message.
    """

    def __init__(
        self,
        store: Store,
        *,
        media: MediaConfig | None = None,
        http: requests.Session | Any | None = None,
        logger: RunLogger | None = None,
    ) -> None:
        self._store = store
        self._cfg = media or MediaConfig()
        self._owns_http = http is None
        self._http = http or requests.Session()
        self._log = logger or RunLogger.discard()

    def close(self) -> None:
        """Close the HTTP session if this service created it."""
        if self._owns_http:
            self._http.close()

    def transfer(self, media_url: str | None, media_type: str, alt: str) -> TransferResult:
        url = (media_url or "").strip()
        if not url:
            return TransferResult.failed(f"No media URL for {alt}")

        try:
            if (media_type or "").upper() == MEDIA_VIDEO:
                result = self._upload_video_with_staging(url, alt)
            else:
                result = self._create_from_url(url, alt, CONTENT_TYPE_IMAGE)
        except Exception as e:
            result = TransferResult.failed(str(e) or type(e).__name__)

        if result.ok:
            self._log.info("media_transferred", alt=alt, media_type=media_type, file_ids=list(result.file_ids))
        else:
            self._log.warning("media_transfer_failed", alt=alt, media_type=media_type, message=result.message)
        return result

    def _create_from_url(self, source_url: str, alt: str, content_type: str) -> TransferResult:
        created = self._store.create_file(source_url, alt=alt, content_type=content_type)
        return _result_from_file_create(created)

    def _upload_video_with_staging(self, video_url: str, alt: str) -> TransferResult:
        content = self._download(video_url)
        filename = f"{alt}.{self._cfg.video_extension}"

        staged = self._store.create_staged_upload(
            filename=filename,
            mime_type=self._cfg.video_mime_type,
            file_size=len(content),
            resource=CONTENT_TYPE_VIDEO,
        )
        if staged.target is None:
            detail = _join_errors(staged.user_errors)
            raise MediaTransferError(
                f"Failed to create staged upload: {detail}" if detail else "Failed to create staged upload"
            )

        target = staged.target
        # Form parameters must precede the file part and be replayed exactly.
        resp = self._http.post(
            target.url,
            data=list(target.parameters),
            files={"file": (filename, content, self._cfg.video_mime_type)},
            timeout=self._cfg.download_timeout_seconds,
        )
        if not (200 <= int(resp.status_code) < 300):
            raise MediaTransferError(
                f"Failed to upload to staged target: HTTP {resp.status_code} {getattr(resp, 'reason', '') or ''}".strip()
            )

        return self._create_from_url(target.resource_url, alt, CONTENT_TYPE_VIDEO)

    def _download(self, url: str) -> bytes:
        resp = self._http.get(url, timeout=self._cfg.download_timeout_seconds)
        if not (200 <= int(resp.status_code) < 300):
            raise MediaTransferError(
                f"Failed to download video: HTTP {resp.status_code} {getattr(resp, 'reason', '') or ''}".strip()
            )

        content = resp.content or b""
        if not content:
            raise MediaTransferError("Failed to download video: empty body")
        return bytes(content)
