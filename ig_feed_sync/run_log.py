from __future__ import annotations

import json
import traceback
import uuid
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, TextIO

_MESSAGE_LIMIT = 2000
_TRACEBACK_LIMIT = 12000


def _clip(value: object, limit: int) -> str:
    text = "" if value is None else str(value)
    if len(text) > limit:
        return text[: limit - 1] + "…"
    return text


def _error_payload(exc: BaseException) -> dict[str, str]:
    tb = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return {
        "type": type(exc).__name__,
        "message": _clip(exc, _MESSAGE_LIMIT),
        "traceback": _clip(tb, _TRACEBACK_LIMIT),
    }


class RunLogger:
    """
    JSONL event log for one CLI invocation.

    Every record carries `ts`, `level`, `event` and `session_id`, plus the run id
    and any bound context once set. Event-specific values go under `data`.

    A logger without a path drops records, so library code can always log.
    """

    def __init__(
        self,
        path: str | Path | None = None,
        *,
        overwrite: bool = False,
        run_id: str | None = None,
        session_id: str | None = None,
    ) -> None:
        self._path = None if path is None else Path(path)
        self._truncate_on_open = overwrite
        self._run_id = (run_id or "").strip() or None
        self._session_id = (session_id or "").strip() or uuid.uuid4().hex
        self._context: dict[str, Any] = {}
        self._stream: TextIO | None = None
        self._guard = Lock()

    @classmethod
    def open(cls, path: str | Path, **kwargs: Any) -> "RunLogger":
        logger = cls(path, **kwargs)
        logger._stream_or_none()
        return logger

    @classmethod
    def discard(cls) -> "RunLogger":
        return cls(None)

    @property
    def path(self) -> Path | None:
        return self._path

    def __enter__(self) -> "RunLogger":
        self._stream_or_none()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    def close(self) -> None:
        with self._guard:
            stream, self._stream = self._stream, None
        if stream is not None:
            stream.close()

    def set_run_id(self, run_id: str) -> None:
        if (run_id or "").strip():
            self._run_id = run_id.strip()

    def bind(self, **context: Any) -> None:
        """Attach key/values (tenant, username) to every following record; None unbinds."""
        for key, value in context.items():
            if value is None:
                self._context.pop(key, None)
            else:
                self._context[key] = value

    def info(self, event: str, *, handle: str | None = None, **data: Any) -> None:
        self.log("INFO", event, handle=handle, **data)

    def warning(self, event: str, *, handle: str | None = None, **data: Any) -> None:
        self.log("WARN", event, handle=handle, **data)

    def error(self, event: str, *, handle: str | None = None, **data: Any) -> None:
        self.log("ERROR", event, handle=handle, **data)

    def exception(
        self,
        event: str,
        *,
        exc: BaseException,
        handle: str | None = None,
        **data: Any,
    ) -> None:
        self.log("ERROR", event, handle=handle, error=_error_payload(exc), **data)

    def log(self, level: str, event: str, *, handle: str | None = None, **data: Any) -> None:
        if self._path is None:
            return

        record: dict[str, Any] = dict(self._context)
        record.update(
            ts=datetime.now(timezone.utc).isoformat(),
            level=(level or "INFO").strip().upper(),
            event=(event or "").strip() or "event",
            session_id=self._session_id,
        )
        if self._run_id:
            record["run_id"] = self._run_id
        if handle and handle.strip():
            record["handle"] = handle.strip()
        if data:
            record["data"] = data

        line = json.dumps(record, ensure_ascii=False, sort_keys=True, separators=(",", ":"), default=str)
        stream = self._stream_or_none()
        if stream is None:
            return
        with self._guard:
            stream.write(line + "\n")
            stream.flush()

    def _stream_or_none(self) -> TextIO | None:
        if self._path is None:
            return None

        with self._guard:
            if self._stream is None:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                mode = "w" if self._truncate_on_open else "a"
                self._stream = self._path.open(mode, encoding="utf-8", newline="\n")
                # Reopening after close must append, not truncate again.
                self._truncate_on_open = False
            return self._stream
