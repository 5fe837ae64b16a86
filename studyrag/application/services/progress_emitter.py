from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional

import structlog

from studyrag.core.utils.redaction import redact_secrets
from studyrag.domain.exceptions import IngestionError
from studyrag.domain.ingestion.types import STAGE_ORDER, IngestionStage

logger = structlog.get_logger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class ProgressProtocolError(RuntimeError):
    """Raised when a caller emits an event the stream contract forbids."""


@dataclass(frozen=True)
class ProgressEvent:
    type: str
    data: Dict[str, Any] = field(default_factory=dict)

    def to_sse(self) -> str:
        return f"event: {self.type}\ndata: {json.dumps(self.data, ensure_ascii=False)}\n\n"


class ProgressEmitter:
    """
    Ordered event stream for one ingestion run.

    Enforces the stream contract: stages only move forward, progress never
    regresses and reaches its total once, and exactly one terminal event
    (``status{complete}`` or ``error``) is emitted, after which nothing else is.
    """

    def __init__(self) -> None:
        self.events: List[ProgressEvent] = []
        self._queue: "asyncio.Queue[Optional[ProgressEvent]]" = asyncio.Queue()
        self._stage_index = -1
        self._last_progress: Optional[tuple[int, int]] = None
        self._terminal = False

    @property
    def is_closed(self) -> bool:
        return self._terminal

    def status(self, stage: IngestionStage, message: str) -> None:
        index = STAGE_ORDER.index(stage)
        if index < self._stage_index:
            raise ProgressProtocolError(f"Stage regression to {stage.value}")
        self._stage_index = index
        self._emit("status", {"stage": stage.value, "message": message})
        if stage == IngestionStage.COMPLETE:
            self._close()

    def document_created(self, document_id: str) -> None:
        self._emit("document_created", {"documentId": document_id})

    def item(self, index: int, item_type: str, data: Dict[str, Any]) -> None:
        self._emit("item", {"index": index, "type": item_type, "data": data})

    def progress(self, current: int, total: int) -> None:
        if current < 0 or total < 0 or current > total:
            raise ProgressProtocolError(f"Invalid progress {current}/{total}")
        if self._last_progress is not None:
            last_current, last_total = self._last_progress
            if total != last_total:
                raise ProgressProtocolError(f"Progress total changed from {last_total} to {total}")
            if current < last_current:
                raise ProgressProtocolError(f"Progress regressed from {last_current} to {current}")
            if last_current == last_total:
                raise ProgressProtocolError("Progress already reached its total")
        self._last_progress = (current, total)
        self._emit("progress", {"current": current, "total": total})

    def batch_saved(self, batch_index: int, chunk_ids: List[str]) -> None:
        self._emit("batch_saved", {"batchIndex": batch_index, "chunkIds": list(chunk_ids)})

    def error(self, error: IngestionError) -> None:
        payload = error.to_payload()
        payload["message"] = redact_secrets(payload["message"])
        self._emit("error", payload)
        self._close()

    def abort(self) -> None:
        """Ends the stream without a terminal event, for a run that died unexpectedly."""
        if not self._terminal:
            logger.error("progress_stream_aborted", emitted_events=len(self.events))
            self._close()

    def _emit(self, event_type: str, data: Dict[str, Any]) -> None:
        if self._terminal:
            raise ProgressProtocolError(f"Event '{event_type}' emitted after the terminal event")
        event = ProgressEvent(type=event_type, data=data)
        self.events.append(event)
        self._queue.put_nowait(event)

    def _close(self) -> None:
        self._terminal = True
        self._queue.put_nowait(None)

    async def stream(self) -> AsyncIterator[str]:
        """SSE frames in emission order, ending after the terminal event."""
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event.to_sse()
