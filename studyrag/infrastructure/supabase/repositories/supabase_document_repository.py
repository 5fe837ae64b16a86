from typing import Any, Dict, Optional

import structlog

from studyrag.core.utils.filename_utils import document_name_key
from studyrag.domain.exceptions import StoreError
from studyrag.domain.ingestion.models import Document
from studyrag.domain.ingestion.ports import IDocumentRepository
from studyrag.domain.ingestion.types import DocType, DocumentStatus
from studyrag.infrastructure.observability.ingestion_logging import compact_error, emit_event
from studyrag.infrastructure.supabase.client import get_async_supabase_client

logger = structlog.get_logger(__name__)

DOCUMENTS_TABLE = "documents"
DOCUMENT_COLUMNS = "id, user_id, name, doc_type, course_id, status, status_message, metadata, created_at"


def _to_document(row: Dict[str, Any]) -> Document:
    return Document(
        id=str(row["id"]),
        owner_id=str(row.get("user_id") or ""),
        name=str(row.get("name") or ""),
        doc_type=DocType(row.get("doc_type") or DocType.LECTURE.value),
        course_id=str(row["course_id"]) if row.get("course_id") else None,
        status=DocumentStatus(row.get("status") or DocumentStatus.PROCESSING.value),
        status_message=row.get("status_message"),
        metadata=row.get("metadata") if isinstance(row.get("metadata"), dict) else {},
        created_at=row.get("created_at"),
    )


class SupabaseDocumentRepository(IDocumentRepository):
    """
    Documents table access. One row per uploaded file; chunks cascade on delete.
    """

    def __init__(self, client: Optional[Any] = None):
        self._supabase = client

    async def get_client(self):
        if self._supabase is None:
            self._supabase = await get_async_supabase_client()
        return self._supabase

    async def find_by_owner_and_name(self, owner_id: str, name: str) -> Optional[Document]:
        client = await self.get_client()
        # ilike without wildcards is a case-insensitive equality; escape its pattern chars
        pattern = name.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        res = await (
            client.table(DOCUMENTS_TABLE)
            .select(DOCUMENT_COLUMNS)
            .eq("user_id", owner_id)
            .ilike("name", pattern)
            .limit(5)
            .execute()
        )
        wanted = document_name_key(name)
        for row in res.data or []:
            if document_name_key(row.get("name")) == wanted:
                return _to_document(row)
        return None

    async def create_document(
        self,
        *,
        owner_id: str,
        name: str,
        doc_type: DocType,
        course_id: Optional[str],
        metadata: Dict[str, Any],
    ) -> Document:
        client = await self.get_client()
        payload = {
            "user_id": owner_id,
            "name": name,
            "doc_type": doc_type.value,
            "course_id": course_id,
            "status": DocumentStatus.PROCESSING.value,
            "metadata": metadata,
        }
        res = await client.table(DOCUMENTS_TABLE).insert(payload).execute()
        rows = res.data or []
        if not rows:
            raise StoreError("Document insert returned no rows")
        document = _to_document(rows[0])
        emit_event(logger, "document_created", document_id=document.id, doc_type=doc_type.value)
        return document

    async def get_document(self, document_id: str) -> Optional[Document]:
        client = await self.get_client()
        res = await (
            client.table(DOCUMENTS_TABLE)
            .select(DOCUMENT_COLUMNS)
            .eq("id", document_id)
            .limit(1)
            .execute()
        )
        rows = res.data or []
        return _to_document(rows[0]) if rows else None

    async def update_status(
        self, document_id: str, status: DocumentStatus, message: Optional[str] = None
    ) -> None:
        client = await self.get_client()
        try:
            await (
                client.table(DOCUMENTS_TABLE)
                .update({"status": status.value, "status_message": message})
                .eq("id", document_id)
                .execute()
            )
        except Exception as exc:
            emit_event(
                logger,
                "document_status_update_failed",
                level="error",
                document_id=document_id,
                status=status.value,
                error=compact_error(exc),
            )
            raise

    async def delete_document(self, document_id: str) -> None:
        client = await self.get_client()
        await client.table(DOCUMENTS_TABLE).delete().eq("id", document_id).execute()
        emit_event(logger, "document_deleted", document_id=document_id)
