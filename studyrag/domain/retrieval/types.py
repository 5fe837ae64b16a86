from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field


class RetrievedChunk(BaseModel):
    id: str
    document_id: Optional[str] = None
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    score: float = 0.0
    similarity: Optional[float] = None
    keyword_rank: Optional[float] = None

    @property
    def page_refs(self) -> list[int]:
        refs = self.metadata.get("pageRefs") or self.metadata.get("page_refs")
        if isinstance(refs, list):
            pages = []
            for value in refs:
                try:
                    page = int(value)
                except (TypeError, ValueError):
                    continue
                if page >= 1 and page not in pages:
                    pages.append(page)
            return pages
        return []
