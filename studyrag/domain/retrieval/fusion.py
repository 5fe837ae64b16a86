from __future__ import annotations

import math
from typing import Any, Optional, Sequence

from studyrag.domain.retrieval.types import RetrievedChunk


def _safe_float(value: Any, *, default: float = 0.0) -> float:
    try:
        if value is None:
            return default
        f = float(value)
        return f if math.isfinite(f) else default
    except (ValueError, TypeError):
        return default


def row_to_chunk(row: dict[str, Any]) -> RetrievedChunk:
    metadata = row.get("metadata")
    return RetrievedChunk(
        id=str(row.get("id") or ""),
        document_id=str(row["document_id"]) if row.get("document_id") else None,
        content=str(row.get("content") or ""),
        metadata=metadata if isinstance(metadata, dict) else {},
        similarity=_safe_float(row["similarity"]) if row.get("similarity") is not None else None,
        keyword_rank=_safe_float(row["rank"]) if row.get("rank") is not None else None,
    )


def rrf_merge(
    ranked_lists: Sequence[Sequence[RetrievedChunk]],
    *,
    rrf_k: int,
    top_k: int,
    weights: Optional[Sequence[float]] = None,
) -> list[RetrievedChunk]:
    """
    Reciprocal rank fusion: each list adds weight / (rrf_k + rank) per item.
    Identity is the chunk id. The first occurrence keeps its payload and
    per-list signals are merged onto it.
    """
    score_by_id: dict[str, float] = {}
    item_by_id: dict[str, RetrievedChunk] = {}
    for list_index, items in enumerate(ranked_lists):
        weight = 1.0
        if weights is not None and list_index < len(weights):
            weight = _safe_float(weights[list_index], default=1.0)
        for rank, item in enumerate(items, start=1):
            row_id = item.id or f"synthetic-{list_index}-{rank}"
            score_by_id[row_id] = score_by_id.get(row_id, 0.0) + weight / (rrf_k + rank)
            existing = item_by_id.get(row_id)
            if existing is None:
                item_by_id[row_id] = item
                continue
            if existing.similarity is None and item.similarity is not None:
                existing.similarity = item.similarity
            if existing.keyword_rank is None and item.keyword_rank is not None:
                existing.keyword_rank = item.keyword_rank

    ranked_ids = sorted(score_by_id.keys(), key=lambda key: score_by_id[key], reverse=True)
    merged: list[RetrievedChunk] = []
    for row_id in ranked_ids[: max(1, top_k)]:
        merged.append(item_by_id[row_id].model_copy(update={"score": float(score_by_id[row_id])}))
    return merged
