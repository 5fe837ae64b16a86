from typing import Any, Optional

from studyrag.domain.ingestion.ports import IProfileRepository
from studyrag.infrastructure.supabase.client import get_async_supabase_client


class SupabaseProfileRepository(IProfileRepository):
    def __init__(self, client: Optional[Any] = None):
        self._supabase = client

    async def get_client(self):
        if self._supabase is None:
            self._supabase = await get_async_supabase_client()
        return self._supabase

    async def get_subscription_status(self, user_id: str) -> Optional[str]:
        client = await self.get_client()
        res = await (
            client.table("profiles")
            .select("subscription_status")
            .eq("id", user_id)
            .limit(1)
            .execute()
        )
        rows = res.data or []
        if not rows:
            return None
        return rows[0].get("subscription_status")
