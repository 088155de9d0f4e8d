"""
Journal Repository for querying journal entries through Supabase.

All relational and semantic queries go through Postgres procedures exposed
as Supabase RPCs; the baseline fetch and the entry count use the query
builder directly. Every call is bounded by a timeout and by a shared
semaphore so a wide stage cannot flood the store.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx
from postgrest.exceptions import APIError

from journal_query.exceptions import ConnectivityError, QueryError

logger = logging.getLogger("journal_repository")

CONNECTIVITY_SIGNATURES = (
    "timeout",
    "timed out",
    "connection",
    "network",
    "could not connect",
    "fetch failed",
    "econnreset",
    "econnrefused",
    "service unavailable",
    "bad gateway",
    "gateway timeout",
)


def is_connectivity_message(message: Optional[str]) -> bool:
    """True when an error message describes a transport/timeout problem rather than a bad query."""
    lowered = (message or "").lower()
    return any(signature in lowered for signature in CONNECTIVITY_SIGNATURES)


class JournalRepository:
    """
    Repository for journal-entry queries.

    Procedures used:
    - execute_dynamic_query(query_text, user_timezone) -> {success, data}
    - match_journal_entries(query_embedding, match_threshold, match_count, user_id_filter)
    - match_journal_entries_with_date(..., start_date, end_date)
    """

    def __init__(
        self,
        client: Any,
        table_name: str = "Journal Entries",
        timeout_seconds: float = 10.0,
        semaphore: Optional[asyncio.Semaphore] = None
    ):
        """
        Args:
            client: Supabase AsyncClient (or anything exposing rpc()/table() builders)
            table_name: Name of the journal entries table
            timeout_seconds: Per-call timeout
            semaphore: Shared bound on concurrent outbound calls
        """
        self.client = client
        self.table_name = table_name
        self.timeout_seconds = timeout_seconds
        self._semaphore = semaphore or asyncio.Semaphore(8)
        logger.info(f"📊 Initialized JournalRepository with table: {table_name}")

    async def _execute(self, operation: str, request: Any) -> Any:
        """Run a Supabase request builder, translating failures into the engine's error types."""
        async with self._semaphore:
            try:
                return await asyncio.wait_for(request.execute(), timeout=self.timeout_seconds)
            except asyncio.TimeoutError as e:
                raise ConnectivityError(f"{operation} timed out after {self.timeout_seconds}s") from e
            except httpx.TransportError as e:
                raise ConnectivityError(f"{operation} connection failed: {e}") from e
            except APIError as e:
                message = e.message or str(e)
                if e.code:
                    logger.error(f"{operation} failed - PostgreSQL error code: {e.code}")
                if e.hint:
                    logger.error(f"{operation} failed - hint: {e.hint}")
                if is_connectivity_message(message):
                    raise ConnectivityError(f"{operation} failed: {message}") from e
                raise QueryError(f"{operation} failed: {message}") from e

    async def execute_dynamic_query(self, query_text: str, user_timezone: str = "UTC") -> List[Dict[str, Any]]:
        """
        Run a sanitized SELECT through the dynamic query procedure.

        Returns:
            Result rows (possibly empty)

        Raises:
            ConnectivityError: Timeouts and transport failures
            QueryError: The procedure rejected the query
        """
        response = await self._execute(
            "execute_dynamic_query",
            self.client.rpc("execute_dynamic_query", {
                "query_text": query_text,
                "user_timezone": user_timezone,
            })
        )

        payload = response.data
        if not isinstance(payload, dict):
            raise QueryError("Invalid response format from SQL execution")

        if not payload.get("success"):
            message = payload.get("error") or "SQL execution reported failure"
            if is_connectivity_message(message):
                raise ConnectivityError(message)
            raise QueryError(message)

        rows = payload.get("data") or []
        logger.info(f"Dynamic query returned {len(rows)} rows")
        return rows

    async def match_entries(
        self,
        embedding: Sequence[float],
        threshold: float,
        limit: int,
        subject_id: str
    ) -> List[Dict[str, Any]]:
        """Semantic search over all of the subject's entries."""
        response = await self._execute(
            "match_journal_entries",
            self.client.rpc("match_journal_entries", {
                "query_embedding": list(embedding),
                "match_threshold": threshold,
                "match_count": limit,
                "user_id_filter": subject_id,
            })
        )
        return response.data or []

    async def match_entries_with_date(
        self,
        embedding: Sequence[float],
        threshold: float,
        limit: int,
        subject_id: str,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Semantic search restricted to a time window; either bound may be None."""
        response = await self._execute(
            "match_journal_entries_with_date",
            self.client.rpc("match_journal_entries_with_date", {
                "query_embedding": list(embedding),
                "match_threshold": threshold,
                "match_count": limit,
                "user_id_filter": subject_id,
                "start_date": start_date,
                "end_date": end_date,
            })
        )
        return response.data or []

    async def fetch_recent_entries(self, subject_id: str, limit: int = 10) -> List[Dict[str, Any]]:
        """Most recent entries for the subject, newest first."""
        request = (
            self.client.table(self.table_name)
            .select("*")
            .eq("user_id", subject_id)
            .order("created_at", desc=True)
            .limit(limit)
        )
        response = await self._execute("fetch_recent_entries", request)
        rows = response.data or []
        logger.info(f"Baseline fetch returned {len(rows)} rows")
        return rows

    async def count_entries(self, subject_id: str) -> int:
        """Total number of entries the subject has written."""
        request = (
            self.client.table(self.table_name)
            .select("id", count="exact", head=True)
            .eq("user_id", subject_id)
        )
        response = await self._execute("count_entries", request)
        return response.count or 0
