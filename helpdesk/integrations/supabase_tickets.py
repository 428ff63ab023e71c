"""Supabase (PostgREST) integration for the authoritative ticket table.

Docs: https://postgrest.org/en/stable/references/api/tables_views.html
Endpoint: {SUPABASE_URL}/rest/v1/{table}
"""

import asyncio
import logging
import time
from typing import Any

import httpx

from helpdesk.tickets.errors import RemoteRejectedError, RemoteUnavailableError, TicketSourceError
from helpdesk.tickets.schemas import TicketDraft, TicketRecord

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = (429, 500, 502, 503, 504)


class SupabaseTicketSource:
    """Async client for the ticket table exposed by Supabase REST."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        table: str = "chamados",
        timeout: float = 10,
        max_retries: int = 2,
        retry_backoff: float = 0.5,
    ):
        self.endpoint = f"{base_url.rstrip('/')}/rest/v1/{table}"
        self.api_key = api_key
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff

    async def list_recent(self, limit: int) -> list[TicketRecord]:
        """Newest-first tickets, capped at ``limit``. Single attempt, never retried."""
        params = {
            "select": "*",
            "order": "created_at.desc",
            "limit": str(limit),
        }
        rows = await self._read(params, label=f"list_recent limit={limit}", max_retries=0)
        return _parse_rows(rows)

    async def find_by_identifier(self, identifier: str) -> list[TicketRecord]:
        """Most recent ticket naming this (already normalized) CPF with name and profile filled."""
        params = {
            "select": "*",
            "cpf_usuario_afetado": f"eq.{identifier}",
            "nome_usuario_afetado": "not.is.null",
            "perfil_usuario_afetado": "not.is.null",
            "order": "created_at.desc",
            "limit": "1",
        }
        rows = await self._read(params, label="find_by_identifier")
        return _parse_rows(rows)

    async def insert(self, draft: TicketDraft) -> TicketRecord:
        """Insert one ticket and return the stored row. Never retried."""
        response = await self._send(
            "POST",
            json=draft.to_row(),
            headers={"Prefer": "return=representation"},
            label="insert",
        )
        try:
            rows = response.json()
            if isinstance(rows, list):
                if not rows:
                    raise RemoteRejectedError("Insert returned no row")
                rows = rows[0]
            return TicketRecord.model_validate(rows)
        except ValueError as e:
            raise RemoteRejectedError(f"Unreadable insert response: {str(e)[:200]}") from e

    async def delete(self, ticket_id: str) -> bool:
        """Delete by id. Never retried."""
        await self._send("DELETE", params={"id": f"eq.{ticket_id}"}, label=f"delete id={ticket_id}")
        return True

    # ═══════════════ TRANSPORT ═══════════════

    def _headers(self) -> dict[str, str]:
        return {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def _read(
        self, params: dict[str, str], label: str, max_retries: int | None = None,
    ) -> list[dict[str, Any]]:
        """GET with retry on RemoteUnavailableError and exponential backoff."""
        retries = self.max_retries if max_retries is None else max_retries
        max_attempts = retries + 1
        last_error: TicketSourceError | None = None

        for attempt in range(1, max_attempts + 1):
            try:
                response = await self._send("GET", params=params, label=label)
                try:
                    data = response.json()
                except ValueError as e:
                    raise RemoteRejectedError(f"Invalid JSON for {label}") from e
                if not isinstance(data, list):
                    raise RemoteRejectedError(f"Unexpected payload for {label}")
                return data
            except RemoteUnavailableError as e:
                last_error = e
                if attempt < max_attempts:
                    delay = self.retry_backoff * (2 ** (attempt - 1))
                    logger.warning(
                        "Supabase retry | %s | attempt=%d/%d | wait=%.2fs",
                        label, attempt, max_attempts, delay,
                    )
                    await asyncio.sleep(delay)

        raise last_error or RemoteUnavailableError(f"{label} failed after all retries")

    async def _send(
        self,
        method: str,
        params: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        label: str = "",
    ) -> httpx.Response:
        """Single HTTP call; maps every failure onto the ticket error taxonomy."""
        request_headers = self._headers()
        if headers:
            request_headers.update(headers)

        start = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(
                    method, self.endpoint, params=params, json=json, headers=request_headers,
                )
        except httpx.TimeoutException:
            elapsed_ms = int((time.monotonic() - start) * 1000)
            logger.warning("Supabase timeout | %s | %dms", label, elapsed_ms)
            raise RemoteUnavailableError(f"Timeout after {elapsed_ms}ms")
        except httpx.HTTPError as e:
            elapsed_ms = int((time.monotonic() - start) * 1000)
            logger.warning("Supabase transport error | %s | %dms | %s", label, elapsed_ms, str(e)[:200])
            raise RemoteUnavailableError(f"Transport error: {str(e)[:200]}")

        elapsed_ms = int((time.monotonic() - start) * 1000)
        if response.status_code in RETRYABLE_STATUS:
            logger.warning(
                "Supabase unavailable | %s | status=%d | %dms",
                label, response.status_code, elapsed_ms,
            )
            raise RemoteUnavailableError(
                f"Backend unavailable (HTTP {response.status_code})", response.status_code,
            )
        if response.status_code >= 400:
            logger.error(
                "Supabase rejected | %s | status=%d | %dms | %s",
                label, response.status_code, elapsed_ms, response.text[:200],
            )
            raise RemoteRejectedError(
                f"Request rejected (HTTP {response.status_code}): {response.text[:200]}",
                response.status_code,
            )

        logger.info("Supabase OK | %s | status=%d | %dms", label, response.status_code, elapsed_ms)
        return response


def _parse_rows(rows: list[dict[str, Any]]) -> list[TicketRecord]:
    """Validate rows, skipping (and logging) any the model cannot accept."""
    records = []
    for row in rows:
        try:
            records.append(TicketRecord.model_validate(row))
        except ValueError as e:
            logger.warning("Skipping malformed ticket row | id=%s | %s", row.get("id"), str(e)[:200])
    return records
