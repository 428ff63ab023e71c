"""Pydantic models shared by the ticket cache, the similarity engine and the API.

Split into: records, cache state, similarity output, API payloads.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field, field_validator

from helpdesk.utils.identifiers import normalize_identifier

logger = logging.getLogger(__name__)

OPEN_STATUS = "Aberto"

# Python field name → backend column name
COLUMN_NAMES = {
    "title": "titulo",
    "description": "descricao",
    "degree": "grau",
    "process_number": "numero_processo",
    "adjudicating_body": "orgao_julgador",
    "affected_user_profile": "perfil_usuario_afetado",
    "affected_user_name": "nome_usuario_afetado",
    "affected_user_identifier": "cpf_usuario_afetado",
    "origin_ticket_id": "chamado_origem",
    "status": "status",
}


# ═══════════════ RECORDS ═══════════════

class TicketRecord(BaseModel):
    """One help-desk ticket as stored by the remote backend.

    Accepts both the backend column names (``titulo``, ``cpf_usuario_afetado``...)
    and the Python field names. Unknown columns are ignored.
    """

    id: str
    title: str = Field("", alias="titulo")
    description: str = Field("", alias="descricao")
    degree: str | None = Field(None, alias="grau")
    process_number: str | None = Field(None, alias="numero_processo")
    adjudicating_body: str | None = Field(None, alias="orgao_julgador")
    affected_user_profile: str | None = Field(None, alias="perfil_usuario_afetado")
    affected_user_name: str | None = Field(None, alias="nome_usuario_afetado")
    affected_user_identifier: str | None = Field(None, alias="cpf_usuario_afetado")
    origin_ticket_id: str | None = Field(None, alias="chamado_origem")
    created_at: datetime
    status: str = OPEN_STATUS
    resolution_note: str | None = Field(None, alias="resolucao")

    model_config = {"populate_by_name": True, "frozen": True}

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_text(cls, v: Any) -> str:
        return str(v)

    @field_validator("title", "description", mode="before")
    @classmethod
    def _none_as_empty(cls, v: Any) -> str:
        return v or ""

    @field_validator("status", mode="before")
    @classmethod
    def _default_status(cls, v: Any) -> str:
        return v or OPEN_STATUS

    @field_validator("affected_user_identifier", mode="before")
    @classmethod
    def _normalize_identifier(cls, v: Any) -> str | None:
        if v is None or v == "":
            return None
        normalized = normalize_identifier(str(v))
        if normalized is None:
            logger.debug("Discarding malformed affected-user identifier | digits=%d",
                         sum(ch.isdigit() for ch in str(v)))
        return normalized

    @field_validator("created_at")
    @classmethod
    def _aware_timestamp(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @property
    def text(self) -> str:
        """Title and description joined, as compared by the similarity engine."""
        return f"{self.title} {self.description}"


class TicketDraft(BaseModel):
    """Fields submitted by the ticket-creation form."""

    title: str = ""
    description: str = ""
    degree: str | None = None
    process_number: str | None = None
    adjudicating_body: str | None = None
    affected_user_profile: str | None = None
    affected_user_name: str | None = None
    affected_user_identifier: str | None = None
    origin_ticket_id: str | None = None
    status: str = OPEN_STATUS

    def to_row(self) -> dict[str, Any]:
        """Map to backend columns; blank optional fields become NULL."""
        row: dict[str, Any] = {}
        for field_name, column in COLUMN_NAMES.items():
            value = getattr(self, field_name)
            if field_name in ("title", "description"):
                row[column] = value
            elif field_name == "affected_user_identifier":
                row[column] = normalize_identifier(value) if value else None
            else:
                row[column] = value or None
        row["status"] = self.status or OPEN_STATUS
        return row


class UserSummary(BaseModel):
    """Affected-user details recovered from the most recent ticket that named them."""
    name: str
    profile: str
    identifier: str


# ═══════════════ CACHE STATE ═══════════════

class CacheEntry(BaseModel):
    """In-memory answer to "the N most recent tickets".

    ``covered_limit`` is the number of records the fetch returned. When the
    remote returned fewer rows than were asked for, the table is exhausted and
    the entry answers any limit.
    """

    records: tuple[TicketRecord, ...]
    fetched_at: float
    covered_limit: int
    exhausted: bool = False

    model_config = {"frozen": True}

    def serves(self, limit: int) -> bool:
        return self.exhausted or self.covered_limit >= limit

    def age(self, now: float) -> float:
        return now - self.fetched_at

    def take(self, limit: int) -> list[TicketRecord]:
        """Return a fresh list holding the first ``limit`` records."""
        return list(self.records[:limit])


class PersistedSnapshot(BaseModel):
    """Durable mirror of a CacheEntry, serialized as JSON under a fixed key."""

    records: list[TicketRecord] = Field(default_factory=list)
    fetched_at: float
    covered_limit: int = 0
    exhausted: bool = False

    @classmethod
    def from_entry(cls, entry: CacheEntry) -> PersistedSnapshot:
        return cls(
            records=list(entry.records),
            fetched_at=entry.fetched_at,
            covered_limit=entry.covered_limit,
            exhausted=entry.exhausted,
        )

    def to_entry(self) -> CacheEntry:
        return CacheEntry(
            records=tuple(self.records),
            fetched_at=self.fetched_at,
            covered_limit=self.covered_limit or len(self.records),
            exhausted=self.exhausted,
        )

    def serves(self, limit: int) -> bool:
        return self.exhausted or len(self.records) >= limit


@dataclass
class CacheStats:
    """Counters for how each read was answered."""

    memory_hits: int = 0
    snapshot_hits: int = 0
    remote_fetches: int = 0
    remote_failures: int = 0
    stale_fallbacks: int = 0
    invalidations: int = 0

    @property
    def total_reads(self) -> int:
        return self.memory_hits + self.snapshot_hits + self.remote_fetches + self.remote_failures

    @property
    def hit_rate(self) -> float:
        if self.total_reads == 0:
            return 0.0
        return (self.memory_hits + self.snapshot_hits) / self.total_reads

    def to_dict(self) -> dict[str, float | int]:
        return {
            "memory_hits": self.memory_hits,
            "snapshot_hits": self.snapshot_hits,
            "remote_fetches": self.remote_fetches,
            "remote_failures": self.remote_failures,
            "stale_fallbacks": self.stale_fallbacks,
            "invalidations": self.invalidations,
            "hit_rate": self.hit_rate,
        }


class InsertResult(BaseModel):
    """Outcome of a ticket insert: the stored ticket, or the error to show."""
    ticket: TicketRecord | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.ticket is not None


# ═══════════════ SIMILARITY ═══════════════

class SimilarityMatch(BaseModel):
    """A historical ticket scored against the current draft."""
    ticket_id: str
    score: float
    title: str = ""
    description: str = ""
    adjudicating_body: str = ""
    degree: str = ""
    created_at: datetime
    resolution_note: str | None = None


class SimilarityResult(BaseModel):
    matches: list[SimilarityMatch] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)


# ═══════════════ API PAYLOADS ═══════════════

class RecentTicketsResponse(BaseModel):
    items: list[TicketRecord] = Field(default_factory=list)
    notice: str | None = None


class AnalyzeRequest(BaseModel):
    title: str = ""
    description: str = ""
