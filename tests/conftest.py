"""Shared test fixtures and configuration."""

import asyncio
import os
from datetime import datetime, timedelta, timezone

import pytest

# No real backend during tests
os.environ.setdefault("SUPABASE_URL", "")
os.environ.setdefault("SUPABASE_KEY", "")

from helpdesk.services.local_store import FAILED, MemoryLocalStore  # noqa: E402
from helpdesk.services.ticket_cache import TieredTicketCache  # noqa: E402
from helpdesk.tickets.errors import RemoteRejectedError, RemoteUnavailableError  # noqa: E402
from helpdesk.tickets.schemas import TicketDraft, TicketRecord  # noqa: E402

BASE_TIME = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)
VALID_CPF = "52998224725"


def make_row(n: int, **overrides) -> dict:
    """A ticket row as the backend returns it (Portuguese column names)."""
    row = {
        "id": n,
        "titulo": f"Chamado {n}",
        "descricao": f"Descrição do chamado {n}",
        "grau": "1º Grau",
        "numero_processo": None,
        "orgao_julgador": "1ª Vara do Trabalho de Natal",
        "perfil_usuario_afetado": None,
        "nome_usuario_afetado": None,
        "cpf_usuario_afetado": None,
        "chamado_origem": None,
        "created_at": (BASE_TIME - timedelta(hours=n)).isoformat(),
        "status": "Aberto",
    }
    row.update(overrides)
    return row


class FakeClock:
    """Injectable wall clock (seconds) for freshness-window tests."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeTicketSource:
    """In-memory stand-in for SupabaseTicketSource that records every call."""

    def __init__(self, rows: list[dict] | None = None):
        self.records = [TicketRecord.model_validate(r) for r in rows or []]
        self.list_calls: list[int] = []
        self.identifier_calls: list[str] = []
        self.insert_calls = 0
        self.delete_calls = 0
        self.fail_reads = False
        self.fail_writes = False
        self.gate: asyncio.Event | None = None
        self._held: list[asyncio.Event] = []
        self._next_id = 1000

    def hold_next_list(self) -> asyncio.Event:
        """Make the next list_recent call wait until the returned event is set."""
        release = asyncio.Event()
        self._held.append(release)
        return release

    async def list_recent(self, limit: int) -> list[TicketRecord]:
        self.list_calls.append(limit)
        if self._held:
            await self._held.pop(0).wait()
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_reads:
            raise RemoteUnavailableError("Backend unavailable (HTTP 503)", 503)
        ordered = sorted(self.records, key=lambda r: r.created_at, reverse=True)
        return ordered[:limit]

    async def find_by_identifier(self, identifier: str) -> list[TicketRecord]:
        self.identifier_calls.append(identifier)
        if self.fail_reads:
            raise RemoteUnavailableError("Timeout after 10000ms")
        return [r for r in self.records if r.affected_user_identifier == identifier]

    async def insert(self, draft: TicketDraft) -> TicketRecord:
        self.insert_calls += 1
        if self.fail_writes:
            raise RemoteRejectedError("Request rejected (HTTP 400): invalid grau", 400)
        self._next_id += 1
        record = TicketRecord.model_validate({
            **draft.to_row(),
            "id": self._next_id,
            "created_at": datetime.now(timezone.utc).isoformat(),
        })
        self.records.append(record)
        return record

    async def delete(self, ticket_id: str) -> bool:
        self.delete_calls += 1
        if self.fail_writes:
            raise RemoteUnavailableError("Backend unavailable (HTTP 502)", 502)
        self.records = [r for r in self.records if r.id != ticket_id]
        return True


class HeldReadStore(MemoryLocalStore):
    """MemoryLocalStore whose next read captures the payload, then waits."""

    def __init__(self):
        super().__init__()
        self._held: list[asyncio.Event] = []
        self.reads = 0

    def hold_next_read(self) -> asyncio.Event:
        release = asyncio.Event()
        self._held.append(release)
        return release

    async def try_read(self, key: str):
        self.reads += 1
        result = await super().try_read(key)
        if self._held:
            await self._held.pop(0).wait()
        return result


class BrokenLocalStore:
    """A store whose backend is down: every call reports an error."""

    backend_name = "broken"

    async def try_read(self, key: str):
        return FAILED

    async def try_write(self, key: str, payload: bytes) -> bool:
        return False

    async def try_delete(self, key: str) -> bool:
        return False


@pytest.fixture
def row_factory():
    return make_row


@pytest.fixture
def source_factory():
    return FakeTicketSource


@pytest.fixture
def broken_store():
    return BrokenLocalStore()


@pytest.fixture
def held_store():
    return HeldReadStore()


@pytest.fixture
def base_time():
    return BASE_TIME


@pytest.fixture
def valid_cpf():
    return VALID_CPF


@pytest.fixture
def sample_rows():
    """Fifty tickets, id 1 newest."""
    return [make_row(n) for n in range(1, 51)]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryLocalStore()


@pytest.fixture
def source(sample_rows):
    return FakeTicketSource(sample_rows)


@pytest.fixture
def ticket_cache(source, store, clock):
    return TieredTicketCache(source, store, clock=clock)


@pytest.fixture
def valid_draft():
    return TicketDraft(
        title="PJe não abre a pauta de audiências",
        description="Ao acessar a pauta o sistema exibe erro 500",
        degree="1º Grau",
        adjudicating_body="2ª Vara do Trabalho de Mossoró",
        affected_user_name="Maria Souza",
        affected_user_profile="Servidor",
        affected_user_identifier="529.982.247-25",
    )
