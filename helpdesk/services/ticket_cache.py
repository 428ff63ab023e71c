"""Tiered ticket cache: memory, then persistent local store, then the remote source.

Freshness windows (from config):
  - Memory entry: 1h
  - Persisted snapshot: 24h
Remote reads fetch at least ``min_batch_size`` rows so later, larger requests
are served locally. Any successful insert/remove clears both tiers.

Graceful degradation: remote failures fall back to the snapshot (even if it is
stale), else to whatever memory entry is still resident, else to an empty
list. Local-store failures count as "tier absent".
"""

import logging
import time
from typing import Callable, Protocol

from cachetools import TTLCache

from helpdesk.config import settings
from helpdesk.services.local_store import LocalStore, StoreStatus
from helpdesk.tickets.errors import TicketSourceError
from helpdesk.tickets.schemas import (
    CacheEntry,
    CacheStats,
    InsertResult,
    PersistedSnapshot,
    TicketDraft,
    TicketRecord,
    UserSummary,
)
from helpdesk.utils.identifiers import normalize_identifier

logger = logging.getLogger(__name__)

_ENTRY_KEY = "recent"


class TicketSource(Protocol):
    """The authoritative ticket store (see SupabaseTicketSource)."""

    async def list_recent(self, limit: int) -> list[TicketRecord]:
        ...

    async def find_by_identifier(self, identifier: str) -> list[TicketRecord]:
        ...

    async def insert(self, draft: TicketDraft) -> TicketRecord:
        ...

    async def delete(self, ticket_id: str) -> bool:
        ...


class TieredTicketCache:
    """Serves "the N most recent tickets" from the cheapest valid tier.

    The in-memory entry is owned by this object and replaced wholesale;
    callers only ever receive new lists.
    """

    def __init__(
        self,
        source: TicketSource,
        store: LocalStore,
        memory_ttl: float = 3600,
        snapshot_ttl: float = 86400,
        min_batch_size: int = 30,
        snapshot_key: str = "napje:chamados_recentes_cache",
        clock: Callable[[], float] = time.time,
    ):
        self._source = source
        self._store = store
        self._memory_ttl = memory_ttl
        self._snapshot_ttl = snapshot_ttl
        self._min_batch_size = min_batch_size
        self._snapshot_key = snapshot_key
        self._clock = clock
        self._memory: TTLCache = TTLCache(maxsize=1, ttl=memory_ttl, timer=clock)
        self._generation = 0
        self.stats = CacheStats()
        self.last_error: str | None = None
        self.last_lookup_error: str | None = None
        self.last_write_error: str | None = None

    @classmethod
    def from_settings(cls, source: TicketSource, store: LocalStore) -> "TieredTicketCache":
        """Build a cache with the windows and batch size from config."""
        return cls(
            source=source,
            store=store,
            memory_ttl=settings.cache_memory_ttl_seconds,
            snapshot_ttl=settings.cache_snapshot_ttl_seconds,
            min_batch_size=settings.cache_min_batch_size,
            snapshot_key=settings.snapshot_key,
        )

    # ═══════════════ READS ═══════════════

    async def fetch_recent(self, limit: int) -> list[TicketRecord]:
        """Up to ``limit`` tickets, newest first. Never raises.

        ``last_error`` describes this call: None when the answer came from a
        valid tier, the remote error message when it is a fallback.
        """
        if limit < 1:
            logger.debug("Ticket cache ignoring non-positive limit | limit=%d", limit)
            return []

        # Tier 1: memory
        entry = self._fresh_memory_entry()
        if entry is not None and entry.serves(limit):
            self.stats.memory_hits += 1
            self.last_error = None
            logger.debug("Ticket cache HIT (memory) | limit=%d | covered=%d", limit, entry.covered_limit)
            return entry.take(limit)

        # Tier 2: persisted snapshot
        generation = self._generation
        snapshot = await self._read_snapshot()
        if generation != self._generation:
            # invalidated while reading; the snapshot predates the mutation
            snapshot = None

        if snapshot is not None and self._clock() - snapshot.fetched_at < self._snapshot_ttl \
                and snapshot.serves(limit):
            self.stats.snapshot_hits += 1
            self.last_error = None
            current = self._fresh_memory_entry()
            if current is not None and current.fetched_at >= snapshot.fetched_at:
                # a remote fetch landed while the snapshot was being read
                logger.debug("Snapshot promotion skipped | newer entry resident")
                if current.serves(limit):
                    return current.take(limit)
                return list(snapshot.records[:limit])

            promoted = snapshot.to_entry()
            self._memory[_ENTRY_KEY] = promoted
            logger.info(
                "Ticket cache HIT (%s) | limit=%d | records=%d",
                self._store.backend_name, limit, len(promoted.records),
            )
            return promoted.take(limit)

        # Tier 3: remote
        return await self._fetch_remote(limit, fallback=snapshot)

    async def find_by_identifier(self, identifier: str) -> UserSummary | None:
        """Name and profile last recorded for this CPF. Always a remote query."""
        normalized = normalize_identifier(identifier)
        if normalized is None:
            logger.debug("Identifier lookup skipped | not 11 digits")
            return None

        try:
            records = await self._source.find_by_identifier(normalized)
        except TicketSourceError as e:
            self.last_lookup_error = e.message
            logger.warning("Identifier lookup failed | %s", e.message[:200])
            return None

        self.last_lookup_error = None
        for record in sorted(records, key=lambda r: r.created_at, reverse=True):
            if (
                record.affected_user_identifier == normalized
                and record.affected_user_name
                and record.affected_user_profile
            ):
                return UserSummary(
                    name=record.affected_user_name,
                    profile=record.affected_user_profile,
                    identifier=normalized,
                )
        return None

    # ═══════════════ WRITES ═══════════════

    async def insert(self, draft: TicketDraft) -> InsertResult:
        """Store a ticket remotely; on success both cache tiers are cleared."""
        try:
            ticket = await self._source.insert(draft)
        except TicketSourceError as e:
            logger.warning("Ticket insert failed | cache untouched | %s", e.message[:200])
            self.last_write_error = e.message
            return InsertResult(error=e.message)

        self.last_write_error = None
        await self.invalidate()
        logger.info("Ticket inserted | id=%s", ticket.id)
        return InsertResult(ticket=ticket)

    async def remove(self, ticket_id: str) -> bool:
        """Delete a ticket remotely; on success both cache tiers are cleared."""
        try:
            await self._source.delete(ticket_id)
        except TicketSourceError as e:
            self.last_write_error = e.message
            logger.warning("Ticket delete failed | id=%s | cache untouched | %s", ticket_id, e.message[:200])
            return False

        self.last_write_error = None
        await self.invalidate()
        logger.info("Ticket deleted | id=%s", ticket_id)
        return True

    async def invalidate(self):
        """Clear the memory entry and delete the snapshot. Idempotent."""
        self._generation += 1
        self._memory.clear()
        self.stats.invalidations += 1
        if not await self._store.try_delete(self._snapshot_key):
            logger.debug("Snapshot delete skipped | store=%s", self._store.backend_name)

    # ═══════════════ INTERNALS ═══════════════

    def _fresh_memory_entry(self) -> CacheEntry | None:
        entry = self._memory.get(_ENTRY_KEY)
        if entry is None:
            return None
        # promoted snapshots keep their original timestamp
        if entry.age(self._clock()) >= self._memory_ttl:
            return None
        return entry

    async def _fetch_remote(self, limit: int, fallback: PersistedSnapshot | None) -> list[TicketRecord]:
        generation = self._generation
        started_at = self._clock()
        batch = max(limit, self._min_batch_size)

        try:
            records = await self._source.list_recent(batch)
        except TicketSourceError as e:
            self.stats.remote_failures += 1
            self.last_error = e.message
            if generation == self._generation:
                if fallback is not None:
                    self.stats.stale_fallbacks += 1
                    logger.warning(
                        "Ticket fetch failed, serving snapshot | age=%ds | %s",
                        int(self._clock() - fallback.fetched_at), e.message[:200],
                    )
                    return list(fallback.records[:limit])
                # store unavailable: the memory entry may still be resident
                residue = self._memory.get(_ENTRY_KEY)
                if residue is not None:
                    self.stats.stale_fallbacks += 1
                    logger.warning("Ticket fetch failed, serving memory entry | %s", e.message[:200])
                    return residue.take(limit)
            logger.warning("Ticket fetch failed, nothing cached | %s", e.message[:200])
            return []

        self.last_error = None
        self.stats.remote_fetches += 1
        entry = CacheEntry(
            records=tuple(records),
            fetched_at=started_at,
            covered_limit=len(records),
            exhausted=len(records) < batch,
        )

        if generation != self._generation:
            logger.info("Ticket fetch raced an invalidation | not cached | records=%d", len(records))
            return entry.take(limit)

        current = self._memory.get(_ENTRY_KEY)
        if current is not None and current.fetched_at > started_at:
            # a fetch that started later has already landed
            logger.debug("Ticket fetch superseded | records=%d", len(records))
            if current.serves(limit):
                return current.take(limit)
            return entry.take(limit)

        self._memory[_ENTRY_KEY] = entry
        await self._write_snapshot(entry, generation)
        logger.info(
            "Ticket cache SET | limit=%d | batch=%d | records=%d",
            limit, batch, len(records),
        )
        return entry.take(limit)

    async def _read_snapshot(self) -> PersistedSnapshot | None:
        result = await self._store.try_read(self._snapshot_key)
        if result.status is StoreStatus.ERROR:
            logger.debug("Snapshot read failed | store=%s", self._store.backend_name)
            return None
        if not result.found:
            return None
        try:
            return PersistedSnapshot.model_validate_json(result.payload)
        except ValueError as e:
            logger.warning("Discarding unreadable snapshot | %s", str(e)[:100])
            return None

    async def _write_snapshot(self, entry: CacheEntry, generation: int):
        payload = PersistedSnapshot.from_entry(entry).model_dump_json().encode("utf-8")
        if not await self._store.try_write(self._snapshot_key, payload):
            logger.debug("Snapshot write skipped | store=%s", self._store.backend_name)
            return
        if generation != self._generation:
            # an invalidation ran while we were writing
            await self._store.try_delete(self._snapshot_key)

    def get_stats(self) -> dict:
        """Counters plus the state of the memory entry."""
        stats: dict = self.stats.to_dict()
        entry = self._fresh_memory_entry()
        stats["store"] = self._store.backend_name
        stats["memory_entry"] = None if entry is None else {
            "records": len(entry.records),
            "covered_limit": entry.covered_limit,
            "exhausted": entry.exhausted,
            "age_seconds": int(entry.age(self._clock())),
        }
        stats["last_error"] = self.last_error
        stats["last_lookup_error"] = self.last_lookup_error
        stats["last_write_error"] = self.last_write_error
        return stats
