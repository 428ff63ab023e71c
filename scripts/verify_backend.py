#!/usr/bin/env python3
"""Manual backend verification: run against the real Supabase project and Redis.

Usage:
  1. Fill in SUPABASE_URL / SUPABASE_KEY (and optionally REDIS_URL) in .env
  2. Run: python scripts/verify_backend.py

Steps:
  Step 1: Verify .env configuration
  Step 2: Read recent tickets straight from Supabase
  Step 3: Connect to Redis (falls back to the in-process store)
  Step 4: Tiered cache: cold read, then warm read from memory
  Step 5: Similarity analysis over the cached working set
"""

import asyncio
import sys
import time


def step_header(n: int, title: str) -> None:
    print(f"\n{'='*60}")
    print(f"  Step {n}: {title}")
    print(f"{'='*60}\n")


def ok(msg: str) -> None:
    print(f"  ✅ {msg}")


def fail(msg: str) -> None:
    print(f"  ❌ {msg}")


def info(msg: str) -> None:
    print(f"  ℹ️  {msg}")


def _source():
    from helpdesk.config import settings
    from helpdesk.integrations.supabase_tickets import SupabaseTicketSource

    return SupabaseTicketSource(
        base_url=settings.supabase_url,
        api_key=settings.supabase_key,
        table=settings.tickets_table,
        timeout=settings.remote_timeout_seconds,
        max_retries=settings.remote_max_retries,
        retry_backoff=settings.remote_retry_backoff_seconds,
    )


async def step1_verify_env():
    step_header(1, "Verify .env Configuration")
    from helpdesk.config import settings

    if not settings.has_remote:
        fail("SUPABASE_URL / SUPABASE_KEY: NOT SET, remote steps will fail!")
        return False

    ok(f"SUPABASE_URL: {settings.supabase_url}")
    ok(f"SUPABASE_KEY: set ({settings.supabase_key[:8]}...)")
    ok(f"Table: {settings.tickets_table}")
    info(f"Memory window: {settings.cache_memory_ttl_seconds}s | snapshot window: {settings.cache_snapshot_ttl_seconds}s")
    return True


async def step2_supabase_read():
    step_header(2, "Read recent tickets from Supabase")
    from helpdesk.tickets.errors import TicketSourceError

    try:
        tickets = await _source().list_recent(5)
    except TicketSourceError as e:
        fail(f"Supabase read failed: {e.message}")
        return False

    ok(f"Got {len(tickets)} tickets")
    for t in tickets[:3]:
        print(f"    - [{t.id}] {t.title[:60]} ({t.status})")
    return True


async def step3_redis():
    step_header(3, "Connect to Redis")
    from helpdesk.config import settings
    from helpdesk.services.local_store import RedisLocalStore

    store = RedisLocalStore(settings.redis_url)
    if await store.connect():
        ok(f"Redis connected: {settings.redis_url}")
        await store.disconnect()
        return True
    info("Redis unavailable; the app would use the in-process store")
    return True


async def step4_tiered_cache():
    step_header(4, "Tiered cache: cold then warm read")
    from helpdesk.services.local_store import MemoryLocalStore
    from helpdesk.services.ticket_cache import TieredTicketCache

    cache = TieredTicketCache.from_settings(_source(), MemoryLocalStore())

    start = time.monotonic()
    cold = await cache.fetch_recent(10)
    cold_ms = int((time.monotonic() - start) * 1000)

    start = time.monotonic()
    warm = await cache.fetch_recent(5)
    warm_ms = int((time.monotonic() - start) * 1000)

    if cache.last_error:
        fail(f"Remote error: {cache.last_error}")
        return False

    ok(f"Cold read: {len(cold)} tickets in {cold_ms}ms")
    ok(f"Warm read: {len(warm)} tickets in {warm_ms}ms")
    stats = cache.get_stats()
    info(f"Stats: memory_hits={stats['memory_hits']} remote_fetches={stats['remote_fetches']}")
    return stats["remote_fetches"] == 1 and warm == cold[:5]


async def step5_similarity():
    step_header(5, "Similarity analysis")
    from helpdesk.config import settings
    from helpdesk.services.local_store import MemoryLocalStore
    from helpdesk.services.similarity import DraftAnalysisScheduler, SimilarityEngine
    from helpdesk.services.ticket_cache import TieredTicketCache

    cache = TieredTicketCache.from_settings(_source(), MemoryLocalStore())
    working_set = await cache.fetch_recent(settings.similarity_working_set_size)
    if not working_set:
        fail("Empty working set; nothing to compare against")
        return False

    sample = working_set[0]
    info(f"Draft copied from ticket {sample.id}: '{sample.title[:50]}'")
    engine = SimilarityEngine.from_settings()
    result = engine.analyze(sample.title, sample.description, working_set)

    published = []
    scheduler = DraftAnalysisScheduler.from_settings(engine, published.append)
    scheduler.submit(sample.title, sample.description, working_set)
    await scheduler.wait()
    info(f"Debounced analysis published {len(published)} result(s)")

    if result.matches:
        ok(f"{len(result.matches)} matches")
        for m in result.matches[:3]:
            print(f"    - [{m.ticket_id}] {m.score:.2f} {m.title[:50]}")
        for s in result.suggestions:
            print(f"    * {s}")
        return True
    fail("A ticket should at least match itself")
    return False


async def main():
    print("\n🎫 NAPJe Help-desk Backend: Real Service Verification")
    print("=" * 60)

    results = {}

    results[1] = await step1_verify_env()
    if not results[1]:
        print("\n⚠️  Supabase credentials are required for the remaining steps.")
        print("   Fill in .env and re-run this script.\n")
        results[2] = results[4] = results[5] = False
        results[3] = await step3_redis()
    else:
        results[2] = await step2_supabase_read()
        results[3] = await step3_redis()
        results[4] = await step4_tiered_cache()
        results[5] = await step5_similarity()

    # Summary
    print(f"\n{'='*60}")
    print("  SUMMARY")
    print(f"{'='*60}")
    for step_n, passed in sorted(results.items()):
        status = "✅ PASS" if passed else "❌ FAIL"
        print(f"  Step {step_n}: {status}")

    total_passed = sum(1 for v in results.values() if v)
    print(f"\n  {total_passed}/{len(results)} steps passed")
    print(f"{'='*60}\n")

    sys.exit(0 if all(results.values()) else 1)


if __name__ == "__main__":
    asyncio.run(main())
