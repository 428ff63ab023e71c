"""NAPJe help-desk backend: FastAPI application entry point.

Serves the recent-ticket list, ticket CRUD and draft similarity analysis to
the portal frontend, all backed by the tiered ticket cache.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from helpdesk.config import settings
from helpdesk.integrations.supabase_tickets import SupabaseTicketSource
from helpdesk.services.local_store import MemoryLocalStore, RedisLocalStore
from helpdesk.services.similarity import SimilarityEngine
from helpdesk.services.ticket_cache import TieredTicketCache
from helpdesk.tickets.schemas import AnalyzeRequest, RecentTicketsResponse, TicketDraft
from helpdesk.utils.ticket_text import format_user_line, render_ticket_text, validate_draft

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
)
logger = logging.getLogger("helpdesk")

STALE_NOTICE = "Não foi possível atualizar os chamados. Exibindo a última lista disponível."


def _build_ticket_cache(store) -> TieredTicketCache:
    source = SupabaseTicketSource(
        base_url=settings.supabase_url,
        api_key=settings.supabase_key,
        table=settings.tickets_table,
        timeout=settings.remote_timeout_seconds,
        max_retries=settings.remote_max_retries,
        retry_backoff=settings.remote_retry_backoff_seconds,
    )
    return TieredTicketCache.from_settings(source, store)


def create_app(
    ticket_cache: TieredTicketCache | None = None,
    engine: SimilarityEngine | None = None,
) -> FastAPI:
    """Build the app. Pass a ready cache to skip the Redis/Supabase wiring."""

    # ═══════════════ LIFESPAN ═══════════════

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Help-desk backend starting | remote_configured=%s", settings.has_remote)

        redis_store = None
        if app.state.ticket_cache is None:
            # Redis snapshot store (graceful degradation if unavailable)
            redis_store = RedisLocalStore(settings.redis_url)
            redis_ok = await redis_store.connect()
            logger.info("Redis: %s", "connected" if redis_ok else "unavailable (using in-memory fallback)")
            store = redis_store if redis_ok else MemoryLocalStore()
            app.state.ticket_cache = _build_ticket_cache(store)

        yield

        if redis_store is not None:
            await redis_store.disconnect()
        logger.info("Help-desk backend shutting down")

    # ═══════════════ APP ═══════════════

    app = FastAPI(
        title="NAPJe Help-desk API",
        description="Recent tickets, ticket registration and duplicate detection",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.ticket_cache = ticket_cache
    app.state.engine = engine or SimilarityEngine.from_settings()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    # ═══════════════ ENDPOINTS ═══════════════

    @app.get("/health")
    async def health(request: Request):
        cache: TieredTicketCache | None = request.app.state.ticket_cache
        return {
            "status": "ok",
            "remote_configured": settings.has_remote,
            "store": cache.get_stats()["store"] if cache else None,
        }

    @app.get("/api/tickets/recent")
    async def recent_tickets(request: Request, limit: int = 10):
        cache: TieredTicketCache = request.app.state.ticket_cache
        items = await cache.fetch_recent(limit)
        notice = STALE_NOTICE if cache.last_error else None
        response = RecentTicketsResponse(items=items, notice=notice)
        return JSONResponse(content=response.model_dump(mode="json"))

    @app.get("/api/tickets/{ticket_id}/text")
    async def ticket_text(request: Request, ticket_id: str):
        cache: TieredTicketCache = request.app.state.ticket_cache
        working_set = await cache.fetch_recent(settings.similarity_working_set_size)
        for ticket in working_set:
            if ticket.id == ticket_id:
                return {
                    "id": ticket.id,
                    "text": render_ticket_text(ticket),
                    "user_line": format_user_line(ticket),
                }
        return JSONResponse(status_code=404, content={"error": "Chamado não encontrado."})

    @app.post("/api/tickets")
    async def create_ticket(request: Request, draft: TicketDraft):
        errors = validate_draft(draft)
        if errors:
            return JSONResponse(status_code=400, content={"errors": errors})

        cache: TieredTicketCache = request.app.state.ticket_cache
        result = await cache.insert(draft)
        if not result.ok:
            logger.error("Ticket creation failed | %s", (result.error or "")[:300])
            return JSONResponse(
                status_code=502,
                content={"error": "Não foi possível registrar o chamado.", "detail": result.error},
            )
        return JSONResponse(status_code=201, content={"ticket": result.ticket.model_dump(mode="json")})

    @app.delete("/api/tickets/{ticket_id}")
    async def delete_ticket(request: Request, ticket_id: str):
        cache: TieredTicketCache = request.app.state.ticket_cache
        if not await cache.remove(ticket_id):
            return JSONResponse(
                status_code=502,
                content={"error": "Não foi possível excluir o chamado.", "detail": cache.last_write_error},
            )
        return {"deleted": ticket_id}

    @app.get("/api/users/{identifier}")
    async def find_user(request: Request, identifier: str):
        cache: TieredTicketCache = request.app.state.ticket_cache
        summary = await cache.find_by_identifier(identifier)
        if summary is None:
            return JSONResponse(status_code=404, content={"error": "Usuário não encontrado."})
        return summary.model_dump()

    @app.post("/api/similarity/analyze")
    async def analyze_draft(request: Request, body: AnalyzeRequest):
        cache: TieredTicketCache = request.app.state.ticket_cache
        engine: SimilarityEngine = request.app.state.engine
        working_set = await cache.fetch_recent(settings.similarity_working_set_size)
        result = engine.analyze(body.title, body.description, working_set)
        logger.info(
            "Draft analyzed | working_set=%d | matches=%d",
            len(working_set), len(result.matches),
        )
        return JSONResponse(content=result.model_dump(mode="json"))

    @app.post("/api/cache/invalidate")
    async def invalidate_cache(request: Request):
        cache: TieredTicketCache = request.app.state.ticket_cache
        await cache.invalidate()
        return {"invalidated": True}

    @app.get("/api/cache/stats")
    async def cache_stats(request: Request):
        cache: TieredTicketCache = request.app.state.ticket_cache
        return cache.get_stats()

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("helpdesk.main:app", host=settings.host, port=settings.port)
