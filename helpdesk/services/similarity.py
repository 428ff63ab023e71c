"""Similarity engine: likely duplicates and hints for a ticket draft.

Scoring is word overlap with length normalization (Dice coefficient over the
sets of lower-cased tokens longer than three characters). Matches above the
significance threshold are ranked by score, newest first on ties, and capped.
The engine is pure; DraftAnalysisScheduler adds the debounce a live form needs.
"""

import asyncio
import logging
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable

from helpdesk.config import settings
from helpdesk.tickets.schemas import SimilarityMatch, SimilarityResult, TicketRecord

logger = logging.getLogger(__name__)

# Tokens of this length or shorter are connectives ("de", "no", "para"...)
SHORT_TOKEN_LENGTH = 3


def tokenize(text: str) -> set[str]:
    """Whitespace split, lower-case, drop short tokens."""
    return {word for word in text.lower().split() if len(word) > SHORT_TOKEN_LENGTH}


def dice_score(a: set[str], b: set[str]) -> float:
    """2|A∩B| / (|A|+|B|); 0 when either side is empty."""
    if not a or not b:
        return 0.0
    return 2 * len(a & b) / (len(a) + len(b))


class SimilarityEngine:
    """Scores a draft against a working set of recent tickets."""

    def __init__(
        self,
        threshold: float = 0.3,
        max_matches: int = 5,
        min_text_length: int = 10,
        recent_days: int = 30,
    ):
        self.threshold = threshold
        self.max_matches = max_matches
        self.min_text_length = min_text_length
        self.recent_days = recent_days

    @classmethod
    def from_settings(cls) -> "SimilarityEngine":
        return cls(
            threshold=settings.similarity_threshold,
            max_matches=settings.similarity_max_matches,
            min_text_length=settings.similarity_min_text_length,
            recent_days=settings.similarity_recent_days,
        )

    def analyze(
        self,
        title: str,
        description: str,
        working_set: Iterable[TicketRecord],
        now: datetime | None = None,
    ) -> SimilarityResult:
        """Ranked matches and suggestions. Short drafts give an empty result."""
        query_text = f"{title or ''} {description or ''}".strip()
        if len(query_text) < self.min_text_length:
            return SimilarityResult()

        matches = self.rank(query_text, working_set)
        suggestions = self.suggest(matches, now or datetime.now(timezone.utc))
        logger.debug("Similarity analyzed | chars=%d | matches=%d", len(query_text), len(matches))
        return SimilarityResult(matches=matches, suggestions=suggestions)

    def rank(self, query_text: str, working_set: Iterable[TicketRecord]) -> list[SimilarityMatch]:
        query_tokens = tokenize(query_text)
        if not query_tokens:
            return []

        scored = []
        for ticket in working_set:
            score = dice_score(query_tokens, tokenize(ticket.text))
            if score > self.threshold:
                scored.append((score, ticket))

        scored.sort(key=lambda pair: (pair[0], pair[1].created_at), reverse=True)
        return [_to_match(score, ticket) for score, ticket in scored[:self.max_matches]]

    def suggest(self, matches: list[SimilarityMatch], now: datetime) -> list[str]:
        """Descriptive hints derived from the ranked matches."""
        suggestions: list[str] = []
        if not matches:
            return suggestions

        suggestions.append(f"Encontrados {len(matches)} chamados similares")

        if any(m.resolution_note and m.resolution_note.strip() for m in matches):
            suggestions.append("Há chamados similares já resolvidos que podem ajudar")

        bodies = Counter(m.adjudicating_body for m in matches if m.adjudicating_body)
        if bodies:
            body, count = bodies.most_common(1)[0]
            if count > 1:
                suggestions.append(f"Problema frequente no órgão: {body}")

        cutoff = now - timedelta(days=self.recent_days)
        recent = [m for m in matches if m.created_at >= cutoff]
        if len(recent) >= 3:
            suggestions.append("Problema recorrente - considere investigação mais profunda")

        return suggestions


def _to_match(score: float, ticket: TicketRecord) -> SimilarityMatch:
    return SimilarityMatch(
        ticket_id=ticket.id,
        score=score,
        title=ticket.title,
        description=ticket.description,
        adjudicating_body=ticket.adjudicating_body or "",
        degree=ticket.degree or "",
        created_at=ticket.created_at,
        resolution_note=ticket.resolution_note,
    )


class DraftAnalysisScheduler:
    """Debounced analysis for a draft being edited. The latest submission wins.

    Each submit() cancels the pending analysis if it has not started, waits
    ``debounce`` seconds, analyzes, optionally waits ``settle`` seconds to
    avoid flicker, then publishes through ``on_result`` unless superseded.
    """

    def __init__(
        self,
        engine: SimilarityEngine,
        on_result: Callable[[SimilarityResult], None],
        debounce: float = 1.0,
        settle: float = 0.0,
    ):
        self._engine = engine
        self._on_result = on_result
        self._debounce = debounce
        self._settle = settle
        self._pending: asyncio.Task | None = None

    @classmethod
    def from_settings(
        cls, engine: SimilarityEngine, on_result: Callable[[SimilarityResult], None],
    ) -> "DraftAnalysisScheduler":
        return cls(
            engine,
            on_result,
            debounce=settings.similarity_debounce_seconds,
            settle=settings.similarity_settle_seconds,
        )

    def submit(self, title: str, description: str, working_set: list[TicketRecord]) -> asyncio.Task:
        self.cancel()
        self._pending = asyncio.create_task(self._run(title, description, list(working_set)))
        return self._pending

    def cancel(self):
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()

    async def wait(self) -> SimilarityResult | None:
        """Wait for the latest submission; None if it was cancelled or superseded."""
        task = self._pending
        if task is None:
            return None
        await asyncio.wait({task})
        if task.cancelled():
            return None
        return task.result()

    async def _run(self, title: str, description: str, working_set: list[TicketRecord]) -> SimilarityResult | None:
        await asyncio.sleep(self._debounce)
        result = self._engine.analyze(title, description, working_set)
        if self._settle:
            await asyncio.sleep(self._settle)
        if asyncio.current_task() is not self._pending:
            return None
        self._on_result(result)
        return result
