"""
Ranked lookups over active knowledge entries.

A row qualifies when any query term (whitespace token longer than two
characters) occurs, case-insensitively, in its answer, topic or source.
"""

import logging
from typing import Any, List, Optional

from .errors import ValidationError
from .infra.db import Database
from .models import SearchResult


logger = logging.getLogger(__name__)

MIN_K = 1
MAX_K = 100
DEFAULT_K = 10
SNIPPET_LENGTH = 300
POSITIONAL_DECAY = 0.05
_SEARCH_FIELDS = ("answer", "topic", "source")


def query_terms(query: str) -> List[str]:
    return [t for t in query.split() if len(t) > 2]


def validate_k(k: Any) -> int:
    try:
        value = int(k)
    except (TypeError, ValueError):
        raise ValidationError(f"Parameter k must be an integer between {MIN_K} and {MAX_K}")
    if value != k and not isinstance(k, str):
        raise ValidationError(f"Parameter k must be an integer between {MIN_K} and {MAX_K}")
    if value < MIN_K or value > MAX_K:
        raise ValidationError(f"Parameter k must be between {MIN_K} and {MAX_K}")
    return value


def make_snippet(answer: str) -> str:
    if len(answer) > SNIPPET_LENGTH:
        return answer[:SNIPPET_LENGTH] + "..."
    return answer


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class SearchRanker:
    def __init__(self, db: Database):
        self.db = db

    async def search(self, query: Optional[str], k: Any = DEFAULT_K) -> List[SearchResult]:
        if not query or not query.strip():
            raise ValidationError("Missing required parameter: q (search query)")
        limit = validate_k(k)

        terms = query_terms(query)
        if not terms:
            return []

        conditions, params = [], []
        for term in terms:
            pattern = f"%{_escape_like(term.casefold())}%"
            for field in _SEARCH_FIELDS:
                conditions.append(f"casefold({field}) LIKE ? ESCAPE '\\'")
                params.append(pattern)

        rows = await self.db.fetch_all(
            f"""
            SELECT id, topic, answer, source, source_url, created_at, confidence_score
            FROM knowledge_base
            WHERE is_active = 1 AND ({' OR '.join(conditions)})
            ORDER BY confidence_score IS NULL, confidence_score DESC, updated_at DESC
            LIMIT ?
            """,
            (*params, limit),
        )

        results = []
        for index, row in enumerate(rows):
            score = row["confidence_score"]
            results.append(SearchResult(
                id=row["id"],
                topic=row["topic"],
                snippet=make_snippet(row["answer"]),
                source_name=row["source"] or row["topic"],
                source_url=row["source_url"],
                created_at=row["created_at"],
                confidence=score if score is not None else 1 - index * POSITIONAL_DECAY,
            ))
        logger.debug(f"Search {query!r} matched {len(results)} rows (terms={terms})")
        return results
