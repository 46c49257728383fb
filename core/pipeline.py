"""
Runnable entry points of the learning platform.

Each entry point is one discrete invocation (from the HTTP surface, the
scheduler or the command line). Nothing is kept in process between runs;
all state lives in the store.
"""

import asyncio
import hmac
import logging
import time
from contextlib import AsyncExitStack
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Type

import aiosqlite
from pydantic import BaseModel, Field

from sinks.queue_sink import QueueSink
from sinks.webhook_sink import WebhookSink

from . import plugin_loader
from .activity import ActivityLog
from .classifier import Classifier
from .config import Settings
from .decisions import DecisionLog
from .dedup import Deduplicator, normalize
from .errors import (
    DownstreamError,
    InternalError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from .healing import HealingRun, SelfHealingDispatcher
from .health import HealthAggregator
from .infra.db import Database
from .infra.http import HttpClient
from .interfaces import Fetcher, Transform
from .knowledge import ExternalDataCache, KnowledgeStore
from .learning_queue import LearningQueue, default_worker_id
from .models import HealthReport, KnowledgeEntry, SearchResult, Severity, utcnow
from .reports import DailyReport, DailyReporter
from .search import SearchRanker, query_terms
from .sources import SourceRegistry


logger = logging.getLogger(__name__)

SOURCE_TYPES = ("chat", "repo", "doc", "api", "web", "manual")
INGEST_COMPONENT = "brain_v1"
INGEST_CONFIDENCE = 0.8
SHORT_ANSWER_LENGTH = 200
MULTIPLE_FAILURES_THRESHOLD = 2
HUMAN_REQUIRED_ERRORS = 5


class QueueRun(BaseModel):
    success: bool = True
    batch_size: int = 0
    processed: int = 0
    errors: int = 0
    remaining_in_queue: Optional[int] = None
    truncated: bool = False
    error: Optional[str] = None
    duration_ms: int = 0


class ScrapeRun(BaseModel):
    source: str
    scraped: int = 0
    duplicates: int = 0
    errors: int = 0
    error_details: List[str] = Field(default_factory=list)
    truncated: bool = False
    duration_ms: int = 0


def is_downstream(exc: BaseException) -> bool:
    return isinstance(exc, (DownstreamError, aiosqlite.Error))


async def _drain(stages: List[Transform], deadline: Optional[float] = None) -> bool:
    """Run a Fetcher -> Sink chain to completion or until the deadline.

    Returns True when the run was cut short by the deadline.
    """

    async def seed() -> AsyncIterator[None]:
        yield None

    stream: AsyncIterator[Any] = seed()
    async with AsyncExitStack() as stack:
        for stage in stages:
            if hasattr(stage, "__aenter__"):
                await stack.enter_async_context(stage)

        for stage in stages:
            stream = stage(stream)

        truncated = False
        try:
            async for _ in stream:
                if deadline is not None and time.monotonic() >= deadline:
                    truncated = True
                    break
        finally:
            await stream.aclose()
        return truncated


class LearningPipeline:
    """Wires the store-backed components together behind the entry points."""

    def __init__(
        self,
        settings: Settings,
        db: Optional[Database] = None,
        connectors: Optional[Dict[str, Type[Fetcher]]] = None,
        clock: Callable = utcnow,
    ):
        self.settings = settings
        self.db = db or Database(settings.database_path)
        self.clock = clock
        self._connectors = connectors

        self.activity = ActivityLog(self.db, clock)
        self.queue = LearningQueue(self.db, lease_seconds=settings.lease_seconds, clock=clock)
        self.knowledge = KnowledgeStore(self.db, clock)
        self.external = ExternalDataCache(self.db, clock)
        self.classifier = Classifier(self.knowledge, self.external)
        self.ranker = SearchRanker(self.db)
        self.sources = SourceRegistry(self.db, clock)
        self.health = HealthAggregator(self.db, self.sources, self.queue, self.activity, clock)
        self.healer = SelfHealingDispatcher(
            self.db, self.sources, self.queue, self.activity,
            retention_days=settings.retention_days, clock=clock,
        )
        self.reporter = DailyReporter(self.knowledge, self.queue, self.sources, self.activity, clock)
        self.decisions = DecisionLog(self.activity, self.knowledge)
        self.knowledge_dedup = Deduplicator(self.db, table="knowledge_base")

    async def start(self) -> None:
        await self.db.connect()

    async def close(self) -> None:
        await self.db.close()

    async def __aenter__(self) -> "LearningPipeline":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def connectors(self) -> Dict[str, Type[Fetcher]]:
        if self._connectors is None:
            self._connectors = plugin_loader.list_available()
        return self._connectors

    def _http_client(self) -> HttpClient:
        http = self.settings.http
        return HttpClient(
            timeout=http.timeout,
            max_retries=http.max_retries,
            pause_s=self.settings.scrape_pause_s,
            user_agent=http.user_agent,
        )

    def _deadline(self, run: str) -> float:
        return time.monotonic() + self.settings.timeout_for(run)

    async def _release(self, item_ids: List[str]) -> None:
        """Give unfinished claims back to the queue for the next run."""
        if not item_ids:
            return
        try:
            await self.queue.release(item_ids)
        except Exception as e:
            logger.error(f"Failed to release {len(item_ids)} claimed items: {e}")

    async def _run_failed(self, component: str, issue_type: str, exc: BaseException) -> None:
        severity = Severity.HIGH if is_downstream(exc) else Severity.CRITICAL
        await self.activity.raise_issue(
            component=component,
            issue_type=issue_type,
            description=str(exc),
            severity=severity,
            requires_human=True,
        )

    # ------------------------------------------------------------------ #
    # Ingest
    async def ingest(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Store one piece of content directly as knowledge.

        The dedup key is the SHA-256 of the normalized content, checked
        against the knowledge store. A processed queue row is written
        alongside for provenance.
        """
        started = time.monotonic()
        required = ("source_type", "source_name", "content_type", "raw_content")
        if any(payload.get(f) in (None, "") for f in required):
            raise ValidationError(f"Missing required fields: {', '.join(required)}")
        if payload["source_type"] not in SOURCE_TYPES:
            raise ValidationError(f"Invalid source_type. Must be one of: {', '.join(SOURCE_TYPES)}")
        tags = payload.get("tags") or []
        if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
            raise ValidationError("tags must be a list of strings")

        text = normalize(payload["raw_content"])
        if not text:
            raise ValidationError("raw_content is empty after normalization")
        content_hash = await self.knowledge_dedup.ensure_unique(text)

        source_name = payload["source_name"]
        source_url = payload.get("source_url")
        license_url = payload.get("license_or_tos_url")
        try:
            async with self.db.transaction():
                knowledge_id = await self.knowledge.upsert(KnowledgeEntry(
                    category=payload.get("category") or "general",
                    topic=f"{source_name}:{content_hash[:16]}",
                    question=f"Knowledge from {payload['source_type']}: {source_name}",
                    answer=text,
                    short_answer=text[:SHORT_ANSWER_LENGTH],
                    source=source_name,
                    source_url=source_url,
                    content_hash=content_hash,
                    confidence_score=INGEST_CONFIDENCE,
                    keywords=tags,
                ))
                queue_id = await self.queue.enqueue(
                    source_name,
                    payload["content_type"],
                    text,
                    processed=True,
                    learning_outcome={
                        "action": "ingested",
                        "knowledge_id": knowledge_id,
                        "source_type": payload["source_type"],
                        "source_url": source_url,
                        "license_or_tos_url": license_url,
                        "tags": tags,
                        "category": payload.get("category"),
                        "content_hash": content_hash,
                    },
                )
        except Exception as e:
            logger.error(f"Ingestion failed for {source_name}: {e}")
            await self.activity.record(
                "knowledge_ingest",
                component=INGEST_COMPONENT,
                metadata={"error": str(e)},
                success=False,
                error_message=str(e),
                duration_ms=int((time.monotonic() - started) * 1000),
            )
            raise DownstreamError("Ingestion failed", details=str(e))

        duration_ms = int((time.monotonic() - started) * 1000)
        await self.activity.record(
            "knowledge_ingest",
            component=INGEST_COMPONENT,
            metadata={
                "source_type": payload["source_type"],
                "source_name": source_name,
                "content_hash": content_hash,
                "queue_id": queue_id,
                "kb_id": knowledge_id,
            },
            duration_ms=duration_ms,
        )
        logger.info(f"Ingested {content_hash[:12]} from {source_name} as {knowledge_id}")
        return {
            "knowledge_id": knowledge_id,
            "queue_id": queue_id,
            "content_hash": content_hash,
            "citation": {
                "source_name": source_name,
                "source_url": source_url,
                "license_or_tos_url": license_url,
                "ingested_at": self.clock().isoformat(),
            },
            "duration_ms": duration_ms,
        }

    # ------------------------------------------------------------------ #
    # Drain and classify
    async def process_queue(self, batch_size: Optional[int] = None) -> QueueRun:
        started = time.monotonic()
        deadline = self._deadline("process_queue")
        run = QueueRun()
        worker_id = default_worker_id()
        # Claimed ids this run has not yet finished with
        pending: List[str] = []

        try:
            items = await self.queue.drain(batch_size or self.settings.batch_size, worker_id=worker_id)
            pending = [item.id for item in items]
            run.batch_size = len(items)
            logger.info(f"Processing {len(items)} queued items")

            for index, item in enumerate(items):
                remaining = deadline - time.monotonic()
                try:
                    if remaining <= 0:
                        raise asyncio.TimeoutError
                    outcome = await asyncio.wait_for(self.classifier.classify(item), timeout=remaining)
                except asyncio.TimeoutError:
                    run.truncated = True
                    logger.warning(f"Queue run hit its deadline after {index} of {len(items)} items")
                    break
                except Exception as e:
                    run.errors += 1
                    logger.error(f"Error processing item {item.id}: {e}")
                    await self.queue.mark_failed(item.id, str(e))
                    pending.remove(item.id)
                    continue
                await self.queue.mark_processed(item.id, outcome)
                pending.remove(item.id)
                run.processed += 1

            run.remaining_in_queue = await self.queue.backlog_count()
        except Exception as e:
            logger.error(f"Queue processor failed: {e}", exc_info=True)
            run.success = False
            run.error = str(e)
            await self._run_failed("learning-queue", "processor_failed", e)
        finally:
            await self._release(pending)

        run.duration_ms = int((time.monotonic() - started) * 1000)
        await self.activity.record(
            "process_learning_queue",
            metadata={"batch_size": run.batch_size, "processed": run.processed, "errors": run.errors},
            success=run.success and run.errors == 0,
            error_message=run.error or (f"{run.errors} items failed" if run.errors else None),
            duration_ms=run.duration_ms,
        )
        return run

    # ------------------------------------------------------------------ #
    # Search
    async def search(self, query: Optional[str], k: Any = 10) -> List[SearchResult]:
        started = time.monotonic()
        metadata: Dict[str, Any] = {"query": query, "k": k, "terms": query_terms(query or "")}
        try:
            results = await self.ranker.search(query, k)
        except Exception as e:
            await self.activity.record(
                "knowledge_search",
                component=INGEST_COMPONENT,
                metadata={**metadata, "error": str(e)},
                success=False,
                error_message=str(e),
                duration_ms=int((time.monotonic() - started) * 1000),
            )
            raise

        await self.activity.record(
            "knowledge_search",
            component=INGEST_COMPONENT,
            metadata={**metadata, "results_count": len(results)},
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        return results

    # ------------------------------------------------------------------ #
    # Health and healing
    async def run_health_check(self) -> HealthReport:
        try:
            return await asyncio.wait_for(self.health.check(), timeout=self.settings.timeout_for("health_check"))
        except Exception as e:
            logger.error(f"Health check failed: {e}", exc_info=True)
            await self._run_failed("health-check", "health_check_failed", e)
            raise InternalError("Health check failed", details=str(e) or type(e).__name__)

    async def run_self_heal(self) -> HealingRun:
        try:
            return await asyncio.wait_for(self.healer.run(), timeout=self.settings.timeout_for("self_heal"))
        except asyncio.TimeoutError as e:
            logger.error("Self-healing run timed out")
            await self._run_failed("self-heal", "self_heal_failed", e)
            return HealingRun(success=False, error="Self-healing run timed out")

    # ------------------------------------------------------------------ #
    # Daily report
    async def daily_report(self) -> DailyReport:
        notify = None
        if self.settings.notify_webhook_url:
            notify = self._notify_webhook
        try:
            return await asyncio.wait_for(
                self.reporter.generate(notify=notify),
                timeout=self.settings.timeout_for("daily_report"),
            )
        except Exception as e:
            logger.error(f"Report generation error: {e}", exc_info=True)
            raise DownstreamError("Report generation failed", details=str(e) or type(e).__name__)

    async def _notify_webhook(self, report: DailyReport) -> None:
        async with self._http_client() as http:
            await WebhookSink(http, self.settings.notify_webhook_url).handle(report)

    # ------------------------------------------------------------------ #
    # Scrape
    def authorize(self, authorization: Optional[str], manual: bool = False) -> None:
        """Bearer check against the cron secret; ``manual`` bypasses it."""
        secret = self.settings.cron_secret
        if not secret or manual:
            return
        expected = f"Bearer {secret}"
        if not authorization or not hmac.compare_digest(authorization.encode(), expected.encode()):
            raise UnauthorizedError("Unauthorized")

    async def scrape(self, source: str, authorization: Optional[str] = None, manual: bool = False) -> ScrapeRun:
        self.authorize(authorization, manual)
        connector = self.connectors.get(source)
        if connector is None:
            raise NotFoundError(f"Unknown source: {source}", available=sorted(self.connectors))

        started = time.monotonic()
        deadline = self._deadline("scrape")
        http = self._http_client()
        fetcher = connector(http=http)
        sink = QueueSink(self.queue)
        logger.info(f"Scraper {fetcher.name} started")

        try:
            await self.sources.register(
                fetcher.name, fetcher.source_type, fetcher.url, fetcher.fetch_frequency, fetcher.config,
            )
            async with http:
                truncated = await _drain([fetcher, sink], deadline)
        except Exception as e:
            duration_ms = int((time.monotonic() - started) * 1000)
            logger.error(f"Fatal error in scraper {fetcher.name}: {e}", exc_info=True)
            try:
                await self.sources.record_fatal(fetcher.name, str(e))
            except Exception as record_error:
                logger.error(f"Failed to record fatal error for {fetcher.name}: {record_error}")
            await self.activity.record(
                f"scrape_{fetcher.name}",
                metadata={"error": str(e)},
                success=False,
                error_message=str(e),
                duration_ms=duration_ms,
            )
            await self.activity.raise_issue(
                component=f"source:{fetcher.name}",
                issue_type="scrape_failed",
                description=str(e),
                severity=Severity.HIGH,
                requires_human=True,
            )
            raise DownstreamError(f"Scrape of {fetcher.name} failed", details=str(e))

        duration_ms = int((time.monotonic() - started) * 1000)
        errors = list(fetcher.errors)
        await self.sources.record_run(fetcher.name, sink.queued, errors, duration_ms)
        await self.activity.record(
            f"scrape_{fetcher.name}",
            metadata={"scraped": sink.queued, "duplicates": sink.duplicates, "errors": len(errors), "error_details": errors},
            success=not errors,
            error_message=", ".join(errors) or None,
            duration_ms=duration_ms,
        )
        if len(errors) > MULTIPLE_FAILURES_THRESHOLD:
            await self.activity.raise_issue(
                component=f"source:{fetcher.name}",
                issue_type="multiple_failures",
                description=f"Multiple scraping failures: {', '.join(errors)}",
                severity=Severity.MEDIUM,
                requires_human=len(errors) > HUMAN_REQUIRED_ERRORS,
            )

        run = ScrapeRun(
            source=fetcher.name,
            scraped=sink.queued,
            duplicates=sink.duplicates,
            errors=len(errors),
            error_details=errors,
            truncated=truncated,
            duration_ms=duration_ms,
        )
        logger.info(f"Scraper {fetcher.name} complete: {sink.queued} queued, {sink.duplicates} duplicates, {len(errors)} errors")
        return run
