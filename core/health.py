"""
Composite health check.

The check is a stateless function of the store: it reads store latency,
source staleness, queue backlog and recent issues, and the overall status is
the worst individual signal. Every check is recorded as an activity; an
unhealthy result also raises a self-healing issue for the dispatcher or a
human.
"""

import logging
import math
import time
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from .activity import ActivityLog
from .infra.db import Database
from .learning_queue import LearningQueue
from .models import (
    DataSourceRecord,
    HealthReport,
    HealthSignal,
    HealthStatus,
    Severity,
    utcnow,
)
from .sources import SourceRegistry, parse_frequency


logger = logging.getLogger(__name__)

STORE_SLOW_MS = 2000
NEVER_FETCHED_HOURS = 999.0
MISSED_FETCHES_UNHEALTHY = 3
MISSED_FETCHES_DEGRADED = 1
ERRORS_UNHEALTHY = 5
ERRORS_DEGRADED = 2
BACKLOG_UNHEALTHY = 10_000
BACKLOG_DEGRADED = 5_000
ISSUE_WINDOW = timedelta(hours=24)


def source_status(
    last_fetch: Optional[datetime],
    fetch_frequency: Optional[str],
    error_count: int,
    now: datetime,
) -> HealthStatus:
    if last_fetch is None:
        hours_since = NEVER_FETCHED_HOURS
    else:
        hours_since = (now - last_fetch).total_seconds() / 3600
    missed_fetches = math.floor(hours_since / parse_frequency(fetch_frequency)) - 1

    if missed_fetches >= MISSED_FETCHES_UNHEALTHY or error_count > ERRORS_UNHEALTHY:
        return HealthStatus.UNHEALTHY
    if missed_fetches >= MISSED_FETCHES_DEGRADED or error_count > ERRORS_DEGRADED:
        return HealthStatus.DEGRADED
    return HealthStatus.HEALTHY


def backlog_status(backlog: int) -> HealthStatus:
    if backlog > BACKLOG_UNHEALTHY:
        return HealthStatus.UNHEALTHY
    if backlog > BACKLOG_DEGRADED:
        return HealthStatus.DEGRADED
    return HealthStatus.HEALTHY


class HealthAggregator:
    def __init__(
        self,
        db: Database,
        sources: SourceRegistry,
        queue: LearningQueue,
        activity: ActivityLog,
        clock: Callable = utcnow,
    ):
        self.db = db
        self.sources = sources
        self.queue = queue
        self.activity = activity
        self.clock = clock

    async def check(self) -> HealthReport:
        started = time.monotonic()
        store = await self._check_store()
        signals: List[HealthSignal] = [store]
        if store.status is HealthStatus.UNHEALTHY:
            # Every other signal reads the store.
            signals.extend(
                HealthSignal(component=component, status=HealthStatus.UNHEALTHY, detail="store unavailable")
                for component in ("learning_queue", "self_healing")
            )
        else:
            signals.extend(await self._guarded("sources", self._check_sources))
            signals.extend(await self._guarded("learning_queue", self._check_backlog))
            signals.extend(await self._guarded("self_healing", self._check_issues))

        overall = HealthStatus.worst(s.status for s in signals)
        duration_ms = int((time.monotonic() - started) * 1000)
        unhealthy = [s for s in signals if s.status is HealthStatus.UNHEALTHY]
        degraded = [s for s in signals if s.status is HealthStatus.DEGRADED]

        logger.info(
            f"Health check: {overall.value} ({len(unhealthy)} unhealthy, "
            f"{len(degraded)} degraded of {len(signals)} signals)"
        )

        await self.activity.record(
            "health_check",
            metadata={
                "overall_status": overall.value,
                "checks": len(signals),
                "unhealthy": len(unhealthy),
                "degraded": len(degraded),
            },
            success=overall is not HealthStatus.UNHEALTHY,
            error_message="System unhealthy" if overall is HealthStatus.UNHEALTHY else None,
            duration_ms=duration_ms,
        )

        if overall is HealthStatus.UNHEALTHY:
            await self.activity.raise_issue(
                component="health-check",
                issue_type="system_unhealthy",
                description=f"Health check found {len(unhealthy)} unhealthy components: "
                            + ", ".join(s.component for s in unhealthy),
                severity=Severity.HIGH,
                requires_human=True,
            )

        return HealthReport(overall=overall, signals=signals, checked_at=self.clock(), duration_ms=duration_ms)

    async def _guarded(self, component: str, check: Callable) -> List[HealthSignal]:
        """Run one store-backed check; a failing read becomes an unhealthy signal."""
        try:
            result = await check()
        except Exception as e:
            logger.error(f"Health signal {component} failed: {e}")
            return [HealthSignal(component=component, status=HealthStatus.UNHEALTHY, detail=str(e))]
        return result if isinstance(result, list) else [result]

    async def _check_store(self) -> HealthSignal:
        started = time.monotonic()
        try:
            await self.db.fetch_one("SELECT COUNT(*) FROM data_sources")
        except Exception as e:
            logger.error(f"Store connectivity check failed: {e}")
            return HealthSignal(
                component="store",
                status=HealthStatus.UNHEALTHY,
                latency_ms=int((time.monotonic() - started) * 1000),
                detail=str(e),
            )
        latency_ms = int((time.monotonic() - started) * 1000)
        if latency_ms > STORE_SLOW_MS:
            return HealthSignal(
                component="store",
                status=HealthStatus.DEGRADED,
                latency_ms=latency_ms,
                detail=f"slow response ({latency_ms}ms)",
            )
        return HealthSignal(component="store", status=HealthStatus.HEALTHY, latency_ms=latency_ms)

    async def _check_sources(self) -> List[HealthSignal]:
        now = self.clock()
        records: List[DataSourceRecord] = await self.sources.list(active_only=True)
        return [
            HealthSignal(
                component=f"source:{source.name}",
                status=source_status(source.last_fetch, source.fetch_frequency, source.error_count, now),
                last_success=source.last_fetch,
                error_count=source.error_count,
                detail=source.last_error,
            )
            for source in records
        ]

    async def _check_backlog(self) -> HealthSignal:
        backlog = await self.queue.backlog_count()
        return HealthSignal(
            component="learning_queue",
            status=backlog_status(backlog),
            detail=f"{backlog} items pending",
        )

    async def _check_issues(self) -> HealthSignal:
        recent = await self.activity.issues_since(self.clock() - ISSUE_WINDOW)
        open_issues = [i for i in recent if i.resolved_at is None]
        critical = [i for i in open_issues if i.severity is Severity.CRITICAL]
        high = [i for i in open_issues if i.severity is Severity.HIGH]

        if critical:
            return HealthSignal(
                component="self_healing",
                status=HealthStatus.UNHEALTHY,
                detail=f"{len(critical)} critical issues unresolved",
            )
        if high:
            return HealthSignal(
                component="self_healing",
                status=HealthStatus.DEGRADED,
                detail=f"{len(high)} high-severity issues",
            )
        return HealthSignal(
            component="self_healing",
            status=HealthStatus.HEALTHY,
            detail=f"{len(recent)} issues in last 24h",
        )
