"""
Self-healing dispatcher.

Picks the oldest of the most severe open issues and applies the remediation
registered for its type. Issue types form a closed set with an explicit
UNKNOWN case, and every member has exactly one strategy.
"""

import logging
import time
from enum import Enum
from typing import Awaitable, Callable, Dict, List

from pydantic import BaseModel, Field

from .activity import ActivityLog
from .infra.db import Database
from .learning_queue import LearningQueue
from .models import HealingAction, HealingResult, SelfHealingIssue, Severity, utcnow
from .sources import SourceRegistry


logger = logging.getLogger(__name__)

MAX_ISSUES_PER_RUN = 20
SOURCE_ERROR_SWEEP_THRESHOLD = 3


class IssueType(str, Enum):
    MULTIPLE_FAILURES = "multiple_failures"
    SCRAPE_FAILED = "scrape_failed"
    QUEUE_BACKLOG = "queue_backlog"
    DATABASE_SLOW = "database_slow"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str) -> "IssueType":
        try:
            member = cls(value)
        except ValueError:
            return cls.UNKNOWN
        return member


def source_name_from_component(component: str) -> str:
    name = component
    if name.startswith("source:"):
        name = name[len("source:"):]
    if name.endswith("-scraper"):
        name = name[: -len("-scraper")]
    return name


class HealingRun(BaseModel):
    success: bool = True
    issues_processed: int = 0
    actions: List[HealingAction] = Field(default_factory=list)
    error: str = ""
    duration_ms: int = 0

    def count(self, result: HealingResult) -> int:
        return sum(1 for a in self.actions if a.result is result)

    @property
    def summary(self) -> Dict[str, int]:
        return {
            "successful": self.count(HealingResult.SUCCESS),
            "failed": self.count(HealingResult.FAILED),
            "skipped": self.count(HealingResult.SKIPPED),
        }


class SelfHealingDispatcher:
    def __init__(
        self,
        db: Database,
        sources: SourceRegistry,
        queue: LearningQueue,
        activity: ActivityLog,
        retention_days: int = 7,
        clock: Callable = utcnow,
    ):
        self.db = db
        self.sources = sources
        self.queue = queue
        self.activity = activity
        self.retention_days = retention_days
        self.clock = clock
        self._strategies: Dict[IssueType, Callable[[SelfHealingIssue], Awaitable[HealingAction]]] = {
            IssueType.MULTIPLE_FAILURES: self._reset_source_errors,
            IssueType.SCRAPE_FAILED: self._reset_source_errors,
            IssueType.QUEUE_BACKLOG: self._raise_queue_priority,
            IssueType.DATABASE_SLOW: self._notify_admin,
            IssueType.UNKNOWN: self._mark_for_review,
        }

    async def open_issues(self, limit: int = MAX_ISSUES_PER_RUN) -> List[SelfHealingIssue]:
        rows = await self.db.fetch_all(
            """
            SELECT * FROM self_healing_log
            WHERE resolved_at IS NULL AND auto_healed = 0
            ORDER BY CASE severity
                WHEN 'critical' THEN 4 WHEN 'high' THEN 3 WHEN 'medium' THEN 2 WHEN 'low' THEN 1 ELSE 0
            END DESC, created_at ASC, rowid ASC
            LIMIT ?
            """,
            (limit,),
        )
        return [SelfHealingIssue.model_validate(dict(r)) for r in rows]

    async def run(self) -> HealingRun:
        started = time.monotonic()
        run = HealingRun()
        try:
            logger.info("Self-healing run started")
            issues = await self.open_issues()
            run.issues_processed = len(issues)
            logger.info(f"Found {len(issues)} issues to process")

            for issue in issues:
                run.actions.append(await self._heal(issue))

            run.actions.extend(await self._sweep_sources())

            deleted = await self.queue.retention_sweep(self.retention_days)
            if deleted:
                run.actions.append(HealingAction(
                    issue_id="queue_cleanup",
                    action="delete_old_queue_items",
                    result=HealingResult.SUCCESS,
                    details=f"Deleted {deleted} processed items older than {self.retention_days} days",
                ))
        except Exception as e:
            logger.error(f"Self-healing run failed: {e}", exc_info=True)
            run.success = False
            run.error = str(e)
            await self.activity.raise_issue(
                component="self-heal",
                issue_type="self_heal_failed",
                description=str(e),
                severity=Severity.CRITICAL,
                requires_human=True,
            )

        run.duration_ms = int((time.monotonic() - started) * 1000)
        summary = run.summary
        await self.activity.record(
            "self_heal",
            metadata={
                "issues_processed": run.issues_processed,
                "actions_taken": len(run.actions),
                **summary,
            },
            success=run.success and summary["failed"] == 0,
            error_message=run.error or (f"{summary['failed']} healing actions failed" if summary["failed"] else None),
            duration_ms=run.duration_ms,
        )
        logger.info(f"Self-healing run finished: {summary}")
        return run

    async def _heal(self, issue: SelfHealingIssue) -> HealingAction:
        strategy = self._strategies[IssueType.parse(issue.issue_type)]
        try:
            action = await strategy(issue)
        except Exception as e:
            # The issue stays open and is retried on the next pass
            logger.error(f"Healing {issue.issue_type} ({issue.id}) failed: {e}")
            return HealingAction(issue_id=issue.id, action="unknown", result=HealingResult.FAILED, details=str(e))

        if action.result is HealingResult.SUCCESS:
            await self.db.write(
                """
                UPDATE self_healing_log
                SET auto_healed = 1, healing_action = ?, healing_result = ?, resolved_at = ?
                WHERE id = ?
                """,
                (action.action, action.details, self.clock(), issue.id),
            )
        return action

    async def _reset_source_errors(self, issue: SelfHealingIssue) -> HealingAction:
        name = source_name_from_component(issue.component)
        found = await self.sources.reset_errors(name)
        details = f"Reset errors for {name}" if found else f"Reset errors for {name} (no registered source)"
        return HealingAction(issue_id=issue.id, action="reset_source_errors", result=HealingResult.SUCCESS, details=details)

    async def _raise_queue_priority(self, issue: SelfHealingIssue) -> HealingAction:
        return HealingAction(
            issue_id=issue.id,
            action="increase_processing_priority",
            result=HealingResult.SUCCESS,
            details="Queue will be processed with higher priority",
        )

    async def _notify_admin(self, issue: SelfHealingIssue) -> HealingAction:
        action = HealingAction(
            issue_id=issue.id,
            action="notify_admin",
            result=HealingResult.SKIPPED,
            details="Database performance issues require human intervention",
        )
        await self._mark_skipped(issue, action, requires_human=True)
        return action

    async def _mark_for_review(self, issue: SelfHealingIssue) -> HealingAction:
        action = HealingAction(
            issue_id=issue.id,
            action="mark_for_review",
            result=HealingResult.SKIPPED,
            details=f"Unknown issue type: {issue.issue_type}",
        )
        await self._mark_skipped(issue, action, requires_human=issue.requires_human)
        return action

    async def _mark_skipped(self, issue: SelfHealingIssue, action: HealingAction, requires_human: bool) -> None:
        """Skipped issues stay open; only the note and the human flag change."""
        await self.db.write(
            """
            UPDATE self_healing_log
            SET healing_action = ?, healing_result = ?, requires_human = ?
            WHERE id = ?
            """,
            (action.action, action.details, requires_human, issue.id),
        )

    async def _sweep_sources(self) -> List[HealingAction]:
        """Reset every active source over the error threshold, logged issue or not."""
        actions: List[HealingAction] = []
        for source in await self.sources.erroring(SOURCE_ERROR_SWEEP_THRESHOLD):
            try:
                await self.sources.reset_errors(source.name, schedule_now=True)
            except Exception as e:
                logger.error(f"Failed to reset source {source.name}: {e}")
                actions.append(HealingAction(
                    issue_id=source.id or source.name,
                    action="reset_data_source",
                    result=HealingResult.FAILED,
                    details=str(e),
                ))
                continue

            actions.append(HealingAction(
                issue_id=source.id or source.name,
                action="reset_data_source",
                result=HealingResult.SUCCESS,
                details=f"Reset error count for {source.name}",
            ))
            await self.activity.raise_issue(
                component=f"source:{source.name}",
                issue_type="error_threshold_exceeded",
                description=f"Source had {source.error_count} errors, reset for retry",
                severity=Severity.LOW,
                auto_healed=True,
                healing_action="reset_error_count",
                healing_result="Source reset for retry",
            )
        return actions
