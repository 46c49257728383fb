"""
Audit and issue logging.

Both writers are non-critical side effects: a failure to record is written to
the local logger and swallowed, so it can never replace the primary result of
the run that triggered it.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from .infra.db import Database, new_id
from .models import ActivityEntry, SelfHealingIssue, Severity, utcnow


logger = logging.getLogger(__name__)

SYSTEM_COMPONENT = "learning-platform"


class ActivityLog:
    """Writer/reader for the activity_log and self_healing_log relations."""

    def __init__(self, db: Database, clock: Callable = utcnow):
        self.db = db
        self.clock = clock

    async def record(
        self,
        action_type: str,
        component: str = SYSTEM_COMPONENT,
        metadata: Optional[Dict[str, Any]] = None,
        success: bool = True,
        error_message: Optional[str] = None,
        duration_ms: Optional[int] = None,
    ) -> Optional[str]:
        """Insert an activity entry; returns its id, or None if the write failed."""
        entry_id = new_id()
        try:
            await self.db.insert("activity_log", {
                "id": entry_id,
                "action_type": action_type,
                "component": component,
                "metadata": metadata or {},
                "success": success,
                "error_message": error_message,
                "duration_ms": duration_ms,
                "created_at": self.clock(),
            })
            return entry_id
        except Exception as e:
            logger.error(f"Failed to log activity {action_type}: {e}")
            return None

    async def raise_issue(
        self,
        component: str,
        issue_type: str,
        description: str,
        severity: Severity,
        auto_healed: bool = False,
        healing_action: Optional[str] = None,
        healing_result: Optional[str] = None,
        requires_human: bool = False,
    ) -> Optional[str]:
        """Insert a self-healing issue; auto-healed issues are born resolved."""
        issue_id = new_id()
        now = self.clock()
        try:
            await self.db.insert("self_healing_log", {
                "id": issue_id,
                "component": component,
                "issue_type": issue_type,
                "issue_description": description,
                "severity": Severity(severity).value,
                "auto_healed": auto_healed,
                "healing_action": healing_action,
                "healing_result": healing_result,
                "requires_human": requires_human,
                "notified": False,
                "created_at": now,
                "resolved_at": now if auto_healed else None,
            })
            logger.info(f"Logged {Severity(severity).value} issue {issue_type} for {component}")
            return issue_id
        except Exception as e:
            logger.error(f"Failed to log self-healing issue {issue_type}: {e}")
            return None

    async def get_issue(self, issue_id: str) -> Optional[SelfHealingIssue]:
        row = await self.db.fetch_one("SELECT * FROM self_healing_log WHERE id = ?", (issue_id,))
        return SelfHealingIssue.model_validate(dict(row)) if row else None

    async def issues_since(self, since) -> List[SelfHealingIssue]:
        rows = await self.db.fetch_all(
            "SELECT * FROM self_healing_log WHERE created_at >= ? ORDER BY created_at DESC",
            (since,),
        )
        return [SelfHealingIssue.model_validate(dict(r)) for r in rows]

    async def entries(
        self,
        action_type: Optional[str] = None,
        component: Optional[str] = None,
        since=None,
        limit: Optional[int] = None,
    ) -> List[ActivityEntry]:
        clauses, params = [], []
        if action_type:
            clauses.append("action_type = ?")
            params.append(action_type)
        if component:
            clauses.append("component = ?")
            params.append(component)
        if since is not None:
            clauses.append("created_at >= ?")
            params.append(since)
        sql = "SELECT * FROM activity_log"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY created_at DESC, rowid DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        rows = await self.db.fetch_all(sql, tuple(params))
        return [ActivityEntry.model_validate(dict(r)) for r in rows]
