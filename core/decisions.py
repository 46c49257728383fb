"""
Decision log stored in the activity log under ``decision_logged``.
"""

import logging
import time
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .activity import ActivityLog
from .errors import DownstreamError, NotFoundError, ValidationError
from .knowledge import KnowledgeStore


logger = logging.getLogger(__name__)

DECISION_ACTION = "decision_logged"
DEFAULT_COMPONENT = "brain_v1"
DEFAULT_CONFIDENCE = 0.8
DEFAULT_LIMIT = 20


class Decision(BaseModel):
    decision: str
    adopted: bool
    rationale: str
    related_knowledge_id: Optional[str] = None
    links: List[str] = Field(default_factory=list)
    component: str = DEFAULT_COMPONENT
    confidence: float = DEFAULT_CONFIDENCE


class DecisionLog:
    def __init__(self, activity: ActivityLog, knowledge: KnowledgeStore):
        self.activity = activity
        self.knowledge = knowledge

    @staticmethod
    def parse(payload: Dict[str, Any]) -> Decision:
        if not payload.get("decision") or payload.get("adopted") is None or not payload.get("rationale"):
            raise ValidationError("Missing required fields: decision, adopted, rationale")
        data = {k: v for k, v in payload.items() if v is not None}
        try:
            return Decision.model_validate(data)
        except Exception as e:
            raise ValidationError(f"Invalid decision payload: {e}")

    async def log(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        started = time.monotonic()
        decision = self.parse(payload)

        if decision.related_knowledge_id and not await self.knowledge.exists(decision.related_knowledge_id):
            raise NotFoundError("Related knowledge ID not found", provided_id=decision.related_knowledge_id)

        entry_id = await self.activity.record(
            DECISION_ACTION,
            component=decision.component,
            metadata={
                "decision": decision.decision,
                "adopted": decision.adopted,
                "rationale": decision.rationale,
                "related_knowledge_id": decision.related_knowledge_id,
                "links": decision.links,
                "confidence": decision.confidence,
            },
            success=decision.adopted,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        # The decision itself is the primary result here, so a failed write is an error
        if entry_id is None:
            raise DownstreamError("Decision logging failed")

        logger.info(f"Logged decision {entry_id} for {decision.component} (adopted={decision.adopted})")
        return {"decision_id": entry_id, "decision": decision.model_dump()}

    async def list(self, limit: int = DEFAULT_LIMIT, component: Optional[str] = None) -> List[Dict[str, Any]]:
        entries = await self.activity.entries(action_type=DECISION_ACTION, component=component, limit=limit)
        return [
            {
                "id": e.id,
                "decision": e.metadata.get("decision"),
                "adopted": e.metadata.get("adopted"),
                "rationale": e.metadata.get("rationale"),
                "component": e.component,
                "links": e.metadata.get("links") or [],
                "created_at": e.created_at,
            }
            for e in entries
        ]
