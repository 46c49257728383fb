"""
Core data models for the learning platform.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _json_field(value: Any, default: Any) -> Any:
    if value is None:
        return default
    if isinstance(value, (bytes, str)):
        return json.loads(value) if value else default
    return value


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    @classmethod
    def worst(cls, statuses) -> "HealthStatus":
        result = cls.HEALTHY
        for status in statuses:
            if status.rank > result.rank:
                result = status
        return result


_STATUS_RANK = {
    HealthStatus.HEALTHY: 0,
    HealthStatus.DEGRADED: 1,
    HealthStatus.UNHEALTHY: 2,
}


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ScrapedItem(BaseModel):
    """What a connector emits before it reaches the queue."""
    source: str
    content_type: str
    raw_content: Any
    priority: int = 5


class RawItem(BaseModel):
    """A learning queue entry."""
    id: str
    source: str
    content_type: str
    raw_content: str
    content_hash: Optional[str] = None
    priority: int = 5
    processed: bool = False
    processed_at: Optional[datetime] = None
    learning_outcome: Dict[str, Any] = Field(default_factory=dict)
    leased_at: Optional[datetime] = None
    leased_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("learning_outcome", mode="before")
    @classmethod
    def _decode_outcome(cls, value):
        return _json_field(value, {})


class KnowledgeEntry(BaseModel):
    """One searchable fact, unique by topic."""
    id: Optional[str] = None
    category: str
    topic: str
    question: str
    answer: str
    short_answer: str = ""
    source: str
    source_url: Optional[str] = None
    content_hash: Optional[str] = None
    confidence_score: Optional[float] = Field(default=0.8, ge=0.0, le=1.0)
    keywords: List[str] = Field(default_factory=list)
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("keywords", mode="before")
    @classmethod
    def _decode_keywords(cls, value):
        return _json_field(value, [])


class DataSourceRecord(BaseModel):
    id: Optional[str] = None
    name: str
    source_type: str = "scrape"
    url: Optional[str] = None
    fetch_frequency: str = "01:00:00"
    last_fetch: Optional[datetime] = None
    next_fetch: Optional[datetime] = None
    is_active: bool = True
    error_count: int = 0
    last_error: Optional[str] = None
    config: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("config", mode="before")
    @classmethod
    def _decode_config(cls, value):
        return _json_field(value, {})


class SelfHealingIssue(BaseModel):
    id: Optional[str] = None
    component: str
    issue_type: str
    issue_description: str = ""
    severity: Severity = Severity.MEDIUM
    auto_healed: bool = False
    healing_action: Optional[str] = None
    healing_result: Optional[str] = None
    requires_human: bool = False
    notified: bool = False
    created_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None


class ActivityEntry(BaseModel):
    id: Optional[str] = None
    action_type: str
    component: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    success: bool = True
    error_message: Optional[str] = None
    duration_ms: Optional[int] = None
    created_at: Optional[datetime] = None

    @field_validator("metadata", mode="before")
    @classmethod
    def _decode_metadata(cls, value):
        return _json_field(value, {})


class HealthSignal(BaseModel):
    component: str
    status: HealthStatus
    latency_ms: Optional[int] = None
    detail: Optional[str] = None
    last_success: Optional[datetime] = None
    error_count: Optional[int] = None


class HealthReport(BaseModel):
    overall: HealthStatus
    signals: List[HealthSignal]
    checked_at: datetime = Field(default_factory=utcnow)
    duration_ms: int = 0


class HealingResult(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class HealingAction(BaseModel):
    issue_id: str
    action: str
    result: HealingResult
    details: Optional[str] = None


class SearchResult(BaseModel):
    id: str
    topic: str
    snippet: str
    source_name: str
    source_url: Optional[str] = None
    license_or_tos_url: Optional[str] = None
    created_at: Optional[datetime] = None
    confidence: float
