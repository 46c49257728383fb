"""Source staleness, backlog thresholds and the composite health check."""

from datetime import timedelta

import aiosqlite
import pytest

from core import health
from core.health import backlog_status, source_status
from core.models import HealthStatus, Severity
from core.sources import parse_frequency


@pytest.mark.parametrize("freq, hours", [
    ("06:00:00", 6.0),
    ("00:30:00", 0.5),
    ("24:00:00", 24.0),
    (None, 1.0),
    ("", 1.0),
    ("garbage", 1.0),
    ("00:00:00", 1.0),
])
def test_parse_frequency(freq, hours):
    assert parse_frequency(freq) == hours


@pytest.mark.parametrize("errors, status", [
    (0, HealthStatus.HEALTHY),
    (2, HealthStatus.HEALTHY),
    (3, HealthStatus.DEGRADED),
    (5, HealthStatus.DEGRADED),
    (6, HealthStatus.UNHEALTHY),
])
def test_source_status_by_error_count(clock, errors, status):
    assert source_status(clock(), "01:00:00", errors, clock()) is status


@pytest.mark.parametrize("hours_ago, status", [
    (1.5, HealthStatus.HEALTHY),
    (2, HealthStatus.DEGRADED),
    (3.9, HealthStatus.DEGRADED),
    (4, HealthStatus.UNHEALTHY),
])
def test_source_status_by_missed_fetches(clock, hours_ago, status):
    last_fetch = clock() - timedelta(hours=hours_ago)
    assert source_status(last_fetch, "01:00:00", 0, clock()) is status


def test_never_fetched_source_is_unhealthy(clock):
    assert source_status(None, "24:00:00", 0, clock()) is HealthStatus.UNHEALTHY


@pytest.mark.parametrize("backlog, status", [
    (0, HealthStatus.HEALTHY),
    (5000, HealthStatus.HEALTHY),
    (5001, HealthStatus.DEGRADED),
    (10000, HealthStatus.DEGRADED),
    (10001, HealthStatus.UNHEALTHY),
])
def test_backlog_status(backlog, status):
    assert backlog_status(backlog) is status


def test_worst_status_wins():
    assert HealthStatus.worst([]) is HealthStatus.HEALTHY
    assert HealthStatus.worst([HealthStatus.HEALTHY, HealthStatus.DEGRADED]) is HealthStatus.DEGRADED
    assert HealthStatus.worst([HealthStatus.UNHEALTHY, HealthStatus.DEGRADED]) is HealthStatus.UNHEALTHY


async def test_empty_system_is_healthy(pipeline):
    report = await pipeline.health.check()

    assert report.overall is HealthStatus.HEALTHY
    components = [s.component for s in report.signals]
    assert components == ["store", "learning_queue", "self_healing"]
    [entry] = await pipeline.activity.entries(action_type="health_check")
    assert entry.success is True
    assert entry.metadata["overall_status"] == "healthy"


async def test_source_errors_degrade_then_fail(pipeline):
    await pipeline.sources.register("mdn")

    await pipeline.sources.record_run("mdn", 10, ["e"] * 3, 100)
    report = await pipeline.health.check()
    assert report.overall is HealthStatus.DEGRADED

    await pipeline.sources.record_run("mdn", 10, ["e"] * 6, 100)
    report = await pipeline.health.check()
    assert report.overall is HealthStatus.UNHEALTHY
    signal = next(s for s in report.signals if s.component == "source:mdn")
    assert signal.error_count == 6
    assert signal.detail == "e"


async def test_unhealthy_check_raises_an_issue(pipeline):
    await pipeline.sources.register("news")
    await pipeline.sources.record_run("news", 0, ["boom"] * 7, 10)

    await pipeline.health.check()

    [issue] = await pipeline.activity.issues_since(pipeline.clock() - timedelta(minutes=1))
    assert issue.issue_type == "system_unhealthy"
    assert issue.component == "health-check"
    assert issue.severity is Severity.HIGH
    assert issue.requires_human is True
    assert "source:news" in issue.issue_description
    [entry] = await pipeline.activity.entries(action_type="health_check")
    assert entry.success is False


async def test_stale_source_is_reported(pipeline, clock):
    await pipeline.sources.register("devdocs", fetch_frequency="06:00:00")

    clock.advance(hours=13)
    report = await pipeline.health.check()

    assert report.overall is HealthStatus.DEGRADED


async def test_inactive_sources_are_ignored(pipeline, db):
    await pipeline.sources.register("old")
    await pipeline.sources.record_run("old", 0, ["x"] * 9, 0)
    await db.write("UPDATE data_sources SET is_active = 0 WHERE name = 'old'")

    report = await pipeline.health.check()

    assert report.overall is HealthStatus.HEALTHY


async def test_open_critical_issue_makes_system_unhealthy(pipeline):
    await pipeline.activity.raise_issue("self-heal", "self_heal_failed", "boom", Severity.CRITICAL)

    report = await pipeline.health.check()

    signal = next(s for s in report.signals if s.component == "self_healing")
    assert signal.status is HealthStatus.UNHEALTHY
    assert report.overall is HealthStatus.UNHEALTHY


async def test_open_high_issue_degrades(pipeline):
    await pipeline.activity.raise_issue("source:mdn", "scrape_failed", "boom", Severity.HIGH)

    report = await pipeline.health.check()

    assert report.overall is HealthStatus.DEGRADED


async def test_old_issues_fall_out_of_the_window(pipeline, clock):
    await pipeline.activity.raise_issue("self-heal", "self_heal_failed", "boom", Severity.CRITICAL)

    clock.advance(hours=25)
    report = await pipeline.health.check()

    assert report.overall is HealthStatus.HEALTHY


async def test_store_failure_is_reported_not_raised(pipeline, monkeypatch):
    async def broken(sql, params=()):
        raise aiosqlite.OperationalError("disk I/O error")

    monkeypatch.setattr(pipeline.db, "execute", broken)

    report = await pipeline.run_health_check()

    assert report.overall is HealthStatus.UNHEALTHY
    store = report.signals[0]
    assert store.component == "store"
    assert store.status is HealthStatus.UNHEALTHY
    assert store.detail == "disk I/O error"
    assert {s.component: s.detail for s in report.signals[1:]} == {
        "learning_queue": "store unavailable",
        "self_healing": "store unavailable",
    }


async def test_slow_store_degrades(pipeline, monkeypatch):
    monkeypatch.setattr(health, "STORE_SLOW_MS", -1)

    report = await pipeline.health.check()

    store = report.signals[0]
    assert store.status is HealthStatus.DEGRADED
    assert store.detail.startswith("slow response")
    assert report.overall is HealthStatus.DEGRADED


async def test_failing_signal_read_becomes_unhealthy_signal(pipeline, monkeypatch):
    async def broken(active_only=False):
        raise aiosqlite.OperationalError("no such table: data_sources")

    monkeypatch.setattr(pipeline.sources, "list", broken)

    report = await pipeline.health.check()

    signal = next(s for s in report.signals if s.component == "sources")
    assert signal.status is HealthStatus.UNHEALTHY
    assert signal.detail == "no such table: data_sources"
    assert report.overall is HealthStatus.UNHEALTHY
