"""Entry points: ingest, queue processing, scrape runs, reports and decisions."""

import asyncio
import time

import aiohttp
import aiosqlite
import pytest

from core.errors import (
    ConflictError,
    DownstreamError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from core.infra.http import HttpClient
from core.models import Severity
from sinks.webhook_sink import format_report


INGEST = {
    "source_type": "doc",
    "source_name": "team-wiki",
    "source_url": "https://wiki.example/react",
    "content_type": "documentation",
    "raw_content": "  React hooks let function components hold state.  ",
    "tags": ["react", "hooks"],
}


# ---------------------------------------------------------------------- #
# Ingest
async def test_ingest_creates_knowledge_and_provenance(pipeline):
    result = await pipeline.ingest(dict(INGEST))

    entry = await pipeline.knowledge.get(result["knowledge_id"])
    assert entry.answer == "React hooks let function components hold state."
    assert entry.keywords == ["react", "hooks"]
    assert entry.category == "general"
    assert entry.content_hash == result["content_hash"]
    assert result["citation"]["source_url"] == "https://wiki.example/react"

    queued = await pipeline.queue.get(result["queue_id"])
    assert queued.processed is True
    assert queued.learning_outcome["knowledge_id"] == result["knowledge_id"]
    assert await pipeline.queue.backlog_count() == 0

    [entry] = await pipeline.activity.entries(action_type="knowledge_ingest")
    assert entry.component == "brain_v1"
    assert entry.metadata["kb_id"] == result["knowledge_id"]


async def test_second_ingest_of_same_content_conflicts(pipeline, db):
    first = await pipeline.ingest(dict(INGEST))

    with pytest.raises(ConflictError) as exc:
        await pipeline.ingest({**INGEST, "raw_content": "React hooks let function components hold state."})

    assert exc.value.existing_id == first["knowledge_id"]
    assert exc.value.content_hash == first["content_hash"]
    assert await db.fetch_value("SELECT COUNT(*) FROM knowledge_base") == 1


@pytest.mark.parametrize("change", [
    {"source_type": "email"},
    {"source_name": ""},
    {"raw_content": None},
    {"raw_content": "   "},
    {"tags": "react"},
    {"tags": ["react", 3]},
])
async def test_ingest_rejects_invalid_payloads(pipeline, change):
    with pytest.raises(ValidationError):
        await pipeline.ingest({**INGEST, **change})


async def test_ingest_accepts_structured_content(pipeline):
    result = await pipeline.ingest({**INGEST, "raw_content": {"b": 2, "a": 1}})

    entry = await pipeline.knowledge.get(result["knowledge_id"])
    assert entry.answer == '{"a":1,"b":2}'

    with pytest.raises(ConflictError):
        await pipeline.ingest({**INGEST, "raw_content": {"a": 1, "b": 2}})


# ---------------------------------------------------------------------- #
# Queue processing
async def test_process_queue_classifies_batch(pipeline):
    await pipeline.queue.enqueue("devdocs", "documentation", {"doc": "css", "title": "grid", "type": "property"}, priority=8)
    await pipeline.queue.enqueue("hackernews", "news", {"id": 7, "title": "HN"}, priority=5)
    await pipeline.queue.enqueue("elsewhere", "podcast", "episode 1", priority=1)

    run = await pipeline.process_queue()

    assert run.success
    assert (run.batch_size, run.processed, run.errors) == (3, 3, 0)
    assert run.remaining_in_queue == 0
    assert (await pipeline.knowledge.get_by_topic("devdocs:css:grid")).category == "css"
    [entry] = await pipeline.activity.entries(action_type="process_learning_queue")
    assert entry.metadata == {"batch_size": 3, "processed": 3, "errors": 0}


async def test_failed_item_is_retried_on_next_run(pipeline):
    bad = await pipeline.queue.enqueue("devdocs", "documentation", "{not json", priority=9)
    good = await pipeline.queue.enqueue("devdocs", "documentation", {"doc": "git", "title": "rebase"})

    first = await pipeline.process_queue()
    assert (first.processed, first.errors, first.remaining_in_queue) == (1, 1, 1)
    assert (await pipeline.queue.get(good)).processed is True
    assert "error" in (await pipeline.queue.get(bad)).learning_outcome

    second = await pipeline.process_queue()
    assert second.batch_size == 1
    assert second.errors == 1
    [entry, _] = await pipeline.activity.entries(action_type="process_learning_queue")
    assert entry.success is False


async def test_process_queue_honours_batch_size(pipeline):
    for n in range(5):
        await pipeline.queue.enqueue("src", "other", f"item {n}")

    run = await pipeline.process_queue(batch_size=2)

    assert run.processed == 2
    assert run.remaining_in_queue == 3


async def test_deadline_releases_unreached_items(pipeline):
    for n in range(3):
        await pipeline.queue.enqueue("src", "other", f"item {n}")
    pipeline.settings.run_timeouts["process_queue"] = 0

    run = await pipeline.process_queue()

    assert run.truncated is True
    assert run.processed == 0
    assert len(await pipeline.queue.drain()) == 3


async def test_processor_failure_raises_issue(pipeline, monkeypatch):
    async def broken(*args, **kwargs):
        raise RuntimeError("queue table missing")

    monkeypatch.setattr(pipeline.queue, "drain", broken)
    run = await pipeline.process_queue()

    assert run.success is False
    assert run.error == "queue table missing"
    [issue] = await pipeline.activity.issues_since(pipeline.clock())
    assert issue.issue_type == "processor_failed"
    assert issue.component == "learning-queue"
    assert issue.severity is Severity.CRITICAL


async def test_aborted_run_releases_its_claims(pipeline, monkeypatch):
    for n in range(3):
        await pipeline.queue.enqueue("src", "other", f"item {n}")

    async def broken(item_id, outcome):
        raise aiosqlite.OperationalError("disk I/O error")

    monkeypatch.setattr(pipeline.queue, "mark_processed", broken)
    run = await pipeline.process_queue()

    assert run.success is False
    assert run.error == "disk I/O error"
    assert len(await pipeline.queue.drain(worker_id="next-run")) == 3
    [issue] = await pipeline.activity.issues_since(pipeline.clock())
    assert issue.severity is Severity.HIGH


async def test_slow_item_is_cut_off_at_the_deadline(pipeline, monkeypatch):
    for n in range(2):
        await pipeline.queue.enqueue("src", "other", f"item {n}")

    async def stuck(item):
        await asyncio.sleep(5)

    monkeypatch.setattr(pipeline.classifier, "classify", stuck)
    pipeline.settings.run_timeouts["process_queue"] = 0.05

    started = time.monotonic()
    run = await pipeline.process_queue()

    assert time.monotonic() - started < 2
    assert run.truncated is True
    assert run.processed == 0
    assert run.errors == 0
    assert len(await pipeline.queue.drain(worker_id="next-run")) == 2


# ---------------------------------------------------------------------- #
# Search
async def test_search_is_recorded_as_activity(pipeline):
    await pipeline.ingest(INGEST)

    [result] = await pipeline.search("react hooks", 5)

    assert result.source_name == "team-wiki"
    [entry] = await pipeline.activity.entries(action_type="knowledge_search")
    assert entry.component == "brain_v1"
    assert entry.success is True
    assert entry.metadata == {"query": "react hooks", "k": 5, "terms": ["react", "hooks"], "results_count": 1}


async def test_rejected_search_is_recorded_as_failure(pipeline):
    with pytest.raises(ValidationError):
        await pipeline.search("react", 0)

    [entry] = await pipeline.activity.entries(action_type="knowledge_search")
    assert entry.success is False
    assert entry.error_message.startswith("Parameter k must be between")
    assert entry.metadata["terms"] == ["react"]


# ---------------------------------------------------------------------- #
# Scrape
async def test_scrape_queues_items_and_registers_source(pipeline):
    run = await pipeline.scrape("static", manual=True)

    assert (run.scraped, run.duplicates, run.errors) == (2, 0, 0)
    assert await pipeline.queue.backlog_count() == 2
    source = await pipeline.sources.get("static")
    assert source.error_count == 0
    assert source.last_fetch == pipeline.clock()
    assert source.config["last_scrape_count"] == 2
    [entry] = await pipeline.activity.entries(action_type="scrape_static")
    assert entry.success is True


async def test_rescrape_skips_queued_duplicates(pipeline):
    await pipeline.scrape("static", manual=True)
    run = await pipeline.scrape("static", manual=True)

    assert (run.scraped, run.duplicates) == (0, 2)
    assert await pipeline.queue.backlog_count() == 2


async def test_scrape_then_process_feeds_knowledge(pipeline):
    await pipeline.scrape("static", manual=True)
    await pipeline.process_queue()

    assert await pipeline.knowledge.get_by_topic("static:react:useState") is not None
    assert len(await pipeline.external.list("static", "news")) == 1


async def test_section_errors_raise_multiple_failures(pipeline):
    run = await pipeline.scrape("flaky", manual=True)

    assert run.scraped == 1
    assert run.errors == 3
    assert (await pipeline.sources.get("flaky")).error_count == 3
    [issue] = await pipeline.activity.issues_since(pipeline.clock())
    assert issue.issue_type == "multiple_failures"
    assert issue.component == "source:flaky"
    assert issue.severity is Severity.MEDIUM
    assert issue.requires_human is False


async def test_fatal_scrape_error(pipeline):
    with pytest.raises(DownstreamError):
        await pipeline.scrape("broken", manual=True)

    source = await pipeline.sources.get("broken")
    assert source.error_count == 1
    assert source.last_error == "connection reset"
    [issue] = await pipeline.activity.issues_since(pipeline.clock())
    assert issue.issue_type == "scrape_failed"
    assert issue.component == "source:broken"
    assert issue.severity is Severity.HIGH
    [entry] = await pipeline.activity.entries(action_type="scrape_broken")
    assert entry.success is False


async def test_fatal_scrape_is_healed_by_next_pass(pipeline):
    with pytest.raises(DownstreamError):
        await pipeline.scrape("broken", manual=True)

    run = await pipeline.run_self_heal()

    assert run.summary["successful"] == 1
    assert (await pipeline.sources.get("broken")).error_count == 0


@pytest.mark.parametrize("authorization", [None, "", "Bearer wrong", "s3cret", "bearer s3cret"])
async def test_scrape_requires_bearer_secret(pipeline, authorization):
    with pytest.raises(UnauthorizedError):
        await pipeline.scrape("static", authorization=authorization)
    assert await pipeline.sources.get("static") is None


async def test_scrape_accepts_bearer_secret(pipeline):
    run = await pipeline.scrape("static", authorization="Bearer s3cret")
    assert run.scraped == 2


async def test_no_secret_configured_means_open(pipeline):
    pipeline.settings.cron_secret = None
    run = await pipeline.scrape("static")
    assert run.scraped == 2


async def test_unknown_source(pipeline):
    with pytest.raises(NotFoundError) as exc:
        await pipeline.scrape("myspace", manual=True)
    assert exc.value.payload["available"] == ["broken", "flaky", "static"]


# ---------------------------------------------------------------------- #
# Reports
async def test_daily_report_summarizes_window(pipeline):
    await pipeline.ingest(dict(INGEST))
    await pipeline.scrape("flaky", manual=True)
    await pipeline.scrape("static", manual=True)

    report = await pipeline.daily_report()

    assert report.learning.new_knowledge_items == 1
    assert report.learning.queue_items_processed == 1
    assert report.learning.queue_items_pending == 2
    assert report.data_sources.total == 2
    assert report.data_sources.degraded == 1
    assert report.data_sources.healthy == 1
    assert report.self_healing.issues_detected == 1
    assert report.self_healing.heal_rate == "0.0%"
    assert report.activity["scrape_flaky"].failed == 1
    assert report.system_status == "good"

    [entry] = await pipeline.activity.entries(action_type="daily_report")
    assert entry.metadata["system_status"] == "good"


async def test_daily_report_status_critical_with_unhealthy_source(pipeline):
    await pipeline.sources.register("mdn")
    await pipeline.sources.record_run("mdn", 0, ["x"] * 4, 0)

    report = await pipeline.daily_report()

    assert report.data_sources.unhealthy == 1
    assert report.system_status == "critical"


async def test_empty_system_reports_excellent(pipeline):
    report = await pipeline.daily_report()

    assert report.system_status == "excellent"
    assert report.self_healing.heal_rate == "100%"


async def test_webhook_failure_does_not_fail_report(pipeline, monkeypatch):
    calls = []

    async def unreachable(self, url, data, **kwargs):
        calls.append((url, data))
        raise aiohttp.ClientConnectionError("connection refused")

    monkeypatch.setattr(HttpClient, "post_json", unreachable)
    pipeline.settings.notify_webhook_url = "https://hooks.example/daily"

    report = await pipeline.daily_report()

    assert report.system_status == "excellent"
    [(url, body)] = calls
    assert url == "https://hooks.example/daily"
    assert body == format_report(report)


# ---------------------------------------------------------------------- #
# Decisions
async def test_decision_roundtrip(pipeline):
    ingested = await pipeline.ingest(dict(INGEST))

    logged = await pipeline.decisions.log({
        "decision": "Use hooks over classes",
        "adopted": True,
        "rationale": "Less boilerplate",
        "related_knowledge_id": ingested["knowledge_id"],
        "links": ["https://react.dev"],
    })

    [decision] = await pipeline.decisions.list()
    assert decision["id"] == logged["decision_id"]
    assert decision["decision"] == "Use hooks over classes"
    assert decision["adopted"] is True
    assert decision["component"] == "brain_v1"
    assert decision["links"] == ["https://react.dev"]


async def test_rejected_decision_is_logged_as_unsuccessful(pipeline):
    await pipeline.decisions.log({"decision": "Rewrite in Rust", "adopted": False, "rationale": "No", "component": "planner"})

    [entry] = await pipeline.activity.entries(action_type="decision_logged")
    assert entry.success is False
    assert await pipeline.decisions.list(component="brain_v1") == []
    assert len(await pipeline.decisions.list(component="planner")) == 1


@pytest.mark.parametrize("payload", [
    {"adopted": True, "rationale": "r"},
    {"decision": "d", "rationale": "r"},
    {"decision": "d", "adopted": True},
    {"decision": "d", "adopted": True, "rationale": "r", "confidence": "very"},
])
async def test_decision_validation(pipeline, payload):
    with pytest.raises(ValidationError):
        await pipeline.decisions.log(payload)


async def test_decision_with_unknown_knowledge_id(pipeline):
    with pytest.raises(NotFoundError) as exc:
        await pipeline.decisions.log({"decision": "d", "adopted": True, "rationale": "r", "related_knowledge_id": "nope"})
    assert exc.value.payload["provided_id"] == "nope"
