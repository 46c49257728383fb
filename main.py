"""
Main entry point for the learning platform.

Usage:
    python main.py serve                 - HTTP API (plus scheduled triggers if configured)
    python main.py run <entry> [source]  - Run one entry point once and print the result

Entries: process-queue, health-check, self-heal, daily-report, scrape <source>
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Awaitable, Callable, Dict

import uvicorn

from core.api import create_app
from core.config import Settings, load_settings
from core.errors import PipelineError
from core.infra.scheduler import Scheduler
from core.pipeline import LearningPipeline


logger = logging.getLogger(__name__)


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    )


def schedule_jobs(scheduler: Scheduler, pipeline: LearningPipeline, settings: Settings) -> int:
    """Register one cron job per configured schedule; keys are entry names or ``scrape:<source>``."""
    bearer = f"Bearer {settings.cron_secret}" if settings.cron_secret else None
    entries: Dict[str, Callable[[], Awaitable[Any]]] = {
        "process_queue": pipeline.process_queue,
        "health_check": pipeline.run_health_check,
        "self_heal": pipeline.run_self_heal,
        "daily_report": pipeline.daily_report,
    }

    count = 0
    for key, cron_expression in settings.schedules.items():
        if key.startswith("scrape:"):
            source = key.split(":", 1)[1]
            scheduler.add_cron_job(pipeline.scrape, cron_expression, job_id=key, args=[source], kwargs={"authorization": bearer})
        elif key in entries:
            scheduler.add_cron_job(entries[key], cron_expression, job_id=key)
        else:
            logger.warning(f"Unknown schedule entry '{key}', skipping")
            continue
        count += 1
    return count


async def serve(settings: Settings) -> None:
    pipeline = LearningPipeline(settings)
    app = create_app(settings, pipeline)

    scheduler = None
    if settings.schedules:
        scheduler = Scheduler()
        jobs = schedule_jobs(scheduler, pipeline, settings)
        await scheduler.start()
        logger.info(f"Scheduled {jobs} job(s)")

    server = uvicorn.Server(uvicorn.Config(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower()))
    try:
        await server.serve()
    finally:
        if scheduler is not None:
            await scheduler.stop()
        logger.info("Shutdown complete")


async def run_once(settings: Settings, entry: str, source: str = "") -> int:
    async with LearningPipeline(settings) as pipeline:
        try:
            if entry == "process-queue":
                result = await pipeline.process_queue()
            elif entry == "health-check":
                result = await pipeline.run_health_check()
            elif entry == "self-heal":
                result = await pipeline.run_self_heal()
            elif entry == "daily-report":
                result = await pipeline.daily_report()
            elif entry == "scrape":
                result = await pipeline.scrape(source, manual=True)
            else:
                logger.error(f"Unknown entry: {entry}")
                return 2
        except PipelineError as e:
            print(json.dumps(e.to_dict(), indent=2, default=str))
            return 1

    print(json.dumps(result.model_dump(mode="json"), indent=2))
    return 0 if getattr(result, "success", True) else 1


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Learning platform")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("serve", help="Run the HTTP API")
    run = sub.add_parser("run", help="Run one entry point once")
    run.add_argument("entry", choices=["process-queue", "health-check", "self-heal", "daily-report", "scrape"])
    run.add_argument("source", nargs="?", default="", help="Connector name for scrape")
    parser.add_argument("--config", default=None, help="Path to config.yaml")
    args = parser.parse_args(argv)

    settings = load_settings(args.config)
    setup_logging(settings.log_level)

    if args.command == "serve":
        asyncio.run(serve(settings))
        return 0
    if args.entry == "scrape" and not args.source:
        parser.error("scrape needs a source name")
    return asyncio.run(run_once(settings, args.entry, args.source))


if __name__ == "__main__":
    sys.exit(main())
