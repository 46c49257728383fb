"""
HTTP surface of the learning platform.

Endpoints:
- POST     /decisions/log         - Record an adopted/rejected decision
- GET      /decisions/log         - Recent decisions
- GET|POST /health/check          - Composite health report
- GET|POST /health/self-heal      - Run the self-healing dispatcher
- POST     /learning/ingest       - Ingest one piece of content as knowledge
- GET|POST /learning/process-queue - Drain and classify one batch
- GET      /learning/search       - Ranked knowledge search
- GET|POST /reports/daily         - Daily report (persisted, optionally posted)
- GET|POST /scrape/{source}       - Run one connector into the queue
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .config import Settings, load_settings
from .errors import InternalError, PipelineError, ValidationError
from .pipeline import LearningPipeline


logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


async def _json_body(request: Request) -> Dict[str, Any]:
    try:
        payload = await request.json()
    except ValueError:
        raise ValidationError("Request body must be valid JSON")
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def create_app(settings: Optional[Settings] = None, pipeline: Optional[LearningPipeline] = None) -> FastAPI:
    settings = settings or load_settings()
    pipeline = pipeline or LearningPipeline(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Open the store on startup, close it on shutdown."""
        logger.info(f"Learning platform API starting: database={settings.database_path}")
        await pipeline.start()
        yield
        await pipeline.close()

    app = FastAPI(
        title="Learning Platform API",
        description="Learning pipeline and self-healing control loop",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.pipeline = pipeline

    @app.exception_handler(PipelineError)
    async def pipeline_error_handler(request: Request, exc: PipelineError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message} {exc.payload}")
        return JSONResponse(status_code=exc.status_code, content={"success": False, **exc.to_dict(), "timestamp": _now()})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"success": False, "error": "Invalid request", "details": exc.errors()})

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
        error = InternalError("Internal error", details=str(exc))
        return JSONResponse(status_code=error.status_code, content={"success": False, **error.to_dict(), "timestamp": _now()})

    # ------------------------------------------------------------------ #
    # Decisions
    @app.post("/decisions/log")
    async def log_decision(request: Request):
        payload = await _json_body(request)
        result = await pipeline.decisions.log(payload)
        return {"success": True, "message": "Decision logged successfully", **result}

    @app.get("/decisions/log")
    async def list_decisions(limit: int = 20, component: Optional[str] = None):
        if limit < 1:
            raise ValidationError("limit must be positive")
        decisions = await pipeline.decisions.list(limit=limit, component=component)
        return {"success": True, "total": len(decisions), "decisions": decisions}

    # ------------------------------------------------------------------ #
    # Health
    @app.api_route("/health/check", methods=["GET", "POST"])
    async def health_check():
        report = await pipeline.run_health_check()
        return {"success": True, **report.model_dump(mode="json")}

    @app.api_route("/health/self-heal", methods=["GET", "POST"])
    async def self_heal():
        run = await pipeline.run_self_heal()
        body = {
            "success": run.success,
            "issues_processed": run.issues_processed,
            "actions": [a.model_dump(mode="json") for a in run.actions],
            "summary": run.summary,
            "duration_ms": run.duration_ms,
            "timestamp": _now(),
        }
        if not run.success:
            body["error"] = run.error
            return JSONResponse(status_code=500, content=body)
        return body

    # ------------------------------------------------------------------ #
    # Learning
    @app.post("/learning/ingest")
    async def ingest(request: Request):
        payload = await _json_body(request)
        result = await pipeline.ingest(payload)
        return {"success": True, "message": "Knowledge ingested successfully", **result}

    @app.api_route("/learning/process-queue", methods=["GET", "POST"])
    async def process_queue():
        run = await pipeline.process_queue()
        body = {"timestamp": _now(), **run.model_dump(mode="json")}
        if not run.success:
            return JSONResponse(status_code=500, content=body)
        return body

    @app.get("/learning/search")
    async def search(q: Optional[str] = None, k: str = "10"):
        results = await pipeline.search(q, k)
        return {
            "success": True,
            "query": q,
            "total": len(results),
            "results": [r.model_dump(mode="json") for r in results],
        }

    # ------------------------------------------------------------------ #
    # Reports
    @app.api_route("/reports/daily", methods=["GET", "POST"])
    async def daily_report():
        report = await pipeline.daily_report()
        return {"success": True, "report": report.model_dump(mode="json")}

    # ------------------------------------------------------------------ #
    # Scrape
    @app.api_route("/scrape/{source}", methods=["GET", "POST"])
    async def scrape(source: str, manual: bool = False, authorization: Optional[str] = Header(None)):
        run = await pipeline.scrape(source, authorization=authorization, manual=manual)
        return {"success": True, "timestamp": _now(), **run.model_dump(mode="json")}

    return app
