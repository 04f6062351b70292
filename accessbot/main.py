"""HTTP entry point: health, scheduler metrics, and manual job triggers."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import psycopg2
from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Request

from . import app_context
from .app.errors import AccessBotError
from .config import load_bot_config
from .wiring import AppContext, build_app_context

load_dotenv()

logger = logging.getLogger(__name__)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _context_from_environment() -> AppContext:
    config = load_bot_config()
    _configure_logging(config.log_level)
    config.validate_required()
    db_cfg = config.database.as_dict()
    app_context.configure(get_conn=lambda: psycopg2.connect(**db_cfg))
    return build_app_context(config)


def _context(request: Request) -> AppContext:
    context = getattr(request.app.state, "context", None)
    if context is None:
        raise HTTPException(status_code=503, detail="Service is starting")
    return context


def create_app(context: Optional[AppContext] = None, *, start_scheduler: Optional[bool] = None) -> FastAPI:
    app = FastAPI(title="AccessBot Lifecycle API")
    app.state.context = context

    @app.on_event("startup")
    def start_lifecycle() -> None:
        if app.state.context is None:
            app.state.context = _context_from_environment()
        ctx: AppContext = app.state.context
        enabled = ctx.config.scheduler_enabled if start_scheduler is None else start_scheduler
        if enabled:
            ctx.scheduler.start()
        logger.info("AccessBot started", extra={"scheduler_enabled": enabled, "timezone": ctx.config.timezone})

    @app.on_event("shutdown")
    def stop_lifecycle() -> None:
        ctx: Optional[AppContext] = app.state.context
        if ctx is not None:
            ctx.scheduler.shutdown()

    @app.get("/health")
    def health(request: Request) -> Dict[str, Any]:
        ctx = getattr(request.app.state, "context", None)
        return {
            "status": "ok" if ctx is not None else "starting",
            "scheduler_running": bool(ctx and ctx.scheduler.running),
        }

    @app.get("/jobs")
    def list_jobs(request: Request) -> Dict[str, Dict[str, object]]:
        return _context(request).scheduler.get_metrics()

    @app.post("/jobs/{name}/run")
    def run_job(name: str, request: Request) -> Dict[str, object]:
        ctx = _context(request)
        try:
            summary = ctx.scheduler.run_job(name)
        except AccessBotError as exc:
            raise exc.to_http_exception() from exc
        return summary.as_dict()

    return app


app = create_app()
