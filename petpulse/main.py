"""FastAPI application entry point for the PetPulse escalation engine.

The escalation engine receives alerts from video workers (and external
monitoring), scores them against recent history, runs interventions,
notifies owners and follows up on outcomes. Intake returns immediately;
processing happens in background tasks bounded by ALERT_MAX_CONCURRENCY.

Usage:
    uvicorn petpulse.main:app --host 0.0.0.0 --port 3002
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from petpulse import database
from petpulse.clients.gemini import AnalysisClient
from petpulse.config import get_alert_max_concurrency
from petpulse.exceptions import ConfigurationError
from petpulse.metrics import get_content_type, get_metrics
from petpulse.notifications.dispatcher import NotificationDispatcher
from petpulse.routes.alerts import router as alerts_router
from petpulse.services.comfort_loop import AlertIntake, ComfortLoop
from petpulse.services.quick_actions import (
    QuickActionGenerator,
    TextGenerator,
    UnconfiguredTextGenerator,
)

log = structlog.get_logger()


def _build_text_generator() -> TextGenerator:
    try:
        return AnalysisClient()
    except ConfigurationError as e:
        log.warning("text_generation_unconfigured", error=str(e))
        return UnconfiguredTextGenerator()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Wire the comfort loop on startup and drain in-flight alerts on shutdown.

    Collaborators already placed on ``app.state`` (tests) are left untouched.
    """
    log.info("escalation_engine_starting")

    owns_intake = getattr(app.state, "alert_intake", None) is None
    dispatcher: NotificationDispatcher | None = None
    if owns_intake:
        if database.async_session_factory is None:
            log.error("database_not_configured", detail="alert intake disabled")
        else:
            dispatcher = NotificationDispatcher.from_env()
            loop = ComfortLoop(
                database.async_session_factory,
                dispatcher,
                QuickActionGenerator(database.async_session_factory, _build_text_generator()),
            )
            app.state.alert_intake = AlertIntake(loop, get_alert_max_concurrency())

    yield

    log.info("escalation_engine_shutting_down")
    intake = getattr(app.state, "alert_intake", None)
    if owns_intake and intake is not None:
        await intake.drain()
    if dispatcher is not None:
        await dispatcher.drain()
    if owns_intake and database.engine is not None:
        await database.engine.dispose()
        log.info("sqlalchemy_engine_closed")


app = FastAPI(
    title="PetPulse Escalation Engine",
    description="Alert scoring, interventions and owner notifications for monitored pets",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(alerts_router)


@app.get("/health")
async def health_check(request: Request) -> JSONResponse:
    intake = getattr(request.app.state, "alert_intake", None)
    return JSONResponse(
        status_code=200,
        content={
            "status": "healthy",
            "service": "petpulse-agent",
            "alerts_in_flight": intake.in_flight if intake is not None else 0,
        },
    )


@app.get("/metrics")
async def metrics() -> Response:
    return Response(content=get_metrics(), media_type=get_content_type())


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=3002)  # noqa: S104
