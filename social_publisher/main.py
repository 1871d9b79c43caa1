# social_publisher/main.py
import asyncio
import os

import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from social_publisher.errors import PublisherError, QuotaExceeded, RateLimited
from social_publisher.infrastructure.database import get_session, init_db
from social_publisher.infrastructure.log_config import configure_structlog
from social_publisher.infrastructure.platform_client import HttpPlatformClient
from social_publisher.middleware.logging import RequestIdMiddleware
from social_publisher.routers.media_router import router as media_router
from social_publisher.routers.platforms_router import router as platforms_router
from social_publisher.routers.post_router import router as post_router
from social_publisher.services.publisher import PublishOrchestrator
from social_publisher.services.scheduler import Scheduler

ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
RUN_SCHEDULER_IN_API = os.getenv("RUN_SCHEDULER_IN_API", "true").lower() in ("1", "true", "yes")

configure_structlog()
logger = structlog.get_logger()

app = FastAPI(title="Social Publisher")

app.add_middleware(RequestIdMiddleware)

app.include_router(post_router)
app.include_router(media_router)
app.include_router(platforms_router)


@app.exception_handler(PublisherError)
async def publisher_error_handler(request: Request, exc: PublisherError):
    body = {"detail": exc.message, "code": exc.code}
    headers = {}
    if isinstance(exc, QuotaExceeded):
        body["limit"] = exc.limit
    if isinstance(exc, RateLimited):
        headers = {
            "Retry-After": str(exc.retry_after),
            "X-RateLimit-Limit": str(exc.limit),
            "X-RateLimit-Remaining": "0",
            "X-RateLimit-Reset": str(exc.retry_after),
        }
    if exc.status_code >= 500:
        logger.error("request_failed", code=exc.code, error=exc.message)
    return JSONResponse(status_code=exc.status_code, content=body, headers=headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"detail": jsonable_encoder(exc.errors()), "code": "validation_error"},
    )


@app.on_event("startup")
async def on_startup():
    await init_db()
    app.state.scheduler = None
    app.state.scheduler_task = None
    if RUN_SCHEDULER_IN_API:
        orchestrator = PublishOrchestrator(get_session, HttpPlatformClient())
        scheduler = Scheduler(get_session, orchestrator)
        app.state.scheduler = scheduler
        app.state.scheduler_task = asyncio.create_task(scheduler.run_forever())
    logger.info("app_startup", environment=ENVIRONMENT, scheduler=RUN_SCHEDULER_IN_API)


@app.on_event("shutdown")
async def on_shutdown():
    scheduler = getattr(app.state, "scheduler", None)
    task = getattr(app.state, "scheduler_task", None)
    if scheduler is not None:
        scheduler.stop()
    if task is not None:
        await task
    logger.info("app_shutdown")


if __name__ == "__main__":
    uvicorn.run(
        "social_publisher.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8000)),
        reload=ENVIRONMENT == "development",
    )
