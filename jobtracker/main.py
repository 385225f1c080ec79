import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api.health import router as health_router
from .api.jobs import router as jobs_router
from .api.notifications import router as notifications_router
from .api.prometheus import router as prometheus_router
from .api.webhooks import router as webhooks_router
from .config import API_PREFIX, APP_VERSION, CORS_ORIGINS, POLLING_ENABLED
from .container import Services, build_services
from .db import init_db
from .errors import JobTrackerError
from .logging_config import setup_logging
from .middleware import TracingMiddleware

# Configure logging at import time
setup_logging()

logger = logging.getLogger("jobtracker")


def create_app(services: Optional[Services] = None, create_tables: bool = True,
               start_poller: bool = POLLING_ENABLED) -> FastAPI:

    @asynccontextmanager
    async def lifespan(application: FastAPI):
        svc = application.state.services
        logger.info("Job tracker starting up", extra={"component": "api", "version": APP_VERSION})
        if create_tables:
            init_db()
        if start_poller:
            svc.poller.start()
        logger.info("Job tracker ready", extra={"component": "api", "poller": start_poller})
        try:
            yield
        finally:
            if start_poller:
                svc.poller.stop()
            close = getattr(svc.vendor, "close", None)
            if close:
                close()
            logger.info("Job tracker shutting down", extra={"component": "api"})

    application = FastAPI(title="ECS Job Tracker", version=APP_VERSION, lifespan=lifespan)
    application.state.services = services or build_services()

    application.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.add_middleware(TracingMiddleware)

    @application.exception_handler(JobTrackerError)
    async def job_tracker_error_handler(request: Request, exc: JobTrackerError):
        level = logging.ERROR if exc.http_status >= 500 else logging.INFO
        logger.log(level, f"{exc.code}: {exc.message}", extra={
            "component": "api", "path": request.url.path, "status": exc.http_status})
        return JSONResponse(status_code=exc.http_status, content={"error": exc.to_dict()})

    application.include_router(health_router, prefix=API_PREFIX)
    application.include_router(jobs_router, prefix=API_PREFIX)
    application.include_router(webhooks_router, prefix=API_PREFIX)
    application.include_router(prometheus_router, prefix=API_PREFIX)
    application.include_router(notifications_router)
    return application


app = create_app()


if __name__ == "__main__":
    import os

    import uvicorn

    port = int(os.getenv("APP_PORT", "8080"))
    logger.info(f"Starting ECS Job Tracker on port {port}")
    uvicorn.run("jobtracker.main:app", host="0.0.0.0", port=port, reload=False, access_log=True)
