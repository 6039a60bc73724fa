import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from sitetrack.cache import cache
from sitetrack.config import settings
from sitetrack.errors import SiteTrackError
from sitetrack.logging_config import setup_logging
from sitetrack.middleware import TimingMiddleware
from sitetrack.routers import (
    attendance,
    auth,
    budgets,
    dashboard,
    expenses,
    exports,
    financials,
    invoices,
    jobs,
    metrics,
    milestones,
    notifications,
    payments,
    projects,
    tasks,
    users,
)

VERSION = "1.0.0"

setup_logging(settings.LOG_LEVEL, settings.LOG_FILE)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    try:
        await cache.connect()
    except Exception as exc:
        logger.warning("Cache unavailable, continuing without Redis: %s", exc)
    yield
    # Shutdown
    await cache.disconnect()


app = FastAPI(
    title="SiteTrack API",
    description="Field-services project management: tasks, attendance, budgets and billing",
    version=VERSION,
    lifespan=lifespan,
)

# Middleware
app.add_middleware(TimingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SiteTrackError)
async def sitetrack_error_handler(request: Request, exc: SiteTrackError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError):
    logger.info("Integrity error on %s %s: %s", request.method, request.url.path, exc.orig)
    return JSONResponse(status_code=409, content={"detail": "Conflicts with an existing record"})


# Routers
app.include_router(auth.router)
app.include_router(users.router)
app.include_router(projects.router)
app.include_router(milestones.router)
app.include_router(tasks.router)
app.include_router(attendance.router)
app.include_router(budgets.router)
app.include_router(invoices.router)
app.include_router(payments.router)
app.include_router(expenses.router)
app.include_router(financials.router)
app.include_router(notifications.router)
app.include_router(dashboard.router)
app.include_router(exports.router)
app.include_router(jobs.router)
app.include_router(metrics.router)


@app.get("/health")
async def health():
    return {"status": "healthy", "version": VERSION}
