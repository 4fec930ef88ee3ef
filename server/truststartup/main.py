import logging

import truststartup.models  # noqa: F401
from apscheduler.schedulers.background import BackgroundScheduler
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from truststartup.core.config import settings
from truststartup.core.db import SessionLocal
from truststartup.routers import account as account_router
from truststartup.routers import auth as auth_router
from truststartup.routers import payments as payments_router
from truststartup.routers import sponsorships as sponsorships_router
from truststartup.routers import startups as startups_router
from truststartup.routers import whoami as whoami_router
from truststartup.services import sponsorships as sponsorships_service
from truststartup.services import startups as startups_service

app = FastAPI(title="TrustStartup API", version="0.1.0")

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler(timezone="UTC")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router.router)
app.include_router(whoami_router.router)
app.include_router(account_router.router)
app.include_router(startups_router.router)
app.include_router(sponsorships_router.router)
app.include_router(payments_router.router)


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok"}


def _run_sponsor_expiry_sweep() -> None:
    with SessionLocal() as session:
        result = sponsorships_service.expire_sponsorships(session)
        if result.expired or result.failed:
            logger.info(
                "sponsor_expiry_sweep",
                extra={"checked": result.checked, "expired": result.expired, "failed": result.failed},
            )


def _run_metrics_refresh() -> None:
    with SessionLocal() as session:
        summary = startups_service.refresh_all_metrics(session)
        logger.info("startup_metrics_refresh", extra=summary)


@app.on_event("startup")
def start_scheduled_jobs() -> None:
    if not settings.SCHEDULER_ENABLED:
        logger.info("scheduler_disabled")
        return
    if not scheduler.running:
        scheduler.start()
    scheduler.add_job(
        _run_sponsor_expiry_sweep,
        trigger="interval",
        hours=settings.SPONSOR_EXPIRY_SWEEP_HOURS,
        id="sponsor_expiry_sweep",
        replace_existing=True,
    )
    scheduler.add_job(
        _run_metrics_refresh,
        trigger="interval",
        hours=settings.METRICS_REFRESH_HOURS,
        id="startup_metrics_refresh",
        replace_existing=True,
    )


@app.on_event("shutdown")
def shutdown_scheduler() -> None:
    if scheduler.running:
        scheduler.shutdown(wait=False)
