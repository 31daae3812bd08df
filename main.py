from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi.concurrency import asynccontextmanager
from api import router as api_router
from api.dependencies import build_job_service
from api.health import router as health_router
from api.services.job_service import JobRunner
from api.services.payment_service import PaymentVerifier
from api.services.subscription_service import SubscriptionService
from db.engine import SessionLocal
from db.repositories.settings_repository import SettingsRepository
from db.repositories.subscription_repository import SubscriptionRepository
from db.repositories.user_repository import UserRepository
import logging
import os


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    filename=os.getenv("LOG_FILE", "log.txt"),
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

DEFAULT_EXPIRY_CHECK_SECONDS = 3600

scheduler = None


def scheduler_disabled() -> bool:
    return os.getenv("SKIP_SCHEDULER", "false").lower() == "true"


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup code
    skip = scheduler_disabled()
    if skip:
        logger.info("SKIP_SCHEDULER is set; background jobs will run inline")
    else:
        start_scheduler()
    active_scheduler = None if skip else scheduler
    app.state.scheduler = active_scheduler
    app.state.job_runner = JobRunner(SessionLocal, build_job_service, active_scheduler)
    yield
    # Shutdown code
    if not skip and scheduler:
        scheduler.shutdown(wait=True)


app = FastAPI(title="SmartForge", lifespan=lifespan)

# Rate limiting setup
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

limiter = Limiter(key_func=get_remote_address, default_limits=["100/minute"])
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS Configuration - Allow same-origin by default, customize for production
allowed_origins = os.getenv("CORS_ORIGINS", "*").split(",")
if allowed_origins == ["*"]:
    logger.warning(
        "CORS is set to allow all origins (*). "
        "Set CORS_ORIGINS environment variable to restrict origins in production."
    )

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["*"],
    max_age=600,
)

# Security headers middleware
@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-XSS-Protection"] = "1; mode=block"
    response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response

app.include_router(health_router)
app.include_router(api_router, prefix="/api")


def expire_subscriptions(session_factory=SessionLocal):
    def expire():
        logger.info("Checking for lapsed subscriptions...")
        db = session_factory()
        try:
            service = SubscriptionService(
                SubscriptionRepository(db),
                UserRepository(db),
                PaymentVerifier(SettingsRepository(db)),
            )
            expired = service.expire_lapsed()
            if expired:
                logger.info(f"Expired {expired} subscription(s)")
        finally:
            db.close()

    return expire


def init_scheduler(session_factory=SessionLocal, interval_seconds: int = DEFAULT_EXPIRY_CHECK_SECONDS):
    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        expire_subscriptions(session_factory=session_factory),
        "interval",
        seconds=interval_seconds,
        id="expire_subscriptions_job",
    )
    return scheduler


def start_scheduler():
    global scheduler
    logger.info("Starting scheduler...")
    db = SessionLocal()
    try:
        settings_repo = SettingsRepository(db)
        interval = int(
            settings_repo.get_setting("SUBSCRIPTION_EXPIRY_CHECK_SECONDS", str(DEFAULT_EXPIRY_CHECK_SECONDS))
        )
    finally:
        db.close()

    scheduler = init_scheduler(SessionLocal, interval)
    from apscheduler.events import EVENT_JOB_ERROR

    def job_error_listener(event):
        logger.error(f"Job crashed: {event.job_id}: {event.exception}")

    scheduler.add_listener(job_error_listener, EVENT_JOB_ERROR)
    scheduler.start()


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"error": str(exc) or "Internal server error"})
