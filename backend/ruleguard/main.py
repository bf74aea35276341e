import logging
import threading
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from ruleguard.config import settings
from ruleguard.database import create_db_and_tables
from ruleguard.responses import api_error, api_not_found
from ruleguard.routers import alerts, device_groups, rules
from ruleguard.services import alert_checker

# --- Configure Logging ---
logging.basicConfig(level=settings.LOG_LEVEL, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logging.getLogger("uvicorn.error").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


# --- Define Application Lifespan ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("========================================")
    logger.info("  RuleGuard Application Starting Up...  ")
    logger.info("========================================")

    # 1. CREATE DATABASE TABLES
    create_db_and_tables()

    # 2. START BACKGROUND SERVICES
    if settings.ALERT_CHECK_ENABLED:
        threading.Thread(target=alert_checker.start_alert_checker, daemon=True).start()
    else:
        logger.info("Alert checker disabled, set ALERT_CHECK_ENABLED to run rules in the background.")

    logger.info("✅ Application startup sequence complete. RuleGuard is running.")
    yield

    logger.info("--- Shutting Down ---")


# --- Create and Configure the App ---
app = FastAPI(title="RuleGuard", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS, allow_credentials=True,
    allow_methods=["*"], allow_headers=["*"],
)


# --- Error Envelope ---
@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request, exc: StarletteHTTPException):
    if exc.status_code == 404:
        return api_not_found()
    return api_error(exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request, exc: RequestValidationError):
    errors = exc.errors()
    message = errors[0]["msg"] if errors else "Invalid request"
    return api_error(400, message)


# --- Register API Routers ---
app.include_router(rules.router, prefix="/api/v0/rules", tags=["Alert Rules"])
app.include_router(alerts.router, prefix="/api/v0/alerts", tags=["Alerts"])
app.include_router(device_groups.router, prefix="/api/v0/devicegroups", tags=["Device Groups"])
