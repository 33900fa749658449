import logging
import os
import time
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

# Load env from creditsuite/.env
package_dir = os.path.dirname(os.path.abspath(__file__))
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv(dotenv_path=os.path.join(package_dir, ".env"))

from creditsuite.api import admin_settings, credits, entitlements, generation, health, plans
from creditsuite.core.config import settings, validate_config
from creditsuite.core.database import create_all_tables, get_database_url
from creditsuite.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from creditsuite.core.logging import configure_logging
from creditsuite.core.middleware.request_id import RequestContextMiddleware

configure_logging(settings.ENV)
validate_config(strict=settings.CONFIG_STRICT)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("creditsuite")
    logger.info("Starting creditsuite backend...")
    app.state.startup_time = time.time()
    if get_database_url():
        create_all_tables()
    try:
        yield
    finally:
        logging.getLogger("creditsuite").info("Stopping creditsuite backend...")


app = FastAPI(title="creditsuite", lifespan=lifespan)

app.add_middleware(RequestContextMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["x-request-id", "x-guest-id"],
)

app.include_router(health.root_router, tags=["health"])
app.include_router(plans.router, tags=["plans"])
app.include_router(entitlements.router, tags=["entitlements"])
app.include_router(generation.router, tags=["generation"])
app.include_router(credits.router, tags=["credits"])
app.include_router(admin_settings.router)
