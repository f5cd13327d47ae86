# backend/lessonbook/main.py
from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core.config import is_running_tests, settings
from .core.constants import ALLOWED_ORIGINS, API_DESCRIPTION, API_TITLE, API_VERSION, BRAND_NAME
from .routes import health, prometheus
from .routes.v1 import (
    availability as availability_v1,
    holds as holds_v1,
    invoices as invoices_v1,
    reservations as reservations_v1,
    schedule as schedule_v1,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup/shutdown."""
    logger.info(f"{BRAND_NAME} API starting up...")
    logger.info(f"Environment: {settings.environment}")
    logger.info(
        f"Checkout gateway: {'fake' if settings.checkout_fake else 'stripe'}; "
        f"payment hold {settings.payment_hold_minutes} min; school timezone {settings.school_timezone}"
    )
    if is_running_tests():
        logger.info("Running under pytest (test mode active)")

    yield

    logger.info(f"{BRAND_NAME} API shutting down...")


app = FastAPI(
    title=API_TITLE,
    description=API_DESCRIPTION,
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=app_lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "HEAD", "OPTIONS", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["*"],
)

# Create API v1 router
api_v1 = APIRouter(prefix="/api/v1")

# Mount v1 routes
api_v1.include_router(availability_v1.router, prefix="/availability")
api_v1.include_router(schedule_v1.router, prefix="/schedule")
api_v1.include_router(reservations_v1.router, prefix="/reservations")
api_v1.include_router(invoices_v1.router, prefix="/invoices")
api_v1.include_router(holds_v1.router, prefix="/holds")

app.include_router(api_v1)
app.include_router(health.router)
app.include_router(prometheus.router)


@app.get("/")
def root() -> dict[str, str]:
    """Root endpoint - API information"""
    return {"message": f"Welcome to the {BRAND_NAME} API", "version": API_VERSION, "docs": "/docs"}
