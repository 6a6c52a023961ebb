"""
FastAPI application entry point.
Configures routes, middleware, and lifecycle events.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.database import close_db
from app.exceptions import PaymentError
from app.logging_config import configure_logging
import logging

# Import routers - MUST BE AT TOP LEVEL
from app.api.payments import router as payments_router
from app.api.installments import router as installments_router
from app.api.webhooks.paystack import router as paystack_router
from app.api.admin.reconciliation import router as reconciliation_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifecycle manager."""
    # Startup
    configure_logging()
    logger.info(f"Starting up {settings.app_name}...")

    yield

    # Shutdown
    await close_db()
    logger.info("Shutting down...")


app = FastAPI(
    title="Course Payments",
    description="Course fee payments and installment plans over Paystack",
    version="1.0.0",
    lifespan=lifespan,
    debug=settings.debug,
)


@app.exception_handler(PaymentError)
async def payment_exception_handler(request: Request, exc: PaymentError):
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
    else:
        logger.info(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"status": "error", "message": exc.message},
    )


# Global Exception Handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Global exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"status": "error", "message": "Internal Server Error"},
    )


# CORS middleware
origins = []
if settings.is_development:
    origins.append("*")

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "app": settings.app_name,
        "env": settings.app_env,
    }


app.include_router(
    payments_router,
    prefix="/payments",
    tags=["payments"],
)
app.include_router(
    installments_router,
    prefix="/installments",
    tags=["installments"],
)

# Register webhook routes
app.include_router(
    paystack_router,
    prefix="/webhooks",
    tags=["webhooks"],
)

# Register admin routes
app.include_router(
    reconciliation_router,
    prefix="/admin",
    tags=["admin"],
)
