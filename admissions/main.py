"""
Admissions Service - Main Application Entry Point

Applicant accounts, application fee and installment subscription billing
through Paystack, with transactional email via Brevo.
"""

import os
import time
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

# Load environment variables from .env file FIRST
from dotenv import load_dotenv
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

from .core.config import settings
from .core.database import engine, Base
from .core.exceptions import AdmissionsServiceError
from .core.logging_config import setup_logging, get_logger
from .api import auth, subscriptions, application_fees, webhooks, admin
from .services.email_service import EmailService
from .services.paystack_client import PaystackClient
from .utils.responses import error_response

# Setup logging
setup_logging()
logger = get_logger("admissions-service")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    # Startup
    logger.info("Starting Admissions Service...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"API Version: {settings.API_V1_STR}")

    # Create database tables
    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created successfully")
    except Exception as e:
        logger.error(f"Failed to create database tables: {e}")

    # Outbound clients shared by every request
    app.state.paystack_client = PaystackClient()
    app.state.email_service = EmailService()

    yield

    # Shutdown
    logger.info("Shutting down Admissions Service...")


# Create FastAPI application
app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description="Admissions, application fee and installment billing service",
    lifespan=lifespan
)


# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all HTTP requests"""
    start_time = time.time()

    # Skip logging for health check
    if request.url.path != "/health":
        logger.info(f"Request: {request.method} {request.url.path}")

    response = await call_next(request)

    duration_ms = (time.time() - start_time) * 1000

    if request.url.path != "/health":
        logger.info(
            f"Response: {request.method} {request.url.path} - "
            f"Status: {response.status_code} - Duration: {duration_ms:.2f}ms"
        )

    return response


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": "admissions-service",
        "version": settings.VERSION
    }


# Include API routers
app.include_router(
    auth.router,
    prefix=f"{settings.API_V1_STR}/auth",
    tags=["auth"]
)

app.include_router(
    subscriptions.router,
    prefix=f"{settings.API_V1_STR}/subscriptions",
    tags=["subscriptions"]
)

app.include_router(
    application_fees.router,
    prefix=f"{settings.API_V1_STR}/application-fee",
    tags=["application-fee"]
)

app.include_router(
    webhooks.router,
    prefix=f"{settings.API_V1_STR}/webhooks",
    tags=["webhooks"]
)

app.include_router(
    admin.router,
    prefix=f"{settings.API_V1_STR}/admin",
    tags=["admin"]
)


# Root endpoint
@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "service": settings.PROJECT_NAME,
        "version": settings.VERSION,
        "description": "Admissions and installment billing",
        "api_docs": "/docs"
    }


@app.exception_handler(AdmissionsServiceError)
async def admissions_error_handler(request: Request, exc: AdmissionsServiceError):
    """Render domain errors in the standard envelope"""
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message}")
    else:
        logger.warning(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message}")
    return error_response(exc.status_code, exc.message, exc.errors)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    response = error_response(exc.status_code, message, [message])
    if getattr(exc, "headers", None):
        response.headers.update(exc.headers)
    return response


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", []) if part != "body")
        errors.append(f"{location}: {error.get('msg')}" if location else error.get("msg"))
    return error_response(status.HTTP_400_BAD_REQUEST, "Validation failed", errors)


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions"""
    logger.opt(exception=exc).error(f"Unhandled exception on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "message": "Internal server error",
            "errors": [str(exc) if settings.ENVIRONMENT == "development" else "An error occurred"]
        }
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "admissions.main:app",
        host="0.0.0.0",
        port=int(os.environ.get("PORT", "8000")),
        reload=settings.ENVIRONMENT == "development",
        log_level="info"
    )
