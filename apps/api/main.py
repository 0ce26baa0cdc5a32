"""
Achei Leads - FastAPI Backend
Main application entry point: company lookups, credits and PIX settlement.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager

from config import settings, validate_security_settings
from database import engine, Base
import models  # noqa: F401
from routers import (
    health,
    companies,
    catalog,
    billing,
    webhooks,
    phones,
)
from services.providers.types import ProviderError

logger = logging.getLogger(__name__)

ERROR_CODE_BY_STATUS = {
    400: "validation_error",
    401: "unauthenticated",
    402: "insufficient_credits",
    404: "not_found",
    429: "rate_limited",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    print("🚀 Starting Achei Leads API...")
    validate_security_settings()
    if settings.AUTO_CREATE_DB_SCHEMA:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            print("🗄️ Database schema verified.")
        except Exception as e:
            print(f"⚠️ Database bootstrap skipped: {e}")
    print(f"🚦 Rate limit backend: {settings.RATE_LIMIT_BACKEND}")
    yield
    # Shutdown
    await engine.dispose()
    print("👋 Shutting down API...")


app = FastAPI(
    title="Achei Leads API",
    description="Find Brazilian companies, enrich leads and manage prepaid search credits",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ProviderError)
async def provider_error_handler(request: Request, exc: ProviderError):
    if exc.http_status >= 500:
        logger.warning("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.code)
    return JSONResponse(status_code=exc.http_status, content=exc.to_payload())


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    message = exc.detail if isinstance(exc.detail, str) else "Erro na requisição"
    content = {"error": message}
    code = ERROR_CODE_BY_STATUS.get(exc.status_code)
    if code:
        content["code"] = code
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Requisição inválida")
    return JSONResponse(
        status_code=400,
        content={
            "error": f"Requisição inválida: {field} {message}".strip() if field else f"Requisição inválida: {message}",
            "code": "validation_error",
        },
    )


# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(companies.router, prefix="/companies", tags=["Companies"])
app.include_router(catalog.router, prefix="/catalog", tags=["Catalog"])
app.include_router(billing.router, prefix="/billing", tags=["Billing"])
app.include_router(webhooks.router, prefix="/webhooks", tags=["Webhooks"])
app.include_router(phones.router, prefix="/phones", tags=["Phones"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Achei Leads API",
        "version": "0.1.0",
        "status": "running"
    }
