"""
FastAPI application entry point for StoreSight.

Shop identity is carried in the `shop` cookie set by the Shopify OAuth
callback; each browser session keeps its own access token.
"""

import os
import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from storesight.api.routes import analytics
from storesight.api.routes import competitors
from storesight.api.routes import health
from storesight.api.routes import sessions
from storesight.api.routes import shopify_auth
from storesight.config.retention_policy import get_retention_policy
from storesight.database.session import is_database_configured
from storesight.platform.redis_cache import get_cache

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting StoreSight API")

    shopify_vars = ["SHOPIFY_API_KEY", "SHOPIFY_API_SECRET"]
    missing_vars = [var for var in shopify_vars if not os.getenv(var)]
    app.state.oauth_configured = not missing_vars
    if missing_vars:
        logger.warning(
            f"Shopify OAuth not configured (missing: {missing_vars}). "
            "Install and callback endpoints will return configuration errors."
        )

    app.state.database_configured = is_database_configured()
    if not app.state.database_configured:
        logger.error("DATABASE_URL is not set. Database-backed endpoints will return 503.")
    else:
        database_url = os.getenv("DATABASE_URL", "")
        masked = database_url.split("@")[-1] if "@" in database_url else "(no credentials)"
        logger.info("DATABASE_URL configured", extra={"host_db": masked})

    cache = get_cache()
    logger.info("Cache backend ready", extra={"backend": cache.backend})

    policy = get_retention_policy()
    logger.info(
        "Retention policy loaded",
        extra={
            "notification_retention_days": policy.notifications.retention_days,
            "session_max_per_shop": policy.sessions.max_per_shop,
            "audit_retention_days": policy.audit.retention_days,
        },
    )

    yield

    logger.info("Shutting down StoreSight API")


app = FastAPI(
    title="StoreSight API",
    description="Shopify store analytics with per-session shop authentication",
    version="1.0.0",
    lifespan=lifespan
)

# Cookies carry identity, so credentials must be allowed for the SPA origin
cors_origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",") if o.strip()]
frontend_url = os.getenv("FRONTEND_URL")
if frontend_url and frontend_url not in cors_origins:
    cors_origins.append(frontend_url)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Unauthenticated
app.include_router(health.router)

# Shopify OAuth, shop profile and notifications
app.include_router(shopify_auth.router)

# Require the shop cookie
app.include_router(sessions.router)
app.include_router(analytics.router)
app.include_router(competitors.router)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies and badly typed parameters are client errors."""
    detail = [
        f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg', 'invalid')}"
        for error in exc.errors()
    ]
    logger.info(
        "Rejected malformed request",
        extra={"path": request.url.path, "errors": detail},
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Invalid request", "detail": detail},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unhandled exceptions with proper logging."""
    logger.error(
        "Unhandled exception",
        extra={
            "shop": request.cookies.get("shop"),
            "error": str(exc),
            "error_type": type(exc).__name__,
            "path": request.url.path
        },
        exc_info=True
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "detail": "An unexpected error occurred"
        }
    )


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8080))
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=port,
        reload=os.getenv("ENV") == "development"
    )
