"""Middleware configuration for FastAPI application"""
import logging
from fastapi import Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.errors import OrchestrationError
from app.core.security import (
    get_allowed_origins, get_client_identifier, check_rate_limit,
    validate_origin_referer, log_api_access
)

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("security")


def setup_cors_middleware(app):
    """Setup CORS middleware for FastAPI app"""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_allowed_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


def _is_provider_callback(path: str) -> bool:
    # Gateways retry on non-2xx, so their callbacks are never throttled or origin-checked
    return path.startswith("/webhooks/")


def _is_public_endpoint(path: str) -> bool:
    return path in ("/metrics", "/health") or path.startswith("/api/checkout/methods")


async def security_middleware(request: Request, call_next):
    """Middleware for rate limiting, origin checks and API access logging"""
    allowed_origins = get_allowed_origins()
    session_id = None
    status_code = 500
    error = None

    try:
        path = request.url.path
        session_id = request.cookies.get("session_id")

        if not _is_provider_callback(path):
            identifier = get_client_identifier(request, session_id)
            is_state_changing = request.method in ["POST", "PATCH", "DELETE", "PUT"]
            if not check_rate_limit(identifier, strict=is_state_changing):
                error = "Rate limit exceeded"
                status_code = 429
                security_logger.warning(f"Rate limit exceeded - Identifier: {identifier}, Path: {path}")
                response = Response(
                    content='{"error": "Rate limit exceeded. Please try again later."}',
                    status_code=429,
                    media_type="application/json"
                )
                origin = request.headers.get("Origin")
                if origin and origin in allowed_origins:
                    response.headers["Access-Control-Allow-Origin"] = origin
                    response.headers["Access-Control-Allow-Credentials"] = "true"
                return response

            if not _is_public_endpoint(path) and request.method not in ("GET", "OPTIONS"):
                if not validate_origin_referer(request):
                    error = "Invalid origin or referer"
                    status_code = 403
                    security_logger.warning(f"Origin/Referer validation failed - Path: {path}")
                    return Response(
                        content='{"error": "Invalid origin or referer"}',
                        status_code=403,
                        media_type="application/json"
                    )

        response = await call_next(request)
        status_code = response.status_code
        return response

    except Exception as e:
        error = str(e)
        security_logger.error(f"Security middleware error: {error}", exc_info=True)
        raise
    finally:
        log_api_access(request, session_id, status_code, error)


async def orchestration_exception_handler(request: Request, exc: OrchestrationError):
    """Typed domain errors that escaped a router"""
    logger.warning(f"{exc.error_code} on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"}
    )
