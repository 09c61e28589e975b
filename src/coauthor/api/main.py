from __future__ import annotations

from datetime import UTC, datetime
from dotenv import load_dotenv
import logging
import os
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

from .routers.ai import router as ai_router
from .routers.auth import router as auth_router
from .routers.projects import router as projects_router
from .routers.realtime import router as realtime_router
from .routers.versions import router as versions_router
from .routers.workspace import router as workspace_router
from ..domain.errors import CoauthorError, ValidationFailure
from ..infrastructure.repository import get_repo
from ..observability.metrics import metrics_middleware_factory
from ..services.ai_gateway import get_ai_gateway

load_dotenv()  # GEMINI_API_KEY, JWT_SECRET, MONGO_URL, etc. from .env if present

logger = logging.getLogger("coauthor.api")

API_NAME = "Coauthor Workspace API"
API_VERSION = "0.1.0"

app = FastAPI(title=API_NAME, version=API_VERSION)

# Observability: request latency histogram
app.middleware("http")(metrics_middleware_factory())


def register_exception_handlers(target: FastAPI) -> None:
    @target.exception_handler(CoauthorError)
    async def _coauthor_error(request: Request, exc: CoauthorError) -> JSONResponse:
        if exc.status_code >= 500:
            # Operator detail stays in the log; clients get the generic message
            logger.error("request_failed path=%s status=%s err=%s", request.url.path, exc.status_code, exc.message)
            detail = exc.default_message
        else:
            logger.info("request_rejected path=%s status=%s err=%s", request.url.path, exc.status_code, exc.message)
            detail = exc.message
        return JSONResponse(status_code=exc.status_code, content={"detail": detail})

    @target.exception_handler(RequestValidationError)
    async def _request_invalid(request: Request, exc: RequestValidationError) -> JSONResponse:
        failure = ValidationFailure(_describe_validation(exc))
        logger.info("request_rejected path=%s status=%s err=%s", request.url.path, failure.status_code, failure.message)
        return JSONResponse(status_code=failure.status_code, content={"detail": failure.message})


def _describe_validation(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return ValidationFailure.default_message
    first = errors[0]
    # loc starts with "body", "query" or "path"; the field name is what clients need
    field = ".".join(str(part) for part in first.get("loc", ())[1:])
    reason = first.get("msg", "invalid value")
    return f"Validation failed: {field}: {reason}" if field else f"Validation failed: {reason}"


register_exception_handlers(app)

ROUTERS = (ai_router, auth_router, projects_router, workspace_router, versions_router)

for _router in ROUTERS:
    app.include_router(_router)
app.include_router(realtime_router)

# Also expose the same routers under /api
for _router in ROUTERS:
    app.include_router(_router, prefix="/api")


def _cors_origins() -> list[str]:
    raw = os.getenv("COAUTHOR_CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000")
    return [o.strip() for o in raw.split(",") if o.strip()]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _health_payload() -> dict:
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
        "components": {
            "api": "ok",
            "ai_gateway": get_ai_gateway().state.value,
            "repo": type(get_repo()).__name__,
        },
    }


@app.get("/")
def root():
    return {"name": API_NAME, "version": API_VERSION}


@app.get("/health")
def health():
    return _health_payload()


@app.get("/metrics")
def metrics() -> Response:
    data = generate_latest(REGISTRY)
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)


@app.get("/api")
def api_root():
    return {"name": API_NAME, "version": API_VERSION}


@app.get("/api/health")
def api_health():
    return _health_payload()


@app.get("/api/metrics")
def api_metrics() -> Response:
    data = generate_latest(REGISTRY)
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
