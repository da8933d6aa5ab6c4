import logging
import os
import sys
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator, List, Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse

from .repositories import StorageError, get_repository
from .routers import notes as notes_router
from .settings import Settings, get_settings

logger = logging.getLogger(__name__)

STATIC_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "static")

openapi_tags = [
    {"name": "health", "description": "Service health and status endpoints."},
    {"name": "ui", "description": "Static browser client."},
    {
        "name": "notes",
        "description": "CRUD operations and substring search for notes.",
    },
]

_ALL_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


# PUBLIC_INTERFACE
def configure_logging(level: str) -> None:
    """Configure the root logger with a single stdout handler."""
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )


def _client_errors(errors: List[dict]) -> List[dict]:
    # Raw input may not be encodable (lone surrogates) and is never echoed back
    return [{k: v for k, v in e.items() if k not in ("input", "ctx")} for e in errors]


def _validation_message(request: Request, errors: List[dict]) -> str:
    if any(tuple(e.get("loc", ()))[:1] == ("path",) for e in errors):
        return "Invalid note ID"
    if request.method == "POST":
        return "Title and content are required"
    return "Request validation failed"


# PUBLIC_INTERFACE
def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the FastAPI application.

    The note repository is opened when the application starts and closed on
    shutdown; route handlers reach it through ``app.state.repository``.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        app.state.repository = get_repository(settings)
        logger.info("Note store ready (backend=%s)", settings.persistence_backend)
        try:
            yield
        finally:
            app.state.repository.close()
            logger.info("Note store closed")

    app = FastAPI(
        title="Notes Backend",
        description="Personal note-taking service with durable storage and substring search.",
        version="0.1.0",
        openapi_tags=openapi_tags,
        lifespan=lifespan,
    )
    app.state.settings = settings

    # Configure CORS based on settings (.env -> CORS_ALLOW_ORIGINS), with '*' fallback
    allow_all = (settings.cors_allow_origins == ["*"]) or (len(settings.cors_allow_origins) == 0)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if allow_all else settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.error("%s %s 500 %.1fms", request.method, request.url.path, duration_ms)
            raise
        duration_ms = (time.perf_counter() - start) * 1000
        code = response.status_code
        if code >= 500:
            level = logging.ERROR
        elif code >= 400:
            level = logging.WARNING
        else:
            level = logging.INFO
        logger.log(level, "%s %s %d %.1fms", request.method, request.url.path, code, duration_ms)
        return response

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """
        Malformed ids, missing or blank fields and unparsable bodies are client
        errors and answer 400.

        Response format:
            {
                "error": "ValidationError",
                "message": "Invalid note ID",
                "detail": [... pydantic/fastapi error details ...]
            }
        """
        errors = exc.errors()
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "error": "ValidationError",
                "message": _validation_message(request, errors),
                "detail": jsonable_encoder(_client_errors(errors)),
            },
        )

    @app.exception_handler(StorageError)
    async def storage_exception_handler(request: Request, exc: StorageError) -> JSONResponse:
        logger.error("Storage failure on %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal Server Error"},
        )

    # PUBLIC_INTERFACE
    @app.get("/health", summary="Health Check", tags=["health"])
    def health_check():
        """
        Health check endpoint.

        Returns:
            A JSON object indicating service health.
        """
        return {"message": "Healthy", "backend": settings.persistence_backend}

    @app.get("/", summary="Browser client", tags=["ui"], include_in_schema=False)
    def index() -> FileResponse:
        return FileResponse(os.path.join(STATIC_DIR, "index.html"), media_type="text/html")

    @app.get("/app.js", summary="Browser client script", tags=["ui"], include_in_schema=False)
    def app_script() -> FileResponse:
        return FileResponse(os.path.join(STATIC_DIR, "app.js"), media_type="application/javascript")

    app.include_router(notes_router.router)

    # Last rule: anything unmatched, including unknown methods on known paths, is a 404
    @app.api_route("/{path:path}", methods=_ALL_METHODS, include_in_schema=False)
    def not_found(path: str):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")

    return app


app = create_app()


# PUBLIC_INTERFACE
def run() -> None:
    """Serve the application with uvicorn on the configured host and port."""
    import uvicorn

    settings = app.state.settings
    configure_logging(settings.log_level)
    logger.info("Note-taking app running on http://localhost:%d", settings.port)
    # The request middleware already logs every request
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        access_log=False,
    )


if __name__ == "__main__":
    run()
