"""FastAPI application setup for Kennisbank."""

from __future__ import annotations

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from kennisbank.api.dependencies import (
    get_app_settings,
    get_database,
    get_embedding_service,
    get_ingest_pipeline,
    get_query_service,
)
from kennisbank.api.routes_admin import router as admin_router
from kennisbank.api.routes_ingest import router as ingest_router
from kennisbank.api.routes_query import router as query_router
from kennisbank.core.errors import (
    DuplicateSourceError,
    IngestionError,
    KennisbankError,
    RecordNotFoundError,
    RetrievalUnavailableError,
    UnsupportedFormatError,
    UploadTooLargeError,
)
from kennisbank.core.logging import configure_logging, get_logger

configure_logging()
logger = get_logger(__name__)

app = FastAPI(
    title="Kennisbank",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://127.0.0.1:5173",
        "http://localhost:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(admin_router, prefix="", tags=["sources"])
app.include_router(ingest_router, prefix="", tags=["ingest"])
app.include_router(query_router, prefix="", tags=["query"])

_STATUS_BY_ERROR: tuple[tuple[type[Exception], int], ...] = (
    (RecordNotFoundError, status.HTTP_404_NOT_FOUND),
    (DuplicateSourceError, status.HTTP_409_CONFLICT),
    (UploadTooLargeError, status.HTTP_413_REQUEST_ENTITY_TOO_LARGE),
    (UnsupportedFormatError, status.HTTP_415_UNSUPPORTED_MEDIA_TYPE),
    (IngestionError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (RetrievalUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


@app.exception_handler(KennisbankError)
async def handle_domain_error(request: Request, exc: KennisbankError) -> JSONResponse:
    code = next(
        (status_code for error_type, status_code in _STATUS_BY_ERROR if isinstance(exc, error_type)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    if code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=code, content={"detail": str(exc)})


@app.exception_handler(ValueError)
async def handle_value_error(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


@app.on_event("startup")
async def startup() -> None:
    """Warm up core singletons on startup."""
    get_app_settings()
    get_database()
    get_embedding_service()
    get_ingest_pipeline()
    get_query_service()


@app.get("/health", tags=["admin"])
def health() -> dict[str, bool]:
    """Simple liveness check."""
    return {"ok": True, "embeddings": get_embedding_service().enabled}
