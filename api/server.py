"""FastAPI application serving document/video mappings and the files behind them."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import List, Optional, Sequence

from fastapi import FastAPI, HTTPException, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse

from cache.files import FileIndex
from cache.mapping import MappingCache
from cache.store import CacheStore

from .models import HealthResponse, PdfVideoMatchingModel

LOGGER = logging.getLogger("slidesync.api")


@dataclass(slots=True)
class APIServerConfig:
    """Runtime configuration for the FastAPI application."""

    store: CacheStore
    cors_origins: Sequence[str]
    app_version: str = "dev"
    fallback_duration_ms: Optional[int] = None
    lan_only: bool = True


_LOCAL_CLIENT_SENTINELS = {
    "127.0.0.1",
    "::1",
    "localhost",
    "testclient",
}


def _is_loopback_host(host: Optional[str]) -> bool:
    if host is None:
        return True
    value = host.strip().lower()
    if value.startswith("::ffff:"):
        value = value.rsplit(":", 1)[-1]
    if value.startswith("[") and value.endswith("]"):
        value = value[1:-1]
    return not value or value in _LOCAL_CLIENT_SENTINELS or value.startswith("127.")


def create_app(config: APIServerConfig) -> FastAPI:
    """Create a FastAPI application bound to the given configuration."""

    app = FastAPI(
        title="SlideSync Viewer API",
        version=config.app_version,
        docs_url="/docs",
        openapi_url="/openapi.json",
    )

    allowed_origins: List[str] = [origin for origin in config.cors_origins if origin]
    if allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=allowed_origins,
            allow_methods=["GET"],
            allow_headers=["*"],
        )

    mappings = MappingCache(config.store)
    files = FileIndex(config.store)
    lan_only = config.lan_only

    @app.middleware("http")
    async def log_requests(request: Request, call_next):  # type: ignore[override]
        start = time.perf_counter()
        response: Optional[Response] = None
        client_host = request.client.host if request.client else None
        try:
            if lan_only and not _is_loopback_host(client_host):
                LOGGER.warning("Rejected non-local HTTP request from %s", client_host or "<unknown>")
                response = JSONResponse(status_code=status.HTTP_403_FORBIDDEN, content={"error": "LAN access disabled"})
            else:
                response = await call_next(request)
            return response
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            status_code = response.status_code if response is not None else 500
            LOGGER.info(
                "%s %s -> %s (%.1f ms) ip=%s",
                request.method,
                request.url.path,
                status_code,
                duration_ms,
                client_host or "-",
            )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(_request: Request, exc: HTTPException):
        detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
        return JSONResponse(status_code=exc.status_code, content={"error": detail})

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "invalid parameters", "details": exc.errors()},
        )

    @app.get("/health", response_model=HealthResponse)
    def health() -> HealthResponse:
        return HealthResponse(ok=True, version=config.app_version)

    @app.get("/pdf-matchings/{document_hash}", response_model=List[PdfVideoMatchingModel])
    def pdf_matchings(document_hash: str) -> List[PdfVideoMatchingModel]:
        rows = mappings.pdf_matchings(document_hash, fallback_duration_ms=config.fallback_duration_ms)
        return [
            PdfVideoMatchingModel(
                video_offset_ms=row.video_offset_ms,
                pdf_hash=row.pdf_hash,
                video_hash=row.video_hash,
                page_idx=row.page_idx,
                duration_ms=row.duration_ms,
            )
            for row in rows
        ]

    @app.get("/files/{file_hash}")
    def get_file(file_hash: str) -> FileResponse:
        path = files.path_for(file_hash)
        if path is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="unknown file hash")
        if not path.is_file():
            LOGGER.warning("File %s for hash %s is gone", path, file_hash)
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="file no longer available")
        return FileResponse(path)

    return app
