"""FastAPI application exposing the crypto recommendation queries.

Run with:
    uvicorn crypto_recommendation.app.api:app
or:
    python -m crypto_recommendation.app.api

Environment variables prefixed with ``CR_`` (e.g. ``CR_CSV_DIR``) override
default configuration values.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime
from typing import Any, AsyncIterator, Optional, Sequence, cast

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, status
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

from crypto_recommendation.config.settings import Settings
from crypto_recommendation.errors import (
    ErrorCode,
    IngestionError,
    RecommendationError,
    StorageError,
    wrap_error,
)
from crypto_recommendation.ingest.csv_loader import CsvSource, IngestionReport
from crypto_recommendation.logging import get_logger, log_exception
from crypto_recommendation.pipeline import build_store, run_ingestion
from crypto_recommendation.service import PriceService
from crypto_recommendation.storage import PriceStore

logger = get_logger(__name__, component="rest_api")


_STATUS_BY_CODE = {
    ErrorCode.VALIDATION: 400,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.STORAGE: 503,
    ErrorCode.INGESTION: 503,
    ErrorCode.CONFIG: 500,
}

_CLIENT_ERROR_CODES = {ErrorCode.VALIDATION, ErrorCode.NOT_FOUND}


def _handle_error(error: RecommendationError, *, event: str, endpoint: str) -> None:
    """Log ``error`` and raise an HTTP response."""

    level = logging.WARNING if error.code in _CLIENT_ERROR_CODES else logging.ERROR
    log_exception(logger, error, event=event, context={"endpoint": endpoint}, level=level)
    status_code = _STATUS_BY_CODE.get(error.code, 500)
    raise HTTPException(status_code=status_code, detail=error.user_message)


def client_address(request: Request) -> str:
    """Return the rate-limit key: first ``X-Forwarded-For`` hop or the peer address."""

    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return get_remote_address(request)


class SecureHeadersMiddleware(BaseHTTPMiddleware):
    """Attach standard security headers to responses."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        response = await call_next(request)
        response.headers.setdefault(
            "Strict-Transport-Security", "max-age=63072000; includeSubDomains; preload"
        )
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "same-origin")
        return response


class ApiKeyMiddleware(BaseHTTPMiddleware):
    """Require ``Authorization: Bearer <key>`` outside the public path prefixes."""

    def __init__(self, app: Any, *, settings: Settings) -> None:  # type: ignore[override]
        super().__init__(app)
        self._settings = settings

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        if self._settings.is_public_path(request.url.path):
            return await call_next(request)
        expected = self._settings.api_key
        supplied = _bearer_token(request.headers.get("authorization"))
        if not expected or supplied is None or not hmac.compare_digest(
            supplied.encode("utf-8"), expected.encode("utf-8")
        ):
            logger.warning(
                {"event": "unauthorised_request", "path": request.url.path},
            )
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"detail": "Authentication required"},
                headers={"WWW-Authenticate": "Bearer"},
            )
        return await call_next(request)


def _bearer_token(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class CacheControlMiddleware(BaseHTTPMiddleware):
    """Attach cache metadata and entity tags to successful query responses."""

    _CACHED_PREFIX = "/cryptos"

    def __init__(self, app: Any, *, settings: Settings) -> None:  # type: ignore[override]
        super().__init__(app)
        self._settings = settings

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        response = await call_next(request)
        if request.method != "GET" or not request.url.path.startswith(self._CACHED_PREFIX):
            return response
        if response.status_code != status.HTTP_200_OK:
            return response

        if hasattr(response, "body"):
            body = response.body or b""
        else:
            chunks = [chunk async for chunk in response.body_iterator]
            body = b"".join(
                chunk if isinstance(chunk, bytes) else chunk.encode("utf-8") for chunk in chunks
            )

        etag = hashlib.sha256(body).hexdigest()
        quoted_etag = f'"{etag}"'
        headers = {
            key: value
            for key, value in response.headers.items()
            if key.lower() != "content-length"
        }

        if_none_match = request.headers.get("if-none-match")
        matched = False
        if if_none_match:
            candidates = {candidate.strip() for candidate in if_none_match.split(",")}
            matched = bool(candidates & {quoted_etag, etag, f"W/{quoted_etag}", "*"})

        if matched:
            new_response = Response(status_code=status.HTTP_304_NOT_MODIFIED, headers=headers)
        else:
            new_response = Response(
                content=body,
                status_code=response.status_code,
                headers=headers,
                media_type=getattr(response, "media_type", None),
            )
        background = getattr(response, "background", None)
        if background is not None:
            new_response.background = background

        ttl = self._settings.cache_ttl
        new_response.headers["ETag"] = quoted_etag
        new_response.headers["Cache-Control"] = f"public, max-age={ttl}"
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=ttl)
        new_response.headers["Expires"] = format_datetime(expires_at, usegmt=True)
        return new_response


def _rate_limit_handler(request: Request, exc: Exception) -> Response:
    """Forward SlowAPI rate-limit exceptions to its default handler."""

    return _rate_limit_exceeded_handler(request, cast(RateLimitExceeded, exc))


router = APIRouter()


def get_service(request: Request) -> PriceService:
    service = getattr(request.app.state, "service", None)
    if service is None:
        _handle_error(
            StorageError("Price store is not ready"),
            event="service_unavailable",
            endpoint=request.url.path,
        )
    return cast(PriceService, service)


@router.get("/cryptos/normalized-range", tags=["cryptos"])
def normalized_ranges_endpoint(service: PriceService = Depends(get_service)):
    """Return every crypto sorted by normalized range ``(max - min) / min``, descending."""

    try:
        results = service.normalized_ranges_desc()
    except RecommendationError as error:
        _handle_error(error, event="normalized_range_failure", endpoint="normalized-range")
    return [result.to_dict() for result in results]


@router.get("/cryptos/normalized-range/highest", tags=["cryptos"])
def highest_normalized_range_endpoint(
    date: str = Query(..., description="Calendar day in yyyy-MM-dd format", examples=["2022-01-01"]),
    service: PriceService = Depends(get_service),
):
    """Return the crypto with the highest normalized range on ``date`` (UTC)."""

    try:
        result = service.highest_normalized_range_for_date(date)
    except RecommendationError as error:
        _handle_error(error, event="highest_normalized_range_failure", endpoint="normalized-range/highest")
    return result.to_dict()


@router.get("/cryptos/{symbol}/stats", tags=["cryptos"])
def stats_endpoint(symbol: str, service: PriceService = Depends(get_service)):
    """Return oldest, newest, min and max price for ``symbol``."""

    try:
        stats = service.stats_for_symbol(symbol)
    except RecommendationError as error:
        _handle_error(error, event="stats_failure", endpoint="stats")
    return stats.to_dict()


def _ingestion_summary(request: Request) -> dict[str, Any]:
    state = getattr(request.app.state, "ingestion_state", "pending")
    report: Optional[IngestionReport] = getattr(request.app.state, "ingestion_report", None)
    summary: dict[str, Any] = {"state": state}
    if report is not None:
        summary.update(
            files_processed=report.files_processed,
            files_failed=report.files_failed,
            rows_loaded=report.rows_loaded,
            rows_skipped=report.rows_skipped,
        )
    return summary


@router.get("/healthz", tags=["operations"], response_class=JSONResponse)
def healthz(request: Request) -> JSONResponse:
    """Liveness endpoint; fails when startup ingestion crashed."""

    ingestion = _ingestion_summary(request)
    ok = ingestion["state"] != "failed"
    return JSONResponse(
        status_code=status.HTTP_200_OK if ok else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "ok" if ok else "error", "ingestion": ingestion},
    )


@router.get("/readyz", tags=["operations"], response_class=JSONResponse)
def readyz(request: Request) -> JSONResponse:
    """Readiness endpoint; succeeds once the store has been loaded."""

    ingestion = _ingestion_summary(request)
    service: Optional[PriceService] = getattr(request.app.state, "service", None)
    ready = service is not None and ingestion["state"] in {"completed", "skipped"}
    body: dict[str, Any] = {"status": "ok" if ready else "error", "ingestion": ingestion}
    if service is not None:
        try:
            body["observations"] = service.store.count()
        except RecommendationError as error:
            log_exception(logger, error, event="readyz_store_failure")
            ready = False
            body["status"] = "error"
    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=body,
    )


@router.get("/ingestion/report", tags=["operations"])
def ingestion_report_endpoint(request: Request):
    """Return the diagnostics collected by the startup ingestion run."""

    report: Optional[IngestionReport] = getattr(request.app.state, "ingestion_report", None)
    if report is None:
        raise HTTPException(status_code=404, detail="No ingestion report available")
    return report.to_dict()


def create_app(
    settings: Optional[Settings] = None,
    *,
    store: Optional[PriceStore] = None,
    sources: Optional[Sequence[CsvSource]] = None,
) -> FastAPI:
    """Build the application.

    Parameters
    ----------
    settings:
        Configuration; read from the environment when omitted.
    store:
        Pre-built store. A store is created from ``settings`` when omitted.
    sources:
        CSV sources to ingest at startup instead of ``settings.csv_dir``.
    """

    cfg = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        active_store = store if store is not None else build_store(cfg)
        app.state.store = active_store
        app.state.ingestion_report = None
        if not cfg.ingest_on_startup:
            app.state.ingestion_state = "skipped"
        else:
            app.state.ingestion_state = "running"
            try:
                report = await asyncio.to_thread(run_ingestion, cfg, active_store, sources)
            except Exception as exc:
                error = wrap_error(exc, IngestionError, message="Startup ingestion failed")
                log_exception(logger, error, event="startup_ingestion_failed")
                app.state.ingestion_state = "failed"
            else:
                app.state.ingestion_report = report
                app.state.ingestion_state = "completed"
        if cfg.api_key is None:
            logger.warning(
                {"event": "api_key_missing", "message": "Guarded endpoints will reject every request"}
            )
        app.state.service = PriceService(active_store)
        try:
            yield
        finally:
            app.state.service = None
            app.state.ingestion_state = "stopped"

    app = FastAPI(title="Crypto Recommendation API", lifespan=lifespan)
    app.state.settings = cfg

    limiter = Limiter(key_func=client_address, default_limits=[cfg.rate_limit])
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)

    # Starlette runs the last added middleware first.
    app.add_middleware(CacheControlMiddleware, settings=cfg)
    app.add_middleware(ApiKeyMiddleware, settings=cfg)
    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(SecureHeadersMiddleware)

    app.include_router(router)
    return app


app = create_app()


def main() -> None:
    """Run a development server using :mod:`uvicorn`."""

    import uvicorn

    uvicorn.run("crypto_recommendation.app.api:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":  # pragma: no cover - manual invocation
    main()
