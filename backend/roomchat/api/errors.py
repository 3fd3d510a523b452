"""JSON error bodies for the REST surface; every body carries the request id."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from roomchat.api.request_id import get_request_id
from roomchat.domain.rooms.history import HistoryStoreError

logger = logging.getLogger(__name__)


def _error_response(
    request: Request,
    status_code: int,
    detail: Any,
    *,
    headers: Optional[Mapping[str, str]] = None,
    **extra: Any,
) -> JSONResponse:
    body = {"detail": detail, **extra, "request_id": get_request_id(request)}
    return JSONResponse(status_code=status_code, content=body, headers=dict(headers) if headers else None)


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_exc_handler(request: Request, exc: StarletteHTTPException):  # type: ignore[override]
        return _error_response(request, exc.status_code, exc.detail, headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def validation_exc_handler(request: Request, exc: RequestValidationError):  # type: ignore[override]
        return _error_response(request, 422, "validation_error", errors=jsonable_encoder(exc.errors()))

    @app.exception_handler(HistoryStoreError)
    async def history_exc_handler(request: Request, exc: HistoryStoreError):  # type: ignore[override]
        logger.warning("history_unavailable", extra={"op": exc.op}, exc_info=exc)
        return _error_response(request, 503, "history_unavailable")
