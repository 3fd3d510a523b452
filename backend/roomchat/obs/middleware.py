"""HTTP request instrumentation: request ids, latency metrics, access log."""

from __future__ import annotations

import time
from uuid import uuid4

from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from roomchat.api.request_id import REQUEST_ID_ATTR, REQUEST_ID_HEADER
from roomchat.obs import logging as obs_logging
from roomchat.obs import metrics

_access_log = obs_logging.get_logger("roomchat.http")


def _route_label(request: Request) -> str:
	# Templated path once routing has matched, raw path otherwise (404s)
	route = request.scope.get("route")
	return getattr(route, "path", None) or request.url.path


class ObservabilityMiddleware(BaseHTTPMiddleware):
	"""Tags each HTTP request with an id and records it.

	Only HTTP scopes pass through BaseHTTPMiddleware. Relay sessions bind their
	own log context.
	"""

	async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
		request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex
		setattr(request.state, REQUEST_ID_ATTR, request_id)
		client_ip = request.client.host if request.client else None
		tokens = obs_logging.bind_context(request_id=request_id, client_ip=client_ip)
		started = time.perf_counter()
		status_code = 500
		try:
			response = await call_next(request)
			status_code = response.status_code
		except Exception:
			_access_log.exception("http_request_error", extra={"method": request.method})
			raise
		finally:
			elapsed = time.perf_counter() - started
			route = _route_label(request)
			metrics.observe_request(route, request.method, status_code, elapsed)
			_access_log.info(
				"http_request",
				extra={
					"method": request.method,
					"route": route,
					"status": status_code,
					"latency_ms": round(elapsed * 1000, 3),
				},
			)
			obs_logging.reset_context(tokens)
		response.headers.setdefault(REQUEST_ID_HEADER, request_id)
		return response


def install(app: FastAPI) -> None:
	app.add_middleware(ObservabilityMiddleware)
