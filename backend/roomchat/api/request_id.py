"""Where the per-request id lives, for handlers that echo it back."""

from __future__ import annotations

from typing import Optional

from starlette.requests import Request

from roomchat.obs import logging as obs_logging

REQUEST_ID_ATTR = "request_id"
REQUEST_ID_HEADER = "X-Request-Id"


def get_request_id(request: Optional[Request] = None, default: str = "unknown") -> str:
    rid = getattr(request.state, REQUEST_ID_ATTR, None) if request is not None else None
    return str(rid or obs_logging.current_request_id() or default)
