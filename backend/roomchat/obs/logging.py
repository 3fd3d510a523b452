"""JSON logging with per-task context.

HTTP requests bind request_id/route/client_ip, relay sessions bind
user_id/room. Bound values are stamped onto every record emitted from the
same task, so a session's log lines can be grepped by room.
"""

from __future__ import annotations

import json
import logging
import random
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from roomchat.settings import settings

_LOGGER_NAME = "roomchat"

_CONTEXT_FIELDS = ("request_id", "route", "user_id", "client_ip", "room")
_CONTEXT: Dict[str, ContextVar[Optional[str]]] = {
	field: ContextVar(f"roomchat_log_{field}", default=None) for field in _CONTEXT_FIELDS
}

# Message bodies never reach the logs, only ids and counts
_REDACT = ("token", "secret", "authorization", "cookie", "password", "content", "payload")
_MAX_STR = 256

_STANDARD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime", "taskName"}


def bind_context(**fields: Optional[str]) -> Dict[str, Token]:
	"""Bind non-empty fields for the current task; returns tokens for reset_context."""
	tokens: Dict[str, Token] = {}
	for field, value in fields.items():
		if field not in _CONTEXT:
			raise KeyError(f"unknown log context field: {field}")
		if value is not None:
			tokens[field] = _CONTEXT[field].set(str(value))
	return tokens


def reset_context(tokens: Dict[str, Token]) -> None:
	for field, token in tokens.items():
		_CONTEXT[field].reset(token)


def current_request_id() -> Optional[str]:
	return _CONTEXT["request_id"].get()


def _scrub(key: str, value: Any) -> Any:
	if any(word in key.lower() for word in _REDACT):
		return "[redacted]"
	if isinstance(value, str) and len(value) > _MAX_STR:
		return value[:_MAX_STR] + "..."
	return value


class JSONLogFormatter(logging.Formatter):
	"""One JSON object per line: fixed service fields, bound context, then extras."""

	def format(self, record: logging.LogRecord) -> str:  # noqa: A003
		payload: Dict[str, Any] = {
			"ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
			"level": record.levelname.lower(),
			"msg": record.getMessage(),
			"logger": record.name,
			"service": settings.service_name,
			"env": settings.environment,
			"commit": settings.git_commit,
		}
		for field, var in _CONTEXT.items():
			value = var.get()
			if value:
				payload[field] = value
		for key, value in record.__dict__.items():
			if key in _STANDARD_ATTRS or key.startswith("_"):
				continue
			payload[key] = _scrub(key, value)
		if record.exc_info:
			payload["exc_info"] = self.formatException(record.exc_info)
		return json.dumps(payload, separators=(",", ":"), default=str)


class InfoSamplingFilter(logging.Filter):
	"""Keep a fraction of INFO records; everything else passes."""

	def __init__(self, rate: float) -> None:
		super().__init__()
		self.rate = max(0.0, min(1.0, rate))

	def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
		if record.levelno != logging.INFO or self.rate >= 1.0:
			return True
		return random.random() < self.rate


def configure_logging() -> logging.Logger:
	handler = logging.StreamHandler()
	handler.setFormatter(JSONLogFormatter())
	handler.addFilter(InfoSamplingFilter(settings.obs_log_sampling_rate_info))
	root = logging.getLogger()
	root.handlers[:] = [handler]
	root.setLevel(settings.obs_log_level)
	return logging.getLogger(_LOGGER_NAME)


def get_logger(name: Optional[str] = None) -> logging.Logger:
	return logging.getLogger(name or _LOGGER_NAME)
