"""Observability bootstrap: JSON logs plus the HTTP metrics middleware."""

from __future__ import annotations

from fastapi import FastAPI

from roomchat.obs import logging as obs_logging
from roomchat.obs import middleware
from roomchat.settings import settings


def init(app: FastAPI) -> None:
	"""Idempotent per app; a no-op when OBS_ENABLED is off."""
	if not settings.obs_enabled or getattr(app.state, "obs_initialised", False):
		return
	obs_logging.configure_logging().info(
		"observability_ready",
		extra={"log_level": settings.obs_log_level, "metrics_public": settings.obs_metrics_public},
	)
	middleware.install(app)
	app.state.obs_initialised = True


__all__ = ["init"]
