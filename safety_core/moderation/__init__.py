"""Moderation package integration helpers exposed to the application."""

from safety_core.moderation.domain.container import configure, configure_postgres, reset
from safety_core.moderation.workers.runner import spawn_workers

__all__ = ["configure", "configure_postgres", "reset", "spawn_workers"]
