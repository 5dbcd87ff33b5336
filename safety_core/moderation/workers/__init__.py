"""Moderation worker exports."""

from .escalation_worker import EscalationWorker

__all__ = ["EscalationWorker"]
