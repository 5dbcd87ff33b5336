"""Moderation domain services and records."""
