"""Storage and stream adapters for the moderation core."""
