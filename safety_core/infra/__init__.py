"""Connection helpers for external stores."""
