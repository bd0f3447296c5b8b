"""Application layer - use cases, scheduling and monitoring."""
