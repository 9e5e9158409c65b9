"""Core infrastructure: configuration, persistence, storage, queueing, logging."""
