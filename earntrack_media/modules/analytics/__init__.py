"""Access logging and per-video analytics."""
