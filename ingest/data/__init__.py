"""Data access layer: per-run entity caches and the reference-code manager."""
