"""Ambient infrastructure: errors, settings and logging."""
