"""Resilient lead-discovery pipeline."""

__version__ = "1.0.0"
