"""Caching and normalization proxy for the House of Representatives website API."""

__version__ = "0.1.0"
