"""Bulk message dispatch over an externally authenticated web chat surface."""

__version__ = "0.1.0"
