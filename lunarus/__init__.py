"""Lunarus chat and voice coordination API."""

__version__ = "2.0.0"
