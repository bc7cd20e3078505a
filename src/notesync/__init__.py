"""Offline-first note sync against a shared Redis tree."""

__version__ = "0.1.0"
