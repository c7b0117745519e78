"""Quota accounting and timed reset for the companion chat service."""

__version__ = "0.1.0"
