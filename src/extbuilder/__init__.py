"""Supervise external builder processes."""

__version__ = "0.1.0"
