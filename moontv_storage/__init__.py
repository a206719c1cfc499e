"""Pluggable asynchronous user-data storage for MoonTV."""

__version__ = "1.0.0"
