"""Huddle: real-time group chat backbone (server room + reconnecting client)."""

__version__ = "0.1.0"
