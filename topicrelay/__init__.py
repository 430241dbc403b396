"""Publish/subscribe relay between UDP publishers and TCP subscribers."""

__version__ = "0.1.0"
__all__ = ["messages", "server", "subscriber", "topics"]