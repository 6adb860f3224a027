"""Route modules exposed by the API package."""

from . import ping, support

__all__ = ["ping", "support"]
