"""Route modules exposed by the API package."""

from . import billing, notifications, ping, tickets

__all__ = ["billing", "notifications", "ping", "tickets"]
