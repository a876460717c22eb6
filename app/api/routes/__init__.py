"""Route modules exposed by the API package."""

from . import categories, health, notifications, tickets

__all__ = ["categories", "health", "notifications", "tickets"]
