"""Route group exports."""

from . import health, journey, sync

__all__ = ["health", "journey", "sync"]
