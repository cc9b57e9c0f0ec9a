"""
Adapters layer - Storage implementations.
"""

from .memory_store import InMemoryBookingStore

__all__ = ["InMemoryBookingStore"]
