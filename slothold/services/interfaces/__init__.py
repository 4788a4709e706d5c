"""
Service interfaces for dependency inversion.
Allows swapping implementations without changing business logic.
"""

from .backend import BookingBackend

__all__ = ['BookingBackend']
