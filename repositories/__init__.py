"""
Repository Layer - Data Access Abstraction
Implements the Repository Pattern for database isolation
"""

from .base_repository import BaseRepository
from .booking_repository import BookingRepository
from .conversion_attempt_repository import ConversionAttemptRepository
from .alert_repository import AlertRepository

__all__ = [
    'BaseRepository',
    'BookingRepository',
    'ConversionAttemptRepository',
    'AlertRepository',
]
