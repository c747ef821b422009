"""
Custom exceptions module.

Import from here rather than from exceptions.errors.
"""

from exceptions.errors import (
    # Base exceptions
    AppError,
    UnauthorizedError,
    ExternalServiceError,
    DatabaseError,

    # External services
    WhatsAppError,
    StructuringModelError,
    ImageStorageError,

    # Offers
    OfferPersistError,
)

__all__ = [
    # Base
    "AppError",
    "UnauthorizedError",
    "ExternalServiceError",
    "DatabaseError",

    # External services
    "WhatsAppError",
    "StructuringModelError",
    "ImageStorageError",

    # Offers
    "OfferPersistError",
]
