"""SQLAlchemy Models for the application portal"""

from .base import Base
from .form_record import FormRecord

__all__ = [
    "Base",
    "FormRecord",
]
