from .base import DatabaseBackend
from .db import Database

__all__ = [
    "DatabaseBackend",
    "Database",
]
