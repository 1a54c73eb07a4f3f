"""Persistence collaborators for the family graph engine."""
from .base import Repository
from .memory import MemoryRepository
from .sqlite import SQLiteRepository

__all__ = [
    "Repository",
    "MemoryRepository",
    "SQLiteRepository",
]
