# backend/lessonbook/repositories/__init__.py
"""
Repository layer.

Repositories encapsulate queries and flush changes; services decide when to
commit.
"""

from .base_repository import BaseRepository, IRepository
from .factory import RepositoryFactory

__all__ = ["BaseRepository", "IRepository", "RepositoryFactory"]
