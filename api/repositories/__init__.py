"""Repository layer for database operations.

Repositories encapsulate all database queries and translate storage
failures into DomainErrors, keeping services free of SQLAlchemy.
"""

from repositories.user_repository import UserRepository
from repositories.utils import repository_operation

__all__ = [
    "UserRepository",
    "repository_operation",
]
