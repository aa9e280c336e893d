"""Service layer for business logic.

Services encapsulate all business logic, keeping routes thin and focused
on HTTP handling.

Layer hierarchy:
    Routes (HTTP) -> Services (Business Logic) -> Repositories (Database)

Services should:
- Validate input before any repository call
- Orchestrate calls to repositories
- Raise only DomainErrors, adding context without changing the kind

Services should NOT:
- Directly execute SQL queries (use repositories)
- Know about HTTP request/response details
- Retry failed writes
"""

from services.users_service import UserService

__all__ = ["UserService"]
