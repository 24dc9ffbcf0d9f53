"""Database module for SQLAlchemy models and session management."""

from app.core.database import (
    Base,
    DatabaseClient,
    async_session_maker,
    close_database,
    db_client,
    engine,
    get_async_session,
    init_database,
    unit_of_work,
)
from app.database.models import (
    User,
    VerificationPillar,
    VerificationStep,
    VerificationStepEvidence,
)

__all__ = [
    "Base",
    "engine",
    "async_session_maker",
    "get_async_session",
    "unit_of_work",
    "DatabaseClient",
    "db_client",
    "init_database",
    "close_database",
    "User",
    "VerificationPillar",
    "VerificationStep",
    "VerificationStepEvidence",
]
