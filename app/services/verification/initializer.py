"""Backfill verification centers for students created before the engine existed."""

from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import Clock
from app.core.exceptions import AlreadyInitializedError, AppError
from app.repositories.user_repository import UserRepository
from app.schemas.verification import BackfillResult
from app.services.verification.catalog import StepCatalog
from app.services.verification.engine import VerificationEngine
from app.utils.logging import get_logger

LOGGER = get_logger(__name__)


async def initialize_verification_for_existing_students(
    session_factory: Callable[[], AsyncSession],
    catalog: Optional[StepCatalog] = None,
    clock: Optional[Clock] = None,
) -> BackfillResult:
    """Initialize every student that has no pillars yet.

    Each student gets its own session and transaction, so one failure does
    not undo the others. A student initialized concurrently counts as
    skipped.

    Args:
        session_factory: Callable returning a new AsyncSession (e.g. an
            ``async_sessionmaker``)
        catalog: Step catalog override
        clock: Time source override

    Returns:
        Counts of initialized, skipped and failed students
    """
    async with session_factory() as session:
        user_ids = await UserRepository(session).list_students_without_pillars()

    result = BackfillResult(total=len(user_ids))
    LOGGER.info(f"Backfilling verification centers for {len(user_ids)} students")

    for user_id in user_ids:
        async with session_factory() as session:
            engine = VerificationEngine(session, catalog=catalog, clock=clock)
            try:
                await engine.initialize_for_user(user_id)
                result.initialized += 1
            except AlreadyInitializedError:
                LOGGER.info(f"Verification center for user {user_id} already exists, skipping")
                result.skipped += 1
            except (AppError, SQLAlchemyError) as e:
                LOGGER.error(f"Failed to initialize verification for user {user_id}: {str(e)}")
                result.failed += 1
                result.failed_user_ids.append(user_id)

    LOGGER.info(
        f"Verification backfill complete: {result.initialized} initialized, "
        f"{result.skipped} skipped, {result.failed} failed"
    )
    return result
