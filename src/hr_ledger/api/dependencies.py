"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from hr_ledger.database import init_db
from hr_ledger.exceptions import ValidationError


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency.

    Routes commit explicitly; anything left uncommitted is rolled back on close.
    """
    _, session_factory = init_db()
    async with session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


async def get_actor_id(
    x_actor_id: Annotated[str | None, Header()] = None,
) -> str:
    """Extract the acting user's employee id from header."""
    if not x_actor_id or not x_actor_id.strip():
        raise ValidationError("X-Actor-ID header is required")
    return x_actor_id.strip()


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
ActorId = Annotated[str, Depends(get_actor_id)]
