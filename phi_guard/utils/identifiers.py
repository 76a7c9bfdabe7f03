"""Bounded unique identifier generation"""

import uuid
from typing import Awaitable, Callable

import structlog

from phi_guard.utils.errors import IdentifierExhausted

logger = structlog.get_logger()


async def generate_unique_id(
    exists: Callable[[str], Awaitable[bool]],
    max_attempts: int = 5,
    factory: Callable[[], str] = lambda: str(uuid.uuid4()),
) -> str:
    """
    Generate an identifier that is not yet taken

    Args:
        exists: Async check returning True when the candidate is in use
        max_attempts: Candidates to try before giving up
        factory: Candidate generator

    Returns:
        A free identifier

    Raises:
        IdentifierExhausted: If every candidate collided
    """
    for attempt in range(1, max_attempts + 1):
        candidate = factory()
        if not await exists(candidate):
            return candidate
        logger.warning("identifier_collision", attempt=attempt)

    raise IdentifierExhausted(
        f"No free identifier after {max_attempts} attempts",
        details={"max_attempts": max_attempts},
    )
