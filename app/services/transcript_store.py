"""
Interview transcript persistence.

Saves are a single INSERT ... ON CONFLICT (user_id) DO UPDATE, so two
concurrent turns for the same user can't create two rows or drop a write.
Reads that must observe a just-committed write go through
`read_transcript_with_retry`.
"""
from typing import Any, Callable, Optional

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.database import session_scope, utcnow
from app.models.interview_transcript import InterviewTranscript
from app.services.plan_store import dialect_insert
from app.services.retry import retry_read
from app.utils.logger import logger


async def get_transcript_by_user(db: AsyncSession, user_id: str) -> Optional[InterviewTranscript]:
    result = await db.execute(
        select(InterviewTranscript)
        .where(InterviewTranscript.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def upsert_transcript(db: AsyncSession, user_id: str, **values: Any) -> InterviewTranscript:
    """Create the user's transcript or update the given columns on it"""
    now = utcnow()
    changes = dict(values, updated_at=now)
    stmt = dialect_insert(db, InterviewTranscript).values(user_id=user_id, created_at=now, **changes)
    stmt = stmt.on_conflict_do_update(index_elements=["user_id"], set_=changes)
    await db.execute(stmt)
    await db.commit()
    return await get_transcript_by_user(db, user_id)


async def delete_transcript(db: AsyncSession, user_id: str) -> None:
    await db.execute(delete(InterviewTranscript).where(InterviewTranscript.user_id == user_id))
    await db.commit()


async def read_transcript_with_retry(
    user_id: str,
    ready: Callable[[InterviewTranscript], bool],
    attempts: Optional[int] = None,
    delay_seconds: Optional[float] = None,
) -> Optional[InterviewTranscript]:
    """
    Re-read the transcript in a fresh session until `ready` holds.

    Returns the last row read, which may still fail `ready` once attempts
    run out, or None if the user has no transcript.
    """
    settings = get_settings()

    async def fetch():
        async with session_scope() as db:
            return await get_transcript_by_user(db, user_id)

    transcript = await retry_read(
        fetch,
        ready,
        attempts=attempts or settings.transcript_read_attempts,
        delay_seconds=settings.transcript_read_delay_seconds if delay_seconds is None else delay_seconds,
        name="transcript",
    )
    if transcript is not None and not ready(transcript):
        logger.warning("transcript.read_stale", extra={"user_id": user_id, "transcript_id": transcript.id})
    return transcript
