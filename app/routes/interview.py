"""Interview and coaching-module chat routes"""

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession
from slowapi import Limiter
from slowapi.util import get_remote_address

from app.database import get_db
from app.models.interview_transcript import MODULE_NUMBERS
from app.models.user import User
from app.middleware.auth import get_current_user
from app.schemas.serious_plan import TurnRequest
from app.services import interview_service, transcript_store
from app.services.serious_plan_service import UpstreamNotReady
from app.utils.logger import get_logger

router = APIRouter()
logger = get_logger("interview")
limiter = Limiter(key_func=get_remote_address)


@router.post("/interview/turn")
@limiter.limit("30/minute")
async def interview_turn(
    request: Request,
    data: TurnRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Send the user's answer (or nothing, to start) and get the coach's next message.

    Returns: {reply, done, options, valueBullets, planCard, summary}
    """
    return await interview_service.interview_turn(db, current_user.id, data.message)


@router.post("/module/{module_number}/turn")
@limiter.limit("30/minute")
async def module_turn(
    request: Request,
    module_number: int,
    data: TurnRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if module_number not in MODULE_NUMBERS:
        raise HTTPException(status_code=404, detail="Module not found")
    try:
        return await interview_service.module_turn(db, current_user.id, module_number, data.message)
    except UpstreamNotReady as e:
        raise HTTPException(status_code=409, detail={"error": str(e), "retryable": True})


@router.get("/transcript")
async def get_transcript(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """The user's conversation so far. The internal dossier is never included."""
    transcript = await transcript_store.get_transcript_by_user(db, current_user.id)
    if not transcript:
        raise HTTPException(status_code=404, detail="No interview found")
    return transcript.to_dict()
