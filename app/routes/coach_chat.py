"""Post-delivery coach chat routes"""

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession
from slowapi import Limiter
from slowapi.util import get_remote_address

from app.database import get_db
from app.models.user import User
from app.middleware.auth import get_current_user
from app.schemas.serious_plan import CoachChatRequest
from app.routes.serious_plan import get_owned_plan
from app.services import coach_chat_service
from app.utils.logger import get_logger

router = APIRouter()
logger = get_logger("coach_chat")
limiter = Limiter(key_func=get_remote_address)


@router.get("/{plan_id}/messages")
async def list_messages(
    plan_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    plan = await get_owned_plan(plan_id, current_user, db)
    messages = await coach_chat_service.list_messages(db, plan.id)
    return {"messages": [m.to_dict() for m in messages]}


@router.post("/{plan_id}/message")
@limiter.limit("20/minute")
async def send_message(
    request: Request,
    plan_id: str,
    data: CoachChatRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    plan = await get_owned_plan(plan_id, current_user, db)
    try:
        return await coach_chat_service.send_message(db, plan, data.message)
    except Exception as e:
        logger.error("coach_chat.failed", extra={"plan_id": plan.id, "error": str(e)[:200]}, exc_info=True)
        raise HTTPException(status_code=500, detail="The coach couldn't reply just now. Please try again.")
