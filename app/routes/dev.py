"""Demo helpers, mounted only when ENABLE_DEV_ROUTES is on"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import delete

from app.database import get_db
from app.models.coach_chat_message import CoachChatMessage
from app.models.serious_plan import SeriousPlan, SeriousPlanArtifact
from app.models.user import User
from app.middleware.auth import get_current_user
from app.services import plan_store, transcript_store
from app.services.serious_plan_service import artifacts_task_name, letter_task_name
from app.utils.logger import get_logger
from app.worker import get_supervisor

router = APIRouter()
logger = get_logger("dev")


@router.post("/reset")
async def reset_journey(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Delete the user's transcript, plan, artifacts and chat so the demo can restart"""
    plan = await plan_store.get_plan_by_user(db, current_user.id)
    if plan:
        supervisor = get_supervisor()
        await supervisor.cancel(letter_task_name(plan.id))
        await supervisor.cancel(artifacts_task_name(plan.id))
        await db.execute(delete(CoachChatMessage).where(CoachChatMessage.plan_id == plan.id))
        await db.execute(delete(SeriousPlanArtifact).where(SeriousPlanArtifact.plan_id == plan.id))
        await db.execute(delete(SeriousPlan).where(SeriousPlan.id == plan.id))
        await db.commit()

    await transcript_store.delete_transcript(db, current_user.id)
    logger.info("dev.reset", extra={"user_id": current_user.id, "plan_id": plan.id if plan else None})
    return {"success": True}
