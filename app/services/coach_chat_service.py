"""
Post-delivery coach chat: an append-only Q&A log attached to a plan.
"""
from typing import Any, Dict, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.models.coach_chat_message import CoachChatMessage
from app.models.serious_plan import SeriousPlan
from app.services import plan_store, transcript_store
from app.services.llm_client import get_llm_client
from app.services.prompts import build_coach_chat_prompt
from app.utils.logger import get_logger
from app.utils.metrics import inc

logger = get_logger("coach_chat")

# Earlier turns sent back to the model with each question
HISTORY_WINDOW = 20


async def list_messages(db: AsyncSession, plan_id: str) -> List[CoachChatMessage]:
    result = await db.execute(
        select(CoachChatMessage)
        .where(CoachChatMessage.plan_id == plan_id)
        .order_by(CoachChatMessage.created_at, CoachChatMessage.id)
    )
    return list(result.scalars().all())


async def _append(db: AsyncSession, plan_id: str, role: str, content: str) -> CoachChatMessage:
    message = CoachChatMessage(plan_id=plan_id, role=role, content=content)
    db.add(message)
    await db.commit()
    await db.refresh(message)
    return message


async def send_message(db: AsyncSession, plan: SeriousPlan, content: str) -> Dict[str, Any]:
    """
    Append the user's question, answer it with plan context and append the reply.

    The user message is kept even when the model call fails; the error
    propagates to the route.
    """
    history = await list_messages(db, plan.id)
    user_message = await _append(db, plan.id, "user", content)

    metadata = plan.summary_metadata or {}
    transcript = await transcript_store.get_transcript_by_user(db, plan.user_id)
    artifacts = [a for a in await plan_store.list_artifacts(db, plan.id) if not a.is_transcript]

    system = build_coach_chat_prompt(
        client_name=metadata.get("clientName") or "there",
        dossier=transcript.client_dossier if transcript else None,
        plan=transcript.plan_card if transcript else None,
        primary_recommendation=metadata.get("primaryRecommendation") or "Not specified",
        coach_note=plan.coach_note_content,
        artifacts=artifacts,
    )
    messages = [{"role": m.role, "content": m.content} for m in history[-HISTORY_WINDOW:]]
    messages.append({"role": "user", "content": content})

    reply = await get_llm_client().complete(messages, system=system, max_tokens=get_settings().chat_max_tokens)
    assistant_message = await _append(db, plan.id, "assistant", reply.strip())
    inc("coach_chat.messages")
    logger.info("coach_chat.replied", extra={"plan_id": plan.id, "count": len(history) + 2})

    return {
        "userMessage": user_message.to_dict(),
        "assistantMessage": assistant_message.to_dict(),
    }
