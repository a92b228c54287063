"""
Interview and coaching-module chat turns.

Each turn appends the user's message, asks the coach model for the next
reply, strips the control tokens out of it, and saves the updated log with
a single upsert. Completion tokens hand off to background work:
  - interview complete -> dossier analysis
  - module complete    -> module record (and, after module 3, plan auto-start)
"""
from typing import Any, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.database import utcnow
from app.models.interview_transcript import MODULE_NUMBERS
from app.models.user import User
from app.schemas.dossier import load_dossier, load_plan
from app.services import dossier_service, transcript_store
from app.services.chat_tokens import ParsedReply, parse_reply
from app.services.llm_client import get_llm_client
from app.services.prompts import INTERVIEW_SYSTEM_PROMPT, module_system_prompt
from app.services.serious_plan_service import UpstreamNotReady, schedule_auto_start
from app.utils.logger import get_logger
from app.utils.metrics import inc
from app.worker import get_supervisor

logger = get_logger("interview")

# Interview length the progress bar is scaled to
EXPECTED_INTERVIEW_ANSWERS = 20
EXPECTED_MODULE_ANSWERS = 12


def _progress(messages: List[dict], expected: int) -> int:
    answers = sum(1 for m in messages if m.get("role") == "user")
    return min(95, answers * 100 // expected)


def _conversation(history: List[dict], message: Optional[str]) -> List[dict]:
    messages = list(history)
    if message and message.strip():
        messages.append({"role": "user", "content": message.strip()})
    return messages


def _for_model(messages: List[dict]) -> List[dict]:
    # Providers require a user message first
    if not messages or messages[0]["role"] != "user":
        return [{"role": "user", "content": "Hi, I'm ready to start."}] + messages
    return messages


def _turn_response(parsed: ParsedReply, done: bool) -> Dict[str, Any]:
    return {
        "reply": parsed.reply,
        "done": done,
        "options": parsed.options,
        "valueBullets": parsed.value_bullets,
        "planCard": parsed.plan_card,
        "summary": parsed.summary,
    }


async def _capture_name(db: AsyncSession, user_id: str, name: Optional[str]) -> None:
    if not name:
        return
    await db.execute(
        update(User)
        .where(User.id == user_id, User.name.is_(None))
        .values(name=name, updated_at=utcnow())
    )
    await db.commit()


async def interview_turn(db: AsyncSession, user_id: str, message: Optional[str]) -> Dict[str, Any]:
    transcript = await transcript_store.get_transcript_by_user(db, user_id)
    history = (transcript.transcript or []) if transcript else []
    messages = _conversation(history, message)

    reply = await get_llm_client().complete(
        _for_model(messages),
        system=INTERVIEW_SYSTEM_PROMPT,
        max_tokens=get_settings().chat_max_tokens,
    )
    parsed = parse_reply(reply)
    messages.append({"role": "assistant", "content": parsed.reply})

    already_complete = bool(transcript and transcript.interview_complete)
    values: Dict[str, Any] = {"transcript": messages}
    if parsed.interview_complete:
        values.update(interview_complete=True, progress=100, current_module=1)
        if parsed.value_bullets:
            values["value_bullets"] = parsed.value_bullets
    elif not already_complete:
        values["progress"] = _progress(messages, EXPECTED_INTERVIEW_ANSWERS)
    if parsed.plan_card:
        values["plan_card"] = parsed.plan_card

    await transcript_store.upsert_transcript(db, user_id, **values)
    inc("interview.turns")

    if parsed.plan_card:
        await _capture_name(db, user_id, parsed.plan_card.get("name"))

    if parsed.interview_complete and not already_complete:
        logger.info("interview.completed", extra={"user_id": user_id})
        get_supervisor().spawn(f"dossier:{user_id}:interview", dossier_service.generate_interview_dossier(user_id))

    return _turn_response(parsed, parsed.interview_complete)


async def module_turn(db: AsyncSession, user_id: str, module_number: int, message: Optional[str]) -> Dict[str, Any]:
    """
    One turn of coaching module 1-3. Raises UpstreamNotReady until the
    interview (and its plan card) is complete.
    """
    if module_number not in MODULE_NUMBERS:
        raise ValueError(f"Unknown module {module_number}")

    transcript = await transcript_store.get_transcript_by_user(db, user_id)
    if transcript is None or not transcript.interview_complete:
        raise UpstreamNotReady("Interview not complete")

    coaching_plan = load_plan(transcript.plan_card)
    dossier = load_dossier(transcript.client_dossier)
    messages = _conversation(transcript.module_transcript(module_number), message)

    reply = await get_llm_client().complete(
        _for_model(messages),
        system=module_system_prompt(module_number, coaching_plan, dossier),
        max_tokens=get_settings().chat_max_tokens,
    )
    parsed = parse_reply(reply)
    messages.append({"role": "assistant", "content": parsed.reply})

    already_complete = transcript.module_complete(module_number)
    values: Dict[str, Any] = {f"module{module_number}_transcript": messages}
    if parsed.module_complete:
        values[f"module{module_number}_complete"] = True
        if parsed.summary:
            values[f"module{module_number}_summary"] = parsed.summary
        values["current_module"] = max(transcript.current_module or 0, min(module_number + 1, MODULE_NUMBERS[-1]))

    await transcript_store.upsert_transcript(db, user_id, **values)
    inc("module.turns")

    if parsed.module_complete and not already_complete:
        logger.info("module.completed", extra={"user_id": user_id, "module_number": module_number})
        get_supervisor().spawn(f"dossier:{user_id}:module{module_number}",
                               _record_module(user_id, module_number))

    response = _turn_response(parsed, parsed.module_complete)
    response["progress"] = 100 if parsed.module_complete else _progress(messages, EXPECTED_MODULE_ANSWERS)
    return response


async def _record_module(user_id: str, module_number: int) -> None:
    await dossier_service.append_module_record(user_id, module_number)
    if module_number == MODULE_NUMBERS[-1]:
        schedule_auto_start(user_id)
