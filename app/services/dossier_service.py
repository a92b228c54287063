"""
Client dossier generation.

The dossier is an internal analysis of the user's conversations. It is
created once the interview completes and extended with one record per
completed module; it is never partially edited. Generation for a user is
guarded by the dossier lease (see app.services.generation_lock):
  - interview analysis skips when another request holds the lease
  - module analysis waits for the lease, since its record must not be lost
"""
from typing import Optional

from app.database import session_scope, utcnow
from app.models.interview_transcript import InterviewTranscript
from app.schemas.dossier import ClientDossier, InterviewAnalysis, ModuleRecord, load_dossier, load_plan
from app.services import transcript_store
from app.services.generation_lock import get_dossier_lock
from app.services.llm_client import get_llm_client
from app.services.prompts import INTERVIEW_ANALYSIS_PROMPT, MODULE_ANALYSIS_PROMPT, format_transcript
from app.services.response_parser import LLMResponseParseError, extract_json_object, parse_model
from app.services.retry import retry_read
from app.utils.logger import get_logger
from app.utils.metrics import inc

logger = get_logger("dossier")

ANALYSIS_MAX_TOKENS = 4096
LEASE_POLL_SECONDS = 1.0


async def _analyse(system: str, transcript: list) -> str:
    return await get_llm_client().complete(
        [{"role": "user", "content": f"TRANSCRIPT:\n\n{format_transcript(transcript)}"}],
        system=system,
        max_tokens=ANALYSIS_MAX_TOKENS,
        json_mode=True,
        fast=True,
    )


async def analyse_interview(transcript: list) -> InterviewAnalysis:
    return parse_model(await _analyse(INTERVIEW_ANALYSIS_PROMPT, transcript), InterviewAnalysis)


async def analyse_module(module_number: int, module_name: str, transcript: list) -> ModuleRecord:
    reply = await _analyse(MODULE_ANALYSIS_PROMPT, transcript)
    data = extract_json_object(reply)
    data.update({
        "moduleNumber": module_number,
        "moduleName": module_name,
        "transcript": transcript,
        "completedAt": utcnow().isoformat(),
    })
    try:
        return ModuleRecord.model_validate(data)
    except ValueError as e:
        raise LLMResponseParseError(f"Module analysis failed validation: {e}", raw=reply) from e


def _interview_ready(t: InterviewTranscript) -> bool:
    return bool(t.interview_complete and t.transcript)


async def _save(user_id: str, dossier: ClientDossier) -> None:
    dossier.last_updated = utcnow().isoformat()
    async with session_scope() as db:
        await transcript_store.upsert_transcript(db, user_id, client_dossier=dossier.to_json())


async def _build_interview_dossier(user_id: str, transcript: InterviewTranscript) -> ClientDossier:
    analysis = await analyse_interview(transcript.transcript)
    if not analysis.client_name:
        coaching_plan = load_plan(transcript.plan_card)
        if coaching_plan is not None and coaching_plan.name:
            analysis.client_name = coaching_plan.name

    dossier = ClientDossier(
        interview_transcript=transcript.transcript,
        interview_analysis=analysis,
        module_records=[],
    )
    await _save(user_id, dossier)
    inc("dossier.created")
    logger.info("dossier.created", extra={"user_id": user_id, "transcript_id": transcript.id})
    return dossier


async def generate_interview_dossier(user_id: str) -> Optional[ClientDossier]:
    """
    Analyse the completed interview into a fresh dossier and save it.

    Returns None when skipped (lease held elsewhere, interview not complete)
    or when analysis failed.
    """
    async with get_dossier_lock().hold(user_id) as acquired:
        if not acquired:
            logger.info("dossier.already_generating", extra={"user_id": user_id})
            return None

        transcript = await transcript_store.read_transcript_with_retry(user_id, _interview_ready)
        if transcript is None or not _interview_ready(transcript):
            logger.warning("dossier.interview_not_ready", extra={"user_id": user_id})
            return None

        try:
            return await _build_interview_dossier(user_id, transcript)
        except Exception as e:
            inc("dossier.errors")
            logger.error("dossier.interview_analysis_failed", extra={"user_id": user_id, "error": str(e)[:200]},
                         exc_info=True)
            return None


async def append_module_record(user_id: str, module_number: int) -> Optional[ClientDossier]:
    """
    Analyse a completed module and add its record to the dossier, replacing
    any earlier record for the same module. Builds the interview part first
    if it is missing.
    """
    lock = get_dossier_lock()
    token = await retry_read(
        lambda: lock.acquire(user_id),
        lambda t: True,
        attempts=int(lock.ttl_seconds / LEASE_POLL_SECONDS) + 1,
        delay_seconds=LEASE_POLL_SECONDS,
        name="dossier_lease",
    )
    if token is None:
        logger.error("dossier.lease_timeout", extra={"user_id": user_id, "module_number": module_number})
        return None

    try:
        transcript = await transcript_store.read_transcript_with_retry(
            user_id, lambda t: t.module_complete(module_number)
        )
        if transcript is None or not transcript.module_complete(module_number):
            logger.warning("dossier.module_not_ready", extra={"user_id": user_id, "module_number": module_number})
            return None

        dossier = load_dossier(transcript.client_dossier)
        if dossier is None:
            dossier = await _build_interview_dossier(user_id, transcript)

        coaching_plan = load_plan(transcript.plan_card)
        module_name = coaching_plan.module(module_number).name if coaching_plan else f"Module {module_number}"
        record = await analyse_module(module_number, module_name, transcript.module_transcript(module_number))

        dossier.module_records = [r for r in dossier.module_records if r.module_number != module_number]
        dossier.module_records.append(record)
        dossier.module_records.sort(key=lambda r: r.module_number)
        await _save(user_id, dossier)
        inc("dossier.module_records")
        logger.info("dossier.module_recorded", extra={"user_id": user_id, "module_number": module_number})
        return dossier
    except Exception as e:
        inc("dossier.errors")
        logger.error("dossier.module_analysis_failed",
                     extra={"user_id": user_id, "module_number": module_number, "error": str(e)[:200]},
                     exc_info=True)
        return None
    finally:
        await lock.release(user_id, token)
