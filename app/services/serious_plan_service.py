"""
Serious Plan pipeline: initialization, the two generation workers,
regeneration, auto-start and the polled read model.

Initialization is synchronous up to seeding; generation then runs as two
independent supervised tasks that race:
  - coach letter:   plan.coach_letter_status  pending -> generating -> complete | error
  - bulk artifacts: artifact.generation_status pending -> generating -> complete | error,
                    then plan.status -> ready (or error for the whole batch)
Plan readiness depends on the artifacts only.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.database import session_scope
from app.models.interview_transcript import InterviewTranscript
from app.models.serious_plan import SeriousPlan, SeriousPlanArtifact
from app.schemas.dossier import ClientDossier, CoachingPlan, load_dossier, load_plan
from app.schemas.serious_plan import ArtifactsResult
from app.services import plan_store, transcript_store
from app.services.artifact_seeder import (
    build_placeholder_artifacts,
    build_transcript_artifacts,
    planned_artifact_keys,
)
from app.services.llm_client import get_llm_client
from app.services.plan_horizon import determine_plan_horizon
from app.services.prompts import build_artifacts_prompt, build_coach_letter_prompt
from app.services.response_parser import parse_model
from app.services.retry import run_with_backoff
from app.utils.logger import logger
from app.utils.metrics import inc
from app.worker import get_supervisor


class UpstreamNotReady(Exception):
    """Transcript, plan card or dossier isn't available yet. Safe to retry."""


class GenerationInProgress(Exception):
    """A generation task for this plan is still running."""


@dataclass
class InitResult:
    plan_id: str
    success: bool
    created: bool = False
    error: Optional[str] = None


@dataclass
class GenerationContext:
    plan_id: str
    client_name: str
    coaching_plan: CoachingPlan
    dossier: Optional[ClientDossier] = None
    artifact_keys: List[str] = field(default_factory=list)


def letter_task_name(plan_id: str) -> str:
    return f"plan:{plan_id}:letter"


def artifacts_task_name(plan_id: str) -> str:
    return f"plan:{plan_id}:artifacts"


def resolve_client_name(coaching_plan: CoachingPlan, dossier: Optional[ClientDossier]) -> str:
    if coaching_plan.name:
        return coaching_plan.name
    if dossier is not None and dossier.interview_analysis is not None and dossier.interview_analysis.client_name:
        return dossier.interview_analysis.client_name
    return "Client"


def require_inputs(transcript: Optional[InterviewTranscript]) -> tuple:
    """Validated (coaching_plan, dossier) from a transcript, or UpstreamNotReady"""
    if transcript is None:
        raise UpstreamNotReady("No interview transcript found")
    coaching_plan = load_plan(transcript.plan_card)
    if coaching_plan is None:
        raise UpstreamNotReady("Coaching plan not ready yet")
    dossier = load_dossier(transcript.client_dossier)
    if dossier is None:
        raise UpstreamNotReady("Client dossier not ready yet")
    return coaching_plan, dossier


# ========== Initialization ==========
async def initialize_serious_plan(db: AsyncSession, user_id: str, transcript: InterviewTranscript,
                                  coaching_plan: CoachingPlan, dossier: Optional[ClientDossier]) -> InitResult:
    """
    Return the user's existing plan, or create it, seed its artifacts and
    launch both generation workers. Never launches workers for a plan it
    didn't create.
    """
    existing = await plan_store.get_plan_by_user(db, user_id)
    if existing is not None:
        return InitResult(plan_id=existing.id, success=True)

    client_name = resolve_client_name(coaching_plan, dossier)
    artifact_keys = planned_artifact_keys(coaching_plan)
    horizon = determine_plan_horizon(dossier)

    def seed_rows(plan_id: str) -> List[Dict[str, Any]]:
        return (build_transcript_artifacts(plan_id, transcript, dossier)
                + build_placeholder_artifacts(plan_id, artifact_keys, coaching_plan))

    try:
        plan, created = await plan_store.create_plan_with_artifacts(
            db, user_id, transcript.id, seed_rows,
            summary_metadata={
                "clientName": client_name,
                "planHorizonType": horizon.type,
                "planHorizonRationale": horizon.rationale,
            },
        )
    except Exception as e:
        logger.error("plan.init_failed", extra={"user_id": user_id, "error": str(e)[:200]}, exc_info=True)
        return InitResult(plan_id="", success=False, error=str(e))

    if not created:
        return InitResult(plan_id=plan.id, success=True)

    logger.info("plan.initialized", extra={"plan_id": plan.id, "user_id": user_id,
                                           "keys": artifact_keys, "horizon": horizon.type})
    inc("plans.initialized")
    launch_workers(GenerationContext(plan.id, client_name, coaching_plan, dossier, artifact_keys))
    return InitResult(plan_id=plan.id, success=True, created=True)


def launch_workers(ctx: GenerationContext, letter: bool = True, artifacts: bool = True) -> None:
    supervisor = get_supervisor()
    if letter:
        supervisor.spawn(letter_task_name(ctx.plan_id),
                         generate_coach_letter(ctx.plan_id, ctx.client_name, ctx.coaching_plan, ctx.dossier))
    if artifacts:
        supervisor.spawn(artifacts_task_name(ctx.plan_id),
                         generate_artifacts(ctx.plan_id, ctx.client_name, ctx.coaching_plan, ctx.dossier,
                                            ctx.artifact_keys))


# ========== Workers ==========
async def generate_coach_letter(plan_id: str, client_name: str, coaching_plan: CoachingPlan,
                                dossier: Optional[ClientDossier]) -> None:
    """Write the closing note. On failure the status goes to `error` and prior content stays."""
    settings = get_settings()
    async with session_scope() as db:
        try:
            await plan_store.set_coach_letter(db, plan_id, "generating")
            prompt = build_coach_letter_prompt(client_name, coaching_plan, dossier)
            letter = await get_llm_client().complete(
                [{"role": "user", "content": prompt}],
                max_tokens=settings.coach_letter_max_tokens,
            )
            await plan_store.set_coach_letter(db, plan_id, "complete", letter.strip())
            inc("letters.complete")
            logger.info("letter.generated", extra={"plan_id": plan_id})
        except asyncio.CancelledError:
            await db.rollback()
            await plan_store.set_coach_letter(db, plan_id, "error")
            raise
        except Exception as e:
            inc("letters.error")
            logger.error("letter.generation_failed", extra={"plan_id": plan_id, "error": str(e)[:200]},
                         exc_info=True)
            await db.rollback()
            await plan_store.set_coach_letter(db, plan_id, "error")


async def generate_artifacts(plan_id: str, client_name: str, coaching_plan: CoachingPlan,
                             dossier: Optional[ClientDossier], artifact_keys: List[str]) -> None:
    """
    Generate every targeted `pending` artifact in one LLM call.

    Returned artifacts are matched by key; targeted keys the model skipped are
    completed with the "not generated" filler. Any failure (provider error,
    unparseable reply) sends the whole batch to `error` and the plan with it.
    Artifacts outside this batch are never touched.
    """
    settings = get_settings()
    async with session_scope() as db:
        claimed: List[SeriousPlanArtifact] = []
        try:
            claimed = await plan_store.claim_pending_artifacts(db, plan_id, artifact_keys)
            if not claimed:
                logger.info("artifacts.nothing_pending", extra={"plan_id": plan_id})
                await plan_store.set_plan_status(db, plan_id, "ready")
                return

            keys = [a.artifact_key for a in claimed]
            horizon = determine_plan_horizon(dossier)
            prompt = build_artifacts_prompt(client_name, coaching_plan, dossier, horizon, keys)
            reply = await get_llm_client().complete(
                [{"role": "user", "content": prompt}],
                max_tokens=settings.artifacts_max_tokens,
                json_mode=True,
            )
            result = parse_model(reply, ArtifactsResult)

            if result.metadata is not None:
                plan = await plan_store.get_plan(db, plan_id)
                metadata = dict(plan.summary_metadata or {}) if plan else {}
                metadata.update(result.metadata.model_dump(by_alias=True, exclude_none=True))
                await plan_store.update_plan(db, plan_id, summary_metadata=metadata)

            generated = {}
            for item in result.artifacts:
                generated.setdefault(item.artifact_key, item)

            for artifact in claimed:
                item = generated.get(artifact.artifact_key)
                if item is None:
                    await plan_store.complete_artifact(db, artifact.id, {
                        "content_raw": settings.artifact_not_generated_text,
                    })
                    continue
                await plan_store.complete_artifact(db, artifact.id, {
                    "title": item.title or artifact.title,
                    "artifact_type": item.type or artifact.artifact_type,
                    "importance_level": item.importance_level or artifact.importance_level,
                    "why_important": item.why_important or artifact.why_important,
                    "content_raw": item.content,
                    "artifact_metadata": item.metadata,
                })

            missing = [k for k in keys if k not in generated]
            extra = [k for k in generated if k not in keys]
            if missing or extra:
                logger.warning("artifacts.partial_result", extra={"plan_id": plan_id, "keys": missing,
                                                                  "count": len(extra)})

            await plan_store.set_plan_status(db, plan_id, "ready")
            inc("artifacts.batches_complete")
            logger.info("artifacts.generated", extra={"plan_id": plan_id, "count": len(claimed)})
        except asyncio.CancelledError:
            await _fail_batch(db, plan_id, claimed)
            raise
        except Exception as e:
            inc("artifacts.batches_error")
            logger.error("artifacts.generation_failed", extra={"plan_id": plan_id, "error": str(e)[:200]},
                         exc_info=True)
            await _fail_batch(db, plan_id, claimed)


async def _fail_batch(db: AsyncSession, plan_id: str, claimed: List[SeriousPlanArtifact]) -> None:
    # Read ids before the rollback expires the rows
    ids = [a.id for a in claimed]
    await db.rollback()
    failed = await plan_store.fail_generating_artifacts(db, ids)
    await plan_store.set_plan_status(db, plan_id, "error")
    logger.info("artifacts.batch_failed", extra={"plan_id": plan_id, "count": failed})


# ========== Regenerate ==========
async def regenerate_plan(db: AsyncSession, plan: SeriousPlan, transcript: Optional[InterviewTranscript]) -> Dict[str, Any]:
    """
    Re-run generation for every generated artifact that isn't `complete`,
    and for the letter if it failed.
    """
    supervisor = get_supervisor()
    if supervisor.is_running(artifacts_task_name(plan.id)):
        raise GenerationInProgress("Artifacts are still generating")

    coaching_plan, dossier = require_inputs(transcript)
    client_name = resolve_client_name(coaching_plan, dossier)

    keys = await plan_store.reset_unfinished_artifacts(db, plan.id)
    retry_letter = plan.coach_letter_status == "error" and not supervisor.is_running(letter_task_name(plan.id))

    if keys:
        await plan_store.set_plan_status(db, plan.id, "generating")
    if retry_letter:
        await plan_store.set_coach_letter(db, plan.id, "pending")

    logger.info("plan.regenerate", extra={"plan_id": plan.id, "keys": keys, "status": plan.status})
    launch_workers(GenerationContext(plan.id, client_name, coaching_plan, dossier, keys),
                   letter=retry_letter, artifacts=bool(keys))
    return {"planId": plan.id, "artifactKeys": keys, "coachLetter": retry_letter}


# ========== Auto-start ==========
def _ready_for_plan(transcript: InterviewTranscript) -> bool:
    return transcript.plan_card is not None and transcript.client_dossier is not None


async def auto_start_serious_plan(user_id: str, delays: Optional[List[float]] = None) -> bool:
    """
    Poll for the plan card and dossier on a fixed backoff schedule and
    initialize the plan once both exist. Gives up after the last delay.
    """
    delays = get_settings().auto_start_delays if delays is None else delays

    async def attempt(n: int) -> bool:
        logger.info("auto_start.attempt", extra={"user_id": user_id, "attempt": n})
        async with session_scope() as db:
            if await plan_store.get_plan_by_user(db, user_id) is not None:
                return True
            transcript = await transcript_store.get_transcript_by_user(db, user_id)
            if transcript is None or not _ready_for_plan(transcript):
                return False
            coaching_plan, dossier = require_inputs(transcript)
            result = await initialize_serious_plan(db, user_id, transcript, coaching_plan, dossier)
            return result.success

    return await run_with_backoff(attempt, delays, name=f"auto_start:{user_id}")


def schedule_auto_start(user_id: str) -> None:
    get_supervisor().spawn(f"auto_start:{user_id}", auto_start_serious_plan(user_id))


# ========== Read model ==========
async def get_plan_with_artifacts(db: AsyncSession, plan: SeriousPlan) -> Dict[str, Any]:
    artifacts = await plan_store.list_artifacts(db, plan.id)
    data = plan.to_dict()
    data["artifacts"] = [a.to_dict() for a in artifacts]
    data["statusSummary"] = plan_store.status_summary(plan, artifacts)
    return data
