"""
Serious Plan routes.

Generation runs in the background after POST /api/serious-plan returns;
clients poll GET /api/serious-plan/{id} and read `statusSummary`.
"""

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession
from slowapi import Limiter
from slowapi.util import get_remote_address

from app.config import get_settings
from app.database import get_db, utcnow
from app.models.serious_plan import SeriousPlan
from app.models.user import User
from app.middleware.auth import get_current_user, require_owner
from app.services import pdf_service, plan_store, transcript_store
from app.services.email_service import send_plan_ready_email
from app.services.serious_plan_service import (
    GenerationInProgress,
    UpstreamNotReady,
    get_plan_with_artifacts,
    initialize_serious_plan,
    regenerate_plan,
    require_inputs,
)
from app.utils.logger import get_logger

router = APIRouter()
logger = get_logger("serious_plan")
limiter = Limiter(key_func=get_remote_address)


def _not_ready(e: Exception) -> HTTPException:
    return HTTPException(status_code=409, detail={"error": str(e), "retryable": True})


async def get_owned_plan(plan_id: str, user: User, db: AsyncSession) -> SeriousPlan:
    plan = await plan_store.get_plan(db, plan_id)
    if not plan:
        raise HTTPException(status_code=404, detail="Plan not found")
    require_owner(plan.user_id, user)
    return plan


@router.post("")
@limiter.limit("10/minute")
async def create_serious_plan(
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Idempotent: returns the user's plan if one exists, otherwise creates it
    and starts generation. 409 {retryable: true} while the coaching plan or
    dossier is still being prepared.
    """
    existing = await plan_store.get_plan_by_user(db, current_user.id)
    if existing:
        return {"success": True, "planId": existing.id, "created": False}

    # The last module's write may not be visible yet
    transcript = await transcript_store.read_transcript_with_retry(
        current_user.id, lambda t: t.plan_card is not None and t.client_dossier is not None
    )
    try:
        coaching_plan, dossier = require_inputs(transcript)
    except UpstreamNotReady as e:
        raise _not_ready(e)

    result = await initialize_serious_plan(db, current_user.id, transcript, coaching_plan, dossier)
    if not result.success:
        # result.error is already logged by the service and can carry row data
        raise HTTPException(status_code=500, detail="Couldn't start your plan. Please try again.")
    return {"success": True, "planId": result.plan_id, "created": result.created}


@router.get("/latest")
async def get_latest_plan(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    plan = await plan_store.get_plan_by_user(db, current_user.id)
    if not plan:
        raise HTTPException(status_code=404, detail="No plan yet")
    return await get_plan_with_artifacts(db, plan)


@router.get("/{plan_id}")
async def get_plan(
    plan_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    plan = await get_owned_plan(plan_id, current_user, db)
    return await get_plan_with_artifacts(db, plan)


@router.post("/{plan_id}/regenerate")
@limiter.limit("5/minute")
async def regenerate(
    request: Request,
    plan_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Re-run generation for every artifact that isn't complete (and a failed letter)"""
    plan = await get_owned_plan(plan_id, current_user, db)
    transcript = await transcript_store.get_transcript_by_user(db, current_user.id)
    try:
        return await regenerate_plan(db, plan, transcript)
    except (GenerationInProgress, UpstreamNotReady) as e:
        raise _not_ready(e)


@router.post("/{plan_id}/artifacts/{artifact_id}/pdf")
@limiter.limit("20/minute")
async def artifact_pdf(
    request: Request,
    plan_id: str,
    artifact_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    plan = await get_owned_plan(plan_id, current_user, db)
    artifact = await plan_store.get_artifact(db, artifact_id)
    if not artifact or artifact.plan_id != plan.id:
        raise HTTPException(status_code=404, detail="Artifact not found")
    if artifact.generation_status != "complete":
        raise _not_ready(UpstreamNotReady("Artifact is not generated yet"))

    result = await pdf_service.render_artifact_pdf(db, artifact, pdf_service.client_name_of(plan))
    if not result["success"]:
        raise HTTPException(status_code=500, detail=f"PDF generation failed: {result['error']}")
    return result


@router.post("/{plan_id}/bundle-pdf")
@limiter.limit("5/minute")
async def bundle_pdf(
    request: Request,
    plan_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    plan = await get_owned_plan(plan_id, current_user, db)
    if plan.status != "ready":
        raise _not_ready(UpstreamNotReady("Plan is still generating"))

    result = await pdf_service.render_bundle_pdf(db, plan)
    if not result["success"]:
        raise HTTPException(status_code=500, detail=f"Bundle PDF generation failed: {result['error']}")
    return result


@router.post("/{plan_id}/artifact-pdfs")
@limiter.limit("2/minute")
async def all_artifact_pdfs(
    request: Request,
    plan_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    plan = await get_owned_plan(plan_id, current_user, db)
    return await pdf_service.render_all_artifact_pdfs(db, plan)


@router.post("/{plan_id}/email")
@limiter.limit("3/hour")
async def email_plan(
    request: Request,
    plan_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Email the user a summary of their plan with links. Returns {success, error}."""
    plan = await get_owned_plan(plan_id, current_user, db)
    if plan.status != "ready":
        raise _not_ready(UpstreamNotReady("Plan is still generating"))

    metadata = plan.summary_metadata or {}
    artifacts = [a for a in await plan_store.list_artifacts(db, plan.id) if not a.is_transcript]
    result = await send_plan_ready_email(
        current_user.email,
        client_name=metadata.get("clientName") or current_user.name or "there",
        plan_url=f"{get_settings().base_url.rstrip('/')}/serious-plan",
        artifacts=artifacts,
        primary_recommendation=metadata.get("primaryRecommendation"),
        bundle_pdf_url=plan.bundle_pdf_url,
    )
    if result["success"]:
        await plan_store.update_plan(db, plan.id, emailed_at=utcnow())
    return {"success": result["success"], "error": result.get("error")}
