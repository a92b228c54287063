"""
Serious Plan persistence: plan rows, artifact rows and their status moves.

Usage:
    plan, created = await plan_store.create_plan_with_artifacts(db, user_id, transcript_id, rows_for)
    claimed = await plan_store.claim_pending_artifacts(db, plan.id, keys)
    await plan_store.complete_artifact(db, artifact_id, {...})
    await plan_store.set_plan_status(db, plan.id, "ready")

Every function commits its own write. Status updates are conditional on the
current status where a concurrent writer could race (claim, fail).
"""
import uuid
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import utcnow
from app.models.serious_plan import SeriousPlan, SeriousPlanArtifact
from app.utils.logger import logger


def dialect_insert(db: AsyncSession, model):
    """INSERT construct that supports ON CONFLICT for the bound dialect"""
    if db.get_bind().dialect.name == "postgresql":
        return pg_insert(model)
    return sqlite_insert(model)


# ========== Plans ==========
async def get_plan(db: AsyncSession, plan_id: str) -> Optional[SeriousPlan]:
    result = await db.execute(
        select(SeriousPlan)
        .where(SeriousPlan.id == plan_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_plan_by_user(db: AsyncSession, user_id: str) -> Optional[SeriousPlan]:
    result = await db.execute(
        select(SeriousPlan)
        .where(SeriousPlan.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def create_plan_with_artifacts(
    db: AsyncSession,
    user_id: str,
    transcript_id: Optional[str],
    build_rows: Callable[[str], List[Dict[str, Any]]],
    summary_metadata: Optional[Dict[str, Any]] = None,
) -> Tuple[SeriousPlan, bool]:
    """
    Create the user's plan and its seed artifacts in one transaction.

    The plan insert is ON CONFLICT (user_id) DO NOTHING, so concurrent callers
    converge on a single plan. Returns (plan, created); seed rows are only
    inserted by the caller that created the plan. Any insert failure rolls
    back the plan row too.
    """
    plan_id = str(uuid.uuid4())
    now = utcnow()
    stmt = dialect_insert(db, SeriousPlan).values(
        id=plan_id,
        user_id=user_id,
        transcript_id=transcript_id,
        status="generating",
        coach_letter_status="pending",
        bundle_pdf_status="not_started",
        summary_metadata=summary_metadata,
        created_at=now,
        updated_at=now,
    ).on_conflict_do_nothing(index_elements=["user_id"])

    try:
        await db.execute(stmt)
        plan = await get_plan_by_user(db, user_id)
        created = plan is not None and plan.id == plan_id
        if created:
            db.add_all([SeriousPlanArtifact(**row) for row in build_rows(plan_id)])
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    if created:
        logger.info("plan.created", extra={"plan_id": plan_id, "user_id": user_id})
    return plan, created


async def update_plan(db: AsyncSession, plan_id: str, **values: Any) -> None:
    values["updated_at"] = utcnow()
    await db.execute(update(SeriousPlan).where(SeriousPlan.id == plan_id).values(**values))
    await db.commit()


async def set_plan_status(db: AsyncSession, plan_id: str, status: str) -> None:
    await update_plan(db, plan_id, status=status)
    logger.info("plan.status_changed", extra={"plan_id": plan_id, "status": status})


async def set_coach_letter(db: AsyncSession, plan_id: str, status: str, content: Optional[str] = None) -> None:
    """Move the letter sub-status. Content is only written on completion."""
    values: Dict[str, Any] = {"coach_letter_status": status}
    if content is not None:
        values["coach_note_content"] = content
        values["coach_letter_generated_at"] = utcnow()
    await update_plan(db, plan_id, **values)


async def set_bundle_pdf(db: AsyncSession, plan_id: str, status: str, url: Optional[str] = None) -> None:
    values: Dict[str, Any] = {"bundle_pdf_status": status}
    if url is not None:
        values["bundle_pdf_url"] = url
    await update_plan(db, plan_id, **values)


# ========== Artifacts ==========
async def list_artifacts(db: AsyncSession, plan_id: str) -> List[SeriousPlanArtifact]:
    result = await db.execute(
        select(SeriousPlanArtifact)
        .where(SeriousPlanArtifact.plan_id == plan_id)
        .order_by(SeriousPlanArtifact.display_order, SeriousPlanArtifact.artifact_key)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def get_artifact(db: AsyncSession, artifact_id: str) -> Optional[SeriousPlanArtifact]:
    result = await db.execute(
        select(SeriousPlanArtifact)
        .where(SeriousPlanArtifact.id == artifact_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def claim_pending_artifacts(db: AsyncSession, plan_id: str, keys: Iterable[str]) -> List[SeriousPlanArtifact]:
    """Move targeted `pending` artifacts to `generating` and return them"""
    keys = list(keys)
    result = await db.execute(
        select(SeriousPlanArtifact.id).where(
            SeriousPlanArtifact.plan_id == plan_id,
            SeriousPlanArtifact.artifact_key.in_(keys),
            SeriousPlanArtifact.generation_status == "pending",
        )
    )
    ids = [row[0] for row in result.all()]
    if not ids:
        return []

    await db.execute(
        update(SeriousPlanArtifact)
        .where(SeriousPlanArtifact.id.in_(ids), SeriousPlanArtifact.generation_status == "pending")
        .values(generation_status="generating", updated_at=utcnow())
    )
    await db.commit()

    result = await db.execute(
        select(SeriousPlanArtifact)
        .where(SeriousPlanArtifact.id.in_(ids), SeriousPlanArtifact.generation_status == "generating")
        .order_by(SeriousPlanArtifact.display_order)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def complete_artifact(db: AsyncSession, artifact_id: str, values: Dict[str, Any]) -> None:
    # Keyed by mapped attribute: `artifact_type` lives in the "type" column
    changes = {getattr(SeriousPlanArtifact, key): value for key, value in values.items()}
    changes[SeriousPlanArtifact.generation_status] = "complete"
    changes[SeriousPlanArtifact.updated_at] = utcnow()
    await db.execute(
        update(SeriousPlanArtifact)
        .where(SeriousPlanArtifact.id == artifact_id)
        .values(changes)
    )
    await db.commit()


async def fail_generating_artifacts(db: AsyncSession, artifact_ids: Iterable[str]) -> int:
    """Force the given artifacts from `generating` to `error`. Returns rows changed."""
    artifact_ids = list(artifact_ids)
    if not artifact_ids:
        return 0
    result = await db.execute(
        update(SeriousPlanArtifact)
        .where(SeriousPlanArtifact.id.in_(artifact_ids), SeriousPlanArtifact.generation_status == "generating")
        .values(generation_status="error", updated_at=utcnow())
    )
    await db.commit()
    return result.rowcount or 0


async def reset_unfinished_artifacts(db: AsyncSession, plan_id: str) -> List[str]:
    """Set every generated (non-transcript) artifact that is not `complete` back to `pending`"""
    result = await db.execute(
        select(SeriousPlanArtifact.artifact_key).where(
            SeriousPlanArtifact.plan_id == plan_id,
            SeriousPlanArtifact.artifact_type != "transcript",
            SeriousPlanArtifact.generation_status != "complete",
        )
    )
    keys = [row[0] for row in result.all()]
    if keys:
        await db.execute(
            update(SeriousPlanArtifact)
            .where(SeriousPlanArtifact.plan_id == plan_id, SeriousPlanArtifact.artifact_key.in_(keys))
            .values(generation_status="pending", updated_at=utcnow())
        )
        await db.commit()
    return keys


async def set_artifact_pdf(db: AsyncSession, artifact_id: str, status: str, url: Optional[str] = None) -> None:
    values: Dict[str, Any] = {"pdf_status": status, "updated_at": utcnow()}
    if url is not None:
        values["pdf_url"] = url
    await db.execute(update(SeriousPlanArtifact).where(SeriousPlanArtifact.id == artifact_id).values(**values))
    await db.commit()


# ========== Status aggregation ==========
def status_summary(plan: SeriousPlan, artifacts: List[SeriousPlanArtifact]) -> Dict[str, Any]:
    """
    Side-by-side view of the two generation tracks. Plan readiness is driven by
    the artifacts only; the letter is reported separately.
    """
    counts = {"pending": 0, "generating": 0, "complete": 0, "error": 0}
    for artifact in artifacts:
        counts[artifact.generation_status] = counts.get(artifact.generation_status, 0) + 1

    return {
        "planStatus": plan.status,
        "artifactCounts": counts,
        "artifactsTotal": len(artifacts),
        "artifactsReady": plan.status == "ready",
        "letterStatus": plan.coach_letter_status,
        "letterReady": plan.coach_letter_status == "complete",
        "bundlePdfStatus": plan.bundle_pdf_status,
        "inProgress": plan.status == "generating" or plan.coach_letter_status in ("pending", "generating"),
    }
