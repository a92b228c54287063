"""
Serious Plan PDFs.

Artifact markdown is converted to HTML, laid into the print templates under
app/templates/pdf, and printed to a Letter-size PDF by headless Chromium.
Every render launches its own browser and closes it whatever happens.

Status columns follow not_started -> generating -> ready | error, per artifact
and for the plan bundle.
"""
import json
from datetime import datetime
from typing import Any, Dict, List

import markdown
from playwright.async_api import async_playwright
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.serious_plan import SeriousPlan, SeriousPlanArtifact
from app.services import plan_store
from app.services.gateway import get_gateway
from app.services.storage_service import upload_pdf
from app.utils.logger import get_logger
from app.utils.metrics import inc, track_duration
from app.utils.templates import render

logger = get_logger("pdf")

MARKDOWN_EXTENSIONS = ["extra", "sane_lists"]
CHROMIUM_ARGS = ["--no-sandbox", "--disable-setuid-sandbox", "--disable-dev-shm-usage", "--disable-gpu"]

_IMPORTANCE_LABELS = {
    "must_read": "Must Read",
    "recommended": "Recommended",
}


def markdown_to_html(text: str) -> str:
    return markdown.markdown(text or "", extensions=MARKDOWN_EXTENSIONS)


def _transcript_markdown(content_raw: str) -> str:
    """Transcript artifacts store a JSON payload; print it as a dialogue"""
    try:
        payload = json.loads(content_raw or "{}")
    except json.JSONDecodeError:
        return content_raw or ""
    parts = []
    if payload.get("summary"):
        parts.append(f"> {payload['summary']}")
    for turn in payload.get("messages") or []:
        speaker = "Coach" if turn.get("role") == "assistant" else "You"
        parts.append(f"**{speaker}:** {turn.get('content', '')}")
    return "\n\n".join(parts)


def artifact_content_html(artifact: SeriousPlanArtifact) -> str:
    if artifact.is_transcript:
        return markdown_to_html(_transcript_markdown(artifact.content_raw))
    return markdown_to_html(artifact.content_raw or "")


def _generated_on() -> str:
    return datetime.now().strftime("%B %d, %Y").replace(" 0", " ")


def build_artifact_html(artifact: SeriousPlanArtifact, client_name: str) -> str:
    importance = artifact.importance_level if artifact.importance_level in _IMPORTANCE_LABELS else "optional"
    return render(
        "pdf/artifact.html",
        artifact=artifact,
        client_name=client_name,
        content_html=artifact_content_html(artifact),
        importance_class=importance.replace("_", "-"),
        importance_label=_IMPORTANCE_LABELS.get(importance, "Optional"),
        generated_on=_generated_on(),
    )


def build_bundle_html(plan: SeriousPlan, artifacts: List[SeriousPlanArtifact], client_name: str) -> str:
    sections = [
        {
            "title": a.title,
            "why_important": a.why_important,
            "content_html": artifact_content_html(a),
        }
        for a in artifacts
        if a.generation_status == "complete"
    ]
    letter = markdown_to_html(plan.coach_note_content) if plan.coach_note_content else None
    return render(
        "pdf/bundle.html",
        client_name=client_name,
        coach_letter_html=letter,
        sections=sections,
        generated_on=_generated_on(),
    )


async def _print_pdf(html: str) -> bytes:
    async with async_playwright() as p:
        browser = await p.chromium.launch(headless=True, args=CHROMIUM_ARGS)
        try:
            page = await browser.new_page()
            await page.set_content(html, wait_until="networkidle")
            return await page.pdf(
                format="Letter",
                print_background=True,
                margin={"top": "0", "right": "0", "bottom": "0", "left": "0"},
            )
        finally:
            await browser.close()


async def html_to_pdf(html: str) -> bytes:
    async with track_duration("playwright", "pdf"):
        return await get_gateway().execute("playwright", _print_pdf, html)


def client_name_of(plan: SeriousPlan) -> str:
    return (plan.summary_metadata or {}).get("clientName") or "Client"


async def render_artifact_pdf(db: AsyncSession, artifact: SeriousPlanArtifact, client_name: str) -> Dict[str, Any]:
    """Render, upload and record one artifact's PDF. Returns {success, url} or {success, error}."""
    artifact_id = artifact.id
    try:
        await plan_store.set_artifact_pdf(db, artifact_id, "generating")
        pdf = await html_to_pdf(build_artifact_html(artifact, client_name))
        url = await upload_pdf(f"{artifact.plan_id}/{artifact.artifact_key}-{artifact.id}.pdf", pdf)
        await plan_store.set_artifact_pdf(db, artifact_id, "ready", url)
        inc("pdf.artifacts_rendered")
        logger.info("pdf.artifact_rendered", extra={"artifact_id": artifact.id, "artifact_key": artifact.artifact_key})
        return {"success": True, "url": url}
    except Exception as e:
        inc("pdf.errors")
        logger.error("pdf.artifact_failed", extra={"artifact_id": artifact_id, "error": str(e)[:200]}, exc_info=True)
        await db.rollback()
        await plan_store.set_artifact_pdf(db, artifact_id, "error")
        return {"success": False, "error": str(e)}


async def render_bundle_pdf(db: AsyncSession, plan: SeriousPlan) -> Dict[str, Any]:
    """One PDF with the coach letter, a contents page and every completed artifact"""
    plan_id = plan.id
    try:
        await plan_store.set_bundle_pdf(db, plan_id, "generating")
        artifacts = await plan_store.list_artifacts(db, plan_id)
        pdf = await html_to_pdf(build_bundle_html(plan, artifacts, client_name_of(plan)))
        url = await upload_pdf(f"{plan_id}/serious-plan-bundle-{plan_id}.pdf", pdf)
        await plan_store.set_bundle_pdf(db, plan_id, "ready", url)
        inc("pdf.bundles_rendered")
        logger.info("pdf.bundle_rendered", extra={"plan_id": plan_id, "count": len(artifacts)})
        return {"success": True, "url": url}
    except Exception as e:
        inc("pdf.errors")
        logger.error("pdf.bundle_failed", extra={"plan_id": plan_id, "error": str(e)[:200]}, exc_info=True)
        await db.rollback()
        await plan_store.set_bundle_pdf(db, plan_id, "error")
        # The rollback expired the caller's plan
        await db.refresh(plan)
        return {"success": False, "error": str(e)}


async def render_all_artifact_pdfs(db: AsyncSession, plan: SeriousPlan) -> Dict[str, Any]:
    """Render each completed artifact in turn; one failure doesn't stop the rest"""
    client_name = client_name_of(plan)
    generated, errors = 0, []
    artifacts = await plan_store.list_artifacts(db, plan.id)
    # Detached rows keep their values when a failed render rolls the session back
    for artifact in artifacts:
        db.expunge(artifact)
    for artifact in artifacts:
        if artifact.generation_status != "complete":
            continue
        key = artifact.artifact_key
        result = await render_artifact_pdf(db, artifact, client_name)
        if result["success"]:
            generated += 1
        else:
            errors.append(f"{key}: {result['error']}")
    return {"success": not errors, "generated": generated, "failed": len(errors), "errors": errors}
