import json

import pytest

from app.models import SeriousPlan, SeriousPlanArtifact
from app.services import pdf_service, storage_service
from tests.fakes.factories import plan_state


def artifact(**overrides):
    values = dict(
        id="a1", plan_id="p1", artifact_key="decision_snapshot", title="Decision Snapshot",
        artifact_type="snapshot", importance_level="must_read", why_important="You keep circling this choice.",
        content_raw="## Options\n\n1. Stay\n2. Leave\n", generation_status="complete",
    )
    values.update(overrides)
    return SeriousPlanArtifact(**values)


def test_artifact_html_renders_markdown_and_callout():
    html = pdf_service.build_artifact_html(artifact(), "Alex")
    assert "<h2>Options</h2>" in html
    assert "<ol>" in html
    assert "Decision Snapshot" in html
    assert "You keep circling this choice." in html
    assert "Must Read" in html
    assert "Alex" in html


def test_artifact_html_escapes_template_values():
    html = pdf_service.build_artifact_html(artifact(title="<script>x</script>"), "Alex")
    assert "<script>x</script>" not in html


def test_transcript_artifact_prints_as_dialogue():
    payload = json.dumps({"type": "transcript", "summary": "You chose to stay.",
                          "messages": [{"role": "assistant", "content": "Why now?"},
                                       {"role": "user", "content": "My boss left."}]})
    html = pdf_service.build_artifact_html(
        artifact(artifact_type="transcript", importance_level="optional", content_raw=payload), "Alex"
    )
    assert "<strong>Coach:</strong> Why now?" in html
    assert "<strong>You:</strong> My boss left." in html
    assert "You chose to stay." in html


def test_bundle_includes_letter_and_only_complete_artifacts():
    plan = SeriousPlan(id="p1", coach_note_content="Alex,\n\nWell done.", summary_metadata={"clientName": "Alex"})
    html = pdf_service.build_bundle_html(plan, [
        artifact(),
        artifact(id="a2", artifact_key="risk_map", title="Risk Map", generation_status="error"),
    ], "Alex")
    assert "Well done." in html
    assert "Decision Snapshot" in html
    assert "Risk Map" not in html


@pytest.fixture
def local_storage(tmp_path, monkeypatch):
    monkeypatch.setattr(storage_service, "LOCAL_PDF_DIR", tmp_path)
    return tmp_path


async def seeded_plan(db, user):
    plan = SeriousPlan(user_id=user.id, status="ready", coach_letter_status="complete",
                       summary_metadata={"clientName": "Alex"})
    db.add(plan)
    await db.commit()
    db.add_all([
        artifact(id="a1", plan_id=plan.id),
        artifact(id="a2", plan_id=plan.id, artifact_key="risk_map", title="Risk Map", display_order=2),
    ])
    await db.commit()
    return plan


async def test_render_artifact_pdf_uploads_and_records(db, user, local_storage, monkeypatch):
    async def fake_pdf(html):
        return b"%PDF-1.7 fake"

    monkeypatch.setattr(pdf_service, "html_to_pdf", fake_pdf)
    plan = await seeded_plan(db, user)
    _, artifacts = await plan_state(plan.id)

    result = await pdf_service.render_artifact_pdf(db, artifacts[0], "Alex")
    assert result["success"]
    assert result["url"].endswith(f"/files/pdfs/{plan.id}/decision_snapshot-a1.pdf")
    assert (local_storage / plan.id / "decision_snapshot-a1.pdf").read_bytes() == b"%PDF-1.7 fake"

    _, artifacts = await plan_state(plan.id)
    assert artifacts[0].pdf_status == "ready"
    assert artifacts[0].pdf_url == result["url"]


async def test_one_failed_render_does_not_stop_the_rest(db, user, local_storage, monkeypatch):
    async def flaky_pdf(html):
        if "Risk Map" in html:
            raise RuntimeError("chromium crashed")
        return b"%PDF"

    monkeypatch.setattr(pdf_service, "html_to_pdf", flaky_pdf)
    plan = await seeded_plan(db, user)

    result = await pdf_service.render_all_artifact_pdfs(db, plan)
    assert result["generated"] == 1
    assert result["failed"] == 1
    assert result["errors"][0].startswith("risk_map:")

    _, artifacts = await plan_state(plan.id)
    assert [a.pdf_status for a in artifacts] == ["ready", "error"]


async def test_bundle_failure_sets_error_status(db, user, local_storage, monkeypatch):
    async def broken_pdf(html):
        raise RuntimeError("no browser")

    monkeypatch.setattr(pdf_service, "html_to_pdf", broken_pdf)
    plan = await seeded_plan(db, user)
    plan_id = plan.id

    result = await pdf_service.render_bundle_pdf(db, plan)
    assert result == {"success": False, "error": "no browser"}
    # The caller's plan is still usable after the failed render
    assert plan.id == plan_id
    assert plan.bundle_pdf_status == "error"
    stored, _ = await plan_state(plan_id)
    assert stored.bundle_pdf_status == "error"
