import pytest

from app import database
from app.config import get_settings
from app.services import plan_store
from app.services import serious_plan_service as sps
from app.schemas.dossier import CoachingPlan, load_dossier
from app.services.artifact_seeder import DEFAULT_ARTIFACT_KEYS
from app.worker import get_supervisor
from tests.fakes.factories import DOSSIER, PLAN_CARD, make_transcript, plan_state
from tests.fakes.fake_llm import artifacts_reply


async def start(db, user, transcript):
    coaching_plan, dossier = sps.require_inputs(transcript)
    return await sps.initialize_serious_plan(db, user.id, transcript, coaching_plan, dossier)


def generated(artifacts):
    return [a for a in artifacts if not a.is_transcript]


async def test_initialize_generates_letter_and_artifacts(db, user, fake_llm):
    fake_llm.on("letter", "Alex,\n\nYou did the work.")
    fake_llm.on("artifacts", artifacts_reply(DEFAULT_ARTIFACT_KEYS))
    transcript = await make_transcript(db, user)

    result = await start(db, user, transcript)
    assert result.success and result.created
    await get_supervisor().wait_idle(timeout=5)

    plan, artifacts = await plan_state(result.plan_id)
    assert plan.status == "ready"
    assert plan.coach_letter_status == "complete"
    assert plan.coach_note_content.startswith("Alex,")
    assert plan.summary_metadata["clientName"] == "Alex"
    assert plan.summary_metadata["planHorizonType"] == "6_months"
    assert plan.summary_metadata["primaryRecommendation"] == "Stay and renegotiate"

    assert len(artifacts) == 8
    assert all(a.generation_status == "complete" for a in artifacts)
    assert [a.artifact_key for a in generated(artifacts)] == DEFAULT_ARTIFACT_KEYS
    assert generated(artifacts)[0].importance_level == "must_read"

    letter_call = fake_llm.calls_for("letter")[0]
    assert letter_call.max_tokens == get_settings().coach_letter_max_tokens
    artifacts_call = fake_llm.calls_for("artifacts")[0]
    assert artifacts_call.json_mode
    assert artifacts_call.max_tokens == get_settings().artifacts_max_tokens


async def test_initialize_is_idempotent(db, user, fake_llm):
    fake_llm.on("artifacts", artifacts_reply(DEFAULT_ARTIFACT_KEYS))
    transcript = await make_transcript(db, user)

    first = await start(db, user, transcript)
    second = await start(db, user, transcript)
    await get_supervisor().wait_idle(timeout=5)

    assert second.success and not second.created
    assert second.plan_id == first.plan_id
    assert len(fake_llm.calls_for("artifacts")) == 1
    _, artifacts = await plan_state(first.plan_id)
    assert len(artifacts) == 8


async def test_skipped_keys_get_filler(db, user, fake_llm):
    fake_llm.on("artifacts", artifacts_reply(["action_plan", "action_plan", "not_requested"]))
    transcript = await make_transcript(db, user)

    result = await start(db, user, transcript)
    await get_supervisor().wait_idle(timeout=5)

    plan, artifacts = await plan_state(result.plan_id)
    assert plan.status == "ready"
    by_key = {a.artifact_key: a for a in artifacts}
    assert "not_requested" not in by_key
    assert by_key["action_plan"].content_raw.startswith("# action_plan")
    assert by_key["decision_snapshot"].generation_status == "complete"
    assert by_key["decision_snapshot"].content_raw == get_settings().artifact_not_generated_text


@pytest.mark.parametrize("reply", [RuntimeError("provider down"), '{"artifacts": [{"artifact_key": "x", "con'])
async def test_batch_failure_fails_only_the_batch(db, user, fake_llm, reply):
    fake_llm.on("artifacts", reply)
    transcript = await make_transcript(db, user)

    result = await start(db, user, transcript)
    await get_supervisor().wait_idle(timeout=5)

    plan, artifacts = await plan_state(result.plan_id)
    assert plan.status == "error"
    assert all(a.generation_status == "error" for a in generated(artifacts))
    assert all(a.generation_status == "complete" for a in artifacts if a.is_transcript)
    # The letter runs on its own track
    assert plan.coach_letter_status == "complete"


async def test_letter_failure_does_not_block_plan(db, user, fake_llm):
    fake_llm.on("letter", RuntimeError("overloaded"))
    fake_llm.on("artifacts", artifacts_reply(DEFAULT_ARTIFACT_KEYS))
    transcript = await make_transcript(db, user)

    result = await start(db, user, transcript)
    await get_supervisor().wait_idle(timeout=5)

    plan, _ = await plan_state(result.plan_id)
    assert plan.status == "ready"
    assert plan.coach_letter_status == "error"
    assert plan.coach_note_content is None


async def test_regenerate_retries_failed_work(db, user, fake_llm):
    fake_llm.on("letter", RuntimeError("overloaded"))
    fake_llm.on("artifacts", RuntimeError("provider down"))
    transcript = await make_transcript(db, user)
    result = await start(db, user, transcript)
    await get_supervisor().wait_idle(timeout=5)

    fake_llm.on("letter", "Alex,\n\nSecond try.")
    fake_llm.on("artifacts", artifacts_reply(DEFAULT_ARTIFACT_KEYS))
    plan, _ = await plan_state(result.plan_id)
    response = await sps.regenerate_plan(db, plan, transcript)
    assert response["artifactKeys"] == DEFAULT_ARTIFACT_KEYS
    assert response["coachLetter"] is True
    await get_supervisor().wait_idle(timeout=5)

    plan, artifacts = await plan_state(result.plan_id)
    assert plan.status == "ready"
    assert plan.coach_letter_status == "complete"
    assert all(a.generation_status == "complete" for a in artifacts)


async def test_regenerate_with_nothing_to_do(db, user, fake_llm):
    fake_llm.on("artifacts", artifacts_reply(DEFAULT_ARTIFACT_KEYS))
    transcript = await make_transcript(db, user)
    result = await start(db, user, transcript)
    await get_supervisor().wait_idle(timeout=5)

    plan, _ = await plan_state(result.plan_id)
    response = await sps.regenerate_plan(db, plan, transcript)
    assert response == {"planId": plan.id, "artifactKeys": [], "coachLetter": False}
    assert not get_supervisor().running()


async def test_regenerate_refused_while_generating(db, user, fake_llm):
    gate = fake_llm.gate("artifacts")
    fake_llm.on("artifacts", artifacts_reply(DEFAULT_ARTIFACT_KEYS))
    transcript = await make_transcript(db, user)
    result = await start(db, user, transcript)

    plan, _ = await plan_state(result.plan_id)
    with pytest.raises(sps.GenerationInProgress):
        await sps.regenerate_plan(db, plan, transcript)

    gate.set()
    await get_supervisor().wait_idle(timeout=5)
    plan, _ = await plan_state(result.plan_id)
    assert plan.status == "ready"


async def test_require_inputs_needs_plan_card_and_dossier(db, user):
    with pytest.raises(sps.UpstreamNotReady):
        sps.require_inputs(None)
    transcript = await make_transcript(db, user, plan_card=None)
    with pytest.raises(sps.UpstreamNotReady, match="Coaching plan"):
        sps.require_inputs(transcript)


async def test_require_inputs_needs_dossier(db, user):
    transcript = await make_transcript(db, user, dossier=None)
    with pytest.raises(sps.UpstreamNotReady, match="dossier"):
        sps.require_inputs(transcript)


def test_client_name_prefers_plan_card():
    dossier = load_dossier(DOSSIER)
    assert sps.resolve_client_name(CoachingPlan.model_validate(PLAN_CARD), dossier) == "Alex"
    assert sps.resolve_client_name(CoachingPlan(), dossier) == "Alex"
    assert sps.resolve_client_name(CoachingPlan(), None) == "Client"


async def test_auto_start_initializes_once_inputs_exist(db, user, fake_llm):
    fake_llm.on("artifacts", artifacts_reply(DEFAULT_ARTIFACT_KEYS))
    await make_transcript(db, user)

    assert await sps.auto_start_serious_plan(user.id, delays=[0]) is True
    await get_supervisor().wait_idle(timeout=5)

    plan = await plan_store.get_plan_by_user(db, user.id)
    assert plan is not None and plan.status == "ready"
    # A second run finds the plan and does nothing
    assert await sps.auto_start_serious_plan(user.id, delays=[0]) is True
    assert len(fake_llm.calls_for("artifacts")) == 1


async def test_auto_start_gives_up_without_dossier(db, user, fake_llm):
    await make_transcript(db, user, dossier=None)
    assert await sps.auto_start_serious_plan(user.id, delays=[0, 0]) is False


async def test_read_model_reports_both_tracks(db, user, fake_llm):
    letter_gate = fake_llm.gate("letter")
    fake_llm.on("artifacts", artifacts_reply(DEFAULT_ARTIFACT_KEYS))
    transcript = await make_transcript(db, user)
    result = await start(db, user, transcript)
    # Wait for the artifacts only; the letter is still blocked
    await get_supervisor().running()[sps.artifacts_task_name(result.plan_id)]

    plan, _ = await plan_state(result.plan_id)
    async with database.AsyncSessionLocal() as session:
        view = await sps.get_plan_with_artifacts(session, plan)
    summary = view["statusSummary"]
    assert summary["artifactsReady"] is True
    assert summary["letterReady"] is False
    assert summary["inProgress"] is True
    assert summary["artifactCounts"]["complete"] == 8
    assert len(view["artifacts"]) == 8

    letter_gate.set()
    await get_supervisor().wait_idle(timeout=5)


async def test_empty_artifact_plan_is_ready_without_generation(db, user, fake_llm):
    transcript = await make_transcript(db, user, plan_card=dict(PLAN_CARD, plannedArtifacts=[]))

    result = await start(db, user, transcript)
    await get_supervisor().wait_idle(timeout=5)

    plan, artifacts = await plan_state(result.plan_id)
    assert result.success and result.created
    assert plan.status == "ready"
    assert generated(artifacts) == []
    assert fake_llm.calls_for("artifacts") == []


async def test_repeated_planned_keys_still_initialize(db, user, fake_llm):
    fake_llm.on("artifacts", artifacts_reply(["risk_map"]))
    card = dict(PLAN_CARD, plannedArtifacts=[{"key": "risk_map"}, {"key": "risk_map"}])
    transcript = await make_transcript(db, user, plan_card=card)

    result = await start(db, user, transcript)
    await get_supervisor().wait_idle(timeout=5)

    plan, artifacts = await plan_state(result.plan_id)
    assert result.success and result.created
    assert plan.status == "ready"
    assert [a.artifact_key for a in generated(artifacts)] == ["risk_map"]
