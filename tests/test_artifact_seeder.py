import json

from app.models import InterviewTranscript
from app.models.serious_plan import TRANSCRIPT_DISPLAY_OFFSET
from app.schemas.dossier import CoachingPlan, load_dossier
from app.services.artifact_seeder import (
    DEFAULT_ARTIFACT_KEYS,
    build_placeholder_artifacts,
    build_transcript_artifacts,
    format_artifact_key,
    planned_artifact_keys,
)
from tests.fakes.factories import DOSSIER, PLAN_CARD


def test_format_artifact_key():
    assert format_artifact_key("decision_snapshot") == "Decision Snapshot"
    assert format_artifact_key("risk_map") == "Risk Map"


def test_default_keys_without_planned_artifacts():
    plan = CoachingPlan.model_validate(PLAN_CARD)
    assert planned_artifact_keys(plan) == DEFAULT_ARTIFACT_KEYS


def test_planned_artifacts_drive_placeholders():
    plan = CoachingPlan.model_validate(dict(PLAN_CARD, plannedArtifacts=[
        {"key": "boss_conversation", "title": "Talking to Dana", "importance": "must_read",
         "description": "Dana decides your raise."},
        {"key": "risk_map"},
    ]))
    keys = planned_artifact_keys(plan)
    rows = build_placeholder_artifacts("plan-1", keys, plan)

    assert [r["artifact_key"] for r in rows] == ["boss_conversation", "risk_map"]
    assert [r["display_order"] for r in rows] == [1, 2]
    assert all(r["generation_status"] == "pending" and r["content_raw"] is None for r in rows)
    assert rows[0]["title"] == "Talking to Dana"
    assert rows[0]["importance_level"] == "must_read"
    assert rows[1]["title"] == "Risk Map"
    assert rows[1]["importance_level"] == "recommended"


def test_transcript_artifacts_are_complete_and_ordered_after_generated():
    transcript = InterviewTranscript(
        transcript=[{"role": "user", "content": "hi"}],
        module1_transcript=[{"role": "user", "content": "m1"}],
        module2_transcript=[],
        module3_transcript=[{"role": "user", "content": "m3"}],
        module3_summary="You set a timeline.",
    )
    rows = build_transcript_artifacts("plan-1", transcript, load_dossier(DOSSIER))

    assert [r["artifact_key"] for r in rows] == ["transcript_interview", "transcript_module_1", "transcript_module_3"]
    assert [r["display_order"] for r in rows] == [TRANSCRIPT_DISPLAY_OFFSET + i for i in range(3)]
    assert all(r["generation_status"] == "complete" and r["artifact_type"] == "transcript" for r in rows)
    assert rows[1]["title"] == "Job Autopsy Transcript"

    payload = json.loads(rows[2]["content_raw"])
    assert payload["type"] == "transcript"
    assert payload["summary"] == "You set a timeline."
    assert payload["messages"][0]["content"] == "m3"


def test_module_names_fall_back_without_dossier():
    transcript = InterviewTranscript(transcript=[], module2_transcript=[{"role": "user", "content": "x"}])
    rows = build_transcript_artifacts("plan-1", transcript, None)
    assert [r["title"] for r in rows] == ["Module 2 Transcript"]


def test_empty_planned_artifacts_seed_nothing():
    plan = CoachingPlan.model_validate(dict(PLAN_CARD, plannedArtifacts=[]))
    keys = planned_artifact_keys(plan)

    assert keys == []
    assert build_placeholder_artifacts("plan-1", keys, plan) == []


def test_repeated_and_transcript_keys_are_dropped():
    plan = CoachingPlan.model_validate(dict(PLAN_CARD, plannedArtifacts=[
        {"key": "risk_map", "title": "First map"},
        {"key": "risk_map", "title": "Second map"},
        {"key": "transcript_interview"},
        {"key": "action_plan"},
    ]))
    keys = planned_artifact_keys(plan)
    rows = build_placeholder_artifacts("plan-1", keys, plan)

    assert keys == ["risk_map", "action_plan"]
    assert rows[0]["title"] == "First map"
    assert [r["display_order"] for r in rows] == [1, 2]
