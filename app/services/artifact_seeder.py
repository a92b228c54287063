"""
Builds the initial artifact rows for a new Serious Plan.

Generated artifacts start as `pending` placeholders ordered 1..N. Transcript
artifacts need no generation step and are seeded `complete`, ordered from
TRANSCRIPT_DISPLAY_OFFSET so they sort after generated content.

Pure functions: the caller inserts the returned rows in one statement.
"""
import json
from typing import Any, Dict, List, Optional

from app.models.interview_transcript import InterviewTranscript, MODULE_NUMBERS
from app.models.serious_plan import TRANSCRIPT_DISPLAY_OFFSET
from app.schemas.dossier import ClientDossier, CoachingPlan
from app.utils.logger import get_logger

logger = get_logger("seeder")

DEFAULT_ARTIFACT_KEYS = ["decision_snapshot", "action_plan", "module_recap", "resources"]

TRANSCRIPT_KEY_PREFIX = "transcript_"

ArtifactRow = Dict[str, Any]


def format_artifact_key(key: str) -> str:
    """'decision_snapshot' -> 'Decision Snapshot'"""
    return " ".join(word[:1].upper() + word[1:] for word in key.split("_"))


def planned_artifact_keys(coaching_plan: CoachingPlan) -> List[str]:
    """
    Keys to seed as placeholders. Defaults apply only when the plan card has
    no plannedArtifacts at all; an empty list seeds nothing. Repeated keys
    keep their first occurrence and keys in the transcript namespace are
    dropped, so every (plan, key) pair is unique.
    """
    if coaching_plan.planned_artifacts is None:
        return list(DEFAULT_ARTIFACT_KEYS)
    keys: List[str] = []
    for artifact in coaching_plan.planned_artifacts:
        key = artifact.key.strip()
        if not key or key in keys or key.startswith(TRANSCRIPT_KEY_PREFIX):
            if key:
                logger.warning("seed.planned_key_skipped", extra={"artifact_key": key})
            continue
        keys.append(key)
    return keys


def build_placeholder_artifacts(plan_id: str, artifact_keys: List[str], coaching_plan: CoachingPlan) -> List[ArtifactRow]:
    planned: Dict[str, Any] = {}
    for artifact in coaching_plan.planned_artifacts or []:
        planned.setdefault(artifact.key.strip(), artifact)
    rows = []
    for index, key in enumerate(artifact_keys):
        entry = planned.get(key)
        rows.append({
            "plan_id": plan_id,
            "artifact_key": key,
            "title": (entry and entry.title) or format_artifact_key(key),
            "artifact_type": (entry and entry.type) or "snapshot",
            "importance_level": (entry and entry.importance) or "recommended",
            "why_important": entry.description if entry else None,
            "content_raw": None,
            "generation_status": "pending",
            "display_order": index + 1,
            "pdf_status": "not_started",
        })
    return rows


def _transcript_payload(messages: list, summary: Optional[str]) -> str:
    return json.dumps({"type": "transcript", "summary": summary or None, "messages": messages})


def build_transcript_artifacts(plan_id: str, transcript: InterviewTranscript,
                               dossier: Optional[ClientDossier]) -> List[ArtifactRow]:
    rows = []
    display_order = TRANSCRIPT_DISPLAY_OFFSET

    if transcript.transcript:
        rows.append({
            "plan_id": plan_id,
            "artifact_key": f"{TRANSCRIPT_KEY_PREFIX}interview",
            "title": "Interview Transcript",
            "artifact_type": "transcript",
            "importance_level": "optional",
            "why_important": "The full conversation from your initial coaching interview.",
            "content_raw": _transcript_payload(transcript.transcript, None),
            "generation_status": "complete",
            "display_order": display_order,
            "pdf_status": "not_started",
        })
        display_order += 1

    module_names = [r.module_name for r in dossier.module_records] if dossier and dossier.module_records else []

    for n in MODULE_NUMBERS:
        messages = transcript.module_transcript(n)
        if not messages:
            continue
        name = module_names[n - 1] if n - 1 < len(module_names) and module_names[n - 1] else f"Module {n}"
        rows.append({
            "plan_id": plan_id,
            "artifact_key": f"{TRANSCRIPT_KEY_PREFIX}module_{n}",
            "title": f"{name} Transcript",
            "artifact_type": "transcript",
            "importance_level": "optional",
            "why_important": f"The full conversation from {name}.",
            "content_raw": _transcript_payload(messages, transcript.module_summary(n)),
            "generation_status": "complete",
            "display_order": display_order,
            "pdf_status": "not_started",
        })
        display_order += 1

    return rows
