"""
Pydantic schemas for the coaching plan ("plan card") and the client dossier.

Both are stored as JSON on the interview transcript and produced by the LLM,
so every field is optional with a safe default and unknown keys are kept.
"""
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator


class _Document(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data):
        # Models emit null for fields they had nothing for; fall back to defaults
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data


# ========== Coaching plan ==========
class CoachingModule(_Document):
    name: str = ""
    objective: str = ""
    approach: str = ""
    outcome: str = ""


class PlannedArtifact(_Document):
    key: str
    title: Optional[str] = None
    type: Optional[str] = None
    importance: Optional[str] = None
    description: Optional[str] = None


class CoachingPlan(_Document):
    """The three-module plan agreed with the client at the end of the interview"""
    name: str = ""
    modules: List[CoachingModule] = Field(default_factory=list)
    career_brief: str = Field("", alias="careerBrief")
    planned_artifacts: Optional[List[PlannedArtifact]] = Field(None, alias="plannedArtifacts")

    def module(self, n: int) -> CoachingModule:
        if 0 < n <= len(self.modules):
            return self.modules[n - 1]
        return CoachingModule(name=f"Module {n}")


# ========== Dossier ==========
class ChatMessage(_Document):
    role: str
    content: str


class Relationship(_Document):
    person: str = ""
    role: str = ""
    dynamic: str = ""


class OptionRecord(_Document):
    option: str = ""
    chosen: bool = False
    reason: Optional[str] = None


class InterviewAnalysis(_Document):
    client_name: str = Field("", alias="clientName")
    current_role: str = Field("", alias="currentRole")
    company: str = ""
    tenure: str = ""
    situation: str = ""
    big_problem: str = Field("", alias="bigProblem")
    desired_outcome: str = Field("", alias="desiredOutcome")
    client_facing_summary: Optional[str] = Field(None, alias="clientFacingSummary")
    key_facts: List[str] = Field(default_factory=list, alias="keyFacts")
    relationships: List[Relationship] = Field(default_factory=list)
    emotional_state: str = Field("", alias="emotionalState")
    communication_style: str = Field("", alias="communicationStyle")
    priorities: List[str] = Field(default_factory=list)
    constraints: List[str] = Field(default_factory=list)
    motivations: List[str] = Field(default_factory=list)
    fears: List[str] = Field(default_factory=list)
    questions_asked: List[str] = Field(default_factory=list, alias="questionsAsked")
    options_offered: List[OptionRecord] = Field(default_factory=list, alias="optionsOffered")
    observations: str = ""


class ModuleRecord(_Document):
    module_number: int = Field(..., alias="moduleNumber")
    module_name: str = Field("", alias="moduleName")
    transcript: List[ChatMessage] = Field(default_factory=list)
    summary: str = ""
    decisions: List[str] = Field(default_factory=list)
    insights: List[str] = Field(default_factory=list)
    action_items: List[str] = Field(default_factory=list, alias="actionItems")
    questions_asked: List[str] = Field(default_factory=list, alias="questionsAsked")
    options_presented: List[OptionRecord] = Field(default_factory=list, alias="optionsPresented")
    observations: str = ""
    completed_at: Optional[str] = Field(None, alias="completedAt")


class ClientDossier(_Document):
    """Internal-only analysis. Never returned to the client."""
    interview_transcript: List[ChatMessage] = Field(default_factory=list, alias="interviewTranscript")
    interview_analysis: Optional[InterviewAnalysis] = Field(None, alias="interviewAnalysis")
    module_records: List[ModuleRecord] = Field(default_factory=list, alias="moduleRecords")
    last_updated: Optional[str] = Field(None, alias="lastUpdated")

    def to_json(self) -> dict:
        """Camel-cased dict for the JSON column"""
        return self.model_dump(by_alias=True, exclude_none=True)


def load_plan(raw: Optional[dict]) -> Optional[CoachingPlan]:
    if not raw:
        return None
    return CoachingPlan.model_validate(raw)


def load_dossier(raw: Optional[dict]) -> Optional[ClientDossier]:
    if not raw:
        return None
    return ClientDossier.model_validate(raw)
