"""
Pydantic schemas for Serious Plan generation output and the HTTP surface.
"""
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

IMPORTANCE_LEVELS = ("must_read", "recommended", "optional", "bonus")


# ========== LLM output ==========
class PlanMetadata(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    client_name: Optional[str] = Field(None, alias="clientName")
    plan_horizon_type: Optional[str] = Field(None, alias="planHorizonType")
    plan_horizon_rationale: Optional[str] = Field(None, alias="planHorizonRationale")
    key_constraints: List[str] = Field(default_factory=list, alias="keyConstraints")
    primary_recommendation: Optional[str] = Field(None, alias="primaryRecommendation")
    emotional_tone: Optional[str] = Field(None, alias="emotionalTone")

    @field_validator("key_constraints", mode="before")
    @classmethod
    def _none_is_empty(cls, v):
        return v or []


class GeneratedArtifact(BaseModel):
    """One artifact as returned by the bulk generation call"""
    model_config = ConfigDict(extra="ignore")

    artifact_key: str
    title: Optional[str] = None
    type: Optional[str] = None
    importance_level: Optional[str] = None
    why_important: Optional[str] = None
    content: str = ""
    metadata: Optional[Dict[str, Any]] = None

    @field_validator("importance_level")
    @classmethod
    def _known_importance(cls, v):
        if v is not None and v not in IMPORTANCE_LEVELS:
            return "recommended"
        return v

    @field_validator("content", mode="before")
    @classmethod
    def _content_text(cls, v):
        return v if isinstance(v, str) else ("" if v is None else str(v))


class ArtifactsResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    metadata: Optional[PlanMetadata] = None
    artifacts: List[GeneratedArtifact] = Field(default_factory=list)

    @field_validator("artifacts", mode="before")
    @classmethod
    def _none_is_empty(cls, v):
        return v or []


# ========== Requests ==========
class TurnRequest(BaseModel):
    message: Optional[str] = Field(None, max_length=8000)


class CoachChatRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=8000)


class MagicLinkRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=320)

    @field_validator("email")
    @classmethod
    def _looks_like_email(cls, v: str) -> str:
        v = v.strip().lower()
        local, _, domain = v.partition("@")
        if not local or "." not in domain:
            raise ValueError("Invalid email address")
        return v


class CheckoutRequest(BaseModel):
    promo_code: Optional[str] = Field(None, max_length=100)
