"""
Serious Plan: the final coaching packet for a user, and its artifacts.

Lifecycles:
    plan.status:                generating -> ready | error
    plan.coach_letter_status:   pending -> generating -> complete | error
    plan.bundle_pdf_status:     not_started -> generating -> ready | error
    artifact.generation_status: pending -> generating -> complete | error
    artifact.pdf_status:        not_started -> generating -> ready | error
"""
from sqlalchemy import Column, String, Integer, DateTime, Text, JSON, ForeignKey, UniqueConstraint
from app.database import Base, utcnow
import uuid

PLAN_STATUSES = ("generating", "ready", "error")
LETTER_STATUSES = ("pending", "generating", "complete", "error")
GENERATION_STATUSES = ("pending", "generating", "complete", "error")
PDF_STATUSES = ("not_started", "generating", "ready", "error")
IMPORTANCE_LEVELS = ("must_read", "recommended", "optional", "bonus")

TRANSCRIPT_DISPLAY_OFFSET = 100


class SeriousPlan(Base):
    __tablename__ = "serious_plans"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    # One plan per user; initialization inserts ON CONFLICT DO NOTHING on this
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False, index=True)
    transcript_id = Column(String(36), ForeignKey("interview_transcripts.id", ondelete="SET NULL"), nullable=True)

    status = Column(String(20), nullable=False, default="generating", index=True)

    coach_note_content = Column(Text, nullable=True)
    coach_letter_status = Column(String(20), nullable=False, default="pending")
    coach_letter_generated_at = Column(DateTime, nullable=True)

    bundle_pdf_status = Column(String(20), nullable=False, default="not_started")
    bundle_pdf_url = Column(Text, nullable=True)

    # clientName, planHorizonType, planHorizonRationale, keyConstraints, primaryRecommendation, ...
    summary_metadata = Column(JSON, nullable=True)
    emailed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.user_id,
            "transcriptId": self.transcript_id,
            "status": self.status,
            "coachNoteContent": self.coach_note_content,
            "coachLetterStatus": self.coach_letter_status,
            "coachLetterGeneratedAt": self.coach_letter_generated_at.isoformat() if self.coach_letter_generated_at else None,
            "bundlePdfStatus": self.bundle_pdf_status,
            "bundlePdfUrl": self.bundle_pdf_url,
            "summaryMetadata": self.summary_metadata or {},
            "emailedAt": self.emailed_at.isoformat() if self.emailed_at else None,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


class SeriousPlanArtifact(Base):
    __tablename__ = "serious_plan_artifacts"
    __table_args__ = (
        UniqueConstraint("plan_id", "artifact_key", name="uq_artifact_plan_key"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    plan_id = Column(String(36), ForeignKey("serious_plans.id", ondelete="CASCADE"), nullable=False, index=True)
    artifact_key = Column(String(100), nullable=False)

    title = Column(String(500), nullable=False)
    artifact_type = Column("type", String(50), nullable=False, default="snapshot")
    importance_level = Column(String(20), nullable=False, default="recommended")
    why_important = Column(Text, nullable=True)

    content_raw = Column(Text, nullable=True)  # markdown, or JSON for transcripts
    generation_status = Column(String(20), nullable=False, default="pending", index=True)

    pdf_status = Column(String(20), nullable=False, default="not_started")
    pdf_url = Column(Text, nullable=True)

    display_order = Column(Integer, nullable=False, default=0)
    artifact_metadata = Column("metadata", JSON, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def is_transcript(self) -> bool:
        return self.artifact_type == "transcript"

    def to_dict(self):
        return {
            "id": self.id,
            "planId": self.plan_id,
            "artifactKey": self.artifact_key,
            "title": self.title,
            "type": self.artifact_type,
            "importanceLevel": self.importance_level,
            "whyImportant": self.why_important,
            "contentRaw": self.content_raw,
            "generationStatus": self.generation_status,
            "pdfStatus": self.pdf_status,
            "pdfUrl": self.pdf_url,
            "displayOrder": self.display_order,
            "metadata": self.artifact_metadata,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }
