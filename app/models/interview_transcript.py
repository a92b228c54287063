"""
Interview transcript: the whole pre-plan conversation for one user.

Holds the interview message log, the three module logs with their summaries
and completion flags, the agreed coaching plan ("plan card"), and the
internal client dossier. The dossier is never serialized by `to_dict`.
"""
from sqlalchemy import Column, String, Integer, DateTime, Text, Boolean, JSON, ForeignKey
from app.database import Base, utcnow
import uuid

MODULE_NUMBERS = (1, 2, 3)


class InterviewTranscript(Base):
    __tablename__ = "interview_transcripts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    session_token = Column(String(64), unique=True, nullable=False, default=lambda: uuid.uuid4().hex)
    # Unique so saves can upsert on it
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=True, index=True)

    # Interview: list of {"role": "user"|"assistant", "content": str}
    transcript = Column(JSON, nullable=False, default=list)
    current_module = Column(Integer, nullable=False, default=0)
    progress = Column(Integer, nullable=False, default=0)  # 0-100
    interview_complete = Column(Boolean, nullable=False, default=False)
    value_bullets = Column(Text, nullable=True)

    module1_transcript = Column(JSON, nullable=True)
    module1_summary = Column(Text, nullable=True)
    module1_complete = Column(Boolean, nullable=False, default=False)
    module2_transcript = Column(JSON, nullable=True)
    module2_summary = Column(Text, nullable=True)
    module2_complete = Column(Boolean, nullable=False, default=False)
    module3_transcript = Column(JSON, nullable=True)
    module3_summary = Column(Text, nullable=True)
    module3_complete = Column(Boolean, nullable=False, default=False)

    # Coaching plan agreed at the end of the interview
    plan_card = Column(JSON, nullable=True)
    # Internal-only analysis, see app.schemas.dossier.ClientDossier
    client_dossier = Column(JSON, nullable=True)

    payment_verified = Column(Boolean, nullable=False, default=False)
    stripe_session_id = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def module_transcript(self, n: int) -> list:
        return getattr(self, f"module{n}_transcript") or []

    def module_summary(self, n: int):
        return getattr(self, f"module{n}_summary")

    def module_complete(self, n: int) -> bool:
        return bool(getattr(self, f"module{n}_complete"))

    def to_dict(self):
        data = {
            "id": self.id,
            "sessionToken": self.session_token,
            "transcript": self.transcript or [],
            "currentModule": self.current_module,
            "progress": self.progress,
            "interviewComplete": self.interview_complete,
            "valueBullets": self.value_bullets,
            "planCard": self.plan_card,
            "paymentVerified": self.payment_verified,
            "hasDossier": self.client_dossier is not None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }
        for n in MODULE_NUMBERS:
            data[f"module{n}"] = {
                "transcript": self.module_transcript(n),
                "summary": self.module_summary(n),
                "complete": self.module_complete(n),
            }
        return data
