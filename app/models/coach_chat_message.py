from sqlalchemy import Column, String, DateTime, Text, ForeignKey
from app.database import Base, utcnow
import uuid


class CoachChatMessage(Base):
    """Append-only Q&A log attached to a delivered plan"""
    __tablename__ = "coach_chat_messages"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    plan_id = Column(String(36), ForeignKey("serious_plans.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String(20), nullable=False)  # user | assistant
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utcnow, index=True)

    def to_dict(self):
        return {
            "id": self.id,
            "planId": self.plan_id,
            "role": self.role,
            "content": self.content,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
