# Database models package
from app.models.user import User, MagicLinkToken
from app.models.interview_transcript import InterviewTranscript
from app.models.serious_plan import SeriousPlan, SeriousPlanArtifact
from app.models.coach_chat_message import CoachChatMessage

__all__ = [
    "User",
    "MagicLinkToken",
    "InterviewTranscript",
    "SeriousPlan",
    "SeriousPlanArtifact",
    "CoachChatMessage",
]
