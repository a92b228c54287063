"""
Plan horizon selection: maps a client dossier to a recommended timeframe.

A fixed keyword cascade over the interview analysis. Order matters: urgency
beats external deadlines, which beat open-ended exploration. No negation
handling ("not urgent" still reads as urgent).
"""
from typing import NamedTuple, Optional

from app.schemas.dossier import ClientDossier

HORIZON_30_DAYS = "30_days"
HORIZON_60_DAYS = "60_days"
HORIZON_90_DAYS = "90_days"
HORIZON_6_MONTHS = "6_months"


class PlanHorizon(NamedTuple):
    type: str
    rationale: str

    def label(self) -> str:
        """'90_days' -> '90 days'"""
        return self.type.replace("_", " ", 1)


def determine_plan_horizon(dossier: Optional[ClientDossier]) -> PlanHorizon:
    if dossier is None or dossier.interview_analysis is None:
        return PlanHorizon(HORIZON_90_DAYS, "Standard timeline for career transitions")

    analysis = dossier.interview_analysis
    key_facts = " ".join(analysis.key_facts).lower()
    constraints = " ".join(analysis.constraints).lower()
    situation = analysis.situation.lower()

    if ("immediate" in key_facts or "urgent" in constraints
            or "fired" in situation or "laid off" in situation):
        return PlanHorizon(HORIZON_30_DAYS, "Urgent timeline due to immediate circumstances")

    if "visa" in key_facts or "visa" in constraints or "deadline" in constraints:
        return PlanHorizon(HORIZON_60_DAYS, "Accelerated timeline due to external deadlines")

    if "long-term" in key_facts or "exploring" in situation or "considering" in situation:
        return PlanHorizon(HORIZON_6_MONTHS, "Extended timeline for thorough exploration and positioning")

    return PlanHorizon(HORIZON_90_DAYS, "Standard timeline for thoughtful career transitions")
