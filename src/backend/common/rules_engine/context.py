from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .models import EnforcementReport, MeetingEvidence, PlanMeeting, RulePack


@dataclass(frozen=True)
class MeetingScope:
    """Jurisdiction identifiers of the school a meeting belongs to. Any level may be unknown."""

    school_id: Optional[str] = None
    district_id: Optional[str] = None
    state_code: Optional[str] = None


@dataclass(frozen=True)
class GateContext:
    meeting: PlanMeeting
    evidence: tuple[MeetingEvidence, ...] = ()
    rule_pack: Optional[RulePack] = None
    report: Optional[EnforcementReport] = None

    @property
    def meeting_id(self) -> str:
        return self.meeting.id

    def has_rule_pack(self) -> bool:
        return self.rule_pack is not None
