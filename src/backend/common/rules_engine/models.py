from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field, field_validator


class ScopeType(str, Enum):
    STATE = "STATE"
    DISTRICT = "DISTRICT"
    SCHOOL = "SCHOOL"


# Most specific first.
SCOPE_PRECEDENCE = (ScopeType.SCHOOL, ScopeType.DISTRICT, ScopeType.STATE)


class PlanType(str, Enum):
    IEP = "IEP"
    PLAN504 = "PLAN504"
    BIP = "BIP"
    ALL = "ALL"


class MeetingStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    HELD = "HELD"
    CLOSED = "CLOSED"
    CANCELED = "CANCELED"


TERMINAL_MEETING_STATUSES = frozenset({MeetingStatus.CLOSED, MeetingStatus.CANCELED})


class MeetingTypeCode(str, Enum):
    INITIAL = "INITIAL"
    ANNUAL = "ANNUAL"
    REVIEW = "REVIEW"
    AMENDMENT = "AMENDMENT"
    CONTINUED = "CONTINUED"


class ConsentStatus(str, Enum):
    PENDING = "PENDING"
    OBTAINED = "OBTAINED"
    REFUSED = "REFUSED"


class ParentDeliveryMethod(str, Enum):
    SEND_HOME = "SEND_HOME"
    US_MAIL = "US_MAIL"
    PICK_UP = "PICK_UP"


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are treated as UTC so comparisons never mix offsets."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def merge_config(
    default_config: Optional[Mapping[str, Any]],
    overrides: Optional[Mapping[str, Any]],
) -> Dict[str, Any]:
    """Pack overrides win key by key over the definition's defaults."""
    merged: Dict[str, Any] = dict(default_config or {})
    merged.update(overrides or {})
    return merged


class RuleDefinition(BaseModel):
    id: str
    key: str
    name: str
    description: str = ""
    default_config: Dict[str, Any] = Field(default_factory=dict)


class RuleEvidenceType(BaseModel):
    id: str
    key: str
    name: str
    applies_to: PlanType = PlanType.ALL

    def applies_to_plan(self, plan_type: PlanType) -> bool:
        return self.applies_to == PlanType.ALL or self.applies_to == plan_type


class RuleScope(BaseModel):
    model_config = {"frozen": True}

    scope_type: ScopeType
    scope_id: str


class RulePackEvidenceRequirement(BaseModel):
    evidence_type_id: str
    evidence_type_key: str
    is_required: bool = True


class RulePackRule(BaseModel):
    id: str
    rule_definition_id: str
    rule_key: str
    is_enabled: bool = True
    # Overrides only; see `effective_config`.
    config: Dict[str, Any] = Field(default_factory=dict)
    default_config: Dict[str, Any] = Field(default_factory=dict)
    sort_order: int = 0
    evidence_requirements: List[RulePackEvidenceRequirement] = Field(default_factory=list)

    @property
    def effective_config(self) -> Dict[str, Any]:
        return merge_config(self.default_config, self.config)

    def required_evidence(self) -> List[RulePackEvidenceRequirement]:
        return [req for req in self.evidence_requirements if req.is_required]


class RulePack(BaseModel):
    id: str
    scope_type: ScopeType
    scope_id: str
    plan_type: PlanType
    name: str
    version: int
    is_active: bool = False
    effective_from: datetime
    effective_to: Optional[datetime] = None
    rules: List[RulePackRule] = Field(default_factory=list)

    @field_validator("effective_from", "effective_to")
    @classmethod
    def _normalize_tz(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is None:
            return None
        return as_utc(value)

    @property
    def scope(self) -> RuleScope:
        return RuleScope(scope_type=self.scope_type, scope_id=self.scope_id)

    @property
    def key(self) -> tuple[ScopeType, str, PlanType]:
        return (self.scope_type, self.scope_id, self.plan_type)

    def is_effective(self, as_of: datetime) -> bool:
        moment = as_utc(as_of)
        if self.effective_from > moment:
            return False
        return self.effective_to is None or moment < self.effective_to

    def ordered_rules(self) -> List[RulePackRule]:
        # sorted() is stable, so equal sort_order keeps insertion order.
        return sorted(self.rules, key=lambda r: r.sort_order)

    def enabled_rules(self) -> List[RulePackRule]:
        return [rule for rule in self.ordered_rules() if rule.is_enabled]

    def find_rule(self, rule_id: str) -> Optional[RulePackRule]:
        for rule in self.rules:
            if rule.id == rule_id:
                return rule
        return None


class MeetingEvidence(BaseModel):
    id: str = ""
    meeting_id: str
    evidence_type_id: str
    note: Optional[str] = None
    evidence_date: Optional[datetime] = None
    delivery_method: Optional[ParentDeliveryMethod] = None
    created_by_user_id: Optional[str] = None


class PlanMeeting(BaseModel):
    id: str
    student_id: str = ""
    plan_type: PlanType
    meeting_type_code: MeetingTypeCode = MeetingTypeCode.ANNUAL
    scheduled_at: datetime
    held_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    closed_by_user_id: Optional[str] = None
    status: MeetingStatus = MeetingStatus.SCHEDULED
    consent_status: Optional[ConsentStatus] = None
    consent_obtained_at: Optional[datetime] = None
    parent_delivery_method: Optional[ParentDeliveryMethod] = None

    # Snapshot of the pack the meeting was first evaluated against.
    rule_pack_id: Optional[str] = None
    rule_pack_version: Optional[int] = None
    due_dates: Dict[str, date] = Field(default_factory=dict)

    @property
    def is_initial_iep(self) -> bool:
        return self.meeting_type_code == MeetingTypeCode.INITIAL and self.plan_type == PlanType.IEP


class RuleResult(BaseModel):
    rule_key: str
    satisfied: bool
    missing_evidence_keys: List[str] = Field(default_factory=list)
    # True when the rule has no required evidence and so cannot block.
    advisory: bool = False


class EvidenceChecklistItem(BaseModel):
    rule_key: str
    evidence_type_key: str
    is_required: bool
    is_provided: bool


class EnforcementReport(BaseModel):
    allowed: bool
    rule_results: List[RuleResult] = Field(default_factory=list)
    meeting_id: Optional[str] = None
    rule_pack_id: Optional[str] = None
    rule_pack_version: Optional[int] = None
    evidence_checklist: List[EvidenceChecklistItem] = Field(default_factory=list)

    def failed(self) -> List[RuleResult]:
        return [res for res in self.rule_results if not res.satisfied]


class GateErrorKind(str, Enum):
    WORKFLOW = "WORKFLOW"
    CONSENT = "CONSENT"
    ENFORCEMENT = "ENFORCEMENT"


class GateError(BaseModel):
    code: str
    kind: GateErrorKind
    message: str
    rule_key: str = ""
    missing_evidence_keys: List[str] = Field(default_factory=list)


class GateResult(BaseModel):
    allowed: bool
    errors: List[GateError] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    report: Optional[EnforcementReport] = None

    def errors_of(self, kind: GateErrorKind) -> List[GateError]:
        return [err for err in self.errors if err.kind == kind]
