from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional, Sequence

from common.log import get_logger

from .catalog import RuleCatalog
from .context import GateContext, MeetingScope
from .due_dates import calculate_due_dates
from .errors import (
    ConsentRequired,
    EnforcementBlocked,
    EvidenceTypeNotApplicable,
    InvalidMeetingTransition,
    MeetingNotFound,
    MeetingNotHeld,
)
from .evaluator import EnforcementEvaluator
from .gates import CLOSE_MEETING_GATES, IMPLEMENT_PLAN_GATES, Gate, run_gates
from .models import (
    TERMINAL_MEETING_STATUSES,
    ConsentStatus,
    EnforcementReport,
    GateErrorKind,
    GateResult,
    MeetingEvidence,
    MeetingStatus,
    MeetingTypeCode,
    ParentDeliveryMethod,
    PlanMeeting,
    PlanType,
    RulePack,
)
from .resolver import ScopeResolver
from .store import RulePackStore

if TYPE_CHECKING:
    from pipelines.repository import ComplianceRepository


logger = get_logger(__name__)


class ComplianceService:
    """Meeting workflow built on the rule engine.

    A meeting is evaluated against the pack snapshotted when it was scheduled (see
    `PlanMeeting.rule_pack_id`) unless the caller asks to re-resolve.
    """

    def __init__(self, repository: "ComplianceRepository", *, evaluator: Optional[EnforcementEvaluator] = None):
        self.repository = repository
        self.catalog = RuleCatalog(repository)
        self.store = RulePackStore(repository)
        self.resolver = ScopeResolver(repository)
        self.evaluator = evaluator or EnforcementEvaluator()

    def get_meeting(self, meeting_id: str) -> PlanMeeting:
        meeting = self.repository.get_meeting(meeting_id)
        if meeting is None:
            raise MeetingNotFound(meeting_id)
        return meeting

    def schedule_meeting(
        self,
        *,
        student_id: str,
        plan_type: PlanType,
        meeting_type_code: MeetingTypeCode,
        scheduled_at: datetime,
        scope: MeetingScope,
        parent_delivery_method: Optional[ParentDeliveryMethod] = None,
        meeting_id: Optional[str] = None,
        as_of: Optional[datetime] = None,
    ) -> PlanMeeting:
        pack = self.resolver.resolve_active_pack(
            scope.school_id, scope.district_id, scope.state_code, plan_type, as_of=as_of
        )
        meeting = PlanMeeting(
            id=meeting_id or str(uuid.uuid4()),
            student_id=student_id,
            plan_type=plan_type,
            meeting_type_code=meeting_type_code,
            scheduled_at=scheduled_at,
            parent_delivery_method=parent_delivery_method,
        )
        self._snapshot_pack(meeting, pack)
        self.repository.save_meeting(meeting)
        logger.info(
            "meeting_scheduled",
            meeting_id=meeting.id,
            plan_type=plan_type.value,
            rule_pack_id=meeting.rule_pack_id,
            rule_pack_version=meeting.rule_pack_version,
        )
        return meeting

    def refresh_rule_pack(self, meeting_id: str, scope: MeetingScope, *, as_of: Optional[datetime] = None) -> PlanMeeting:
        """Explicitly re-resolve the meeting's pack and recompute its due dates."""
        with self.repository.transaction():
            meeting = self.get_meeting(meeting_id)
            pack = self.resolver.resolve_active_pack(
                scope.school_id, scope.district_id, scope.state_code, meeting.plan_type, as_of=as_of
            )
            self._snapshot_pack(meeting, pack)
            self.repository.save_meeting(meeting)
        logger.info("meeting_rule_pack_refreshed", meeting_id=meeting_id, rule_pack_id=meeting.rule_pack_id)
        return meeting

    def record_evidence(
        self,
        meeting_id: str,
        evidence_type_key: str,
        *,
        note: Optional[str] = None,
        evidence_date: Optional[datetime] = None,
        delivery_method: Optional[ParentDeliveryMethod] = None,
        created_by_user_id: Optional[str] = None,
    ) -> MeetingEvidence:
        """Attach evidence to a meeting; a second submission of the same type overwrites the first."""
        evidence_type = self.catalog.get_evidence_type(evidence_type_key)
        with self.repository.transaction():
            meeting = self.get_meeting(meeting_id)
            if not evidence_type.applies_to_plan(meeting.plan_type):
                raise EvidenceTypeNotApplicable(evidence_type_key, meeting.plan_type.value)
            evidence = MeetingEvidence(
                id=str(uuid.uuid4()),
                meeting_id=meeting_id,
                evidence_type_id=evidence_type.id,
                note=note,
                evidence_date=evidence_date or datetime.now(timezone.utc),
                delivery_method=delivery_method,
                created_by_user_id=created_by_user_id,
            )
            self.repository.save_evidence(evidence)
        logger.info("meeting_evidence_recorded", meeting_id=meeting_id, evidence_type=evidence_type_key)
        return evidence

    def remove_evidence(self, meeting_id: str, evidence_type_key: str) -> bool:
        evidence_type = self.catalog.get_evidence_type(evidence_type_key)
        removed = self.repository.delete_evidence(meeting_id, evidence_type.id)
        if removed:
            logger.info("meeting_evidence_removed", meeting_id=meeting_id, evidence_type=evidence_type_key)
        return removed

    def record_consent(
        self,
        meeting_id: str,
        consent_status: ConsentStatus,
        *,
        obtained_at: Optional[datetime] = None,
    ) -> PlanMeeting:
        with self.repository.transaction():
            meeting = self.get_meeting(meeting_id)
            meeting.consent_status = consent_status
            if consent_status == ConsentStatus.OBTAINED:
                meeting.consent_obtained_at = obtained_at or datetime.now(timezone.utc)
            else:
                meeting.consent_obtained_at = None
            self.repository.save_meeting(meeting)
        return meeting

    def mark_held(self, meeting_id: str, *, held_at: Optional[datetime] = None) -> PlanMeeting:
        with self.repository.transaction():
            meeting = self.get_meeting(meeting_id)
            if meeting.status != MeetingStatus.SCHEDULED:
                raise InvalidMeetingTransition(
                    meeting_id, f"Cannot mark a {meeting.status.value} meeting as held."
                )
            meeting.status = MeetingStatus.HELD
            meeting.held_at = held_at or datetime.now(timezone.utc)
            self.repository.save_meeting(meeting)
        logger.info("meeting_held", meeting_id=meeting_id)
        return meeting

    def cancel_meeting(self, meeting_id: str) -> PlanMeeting:
        """Cancellation bypasses enforcement entirely."""
        with self.repository.transaction():
            meeting = self.get_meeting(meeting_id)
            if meeting.status in TERMINAL_MEETING_STATUSES:
                raise InvalidMeetingTransition(
                    meeting_id, f"Cannot cancel a {meeting.status.value} meeting."
                )
            meeting.status = MeetingStatus.CANCELED
            self.repository.save_meeting(meeting)
        logger.info("meeting_canceled", meeting_id=meeting_id)
        return meeting

    def meeting_rule_pack(
        self,
        meeting_id: str,
        scope: MeetingScope,
        plan_type: Optional[PlanType] = None,
        *,
        re_resolve: bool = False,
    ) -> Optional[RulePack]:
        """The pack the gates evaluate this meeting against."""
        meeting = self.get_meeting(meeting_id)
        return self._rule_pack_for(meeting, scope, plan_type or meeting.plan_type, re_resolve=re_resolve)

    def evaluate_meeting(
        self,
        meeting_id: str,
        scope: MeetingScope,
        plan_type: Optional[PlanType] = None,
        *,
        re_resolve: bool = False,
    ) -> EnforcementReport:
        return self._build_context(meeting_id, scope, plan_type, re_resolve=re_resolve).report  # type: ignore[return-value]

    def can_close_meeting(
        self,
        meeting_id: str,
        scope: MeetingScope,
        plan_type: Optional[PlanType] = None,
        *,
        re_resolve: bool = False,
    ) -> GateResult:
        return self._check(meeting_id, scope, plan_type, CLOSE_MEETING_GATES, re_resolve=re_resolve, action="close")

    def can_implement_plan(
        self,
        meeting_id: str,
        scope: MeetingScope,
        plan_type: Optional[PlanType] = None,
        *,
        re_resolve: bool = False,
    ) -> GateResult:
        return self._check(
            meeting_id, scope, plan_type, IMPLEMENT_PLAN_GATES, re_resolve=re_resolve, action="implement"
        )

    def close_meeting(
        self,
        meeting_id: str,
        scope: MeetingScope,
        *,
        closed_by_user_id: Optional[str] = None,
        re_resolve: bool = False,
    ) -> PlanMeeting:
        with self.repository.transaction():
            current = self.get_meeting(meeting_id)
            if current.status in TERMINAL_MEETING_STATUSES:
                raise InvalidMeetingTransition(meeting_id, f"Cannot close a {current.status.value} meeting.")
            result = self.can_close_meeting(meeting_id, scope, re_resolve=re_resolve)
            if not result.allowed:
                workflow_errors = result.errors_of(GateErrorKind.WORKFLOW)
                if workflow_errors:
                    raise MeetingNotHeld(meeting_id, workflow_errors[0].message)
                raise EnforcementBlocked(meeting_id, result)

            meeting = self.get_meeting(meeting_id)
            meeting.status = MeetingStatus.CLOSED
            meeting.closed_at = datetime.now(timezone.utc)
            meeting.closed_by_user_id = closed_by_user_id
            self.repository.save_meeting(meeting)
        logger.info("meeting_closed", meeting_id=meeting_id, closed_by_user_id=closed_by_user_id)
        return meeting

    def implement_plan(self, meeting_id: str, scope: MeetingScope, *, re_resolve: bool = False) -> GateResult:
        """Gate for the plan-implementation transition; the plan record itself lives elsewhere."""
        result = self.can_implement_plan(meeting_id, scope, re_resolve=re_resolve)
        if not result.allowed:
            consent_errors = result.errors_of(GateErrorKind.CONSENT)
            if consent_errors:
                raise ConsentRequired(meeting_id, consent_errors[0].message)
            raise EnforcementBlocked(meeting_id, result)
        return result

    def _check(
        self,
        meeting_id: str,
        scope: MeetingScope,
        plan_type: Optional[PlanType],
        gates: Sequence[Gate],
        *,
        re_resolve: bool,
        action: str,
    ) -> GateResult:
        ctx = self._build_context(meeting_id, scope, plan_type, re_resolve=re_resolve)
        result = run_gates(ctx, gates)
        logger.info(
            "meeting_gate_checked",
            meeting_id=meeting_id,
            action=action,
            allowed=result.allowed,
            error_codes=[err.code for err in result.errors],
            rule_pack_id=ctx.rule_pack.id if ctx.rule_pack else None,
        )
        return result

    def _build_context(
        self,
        meeting_id: str,
        scope: MeetingScope,
        plan_type: Optional[PlanType],
        *,
        re_resolve: bool,
    ) -> GateContext:
        meeting = self.get_meeting(meeting_id)
        pack = self._rule_pack_for(meeting, scope, plan_type or meeting.plan_type, re_resolve=re_resolve)
        evidence = tuple(self.repository.list_evidence(meeting_id))
        report = self.evaluator.evaluate(meeting_id, evidence, pack)
        return GateContext(meeting=meeting, evidence=evidence, rule_pack=pack, report=report)

    def _rule_pack_for(
        self,
        meeting: PlanMeeting,
        scope: MeetingScope,
        plan_type: PlanType,
        *,
        re_resolve: bool,
    ) -> Optional[RulePack]:
        if meeting.rule_pack_id and not re_resolve:
            pack = self.repository.get_pack(meeting.rule_pack_id)
            if pack is not None:
                return pack
            logger.warning("snapshotted_rule_pack_missing", meeting_id=meeting.id, rule_pack_id=meeting.rule_pack_id)
        return self.resolver.resolve_active_pack(scope.school_id, scope.district_id, scope.state_code, plan_type)

    @staticmethod
    def _snapshot_pack(meeting: PlanMeeting, pack: Optional[RulePack]) -> None:
        meeting.rule_pack_id = pack.id if pack else None
        meeting.rule_pack_version = pack.version if pack else None
        meeting.due_dates = calculate_due_dates(meeting.scheduled_at, pack)
