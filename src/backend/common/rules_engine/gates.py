from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Sequence

from .context import GateContext
from .evaluator import EnforcementEvaluator
from .models import (
    ConsentStatus,
    GateError,
    GateErrorKind,
    GateResult,
    MeetingStatus,
)


class Gate(ABC):
    gate_id: str

    def __init__(self):
        if not getattr(self, "gate_id", None):
            raise ValueError("Gate must define gate_id")

    @abstractmethod
    def check(self, ctx: GateContext) -> List[GateError]:  # pragma: no cover
        raise NotImplementedError


class MeetingHeldGate(Gate):
    """Workflow precondition for closing: only a HELD meeting can be closed."""

    gate_id = "MEETING_HELD"

    def check(self, ctx: GateContext) -> List[GateError]:
        status = ctx.meeting.status
        if status == MeetingStatus.HELD:
            return []
        if status == MeetingStatus.SCHEDULED:
            message = "Meeting has not been held yet; mark it as held before closing."
        else:
            message = f"Meeting is already {status.value.lower()} and cannot be closed."
        return [GateError(code="MEETING_NOT_HELD", kind=GateErrorKind.WORKFLOW, message=message)]


class InitialIepConsentGate(Gate):
    """Parent consent is a legal precondition for implementing an initial IEP.

    Fixed: rule packs cannot turn this off.
    """

    gate_id = "INITIAL_IEP_CONSENT"

    def check(self, ctx: GateContext) -> List[GateError]:
        meeting = ctx.meeting
        if not meeting.is_initial_iep:
            return []
        status = meeting.consent_status or ConsentStatus.PENDING
        if status == ConsentStatus.OBTAINED:
            return []
        return [
            GateError(
                code="CONSENT_REQUIRED",
                kind=GateErrorKind.CONSENT,
                message=(
                    "Parent consent is required before implementing an initial IEP "
                    f"(consent status: {status.value})."
                ),
            )
        ]


class EvidenceGate(Gate):
    """Blocks on every enabled rule whose required evidence is missing."""

    gate_id = "RULE_EVIDENCE"

    def __init__(self, evaluator: EnforcementEvaluator | None = None):
        super().__init__()
        self._evaluator = evaluator or EnforcementEvaluator()

    def check(self, ctx: GateContext) -> List[GateError]:
        report = ctx.report
        if report is None:
            report = self._evaluator.evaluate(ctx.meeting_id, ctx.evidence, ctx.rule_pack)
        return [
            GateError(
                code="MISSING_EVIDENCE",
                kind=GateErrorKind.ENFORCEMENT,
                message=f"Missing required evidence for {res.rule_key}: {', '.join(res.missing_evidence_keys)}",
                rule_key=res.rule_key,
                missing_evidence_keys=list(res.missing_evidence_keys),
            )
            for res in report.failed()
        ]


CLOSE_MEETING_GATES: Sequence[Gate] = (MeetingHeldGate(), EvidenceGate())
IMPLEMENT_PLAN_GATES: Sequence[Gate] = (EvidenceGate(), InitialIepConsentGate())


def run_gates(ctx: GateContext, gates: Sequence[Gate]) -> GateResult:
    errors: List[GateError] = []
    for gate in gates:
        errors.extend(gate.check(ctx))

    warnings = []
    if not ctx.has_rule_pack():
        warnings.append("NO_RULE_PACK: No active rule pack found for this scope and plan type")

    return GateResult(allowed=not errors, errors=errors, warnings=warnings, report=ctx.report)
