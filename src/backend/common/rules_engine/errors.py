from __future__ import annotations

from typing import Iterable, TYPE_CHECKING

if TYPE_CHECKING:
    from .models import GateResult


class RulesEngineError(RuntimeError):
    pass


class ConfigurationError(RulesEngineError, ValueError):
    """Caller referenced catalog data that does not exist or conflicts. Never retried."""


class UnknownRuleDefinition(ConfigurationError):
    def __init__(self, missing_ids: Iterable[str]):
        self.missing_ids = list(missing_ids)
        super().__init__(f"Unknown rule definition id(s): {', '.join(self.missing_ids)}")


class UnknownEvidenceType(ConfigurationError):
    def __init__(self, missing_ids: Iterable[str]):
        self.missing_ids = list(missing_ids)
        super().__init__(f"Unknown evidence type(s): {', '.join(self.missing_ids)}")


class DuplicateRuleDefinitionKey(ConfigurationError):
    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Rule definition key already exists: {key}")


class DuplicateEvidenceTypeKey(ConfigurationError):
    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Evidence type key already exists: {key}")


class DuplicatePackRule(ConfigurationError):
    def __init__(self, rule_definition_id: str):
        self.rule_definition_id = rule_definition_id
        super().__init__(f"Rule definition attached more than once: {rule_definition_id}")


class DuplicateEvidenceRequirement(ConfigurationError):
    def __init__(self, evidence_type_id: str):
        self.evidence_type_id = evidence_type_id
        super().__init__(f"Evidence type listed more than once: {evidence_type_id}")


class InvalidRuleConfig(ConfigurationError):
    def __init__(self, rule_key: str, detail: str):
        self.rule_key = rule_key
        self.detail = detail
        super().__init__(f"Invalid config for rule {rule_key}: {detail}")


class EvidenceTypeNotApplicable(ConfigurationError):
    def __init__(self, evidence_type_key: str, plan_type: str):
        self.evidence_type_key = evidence_type_key
        self.plan_type = plan_type
        super().__init__(f"Evidence type {evidence_type_key} does not apply to {plan_type} meetings")


class RuleDefinitionInUse(ConfigurationError):
    def __init__(self, key: str, message: str = "is referenced by a rule pack"):
        self.key = key
        super().__init__(f"Rule definition {key} {message}.")


class NotFoundError(RulesEngineError, LookupError):
    kind = "object"

    def __init__(self, identifier: str):
        self.identifier = identifier
        super().__init__(f"{self.kind} not found: {identifier}")


class RuleDefinitionNotFound(NotFoundError):
    kind = "Rule definition"


class EvidenceTypeNotFound(NotFoundError):
    kind = "Evidence type"


class RulePackNotFound(NotFoundError):
    kind = "Rule pack"


class RulePackRuleNotFound(NotFoundError):
    kind = "Rule pack rule"


class MeetingNotFound(NotFoundError):
    kind = "Meeting"


class ActivePackConflict(RulesEngineError):
    def __init__(self, key: tuple, active_ids: Iterable[str]):
        self.key = key
        self.active_ids = list(active_ids)
        super().__init__(f"More than one active rule pack for {key}: {', '.join(self.active_ids)}")


class WorkflowPreconditionError(RulesEngineError):
    code = "WORKFLOW_PRECONDITION"

    def __init__(self, meeting_id: str, message: str):
        self.meeting_id = meeting_id
        super().__init__(message)


class MeetingNotHeld(WorkflowPreconditionError):
    code = "MEETING_NOT_HELD"


class ConsentRequired(WorkflowPreconditionError):
    code = "CONSENT_REQUIRED"


class InvalidMeetingTransition(WorkflowPreconditionError):
    code = "INVALID_TRANSITION"


class EnforcementBlocked(RulesEngineError):
    """Raised by workflow transitions only; evaluation itself reports failures as values."""

    def __init__(self, meeting_id: str, result: "GateResult"):
        self.meeting_id = meeting_id
        self.result = result
        codes = ", ".join(err.rule_key or err.code for err in result.errors)
        super().__init__(f"Meeting {meeting_id} blocked by compliance rules: {codes}")
