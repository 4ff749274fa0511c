"""Compliance rule engine for special-education plan meetings.

Domain logic only:
- Inputs are rule packs, meetings and collected evidence.
- Persistence is reached through the repository protocol in `pipelines.repository`;
  no HTTP, database driver or UI code lives here.
"""

from .catalog import RuleCatalog
from .context import GateContext, MeetingScope
from .due_dates import add_business_days, calculate_due_dates
from .evaluator import EnforcementEvaluator, evaluate
from .models import (
    ConsentStatus,
    EnforcementReport,
    GateError,
    GateErrorKind,
    GateResult,
    MeetingEvidence,
    MeetingStatus,
    MeetingTypeCode,
    PlanMeeting,
    PlanType,
    RuleDefinition,
    RuleEvidenceType,
    RulePack,
    RulePackEvidenceRequirement,
    RulePackRule,
    RuleResult,
    RuleScope,
    ScopeType,
)
from .resolver import ResolutionTrace, ScopeResolver
from .store import EvidenceRequirementSpec, RulePackStore, RuleSpec
from .workflow import ComplianceService

# Import built-in rule definitions so their config shapes self-register.
from . import defaults as _builtin_rules  # noqa: F401
