import os
import sys


# Ensure `src/backend` is on sys.path so imports like `import common...` work.
BACKEND_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
if BACKEND_DIR not in sys.path:
    sys.path.insert(0, BACKEND_DIR)

from datetime import datetime, timezone

import pytest

from common.rules_engine.context import MeetingScope
from common.rules_engine.models import (
    MeetingEvidence,
    MeetingTypeCode,
    PlanType,
    RulePack,
    RulePackEvidenceRequirement,
    RulePackRule,
    RuleScope,
    ScopeType,
)
from common.rules_engine.store import EvidenceRequirementSpec, RuleSpec
from common.rules_engine.workflow import ComplianceService
from pipelines.repository import InMemoryRepository


@pytest.fixture
def effective_from() -> datetime:
    return datetime(2023, 7, 1, tzinfo=timezone.utc)


@pytest.fixture
def as_of() -> datetime:
    return datetime(2024, 2, 15, tzinfo=timezone.utc)


@pytest.fixture
def scheduled_at() -> datetime:
    return datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def service(repository) -> ComplianceService:
    svc = ComplianceService(repository)
    svc.catalog.seed_defaults()
    return svc


@pytest.fixture
def scope() -> MeetingScope:
    return MeetingScope(school_id="SCH-001", district_id="HCPSS", state_code="MD")


@pytest.fixture
def make_pack(service, effective_from):
    """Create a stored pack; rules are (rule_key, config, required_evidence_keys) tuples."""

    def _make(
        *,
        scope_type: ScopeType = ScopeType.SCHOOL,
        scope_id: str = "SCH-001",
        plan_type: PlanType = PlanType.IEP,
        name: str = "Test pack",
        rules=(),
        is_active: bool = True,
        effective_from=effective_from,
        effective_to=None,
    ) -> RulePack:
        pack = service.store.create_pack(
            RuleScope(scope_type=scope_type, scope_id=scope_id),
            plan_type,
            name,
            effective_from=effective_from,
            effective_to=effective_to,
            is_active=is_active,
        )
        specs = []
        for index, (rule_key, config, evidence_keys) in enumerate(rules):
            specs.append(
                RuleSpec(
                    rule_definition_id=service.catalog.get_rule_definition(rule_key).id,
                    config=config or {},
                    sort_order=index,
                    evidence_requirements=[
                        EvidenceRequirementSpec(evidence_type_id=service.catalog.get_evidence_type(key).id)
                        for key in evidence_keys
                    ],
                )
            )
        if specs:
            pack = service.store.set_rules(pack.id, specs)
        return pack

    return _make


@pytest.fixture
def make_meeting(service, scope, scheduled_at, as_of):
    def _make(
        *,
        plan_type: PlanType = PlanType.IEP,
        meeting_type_code: MeetingTypeCode = MeetingTypeCode.ANNUAL,
        meeting_id: str = "mtg-1",
        held: bool = False,
    ):
        meeting = service.schedule_meeting(
            meeting_id=meeting_id,
            student_id="stu-1",
            plan_type=plan_type,
            meeting_type_code=meeting_type_code,
            scheduled_at=scheduled_at,
            scope=scope,
            as_of=as_of,
        )
        if held:
            meeting = service.mark_held(meeting.id)
        return meeting

    return _make


@pytest.fixture
def make_rule():
    """Build a detached pack rule for pure evaluator/due-date tests (ids equal keys)."""

    def _make(
        rule_key: str,
        *,
        config=None,
        default_config=None,
        required=(),
        optional=(),
        is_enabled: bool = True,
        sort_order: int = 0,
    ) -> RulePackRule:
        requirements = [
            RulePackEvidenceRequirement(evidence_type_id=key, evidence_type_key=key, is_required=True)
            for key in required
        ] + [
            RulePackEvidenceRequirement(evidence_type_id=key, evidence_type_key=key, is_required=False)
            for key in optional
        ]
        return RulePackRule(
            id=f"rule-{rule_key}",
            rule_definition_id=f"def-{rule_key}",
            rule_key=rule_key,
            is_enabled=is_enabled,
            config=config or {},
            default_config=default_config or {},
            sort_order=sort_order,
            evidence_requirements=requirements,
        )

    return _make


@pytest.fixture
def make_detached_pack(effective_from):
    def _make(rules, *, pack_id: str = "pack-1", version: int = 1) -> RulePack:
        return RulePack(
            id=pack_id,
            scope_type=ScopeType.SCHOOL,
            scope_id="SCH-001",
            plan_type=PlanType.IEP,
            name="Detached",
            version=version,
            is_active=True,
            effective_from=effective_from,
            rules=list(rules),
        )

    return _make


@pytest.fixture
def make_evidence():
    def _make(*evidence_type_ids: str, meeting_id: str = "mtg-1"):
        return [
            MeetingEvidence(id=f"ev-{type_id}", meeting_id=meeting_id, evidence_type_id=type_id)
            for type_id in evidence_type_ids
        ]

    return _make
