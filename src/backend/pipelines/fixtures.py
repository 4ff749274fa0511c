from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from common.rules_engine.context import MeetingScope
from common.rules_engine.models import (
    ConsentStatus,
    MeetingStatus,
    MeetingTypeCode,
    ParentDeliveryMethod,
    PlanType,
    RuleScope,
    ScopeType,
)
from common.rules_engine.store import EvidenceRequirementSpec, RuleSpec
from common.rules_engine.workflow import ComplianceService

from .repository import ComplianceRepository, get_repository


@dataclass(frozen=True)
class FixtureBundle:
    service: ComplianceService
    meeting_id: str
    scope: MeetingScope
    as_of: datetime | None = None


def _load_json(path: Path):
    with path.open(encoding="utf-8") as handle:
        return json.load(handle)


def _load_optional_json(path: Path, default: Any):
    if not path.exists():
        return default
    return _load_json(path)


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


def load_fixture_repository(
    fixtures_dir: Path,
    *,
    seed_defaults: bool = True,
    repository: ComplianceRepository | None = None,
) -> FixtureBundle:
    """Build a populated in-memory repository from a fixture directory.

    Expected files: `catalog.json` (optional extra definitions/evidence types),
    `rule_packs.json`, `meeting.json`, `evidence.json` (optional). Packs reference rules and
    evidence types by key and are created through the store, so versioning and the
    single-active-pack rule apply exactly as in production.
    """
    service = ComplianceService(repository or get_repository("memory"))
    if seed_defaults:
        service.catalog.seed_defaults()

    catalog = _load_optional_json(fixtures_dir / "catalog.json", {})
    for definition in catalog.get("rule_definitions", []):
        service.catalog.create_rule_definition(
            definition["key"],
            definition.get("name", definition["key"]),
            description=definition.get("description", ""),
            default_config=definition.get("default_config") or {},
        )
    for evidence_type in catalog.get("evidence_types", []):
        service.catalog.create_evidence_type(
            evidence_type["key"],
            evidence_type.get("name", evidence_type["key"]),
            applies_to=PlanType(evidence_type.get("applies_to", "ALL")),
        )

    for raw_pack in _load_json(fixtures_dir / "rule_packs.json"):
        _create_fixture_pack(service, raw_pack)

    raw_meeting = _load_json(fixtures_dir / "meeting.json")
    scope = MeetingScope(
        school_id=raw_meeting.get("school_id"),
        district_id=raw_meeting.get("district_id"),
        state_code=raw_meeting.get("state_code"),
    )
    as_of = _parse_datetime(raw_meeting.get("as_of"))
    delivery = raw_meeting.get("parent_delivery_method")
    meeting = service.schedule_meeting(
        meeting_id=raw_meeting["id"],
        student_id=raw_meeting.get("student_id", ""),
        plan_type=PlanType(raw_meeting["plan_type"]),
        meeting_type_code=MeetingTypeCode(raw_meeting.get("meeting_type_code", "ANNUAL")),
        scheduled_at=datetime.fromisoformat(raw_meeting["scheduled_at"]),
        scope=scope,
        parent_delivery_method=ParentDeliveryMethod(delivery) if delivery else None,
        as_of=as_of,
    )

    if raw_meeting.get("consent_status"):
        service.record_consent(meeting.id, ConsentStatus(raw_meeting["consent_status"]))
    status = MeetingStatus(raw_meeting.get("status", "SCHEDULED"))
    if status == MeetingStatus.HELD:
        service.mark_held(meeting.id, held_at=_parse_datetime(raw_meeting.get("held_at")))
    elif status == MeetingStatus.CANCELED:
        service.cancel_meeting(meeting.id)

    for raw_evidence in _load_optional_json(fixtures_dir / "evidence.json", []):
        method = raw_evidence.get("delivery_method")
        service.record_evidence(
            meeting.id,
            raw_evidence["evidence_type_key"],
            note=raw_evidence.get("note"),
            evidence_date=_parse_datetime(raw_evidence.get("evidence_date")),
            delivery_method=ParentDeliveryMethod(method) if method else None,
            created_by_user_id=raw_evidence.get("created_by_user_id"),
        )

    return FixtureBundle(service=service, meeting_id=meeting.id, scope=scope, as_of=as_of)


def _create_fixture_pack(service: ComplianceService, raw_pack: dict[str, Any]) -> None:
    pack = service.store.create_pack(
        RuleScope(scope_type=ScopeType(raw_pack["scope_type"]), scope_id=raw_pack["scope_id"]),
        PlanType(raw_pack["plan_type"]),
        raw_pack["name"],
        effective_from=datetime.fromisoformat(raw_pack["effective_from"]),
        effective_to=_parse_datetime(raw_pack.get("effective_to")),
        is_active=raw_pack.get("is_active", True),
    )

    specs = []
    for index, raw_rule in enumerate(raw_pack.get("rules", [])):
        definition = service.catalog.get_rule_definition(raw_rule["rule_key"])
        requirements = [
            EvidenceRequirementSpec(
                evidence_type_id=service.catalog.get_evidence_type(req["evidence_type_key"]).id,
                is_required=req.get("is_required", True),
            )
            for req in raw_rule.get("evidence", [])
        ]
        specs.append(
            RuleSpec(
                rule_definition_id=definition.id,
                is_enabled=raw_rule.get("is_enabled", True),
                config=raw_rule.get("config") or {},
                sort_order=raw_rule.get("sort_order", index),
                evidence_requirements=requirements,
            )
        )
    service.store.set_rules(pack.id, specs)
