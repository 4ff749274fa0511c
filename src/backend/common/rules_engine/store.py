from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from common.log import get_logger

from .errors import (
    ActivePackConflict,
    DuplicateEvidenceRequirement,
    DuplicatePackRule,
    RulePackNotFound,
    RulePackRuleNotFound,
    UnknownEvidenceType,
    UnknownRuleDefinition,
)
from .models import (
    PlanType,
    RulePack,
    RulePackEvidenceRequirement,
    RulePackRule,
    RuleScope,
    ScopeType,
    merge_config,
)
from .registry import registry

if TYPE_CHECKING:
    from pipelines.repository import ComplianceRepository


logger = get_logger(__name__)

_UNSET: Any = object()


class EvidenceRequirementSpec(BaseModel):
    evidence_type_id: str
    is_required: bool = True


class RuleSpec(BaseModel):
    rule_definition_id: str
    is_enabled: bool = True
    config: Dict[str, Any] = Field(default_factory=dict)
    sort_order: int = 0
    # Optional convenience; when None the rule starts with no requirements.
    evidence_requirements: Optional[List[EvidenceRequirementSpec]] = None


class RulePackStore:
    """Versioned rule packs. Every mutation is one repository transaction."""

    def __init__(self, repository: "ComplianceRepository"):
        self._repo = repository

    def get_pack(self, pack_id: str) -> RulePack:
        pack = self._repo.get_pack(pack_id)
        if pack is None:
            raise RulePackNotFound(pack_id)
        return pack

    def list_packs(
        self,
        *,
        scope: Optional[RuleScope] = None,
        plan_type: Optional[PlanType] = None,
        active_only: bool = False,
    ) -> List[RulePack]:
        packs = self._repo.list_packs(
            scope_type=scope.scope_type if scope else None,
            scope_id=scope.scope_id if scope else None,
            plan_type=plan_type,
        )
        if active_only:
            packs = [p for p in packs if p.is_active]
        return sorted(packs, key=lambda p: (p.scope_type.value, p.scope_id, p.plan_type.value, p.version))

    def create_pack(
        self,
        scope: RuleScope,
        plan_type: PlanType,
        name: str,
        effective_from: datetime,
        effective_to: Optional[datetime] = None,
        is_active: bool = True,
    ) -> RulePack:
        key = (scope.scope_type, scope.scope_id, plan_type)
        with self._repo.transaction():
            version = self._repo.next_pack_version(key)
            if is_active:
                self._deactivate_siblings(key, keep_id=None)
            pack = RulePack(
                id=str(uuid.uuid4()),
                scope_type=scope.scope_type,
                scope_id=scope.scope_id,
                plan_type=plan_type,
                name=name,
                version=version,
                is_active=is_active,
                effective_from=effective_from,
                effective_to=effective_to,
            )
            self._repo.save_pack(pack)
            self._check_single_active(key)
        logger.info(
            "rule_pack_created",
            pack_id=pack.id,
            scope_type=scope.scope_type.value,
            scope_id=scope.scope_id,
            plan_type=plan_type.value,
            version=version,
            is_active=is_active,
        )
        return pack

    def update_pack(
        self,
        pack_id: str,
        *,
        name: Optional[str] = None,
        effective_from: Optional[datetime] = None,
        effective_to: Any = _UNSET,
    ) -> RulePack:
        with self._repo.transaction():
            pack = self.get_pack(pack_id)
            if name is not None:
                pack.name = name
            if effective_from is not None:
                pack.effective_from = effective_from
            if effective_to is not _UNSET:
                pack.effective_to = effective_to
            # Re-validate so tz normalization applies to the new dates.
            pack = RulePack.model_validate(pack.model_dump())
            self._repo.save_pack(pack)
        return pack

    def delete_pack(self, pack_id: str) -> None:
        with self._repo.transaction():
            self.get_pack(pack_id)
            self._repo.delete_pack(pack_id)
        logger.info("rule_pack_deleted", pack_id=pack_id)

    def activate(self, pack_id: str) -> RulePack:
        with self._repo.transaction():
            pack = self.get_pack(pack_id)
            self._deactivate_siblings(pack.key, keep_id=pack.id)
            pack.is_active = True
            self._repo.save_pack(pack)
            self._check_single_active(pack.key)
        logger.info("rule_pack_activated", pack_id=pack_id, version=pack.version)
        return pack

    def deactivate(self, pack_id: str) -> RulePack:
        with self._repo.transaction():
            pack = self.get_pack(pack_id)
            pack.is_active = False
            self._repo.save_pack(pack)
            self._check_single_active(pack.key)
        logger.info("rule_pack_deactivated", pack_id=pack_id, version=pack.version)
        return pack

    def set_rules(self, pack_id: str, rules: Iterable[RuleSpec | Dict[str, Any]]) -> RulePack:
        """Replace the pack's whole rule set. Callers pass the complete desired set, not a diff."""
        specs = [r if isinstance(r, RuleSpec) else RuleSpec.model_validate(r) for r in rules]

        with self._repo.transaction():
            pack = self.get_pack(pack_id)

            seen: set[str] = set()
            for spec in specs:
                if spec.rule_definition_id in seen:
                    raise DuplicatePackRule(spec.rule_definition_id)
                seen.add(spec.rule_definition_id)

            definitions = {}
            missing = []
            for spec in specs:
                definition = self._repo.get_rule_definition(spec.rule_definition_id)
                if definition is None:
                    missing.append(spec.rule_definition_id)
                else:
                    definitions[spec.rule_definition_id] = definition
            if missing:
                raise UnknownRuleDefinition(missing)

            # Every merged config must parse before anything is written.
            for spec in specs:
                definition = definitions[spec.rule_definition_id]
                registry.validate(definition.key, merge_config(definition.default_config, spec.config))

            new_rules: List[RulePackRule] = []
            for spec in specs:
                definition = definitions[spec.rule_definition_id]
                requirements = self._build_requirements(spec.evidence_requirements or [])
                new_rules.append(
                    RulePackRule(
                        id=str(uuid.uuid4()),
                        rule_definition_id=definition.id,
                        rule_key=definition.key,
                        is_enabled=spec.is_enabled,
                        config=dict(spec.config),
                        default_config=dict(definition.default_config),
                        sort_order=spec.sort_order,
                        evidence_requirements=requirements,
                    )
                )

            pack.rules = new_rules
            self._repo.save_pack(pack)
        logger.info("rule_pack_rules_replaced", pack_id=pack_id, rule_count=len(new_rules))
        return pack

    def set_evidence_requirements(
        self,
        rule_pack_rule_id: str,
        requirements: Iterable[EvidenceRequirementSpec | Dict[str, Any]],
    ) -> RulePackRule:
        specs = [
            r if isinstance(r, EvidenceRequirementSpec) else EvidenceRequirementSpec.model_validate(r)
            for r in requirements
        ]
        with self._repo.transaction():
            pack = self._repo.find_pack_for_rule(rule_pack_rule_id)
            if pack is None:
                raise RulePackRuleNotFound(rule_pack_rule_id)
            rule = pack.find_rule(rule_pack_rule_id)
            if rule is None:
                raise RulePackRuleNotFound(rule_pack_rule_id)
            rule.evidence_requirements = self._build_requirements(specs)
            self._repo.save_pack(pack)
        logger.info(
            "rule_evidence_requirements_replaced",
            pack_id=pack.id,
            rule_key=rule.rule_key,
            requirement_count=len(rule.evidence_requirements),
        )
        return rule

    def _build_requirements(self, specs: List[EvidenceRequirementSpec]) -> List[RulePackEvidenceRequirement]:
        seen: set[str] = set()
        for spec in specs:
            if spec.evidence_type_id in seen:
                raise DuplicateEvidenceRequirement(spec.evidence_type_id)
            seen.add(spec.evidence_type_id)

        resolved = []
        missing = []
        for spec in specs:
            evidence_type = self._repo.get_evidence_type(spec.evidence_type_id)
            if evidence_type is None:
                missing.append(spec.evidence_type_id)
                continue
            resolved.append(
                RulePackEvidenceRequirement(
                    evidence_type_id=evidence_type.id,
                    evidence_type_key=evidence_type.key,
                    is_required=spec.is_required,
                )
            )
        if missing:
            raise UnknownEvidenceType(missing)
        return resolved

    def _deactivate_siblings(self, key: tuple[ScopeType, str, PlanType], *, keep_id: Optional[str]) -> None:
        scope_type, scope_id, plan_type = key
        for sibling in self._repo.list_packs(scope_type=scope_type, scope_id=scope_id, plan_type=plan_type):
            if sibling.is_active and sibling.id != keep_id:
                sibling.is_active = False
                self._repo.save_pack(sibling)
                logger.info("rule_pack_deactivated", pack_id=sibling.id, version=sibling.version, reason="superseded")

    def _check_single_active(self, key: tuple[ScopeType, str, PlanType]) -> None:
        scope_type, scope_id, plan_type = key
        active = [
            p.id
            for p in self._repo.list_packs(scope_type=scope_type, scope_id=scope_id, plan_type=plan_type)
            if p.is_active
        ]
        if len(active) > 1:
            raise ActivePackConflict(key, active)
