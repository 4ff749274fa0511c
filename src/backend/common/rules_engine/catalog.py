from __future__ import annotations

import argparse
import json
import uuid
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from pydantic import BaseModel, Field

from common.log import get_logger

from .defaults import BUILTIN_EVIDENCE_TYPES, BUILTIN_RULES
from .errors import (
    DuplicateEvidenceTypeKey,
    DuplicateRuleDefinitionKey,
    EvidenceTypeNotFound,
    RuleDefinitionInUse,
    RuleDefinitionNotFound,
)
from .models import PlanType, RuleDefinition, RuleEvidenceType
from .registry import registry

if TYPE_CHECKING:
    from pipelines.repository import ComplianceRepository


logger = get_logger(__name__)

_UNSET: Any = object()


class RuleCatalog:
    """Reference data: rule definitions and evidence types, keyed by stable string keys."""

    def __init__(self, repository: "ComplianceRepository"):
        self._repo = repository

    def get_rule_definition(self, key: str) -> RuleDefinition:
        found = self._repo.get_rule_definition_by_key(key)
        if found is None:
            raise RuleDefinitionNotFound(key)
        return found

    def get_rule_definition_by_id(self, definition_id: str) -> RuleDefinition:
        found = self._repo.get_rule_definition(definition_id)
        if found is None:
            raise RuleDefinitionNotFound(definition_id)
        return found

    def list_rule_definitions(self) -> List[RuleDefinition]:
        return sorted(self._repo.list_rule_definitions(), key=lambda d: d.key)

    def get_evidence_type(self, key: str) -> RuleEvidenceType:
        found = self._repo.get_evidence_type_by_key(key)
        if found is None:
            raise EvidenceTypeNotFound(key)
        return found

    def list_evidence_types(self, plan_type: Optional[PlanType] = None) -> List[RuleEvidenceType]:
        types = self._repo.list_evidence_types()
        if plan_type is not None:
            types = [et for et in types if et.applies_to_plan(plan_type)]
        return sorted(types, key=lambda et: et.key)

    def create_rule_definition(
        self,
        key: str,
        name: str,
        *,
        description: str = "",
        default_config: Optional[Dict[str, Any]] = None,
    ) -> RuleDefinition:
        with self._repo.transaction():
            if self._repo.get_rule_definition_by_key(key) is not None:
                raise DuplicateRuleDefinitionKey(key)
            registry.validate(key, default_config or {})
            definition = RuleDefinition(
                id=str(uuid.uuid4()),
                key=key,
                name=name,
                description=description,
                default_config=dict(default_config or {}),
            )
            self._repo.save_rule_definition(definition)
        logger.info("rule_definition_created", key=key, definition_id=definition.id)
        return definition

    def update_rule_definition(
        self,
        key: str,
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
        default_config: Any = _UNSET,
    ) -> RuleDefinition:
        with self._repo.transaction():
            definition = self.get_rule_definition(key)
            if default_config is not _UNSET:
                if self._is_referenced(definition.id):
                    raise RuleDefinitionInUse(key, "is referenced by a rule pack; only name and description may change")
                registry.validate(key, default_config or {})
                definition.default_config = dict(default_config or {})
            if name is not None:
                definition.name = name
            if description is not None:
                definition.description = description
            self._repo.save_rule_definition(definition)
        return definition

    def delete_rule_definition(self, key: str) -> None:
        with self._repo.transaction():
            definition = self.get_rule_definition(key)
            if self._is_referenced(definition.id):
                raise RuleDefinitionInUse(key)
            self._repo.delete_rule_definition(definition.id)
        logger.info("rule_definition_deleted", key=key)

    def create_evidence_type(
        self,
        key: str,
        name: str,
        *,
        applies_to: PlanType = PlanType.ALL,
    ) -> RuleEvidenceType:
        with self._repo.transaction():
            if self._repo.get_evidence_type_by_key(key) is not None:
                raise DuplicateEvidenceTypeKey(key)
            evidence_type = RuleEvidenceType(id=str(uuid.uuid4()), key=key, name=name, applies_to=applies_to)
            self._repo.save_evidence_type(evidence_type)
        logger.info("evidence_type_created", key=key, evidence_type_id=evidence_type.id)
        return evidence_type

    def seed_defaults(self) -> None:
        """Install the built-in rule definitions and evidence types. Existing keys are left alone."""
        with self._repo.transaction():
            for rule in BUILTIN_RULES:
                if self._repo.get_rule_definition_by_key(rule.key) is None:
                    self.create_rule_definition(
                        rule.key,
                        rule.name,
                        description=rule.description,
                        default_config=rule.default_config,
                    )
            for et in BUILTIN_EVIDENCE_TYPES:
                if self._repo.get_evidence_type_by_key(et.key) is None:
                    self.create_evidence_type(et.key, et.name, applies_to=et.applies_to)

    def _is_referenced(self, definition_id: str) -> bool:
        for pack in self._repo.list_packs():
            if any(rule.rule_definition_id == definition_id for rule in pack.rules):
                return True
        return False


class RuleCatalogEntry(BaseModel):
    key: str
    name: str
    description: str = ""
    default_config: Dict[str, Any] = Field(default_factory=dict)

    config_model: str
    config_schema: Dict[str, Any]


def build_catalog() -> List[RuleCatalogEntry]:
    entries: List[RuleCatalogEntry] = []
    for rule in BUILTIN_RULES:
        entries.append(
            RuleCatalogEntry(
                key=rule.key,
                name=rule.name,
                description=rule.description,
                default_config=dict(rule.default_config),
                config_model=rule.config_model.__name__,
                config_schema=rule.config_model.model_json_schema(by_alias=True),
            )
        )

    entries.sort(key=lambda e: e.key)
    return entries


def _dump_json(catalog: list[dict[str, Any]]) -> str:
    return json.dumps(catalog, indent=2, sort_keys=True)


def _dump_yaml(catalog: list[dict[str, Any]]) -> str:
    import yaml

    return yaml.safe_dump(catalog, sort_keys=True)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Print the built-in compliance rule catalog.")
    parser.add_argument(
        "--format",
        choices=("yaml", "json"),
        default="yaml",
        help="Output format (default: yaml).",
    )
    args = parser.parse_args(argv)

    catalog = [e.model_dump() for e in build_catalog()]
    if args.format == "json":
        print(_dump_json(catalog))
    else:
        print(_dump_yaml(catalog))


if __name__ == "__main__":
    main()
