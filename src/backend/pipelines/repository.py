from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import ContextManager, Dict, Iterator, List, Optional, Protocol, Tuple

from common.rules_engine.models import (
    MeetingEvidence,
    PlanMeeting,
    PlanType,
    RuleDefinition,
    RuleEvidenceType,
    RulePack,
    ScopeType,
)

PackKey = Tuple[ScopeType, str, PlanType]


class ComplianceRepository(Protocol):
    """Persistence collaborator consumed by the engine.

    Implementations must make everything inside `transaction()` atomic with respect
    to other transactions and must never hand out objects that alias stored state.
    """

    def transaction(self) -> ContextManager[None]:
        ...

    # Catalog
    def get_rule_definition(self, definition_id: str) -> Optional[RuleDefinition]:
        ...

    def get_rule_definition_by_key(self, key: str) -> Optional[RuleDefinition]:
        ...

    def list_rule_definitions(self) -> List[RuleDefinition]:
        ...

    def save_rule_definition(self, definition: RuleDefinition) -> None:
        ...

    def delete_rule_definition(self, definition_id: str) -> None:
        ...

    def get_evidence_type(self, evidence_type_id: str) -> Optional[RuleEvidenceType]:
        ...

    def get_evidence_type_by_key(self, key: str) -> Optional[RuleEvidenceType]:
        ...

    def list_evidence_types(self) -> List[RuleEvidenceType]:
        ...

    def save_evidence_type(self, evidence_type: RuleEvidenceType) -> None:
        ...

    # Rule packs
    def get_pack(self, pack_id: str) -> Optional[RulePack]:
        ...

    def list_packs(
        self,
        *,
        scope_type: Optional[ScopeType] = None,
        scope_id: Optional[str] = None,
        plan_type: Optional[PlanType] = None,
    ) -> List[RulePack]:
        ...

    def save_pack(self, pack: RulePack) -> None:
        ...

    def delete_pack(self, pack_id: str) -> None:
        ...

    def next_pack_version(self, key: PackKey) -> int:
        ...

    def find_pack_for_rule(self, rule_pack_rule_id: str) -> Optional[RulePack]:
        ...

    # Meetings
    def get_meeting(self, meeting_id: str) -> Optional[PlanMeeting]:
        ...

    def save_meeting(self, meeting: PlanMeeting) -> None:
        ...

    def list_evidence(self, meeting_id: str) -> List[MeetingEvidence]:
        ...

    def save_evidence(self, evidence: MeetingEvidence) -> None:
        ...

    def delete_evidence(self, meeting_id: str, evidence_type_id: str) -> bool:
        ...


def get_repository(name: str) -> ComplianceRepository:
    """Resolve a repository implementation by name (memory)."""
    source = (name or "").strip().lower()
    if source in ("memory", ""):
        return InMemoryRepository()
    raise ValueError(f"Unknown repository '{name}' (expected 'memory').")


class InMemoryRepository:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._definitions: Dict[str, RuleDefinition] = {}
        self._evidence_types: Dict[str, RuleEvidenceType] = {}
        self._packs: Dict[str, RulePack] = {}
        self._version_high_water: Dict[PackKey, int] = {}
        self._meetings: Dict[str, PlanMeeting] = {}
        # (meeting_id, evidence_type_id) -> record; the key enforces one record per type.
        self._evidence: Dict[Tuple[str, str], MeetingEvidence] = {}
        self._depth = 0

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
                return

            # Stored objects are replaced, never mutated, so shallow copies are enough to roll back.
            snapshot = (
                dict(self._definitions),
                dict(self._evidence_types),
                dict(self._packs),
                dict(self._version_high_water),
                dict(self._meetings),
                dict(self._evidence),
            )
            self._depth = 1
            try:
                yield
            except BaseException:
                (
                    self._definitions,
                    self._evidence_types,
                    self._packs,
                    self._version_high_water,
                    self._meetings,
                    self._evidence,
                ) = snapshot
                raise
            finally:
                self._depth = 0

    def get_rule_definition(self, definition_id: str) -> Optional[RuleDefinition]:
        with self._lock:
            found = self._definitions.get(definition_id)
            return found.model_copy(deep=True) if found else None

    def get_rule_definition_by_key(self, key: str) -> Optional[RuleDefinition]:
        with self._lock:
            for definition in self._definitions.values():
                if definition.key == key:
                    return definition.model_copy(deep=True)
            return None

    def list_rule_definitions(self) -> List[RuleDefinition]:
        with self._lock:
            return [d.model_copy(deep=True) for d in self._definitions.values()]

    def save_rule_definition(self, definition: RuleDefinition) -> None:
        with self._lock:
            self._definitions[definition.id] = definition.model_copy(deep=True)

    def delete_rule_definition(self, definition_id: str) -> None:
        with self._lock:
            self._definitions.pop(definition_id, None)

    def get_evidence_type(self, evidence_type_id: str) -> Optional[RuleEvidenceType]:
        with self._lock:
            found = self._evidence_types.get(evidence_type_id)
            return found.model_copy(deep=True) if found else None

    def get_evidence_type_by_key(self, key: str) -> Optional[RuleEvidenceType]:
        with self._lock:
            for evidence_type in self._evidence_types.values():
                if evidence_type.key == key:
                    return evidence_type.model_copy(deep=True)
            return None

    def list_evidence_types(self) -> List[RuleEvidenceType]:
        with self._lock:
            return [et.model_copy(deep=True) for et in self._evidence_types.values()]

    def save_evidence_type(self, evidence_type: RuleEvidenceType) -> None:
        with self._lock:
            self._evidence_types[evidence_type.id] = evidence_type.model_copy(deep=True)

    def get_pack(self, pack_id: str) -> Optional[RulePack]:
        with self._lock:
            found = self._packs.get(pack_id)
            return found.model_copy(deep=True) if found else None

    def list_packs(
        self,
        *,
        scope_type: Optional[ScopeType] = None,
        scope_id: Optional[str] = None,
        plan_type: Optional[PlanType] = None,
    ) -> List[RulePack]:
        with self._lock:
            packs = []
            for pack in self._packs.values():
                if scope_type is not None and pack.scope_type != scope_type:
                    continue
                if scope_id is not None and pack.scope_id != scope_id:
                    continue
                if plan_type is not None and pack.plan_type != plan_type:
                    continue
                packs.append(pack.model_copy(deep=True))
            return packs

    def save_pack(self, pack: RulePack) -> None:
        with self._lock:
            self._packs[pack.id] = pack.model_copy(deep=True)
            current = self._version_high_water.get(pack.key, 0)
            self._version_high_water[pack.key] = max(current, pack.version)

    def delete_pack(self, pack_id: str) -> None:
        with self._lock:
            self._packs.pop(pack_id, None)

    def next_pack_version(self, key: PackKey) -> int:
        with self._lock:
            existing = [p.version for p in self._packs.values() if p.key == key]
            return max(existing + [self._version_high_water.get(key, 0)]) + 1

    def find_pack_for_rule(self, rule_pack_rule_id: str) -> Optional[RulePack]:
        with self._lock:
            for pack in self._packs.values():
                if pack.find_rule(rule_pack_rule_id) is not None:
                    return pack.model_copy(deep=True)
            return None

    def get_meeting(self, meeting_id: str) -> Optional[PlanMeeting]:
        with self._lock:
            found = self._meetings.get(meeting_id)
            return found.model_copy(deep=True) if found else None

    def save_meeting(self, meeting: PlanMeeting) -> None:
        with self._lock:
            self._meetings[meeting.id] = meeting.model_copy(deep=True)

    def list_evidence(self, meeting_id: str) -> List[MeetingEvidence]:
        with self._lock:
            return [
                ev.model_copy(deep=True)
                for (owner, _), ev in self._evidence.items()
                if owner == meeting_id
            ]

    def save_evidence(self, evidence: MeetingEvidence) -> None:
        with self._lock:
            self._evidence[(evidence.meeting_id, evidence.evidence_type_id)] = evidence.model_copy(deep=True)

    def delete_evidence(self, meeting_id: str, evidence_type_id: str) -> bool:
        with self._lock:
            return self._evidence.pop((meeting_id, evidence_type_id), None) is not None
