from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Iterable, List, Optional

from pydantic import BaseModel, Field

from common.log import get_logger

from .models import SCOPE_PRECEDENCE, PlanType, RulePack, RuleScope, ScopeType, as_utc

if TYPE_CHECKING:
    from pipelines.repository import ComplianceRepository


logger = get_logger(__name__)


class ResolutionTrace(BaseModel):
    searched: List[RuleScope] = Field(default_factory=list)
    matched: Optional[RuleScope] = None
    rule_pack: Optional[RulePack] = None


def candidate_scopes(
    school_id: Optional[str],
    district_id: Optional[str],
    state_code: Optional[str],
) -> List[RuleScope]:
    ids = {
        ScopeType.SCHOOL: school_id,
        ScopeType.DISTRICT: district_id,
        ScopeType.STATE: state_code,
    }
    return [
        RuleScope(scope_type=scope_type, scope_id=ids[scope_type])
        for scope_type in SCOPE_PRECEDENCE
        if ids[scope_type]
    ]


def select_pack(packs: Iterable[RulePack], plan_type: PlanType, as_of: datetime) -> Optional[RulePack]:
    """Pick the qualifying pack at a single scope level.

    The plan-specific pack beats an ALL pack; among equals the newest version wins.
    """
    qualifying = [
        p
        for p in packs
        if p.is_active and p.plan_type in (plan_type, PlanType.ALL) and p.is_effective(as_of)
    ]
    if not qualifying:
        return None
    return max(qualifying, key=lambda p: (p.plan_type == plan_type, p.version))


class ScopeResolver:
    def __init__(self, repository: "ComplianceRepository"):
        self._repo = repository

    def resolve_active_pack(
        self,
        school_id: Optional[str],
        district_id: Optional[str],
        state_code: Optional[str],
        plan_type: PlanType,
        as_of: Optional[datetime] = None,
    ) -> Optional[RulePack]:
        """Most specific scope with a qualifying pack wins; None means no enforcement applies."""
        return self.resolve_with_trace(school_id, district_id, state_code, plan_type, as_of).rule_pack

    def resolve_with_trace(
        self,
        school_id: Optional[str],
        district_id: Optional[str],
        state_code: Optional[str],
        plan_type: PlanType,
        as_of: Optional[datetime] = None,
    ) -> ResolutionTrace:
        moment = as_utc(as_of) if as_of is not None else datetime.now(timezone.utc)
        trace = ResolutionTrace()

        for scope in candidate_scopes(school_id, district_id, state_code):
            trace.searched.append(scope)
            packs = self._repo.list_packs(scope_type=scope.scope_type, scope_id=scope.scope_id)
            pack = select_pack(packs, plan_type, moment)
            if pack is not None:
                # Broader scopes are never consulted once a narrower one matches.
                trace.matched = scope
                trace.rule_pack = pack
                break

        logger.debug(
            "rule_pack_resolved",
            plan_type=plan_type.value,
            searched=[f"{s.scope_type.value}:{s.scope_id}" for s in trace.searched],
            pack_id=trace.rule_pack.id if trace.rule_pack else None,
            version=trace.rule_pack.version if trace.rule_pack else None,
        )
        return trace
