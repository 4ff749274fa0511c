from __future__ import annotations

from typing import Iterable, List, Optional

from .models import (
    EnforcementReport,
    EvidenceChecklistItem,
    MeetingEvidence,
    RulePack,
    RulePackRule,
    RuleResult,
)


class EnforcementEvaluator:
    """Checks a meeting's collected evidence against the enabled rules of a resolved pack.

    Pure: no I/O, and identical inputs always produce identical reports. Missing evidence is
    reported as `allowed=False`, never raised.
    """

    def evaluate(
        self,
        meeting_id: str,
        collected_evidence: Iterable[MeetingEvidence],
        rule_pack: Optional[RulePack],
    ) -> EnforcementReport:
        if rule_pack is None:
            return EnforcementReport(allowed=True, meeting_id=meeting_id)

        provided = {ev.evidence_type_id for ev in collected_evidence if ev.meeting_id == meeting_id}

        results: List[RuleResult] = []
        checklist: List[EvidenceChecklistItem] = []
        for rule in rule_pack.enabled_rules():
            results.append(self._evaluate_rule(rule, provided))
            for req in rule.evidence_requirements:
                checklist.append(
                    EvidenceChecklistItem(
                        rule_key=rule.rule_key,
                        evidence_type_key=req.evidence_type_key,
                        is_required=req.is_required,
                        is_provided=req.evidence_type_id in provided,
                    )
                )

        return EnforcementReport(
            allowed=all(res.satisfied for res in results),
            rule_results=results,
            meeting_id=meeting_id,
            rule_pack_id=rule_pack.id,
            rule_pack_version=rule_pack.version,
            evidence_checklist=checklist,
        )

    @staticmethod
    def _evaluate_rule(rule: RulePackRule, provided: set[str]) -> RuleResult:
        required = rule.required_evidence()
        if not required:
            # Config-only policies are surfaced to the UI but never gate a transition.
            return RuleResult(rule_key=rule.rule_key, satisfied=True, advisory=True)

        missing = [req.evidence_type_key for req in required if req.evidence_type_id not in provided]
        return RuleResult(rule_key=rule.rule_key, satisfied=not missing, missing_evidence_keys=missing)


def evaluate(
    meeting_id: str,
    collected_evidence: Iterable[MeetingEvidence],
    rule_pack: Optional[RulePack],
) -> EnforcementReport:
    return EnforcementEvaluator().evaluate(meeting_id, collected_evidence, rule_pack)
