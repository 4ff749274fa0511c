from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Tuple

from .config import TimelineRuleConfig, timeline_config
from .models import RulePack


def add_business_days(start: date, days: int) -> date:
    """Step `days` weekdays from `start` (negative steps backwards). Saturdays and Sundays are skipped."""
    result = start
    step = 1 if days >= 0 else -1
    remaining = abs(days)
    while remaining:
        result += timedelta(days=step)
        if result.weekday() < 5:
            remaining -= 1
    return result


def offset_date(anchor: date, cfg: TimelineRuleConfig) -> date:
    days = -cfg.days if cfg.before_meeting else cfg.days
    if cfg.business_days_only:
        return add_business_days(anchor, days)
    return anchor + timedelta(days=days)


def calculate_due_dates(scheduled_at: date | datetime, rule_pack: Optional[RulePack]) -> Dict[str, date]:
    """Deadlines keyed by rule definition key, for enabled rules whose merged config has numeric `days`.

    A rule with `relativeTo` is anchored on the named rule's due date and is omitted when
    that anchor has no due date.
    """
    if rule_pack is None:
        return {}

    anchor = scheduled_at.date() if isinstance(scheduled_at, datetime) else scheduled_at
    due: Dict[str, date] = {}
    pending: List[Tuple[str, TimelineRuleConfig]] = []

    for rule in rule_pack.enabled_rules():
        cfg = timeline_config(rule.effective_config)
        if cfg is None:
            continue
        if cfg.relative_to:
            pending.append((rule.rule_key, cfg))
        else:
            due[rule.rule_key] = offset_date(anchor, cfg)

    # Anchors may themselves be relative; resolve until no further progress.
    while pending:
        unresolved = []
        for rule_key, cfg in pending:
            if cfg.relative_to in due:
                due[rule_key] = offset_date(due[cfg.relative_to], cfg)
            else:
                unresolved.append((rule_key, cfg))
        if len(unresolved) == len(pending):
            break
        pending = unresolved

    return due
