from __future__ import annotations

from typing import Any, Mapping, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .models import ParentDeliveryMethod


class RuleConfigBase(BaseModel):
    # Stored configs use camelCase (`businessDaysOnly`); snake_case is accepted too.
    # Unknown keys are kept so admin-entered settings round-trip untouched.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class TimelineRuleConfig(RuleConfigBase):
    days: int
    business_days_only: bool = False
    # Count backwards from the anchor (e.g. documents due before the meeting).
    before_meeting: bool = False
    # Anchor on another rule's due date instead of the meeting date.
    relative_to: Optional[str] = None


class BooleanFlagRuleConfig(RuleConfigBase):
    required: bool = Field(default=True, validation_alias=AliasChoices("required", "enabled"))


class DeliveryMethodRuleConfig(RuleConfigBase):
    method: ParentDeliveryMethod = ParentDeliveryMethod.SEND_HOME


class RecordingPolicyRuleConfig(RuleConfigBase):
    staff_must_record_if_parent_records: bool = False
    mark_as_not_official_record: bool = False


class RawRuleConfig(RuleConfigBase):
    """Fallback for rule keys with no known shape."""


RuleConfig = Union[
    TimelineRuleConfig,
    BooleanFlagRuleConfig,
    DeliveryMethodRuleConfig,
    RecordingPolicyRuleConfig,
    RawRuleConfig,
]


def numeric_days(raw: Mapping[str, Any]) -> Optional[int]:
    value = raw.get("days")
    # bool is an int subclass; a flag is not a day count.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value)


def timeline_config(raw: Mapping[str, Any]) -> Optional[TimelineRuleConfig]:
    """Return the timeline view of a merged config, or None when it has no numeric `days`."""
    days = numeric_days(raw)
    if days is None:
        return None
    payload = dict(raw)
    payload["days"] = days
    return TimelineRuleConfig.model_validate(payload)
