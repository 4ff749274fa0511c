"""Built-in rule catalog used by `RuleCatalog.seed_defaults` and the catalog CLI."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Type

from .config import (
    BooleanFlagRuleConfig,
    DeliveryMethodRuleConfig,
    RecordingPolicyRuleConfig,
    RuleConfigBase,
    TimelineRuleConfig,
)
from .models import PlanType
from .registry import register_rule_config


@dataclass(frozen=True)
class BuiltinRule:
    key: str
    name: str
    description: str
    config_model: Type[RuleConfigBase]
    default_config: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class BuiltinEvidenceType:
    key: str
    name: str
    applies_to: PlanType = PlanType.ALL


BUILTIN_RULES: List[BuiltinRule] = [
    BuiltinRule(
        key="PRE_MEETING_DOCS_DAYS",
        name="Pre-Meeting Documents Deadline",
        description="Requires draft documents to be delivered to parents before the meeting",
        config_model=TimelineRuleConfig,
        default_config={"days": 5, "businessDaysOnly": True, "beforeMeeting": True},
    ),
    BuiltinRule(
        key="POST_MEETING_DOCS_DAYS",
        name="Post-Meeting Documents Deadline",
        description="Requires final documents to be delivered to parents after the meeting",
        config_model=TimelineRuleConfig,
        default_config={"days": 5, "businessDaysOnly": True},
    ),
    BuiltinRule(
        key="DEFAULT_DELIVERY_METHOD",
        name="Default Delivery Method",
        description="Sets the default method for document delivery to parents",
        config_model=DeliveryMethodRuleConfig,
        default_config={"method": "SEND_HOME"},
    ),
    BuiltinRule(
        key="US_MAIL_PRE_MEETING_DAYS",
        name="US Mail Pre-Meeting Offset",
        description="Additional days when using US Mail for pre-meeting documents",
        config_model=TimelineRuleConfig,
        default_config={
            "days": 3,
            "businessDaysOnly": True,
            "beforeMeeting": True,
            "relativeTo": "PRE_MEETING_DOCS_DAYS",
        },
    ),
    BuiltinRule(
        key="US_MAIL_POST_MEETING_DAYS",
        name="US Mail Post-Meeting Offset",
        description="Additional days when using US Mail for post-meeting documents",
        config_model=TimelineRuleConfig,
        default_config={
            "days": 3,
            "businessDaysOnly": True,
            "beforeMeeting": True,
            "relativeTo": "POST_MEETING_DOCS_DAYS",
        },
    ),
    BuiltinRule(
        key="CONFERENCE_NOTES_REQUIRED",
        name="Conference Notes Required",
        description="Requires conference notes before meeting can be closed",
        config_model=BooleanFlagRuleConfig,
        default_config={"required": True},
    ),
    BuiltinRule(
        key="INITIAL_IEP_CONSENT_GATE",
        name="Initial IEP Consent",
        description="Blocks initial IEP implementation until parent consent is obtained",
        config_model=BooleanFlagRuleConfig,
        default_config={"enabled": True},
    ),
    BuiltinRule(
        key="CONTINUED_MEETING_NOTICE_DAYS",
        name="Continued Meeting Notice",
        description="Minimum notice days for continued meetings; waiver required if less",
        config_model=TimelineRuleConfig,
        default_config={"days": 10},
    ),
    BuiltinRule(
        key="CONTINUED_MEETING_MUTUAL_AGREEMENT",
        name="Continued Meeting Mutual Agreement",
        description="Requires mutual agreement for continued meeting dates",
        config_model=BooleanFlagRuleConfig,
        default_config={"required": True},
    ),
    BuiltinRule(
        key="AUDIO_RECORDING_RULE",
        name="Audio Recording Policy",
        description="Policy for audio recording during meetings",
        config_model=RecordingPolicyRuleConfig,
        default_config={"staffMustRecordIfParentRecords": True, "markAsNotOfficialRecord": True},
    ),
]

BUILTIN_EVIDENCE_TYPES: List[BuiltinEvidenceType] = [
    BuiltinEvidenceType(key="CONFERENCE_NOTES", name="Conference Notes"),
    BuiltinEvidenceType(key="CONSENT_FORM", name="Parent Consent Form", applies_to=PlanType.IEP),
    BuiltinEvidenceType(key="NOTICE_WAIVER", name="Notice Waiver"),
    BuiltinEvidenceType(key="RECORDING_ACK", name="Recording Acknowledgment"),
    BuiltinEvidenceType(key="PARENT_DOCS_SENT", name="Pre-Meeting Documents Sent"),
    BuiltinEvidenceType(key="FINAL_DOC_SENT", name="Final Document Sent"),
]


for _rule in BUILTIN_RULES:
    register_rule_config(_rule.key, _rule.config_model)
