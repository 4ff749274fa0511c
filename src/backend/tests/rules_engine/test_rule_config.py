import pytest

from common.rules_engine.config import (
    BooleanFlagRuleConfig,
    DeliveryMethodRuleConfig,
    RawRuleConfig,
    RecordingPolicyRuleConfig,
    TimelineRuleConfig,
    numeric_days,
    timeline_config,
)
from common.rules_engine.errors import InvalidRuleConfig
from common.rules_engine.models import ParentDeliveryMethod, merge_config
from common.rules_engine.registry import RuleConfigRegistry, registry


def test_timeline_accepts_camel_and_snake_case():
    camel = TimelineRuleConfig.model_validate({"days": 5, "businessDaysOnly": True, "relativeTo": "X"})
    snake = TimelineRuleConfig.model_validate({"days": 5, "business_days_only": True, "relative_to": "X"})
    assert camel == snake
    assert camel.model_dump(by_alias=True) == {
        "days": 5,
        "businessDaysOnly": True,
        "beforeMeeting": False,
        "relativeTo": "X",
    }


def test_unknown_keys_round_trip():
    cfg = TimelineRuleConfig.model_validate({"days": 3, "note": "district memo"})
    assert cfg.model_dump(by_alias=True)["note"] == "district memo"


def test_boolean_flag_accepts_enabled_or_required():
    assert BooleanFlagRuleConfig.model_validate({"enabled": False}).required is False
    assert BooleanFlagRuleConfig.model_validate({"required": False}).required is False
    assert BooleanFlagRuleConfig.model_validate({}).required is True


def test_delivery_method_validates_enum():
    assert DeliveryMethodRuleConfig.model_validate({"method": "US_MAIL"}).method == ParentDeliveryMethod.US_MAIL
    with pytest.raises(ValueError):
        DeliveryMethodRuleConfig.model_validate({"method": "CARRIER_PIGEON"})


def test_registry_knows_builtin_shapes():
    assert registry.model_for("PRE_MEETING_DOCS_DAYS", {}) is TimelineRuleConfig
    assert registry.model_for("AUDIO_RECORDING_RULE", {"days": 3}) is RecordingPolicyRuleConfig
    parsed = registry.parse("AUDIO_RECORDING_RULE", {"staffMustRecordIfParentRecords": True})
    assert parsed.staff_must_record_if_parent_records is True


def test_registry_infers_unregistered_shapes():
    reg = RuleConfigRegistry()
    assert reg.model_for("CUSTOM_DAYS", {"days": 4}) is TimelineRuleConfig
    assert reg.model_for("CUSTOM_FLAG", {"days": True}) is RawRuleConfig
    assert reg.model_for("CUSTOM_TEXT", {"label": "x"}) is RawRuleConfig


def test_registry_rejects_duplicates():
    reg = RuleConfigRegistry()
    reg.register("A", TimelineRuleConfig)
    with pytest.raises(ValueError):
        reg.register("A", RawRuleConfig)
    with pytest.raises(ValueError):
        reg.register("", RawRuleConfig)


def test_numeric_days():
    assert numeric_days({"days": 5}) == 5
    assert numeric_days({"days": 2.0}) == 2
    assert numeric_days({"days": "5"}) is None
    assert numeric_days({"days": False}) is None
    assert numeric_days({}) is None


def test_timeline_config_on_merged_settings():
    merged = merge_config({"days": 5, "businessDaysOnly": True}, {"businessDaysOnly": False})
    cfg = timeline_config(merged)
    assert cfg.days == 5
    assert cfg.business_days_only is False
    assert timeline_config({"required": True}) is None


def test_merge_config_handles_missing_sides():
    assert merge_config(None, None) == {}
    assert merge_config({"a": 1}, None) == {"a": 1}


def test_validate_rejects_bad_registered_config():
    with pytest.raises(InvalidRuleConfig) as exc:
        registry.validate("DEFAULT_DELIVERY_METHOD", {"method": "CARRIER_PIGEON"})
    assert exc.value.rule_key == "DEFAULT_DELIVERY_METHOD"
    assert "method" in exc.value.detail


def test_validate_rejects_unreadable_timeline_fields():
    with pytest.raises(InvalidRuleConfig):
        registry.validate("POST_MEETING_DOCS_DAYS", {"days": 5, "beforeMeeting": None})
    with pytest.raises(InvalidRuleConfig):
        registry.validate("POST_MEETING_DOCS_DAYS", {"days": 5, "relativeTo": 7})


def test_validate_checks_days_on_non_timeline_rules():
    # Any numeric `days` feeds the due-date calculator, whatever the rule's own shape.
    with pytest.raises(InvalidRuleConfig):
        registry.validate("CONFERENCE_NOTES_REQUIRED", {"required": True, "days": 2, "businessDaysOnly": "sometimes"})
    parsed = registry.validate("CONFERENCE_NOTES_REQUIRED", {"required": False})
    assert isinstance(parsed, BooleanFlagRuleConfig)
    assert parsed.required is False


def test_invalid_rule_config_is_a_value_error():
    with pytest.raises(ValueError):
        registry.validate("CUSTOM_DAYS", {"days": 4, "businessDaysOnly": [1]})
