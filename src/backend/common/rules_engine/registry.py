from __future__ import annotations

from typing import Any, Dict, Mapping, Type

from pydantic import ValidationError

from .config import RawRuleConfig, RuleConfig, RuleConfigBase, TimelineRuleConfig, numeric_days, timeline_config
from .errors import InvalidRuleConfig


class RuleConfigRegistry:
    """Maps stable rule keys to the typed config shape their settings follow."""

    def __init__(self):
        self._models: Dict[str, Type[RuleConfigBase]] = {}

    def register(self, rule_key: str, model: Type[RuleConfigBase]) -> None:
        if not rule_key:
            raise ValueError("Rule key is required")
        if rule_key in self._models:
            raise ValueError(f"Duplicate rule key registered: {rule_key}")
        self._models[rule_key] = model

    def model_for(self, rule_key: str, raw: Mapping[str, Any]) -> Type[RuleConfigBase]:
        if rule_key in self._models:
            return self._models[rule_key]
        # Unregistered keys: infer the shape, otherwise keep the raw map.
        if numeric_days(raw) is not None:
            return TimelineRuleConfig
        return RawRuleConfig

    def parse(self, rule_key: str, raw: Mapping[str, Any]) -> RuleConfig:
        model = self.model_for(rule_key, raw)
        return model.model_validate(dict(raw))  # type: ignore[return-value]

    def validate(self, rule_key: str, raw: Mapping[str, Any]) -> RuleConfig:
        """Parse a merged config, raising `InvalidRuleConfig` instead of a pydantic error.

        Any config with a numeric `days` must also read as a timeline, since the due-date
        calculator treats every such rule as one.
        """
        try:
            parsed = self.parse(rule_key, raw)
            if not isinstance(parsed, TimelineRuleConfig):
                timeline_config(raw)
        except ValidationError as exc:
            raise InvalidRuleConfig(rule_key, _first_error(exc)) from exc
        return parsed


def _first_error(exc: ValidationError) -> str:
    err = exc.errors()[0]
    location = ".".join(str(part) for part in err.get("loc", ())) or "config"
    return f"{location}: {err.get('msg', 'invalid value')}"


registry = RuleConfigRegistry()


def register_rule_config(rule_key: str, model: Type[RuleConfigBase]) -> Type[RuleConfigBase]:
    registry.register(rule_key, model)
    return model
