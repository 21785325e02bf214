"""Capability-specific acceptance rules for handler results."""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, slots=True)
class ValidationRule:
    """One acceptance check applied to a successful result's payload."""

    validate: Callable[[Any], bool]
    error_message: str


def _text_longer_than(length: int) -> Callable[[Any], bool]:
    return lambda data: isinstance(data, str) and len(data) > length


def _non_blank_text(data: Any) -> bool:
    return isinstance(data, str) and bool(data.strip())


def _keyword_list(data: Any) -> bool:
    return isinstance(data, list) or (isinstance(data, str) and "," in data)


def _image_reference(data: Any) -> bool:
    return isinstance(data, str) and (data.startswith("http") or data.startswith("data:image"))


def _image_results(data: Any) -> bool:
    if isinstance(data, list) and data:
        return any(isinstance(item, dict) and "url" in item for item in data)
    if isinstance(data, str):
        return data.startswith("http")
    return False


DEFAULT_RULES: dict[str, tuple[ValidationRule, ...]] = {
    "generate": (ValidationRule(_non_blank_text, "Generated text is empty or invalid"),),
    "research": (ValidationRule(_text_longer_than(50), "Research result is too short or empty"),),
    "keywords": (ValidationRule(_keyword_list, "Keywords result is not a list"),),
    "analyze": (ValidationRule(lambda data: isinstance(data, dict), "Analysis result is not a valid object"),),
    "images": (ValidationRule(_image_reference, "Image result is not a valid URL or base64 data"),),
    "summarize": (ValidationRule(_text_longer_than(20), "Summary is too short or empty"),),
    "translate": (ValidationRule(_non_blank_text, "Translation result is empty"),),
    "reasoning": (ValidationRule(_text_longer_than(50), "Reasoning result is too short"),),
    "code": (ValidationRule(_text_longer_than(10), "Code result is too short or empty"),),
    "scrape": (ValidationRule(_text_longer_than(0), "Scraped content is empty"),),
    "search-images": (ValidationRule(_image_results, "No valid images returned"),),
}


class ResultValidator:
    """Applies per-capability rules. Unknown capabilities always pass."""

    def __init__(self, rules: dict[str, tuple[ValidationRule, ...]] | None = None) -> None:
        source = DEFAULT_RULES if rules is None else rules
        self._rules: dict[str, list[ValidationRule]] = {cap: list(r) for cap, r in source.items()}

    def add_rule(self, capability: str, rule: ValidationRule) -> None:
        self._rules.setdefault(capability, []).append(rule)

    def rules_for(self, capability: str) -> list[ValidationRule]:
        return list(self._rules.get(capability, []))

    def validate(self, capability: str, data: Any) -> str | None:
        """Return the first failing rule's message, or ``None`` when accepted."""
        for rule in self._rules.get(capability, []):
            if not rule.validate(data):
                return rule.error_message
        return None
