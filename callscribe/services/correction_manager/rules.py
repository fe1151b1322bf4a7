"""
Correction rule engine.

Rules are applied one after another; each rule rewrites the output of the
previous one, so ordering (ascending priority) changes the result.
"""

import re
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from callscribe.errors import CorrectionRuleInvalid

# "$1" style group references written by the settings UI
_DOLLAR_GROUP_REFERENCE = re.compile(r"\$(\d+)")


def compile_rule(rule: Mapping[str, Any]) -> re.Pattern:
    """
    Build the pattern for one rule.

    Literal rules have their metacharacters escaped; regex rules are used verbatim.

    Raises:
        CorrectionRuleInvalid: If the rule has no find text or does not compile
    """
    find_text = rule.get("find_text") or ""
    if not find_text:
        raise CorrectionRuleInvalid("Correction rule has empty find text", details=dict(rule))

    pattern = find_text if rule.get("is_regex") else re.escape(find_text)
    flags = 0 if rule.get("case_sensitive") else re.IGNORECASE

    try:
        return re.compile(pattern, flags)
    except re.error as e:
        raise CorrectionRuleInvalid(
            f"Invalid correction pattern {find_text!r}: {e}", details={"id": rule.get("id")}
        ) from e


def apply_rule(text: str, rule: Mapping[str, Any]) -> str:
    """
    Apply a single rule to text.

    Raises:
        CorrectionRuleInvalid: If the rule cannot be compiled or its replacement is malformed
    """
    pattern = compile_rule(rule)
    replace_text = rule.get("replace_text") or ""

    if not rule.get("is_regex"):
        return pattern.sub(lambda _match: replace_text, text)

    template = _DOLLAR_GROUP_REFERENCE.sub(r"\\g<\1>", replace_text)
    try:
        return pattern.sub(template, text)
    except (re.error, IndexError) as e:
        raise CorrectionRuleInvalid(
            f"Invalid replacement {replace_text!r}: {e}", details={"id": rule.get("id")}
        ) from e


def apply_correction_rules(
    text: str,
    rules: Iterable[Mapping[str, Any]],
    on_invalid: Callable[[Mapping[str, Any], CorrectionRuleInvalid], None] | None = None,
) -> str:
    """
    Apply correction rules in the given order.

    Args:
        text: Text to correct
        rules: Rules already ordered by ascending priority
        on_invalid: Called with (rule, error) for every skipped rule

    Returns:
        Corrected text (unchanged when text is empty)
    """
    if not text:
        return text

    corrected = text
    for rule in rules:
        try:
            corrected = apply_rule(corrected, rule)
        except CorrectionRuleInvalid as e:
            if on_invalid is not None:
                on_invalid(rule, e)
    return corrected
