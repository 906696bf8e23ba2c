"""Deterministic pattern-rule detection."""

import bisect
import logging
import re
from typing import Optional

from .models import DetectionChannel, Violation, ViolationKind
from .registry import CategoryRule, RuleRegistry, load_registry

logger = logging.getLogger(__name__)

CONTEXT_CHARS = 100
PROXIMITY_CHARS = 100

_SENTENCE_END = re.compile(r"[.!?;]+(?=\s|$)|\n\s*\n")


def sentence_starts(text: str) -> list[int]:
    """Offsets at which sentences begin, always starting with 0."""
    starts = [0]
    for match in _SENTENCE_END.finditer(text):
        if match.end() < len(text):
            starts.append(match.end())
    return starts


def _sentence_of(starts: list[int], position: int) -> int:
    return bisect.bisect_right(starts, position) - 1


class RuleDetector:
    """Scans contract text with the registry's per-category patterns.

    Every presence match becomes a PRESENT_PROBLEMATIC violation whose
    ``matched_span`` is the match plus ``context_chars`` on each side, while
    ``span_start``/``span_end`` cover the match alone. Matches of one
    category that share a sentence, or sit within ``proximity_chars`` of
    each other, collapse into one violation. A required category none of whose required
    patterns occur anywhere yields a single MISSING_REQUIRED violation.
    """

    def __init__(
        self,
        registry: Optional[RuleRegistry] = None,
        context_chars: int = CONTEXT_CHARS,
        proximity_chars: int = PROXIMITY_CHARS,
    ):
        """Initialize the rule detector.

        Args:
            registry: Rule registry (default: bundled rules)
            context_chars: Characters of context kept on each side of a match
            proximity_chars: Matches closer than this collapse together
        """
        self.registry = registry or load_registry()
        self.context_chars = context_chars
        self.proximity_chars = proximity_chars

    def detect(self, text: str) -> list[Violation]:
        """Detect rule violations in contract text."""
        starts = sentence_starts(text)
        violations = []

        for rule in self.registry:
            violations.extend(self._presence_violations(rule, text, starts))

            if rule.required and not rule.has_required_clause(text):
                violations.append(self._missing_violation(rule))

        logger.debug(f"Rule detector found {len(violations)} violations")
        return violations

    def _match_groups(
        self,
        rule: CategoryRule,
        text: str,
        starts: list[int],
    ) -> list[tuple[int, int]]:
        matches = sorted(
            (m.start(), m.end())
            for pattern in rule.compiled_presence
            for m in pattern.finditer(text)
        )

        groups: list[list[int]] = []
        for start, end in matches:
            if groups:
                last = groups[-1]
                same_sentence = _sentence_of(starts, start) == _sentence_of(starts, last[0])
                if same_sentence or start - last[1] <= self.proximity_chars:
                    last[1] = max(last[1], end)
                    continue
            groups.append([start, end])

        return [(start, end) for start, end in groups]

    def _presence_violations(
        self,
        rule: CategoryRule,
        text: str,
        starts: list[int],
    ) -> list[Violation]:
        violations = []
        for start, end in self._match_groups(rule, text, starts):
            context_start = max(0, start - self.context_chars)
            context_end = min(len(text), end + self.context_chars)

            violations.append(Violation(
                id=f"rule-{rule.category.value}-{start}",
                category=rule.category,
                kind=ViolationKind.PRESENT_PROBLEMATIC,
                severity=rule.default_severity,
                matched_span=text[context_start:context_end],
                regulatory_reference=rule.regulatory_reference,
                policy_reference=rule.policy_reference,
                confidence=rule.confidence,
                detection_channel=DetectionChannel.RULE,
                description=rule.description or None,
                span_start=start,
                span_end=end,
            ))
        return violations

    def _missing_violation(self, rule: CategoryRule) -> Violation:
        return Violation(
            id=f"rule-{rule.category.value}-missing",
            category=rule.category,
            kind=ViolationKind.MISSING_REQUIRED,
            severity=rule.default_severity,
            regulatory_reference=rule.regulatory_reference,
            policy_reference=rule.policy_reference,
            confidence=rule.confidence,
            detection_channel=DetectionChannel.RULE,
            description=rule.missing_description or rule.description or None,
        )


def detect_rule_violations(text: str, registry: Optional[RuleRegistry] = None) -> list[Violation]:
    """Run the rule detector once over text."""
    return RuleDetector(registry).detect(text)
