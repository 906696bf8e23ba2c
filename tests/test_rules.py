"""Tests for the rule registry and the rule detector."""

import pytest

from conftest import INDEMNITY_CONTRACT, MISSING_TERMINATION_CONTRACT
from contractrag.compliance import (
    Category,
    CategoryRule,
    DetectionChannel,
    RuleDetector,
    RuleRegistry,
    Severity,
    ViolationKind,
    detect_rule_violations,
    load_registry,
)
from contractrag.exceptions import ConfigurationError

FILLER = (
    " The parties will meet quarterly to review progress on the research program "
    "and discuss scheduling of laboratory work with staff members."
)


class TestRegistry:
    """Tests for the versioned rule registry."""

    def test_bundled_registry(self, registry):
        """Test every category has a rule with a default severity."""
        assert registry.version
        assert {rule.category for rule in registry} == set(Category)
        assert registry.default_severity(Category.INDEMNIFICATION) == Severity.CRITICAL
        assert registry.get(Category.TERMINATION).required

    def test_exemplars(self, registry):
        """Test exemplars are exposed as (category, text) pairs."""
        exemplars = registry.exemplars()

        assert exemplars
        assert all(isinstance(category, Category) and text for category, text in exemplars)

    def test_invalid_pattern(self, tmp_path):
        """Test a registry with a broken regex is rejected."""
        path = tmp_path / "rules.yaml"
        path.write_text(
            "version: '1'\n"
            "rules:\n"
            "  - category: insurance\n"
            "    default_severity: MEDIUM\n"
            "    confidence: 0.8\n"
            "    presence_patterns: ['(unclosed']\n"
        )

        with pytest.raises(ConfigurationError):
            load_registry(path)

    def test_duplicate_category(self, tmp_path):
        """Test two rules for one category are rejected."""
        rule = "  - category: insurance\n    default_severity: MEDIUM\n    confidence: 0.8\n"
        path = tmp_path / "rules.yaml"
        path.write_text("rules:\n" + rule + rule)

        with pytest.raises(ConfigurationError):
            load_registry(path)

    def test_missing_file(self, tmp_path):
        """Test a missing registry file is a configuration error."""
        with pytest.raises(ConfigurationError):
            load_registry(tmp_path / "nope.yaml")

    def test_exclusions(self, registry):
        """Test the other party indemnifying the University is excluded."""
        rule = registry.get(Category.INDEMNIFICATION)

        assert rule.is_excluded("Contractor shall indemnify and hold harmless the University")
        assert not rule.is_excluded("University shall indemnify and hold harmless the Contractor")


class TestRuleDetector:
    """Tests for pattern-based detection."""

    def test_indemnification_collapses_to_one(self, registry):
        """Test indemnify, defend and hold harmless in one clause is one violation."""
        violations = RuleDetector(registry).detect(INDEMNITY_CONTRACT)

        assert len(violations) == 1
        violation = violations[0]
        assert violation.category == Category.INDEMNIFICATION
        assert violation.severity == Severity.CRITICAL
        assert violation.kind == ViolationKind.PRESENT_PROBLEMATIC
        assert violation.detection_channel == DetectionChannel.RULE
        assert violation.confidence == 0.95
        assert violation.regulatory_reference == "FAR 28.106"
        assert "hold harmless" in violation.matched_span
        flagged = INDEMNITY_CONTRACT[violation.span_start:violation.span_end]
        assert flagged == "University shall indemnify, defend, and hold harmless"
        assert flagged in violation.matched_span
        assert violation.suggested_alternative is None

    def test_missing_termination(self, registry):
        """Test a contract without termination for convenience is flagged once."""
        violations = RuleDetector(registry).detect(MISSING_TERMINATION_CONTRACT)

        assert len(violations) == 1
        violation = violations[0]
        assert violation.category == Category.TERMINATION
        assert violation.kind == ViolationKind.MISSING_REQUIRED
        assert violation.severity == Severity.MEDIUM
        assert violation.matched_span is None
        assert violation.id == "rule-termination-missing"

    def test_separate_clauses_stay_separate(self, registry):
        """Test distant matches in different sentences are reported separately."""
        text = (
            "University shall indemnify the Sponsor." + FILLER + FILLER
            + " The University shall also hold the Sponsor harmless."
            + " Either party may terminate for convenience."
        )

        violations = [
            v for v in RuleDetector(registry).detect(text)
            if v.category == Category.INDEMNIFICATION
        ]

        assert len(violations) == 2
        assert violations[0].span_start < violations[1].span_start

    def test_context_window(self, registry):
        """Test the excerpt carries 100 characters of context but offsets cover the match."""
        text = "Either party may terminate for convenience." + FILLER + " Sponsor is subject to ITAR."

        violation = next(
            v for v in RuleDetector(registry).detect(text)
            if v.category == Category.EXPORT_CONTROL
        )

        match = text.index("ITAR")
        assert violation.matched_span == text[match - 100:]
        assert (violation.span_start, violation.span_end) == (match, match + 4)

    def test_deterministic(self, registry):
        """Test identical input gives identical violations."""
        detector = RuleDetector(registry)

        assert detector.detect(INDEMNITY_CONTRACT) == detector.detect(INDEMNITY_CONTRACT)

    def test_custom_registry(self):
        """Test detection follows whatever rules the registry holds."""
        registry = RuleRegistry(rules=[
            CategoryRule(
                category=Category.OTHER,
                default_severity=Severity.LOW,
                confidence=0.7,
                presence_patterns=[r"\bliquidated\s+damages\b"],
            )
        ])

        violations = RuleDetector(registry).detect("Liquidated damages of $500 per day apply.")

        assert len(violations) == 1
        assert violations[0].severity == Severity.LOW
        assert violations[0].id == "rule-other-0"

    def test_other_party_indemnity_not_flagged(self, registry):
        """Test the Contractor holding the University harmless is not flagged."""
        text = "The Contractor agrees to defend and hold the University harmless from all claims."

        violations = RuleDetector(registry).detect(text)

        assert not [v for v in violations if v.category == Category.INDEMNIFICATION]

    def test_detect_rule_violations(self, registry):
        """Test the one-shot helper matches the detector."""
        assert detect_rule_violations(INDEMNITY_CONTRACT, registry) == RuleDetector(registry).detect(INDEMNITY_CONTRACT)
