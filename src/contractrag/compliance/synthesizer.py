"""Merging, ranking and scoring of violations from every channel."""

import logging
from typing import Iterable, Optional

from rapidfuzz import fuzz

from contractrag.exceptions import ConfigurationError
from contractrag.rag.document import DomainTag

from .models import (
    ChannelStatus,
    ComplianceReport,
    DetectionChannel,
    ReportDiagnostics,
    RiskLevel,
    Severity,
    Violation,
    ViolationKind,
)
from .registry import RuleRegistry

logger = logging.getLogger(__name__)

DEFAULT_WEIGHTS = {
    Severity.CRITICAL: 30.0,
    Severity.HIGH: 15.0,
    Severity.MEDIUM: 5.0,
    Severity.LOW: 2.0,
}

DEFAULT_RISK_THRESHOLDS = {
    RiskLevel.LOW: 90.0,
    RiskLevel.MEDIUM: 75.0,
    RiskLevel.HIGH: 50.0,
}

DEFAULT_OVERLAP_FRACTION = 0.5

_REFERENCE_FIELDS = ("regulatory_reference", "policy_reference", "suggested_alternative")


def _normalize(text: str) -> str:
    return " ".join(text.lower().split())


def span_overlap(a: Violation, b: Violation) -> Optional[float]:
    """Overlap of two spans as a fraction of the shorter one.

    Offsets are used when both violations carry them, otherwise the best
    partial alignment of the shorter text inside the longer one. None when
    either span is unknown.
    """
    if a.has_offsets and b.has_offsets:
        shorter = min(a.span_end - a.span_start, b.span_end - b.span_start)
        if shorter <= 0:
            return 0.0
        shared = min(a.span_end, b.span_end) - max(a.span_start, b.span_start)
        return max(0, shared) / shorter

    if not a.matched_span or not b.matched_span:
        return None

    left, right = _normalize(a.matched_span), _normalize(b.matched_span)
    if not left or not right:
        return None
    if left in right or right in left:
        return 1.0

    return fuzz.partial_ratio(left, right) / 100


class ComplianceSynthesizer:
    """Folds rule, fuzzy and model findings into one ranked report.

    Two violations describe the same issue when they share a category and
    either both flag the clause as missing, or their spans overlap by at
    least ``overlap_fraction`` of the shorter span (containment counts as
    full overlap). A present-clause finding without any span duplicates any
    other present finding of its category.

    Example:
        ```python
        synthesizer = ComplianceSynthesizer(registry)
        report = synthesizer.synthesize(rule_hits, fuzzy_hits, llm_hits, min_confidence=0.5)
        report.compliance_score
        ```
    """

    def __init__(
        self,
        registry: Optional[RuleRegistry] = None,
        weights: Optional[dict] = None,
        risk_thresholds: Optional[dict] = None,
        overlap_fraction: float = DEFAULT_OVERLAP_FRACTION,
    ):
        """Initialize the synthesizer.

        Args:
            registry: Rule registry used to reconcile severities
            weights: Score deduction per severity (keys: severity names)
            risk_thresholds: Minimum score for the low, medium and high labels
            overlap_fraction: Span overlap at which two findings merge

        Raises:
            ConfigurationError: If weights or thresholds are not strictly ordered
        """
        self.registry = registry
        self.weights = self._validate_weights(weights or DEFAULT_WEIGHTS)
        self.risk_thresholds = self._validate_thresholds(risk_thresholds or DEFAULT_RISK_THRESHOLDS)
        self.overlap_fraction = overlap_fraction

    @staticmethod
    def _validate_weights(weights: dict) -> dict[Severity, float]:
        try:
            parsed = {Severity(str(getattr(k, "value", k)).upper()): float(v) for k, v in weights.items()}
        except ValueError as e:
            raise ConfigurationError(f"Invalid severity weights: {e}")

        missing = [s.value for s in Severity if s not in parsed]
        if missing:
            raise ConfigurationError(f"Missing severity weights: {', '.join(missing)}")

        ordered = [parsed[s] for s in (Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM, Severity.LOW)]
        if ordered[-1] < 0 or any(a <= b for a, b in zip(ordered, ordered[1:])):
            raise ConfigurationError(
                "Severity weights must be non-negative and strictly ordered "
                f"CRITICAL > HIGH > MEDIUM > LOW, got {ordered}"
            )
        return parsed

    @staticmethod
    def _validate_thresholds(thresholds: dict) -> dict[RiskLevel, float]:
        try:
            parsed = {RiskLevel(str(getattr(k, "value", k)).lower()): float(v) for k, v in thresholds.items()}
        except ValueError as e:
            raise ConfigurationError(f"Invalid risk thresholds: {e}")

        try:
            low, medium, high = (parsed[RiskLevel.LOW], parsed[RiskLevel.MEDIUM], parsed[RiskLevel.HIGH])
        except KeyError as e:
            raise ConfigurationError(f"Missing risk threshold: {e}")

        if not 100 >= low > medium > high >= 0:
            raise ConfigurationError(
                f"Risk thresholds must satisfy 100 >= low > medium > high >= 0, got {low}, {medium}, {high}"
            )
        return parsed

    def reconcile_severity(self, violation: Violation) -> Violation:
        """Pull a severity back to the category default unless confidently overridden."""
        if self.registry is None:
            return violation

        rule = self.registry.get(violation.category)
        if rule is None or violation.severity == rule.default_severity:
            return violation
        if violation.confidence > rule.confidence:
            return violation

        logger.debug(
            f"Reconciling {violation.id} severity {violation.severity.value} "
            f"-> {rule.default_severity.value}"
        )
        return violation.model_copy(update={"severity": rule.default_severity})

    def is_duplicate(self, a: Violation, b: Violation) -> bool:
        """Check whether two violations describe the same issue."""
        if a.category != b.category:
            return False

        missing_a = a.kind == ViolationKind.MISSING_REQUIRED
        missing_b = b.kind == ViolationKind.MISSING_REQUIRED
        if missing_a or missing_b:
            return missing_a and missing_b

        overlap = span_overlap(a, b)
        if overlap is None:
            # A finding with no span cannot be told apart from its category
            return not (a.matched_span or a.has_offsets) or not (b.matched_span or b.has_offsets)
        return overlap >= self.overlap_fraction

    def group(self, violations: list[Violation]) -> list[list[Violation]]:
        """Partition violations into duplicate groups, in detection order.

        A violation joins the first group whose every member it duplicates,
        so one wide span never chains two unrelated findings together.
        """
        groups: list[list[Violation]] = []
        for violation in violations:
            for group in groups:
                if all(self.is_duplicate(member, violation) for member in group):
                    group.append(violation)
                    break
            else:
                groups.append([violation])
        return groups

    @staticmethod
    def merge(group: list[Violation]) -> Violation:
        """Collapse a duplicate group into its most confident member."""
        best = group[0]
        for candidate in group[1:]:
            if candidate.confidence > best.confidence:
                best = candidate

        if len(group) == 1:
            return best

        update = {}
        for name in _REFERENCE_FIELDS:
            if getattr(best, name) is None:
                update[name] = next(
                    (getattr(v, name) for v in group if getattr(v, name) is not None),
                    None,
                )

        if best.matched_span is None:
            donor = next((v for v in group if v.matched_span is not None), None)
            if donor is not None:
                update.update(
                    matched_span=donor.matched_span,
                    span_start=donor.span_start,
                    span_end=donor.span_end,
                )

        update["severity"] = max((v.severity for v in group), key=lambda s: s.rank)
        if len({v.detection_channel for v in group}) > 1:
            update["detection_channel"] = DetectionChannel.MERGED
        update["merged_ids"] = [v.id for v in group if v.id != best.id]

        return best.model_copy(update=update)

    def score(self, violations: Iterable[Violation]) -> float:
        """100 minus the severity weights, clamped to [0, 100]."""
        deduction = sum(self.weights[v.severity] for v in violations)
        return max(0.0, min(100.0, 100.0 - deduction))

    def risk_for(self, score: float) -> RiskLevel:
        """Map a compliance score onto a risk label."""
        if score >= self.risk_thresholds[RiskLevel.LOW]:
            return RiskLevel.LOW
        if score >= self.risk_thresholds[RiskLevel.MEDIUM]:
            return RiskLevel.MEDIUM
        if score >= self.risk_thresholds[RiskLevel.HIGH]:
            return RiskLevel.HIGH
        return RiskLevel.CRITICAL

    def synthesize(
        self,
        rule: list[Violation],
        fuzzy: list[Violation],
        llm: list[Violation],
        *,
        min_confidence: float = 0.0,
        include_filtered: bool = False,
        context_sources: Iterable[DomainTag] = (),
        channels: Optional[dict[str, ChannelStatus]] = None,
        channel_errors: Optional[dict[str, str]] = None,
    ) -> ComplianceReport:
        """Merge, rank, filter and score violations into a report.

        Args:
            rule: RULE channel findings
            fuzzy: FUZZY channel findings
            llm: LLM channel findings
            min_confidence: Violations below this are left out of the report
            include_filtered: List the left-out violations in diagnostics
            context_sources: Knowledge domains that contributed context
            channels: Status of each stage
            channel_errors: Error message of each stage that did not finish

        Returns:
            A fresh ComplianceReport
        """
        detected = [self.reconcile_severity(v) for v in [*rule, *fuzzy, *llm]]
        merged = [self.merge(group) for group in self.group(detected)]

        # sorted() is stable, so equal keys keep detection order
        ranked = sorted(merged, key=lambda v: (-v.severity.rank, -v.confidence))

        kept = [v for v in ranked if v.confidence >= min_confidence]
        filtered = [v for v in ranked if v.confidence < min_confidence]

        score = self.score(kept)
        diagnostics = ReportDiagnostics(
            total_detected=len(detected),
            filtered_out=len(filtered),
            per_channel_counts={
                DetectionChannel.RULE.value: len(rule),
                DetectionChannel.FUZZY.value: len(fuzzy),
                DetectionChannel.LLM.value: len(llm),
            },
            filtered_violations=filtered if include_filtered else [],
            channel_errors=dict(channel_errors or {}),
        )

        report = ComplianceReport(
            violations=kept,
            overall_risk=self.risk_for(score),
            compliance_score=score,
            context_sources_used=set(context_sources),
            channels=dict(channels or {}),
            diagnostics=diagnostics,
        )

        logger.info(
            f"Synthesized {len(kept)} violations from {len(detected)} findings "
            f"(score {score:.0f}, risk {report.overall_risk.value})"
        )
        return report
