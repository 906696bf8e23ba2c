"""Approximate matching of contract clauses against known-violation exemplars."""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from rapidfuzz import fuzz, process

from contractrag.exceptions import ConfigurationError

from .models import Category, DetectionChannel, Severity, Violation, ViolationKind
from .registry import RuleRegistry, load_registry

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.35
DEFAULT_CONFIDENCE_FLOOR = 0.3
DEFAULT_CONFIDENCE_CEILING = 0.85

# Exemplar terms need at least this share present before a window counts
MIN_COVERAGE = 0.25
TERM_MATCH_CUTOFF = 85
MIN_FUZZY_TERM_LENGTH = 5

_WINDOW_RE = re.compile(r"[^.!?;\n]+[.!?;]?")
_TOKEN_RE = re.compile(r"[a-z0-9]+")

STOPWORDS = frozenset({
    "the", "and", "for", "any", "all", "are", "was", "were", "this", "that",
    "these", "those", "with", "from", "into", "onto", "upon", "under", "over",
    "shall", "will", "may", "must", "such", "its", "their", "they", "them",
    "has", "have", "had", "not", "but", "per", "each", "other", "than",
    "then", "which", "who", "whom", "whose", "where", "when", "been", "being",
    "agreement", "party", "parties", "hereunder", "herein", "thereof",
    "university", "contractor", "sponsor", "company",
})


@dataclass(frozen=True)
class ClauseWindow:
    """A sentence or clause of the contract with its offsets."""

    text: str
    start: int
    end: int


def clause_windows(text: str) -> list[ClauseWindow]:
    """Split text at sentence terminators, semicolons and newlines."""
    windows = []
    for match in _WINDOW_RE.finditer(text):
        raw = match.group()
        stripped = raw.strip()
        if not stripped:
            continue
        start = match.start() + (len(raw) - len(raw.lstrip()))
        windows.append(ClauseWindow(text=stripped, start=start, end=start + len(stripped)))
    return windows


def normalize_terms(text: str) -> list[str]:
    """Lowercase content terms with stopwords and short tokens removed."""
    return [
        token
        for token in _TOKEN_RE.findall(text.lower())
        if len(token) > 2 and token not in STOPWORDS
    ]


def term_coverage(window_terms: list[str], exemplar_terms: list[str]) -> float:
    """Share of exemplar terms found in the window, allowing inflected forms."""
    wanted = set(exemplar_terms)
    if not wanted or not window_terms:
        return 0.0

    present = set(window_terms)
    candidates = [term for term in present if len(term) >= MIN_FUZZY_TERM_LENGTH]

    covered = 0
    for term in wanted:
        if term in present:
            covered += 1
        elif len(term) >= MIN_FUZZY_TERM_LENGTH and candidates:
            if process.extractOne(
                term,
                candidates,
                scorer=fuzz.partial_ratio,
                score_cutoff=TERM_MATCH_CUTOFF,
            ):
                covered += 1

    return covered / len(wanted)


def clause_similarity(window_terms: list[str], exemplar_terms: list[str]) -> float:
    """Similarity in [0, 1] between a clause and an exemplar.

    The mean of rapidfuzz's token-set ratio and exemplar-term coverage.
    Clauses covering less than MIN_COVERAGE of the exemplar score 0.
    """
    coverage = term_coverage(window_terms, exemplar_terms)
    if coverage < MIN_COVERAGE:
        return 0.0

    token_score = fuzz.token_set_ratio(" ".join(window_terms), " ".join(exemplar_terms)) / 100
    return (token_score + coverage) / 2


class FuzzyMatcher:
    """Catches paraphrased clauses that exact patterns miss.

    Each clause window is scored against every exemplar; the best exemplar per
    (window, category) is emitted when it reaches the threshold, unless the
    window matches one of the category's exclusion patterns. Recall is
    favoured: false positives are left for the synthesizer to fold away.
    """

    def __init__(
        self,
        threshold: float = DEFAULT_THRESHOLD,
        confidence_floor: float = DEFAULT_CONFIDENCE_FLOOR,
        registry: Optional[RuleRegistry] = None,
    ):
        """Initialize the fuzzy matcher.

        Args:
            threshold: Minimum similarity (0..1) for a window to be reported
            confidence_floor: Confidence given to a window exactly at threshold
            registry: Rule registry supplying severities, references and
                confidence ceilings (default: bundled rules)
        """
        self._check_range("threshold", threshold)
        self._check_range("confidence_floor", confidence_floor)

        self.threshold = threshold
        self.confidence_floor = confidence_floor
        self.registry = registry or load_registry()

    @staticmethod
    def _check_range(name: str, value: float) -> None:
        if not 0.0 <= value <= 1.0:
            raise ConfigurationError(f"{name} must be between 0 and 1, got {value}")

    def confidence_for(self, similarity: float, threshold: float, ceiling: float) -> float:
        """Map similarity in [threshold, 1] onto [floor, ceiling]."""
        floor = self.confidence_floor
        ceiling = max(ceiling, floor)
        if threshold >= 1.0:
            return ceiling

        scaled = floor + (similarity - threshold) / (1.0 - threshold) * (ceiling - floor)
        return max(floor, min(ceiling, scaled))

    def detect(
        self,
        text: str,
        exemplars: Optional[list[tuple[Category, str]]] = None,
        threshold: Optional[float] = None,
        already_flagged: Optional[list[Violation]] = None,
    ) -> list[Violation]:
        """Detect fuzzy violations in contract text.

        Args:
            text: Contract text
            exemplars: (category, exemplar) pairs (default: registry exemplars)
            threshold: Override of the instance threshold
            already_flagged: Violations whose spans should not be re-flagged
                for the same category

        Returns:
            FUZZY violations in text order
        """
        threshold = self.threshold if threshold is None else threshold
        self._check_range("threshold", threshold)

        if exemplars is None:
            exemplars = self.registry.exemplars()

        prepared = [
            (category, exemplar, normalize_terms(exemplar))
            for category, exemplar in exemplars
        ]
        flagged = already_flagged or []

        violations = []
        for window in clause_windows(text):
            window_terms = normalize_terms(window.text)
            if not window_terms:
                continue

            best: dict[Category, tuple[float, str]] = {}
            for category, exemplar, exemplar_terms in prepared:
                similarity = clause_similarity(window_terms, exemplar_terms)
                if similarity < threshold or similarity <= 0.0:
                    continue
                if similarity > best.get(category, (0.0, ""))[0]:
                    best[category] = (similarity, exemplar)

            for category, (similarity, exemplar) in best.items():
                if self._is_flagged(window, category, flagged):
                    continue
                rule = self.registry.get(category)
                if rule is not None and rule.is_excluded(window.text):
                    continue
                violations.append(self._build(window, category, similarity, exemplar, threshold))

        logger.debug(f"Fuzzy matcher found {len(violations)} violations")
        return violations

    @staticmethod
    def _is_flagged(window: ClauseWindow, category: Category, flagged: list[Violation]) -> bool:
        for violation in flagged:
            if violation.category != category:
                continue
            if violation.has_offsets:
                if violation.span_start < window.end and window.start < violation.span_end:
                    return True
            elif violation.matched_span and window.text.lower() in violation.matched_span.lower():
                return True
        return False

    def _build(
        self,
        window: ClauseWindow,
        category: Category,
        similarity: float,
        exemplar: str,
        threshold: float,
    ) -> Violation:
        rule = self.registry.get(category)
        ceiling = rule.confidence if rule else DEFAULT_CONFIDENCE_CEILING
        severity = rule.default_severity if rule else Severity.MEDIUM

        return Violation(
            id=f"fuzzy-{category.value}-{window.start}",
            category=category,
            kind=ViolationKind.PRESENT_PROBLEMATIC,
            severity=severity,
            matched_span=window.text,
            regulatory_reference=rule.regulatory_reference if rule else None,
            policy_reference=rule.policy_reference if rule else None,
            confidence=self.confidence_for(similarity, threshold, ceiling),
            detection_channel=DetectionChannel.FUZZY,
            description=f"Clause resembles a known {category.value} issue: \"{exemplar}\"",
            span_start=window.start,
            span_end=window.end,
        )


def detect_fuzzy_violations(
    text: str,
    exemplars: list[tuple[Category, str]],
    threshold: float = DEFAULT_THRESHOLD,
) -> list[Violation]:
    """Run a default fuzzy matcher once over text."""
    return FuzzyMatcher(threshold=threshold).detect(text, exemplars)
