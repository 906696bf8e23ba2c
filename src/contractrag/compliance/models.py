"""Violation, channel outcome and report types."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from contractrag.rag.document import DomainTag


class Category(str, Enum):
    """Compliance issue categories."""

    INDEMNIFICATION = "indemnification"
    IP_RIGHTS = "ip_rights"
    PAYMENT_TERMS = "payment_terms"
    INSURANCE = "insurance"
    TERMINATION = "termination"
    EXPORT_CONTROL = "export_control"
    OTHER = "other"


class ViolationKind(str, Enum):
    """Whether a clause is present and problematic or required and absent."""

    PRESENT_PROBLEMATIC = "PRESENT_PROBLEMATIC"
    MISSING_REQUIRED = "MISSING_REQUIRED"


class Severity(str, Enum):
    """Violation severity, ordered CRITICAL > HIGH > MEDIUM > LOW."""

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.CRITICAL: 4,
    Severity.HIGH: 3,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
}


class DetectionChannel(str, Enum):
    """Subsystem that produced a violation."""

    RULE = "RULE"
    FUZZY = "FUZZY"
    LLM = "LLM"
    MERGED = "MERGED"


class RiskLevel(str, Enum):
    """Overall risk label derived from the compliance score."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ChannelStatus(str, Enum):
    """How a best-effort stage finished."""

    OK = "ok"
    DEGRADED = "degraded"
    FAILED = "failed"
    SKIPPED = "skipped"


class Violation(BaseModel):
    """A single detected compliance issue.

    Attributes:
        id: Identifier, stable for identical input
        category: Issue category
        kind: Present-and-problematic or missing-and-required
        severity: Severity level
        matched_span: Excerpt of the contract, None for missing clauses
        regulatory_reference: Regulation citation (e.g. "FAR 28.106")
        policy_reference: Institutional policy citation
        suggested_alternative: Replacement language
        confidence: Detection confidence in [0, 1]
        detection_channel: Producing channel, MERGED after cross-channel dedup
        description: Human readable explanation
        span_start: Offset of the flagged text in the contract, when known.
            Dedup compares these; matched_span may carry extra context
        span_end: End offset (exclusive), when known
        merged_ids: IDs of the violations folded into this one
    """

    id: str
    category: Category
    kind: ViolationKind = ViolationKind.PRESENT_PROBLEMATIC
    severity: Severity
    matched_span: Optional[str] = None
    regulatory_reference: Optional[str] = None
    policy_reference: Optional[str] = None
    suggested_alternative: Optional[str] = None
    confidence: float = Field(ge=0.0, le=1.0)
    detection_channel: DetectionChannel
    description: Optional[str] = None
    span_start: Optional[int] = None
    span_end: Optional[int] = None
    merged_ids: list[str] = Field(default_factory=list)

    @property
    def has_offsets(self) -> bool:
        return self.span_start is not None and self.span_end is not None

    def __repr__(self) -> str:
        return (
            f"Violation(id={self.id!r}, category={self.category.value}, "
            f"severity={self.severity.value}, channel={self.detection_channel.value}, "
            f"confidence={self.confidence:.2f})"
        )


@dataclass
class ChannelOutcome:
    """Result of one best-effort detection or retrieval stage.

    Stages report failure through this type instead of raising, so the
    analyzer can branch on ``status`` deterministically.

    Class Methods:
        ok(): Stage completed
        degraded(): Stage completed with partial or unusable output
        failed(): Stage could not run
        skipped(): Stage was disabled for this request
    """

    channel: str
    status: ChannelStatus = ChannelStatus.OK
    violations: list[Violation] = field(default_factory=list)
    error: Optional[str] = None

    @classmethod
    def ok(cls, channel: str, violations: Optional[list[Violation]] = None) -> "ChannelOutcome":
        return cls(channel=channel, status=ChannelStatus.OK, violations=violations or [])

    @classmethod
    def degraded(
        cls,
        channel: str,
        error: str,
        violations: Optional[list[Violation]] = None,
    ) -> "ChannelOutcome":
        return cls(
            channel=channel,
            status=ChannelStatus.DEGRADED,
            violations=violations or [],
            error=error,
        )

    @classmethod
    def failed(cls, channel: str, error: str) -> "ChannelOutcome":
        return cls(channel=channel, status=ChannelStatus.FAILED, error=error)

    @classmethod
    def skipped(cls, channel: str, reason: Optional[str] = None) -> "ChannelOutcome":
        return cls(channel=channel, status=ChannelStatus.SKIPPED, error=reason)

    def is_ok(self) -> bool:
        """Check if the stage completed normally."""
        return self.status == ChannelStatus.OK

    def __repr__(self) -> str:
        parts = [f"ChannelOutcome(channel={self.channel!r}, status={self.status.value}"]
        if self.violations:
            parts.append(f", violations={len(self.violations)}")
        if self.error:
            parts.append(f", error={self.error!r}")
        parts.append(")")
        return "".join(parts)


class AnalysisOptions(BaseModel):
    """Per-request analysis switches."""

    check_regulatory: bool = True
    check_policy: bool = True
    include_alternatives: bool = True
    min_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    include_filtered: bool = False


class ReportDiagnostics(BaseModel):
    """Counts behind a report, for consumers that need to audit filtering."""

    total_detected: int = 0
    filtered_out: int = 0
    per_channel_counts: dict[str, int] = Field(default_factory=dict)
    filtered_violations: list[Violation] = Field(default_factory=list)
    channel_errors: dict[str, str] = Field(default_factory=dict)


class ComplianceReport(BaseModel):
    """Outcome of one analysis call. Never persisted by the engine.

    Attributes:
        violations: Ranked by severity, then confidence, then detection order
        overall_risk: Label derived from compliance_score
        compliance_score: 100 minus the severity weights, clamped to [0, 100]
        context_sources_used: Knowledge domains that contributed context
        channels: Status of every stage ("rule", "fuzzy", "retrieval", "llm")
        diagnostics: Detection and filtering totals
    """

    violations: list[Violation] = Field(default_factory=list)
    overall_risk: RiskLevel = RiskLevel.LOW
    compliance_score: float = Field(default=100.0, ge=0.0, le=100.0)
    context_sources_used: set[DomainTag] = Field(default_factory=set)
    channels: dict[str, ChannelStatus] = Field(default_factory=dict)
    diagnostics: ReportDiagnostics = Field(default_factory=ReportDiagnostics)

    @property
    def is_degraded(self) -> bool:
        """True when some stage could not fully check the contract."""
        return any(
            status in (ChannelStatus.DEGRADED, ChannelStatus.FAILED)
            for status in self.channels.values()
        )

    def by_category(self, category: Category) -> list[Violation]:
        return [v for v in self.violations if v.category == category]
