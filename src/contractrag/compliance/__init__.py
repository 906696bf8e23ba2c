"""Compliance detection and synthesis.

This module provides:
- Violation, report and channel outcome types
- The versioned rule registry
- Rule, fuzzy and generative-model detection channels
- The synthesizer that merges, ranks and scores findings
- The analyzer that orchestrates one analysis
"""

# Data structures
from .models import (
    AnalysisOptions,
    Category,
    ChannelOutcome,
    ChannelStatus,
    ComplianceReport,
    DetectionChannel,
    ReportDiagnostics,
    RiskLevel,
    Severity,
    Violation,
    ViolationKind,
)

# Rule registry
from .registry import CategoryRule, RuleRegistry, load_registry

# Detection channels
from .rules import RuleDetector, detect_rule_violations
from .fuzzy import FuzzyMatcher, detect_fuzzy_violations
from .llm import LLMSynthesisStage, extract_json, locate_span, parse_model_output

# Synthesis
from .synthesizer import ComplianceSynthesizer
from .analyzer import ComplianceAnalyzer

__all__ = [
    # Data structures
    "AnalysisOptions",
    "Category",
    "ChannelOutcome",
    "ChannelStatus",
    "ComplianceReport",
    "DetectionChannel",
    "ReportDiagnostics",
    "RiskLevel",
    "Severity",
    "Violation",
    "ViolationKind",
    # Registry
    "CategoryRule",
    "RuleRegistry",
    "load_registry",
    # Channels
    "RuleDetector",
    "detect_rule_violations",
    "FuzzyMatcher",
    "detect_fuzzy_violations",
    "LLMSynthesisStage",
    "extract_json",
    "locate_span",
    "parse_model_output",
    # Synthesis
    "ComplianceSynthesizer",
    "ComplianceAnalyzer",
]
