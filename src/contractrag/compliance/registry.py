"""
Rule registry - the versioned, data-driven table of detection rules.
"""

import re
from pathlib import Path
from typing import Iterator

import yaml
from pydantic import BaseModel, Field, PrivateAttr, ValidationError, field_validator

from contractrag.exceptions import ConfigurationError
from contractrag.rag.document import DomainTag
from contractrag.utils.logging import get_logger

from .models import Category, Severity

logger = get_logger(__name__)

DEFAULT_RULES_PATH = Path(__file__).resolve().parent.parent / "data" / "rules.yaml"


class CategoryRule(BaseModel):
    """
    Detection rule for one category.

    Presence patterns flag problematic clauses; required patterns describe
    clauses whose absence is itself a violation. Exclusion patterns mark
    clauses that look like the category but are acceptable, such as the
    other party indemnifying the University.
    """
    category: Category
    default_severity: Severity
    confidence: float = Field(ge=0.0, le=1.0)
    required: bool = False
    presence_patterns: list[str] = Field(default_factory=list)
    required_patterns: list[str] = Field(default_factory=list)
    exclusion_patterns: list[str] = Field(default_factory=list)
    probe_query: str | None = None
    probe_domain: DomainTag = DomainTag.POLICY
    regulatory_reference: str | None = None
    policy_reference: str | None = None
    suggested_alternative: str | None = None
    description: str = ""
    missing_description: str | None = None
    exemplars: list[str] = Field(default_factory=list)

    _presence: list[re.Pattern] = PrivateAttr(default_factory=list)
    _required: list[re.Pattern] = PrivateAttr(default_factory=list)
    _exclusion: list[re.Pattern] = PrivateAttr(default_factory=list)

    @field_validator("presence_patterns", "required_patterns", "exclusion_patterns")
    @classmethod
    def _check_patterns(cls, patterns: list[str]) -> list[str]:
        for pattern in patterns:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ValueError(f"invalid pattern {pattern!r}: {e}")
        return patterns

    def model_post_init(self, __context) -> None:
        self._presence = [re.compile(p, re.IGNORECASE) for p in self.presence_patterns]
        self._required = [re.compile(p, re.IGNORECASE) for p in self.required_patterns]
        self._exclusion = [re.compile(p, re.IGNORECASE) for p in self.exclusion_patterns]

    @property
    def compiled_presence(self) -> list[re.Pattern]:
        return self._presence

    @property
    def compiled_required(self) -> list[re.Pattern]:
        return self._required

    def is_triggered(self, text: str) -> bool:
        """Check whether any presence pattern occurs in text."""
        return any(p.search(text) for p in self._presence)

    def has_required_clause(self, text: str) -> bool:
        """Check whether any required pattern occurs in text."""
        return any(p.search(text) for p in self._required)

    def is_excluded(self, text: str) -> bool:
        """Check whether text matches an exclusion pattern."""
        return any(p.search(text) for p in self._exclusion)


class RuleRegistry(BaseModel):
    """
    Versioned collection of category rules.

    Example:
        ```python
        registry = load_registry()
        rule = registry.get(Category.INDEMNIFICATION)
        rule.default_severity  # Severity.CRITICAL
        ```
    """
    version: str = "1"
    rules: list[CategoryRule] = Field(default_factory=list)

    @field_validator("rules")
    @classmethod
    def _unique_categories(cls, rules: list[CategoryRule]) -> list[CategoryRule]:
        seen = set()
        for rule in rules:
            if rule.category in seen:
                raise ValueError(f"duplicate rule for category {rule.category.value}")
            seen.add(rule.category)
        return rules

    def __iter__(self) -> Iterator[CategoryRule]:
        return iter(self.rules)

    def __len__(self) -> int:
        return len(self.rules)

    def get(self, category: Category) -> CategoryRule | None:
        """Get the rule for a category."""
        for rule in self.rules:
            if rule.category == category:
                return rule
        return None

    def default_severity(self, category: Category) -> Severity | None:
        rule = self.get(category)
        return rule.default_severity if rule else None

    def exemplars(self) -> list[tuple[Category, str]]:
        """All (category, exemplar text) pairs, in registry order."""
        return [
            (rule.category, exemplar)
            for rule in self.rules
            for exemplar in rule.exemplars
        ]

    def triggered(self, text: str) -> list[CategoryRule]:
        """Rules whose presence patterns occur in text."""
        return [rule for rule in self.rules if rule.is_triggered(text)]


def load_registry(path: str | Path | None = None) -> RuleRegistry:
    """
    Load a rule registry from YAML.

    Args:
        path: Registry file; the bundled rules when None

    Returns:
        Validated RuleRegistry

    Raises:
        ConfigurationError: If the file is missing or invalid
    """
    path = Path(path) if path else DEFAULT_RULES_PATH

    if not path.exists():
        raise ConfigurationError(f"Rule registry not found: {path}")

    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    try:
        registry = RuleRegistry(**data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid rule registry {path}: {e}") from e

    logger.debug(f"Loaded rule registry v{registry.version} with {len(registry)} categories")
    return registry
