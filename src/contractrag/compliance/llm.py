"""Generative-model detection stage."""

import asyncio
import json
import logging
import re
from typing import Any, Optional

from rapidfuzz import fuzz
from tenacity import (
    AsyncRetrying,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from contractrag.exceptions import ConfigurationError, MalformedModelResponse, ModelUnavailable
from contractrag.providers.base import LLMProvider
from contractrag.rag.document import DomainTag, RetrievalResult
from contractrag.utils.logging import preview

from .models import (
    Category,
    ChannelOutcome,
    DetectionChannel,
    Severity,
    Violation,
    ViolationKind,
)
from .registry import RuleRegistry, load_registry

logger = logging.getLogger(__name__)

CHANNEL = "llm"

SYSTEM_PROMPT = """You are an expert contract compliance analyst for a public university. You review contracts against the Federal Acquisition Regulation (FAR) and the university's institutional policies.

KEY POLICIES:
1. The university cannot provide indemnification or hold other parties harmless (state entity restriction)
2. Faculty retain intellectual property and publication rights for their work
3. Payment terms must be net 30 days from receipt of invoice
4. The university is self-insured through the State and cannot buy commercial insurance
5. Export control compliance is mandatory
6. A termination for convenience clause is required

Respond with a single JSON object of this shape:
{
  "violations": [
    {
      "category": "indemnification|ip_rights|payment_terms|insurance|termination|export_control|other",
      "kind": "PRESENT_PROBLEMATIC|MISSING_REQUIRED",
      "severity": "CRITICAL|HIGH|MEDIUM|LOW",
      "description": "Why this is a compliance issue",
      "matched_span": "Exact quote from the contract, or null for a missing clause",
      "regulatory_reference": "FAR clause number, if applicable",
      "policy_reference": "Institutional policy that is violated, if applicable",
      "suggested_alternative": "Compliant replacement language",
      "confidence": 0.0 to 1.0
    }
  ]
}

Quote contract text exactly. Return {"violations": []} when the contract is compliant."""

DOMAIN_HEADINGS = {
    DomainTag.REGULATORY: "RELEVANT REGULATIONS",
    DomainTag.POLICY: "INSTITUTIONAL POLICY CONTEXT",
    DomainTag.TEMPLATE: "STANDARD TEMPLATE LANGUAGE",
    DomainTag.ALTERNATIVE: "APPROVED ALTERNATIVE LANGUAGE",
}

CATEGORY_ALIASES = {
    "indemnification": Category.INDEMNIFICATION,
    "indemnity": Category.INDEMNIFICATION,
    "hold_harmless": Category.INDEMNIFICATION,
    "ip_rights": Category.IP_RIGHTS,
    "ip": Category.IP_RIGHTS,
    "intellectual_property": Category.IP_RIGHTS,
    "publication": Category.IP_RIGHTS,
    "payment_terms": Category.PAYMENT_TERMS,
    "payment": Category.PAYMENT_TERMS,
    "payments": Category.PAYMENT_TERMS,
    "insurance": Category.INSURANCE,
    "termination": Category.TERMINATION,
    "export_control": Category.EXPORT_CONTROL,
    "export": Category.EXPORT_CONTROL,
    "other": Category.OTHER,
}

FIELD_ALIASES = {
    "matched_span": ("matched_span", "matchedSpan", "problematicText", "problematic_text", "clause", "quote"),
    "regulatory_reference": ("regulatory_reference", "regulatoryReference", "farReference", "far_reference"),
    "policy_reference": ("policy_reference", "policyReference", "institutionalPolicy", "policy"),
    "suggested_alternative": ("suggested_alternative", "suggestedAlternative", "suggestion", "alternative"),
    "description": ("description", "title", "explanation"),
}

SPAN_ALIGNMENT_CUTOFF = 80


def extract_json(raw: str) -> Any:
    """Find the first balanced JSON object or array embedded in text.

    Returns:
        The parsed value, or None when no candidate parses
    """
    for start, char in enumerate(raw):
        if char not in "{[":
            continue

        end = _matching_bracket(raw, start)
        if end is None:
            continue

        try:
            return json.loads(raw[start:end + 1])
        except json.JSONDecodeError:
            continue

    return None


def _matching_bracket(raw: str, start: int) -> Optional[int]:
    closing = {"{": "}", "[": "]"}
    stack = []
    in_string = False
    escaped = False

    for index in range(start, len(raw)):
        char = raw[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char in closing:
            stack.append(closing[char])
        elif char in "}]":
            if not stack or stack.pop() != char:
                return None
            if not stack:
                return index

    return None


def parse_model_output(raw: str) -> list[Any]:
    """Parse raw model text into a list of violation items.

    Raises:
        MalformedModelResponse: If no JSON violation list can be recovered
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        data = extract_json(raw)
        if data is None:
            raise MalformedModelResponse("Model response contains no JSON", raw=raw)

    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        items = data.get("violations")
        if isinstance(items, list):
            return items
        if "category" in data or "type" in data:
            return [data]

    raise MalformedModelResponse("Model response has no violation list", raw=raw)


def locate_span(quote: str, text: str) -> Optional[tuple[int, int]]:
    """Find a quoted excerpt in the contract, tolerating small differences."""
    quote = quote.strip()
    if not quote or not text:
        return None

    index = text.find(quote)
    if index >= 0:
        return index, index + len(quote)

    index = text.lower().find(quote.lower())
    if index >= 0:
        return index, index + len(quote)

    alignment = fuzz.partial_ratio_alignment(quote, text, score_cutoff=SPAN_ALIGNMENT_CUTOFF)
    if alignment is None:
        return None
    return alignment.dest_start, alignment.dest_end


def _pick(item: dict[str, Any], field: str) -> Optional[str]:
    for key in FIELD_ALIASES[field]:
        value = item.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _category(value: Any) -> Category:
    key = re.sub(r"[\s\-]+", "_", str(value or "").strip().lower())
    return CATEGORY_ALIASES.get(key, Category.OTHER)


def _severity(value: Any) -> Optional[Severity]:
    try:
        return Severity(str(value).strip().upper())
    except ValueError:
        return None


def _confidence(value: Any, fallback: float) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return fallback
    if confidence > 1.0:
        confidence = confidence / 100.0
    return max(0.0, min(1.0, confidence))


class LLMSynthesisStage:
    """Asks a generative model for violations the other channels missed.

    The prompt carries the (truncated) contract, retrieved context grouped
    by domain and a digest of rule and fuzzy findings. The stage is always
    optional: ``run`` turns every failure into a ChannelOutcome.
    """

    def __init__(
        self,
        provider: Optional[LLMProvider],
        model: str = "gpt-4o-mini",
        registry: Optional[RuleRegistry] = None,
        temperature: float = 0.3,
        max_tokens: int = 4000,
        max_contract_chars: int = 8000,
        max_attempts: int = 2,
        timeout: Optional[float] = 60.0,
        fallback_confidence: float = 0.8,
        backoff: float = 1.0,
        max_context_chars: int = 600,
    ):
        """Initialize the LLM synthesis stage.

        Args:
            provider: Chat-completion provider; None disables the stage
            model: Model identifier
            registry: Rule registry for default severities (default: bundled)
            temperature: Sampling temperature
            max_tokens: Maximum tokens to generate
            max_contract_chars: Contract text beyond this is cut from the prompt
            max_attempts: Attempts per analysis before giving up
            timeout: Per-call timeout in seconds (None disables it)
            fallback_confidence: Confidence for items that report none
            backoff: Base of the exponential wait between retries
            max_context_chars: Characters kept from each retrieved chunk
        """
        if max_attempts <= 0:
            raise ConfigurationError(f"max_attempts must be positive, got {max_attempts}")

        self.provider = provider
        self.model = model
        self.registry = registry or load_registry()
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.max_contract_chars = max_contract_chars
        self.max_attempts = max_attempts
        self.timeout = timeout
        self.fallback_confidence = fallback_confidence
        self.backoff = backoff
        self.max_context_chars = max_context_chars

    @property
    def enabled(self) -> bool:
        return self.provider is not None

    def build_messages(
        self,
        contract_text: str,
        retrieved_context: list[RetrievalResult],
        rule_hits: list[Violation],
        fuzzy_hits: list[Violation],
    ) -> list[dict[str, str]]:
        """Build the system and user messages for one analysis."""
        sections = [f"CONTRACT TO ANALYZE:\n{contract_text[: self.max_contract_chars]}"]

        for domain, heading in DOMAIN_HEADINGS.items():
            hits = [r for r in retrieved_context if r.domain_tag == domain]
            if not hits:
                continue
            lines = [
                f"[{i}] {hit.title}: {hit.chunk_text[: self.max_context_chars].strip()}"
                for i, hit in enumerate(hits, 1)
            ]
            sections.append(f"{heading}:\n" + "\n".join(lines))

        findings = [
            f"- [{v.detection_channel.value}] {v.category.value} ({v.severity.value}): "
            + (preview(v.matched_span, 160) if v.matched_span else "required clause missing")
            for v in [*rule_hits, *fuzzy_hits]
        ]
        if findings:
            sections.append(
                "FINDINGS ALREADY DETECTED:\n" + "\n".join(findings)
                + "\nConfirm or correct these and focus on issues they missed."
            )

        sections.append("Analyze the contract and identify all compliance issues.")

        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": "\n\n".join(sections)},
        ]

    async def _complete(self, messages: list[dict[str, str]]) -> str:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff, max=20),
            retry=retry_if_not_exception_type(ConfigurationError),
            before_sleep=lambda state: logger.warning(
                f"Model attempt {state.attempt_number}/{self.max_attempts} failed: "
                f"{state.outcome.exception()!r}"
            ),
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    response = await asyncio.wait_for(
                        self.provider.complete(
                            messages,
                            model=self.model,
                            temperature=self.temperature,
                            max_tokens=self.max_tokens,
                            json_mode=True,
                        ),
                        timeout=self.timeout,
                    )
                    return response.content or ""
        except ConfigurationError:
            raise
        except Exception as e:
            raise ModelUnavailable(
                f"Model call failed after {self.max_attempts} attempts: {e!r}"
            ) from e
        raise ModelUnavailable("Model call produced no result")

    def to_violation(self, item: Any, index: int, contract_text: str) -> Optional[Violation]:
        """Map one loosely-shaped model item onto a Violation."""
        if not isinstance(item, dict):
            logger.warning(f"Ignoring non-object violation item: {preview(str(item))}")
            return None

        category = _category(item.get("category", item.get("type")))
        severity = _severity(item.get("severity")) or self.registry.default_severity(category)

        kind_value = str(item.get("kind") or "").upper()
        quote = _pick(item, "matched_span")
        if "MISSING" in kind_value:
            kind = ViolationKind.MISSING_REQUIRED
            quote = None
        else:
            kind = ViolationKind.PRESENT_PROBLEMATIC

        span_start = span_end = None
        if quote:
            located = locate_span(quote, contract_text)
            if located:
                span_start, span_end = located
                quote = contract_text[span_start:span_end]

        return Violation(
            id=f"llm-{index}",
            category=category,
            kind=kind,
            severity=severity or Severity.MEDIUM,
            matched_span=quote,
            regulatory_reference=_pick(item, "regulatory_reference"),
            policy_reference=_pick(item, "policy_reference"),
            suggested_alternative=_pick(item, "suggested_alternative"),
            confidence=_confidence(item.get("confidence"), self.fallback_confidence),
            detection_channel=DetectionChannel.LLM,
            description=_pick(item, "description"),
            span_start=span_start,
            span_end=span_end,
        )

    async def synthesize_via_model(
        self,
        contract_text: str,
        retrieved_context: list[RetrievalResult],
        rule_hits: list[Violation],
        fuzzy_hits: list[Violation],
    ) -> list[Violation]:
        """Ask the model for violations.

        Raises:
            ModelUnavailable: If the provider keeps failing or is not configured
            MalformedModelResponse: If the output cannot be parsed
        """
        if self.provider is None:
            raise ModelUnavailable("No generative model configured")

        messages = self.build_messages(contract_text, retrieved_context, rule_hits, fuzzy_hits)
        raw = await self._complete(messages)
        items = parse_model_output(raw)

        violations = []
        for index, item in enumerate(items):
            violation = self.to_violation(item, index, contract_text)
            if violation is not None:
                violations.append(violation)

        logger.info(f"Model reported {len(violations)} violations")
        return violations

    async def run(
        self,
        contract_text: str,
        retrieved_context: list[RetrievalResult],
        rule_hits: list[Violation],
        fuzzy_hits: list[Violation],
    ) -> ChannelOutcome:
        """Run the stage, reporting failures as a channel outcome."""
        if self.provider is None:
            return ChannelOutcome.skipped(CHANNEL, "No generative model configured")

        try:
            violations = await self.synthesize_via_model(
                contract_text, retrieved_context, rule_hits, fuzzy_hits
            )
        except MalformedModelResponse as e:
            logger.warning(f"Discarding malformed model output: {e.message} ({preview(e.raw, 120)})")
            return ChannelOutcome.degraded(CHANNEL, e.message)
        except ModelUnavailable as e:
            logger.warning(f"Model channel unavailable: {e.message}")
            return ChannelOutcome.failed(CHANNEL, e.message)

        return ChannelOutcome.ok(CHANNEL, violations)
