"""Analysis orchestration: detection channels, retrieval and synthesis."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from contractrag.exceptions import EmbeddingUnavailable, StoreUnavailable
from contractrag.rag.document import DomainTag, RetrievalResult
from contractrag.rag.retriever import Probe, Retriever
from contractrag.utils.logging import preview

from .fuzzy import FuzzyMatcher
from .llm import LLMSynthesisStage
from .models import (
    AnalysisOptions,
    Category,
    ChannelOutcome,
    ChannelStatus,
    ComplianceReport,
    Violation,
)
from .registry import RuleRegistry
from .rules import RuleDetector
from .synthesizer import ComplianceSynthesizer

logger = logging.getLogger(__name__)

RETRIEVAL_CHANNEL = "retrieval"
ALTERNATIVES_CHANNEL = "alternatives"


@dataclass
class RetrievedContext:
    """Everything retrieval produced for one analysis."""

    results: list[RetrievalResult] = field(default_factory=list)
    outcome: ChannelOutcome = field(default_factory=lambda: ChannelOutcome.ok(RETRIEVAL_CHANNEL))

    @property
    def domains(self) -> set[DomainTag]:
        return {result.domain_tag for result in self.results}

    def for_category(self, domain: DomainTag, category: Category) -> Optional[RetrievalResult]:
        """Best hit of a domain tagged with the category, if any."""
        for result in self.results:
            if result.domain_tag != domain:
                continue
            tag = result.source_metadata.get("category") or result.source_metadata.get("probe_category")
            if tag == category.value:
                return result
        return None


class ComplianceAnalyzer:
    """Runs every detection channel over a contract and builds the report.

    Rule and fuzzy detection run in the default executor while retrieval
    proceeds on the event loop. The model stage waits for both, and gets an
    empty context when retrieval failed. Every stage ends up in the
    report's ``channels`` map.
    """

    def __init__(
        self,
        registry: RuleRegistry,
        retriever: Optional[Retriever],
        rule_detector: RuleDetector,
        fuzzy_matcher: FuzzyMatcher,
        llm_stage: LLMSynthesisStage,
        synthesizer: ComplianceSynthesizer,
        k: int = 8,
        probe_k: int = 3,
        alternatives_k: int = 5,
    ):
        self.registry = registry
        self.retriever = retriever
        self.rule_detector = rule_detector
        self.fuzzy_matcher = fuzzy_matcher
        self.llm_stage = llm_stage
        self.synthesizer = synthesizer
        self.k = k
        self.probe_k = probe_k
        self.alternatives_k = alternatives_k

    def _detect_local(self, text: str) -> tuple[ChannelOutcome, ChannelOutcome]:
        rule_hits = self.rule_detector.detect(text)
        fuzzy_hits = self.fuzzy_matcher.detect(text, already_flagged=rule_hits)
        return ChannelOutcome.ok("rule", rule_hits), ChannelOutcome.ok("fuzzy", fuzzy_hits)

    async def _safe_retrieve(
        self,
        call,
        label: str,
    ) -> tuple[list[RetrievalResult], Optional[str]]:
        try:
            return await call, None
        except (EmbeddingUnavailable, StoreUnavailable) as e:
            logger.warning(f"Retrieval for {label} failed: {e.message}")
            return [], e.message

    async def retrieve_context(self, text: str, options: AnalysisOptions) -> RetrievedContext:
        """Fetch regulatory and policy context plus category probes."""
        domains = []
        if options.check_regulatory:
            domains.append(DomainTag.REGULATORY)
        if options.check_policy:
            domains.append(DomainTag.POLICY)

        if self.retriever is None or not domains:
            return RetrievedContext(outcome=ChannelOutcome.skipped(RETRIEVAL_CHANNEL))

        probes = [
            Probe(rule.probe_query, rule.probe_domain, rule.category.value)
            for rule in self.registry.triggered(text)
            if rule.probe_query and rule.probe_domain in domains
        ]

        calls = [self._safe_retrieve(
            self.retriever.retrieve_domains(text, domains, self.k),
            ", ".join(domain.value for domain in domains),
        )]
        if probes:
            calls.append(self._safe_retrieve(
                self.retriever.retrieve_probes(probes, self.probe_k), "category probes"
            ))

        outcomes = await asyncio.gather(*calls)
        errors = [error for _, error in outcomes if error]
        results = Retriever.merge_results(*(hits for hits, _ in outcomes))

        if not errors:
            outcome = ChannelOutcome.ok(RETRIEVAL_CHANNEL)
        elif len(errors) == len(outcomes):
            outcome = ChannelOutcome.failed(RETRIEVAL_CHANNEL, errors[0])
        else:
            outcome = ChannelOutcome.degraded(RETRIEVAL_CHANNEL, "; ".join(errors))

        return RetrievedContext(results=results, outcome=outcome)

    async def retrieve_alternatives(self, categories: set[Category]) -> RetrievedContext:
        """Fetch approved alternative language for the flagged categories."""
        if self.retriever is None or not categories:
            return RetrievedContext(outcome=ChannelOutcome.skipped(ALTERNATIVES_CHANNEL))

        probes = []
        for category in sorted(categories, key=lambda c: c.value):
            rule = self.registry.get(category)
            query = (rule.probe_query if rule and rule.probe_query else category.value.replace("_", " "))
            probes.append(Probe(f"approved alternative {query}", DomainTag.ALTERNATIVE, category.value))

        hits, error = await self._safe_retrieve(
            self.retriever.retrieve_probes(probes, self.alternatives_k), "alternatives"
        )
        if error:
            return RetrievedContext(outcome=ChannelOutcome.failed(ALTERNATIVES_CHANNEL, error))
        return RetrievedContext(results=hits, outcome=ChannelOutcome.ok(ALTERNATIVES_CHANNEL))

    def enrich(
        self,
        violation: Violation,
        context: RetrievedContext,
        alternatives: Optional[RetrievedContext],
    ) -> Violation:
        """Fill missing references and suggestions from context and registry."""
        update = {}

        if violation.regulatory_reference is None:
            hit = context.for_category(DomainTag.REGULATORY, violation.category)
            if hit is not None:
                update["regulatory_reference"] = hit.source_metadata.get("reference") or hit.title
        if violation.policy_reference is None:
            hit = context.for_category(DomainTag.POLICY, violation.category)
            if hit is not None:
                update["policy_reference"] = hit.source_metadata.get("reference") or hit.title

        if alternatives is None:
            if violation.suggested_alternative is not None:
                update["suggested_alternative"] = None
        elif violation.suggested_alternative is None:
            hit = alternatives.for_category(DomainTag.ALTERNATIVE, violation.category)
            if hit is not None:
                update["suggested_alternative"] = " ".join(hit.chunk_text.split())
            else:
                rule = self.registry.get(violation.category)
                if rule is not None and rule.suggested_alternative:
                    update["suggested_alternative"] = rule.suggested_alternative

        return violation.model_copy(update=update) if update else violation

    async def analyze(
        self,
        contract_text: str,
        options: Optional[AnalysisOptions] = None,
    ) -> ComplianceReport:
        """Analyze a contract.

        Args:
            contract_text: Plain contract text
            options: Request options (default: AnalysisOptions())

        Returns:
            A ComplianceReport; channel failures degrade it, never abort it
        """
        options = options or AnalysisOptions()
        logger.info(f"Analyzing contract ({len(contract_text)} chars): '{preview(contract_text)}'")

        loop = asyncio.get_event_loop()
        local_task = loop.run_in_executor(None, self._detect_local, contract_text)
        context_task = self.retrieve_context(contract_text, options)
        (rule_outcome, fuzzy_outcome), context = await asyncio.gather(local_task, context_task)

        llm_outcome = await self.llm_stage.run(
            contract_text,
            context.results,
            rule_outcome.violations,
            fuzzy_outcome.violations,
        )

        outcomes = [rule_outcome, fuzzy_outcome, context.outcome, llm_outcome]
        sources = context.domains

        alternatives = None
        if options.include_alternatives:
            flagged = {
                v.category
                for outcome in (rule_outcome, fuzzy_outcome, llm_outcome)
                for v in outcome.violations
            }
            alternatives = await self.retrieve_alternatives(flagged)
            outcomes.append(alternatives.outcome)
            sources |= alternatives.domains

        rule_hits, fuzzy_hits, llm_hits = (
            [self.enrich(v, context, alternatives) for v in outcome.violations]
            for outcome in (rule_outcome, fuzzy_outcome, llm_outcome)
        )

        for outcome in outcomes:
            if outcome.status in (ChannelStatus.DEGRADED, ChannelStatus.FAILED):
                logger.warning(f"Channel '{outcome.channel}' {outcome.status.value}: {outcome.error}")

        return self.synthesizer.synthesize(
            rule_hits,
            fuzzy_hits,
            llm_hits,
            min_confidence=options.min_confidence,
            include_filtered=options.include_filtered,
            context_sources=sources,
            channels={outcome.channel: outcome.status for outcome in outcomes},
            channel_errors={
                outcome.channel: outcome.error
                for outcome in outcomes
                if outcome.error and outcome.status != ChannelStatus.SKIPPED
            },
        )
