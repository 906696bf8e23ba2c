"""End-to-end tests for the compliance engine."""

import json

import pytest

from conftest import INDEMNITY_CONTRACT, MISSING_TERMINATION_CONTRACT, FlakyEmbedding, ScriptedProvider
from contractrag import ComplianceEngine
from contractrag.compliance import (
    AnalysisOptions,
    Category,
    ChannelStatus,
    DetectionChannel,
    Severity,
    ViolationKind,
)
from contractrag.exceptions import ConfigurationError
from contractrag.rag import DomainTag, EmbeddingClient, HashEmbedding, MemoryKnowledgeStore
from contractrag.utils.config import EmbeddingSettings, EngineConfig, LLMSettings


class TestAnalyze:
    """Tests for analysis against an empty or seeded knowledge base."""

    @pytest.mark.asyncio
    async def test_empty_knowledge_base(self, engine, registry):
        """Test rule findings still come through with no reference documents."""
        report = await engine.analyze(INDEMNITY_CONTRACT)

        indemnity = report.by_category(Category.INDEMNIFICATION)
        assert len(indemnity) == 1
        assert indemnity[0].severity == Severity.CRITICAL
        assert indemnity[0].suggested_alternative == registry.get(Category.INDEMNIFICATION).suggested_alternative
        assert report.context_sources_used == set()
        assert report.compliance_score <= 70.0
        assert report.channels["rule"] == ChannelStatus.OK
        assert report.channels["retrieval"] == ChannelStatus.OK
        assert report.channels["llm"] == ChannelStatus.SKIPPED
        assert not report.is_degraded

    @pytest.mark.asyncio
    async def test_missing_termination(self, engine):
        """Test a contract without termination for convenience is flagged."""
        report = await engine.analyze(MISSING_TERMINATION_CONTRACT)

        termination = report.by_category(Category.TERMINATION)
        assert len(termination) == 1
        assert termination[0].kind == ViolationKind.MISSING_REQUIRED
        assert termination[0].matched_span is None

    @pytest.mark.asyncio
    async def test_seeded_knowledge_base(self, engine):
        """Test retrieved context is recorded once the corpus is loaded."""
        await engine.bootstrap()

        report = await engine.analyze(INDEMNITY_CONTRACT)

        assert {DomainTag.REGULATORY, DomainTag.POLICY, DomainTag.ALTERNATIVE} <= report.context_sources_used
        indemnity = report.by_category(Category.INDEMNIFICATION)[0]
        assert indemnity.regulatory_reference == "FAR 28.106"
        assert indemnity.suggested_alternative

    @pytest.mark.asyncio
    async def test_options(self, engine):
        """Test retrieval and alternatives can be switched off per request."""
        options = AnalysisOptions(check_regulatory=False, check_policy=False, include_alternatives=False)

        report = await engine.analyze(INDEMNITY_CONTRACT, options)

        assert report.channels["retrieval"] == ChannelStatus.SKIPPED
        assert "alternatives" not in report.channels
        assert all(v.suggested_alternative is None for v in report.violations)

    @pytest.mark.asyncio
    async def test_min_confidence(self, engine):
        """Test a confidence floor above every finding empties the report."""
        report = await engine.analyze(INDEMNITY_CONTRACT, AnalysisOptions(min_confidence=1.0))

        assert report.violations == []
        assert report.compliance_score == 100.0
        assert report.diagnostics.filtered_out >= 1

    @pytest.mark.asyncio
    async def test_deterministic_without_model(self, engine):
        """Test repeated analysis of the same text gives the same report."""
        await engine.bootstrap()

        first = await engine.analyze(INDEMNITY_CONTRACT)
        second = await engine.analyze(INDEMNITY_CONTRACT)

        assert first == second


class TestModelChannel:
    """Tests for analysis with a generative model attached."""

    @pytest.mark.asyncio
    async def test_model_duplicate_merges(self, make_engine):
        """Test a model finding that repeats a rule finding is merged."""
        reply = json.dumps({"violations": [{
            "category": "indemnification",
            "kind": "PRESENT_PROBLEMATIC",
            "severity": "CRITICAL",
            "matched_span": "University shall indemnify, defend, and hold harmless the Contractor",
            "policy_reference": "Prohibited Contract Terms",
            "confidence": 0.9,
        }]})
        provider = ScriptedProvider([reply])
        engine = make_engine(llm_provider=provider)

        report = await engine.analyze(INDEMNITY_CONTRACT)

        indemnity = report.by_category(Category.INDEMNIFICATION)
        assert len(indemnity) == 1
        assert indemnity[0].detection_channel == DetectionChannel.MERGED
        assert "llm-0" in indemnity[0].merged_ids
        assert report.channels["llm"] == ChannelStatus.OK
        assert len(provider.calls) == 1

    @pytest.mark.asyncio
    async def test_model_failure_degrades(self, make_engine):
        """Test an unreachable model leaves a degraded but complete report."""
        engine = make_engine(llm_provider=ScriptedProvider([ConnectionError("down")]))
        engine.analyzer.llm_stage.backoff = 0

        report = await engine.analyze(INDEMNITY_CONTRACT)

        assert report.channels["llm"] == ChannelStatus.FAILED
        assert report.is_degraded
        assert "llm" in report.diagnostics.channel_errors
        assert report.by_category(Category.INDEMNIFICATION)

    @pytest.mark.asyncio
    async def test_malformed_model_output(self, make_engine):
        """Test unparseable model output is dropped with a degraded status."""
        engine = make_engine(llm_provider=ScriptedProvider(["Sorry, I cannot help."]))

        report = await engine.analyze(INDEMNITY_CONTRACT)

        assert report.channels["llm"] == ChannelStatus.DEGRADED
        assert report.by_category(Category.INDEMNIFICATION)

    @pytest.mark.asyncio
    async def test_embedding_outage(self, make_engine):
        """Test retrieval failure does not stop rule detection."""
        client = EmbeddingClient(FlakyEmbedding(failures=100, dimension=256), max_attempts=1, batch_delay=0)
        engine = make_engine(client=client)

        report = await engine.analyze(INDEMNITY_CONTRACT)

        assert report.channels["retrieval"] == ChannelStatus.FAILED
        assert report.channels["rule"] == ChannelStatus.OK
        assert report.by_category(Category.INDEMNIFICATION)
        assert report.context_sources_used == set()

    @pytest.mark.asyncio
    async def test_embedding_and_model_outage(self, make_engine):
        """Test with retrieval and the model both down the report holds exactly the rule and fuzzy findings."""
        client = EmbeddingClient(FlakyEmbedding(failures=100, dimension=256), max_attempts=1, batch_delay=0)
        engine = make_engine(llm_provider=ScriptedProvider([ConnectionError("down")]), client=client)
        engine.analyzer.llm_stage.backoff = 0

        report = await engine.analyze(INDEMNITY_CONTRACT)

        rule_hits = engine.analyzer.rule_detector.detect(INDEMNITY_CONTRACT)
        fuzzy_hits = engine.analyzer.fuzzy_matcher.detect(INDEMNITY_CONTRACT, already_flagged=rule_hits)
        reported = {v.id for v in report.violations} | {i for v in report.violations for i in v.merged_ids}
        assert reported == {v.id for v in rule_hits + fuzzy_hits}
        assert report.by_category(Category.INDEMNIFICATION)
        for channel in ("retrieval", "llm", "alternatives"):
            assert report.channels[channel] == ChannelStatus.FAILED
        assert report.channels["rule"] == ChannelStatus.OK
        assert report.channels["fuzzy"] == ChannelStatus.OK
        assert report.context_sources_used == set()

    @pytest.mark.asyncio
    async def test_contract_embedded_once(self, make_engine):
        """Test regulatory and policy context share one contract embedding."""
        embedding = FlakyEmbedding(dimension=256)
        engine = make_engine(client=EmbeddingClient(embedding, batch_delay=0))

        await engine.analyze(MISSING_TERMINATION_CONTRACT, AnalysisOptions(include_alternatives=False))

        assert embedding.calls == [[MISSING_TERMINATION_CONTRACT]]

    @pytest.mark.asyncio
    async def test_other_party_indemnity_ignored(self, engine):
        """Test the Contractor holding the University harmless adds no finding."""
        contract = INDEMNITY_CONTRACT + "\n\n3. The Contractor agrees to defend and hold the University harmless from all claims."

        report = await engine.analyze(contract)

        assert len(report.by_category(Category.INDEMNIFICATION)) == 1


class TestKnowledgeBase:
    """Tests for ingestion through the engine."""

    @pytest.mark.asyncio
    async def test_ingest_and_delete(self, engine, store):
        """Test documents can be ingested, replaced and deleted by id."""
        doc_id = await engine.ingest("Policy 3", "No indemnification.", DomainTag.POLICY, document_id="p3")
        await engine.ingest("Policy 3", "No indemnification or hold harmless.", "policy", document_id="p3")

        assert doc_id == "p3"
        assert await store.count() == 1
        assert await engine.delete_document("p3") == 1
        assert await store.count() == 0

    @pytest.mark.asyncio
    async def test_generated_ids(self, engine):
        """Test documents without an id get a fresh one."""
        first = await engine.ingest("A", "text one", DomainTag.TEMPLATE)
        second = await engine.ingest("B", "text two", DomainTag.TEMPLATE)

        assert first != second

    @pytest.mark.asyncio
    async def test_ingest_if_missing(self, engine, store):
        """Test an existing document is left alone."""
        await engine.ingest("A", "original", DomainTag.POLICY, document_id="a")
        await engine.ingest_if_missing("A", "changed " * 300, DomainTag.POLICY, document_id="a")

        assert await store.count() == 1

    @pytest.mark.asyncio
    async def test_unknown_domain(self, engine):
        """Test an unknown domain tag is a configuration error."""
        with pytest.raises(ConfigurationError):
            await engine.ingest("A", "text", "contracts")


class TestConstruction:
    """Tests for wiring engines from configuration."""

    def test_dimension_mismatch(self):
        """Test an embedding/store dimension mismatch fails at construction."""
        client = EmbeddingClient(HashEmbedding(dimension=64))

        with pytest.raises(ConfigurationError):
            ComplianceEngine(client, MemoryKnowledgeStore(dimension=128))

    def test_invalid_scoring_config(self):
        """Test misordered weights fail at construction."""
        config = EngineConfig()
        config.scoring.weights = {"CRITICAL": 1, "HIGH": 15, "MEDIUM": 5, "LOW": 2}

        with pytest.raises(ConfigurationError):
            ComplianceEngine(EmbeddingClient(HashEmbedding()), MemoryKnowledgeStore(), config=config)

    @pytest.mark.asyncio
    async def test_from_config(self):
        """Test an offline engine is built and bootstrapped from settings."""
        config = EngineConfig(
            embedding=EmbeddingSettings(provider="hash", dimension=128, batch_delay=0),
            llm=LLMSettings(enabled=False),
            bootstrap_default_corpus=True,
        )

        engine = ComplianceEngine.from_config(config)
        records = await engine.initialize()

        assert engine.store.dimension == 128
        assert records and all(r.ok for r in records)
        report = await engine.analyze(MISSING_TERMINATION_CONTRACT)
        assert report.by_category(Category.TERMINATION)

    def test_from_config_unknown_provider(self):
        """Test an unknown embedding provider is rejected."""
        config = EngineConfig(embedding=EmbeddingSettings(provider="carrier-pigeon"))

        with pytest.raises(ConfigurationError):
            ComplianceEngine.from_config(config)
