"""Tests for response synthesis."""
from typing import Optional

import pytest

from promptchain.domain.models.chain_models import CONDITION_NOT_MET, ChainContext, ChainResult, ResultMetadata
from promptchain.domain.models.context_models import ContextRetrievalResult, ResponseStyle, UserProfile
from promptchain.domain.models.synthesis_models import (
    ContentFragment, Contradiction, FragmentType, SourceKind, Structure, SynthesisConfig, Tone, Verbosity
)
from promptchain.domain.synthesis import FALLBACK_RESPONSE, ContradictionDetector, ResponseSynthesizer
from promptchain.domain.synthesis.contradiction import resolve_contradictions
from promptchain.domain.synthesis.fragments import filter_valid_results, segment_content
from promptchain.domain.synthesis.styling import DETAIL_NOTE, FRIENDLY_PREFIX, truncate


def result(step_id: str, output: str, confidence: float = 0.8, success: bool = True, tool_results=None) -> ChainResult:
    return ChainResult(
        step_id=step_id,
        success=success,
        output=output,
        tool_results=tool_results,
        metadata=ResultMetadata(confidence=confidence),
    )


def chain_context(query: str = "question", style: ResponseStyle = ResponseStyle.CONVERSATIONAL) -> ChainContext:
    return ChainContext(
        session_id="s1",
        user_query=query,
        retrieved_context=ContextRetrievalResult(user_profile=UserProfile(response_style=style)),
    )


def plain(**style) -> SynthesisConfig:
    """Config without a tone prefix so responses can be compared exactly"""
    return SynthesisConfig().with_style(tone=Tone.TECHNICAL, **style)


@pytest.fixture
def synthesizer(metrics):
    return ResponseSynthesizer(metrics=metrics)


class TestContradictions:
    """Detecting and resolving opposing claims."""

    @pytest.mark.asyncio
    async def test_can_and_cannot_conflict(self, synthesizer):
        results = [
            result("lookup_a", "The service can process refunds automatically.", confidence=0.9),
            result("lookup_b", "The service cannot process refunds automatically.", confidence=0.6),
        ]

        synthesis = await synthesizer.synthesize(results, chain_context("refund question"), plain())
        contradiction = synthesis.contradictions[0]

        assert len(synthesis.contradictions) == 1
        assert set(contradiction.sources) == {"lookup_a", "lookup_b"}
        assert contradiction.confidence == pytest.approx(0.6)
        assert contradiction.resolution == "prioritizing the higher confidence source lookup_a"
        assert synthesis.final_response.startswith("There are different perspectives on this topic:")
        assert "Perspective 1: The service can process" in synthesis.final_response
        assert "Perspective 2: The service cannot process" in synthesis.final_response
        assert synthesis.confidence == pytest.approx(0.65)

    @pytest.mark.asyncio
    async def test_contradictions_ignored_when_disabled(self, synthesizer):
        results = [
            result("lookup_a", "The service can process refunds automatically."),
            result("lookup_b", "The service cannot process refunds automatically."),
        ]
        config = plain().model_copy(update={"handle_contradictions": False})

        synthesis = await synthesizer.synthesize(results, chain_context(), config)

        assert synthesis.contradictions == []

    def test_resolution_confidence_is_discounted(self):
        first = ContentFragment(type=FragmentType.MAIN_CONTENT, content="It will rain", confidence=0.9, sources=["a"])
        second = ContentFragment(type=FragmentType.DETAILS, content="It will not rain", confidence=0.5, sources=["b"])
        contradiction = Contradiction(sources=["a", "b"], description="x", resolution="merging", confidence=0.5)

        resolved = resolve_contradictions([first, second], [(first, second, contradiction)])

        assert len(resolved) == 1
        assert resolved[0].type == FragmentType.MAIN_CONTENT
        assert resolved[0].confidence == pytest.approx(0.72)
        assert resolved[0].confidence <= max(first.confidence, second.confidence)

    @pytest.mark.asyncio
    async def test_custom_detector(self, metrics):
        class AlwaysConflicting(ContradictionDetector):
            def check(self, first, second) -> Optional[Contradiction]:
                return Contradiction(
                    sources=first.sources + second.sources,
                    description="always",
                    resolution="merging perspectives from both sources with noted uncertainty",
                    confidence=min(first.confidence, second.confidence),
                )

        synthesizer = ResponseSynthesizer(detector=AlwaysConflicting(), metrics=metrics)
        results = [
            result("lookup_a", "Paris is the capital of France."),
            result("lookup_b", "The Seine river flows through the city."),
        ]

        synthesis = await synthesizer.synthesize(results, chain_context(), plain())

        assert len(synthesis.contradictions) == 1
        assert metrics.get_counter("synthesis.contradictions") == 1


class TestAssembly:
    """Ordering, structure and deduplication."""

    @pytest.mark.asyncio
    async def test_structured_numbering(self, synthesizer):
        results = [
            result("lookup_a", "Paris is the capital of France."),
            result("lookup_b", "The Seine river flows through the city."),
        ]

        synthesis = await synthesizer.synthesize(results, chain_context(), plain())

        assert synthesis.final_response == (
            "1. Paris is the capital of France.\n\n2. The Seine river flows through the city."
        )

    @pytest.mark.asyncio
    async def test_narrative_transitions(self, synthesizer):
        results = [
            result("lookup_a", "Paris is the capital of France."),
            result("lookup_b", "The Seine river flows through the city."),
        ]

        synthesis = await synthesizer.synthesize(
            results, chain_context(), plain(structure=Structure.NARRATIVE)
        )

        assert synthesis.final_response == (
            "Paris is the capital of France. Additionally, the Seine river flows through the city."
        )

    @pytest.mark.asyncio
    async def test_introduction_comes_first(self, synthesizer):
        results = [
            result("direct_synthesis", "Main body text goes here."),
            result("context_analysis", "Intro text goes here first."),
        ]

        synthesis = await synthesizer.synthesize(results, chain_context(), plain())

        assert synthesis.final_response == "Intro text goes here first.\n\nMain body text goes here."

    @pytest.mark.asyncio
    async def test_near_duplicates_removed(self, synthesizer):
        results = [
            result("lookup_a", "The API returns JSON data."),
            result("lookup_b", "The API returns JSON data!"),
        ]

        synthesis = await synthesizer.synthesize(results, chain_context(), plain())

        assert synthesis.final_response == "The API returns JSON data."

    def test_long_paragraphs_split_into_sentences(self):
        paragraph = " ".join(f"Sentence {word} carries a distinct idea here." for word in ["one", "two", "three"] * 3)
        paragraph += " ok"

        segments = segment_content(paragraph)

        assert len(segments) == 9
        assert all(segment.endswith(".") for segment in segments)


class TestStyling:
    """Personalization, tone, cleanup and length limits."""

    @pytest.mark.asyncio
    async def test_friendly_tone_prefix(self, synthesizer):
        synthesis = await synthesizer.synthesize(
            [result("lookup", "The report is ready to download.")], chain_context()
        )

        assert synthesis.final_response == FRIENDLY_PREFIX + "The report is ready to download."

    @pytest.mark.asyncio
    async def test_concise_users_lose_hedging(self, synthesizer):
        synthesis = await synthesizer.synthesize(
            [result("lookup", "Basically, the cache is rebuilt nightly.")],
            chain_context(style=ResponseStyle.CONCISE),
            plain(),
        )

        assert synthesis.final_response == "the cache is rebuilt nightly."

    @pytest.mark.asyncio
    async def test_detailed_users_get_a_note(self, synthesizer):
        synthesis = await synthesizer.synthesize(
            [result("lookup", "The cache is rebuilt nightly.")],
            chain_context(style=ResponseStyle.DETAILED),
            plain(),
        )

        assert synthesis.final_response.endswith(DETAIL_NOTE)

    @pytest.mark.asyncio
    async def test_internal_annotations_removed(self, synthesizer):
        synthesis = await synthesizer.synthesize(
            [result("lookup", "The deployment finished successfully [METADATA]id=7[/METADATA] (confidence: 90%)")],
            chain_context(),
            plain(),
        )

        assert synthesis.final_response == "The deployment finished successfully"

    @pytest.mark.asyncio
    async def test_truncates_at_sentence_boundary(self, synthesizer):
        text = (
            "Alpha beta gamma delta. Epsilon zeta eta theta iota. "
            "Kappa lambda mu nu xi omicron. Pi rho sigma tau upsilon phi chi psi omega."
        )
        config = plain().model_copy(update={"max_length": 60})

        synthesis = await synthesizer.synthesize([result("lookup", text)], chain_context(), config)

        assert synthesis.final_response == "Alpha beta gamma delta. Epsilon zeta eta theta iota."
        assert len(synthesis.final_response) <= 60

    def test_hard_cut_when_no_sentence_fits(self):
        truncated = truncate("a" * 50 + " words without any punctuation at all", 20)

        assert len(truncated) <= 20
        assert truncated.endswith("...")

    @pytest.mark.asyncio
    async def test_confidence_footer(self, synthesizer):
        config = plain().model_copy(update={"include_confidence": True, "max_length": 60})
        text = "Alpha beta gamma delta. Epsilon zeta eta theta iota. Kappa lambda mu nu."

        synthesis = await synthesizer.synthesize([result("lookup", text)], chain_context(), config)

        assert synthesis.final_response.endswith("\n\n(Confidence: 80%)")
        assert len(synthesis.final_response) <= 60

    @pytest.mark.asyncio
    async def test_footer_dropped_when_longer_than_limit(self, synthesizer):
        config = plain().model_copy(update={"include_confidence": True, "max_length": 10})

        synthesis = await synthesizer.synthesize(
            [result("lookup", "The report is ready to download.")], chain_context(), config
        )

        assert synthesis.final_response == "The rep..."
        assert "Confidence" not in synthesis.final_response

    def test_decimal_point_is_not_a_sentence_end(self):
        truncated = truncate("Version 1.5 ships with the new scheduler today.", 20)

        assert truncated == "Version 1.5 ships..."


class TestFallbackAndScoring:
    """Fallback response, filters, confidence and attribution."""

    @pytest.mark.asyncio
    async def test_no_usable_results_returns_fallback(self, synthesizer):
        results = [
            result("a", "Step execution failed: boom", success=False),
            result("b", "ok"),
        ]

        synthesis = await synthesizer.synthesize(results, chain_context())

        assert synthesis.final_response == FALLBACK_RESPONSE
        assert synthesis.confidence == 0.0
        assert synthesis.metadata.chain_steps == 2

    def test_filter_valid_results(self):
        results = [
            result("good", "A perfectly useful answer."),
            result("short", "ok"),
            result("internal", "[DEBUG] dump of internal state"),
            result("doubtful", "A low confidence guess at it.", confidence=0.2),
            result("failed", "Step execution failed: boom", success=False),
            ChainResult(
                step_id="skipped",
                success=True,
                output="Step skipped due to conditions",
                metadata=ResultMetadata(confidence=1.0, reasoning=[CONDITION_NOT_MET]),
            ),
        ]

        assert [r.step_id for r in filter_valid_results(results)] == ["good"]

    def test_confidence_penalized_per_contradiction(self, synthesizer):
        results = [result("a", "x" * 20, confidence=0.9), result("b", "y" * 20, confidence=0.7)]
        contradiction = Contradiction(description="x", resolution="y", confidence=0.7)

        assert synthesizer.calculate_confidence(results, []) == pytest.approx(0.8)
        assert synthesizer.calculate_confidence(results, [contradiction]) == pytest.approx(0.7)
        assert synthesizer.calculate_confidence([], []) == 0.0

    def test_source_attribution(self, synthesizer):
        results = [
            result("mcp_execution", "tool output text", tool_results=[{"ok": True}]),
            result("result_synthesis", "final synthesis text"),
            result("retrieval_step", "retrieved context text"),
            result("problem_decomposition", "reasoning text here"),
        ]

        sources = [a.source for a in synthesizer.attribute_sources(results)]

        assert sources == [SourceKind.MCP_TOOL, SourceKind.SYNTHESIS, SourceKind.CONTEXT, SourceKind.REASONING]

    @pytest.mark.asyncio
    async def test_alternatives_and_quality(self, synthesizer, metrics):
        results = [
            result("lookup_a", "Paris is the capital of France."),
            result("lookup_b", "The Seine river flows through the city."),
        ]

        synthesis = await synthesizer.synthesize(results, chain_context())

        assert 0 < len(synthesis.alternatives) <= 2
        assert synthesis.alternatives[0].startswith(FRIENDLY_PREFIX + "Paris is the capital of France. The Seine")
        assert synthesis.metadata.sources_used == 2
        assert metrics.metrics["synthesis.quality_score"] == synthesis.metadata.quality_score

    @pytest.mark.asyncio
    async def test_alternatives_disabled(self, synthesizer):
        config = SynthesisConfig(generate_alternatives=False)

        synthesis = await synthesizer.synthesize([result("lookup", "Some useful content.")], chain_context(), config)

        assert synthesis.alternatives == []

    @pytest.mark.asyncio
    async def test_concise_verbosity_drops_details(self, synthesizer):
        results = [
            result("lookup", "Main answer for the user."),
            result("validation", "Extra validation details here."),
        ]

        synthesis = await synthesizer.synthesize(results, chain_context(), plain(verbosity=Verbosity.CONCISE))

        assert synthesis.final_response == "Main answer for the user."
