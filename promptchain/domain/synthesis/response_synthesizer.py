from typing import List, Optional
import re
import time
import structlog

from promptchain.domain.models.chain_models import ChainContext, ChainResult
from promptchain.domain.models.synthesis_models import (
    ContentFragment, Contradiction, SourceAttribution, SourceKind, Structure,
    SynthesisConfig, SynthesisMetadata, SynthesisResult, Verbosity
)
from promptchain.infrastructure.observability.logging import MetricsCollector
from .assembly import assemble
from .contradiction import ContradictionDetector, RegexContradictionDetector, resolve_contradictions
from .fragments import extract_fragments, filter_valid_results
from .styling import adjust_tone, clean_response, personalize, truncate

logger = structlog.get_logger(__name__)

FALLBACK_RESPONSE = "I encountered errors while processing your request. Please try again."
CONTRADICTION_PENALTY = 0.1
MAX_ALTERNATIVES = 2
SENTENCE_BREAK = re.compile(r"[.!?]+")


class ResponseSynthesizer:
    """Merges chain step outputs into one response.

    Pipeline: filter results, extract fragments, detect and resolve contradictions,
    assemble by role, personalize, adjust tone, clean up and enforce the length limit.
    """

    def __init__(
        self,
        detector: Optional[ContradictionDetector] = None,
        default_config: Optional[SynthesisConfig] = None,
        metrics: Optional[MetricsCollector] = None
    ):
        self.detector = detector or RegexContradictionDetector()
        self.default_config = default_config or SynthesisConfig()
        self.metrics = metrics or MetricsCollector()

    async def synthesize(
        self,
        results: List[ChainResult],
        chain_context: ChainContext,
        config: Optional[SynthesisConfig] = None
    ) -> SynthesisResult:
        config = config or self.default_config
        started = time.perf_counter()

        valid_results = filter_valid_results(results)
        if not valid_results:
            logger.warning(
                "No usable chain results, returning fallback response",
                session_id=chain_context.session_id,
                chain_steps=len(results)
            )
            return SynthesisResult(
                final_response=FALLBACK_RESPONSE,
                confidence=0.0,
                metadata=SynthesisMetadata(
                    processing_time=(time.perf_counter() - started) * 1000,
                    chain_steps=len(results),
                    user_personalization=config.personalize_for_user
                )
            )

        fragments = extract_fragments(valid_results, chain_context)

        contradictions: List[Contradiction] = []
        if config.handle_contradictions:
            conflicts = self.detector.detect(fragments)
            contradictions = [contradiction for _, _, contradiction in conflicts]
            fragments = resolve_contradictions(fragments, conflicts)
            if contradictions:
                self.metrics.increment_counter("synthesis.contradictions", len(contradictions))

        confidence = self.calculate_confidence(valid_results, contradictions)
        response = self._render(fragments, config, chain_context, confidence)

        quality = self.calculate_quality(response, valid_results)
        self.metrics.set_gauge("synthesis.quality_score", quality)

        alternatives = self._alternatives(fragments, config) if config.generate_alternatives else []

        processing_time = (time.perf_counter() - started) * 1000
        logger.debug(
            "Synthesized response",
            session_id=chain_context.session_id,
            sources=len(valid_results),
            contradictions=len(contradictions),
            length=len(response),
            confidence=round(confidence, 3)
        )

        return SynthesisResult(
            final_response=response,
            confidence=confidence,
            sources=self.attribute_sources(valid_results),
            contradictions=contradictions,
            alternatives=alternatives,
            metadata=SynthesisMetadata(
                processing_time=processing_time,
                sources_used=len(valid_results),
                chain_steps=len(results),
                quality_score=quality,
                user_personalization=config.personalize_for_user
            )
        )

    def _render(
        self,
        fragments: List[ContentFragment],
        config: SynthesisConfig,
        chain_context: ChainContext,
        confidence: float
    ) -> str:
        content = assemble(fragments, config.style)

        if config.personalize_for_user:
            content = personalize(content, chain_context.retrieved_context.user_profile.response_style)
        content = adjust_tone(content, config.style.tone)

        if config.filter_system_info:
            content = clean_response(content)

        if config.include_confidence:
            footer = f"\n\n(Confidence: {round(confidence * 100)}%)"
            if len(footer) < config.max_length:
                return truncate(content, config.max_length - len(footer)) + footer

        return truncate(content, config.max_length)

    def _alternatives(self, fragments: List[ContentFragment], config: SynthesisConfig) -> List[str]:
        """Re-assemble with linear structure and with concise verbosity"""

        variants = []
        if config.style.structure != Structure.LINEAR:
            variants.append(config.with_style(structure=Structure.LINEAR))
        if config.style.verbosity != Verbosity.CONCISE:
            variants.append(config.with_style(verbosity=Verbosity.CONCISE))

        alternatives = []
        for variant in variants[:MAX_ALTERNATIVES]:
            content = adjust_tone(assemble(fragments, variant.style), variant.style.tone)
            if variant.filter_system_info:
                content = clean_response(content)
            alternatives.append(truncate(content, variant.max_length))
        return alternatives

    def calculate_confidence(self, results: List[ChainResult], contradictions: List[Contradiction]) -> float:
        if not results:
            return 0.0
        average = sum(r.metadata.confidence for r in results) / len(results)
        return max(0.0, min(1.0, average - CONTRADICTION_PENALTY * len(contradictions)))

    def calculate_quality(self, response: str, results: List[ChainResult]) -> float:
        """Observability-only heuristic over length, punctuation, sentences and sources"""

        score = 0.5
        if 100 < len(response) < 2000:
            score += 0.2
        if "." in response and " " in response:
            score += 0.1

        sentences = len(SENTENCE_BREAK.split(response))
        if 2 < sentences < 20:
            score += 0.1

        if len(results) > 1:
            score += 0.1

        return min(1.0, score)

    def attribute_sources(self, results: List[ChainResult]) -> List[SourceAttribution]:
        attributions = []
        for result in results:
            if result.has_tool_results:
                source = SourceKind.MCP_TOOL
            elif "synthesis" in result.step_id:
                source = SourceKind.SYNTHESIS
            elif "retriev" in result.step_id:
                source = SourceKind.CONTEXT
            else:
                source = SourceKind.REASONING

            attributions.append(SourceAttribution(
                source=source,
                content=result.step_id,
                confidence=result.metadata.confidence,
                weight=result.metadata.confidence
            ))
        return attributions
