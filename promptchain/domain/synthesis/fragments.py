from typing import List
import re

from promptchain.domain.models.chain_models import CONDITION_NOT_MET, ChainContext, ChainResult
from promptchain.domain.models.synthesis_models import ContentFragment, FragmentType


MIN_OUTPUT_LENGTH = 10
MIN_CONFIDENCE = 0.3
INTERNAL_MARKERS = ("[SYSTEM]", "[DEBUG]")

LONG_PARAGRAPH = 300
MIN_SENTENCE_LENGTH = 20

PARAGRAPH_SPLIT = re.compile(r"\n\s*\n")
SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")


def filter_valid_results(results: List[ChainResult]) -> List[ChainResult]:
    """Drop failed, skipped, trivial, internal and low-confidence results"""

    valid = []
    for result in results:
        if not result.success:
            continue
        if CONDITION_NOT_MET in result.metadata.reasoning:
            continue
        if len((result.output or "").strip()) < MIN_OUTPUT_LENGTH:
            continue
        if any(marker in result.output for marker in INTERNAL_MARKERS):
            continue
        if result.metadata.confidence < MIN_CONFIDENCE:
            continue
        valid.append(result)
    return valid


def segment_content(content: str) -> List[str]:
    """Split text into paragraphs, breaking long paragraphs into sentences"""

    segments = []
    for paragraph in PARAGRAPH_SPLIT.split(content):
        paragraph = paragraph.strip()
        if not paragraph:
            continue

        if len(paragraph) > LONG_PARAGRAPH:
            for sentence in SENTENCE_SPLIT.split(paragraph):
                sentence = sentence.strip()
                if len(sentence) > MIN_SENTENCE_LENGTH:
                    if sentence[-1] not in ".!?":
                        sentence += "."
                    segments.append(sentence)
        else:
            segments.append(paragraph)

    return segments


def determine_fragment_type(step_id: str, content: str) -> FragmentType:
    step = step_id.lower()
    text = content.lower()

    if "analysis" in step or "context" in step:
        return FragmentType.INTRODUCTION
    if "synthesis" in step or "comprehensive" in step:
        return FragmentType.MAIN_CONTENT
    if "validation" in step or "details" in step:
        return FragmentType.DETAILS
    if "example" in text or "for instance" in text:
        return FragmentType.EXAMPLES
    if "conclusion" in step or "in summary" in text:
        return FragmentType.CONCLUSION
    return FragmentType.MAIN_CONTENT


def calculate_priority(result: ChainResult, context: ChainContext) -> float:
    priority = 5

    if "synthesis" in result.step_id:
        priority += 3
    if "analysis" in result.step_id:
        priority += 2
    if "validation" in result.step_id:
        priority += 1

    # Query relevance
    output = result.output.lower()
    priority += len([term for term in context.user_query.lower().split() if term in output])

    if result.has_tool_results:
        priority += 2

    return priority


def extract_fragments(results: List[ChainResult], context: ChainContext) -> List[ContentFragment]:
    """Fragments of all results, heaviest (priority x confidence) first"""

    fragments = []
    for result in results:
        fragment_type = determine_fragment_type(result.step_id, result.output)
        priority = calculate_priority(result, context)

        for section in segment_content(result.output):
            fragments.append(ContentFragment(
                type=fragment_type,
                content=section,
                confidence=result.metadata.confidence,
                sources=[result.step_id],
                priority=priority
            ))

    return sorted(fragments, key=lambda f: f.weight, reverse=True)
