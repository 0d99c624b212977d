from typing import Dict, List
import re

from promptchain.domain.models.synthesis_models import (
    ContentFragment, FragmentType, ResponseStyleConfig, Structure, Verbosity
)


SECTION_ORDER = [
    FragmentType.INTRODUCTION,
    FragmentType.MAIN_CONTENT,
    FragmentType.DETAILS,
    FragmentType.EXAMPLES,
    FragmentType.CONCLUSION,
]

FRAGMENT_CAPS = {
    Verbosity.CONCISE: 2,
    Verbosity.MODERATE: 4,
    Verbosity.DETAILED: 6,
}

SIMILARITY_THRESHOLD = 0.7

TRANSITIONS = [
    "Additionally, ",
    "Furthermore, ",
    "Moreover, ",
    "It's also worth noting that ",
    "Building on this, ",
]

NON_WORD = re.compile(r"[^\w\s]")


def group_fragments(fragments: List[ContentFragment]) -> Dict[FragmentType, List[ContentFragment]]:
    grouped: Dict[FragmentType, List[ContentFragment]] = {t: [] for t in SECTION_ORDER}
    for fragment in fragments:
        grouped[fragment.type].append(fragment)
    return grouped


def assemble(fragments: List[ContentFragment], style: ResponseStyleConfig) -> str:
    """Join fragments into sections ordered by role"""

    grouped = group_fragments(fragments)
    sections = []

    for fragment_type in SECTION_ORDER:
        group = grouped[fragment_type]
        if not group:
            continue
        if fragment_type == FragmentType.DETAILS and style.verbosity == Verbosity.CONCISE:
            continue
        if fragment_type == FragmentType.EXAMPLES and (
            style.verbosity == Verbosity.CONCISE or not style.include_examples
        ):
            continue

        section = assemble_section(group, style)
        if section:
            sections.append(section)

    return "\n\n".join(sections).strip()


def assemble_section(fragments: List[ContentFragment], style: ResponseStyleConfig) -> str:
    ordered = sorted(fragments, key=lambda f: f.weight, reverse=True)
    selected = deduplicate(ordered[:FRAGMENT_CAPS[style.verbosity]])
    if not selected:
        return ""

    if style.structure == Structure.LINEAR:
        return " ".join(f.content for f in selected)

    if style.structure == Structure.NARRATIVE:
        return narrative_flow(selected)

    if len(selected) > 1:
        return "\n\n".join(f"{index}. {f.content}" for index, f in enumerate(selected, 1))
    return selected[0].content


def normalize(text: str) -> str:
    return NON_WORD.sub("", text.lower()).strip()


def jaccard_similarity(first: str, second: str) -> float:
    words1 = set(first.split())
    words2 = set(second.split())
    union = words1 | words2
    if not union:
        return 1.0
    return len(words1 & words2) / len(union)


def deduplicate(fragments: List[ContentFragment]) -> List[ContentFragment]:
    """Keep fragments not near-identical to an already accepted one"""

    unique: List[ContentFragment] = []
    seen: List[str] = []

    for fragment in fragments:
        normalized = normalize(fragment.content)
        if any(jaccard_similarity(normalized, other) >= SIMILARITY_THRESHOLD for other in seen):
            continue
        unique.append(fragment)
        seen.append(normalized)

    return unique


def narrative_flow(fragments: List[ContentFragment]) -> str:
    parts = []
    for index, fragment in enumerate(fragments):
        if index == 0:
            parts.append(fragment.content)
            continue
        transition = TRANSITIONS[(index - 1) % len(TRANSITIONS)]
        content = fragment.content
        parts.append(transition + content[:1].lower() + content[1:])
    return " ".join(parts)
