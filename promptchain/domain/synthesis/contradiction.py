from abc import ABC, abstractmethod
from typing import List, Optional, Tuple
import re

from promptchain.domain.models.synthesis_models import ContentFragment, Contradiction, FragmentType


RESOLUTION_PENALTY = 0.8

# (positive, negative) polarity pairs
POLARITY_PATTERNS: List[Tuple[re.Pattern, re.Pattern]] = [
    (re.compile(r"\bis\s+(?:true|correct|valid)\b"), re.compile(r"\bis\s+(?:false|incorrect|invalid)\b|\bis\s+not\s+(?:true|correct|valid)\b")),
    (re.compile(r"\bcan\s+"), re.compile(r"\bcannot\s+|\bcan't\s+|\bcan\s+not\s+")),
    (re.compile(r"\bwill\s+(?!not\b)"), re.compile(r"\bwill\s+not\s+|\bwon't\s+")),
    (re.compile(r"\bshould\s+(?!not\b)"), re.compile(r"\bshould\s+not\s+|\bshouldn't\s+")),
]

ConflictPair = Tuple[ContentFragment, ContentFragment, Contradiction]


class ContradictionDetector(ABC):
    """Decides whether two fragments make opposing claims"""

    @abstractmethod
    def check(self, first: ContentFragment, second: ContentFragment) -> Optional[Contradiction]:
        pass

    def detect(self, fragments: List[ContentFragment]) -> List[ConflictPair]:
        """Check every pair of fragments coming from different steps"""

        conflicts = []
        for i, first in enumerate(fragments):
            for second in fragments[i + 1:]:
                if set(first.sources) & set(second.sources):
                    continue
                contradiction = self.check(first, second)
                if contradiction is not None:
                    conflicts.append((first, second, contradiction))
        return conflicts


class RegexContradictionDetector(ContradictionDetector):
    """Polarity-table detector (can / cannot, will / will not, ...)"""

    def __init__(self, patterns: Optional[List[Tuple[re.Pattern, re.Pattern]]] = None):
        self.patterns = patterns or POLARITY_PATTERNS

    def check(self, first: ContentFragment, second: ContentFragment) -> Optional[Contradiction]:
        text1 = first.content.lower()
        text2 = second.content.lower()

        for positive, negative in self.patterns:
            opposed = (
                (self._matches(positive, negative, text1) and negative.search(text2)) or
                (negative.search(text1) and self._matches(positive, negative, text2))
            )
            if opposed:
                return Contradiction(
                    sources=first.sources + second.sources,
                    description="Contradictory statements detected between sources",
                    resolution=resolution_strategy(first, second),
                    confidence=min(first.confidence, second.confidence)
                )
        return None

    def _matches(self, positive: re.Pattern, negative: re.Pattern, text: str) -> bool:
        # A positive match only counts when the text does not also state the negative
        return positive.search(text) is not None and negative.search(text) is None


def resolution_strategy(first: ContentFragment, second: ContentFragment) -> str:
    if first.confidence > second.confidence:
        return f"prioritizing the higher confidence source {first.sources[0]}"
    if second.confidence > first.confidence:
        return f"prioritizing the higher confidence source {second.sources[0]}"
    return "merging perspectives from both sources with noted uncertainty"


def resolve_contradictions(
    fragments: List[ContentFragment],
    conflicts: List[ConflictPair]
) -> List[ContentFragment]:
    """Replace each conflicting pair with one fragment presenting both sides.

    A pair whose fragments were already consumed by an earlier resolution is left
    as it is.
    """

    resolved = list(fragments)

    for first, second, contradiction in conflicts:
        if first not in resolved or second not in resolved:
            continue

        resolved.remove(first)
        resolved.remove(second)
        resolved.append(ContentFragment(
            type=FragmentType.MAIN_CONTENT,
            content=resolved_content([first, second], contradiction),
            confidence=max(first.confidence, second.confidence) * RESOLUTION_PENALTY,
            sources=contradiction.sources,
            priority=max(first.priority, second.priority)
        ))

    return resolved


def resolved_content(fragments: List[ContentFragment], contradiction: Contradiction) -> str:
    perspectives = "\n\n".join(
        f"Perspective {index}: {fragment.content}" for index, fragment in enumerate(fragments, 1)
    )
    return (
        "There are different perspectives on this topic:\n\n"
        f"{perspectives}\n\n"
        f"Based on the available information, {contradiction.resolution}."
    )
