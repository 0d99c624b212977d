from typing import List, Tuple
import re

from promptchain.domain.models.context_models import ResponseStyle
from promptchain.domain.models.synthesis_models import Tone


ELLIPSIS = "..."
SHORT_RESPONSE = 500
DETAIL_NOTE = (
    "For additional context: this information is based on the available data. "
    "Feel free to ask for clarification on any specific aspect."
)
FRIENDLY_OPENERS = ("I'd be happy", "I can help")
FRIENDLY_PREFIX = "I can help you with that! "

HEDGING = [
    re.compile(r"\b(?:it should be noted that|it is important to mention that|it is worth noting that)\s*", re.IGNORECASE),
    re.compile(r"\b(?:basically|essentially|fundamentally),?\s*", re.IGNORECASE),
]

TECHNICAL_TERMS: List[Tuple[re.Pattern, str]] = [
    (re.compile(r"\bworks\b"), "functions"),
    (re.compile(r"\bsend\b"), "transmit"),
    (re.compile(r"\bget\b"), "retrieve"),
]

PROFESSIONAL_TERMS: List[Tuple[re.Pattern, str]] = [
    (re.compile(r"\bcan't\b"), "cannot"),
    (re.compile(r"\bwon't\b"), "will not"),
    (re.compile(r"\bdon't\b"), "do not"),
    (re.compile(r"\bisn't\b"), "is not"),
]

CASUAL_TERMS: List[Tuple[re.Pattern, str]] = [
    (re.compile(r"\bHowever,"), "But,"),
    (re.compile(r"\bTherefore,"), "So,"),
]

CLEANUP_PATTERNS: List[Tuple[re.Pattern, str]] = [
    (re.compile(r"\[SYSTEM\].*?\[/SYSTEM\]", re.DOTALL), ""),
    (re.compile(r"\[DEBUG\].*?\[/DEBUG\]", re.DOTALL), ""),
    (re.compile(r"\[METADATA\].*?\[/METADATA\]", re.DOTALL), ""),
    (re.compile(r"\[TOOL_CALL\].*?\[/TOOL_CALL\]", re.DOTALL), ""),
    (re.compile(r"\[(?:SYSTEM|DEBUG|METADATA|TOOL_CALL)\]"), ""),
    (re.compile(r"^Tool called:.*(?:\n|$)", re.MULTILINE), ""),
    (re.compile(r"^Result:.*(?:\n|$)", re.MULTILINE), ""),
    (re.compile(r"```json\s*[\[{][\s\S]*?[\]}]\s*```"), ""),
    (re.compile(r"\bStep \d+:?\s*"), ""),
    (re.compile(r"^Chain result from:.*(?:\n|$)", re.MULTILINE), ""),
    (re.compile(r"\s*\(confidence: [\d.]+%?\)", re.IGNORECASE), ""),
    (re.compile(r"\s*\[score: [\d.]+\]", re.IGNORECASE), ""),
    (re.compile(r"\n{3,}"), "\n\n"),
]

SENTENCE_END = re.compile(r"[.!?]+[\"')\]]*(?=\s|$)")


def personalize(content: str, response_style: ResponseStyle) -> str:
    """Adjust phrasing to the user's preferred response style"""

    if response_style == ResponseStyle.CONCISE:
        for pattern in HEDGING:
            content = pattern.sub("", content)
        return re.sub(r"[ \t]+", " ", content).strip()

    if response_style == ResponseStyle.DETAILED:
        if len(content) < SHORT_RESPONSE:
            return f"{content}\n\n{DETAIL_NOTE}"
        return content

    if response_style == ResponseStyle.TECHNICAL:
        for pattern, replacement in TECHNICAL_TERMS:
            content = pattern.sub(replacement, content)
        return content

    return content


def adjust_tone(content: str, tone: Tone) -> str:
    if tone == Tone.PROFESSIONAL:
        for pattern, replacement in PROFESSIONAL_TERMS:
            content = pattern.sub(replacement, content)
        return content

    if tone == Tone.CASUAL:
        for pattern, replacement in CASUAL_TERMS:
            content = pattern.sub(replacement, content)
        return content

    if tone == Tone.FRIENDLY:
        if content and not content.startswith(FRIENDLY_OPENERS):
            return FRIENDLY_PREFIX + content
        return content

    return content


def clean_response(content: str) -> str:
    """Strip leaked system markup, tool artifacts and internal annotations"""

    for pattern, replacement in CLEANUP_PATTERNS:
        content = pattern.sub(replacement, content)
    return content.strip()


def truncate(content: str, max_length: int) -> str:
    """Cut at the last sentence boundary that fits, leaving room for an ellipsis.

    Falls back to a hard cut with an ellipsis only when not even the first
    sentence fits.
    """

    if len(content) <= max_length:
        return content

    budget = max_length - len(ELLIPSIS)
    truncated = ""
    for match in SENTENCE_END.finditer(content):
        candidate = content[:match.end()].rstrip()
        if len(candidate) > budget:
            break
        truncated = candidate

    if truncated:
        return truncated

    return content[:max(budget, 0)].rstrip() + ELLIPSIS[:max_length]
