from typing import Dict, Any, List
from pydantic import BaseModel, Field
from enum import Enum


class Tone(str, Enum):
    PROFESSIONAL = "professional"
    CASUAL = "casual"
    TECHNICAL = "technical"
    FRIENDLY = "friendly"


class Verbosity(str, Enum):
    CONCISE = "concise"
    MODERATE = "moderate"
    DETAILED = "detailed"


class Structure(str, Enum):
    LINEAR = "linear"
    STRUCTURED = "structured"
    NARRATIVE = "narrative"


class FragmentType(str, Enum):
    """Role of a fragment in the assembled response"""
    INTRODUCTION = "introduction"
    MAIN_CONTENT = "main_content"
    DETAILS = "details"
    EXAMPLES = "examples"
    CONCLUSION = "conclusion"


class SourceKind(str, Enum):
    CONTEXT = "context"
    MCP_TOOL = "mcp_tool"
    REASONING = "reasoning"
    SYNTHESIS = "synthesis"


class ResponseStyleConfig(BaseModel):
    """Presentation style of a synthesized response"""
    tone: Tone = Tone.FRIENDLY
    verbosity: Verbosity = Verbosity.MODERATE
    structure: Structure = Structure.STRUCTURED
    include_examples: bool = True


class SynthesisConfig(BaseModel):
    """Configuration for response synthesis"""
    style: ResponseStyleConfig = Field(default_factory=ResponseStyleConfig)
    max_length: int = 2000
    include_confidence: bool = False
    handle_contradictions: bool = True
    filter_system_info: bool = True
    personalize_for_user: bool = True
    generate_alternatives: bool = True

    def with_style(self, **changes) -> "SynthesisConfig":
        """Copy of this config with style fields replaced"""
        return self.model_copy(update={"style": self.style.model_copy(update=changes)})


class ContentFragment(BaseModel):
    """Classified, scored slice of a step's output"""
    type: FragmentType
    content: str
    confidence: float
    sources: List[str] = Field(default_factory=list)
    priority: float = 0.0

    model_config = {"frozen": True}

    @property
    def weight(self) -> float:
        return self.priority * self.confidence


class SourceAttribution(BaseModel):
    source: SourceKind
    content: str
    confidence: float
    weight: float


class Contradiction(BaseModel):
    """Conflicting statements found between step outputs"""
    sources: List[str] = Field(default_factory=list)
    description: str
    resolution: str
    confidence: float


class SynthesisMetadata(BaseModel):
    processing_time: float = 0.0
    sources_used: int = 0
    chain_steps: int = 0
    quality_score: float = 0.0
    user_personalization: bool = False


class SynthesisResult(BaseModel):
    """Final synthesized response and its diagnostics"""
    final_response: str
    confidence: float = 0.0
    sources: List[SourceAttribution] = Field(default_factory=list)
    contradictions: List[Contradiction] = Field(default_factory=list)
    alternatives: List[str] = Field(default_factory=list)
    metadata: SynthesisMetadata = Field(default_factory=SynthesisMetadata)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")
