from .contradiction import ContradictionDetector, RegexContradictionDetector
from .response_synthesizer import FALLBACK_RESPONSE, ResponseSynthesizer
