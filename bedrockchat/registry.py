"""
Model capability registry.

Classifies a Bedrock model identifier into a ModelFamily by substring match
against an ordered pattern table. First match wins, so more specific
patterns (``titan-image``) sit above the general ones (``titan``).

Unrecognized identifiers map to the ``UNKNOWN`` completion subtype; its
decoder reports an error instead of raising.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


class Kind(str, enum.Enum):
    CONVERSATIONAL = "conversational"
    COMPLETION = "completion"
    IMAGE = "image"


class Subtype(str, enum.Enum):
    CLAUDE3 = "claude3"
    TITAN = "titan"
    LEGACY_CHAT = "legacy_chat"
    LLAMA2 = "llama2"
    LLAMA3 = "llama3"
    MISTRAL = "mistral"
    AI21 = "ai21"
    COHERE_COMMAND = "cohere_command"
    COHERE_EMBED = "cohere_embed"
    TITAN_EMBED = "titan_embed"
    JAMBA_INSTRUCT = "jamba_instruct"
    TITAN_IMAGE = "titan_image"
    STABLE_DIFFUSION = "stable_diffusion"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ModelFamily:
    """Immutable (kind, subtype) pair derived from a model id."""
    kind: Kind
    subtype: Subtype

    @property
    def is_conversational(self) -> bool:
        return self.kind is Kind.CONVERSATIONAL

    @property
    def is_image(self) -> bool:
        return self.kind is Kind.IMAGE


# (substrings, family), checked top to bottom
MODEL_PATTERNS: list[tuple[tuple[str, ...], ModelFamily]] = [
    (("claude-3",), ModelFamily(Kind.CONVERSATIONAL, Subtype.CLAUDE3)),
    (("titan-image",), ModelFamily(Kind.IMAGE, Subtype.TITAN_IMAGE)),
    (("stable-diffusion", "stability."), ModelFamily(Kind.IMAGE, Subtype.STABLE_DIFFUSION)),
    (("titan-embed",), ModelFamily(Kind.COMPLETION, Subtype.TITAN_EMBED)),
    (("titan",), ModelFamily(Kind.COMPLETION, Subtype.TITAN)),
    (("claude",), ModelFamily(Kind.COMPLETION, Subtype.LEGACY_CHAT)),
    (("llama3",), ModelFamily(Kind.COMPLETION, Subtype.LLAMA3)),
    (("llama2",), ModelFamily(Kind.COMPLETION, Subtype.LLAMA2)),
    (("mistral", "mixtral"), ModelFamily(Kind.COMPLETION, Subtype.MISTRAL)),
    (("jamba",), ModelFamily(Kind.COMPLETION, Subtype.JAMBA_INSTRUCT)),
    (("ai21", ".j2"), ModelFamily(Kind.COMPLETION, Subtype.AI21)),
    (("cohere.embed",), ModelFamily(Kind.COMPLETION, Subtype.COHERE_EMBED)),
    (("cohere.command",), ModelFamily(Kind.COMPLETION, Subtype.COHERE_COMMAND)),
]

UNKNOWN_FAMILY = ModelFamily(Kind.COMPLETION, Subtype.UNKNOWN)

# Completion subtypes whose chunks decode incrementally
STREAMABLE_SUBTYPES = frozenset({
    Subtype.LEGACY_CHAT,
    Subtype.LLAMA2,
    Subtype.LLAMA3,
    Subtype.MISTRAL,
})


def classify(model_id: str) -> ModelFamily:
    """Return the ModelFamily for a model identifier. Total and pure."""
    lowered = (model_id or "").lower()
    for patterns, family in MODEL_PATTERNS:
        if any(p in lowered for p in patterns):
            return family
    logger.debug("No model pattern matched '%s', treating as unknown", model_id)
    return UNKNOWN_FAMILY


def default_streaming_preference(model_id: str) -> bool:
    """True when the model's responses can be decoded chunk by chunk."""
    family = classify(model_id)
    if family.is_conversational:
        return True
    return family.subtype in STREAMABLE_SUBTYPES
