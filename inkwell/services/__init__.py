"""Service layer: generation, resilience and local draft persistence."""

from __future__ import annotations

from .story_generation import (  # noqa: F401
    GenerationResult,
    PromptSuggestions,
    StoryGenerationError,
)

__all__ = [
    "GenerationResult",
    "PromptSuggestions",
    "StoryGenerationError",
]
