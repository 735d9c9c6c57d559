"""Service layer for story graphs, their variant caches and AI-assisted generation."""

from __future__ import annotations

from .generation import GenerationFailedError  # noqa: F401
from .story_builder import build_story  # noqa: F401
from .story_graph import (  # noqa: F401
    DEFAULT_PERSPECTIVE,
    InvalidStoryContentError,
    NodeNotFoundError,
    SegmentNotFoundError,
    Story,
    StoryNode,
)
from .story_session import advance_story, step_back  # noqa: F401
from .story_store import StaleStoryError, StoryNotFoundError, StoryStore, StoryStoreError  # noqa: F401
from .variants import VariantKind, VariantTarget, get_or_generate  # noqa: F401

__all__ = [
    "DEFAULT_PERSPECTIVE",
    "GenerationFailedError",
    "InvalidStoryContentError",
    "NodeNotFoundError",
    "SegmentNotFoundError",
    "StaleStoryError",
    "Story",
    "StoryNode",
    "StoryNotFoundError",
    "StoryStore",
    "StoryStoreError",
    "VariantKind",
    "VariantTarget",
    "advance_story",
    "build_story",
    "get_or_generate",
    "step_back",
]
