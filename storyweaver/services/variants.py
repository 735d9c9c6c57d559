"""Lazy per-perspective cache of images, rewrites and analyses.

Each story node (and each linear segment) caches its variants in three maps
keyed by perspective. A variant is generated at most once: concurrent
requests for the same (story, target, perspective, kind) wait on a shared
lock and find the cached value when they get it. Fallback payloads and soft
failures are returned to the caller but never cached, so the next request
tries again.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .illustration import illustration_prompt, render_illustration, viewpoint_phrase
from .locking import KeyedLocks
from .narrative import rewrite_perspective
from .story_graph import DEFAULT_PERSPECTIVE, Story, StoryNode
from .story_store import StoryStore
from .text_analysis import analyze_passage, build_analysis_context

_VARIANT_LOCKS = KeyedLocks()


class VariantKind(str, enum.Enum):
    IMAGE = "image"
    NARRATIVE = "narrative"
    ANALYSIS = "analysis"


@dataclass(frozen=True)
class VariantTarget:
    """Either a branching node (by id) or a linear segment (by index)."""

    node_id: Optional[str] = None
    segment_index: Optional[int] = None

    @classmethod
    def for_node(cls, node_id: str) -> "VariantTarget":
        return cls(node_id=node_id)

    @classmethod
    def for_segment(cls, index: int) -> "VariantTarget":
        return cls(segment_index=index)

    @property
    def is_segment(self) -> bool:
        return self.segment_index is not None

    @property
    def key(self) -> str:
        if self.is_segment:
            return f"segment:{self.segment_index}"
        return f"node:{self.node_id}"

    def resolve(self, story: Story) -> StoryNode:
        if self.is_segment:
            return story.segment(self.segment_index)
        return story.node(self.node_id or "")


@dataclass
class VariantResult:
    value: Any = None
    from_cache: bool = False
    used_fallback: bool = False

    @property
    def available(self) -> bool:
        return self.value is not None


def _cache_map(node: StoryNode, kind: VariantKind) -> Dict[str, Any]:
    if kind is VariantKind.IMAGE:
        return node.images
    if kind is VariantKind.NARRATIVE:
        return node.pov_contents
    return node.analyses


def cached_variant(node: StoryNode, perspective: str, kind: VariantKind) -> Any:
    if kind is VariantKind.NARRATIVE and perspective == DEFAULT_PERSPECTIVE:
        return node.content
    return _cache_map(node, kind).get(perspective)


def store_variant(node: StoryNode, perspective: str, kind: VariantKind, value: Any) -> Any:
    """Cache ``value`` unless an entry already exists; return the cached entry."""

    return _cache_map(node, kind).setdefault(perspective, value)


def synthesize_variant(
    story: Story,
    node: StoryNode,
    perspective: str,
    kind: VariantKind,
    *,
    is_segment: bool = False,
    api_key: Optional[str] = None,
) -> VariantResult:
    """Call the generation backend for one variant without caching it."""

    if kind is VariantKind.IMAGE:
        prompt = illustration_prompt(
            story.style,
            node.summary,
            viewpoint_phrase(perspective, is_segment=is_segment),
        )
        return VariantResult(value=render_illustration(prompt, api_key=api_key))

    if kind is VariantKind.NARRATIVE:
        outcome = rewrite_perspective(node.content, node.summary, perspective, api_key=api_key)
        return VariantResult(value=outcome.text, used_fallback=outcome.used_fallback)

    context = build_analysis_context(story, node, perspective, is_segment=is_segment)
    analysis = analyze_passage(context, api_key=api_key)
    return VariantResult(value=analysis.result, used_fallback=analysis.used_fallback)


def get_or_generate(
    store: StoryStore,
    story_id: str,
    target: VariantTarget,
    perspective: Optional[str],
    kind: VariantKind,
    *,
    api_key: Optional[str] = None,
) -> VariantResult:
    perspective = (perspective or "").strip() or DEFAULT_PERSPECTIVE

    node = target.resolve(store.get(story_id))
    cached = cached_variant(node, perspective, kind)
    if cached is not None:
        return VariantResult(value=cached, from_cache=True)

    with _VARIANT_LOCKS.hold((story_id, target.key, perspective, kind.value)):
        story = store.get(story_id)
        node = target.resolve(story)
        cached = cached_variant(node, perspective, kind)
        if cached is not None:
            return VariantResult(value=cached, from_cache=True)

        result = synthesize_variant(
            story,
            node,
            perspective,
            kind,
            is_segment=target.is_segment,
            api_key=api_key,
        )
        if not result.available or result.used_fallback:
            return result

        stored = store.update(
            story_id,
            lambda fresh: store_variant(target.resolve(fresh), perspective, kind, result.value),
        )
        return VariantResult(value=stored)
