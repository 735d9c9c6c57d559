"""Narrative generation: opening scenes, branch continuations, segments and rewrites."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from flask import current_app

from .generation import (
    GenerationFailedError,
    decode_json_payload,
    get_text_generator,
    load_prompt_entry,
    render_prompt,
)
from .story_graph import DEFAULT_PERSPECTIVE, NextNodeRequest, NodeDraft

PROMPT_KEY_OPENING = "story_opening"
PROMPT_KEY_NEXT_NODE = "next_node"
PROMPT_KEY_SEGMENTS = "segment_split"
PROMPT_KEY_REWRITE = "perspective_rewrite"

DEFAULT_SEGMENT_RANGE = "6-12"


@dataclass
class OpeningDraft:
    node: NodeDraft
    characters: List[str] = field(default_factory=list)
    used_fallback: bool = False


@dataclass
class NextNodeDraft:
    node: NodeDraft
    used_fallback: bool = False


@dataclass
class RewriteOutcome:
    text: str
    used_fallback: bool = False


def generate_opening(source_text: str, *, api_key: Optional[str] = None) -> OpeningDraft:
    """Draft the root scene and the character roster from ``source_text``."""

    prompt, generation_kwargs = render_prompt(PROMPT_KEY_OPENING, source_text=source_text)
    raw_response = _generate_quietly(prompt, generation_kwargs, api_key=api_key, purpose="opening scene")

    decoded = decode_json_payload(raw_response)
    if not decoded.ok:
        current_app.logger.warning("Opening scene could not be decoded (%s); using fallback.", decoded.reason)
        return _fallback_opening(source_text)

    data = decoded.payload
    characters = data.get("characters")
    options = data.get("options")
    return OpeningDraft(
        node=NodeDraft(
            title=_text(data.get("title")) or "The story begins",
            summary=_text(data.get("summary")) or source_text[:100],
            content=_text(data.get("content")) or source_text[:300],
            options=_string_list(options) if isinstance(options, list) else ["Keep exploring"],
        ),
        characters=_string_list(characters) if isinstance(characters, list) else ["Protagonist"],
    )


def generate_next_node(request: NextNodeRequest, *, api_key: Optional[str] = None) -> NextNodeDraft:
    """Draft the scene reached by ``request.choice``.

    Any failure yields a generic continuation rather than blocking the reader.
    """

    entry = load_prompt_entry(PROMPT_KEY_NEXT_NODE)
    instructions = []
    if request.approaching_end:
        instructions.append(entry.get("approaching_end", ""))
    if request.must_end:
        instructions.append(entry.get("must_end", ""))

    prompt, generation_kwargs = render_prompt(
        PROMPT_KEY_NEXT_NODE,
        context=request.context,
        choice=request.choice,
        ending_instructions="\n".join(line for line in instructions if line),
        ending_flag="true" if request.must_end else "true or false",
    )
    raw_response = _generate_quietly(prompt, generation_kwargs, api_key=api_key, purpose="next scene")

    decoded = decode_json_payload(raw_response)
    if not decoded.ok:
        current_app.logger.warning("Next scene could not be decoded (%s); using fallback.", decoded.reason)
        return NextNodeDraft(node=_fallback_next_node(), used_fallback=True)

    data = decoded.payload
    options = data.get("options")
    return NextNodeDraft(
        node=NodeDraft(
            title=_text(data.get("title")) or "A new turn",
            summary=_text(data.get("summary")) or "The story moves on...",
            content=_text(data.get("content")) or "...",
            options=_string_list(options) if isinstance(options, list) else [],
            is_ending=_flag(data.get("isEnding")),
        )
    )


def split_into_segments(
    source_text: str,
    count: Optional[int] = None,
    *,
    api_key: Optional[str] = None,
) -> List[NodeDraft]:
    """Break the source into consecutive scenes; an empty list on failure."""

    segment_count = str(count) if isinstance(count, int) and count > 0 else DEFAULT_SEGMENT_RANGE
    prompt, generation_kwargs = render_prompt(
        PROMPT_KEY_SEGMENTS,
        segment_count=segment_count,
        source_text=source_text,
    )
    raw_response = _generate_quietly(prompt, generation_kwargs, api_key=api_key, purpose="segment split")

    decoded = decode_json_payload(raw_response, expect=list)
    if not decoded.ok:
        current_app.logger.warning("Segments could not be decoded (%s); story has no linear view.", decoded.reason)
        return []

    segments: List[NodeDraft] = []
    for item in decoded.payload:
        if not isinstance(item, dict):
            continue
        content = _text(item.get("content"))
        if not content:
            continue
        segments.append(
            NodeDraft(
                title=_text(item.get("title")) or "Segment",
                summary=_text(item.get("summary")),
                content=content,
            )
        )
    return segments


def rewrite_perspective(
    content: str,
    summary: str,
    perspective: str,
    *,
    api_key: Optional[str] = None,
) -> RewriteOutcome:
    """Retell ``content`` from ``perspective``.

    The default perspective is the canonical text itself. Transport failures
    raise :class:`GenerationFailedError`; an unusable response falls back to
    the canonical text and is flagged as such.
    """

    if perspective == DEFAULT_PERSPECTIVE:
        return RewriteOutcome(text=content)

    prompt, generation_kwargs = render_prompt(
        PROMPT_KEY_REWRITE,
        viewpoint=f"viewpoint of {perspective}",
        perspective=perspective,
        summary=summary,
        content=content,
    )
    generator = get_text_generator(api_key)
    if generator is None:
        return RewriteOutcome(text=content, used_fallback=True)

    try:
        raw_response = generator.generate_response(prompt, **generation_kwargs)
    except Exception as exc:  # pragma: no cover - defensive logging for integrations
        current_app.logger.warning("Perspective rewrite for %s failed: %s", perspective, exc)
        raise GenerationFailedError(f"Rewriting from {perspective}'s perspective failed.") from exc

    decoded = decode_json_payload(raw_response)
    rewritten = _text(decoded.payload.get("content")) if decoded.ok else ""
    if not rewritten:
        current_app.logger.warning(
            "Perspective rewrite for %s was unusable (%s); returning canonical text.",
            perspective,
            decoded.reason or "missing_content",
        )
        return RewriteOutcome(text=content, used_fallback=True)
    return RewriteOutcome(text=rewritten)


def _generate_quietly(
    prompt: str,
    generation_kwargs: Dict[str, Any],
    *,
    api_key: Optional[str],
    purpose: str,
) -> Optional[str]:
    generator = get_text_generator(api_key)
    if generator is None:
        return None
    try:
        return generator.generate_response(prompt, **generation_kwargs)
    except Exception as exc:  # pragma: no cover - defensive logging for integrations
        current_app.logger.warning("LLM %s generation failed; using fallback. Error: %s", purpose, exc)
        return None


def _fallback_opening(source_text: str) -> OpeningDraft:
    return OpeningDraft(
        node=NodeDraft(
            title="The story begins",
            summary=source_text[:100],
            content=source_text[:300],
            options=["Continue"],
        ),
        characters=["Protagonist"],
        used_fallback=True,
    )


def _fallback_next_node() -> NodeDraft:
    return NodeDraft(
        title="An uncertain path",
        summary="Mist hangs over everything...",
        content="For some reason, the path ahead is unclear...",
        options=["Turn back", "Press on"],
    )


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _string_list(values: List[Any]) -> List[str]:
    return [text for text in (_text(value) for value in values) if text]


def _flag(value: Any) -> bool:
    # Quoted booleans count; "false" stays false.
    if isinstance(value, str):
        return value.strip().lower() in {"true", "yes", "1"}
    return value is True
