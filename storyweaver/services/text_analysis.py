"""Pedagogical analysis of a scene: knowledge points and discussion questions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional

from flask import current_app

from .generation import GenerationFailedError, decode_json_payload, get_text_generator, render_prompt
from .story_graph import (
    DEFAULT_PERSPECTIVE,
    AnalysisResult,
    DiscussionQuestion,
    KnowledgePoint,
    Story,
    StoryNode,
)

PROMPT_KEY = "text_analysis"
DEFAULT_DEPTH = "critical"


@dataclass
class AnalysisOutcome:
    result: AnalysisResult
    used_fallback: bool = False


def build_analysis_context(story: Story, node: StoryNode, perspective: str, *, is_segment: bool) -> str:
    # Linear segments are read out of order, so they carry no path.
    visited = "" if is_segment else story.path_titles()
    label = "original narrator" if perspective == DEFAULT_PERSPECTIVE else perspective
    return (
        f"Source text: {story.original_text}\n"
        f"Path so far: {visited}\n"
        f"Perspective: {label}\n"
        f"Scene summary: {node.summary}\n"
        f"Scene text: {node.content}"
    )


def analyze_passage(context: str, *, api_key: Optional[str] = None) -> AnalysisOutcome:
    """Ask the text backend for an analysis of ``context``.

    Transport failures raise :class:`GenerationFailedError`. An unusable
    response yields an empty analysis flagged as a fallback.
    """

    prompt, generation_kwargs = render_prompt(PROMPT_KEY, context=context)
    generator = get_text_generator(api_key)
    if generator is None:
        return AnalysisOutcome(result=AnalysisResult(), used_fallback=True)

    try:
        raw_response = generator.generate_response(prompt, **generation_kwargs)
    except Exception as exc:  # pragma: no cover - defensive logging for integrations
        current_app.logger.warning("Text analysis generation failed: %s", exc)
        raise GenerationFailedError("The passage could not be analysed.") from exc

    decoded = decode_json_payload(raw_response)
    if not decoded.ok:
        current_app.logger.warning("Text analysis could not be decoded (%s); returning empty analysis.", decoded.reason)
        return AnalysisOutcome(result=AnalysisResult(), used_fallback=True)

    return AnalysisOutcome(result=_parse_analysis(decoded.payload))


def _parse_analysis(data: dict) -> AnalysisResult:
    knowledge: List[KnowledgePoint] = []
    for item in _dict_items(data.get("knowledge")):
        quote = item.get("quote")
        knowledge.append(
            KnowledgePoint(
                point=_text(item.get("point")),
                explanation=_text(item.get("explanation")),
                quote=_text(quote) if quote is not None else None,
            )
        )

    questions: List[DiscussionQuestion] = []
    for item in _dict_items(data.get("questions")):
        questions.append(
            DiscussionQuestion(
                question=_text(item.get("question")),
                depth=_text(item.get("depth")) or DEFAULT_DEPTH,
                answer=_text(item.get("answer")),
            )
        )

    return AnalysisResult(knowledge=knowledge, questions=questions)


def _dict_items(value: Any) -> List[dict]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()
