"""Turn pasted source text into a persisted, ready-to-play story."""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Tuple

from flask import current_app

from .generation import GenerationFailedError
from .illustration import illustration_prompt, render_illustration, viewpoint_phrase
from .narrative import OpeningDraft, generate_opening, split_into_segments
from .story_graph import (
    DEFAULT_PERSPECTIVE,
    InvalidStoryContentError,
    Story,
    clean_characters,
    create_story,
)
from .story_store import StoryStore
from .variants import VariantKind, store_variant, synthesize_variant

PreloadTask = Tuple[int, str, VariantKind]


def build_story(
    store: StoryStore,
    source_text: str,
    *,
    style: Optional[str] = None,
    segment_count: Optional[int] = None,
    max_perspectives: Optional[int] = None,
    max_interactive_turns: Optional[int] = None,
    preload_images: bool = False,
    preload_analyses: bool = False,
    preload_rewrites: bool = False,
    api_key: Optional[str] = None,
) -> Story:
    """Create a story from ``source_text`` and save it once.

    Parameters
    ----------
    source_text:
        The verbatim text pasted by the user.
    max_perspectives:
        Keep only the first N detected characters when positive.
    preload_images, preload_analyses, preload_rewrites:
        Generate the matching variants of every linear segment up front.
        Failures are logged and left for lazy generation.
    """

    text = (source_text or "").strip()
    if not text:
        raise InvalidStoryContentError("Paste some source text to build a story from.")

    style_text = (style or "").strip() or current_app.config.get("STORY_DEFAULT_STYLE", "")

    opening = generate_opening(text, api_key=api_key)
    characters = clean_characters(opening.characters)
    if max_perspectives and max_perspectives > 0:
        characters = characters[:max_perspectives]

    segments = split_into_segments(text, segment_count, api_key=api_key)

    story = create_story(
        opening.node,
        segments,
        characters=characters,
        style=style_text,
        max_interactive_turns=max_interactive_turns,
        original_text=text,
    )

    _illustrate_root(story, opening, api_key=api_key)
    preload_segment_variants(
        story,
        images=preload_images,
        analyses=preload_analyses,
        rewrites=preload_rewrites,
        api_key=api_key,
    )

    store.save_whole(story)
    current_app.logger.info(
        "Built story %s with %s characters and %s segments.",
        story.id,
        len(story.characters),
        len(story.original_segments),
    )
    return story


def _illustrate_root(story: Story, opening: OpeningDraft, *, api_key: Optional[str]) -> None:
    root = story.nodes[story.root_id]
    primary = story.characters[0] if story.characters else (opening.characters or ["Protagonist"])[0]
    prompt = illustration_prompt(
        story.style,
        root.summary,
        viewpoint_phrase(primary),
        cover=True,
    )
    try:
        url = render_illustration(prompt, api_key=api_key)
    except GenerationFailedError as exc:
        current_app.logger.warning("Root illustration for story %s failed: %s", story.id, exc)
        return

    if url:
        root.images[DEFAULT_PERSPECTIVE] = url
        # The cover is drawn from the first character's point of view.
        if story.characters:
            root.images[story.characters[0]] = url


def preload_segment_variants(
    story: Story,
    *,
    images: bool = False,
    analyses: bool = False,
    rewrites: bool = False,
    api_key: Optional[str] = None,
) -> int:
    """Generate segment variants concurrently; return how many were cached."""

    tasks = _preload_tasks(story, images=images, analyses=analyses, rewrites=rewrites)
    if not tasks:
        return 0

    app = current_app._get_current_object()
    write_lock = threading.Lock()
    cached = []

    def run(task: PreloadTask) -> None:
        index, perspective, kind = task
        segment = story.original_segments[index]
        with app.app_context():
            try:
                result = synthesize_variant(
                    story,
                    segment,
                    perspective,
                    kind,
                    is_segment=True,
                    api_key=api_key,
                )
            except Exception as exc:
                app.logger.warning(
                    "Preloading %s for segment %s (%s) failed: %s",
                    kind.value,
                    index,
                    perspective,
                    exc,
                )
                return
        if result.available and not result.used_fallback:
            with write_lock:
                store_variant(segment, perspective, kind, result.value)
                cached.append(task)

    # One worker per task, no concurrency bound.
    with ThreadPoolExecutor(max_workers=len(tasks)) as executor:
        list(executor.map(run, tasks))

    return len(cached)


def _preload_tasks(story: Story, *, images: bool, analyses: bool, rewrites: bool) -> List[PreloadTask]:
    perspectives = [DEFAULT_PERSPECTIVE, *story.characters]
    tasks: List[PreloadTask] = []
    for index in range(len(story.original_segments)):
        if images:
            tasks.extend((index, perspective, VariantKind.IMAGE) for perspective in perspectives)
        if analyses:
            tasks.append((index, DEFAULT_PERSPECTIVE, VariantKind.ANALYSIS))
        if rewrites:
            # The default rewrite is the segment text itself.
            tasks.extend((index, perspective, VariantKind.NARRATIVE) for perspective in story.characters)
    return tasks
