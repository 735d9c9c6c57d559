from __future__ import annotations

from typing import Optional

from flask import current_app

from .generation import GenerationFailedError, apply_template, get_image_generator, load_prompt_entry
from .story_graph import DEFAULT_PERSPECTIVE

PROMPT_KEY = "illustration"


def viewpoint_phrase(perspective: str, *, is_segment: bool = False) -> str:
    if perspective == DEFAULT_PERSPECTIVE:
        return "original narrator's view" if is_segment else "first-person view"
    return f"{perspective} viewpoint"


def illustration_prompt(style: str, summary: str, viewpoint: str, *, cover: bool = False) -> str:
    entry = load_prompt_entry(PROMPT_KEY)
    template = entry.get("cover_template") if cover else None
    return apply_template(template or entry["prompt_template"], style=style, summary=summary, viewpoint=viewpoint)


def render_illustration(prompt: str, *, api_key: Optional[str] = None) -> Optional[str]:
    """Return the URL of the first generated image, or ``None``.

    No configured backend and an empty result are soft failures; a backend
    error raises :class:`GenerationFailedError`.
    """

    generator = get_image_generator(api_key)
    if generator is None:
        return None

    parameters = load_prompt_entry(PROMPT_KEY).get("parameters") or {}
    try:
        urls = generator.generate_images(
            prompt,
            size=current_app.config.get("STORY_IMAGE_SIZE"),
            count=int(parameters.get("count") or 1),
        )
    except Exception as exc:  # pragma: no cover - defensive logging for integrations
        current_app.logger.warning("Image generation failed: %s", exc)
        raise GenerationFailedError("The illustration could not be generated.") from exc

    if not urls:
        current_app.logger.warning("Image generation returned no results for prompt: %s", prompt[:120])
        return None
    return urls[0]
