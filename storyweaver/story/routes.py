from __future__ import annotations

from typing import Any, Optional

from flask import current_app, jsonify, request

from ..services.generation import GenerationConfigError, GenerationFailedError
from ..services.story_builder import build_story
from ..services.story_graph import (
    DEFAULT_PERSPECTIVE,
    InvalidStoryContentError,
    NodeNotFoundError,
    SegmentNotFoundError,
    next_segment_index,
)
from ..services.story_session import advance_story, step_back
from ..services.story_store import StaleStoryError, StoryNotFoundError, StoryStore, StoryStoreError
from ..services.variants import VariantKind, VariantTarget, get_or_generate
from . import bp
from .forms import BUILD_FIELD_ALIASES, BuildStoryForm, form_data_from_json

API_KEY_HEADER = "X-Ark-Api-Key"


@bp.errorhandler(StoryNotFoundError)
def story_not_found(_exc):
    return jsonify({"error": "not_found"}), 404


@bp.errorhandler(NodeNotFoundError)
def node_not_found(_exc):
    return jsonify({"error": "node_not_found"}), 404


@bp.errorhandler(SegmentNotFoundError)
def segment_not_found(_exc):
    return jsonify({"error": "segment_not_found"}), 404


@bp.errorhandler(GenerationFailedError)
def generation_failed(exc):
    return jsonify({"error": str(exc)}), 500


@bp.errorhandler(StoryStoreError)
@bp.errorhandler(StaleStoryError)
@bp.errorhandler(GenerationConfigError)
def storage_or_configuration_failed(exc):
    current_app.logger.error("Story request failed: %s", exc)
    return jsonify({"error": "We couldn't complete the request right now. Please try again."}), 500


@bp.route("/build", methods=["POST"])
def build():
    payload = request.get_json(silent=True) or {}
    form = BuildStoryForm(formdata=form_data_from_json(payload, BUILD_FIELD_ALIASES))
    if not form.validate():
        return jsonify({"error": "invalid_input", "fields": form.errors}), 400

    try:
        story = build_story(
            StoryStore(),
            form.text.data,
            style=form.style.data,
            segment_count=form.segments.data,
            max_perspectives=form.max_perspectives.data,
            max_interactive_turns=form.max_interactive_turns.data,
            preload_images=form.preload_images.data,
            preload_analyses=form.preload_analyses.data,
            preload_rewrites=form.preload_rewrites.data,
            api_key=_api_key(),
        )
    except InvalidStoryContentError as exc:
        return jsonify({"error": str(exc)}), 400

    return jsonify({"storyId": story.id})


@bp.route("/get", methods=["GET"])
def get():
    story = StoryStore().get(request.args.get("id", ""))
    return jsonify(story.to_dict())


@bp.route("/next", methods=["POST"])
def next_node():
    payload = request.get_json(silent=True) or {}
    story_id = _text(payload.get("storyId"))
    node_id = _text(payload.get("nodeId"))
    if not story_id or not node_id:
        return jsonify({"error": "storyId and nodeId are required."}), 400
    perspective = _perspective(payload)

    store = StoryStore()
    outcome = advance_story(
        store,
        story_id,
        node_id,
        _optional_int(payload.get("optionIndex")),
        api_key=_api_key(),
    )

    node = outcome.node
    try:
        image = get_or_generate(
            store,
            story_id,
            VariantTarget.for_node(node.id),
            perspective,
            VariantKind.IMAGE,
            api_key=_api_key(),
        )
    except (GenerationFailedError, StaleStoryError, StoryStoreError) as exc:
        current_app.logger.warning("Illustration for node %s failed: %s", node.id, exc)
    else:
        if image.available:
            node.images.setdefault(perspective, image.value)

    return jsonify(
        {
            "nextNode": node.to_dict(),
            "history": outcome.history,
            "currentIndex": outcome.current_index,
            "created": outcome.created,
            "usedFallback": outcome.used_fallback,
        }
    )


@bp.route("/back", methods=["POST"])
def previous_node():
    payload = request.get_json(silent=True) or {}
    story_id = _text(payload.get("storyId"))
    node_id = _text(payload.get("nodeId"))
    if not story_id or not node_id:
        return jsonify({"error": "storyId and nodeId are required."}), 400

    previous, index = step_back(StoryStore(), story_id, node_id)
    return jsonify({"nodeId": previous, "currentIndex": index})


@bp.route("/perspective", methods=["POST"])
def perspective_image():
    payload = request.get_json(silent=True) or {}
    target = VariantTarget.for_node(_text(payload.get("nodeId")))
    return _image_response(_text(payload.get("storyId")), target, _perspective(payload))


@bp.route("/original-image", methods=["POST"])
def original_image():
    payload = request.get_json(silent=True) or {}
    index = _optional_int(payload.get("index") or 0)
    if index is None:
        return jsonify({"error": "index must be an integer."}), 400
    target = VariantTarget.for_segment(index)
    return _image_response(_text(payload.get("storyId")), target, _perspective(payload))


@bp.route("/rewrite", methods=["POST"])
def rewrite():
    payload = request.get_json(silent=True) or {}
    target = VariantTarget.for_node(_text(payload.get("nodeId")))
    return _rewrite_response(_text(payload.get("storyId")), target, _perspective(payload))


@bp.route("/original-rewrite", methods=["POST"])
def original_rewrite():
    payload = request.get_json(silent=True) or {}
    index = _optional_int(payload.get("index") or 0)
    if index is None:
        return jsonify({"error": "index must be an integer."}), 400
    target = VariantTarget.for_segment(index)
    return _rewrite_response(_text(payload.get("storyId")), target, _perspective(payload))


@bp.route("/analyze", methods=["POST"])
def analyze():
    payload = request.get_json(silent=True) or {}
    if payload.get("originalIndex") is not None:
        index = _optional_int(payload.get("originalIndex"))
        if index is None:
            return jsonify({"error": "originalIndex must be an integer."}), 400
        target = VariantTarget.for_segment(index)
    else:
        target = VariantTarget.for_node(_text(payload.get("nodeId")))

    result = get_or_generate(
        StoryStore(),
        _text(payload.get("storyId")),
        target,
        _perspective(payload),
        VariantKind.ANALYSIS,
        api_key=_api_key(),
    )
    response = result.value.to_dict()
    response["usedFallback"] = result.used_fallback
    return jsonify(response)


@bp.route("/choose", methods=["POST"])
def choose():
    payload = request.get_json(silent=True) or {}
    story = StoryStore().get(_text(payload.get("id")))
    return jsonify({"story": story.to_dict(), "nextIndex": next_segment_index(story, payload.get("index"))})


def _image_response(story_id: str, target: VariantTarget, perspective: str):
    result = get_or_generate(
        StoryStore(),
        story_id,
        target,
        perspective,
        VariantKind.IMAGE,
        api_key=_api_key(),
    )
    if not result.available:
        return jsonify({"error": "gen_failed"}), 500
    return jsonify({"url": result.value})


def _rewrite_response(story_id: str, target: VariantTarget, perspective: str):
    result = get_or_generate(
        StoryStore(),
        story_id,
        target,
        perspective,
        VariantKind.NARRATIVE,
        api_key=_api_key(),
    )
    return jsonify({"content": result.value, "usedFallback": result.used_fallback})


def _api_key() -> Optional[str]:
    return _text(request.headers.get(API_KEY_HEADER)) or None


def _perspective(payload: dict) -> str:
    return _text(payload.get("perspective")) or DEFAULT_PERSPECTIVE


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _optional_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
