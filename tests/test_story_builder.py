import json
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from fakes import (
    ANALYSIS_MARKER,
    OPENING_MARKER,
    REWRITE_MARKER,
    SEGMENTS_MARKER,
    SOURCE_TEXT,
    DummyImageGenerator,
    ScriptedTextGenerator,
)

from storyweaver import create_app
from storyweaver.config import TestConfig
from storyweaver.extensions import db
from storyweaver.services.generation import IMAGE_GENERATOR_KEY, TEXT_GENERATOR_KEY
from storyweaver.services.story_builder import build_story
from storyweaver.services.story_graph import InvalidStoryContentError
from storyweaver.services.story_store import StoryStore


@pytest.fixture
def app_ctx():
    app = create_app(TestConfig)
    app.config[TEXT_GENERATOR_KEY] = ScriptedTextGenerator()
    app.config[IMAGE_GENERATOR_KEY] = DummyImageGenerator()
    ctx = app.app_context()
    ctx.push()
    yield app
    db.session.remove()
    db.drop_all()
    ctx.pop()


def test_build_story_persists_root_segments_and_cover(app_ctx):
    images = app_ctx.config[IMAGE_GENERATOR_KEY]

    story = build_story(StoryStore(), SOURCE_TEXT, style="ink wash")

    saved = StoryStore().get(story.id)
    root = saved.nodes[saved.root_id]
    assert saved.version == 1
    assert saved.history == [saved.root_id]
    assert saved.characters == ["Mira", "Old Tomas"]
    assert saved.original_text == SOURCE_TEXT
    assert [segment.title for segment in saved.original_segments] == ["Winter Nights", "The Call"]
    assert [option.text for option in root.options] == ["Open the gate", "Walk away"]
    assert root.images == {"default": "https://images.example/1.png", "Mira": "https://images.example/1.png"}
    assert images.calls == [
        "ink wash, A lantern-lit gate at dusk, snow falling, high definition, cinematic, Mira viewpoint"
    ]


def test_build_story_limits_perspectives_and_uses_default_style(app_ctx):
    app_ctx.config[TEXT_GENERATOR_KEY] = ScriptedTextGenerator(
        **{OPENING_MARKER: '{"title": "T", "summary": "S", "content": "C", "characters": ["A", "B", "C", "A"]}'}
    )

    story = build_story(StoryStore(), SOURCE_TEXT, max_perspectives=2, max_interactive_turns=5, segment_count=3)

    assert story.characters == ["A", "B"]
    assert story.style == "realistic style"
    assert story.max_interactive_turns == 5
    assert "into 3 consecutive scenes" in app_ctx.config[TEXT_GENERATOR_KEY].calls_for(SEGMENTS_MARKER)[0]


def test_build_story_falls_back_without_generators(app_ctx):
    app_ctx.config[TEXT_GENERATOR_KEY] = None
    app_ctx.config[IMAGE_GENERATOR_KEY] = None

    story = build_story(StoryStore(), SOURCE_TEXT, preload_images=True, preload_analyses=True)

    root = story.nodes[story.root_id]
    assert root.title == "The story begins"
    assert root.content == SOURCE_TEXT[:300]
    assert story.characters == ["Protagonist"]
    assert story.original_segments == []
    assert root.images == {}


def test_build_story_rejects_blank_text(app_ctx):
    with pytest.raises(InvalidStoryContentError):
        build_story(StoryStore(), "   \n ")


def test_preload_caches_segment_variants_and_skips_failures(app_ctx):
    text = ScriptedTextGenerator(**{OPENING_MARKER: _opening_with(["Mira"])})
    app_ctx.config[TEXT_GENERATOR_KEY] = text
    # Every prompt drawn from Mira's viewpoint fails, including the cover.
    app_ctx.config[IMAGE_GENERATOR_KEY] = DummyImageGenerator(fail_marker="Mira viewpoint")

    story = build_story(
        StoryStore(),
        SOURCE_TEXT,
        preload_images=True,
        preload_analyses=True,
        preload_rewrites=True,
    )

    saved = StoryStore().get(story.id)
    assert saved.nodes[saved.root_id].images == {}
    for segment in saved.original_segments:
        assert set(segment.images) == {"default"}
        assert set(segment.analyses) == {"default"}
        assert segment.pov_contents == {"Mira": "I watched the lanterns flicker and felt them call me."}
    assert len(text.calls_for(ANALYSIS_MARKER)) == 2
    assert len(text.calls_for(REWRITE_MARKER)) == 2


def test_preload_does_not_cache_fallback_rewrites(app_ctx):
    app_ctx.config[TEXT_GENERATOR_KEY] = ScriptedTextGenerator(
        **{OPENING_MARKER: _opening_with(["Mira"]), REWRITE_MARKER: "no json here"}
    )

    story = build_story(StoryStore(), SOURCE_TEXT, preload_rewrites=True)

    segments = StoryStore().get(story.id).original_segments
    assert len(segments) == 2
    assert all(segment.pov_contents == {} for segment in segments)


def _opening_with(characters):
    return json.dumps(
        {
            "title": "The Lantern Gate",
            "summary": "Snow at dusk",
            "content": "Mira waits.",
            "characters": characters,
            "options": ["Open the gate"],
        }
    )
