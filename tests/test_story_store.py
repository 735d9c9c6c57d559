import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from storyweaver import create_app
from storyweaver.config import TestConfig
from storyweaver.extensions import db
from storyweaver.models import StoryRecord
from storyweaver.services.story_graph import AnalysisResult, KnowledgePoint, NodeDraft, Story, create_story
from storyweaver.services.story_store import StaleStoryError, StoryNotFoundError, StoryStore


@pytest.fixture
def app_ctx():
    app = create_app(TestConfig)
    ctx = app.app_context()
    ctx.push()
    yield app
    db.session.remove()
    db.drop_all()
    ctx.pop()


def _new_story():
    return create_story(
        NodeDraft("The Lantern Gate", "A gate at dusk", "Mira stands before the gate.", ["Open", "Leave"]),
        [NodeDraft("Winter Nights", "A glowing gate", "The gate glowed every winter night.")],
        characters=["Mira"],
        style="ink wash",
        max_interactive_turns=4,
        original_text="Mira grew up beside a lantern gate.",
    )


def test_save_whole_inserts_and_loads_the_full_aggregate(app_ctx):
    store = StoryStore()
    story = _new_story()
    story.original_segments[0].analyses["default"] = AnalysisResult(
        knowledge=[KnowledgePoint(point="Imagery", explanation="Light marks the threshold.", quote="gate")]
    )

    store.save_whole(story)
    loaded = store.get(story.id)

    assert story.version == 1
    assert loaded.version == 1
    assert loaded.to_dict() == story.to_dict()
    assert "version" not in db.session.get(StoryRecord, story.id).payload


def test_get_unknown_story_raises(app_ctx):
    with pytest.raises(StoryNotFoundError):
        StoryStore().get("missing")


def test_write_from_a_stale_copy_is_rejected(app_ctx):
    store = StoryStore()
    store.save_whole(_new_story())
    story_id = StoryRecord.query.first().id

    first = store.get(story_id)
    second = store.get(story_id)
    first.style = "watercolour"
    store.save_whole(first)

    second.style = "charcoal"
    with pytest.raises(StaleStoryError):
        store.save_whole(second)

    assert store.get(story_id).style == "watercolour"
    assert store.get(story_id).version == 2


def test_update_retries_on_a_fresh_copy_after_a_concurrent_write(app_ctx):
    store = StoryStore()
    story = store.save_whole(_new_story())
    seen_versions = []

    def mutate(fresh):
        seen_versions.append(fresh.version)
        if len(seen_versions) == 1:
            competitor = Story.from_dict(fresh.to_dict(), version=fresh.version)
            competitor.characters.append("Old Tomas")
            store.save_whole(competitor)
        fresh.style = "watercolour"
        return fresh.style

    assert store.update(story.id, mutate) == "watercolour"

    saved = store.get(story.id)
    assert seen_versions == [1, 2]
    assert saved.characters == ["Mira", "Old Tomas"]
    assert saved.style == "watercolour"
    assert saved.version == 3


def test_update_gives_up_after_max_retries(app_ctx):
    store = StoryStore(max_retries=2)
    story = store.save_whole(_new_story())
    attempts = []

    def always_overtaken(fresh):
        attempts.append(fresh.version)
        store.save_whole(Story.from_dict(fresh.to_dict(), version=fresh.version))
        fresh.style = "lost"

    with pytest.raises(StaleStoryError):
        store.update(story.id, always_overtaken)

    assert len(attempts) == 2
    assert store.get(story.id).style == "ink wash"
