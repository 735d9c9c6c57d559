import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from storyweaver.services.story_graph import (
    FALLBACK_OPTION_TEXT,
    InvalidStoryContentError,
    NodeDraft,
    NodeNotFoundError,
    advance,
    back,
    create_story,
    current_index,
    next_segment_index,
)


def _story(max_turns=None, segments=1):
    return create_story(
        NodeDraft(
            title="The Lantern Gate",
            summary="A gate at dusk",
            content="Mira stands before the gate.",
            options=["Open the gate", "Walk away"],
        ),
        [NodeDraft(f"Part {i}", f"Summary {i}", f"Content {i}") for i in range(segments)],
        characters=["Mira", "default", "Mira", " ", "Old Tomas"],
        style="ink wash",
        max_interactive_turns=max_turns,
        original_text="Mira grew up beside a lantern gate.",
    )


class RecordingGenerator:
    def __init__(self, is_ending=False):
        self.requests = []
        self.is_ending = is_ending

    def __call__(self, request):
        self.requests.append(request)
        number = len(self.requests)
        return NodeDraft(
            title=f"Scene {number}",
            summary=f"Summary {number}",
            content=f"Scene {number} unfolds.",
            options=["Follow the light", "Hide"],
            is_ending=self.is_ending,
        )


def test_create_story_starts_history_at_root():
    story = _story(segments=2)

    assert story.history == [story.root_id]
    assert story.root_id in story.nodes
    assert story.characters == ["Mira", "Old Tomas"]
    assert [option.text for option in story.nodes[story.root_id].options] == ["Open the gate", "Walk away"]
    ids = {story.id, story.root_id, *(segment.id for segment in story.original_segments)}
    assert len(ids) == 4


def test_create_story_rejects_missing_text():
    with pytest.raises(InvalidStoryContentError):
        create_story(NodeDraft(title="", summary="", content="   "))


def test_advance_creates_and_links_a_new_node():
    story = _story()
    generator = RecordingGenerator()
    root = story.nodes[story.root_id]

    result = advance(story, story.root_id, 0, generator)

    assert result.created
    assert result.node.title == "Scene 1"
    assert root.options[0].next_node_id == result.node.id
    assert story.history == [story.root_id, result.node.id]

    request = generator.requests[0]
    assert request.choice == "Open the gate"
    assert request.current_turn == 1
    assert "Mira grew up beside a lantern gate." in request.context
    assert "The Lantern Gate" in request.context


def test_advance_reuses_an_already_generated_branch():
    story = _story()
    generator = RecordingGenerator()

    first = advance(story, story.root_id, 0, generator)
    second = advance(story, story.root_id, 0, generator)

    assert not second.created
    assert second.node is first.node
    assert len(generator.requests) == 1
    # Already the tail entry, so the path is unchanged.
    assert story.history == [story.root_id, first.node.id]


def test_revisiting_a_node_through_another_step_is_not_deduplicated():
    story = _story()
    generator = RecordingGenerator()

    first = advance(story, story.root_id, 0, generator)
    second = advance(story, first.node.id, 0, generator)
    advance(story, story.root_id, 0, generator)

    assert story.history == [story.root_id, first.node.id, second.node.id, first.node.id]
    assert current_index(story, first.node.id) == 1


@pytest.mark.parametrize("option_index", [7, -1, None, "0"])
def test_invalid_option_index_appends_a_single_continue_option(option_index):
    story = _story()
    root = story.nodes[story.root_id]

    result = advance(story, story.root_id, option_index, RecordingGenerator())

    assert [option.text for option in root.options] == ["Open the gate", "Walk away", FALLBACK_OPTION_TEXT]
    assert root.options[0].next_node_id is None
    assert root.options[1].next_node_id is None
    assert root.options[2].next_node_id == result.node.id


def test_history_grows_by_one_per_created_node():
    story = _story()
    generator = RecordingGenerator()
    node_id = story.root_id

    for expected_length in (2, 3, 4):
        result = advance(story, node_id, 0, generator)
        assert result.created
        assert len(story.history) == expected_length
        node_id = result.node.id


def test_turn_limit_forces_an_ending():
    story = _story(max_turns=3)
    generator = RecordingGenerator(is_ending=False)

    first = advance(story, story.root_id, 0, generator)
    second = advance(story, first.node.id, 0, generator)
    assert len(story.history) == 3

    final = advance(story, second.node.id, 0, generator)

    assert final.node.is_ending
    assert final.node.options == []
    approaching = [(r.current_turn, r.approaching_end, r.must_end) for r in generator.requests]
    assert approaching == [(1, False, False), (2, True, False), (3, True, True)]


def test_advance_from_unknown_node_raises():
    story = _story()
    with pytest.raises(NodeNotFoundError):
        advance(story, "missing", 0, RecordingGenerator())


def test_back_moves_the_cursor_without_truncating_history():
    story = _story()
    generator = RecordingGenerator()
    first = advance(story, story.root_id, 0, generator)
    second = advance(story, first.node.id, 1, generator)

    assert back(story, second.node.id) == first.node.id
    assert back(story, first.node.id) == story.root_id
    assert back(story, story.root_id) is None
    assert back(story, "not-on-the-path") is None
    assert len(story.history) == 3


def test_next_segment_index_is_clamped_to_the_last_segment():
    story = _story(segments=3)

    assert next_segment_index(story, 0) == 1
    assert next_segment_index(story, 2) == 2
    assert next_segment_index(story, None) == 1
    assert next_segment_index(_story(segments=0), 4) == 0
