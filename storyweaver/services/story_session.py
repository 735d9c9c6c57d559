from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional

from .locking import KeyedLocks
from .narrative import NextNodeDraft, generate_next_node
from .story_graph import NextNodeRequest, NodeDraft, StoryNode, advance, back, current_index
from .story_store import StoryStore

_OPTION_LOCKS = KeyedLocks()


@dataclass
class AdvanceOutcome:
    node: StoryNode
    history: List[str]
    created: bool
    used_fallback: bool = False

    @property
    def current_index(self) -> int:
        return self.history.index(self.node.id)


def advance_story(
    store: StoryStore,
    story_id: str,
    node_id: str,
    option_index: Any,
    *,
    api_key: Optional[str] = None,
) -> AdvanceOutcome:
    """Follow an option from ``node_id`` and persist the updated story.

    The next scene is written against a snapshot, outside the story lock, so
    reads of the story are never held up by the model. Requests for the same
    option wait on each other; the later ones find the option already linked.
    The link itself is made inside ``store.update`` on a fresh copy, and a
    draft is dropped when another writer linked the option first.
    """

    drafts: List[NextNodeDraft] = []

    def generate(request: NextNodeRequest) -> NodeDraft:
        if not drafts:
            drafts.append(generate_next_node(request, api_key=api_key))
        return drafts[0].node

    def mutate(story):
        result = advance(story, node_id, option_index, generate)
        return AdvanceOutcome(
            node=result.node,
            history=list(story.history),
            created=result.created,
            used_fallback=result.created and drafts[0].used_fallback,
        )

    key = (story_id, node_id, option_index if isinstance(option_index, int) else None)
    with _OPTION_LOCKS.hold(key):
        advance(store.get(story_id), node_id, option_index, generate)
        return store.update(story_id, mutate)


def step_back(store: StoryStore, story_id: str, node_id: str) -> tuple[Optional[str], int]:
    """Return the previous node on the path and its index, without saving."""

    story = store.get(story_id)
    story.node(node_id)
    index = current_index(story, node_id)
    previous = back(story, node_id)
    if previous is None:
        return None, index
    return previous, index - 1
