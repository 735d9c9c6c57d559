"""Story aggregate and the branching graph operations built on top of it.

Everything in this module works on in-memory :class:`Story` objects and never
touches the database or a generator directly. Persistence is handled by
:mod:`.story_store`; generation is injected into :func:`advance` as a callable
so the graph rules can be exercised without any external service.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

DEFAULT_PERSPECTIVE = "default"
FALLBACK_OPTION_TEXT = "continue"
PATH_SEPARATOR = " -> "


class InvalidStoryContentError(ValueError):
    """Raised when a story cannot be created from the supplied content."""


class NodeNotFoundError(LookupError):
    """Raised when a node id does not exist in a story."""


class SegmentNotFoundError(LookupError):
    """Raised when a linear segment index does not exist in a story."""


@dataclass
class StoryOption:
    text: str
    next_node_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"text": self.text}
        if self.next_node_id:
            data["nextNodeId"] = self.next_node_id
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoryOption":
        return cls(text=str(data.get("text") or ""), next_node_id=data.get("nextNodeId") or None)


@dataclass
class KnowledgePoint:
    point: str
    explanation: str
    quote: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"point": self.point, "explanation": self.explanation}
        if self.quote is not None:
            data["quote"] = self.quote
        return data


@dataclass
class DiscussionQuestion:
    question: str
    depth: str
    answer: str

    def to_dict(self) -> Dict[str, Any]:
        return {"question": self.question, "depth": self.depth, "answer": self.answer}


@dataclass
class AnalysisResult:
    knowledge: List[KnowledgePoint] = field(default_factory=list)
    questions: List[DiscussionQuestion] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "knowledge": [item.to_dict() for item in self.knowledge],
            "questions": [item.to_dict() for item in self.questions],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalysisResult":
        knowledge = [
            KnowledgePoint(
                point=str(item.get("point", "")),
                explanation=str(item.get("explanation", "")),
                quote=item.get("quote"),
            )
            for item in data.get("knowledge") or []
            if isinstance(item, dict)
        ]
        questions = [
            DiscussionQuestion(
                question=str(item.get("question", "")),
                depth=str(item.get("depth", "")),
                answer=str(item.get("answer", "")),
            )
            for item in data.get("questions") or []
            if isinstance(item, dict)
        ]
        return cls(knowledge=knowledge, questions=questions)


@dataclass
class StoryNode:
    id: str
    title: str
    summary: str
    content: str
    options: List[StoryOption] = field(default_factory=list)
    images: Dict[str, str] = field(default_factory=dict)
    is_ending: bool = False
    analyses: Dict[str, AnalysisResult] = field(default_factory=dict)
    pov_contents: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "summary": self.summary,
            "content": self.content,
            "options": [option.to_dict() for option in self.options],
            "images": dict(self.images),
            "isEnding": self.is_ending,
            "analyses": {key: value.to_dict() for key, value in self.analyses.items()},
            "povContents": dict(self.pov_contents),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoryNode":
        return cls(
            id=str(data["id"]),
            title=str(data.get("title") or ""),
            summary=str(data.get("summary") or ""),
            content=str(data.get("content") or ""),
            options=[StoryOption.from_dict(item) for item in data.get("options") or []],
            images=dict(data.get("images") or {}),
            is_ending=bool(data.get("isEnding")),
            analyses={
                key: AnalysisResult.from_dict(value)
                for key, value in (data.get("analyses") or {}).items()
            },
            pov_contents=dict(data.get("povContents") or {}),
        )


@dataclass
class Story:
    id: str
    root_id: str
    nodes: Dict[str, StoryNode]
    characters: List[str]
    style: str
    history: List[str]
    max_interactive_turns: Optional[int] = None
    original_text: str = ""
    original_segments: List[StoryNode] = field(default_factory=list)
    # Set by the store; never part of the serialised payload.
    version: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "rootId": self.root_id,
            "nodes": {node_id: node.to_dict() for node_id, node in self.nodes.items()},
            "characters": list(self.characters),
            "style": self.style,
            "history": list(self.history),
            "maxInteractiveTurns": self.max_interactive_turns,
            "originalText": self.original_text,
            "originalSegments": [segment.to_dict() for segment in self.original_segments],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], *, version: int = 0) -> "Story":
        return cls(
            id=str(data["id"]),
            root_id=str(data["rootId"]),
            nodes={
                str(node_id): StoryNode.from_dict(node)
                for node_id, node in (data.get("nodes") or {}).items()
            },
            characters=[str(name) for name in data.get("characters") or []],
            style=str(data.get("style") or ""),
            history=[str(node_id) for node_id in data.get("history") or []],
            max_interactive_turns=data.get("maxInteractiveTurns"),
            original_text=str(data.get("originalText") or ""),
            original_segments=[StoryNode.from_dict(item) for item in data.get("originalSegments") or []],
            version=version,
        )

    def node(self, node_id: str) -> StoryNode:
        try:
            return self.nodes[node_id]
        except KeyError as exc:
            raise NodeNotFoundError(f"Story {self.id} has no node '{node_id}'.") from exc

    def segment(self, index: int) -> StoryNode:
        if not isinstance(index, int) or index < 0 or index >= len(self.original_segments):
            raise SegmentNotFoundError(f"Story {self.id} has no segment {index!r}.")
        return self.original_segments[index]

    def path_titles(self) -> str:
        titles = [self.nodes[node_id].title for node_id in self.history if node_id in self.nodes]
        return PATH_SEPARATOR.join(title for title in titles if title)


@dataclass
class NodeDraft:
    """Generated content for a node before it is given an id."""

    title: str
    summary: str
    content: str
    options: List[str] = field(default_factory=list)
    is_ending: bool = False


@dataclass
class NextNodeRequest:
    context: str
    choice: str
    current_turn: int
    max_turns: Optional[int]

    @property
    def approaching_end(self) -> bool:
        return bool(self.max_turns and self.max_turns > 0 and self.current_turn >= self.max_turns - 1)

    @property
    def must_end(self) -> bool:
        return bool(self.max_turns and self.max_turns > 0 and self.current_turn >= self.max_turns)


@dataclass
class AdvanceResult:
    story: Story
    node: StoryNode
    created: bool


NodeGenerator = Callable[[NextNodeRequest], NodeDraft]


def new_id() -> str:
    return str(uuid.uuid4())


def clean_characters(characters: Sequence[str]) -> List[str]:
    """Normalise a character roster into distinct perspective names."""

    cleaned: List[str] = []
    for raw in characters:
        name = str(raw or "").strip()
        if not name or name == DEFAULT_PERSPECTIVE or name in cleaned:
            continue
        cleaned.append(name)
    return cleaned


def node_from_draft(draft: NodeDraft, *, node_id: Optional[str] = None) -> StoryNode:
    title = (draft.title or "").strip()
    content = (draft.content or "").strip()
    if not title or not content:
        raise InvalidStoryContentError("Story nodes need both a title and content.")

    is_ending = bool(draft.is_ending)
    return StoryNode(
        id=node_id or new_id(),
        title=title,
        summary=(draft.summary or "").strip(),
        content=content,
        # Endings are leaves.
        options=[] if is_ending else [StoryOption(text=text) for text in draft.options if str(text).strip()],
        is_ending=is_ending,
    )


def create_story(
    root: NodeDraft,
    segments: Sequence[NodeDraft] = (),
    *,
    characters: Sequence[str] = (),
    style: str = "",
    max_interactive_turns: Optional[int] = None,
    original_text: str = "",
) -> Story:
    """Create a fully formed story whose history starts at the root node."""

    root_node = node_from_draft(root)
    segment_nodes = [node_from_draft(NodeDraft(s.title, s.summary, s.content)) for s in segments]

    return Story(
        id=new_id(),
        root_id=root_node.id,
        nodes={root_node.id: root_node},
        characters=clean_characters(characters),
        style=style,
        history=[root_node.id],
        max_interactive_turns=max_interactive_turns,
        original_text=original_text,
        original_segments=segment_nodes,
    )


def resolve_option(node: StoryNode, option_index: Any) -> StoryOption:
    """Return the option at ``option_index``, appending a fallback when absent.

    Stale clients may ask for an option that no longer exists; instead of
    failing, a single ``"continue"`` option is appended and used.
    """

    if isinstance(option_index, int) and not isinstance(option_index, bool):
        if 0 <= option_index < len(node.options):
            return node.options[option_index]

    fallback = StoryOption(text=FALLBACK_OPTION_TEXT)
    node.options.append(fallback)
    return fallback


def build_context(story: Story, current: StoryNode) -> str:
    return (
        f"Source text: {story.original_text}\n"
        f"Path so far: {story.path_titles()}\n"
        f"Current scene: {current.content}"
    )


def advance(story: Story, from_node_id: str, option_index: Any, generate_node: NodeGenerator) -> AdvanceResult:
    current = story.node(from_node_id)
    option = resolve_option(current, option_index)

    if option.next_node_id and option.next_node_id in story.nodes:
        target = story.nodes[option.next_node_id]
        if not story.history or story.history[-1] != target.id:
            story.history.append(target.id)
        return AdvanceResult(story=story, node=target, created=False)

    request = NextNodeRequest(
        context=build_context(story, current),
        choice=option.text,
        current_turn=len(story.history),
        max_turns=story.max_interactive_turns,
    )
    draft = generate_node(request)
    if request.must_end:
        draft.is_ending = True

    target = node_from_draft(draft)
    story.nodes[target.id] = target
    option.next_node_id = target.id
    story.history.append(target.id)
    return AdvanceResult(story=story, node=target, created=True)


def current_index(story: Story, node_id: str) -> int:
    try:
        return story.history.index(node_id)
    except ValueError:
        return -1


def back(story: Story, current_node_id: str) -> Optional[str]:
    """Return the node before ``current_node_id`` on the path, if any.

    The history is left untouched so forward branches stay available.
    """

    index = current_index(story, current_node_id)
    if index <= 0:
        return None
    return story.history[index - 1]


def next_segment_index(story: Story, index: Any) -> int:
    try:
        position = int(index or 0)
    except (TypeError, ValueError):
        position = 0
    return min(position + 1, max(0, len(story.original_segments) - 1))
