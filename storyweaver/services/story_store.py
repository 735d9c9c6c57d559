"""Whole-aggregate persistence for stories.

Stories are read in full and written in full. Reads take no lock. Two guards
keep concurrent writers from silently discarding each other's updates:

* an in-process re-entrant lock per story id serialises read-modify-write
  cycles inside one worker, and
* every row carries a version counter; a write only succeeds when the stored
  version still matches the one that was read, which covers deployments with
  several worker processes.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Callable, Iterator, Optional, TypeVar

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..models import StoryRecord
from .locking import KeyedLocks
from .story_graph import Story

T = TypeVar("T")

_STORY_LOCKS = KeyedLocks(threading.RLock)


class StoryNotFoundError(LookupError):
    """Raised when a story id is unknown to the store."""


class StaleStoryError(RuntimeError):
    """Raised when a write was based on an outdated copy of the story."""


class StoryStoreError(RuntimeError):
    """Raised when the underlying database fails."""


class StoryStore:
    def __init__(self, *, max_retries: Optional[int] = None) -> None:
        if max_retries is None:
            max_retries = int(current_app.config.get("STORY_SAVE_RETRIES", 3))
        self.max_retries = max(1, max_retries)

    @contextmanager
    def lock(self, story_id: str) -> Iterator[None]:
        with _STORY_LOCKS.hold(story_id):
            yield

    def load(self, story_id: str) -> Optional[Story]:
        if not story_id:
            return None
        try:
            record = StoryRecord.query.filter_by(id=story_id).populate_existing().first()
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.exception("Failed to load story %s", story_id)
            raise StoryStoreError("The story could not be loaded.") from exc
        if record is None:
            return None
        return Story.from_dict(record.payload, version=record.version)

    def get(self, story_id: str) -> Story:
        story = self.load(story_id)
        if story is None:
            raise StoryNotFoundError(f"Story '{story_id}' was not found.")
        return story

    def save_whole(self, story: Story) -> Story:
        """Persist ``story`` in full and bump its version."""

        with self.lock(story.id):
            payload = story.to_dict()
            try:
                if story.version == 0:
                    db.session.add(StoryRecord(id=story.id, payload=payload, version=1))
                    db.session.commit()
                    story.version = 1
                    return story

                updated = StoryRecord.query.filter_by(id=story.id, version=story.version).update(
                    {"payload": payload, "version": story.version + 1},
                    synchronize_session=False,
                )
                if updated != 1:
                    db.session.rollback()
                    raise StaleStoryError(
                        f"Story '{story.id}' changed since version {story.version} was read."
                    )
                db.session.commit()
            except IntegrityError as exc:
                db.session.rollback()
                raise StaleStoryError(f"Story '{story.id}' already exists.") from exc
            except SQLAlchemyError as exc:
                db.session.rollback()
                current_app.logger.exception("Failed to save story %s", story.id)
                raise StoryStoreError("The story could not be saved.") from exc

            story.version += 1
            return story

    def update(self, story_id: str, mutate: Callable[[Story], T]) -> T:
        """Apply ``mutate`` to a fresh copy of the story and save it.

        The cycle is retried when another writer got in first.
        """

        with self.lock(story_id):
            for attempt in range(1, self.max_retries + 1):
                story = self.get(story_id)
                result = mutate(story)
                try:
                    self.save_whole(story)
                except StaleStoryError:
                    current_app.logger.warning(
                        "Stale write for story %s (attempt %s of %s); retrying.",
                        story_id,
                        attempt,
                        self.max_retries,
                    )
                    continue
                return result

        raise StaleStoryError(f"Story '{story_id}' kept changing; giving up after {self.max_retries} attempts.")
