from __future__ import annotations

from datetime import datetime

from .extensions import db


class StoryRecord(db.Model):
    """Whole-aggregate storage row for a single story.

    The serialised story lives in ``payload``; ``version`` is bumped on every
    successful write so concurrent writers can detect that they are working
    from a stale copy.
    """

    __tablename__ = "stories"

    id = db.Column(db.String(36), primary_key=True)
    payload = db.Column(db.JSON, nullable=False)
    version = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover - repr for debugging
        return f"<StoryRecord {self.id} (v{self.version})>"
