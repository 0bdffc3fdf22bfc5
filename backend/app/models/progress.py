from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z

PROGRESS_IN_PROGRESS = "in_progress"
PROGRESS_COMPLETED = "completed"


class UserProgress(db.Model):
    """
    Per-user, per-node completion marker.

    LIFECYCLE:
    (absent) -> in_progress -> completed

    COMPLETED is terminal. The unique (user_id, node_id) constraint is what
    lets concurrent completion requests agree on a single winner; the
    completion engine depends on it.
    """
    __tablename__ = "user_progress"
    __table_args__ = (
        db.UniqueConstraint("user_id", "node_id", name="uq_user_progress_user_node"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    node_id = db.Column(db.Integer, db.ForeignKey("nodes.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default=PROGRESS_IN_PROGRESS)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    @property
    def is_completed(self) -> bool:
        return self.status == PROGRESS_COMPLETED

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "node_id": self.node_id,
            "status": self.status,
            "completed_at": to_utc_z(self.completed_at),
        }
