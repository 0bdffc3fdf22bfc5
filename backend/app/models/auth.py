from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z

# Each level spans this many XP points: level = xp // XP_PER_LEVEL + 1
XP_PER_LEVEL = 500


def level_for_xp(xp: int | None) -> int:
    return (xp or 0) // XP_PER_LEVEL + 1


class User(db.Model):
    """
    Learner / author account.

    XP is cumulative and only ever grows through the completion engine.
    LEVEL is stored alongside XP so leaderboards can sort without recomputing,
    but it is always derived: level == xp // 500 + 1.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.CheckConstraint("xp >= 0", name="ck_users_xp_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), nullable=False, unique=True, index=True)
    email = db.Column(db.String(255), nullable=False, unique=True)

    xp = db.Column(db.Integer, nullable=False, default=0)
    level = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<User id={self.id} username={self.username!r} xp={self.xp}>"

    def to_dict(self) -> dict:
        level = self.level or level_for_xp(self.xp)
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "xp": self.xp or 0,
            "level": level,
            "next_level_xp": level * XP_PER_LEVEL,
            "created_at": to_utc_z(self.created_at),
        }
