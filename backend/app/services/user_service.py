from __future__ import annotations

from ..extensions import db
from ..models import User
from .concurrency import run_with_retry


class UserError(Exception):
    """Raised when user operations fail."""
    pass


def create_user(username: str, email: str) -> User:
    def _op():
        if not username or not username.strip():
            raise UserError("Username is required")
        if not email or "@" not in email:
            raise UserError("A valid email is required")

        clash = (
            db.session.query(User)
            .filter((User.username == username.strip()) | (User.email == email.strip()))
            .first()
        )
        if clash:
            raise UserError("Username or email already in use")

        user = User(username=username.strip(), email=email.strip(), xp=0, level=1)
        db.session.add(user)
        db.session.commit()
        return user

    return run_with_retry(_op)


def get_user(user_id: int) -> User | None:
    return db.session.get(User, user_id)


def leaderboard(limit: int = 10) -> list[User]:
    if limit < 1:
        limit = 1
    if limit > 100:
        limit = 100
    return (
        db.session.query(User)
        .order_by(User.xp.desc(), User.id.asc())
        .limit(limit)
        .all()
    )
