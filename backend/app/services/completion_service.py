# Overview: Service-layer operations for node completion; the exactly-once XP award.

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..models import (
    Edge,
    Node,
    User,
    UserProgress,
    PROGRESS_COMPLETED,
    XP_PER_LEVEL,
)
from ..models.courses import DEFAULT_NODE_XP
from app.time_utils import utcnow
from .concurrency import is_unique_violation
from .progression import NodeStatus, node_status

logger = logging.getLogger(__name__)


class CompletionError(Exception):
    """Raised when a completion request is invalid."""
    pass


class NodeNotFoundError(CompletionError):
    pass


class NodeLockedError(CompletionError):
    pass


class XPWriteError(Exception):
    """The progress row is completed but the user's XP could not be written."""
    pass


@dataclass
class CompletionResult:
    success: bool
    progress_id: int | None = None
    xp_gained: int = 0
    already_completed: bool = False
    new_xp: int | None = None
    new_level: int | None = None
    error: Exception | None = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "progress_id": self.progress_id,
            "xp_gained": self.xp_gained,
            "already_completed": self.already_completed,
            "new_xp": self.new_xp,
            "new_level": self.new_level,
            "error": str(self.error) if self.error else None,
        }


def _load_progress(user_id: int, node_id: int) -> UserProgress | None:
    return (
        db.session.query(UserProgress)
        .filter_by(user_id=user_id, node_id=node_id)
        .populate_existing()
        .first()
    )


def _already_completed(progress: UserProgress) -> CompletionResult:
    return CompletionResult(
        success=True,
        progress_id=progress.id,
        xp_gained=0,
        already_completed=True,
    )


def _mark_completed(progress_id: int, now) -> bool:
    """
    Flip an existing row to completed. Returns True only for the call that
    performed the transition; a row already completed by someone else is
    left untouched.
    """
    result = db.session.execute(
        update(UserProgress)
        .where(
            UserProgress.id == progress_id,
            UserProgress.status != PROGRESS_COMPLETED,
        )
        .values(status=PROGRESS_COMPLETED, completed_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    transitioned = bool(result.rowcount)
    db.session.commit()
    return transitioned


def _grant_xp(user_id: int, xp_reward: int) -> tuple[int, int]:
    """
    Add xp_reward to the user in one UPDATE so concurrent grants for
    different nodes cannot overwrite each other. Returns (xp, level).
    """
    new_xp = User.xp + xp_reward
    result = db.session.execute(
        update(User)
        .where(User.id == user_id)
        .values(xp=new_xp, level=new_xp // XP_PER_LEVEL + 1, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        db.session.rollback()
        raise XPWriteError(f"User {user_id} not found")
    db.session.commit()
    row = db.session.query(User.xp, User.level).filter(User.id == user_id).one()
    return row.xp, row.level


def complete_node(user_id: int, node_id: int, xp_reward: int) -> CompletionResult:
    """
    Mark (user, node) completed and grant xp_reward exactly once.

    STATES: absent -> in_progress -> completed. in_progress has not been
    rewarded yet and is treated like absent.

    Any number of concurrent or repeated calls for the same pair produce
    exactly one result with xp_gained == xp_reward; every other call returns
    already_completed=True, xp_gained=0. This relies on the unique
    (user_id, node_id) index: the losing insert re-reads the winner's row.

    FAILURE:
    - storage failure before the progress row is completed: success=False.
    - XP write failure after it: success=True, xp_gained reported, `error` set.
      The completion stands and nothing is rolled back. A later call takes the
      already-completed path and does NOT retry the grant (known gap).
    """
    if xp_reward is None or int(xp_reward) < 0:
        raise CompletionError("xp_reward must be a non-negative integer")
    xp_reward = int(xp_reward)

    try:
        progress = _load_progress(user_id, node_id)
        if progress is not None and progress.is_completed:
            return _already_completed(progress)

        now = utcnow()
        transitioned = False

        if progress is None:
            progress = UserProgress(
                user_id=user_id,
                node_id=node_id,
                status=PROGRESS_COMPLETED,
                completed_at=now,
                created_at=now,
                updated_at=now,
            )
            db.session.add(progress)
            try:
                db.session.commit()
                transitioned = True
            except IntegrityError as exc:
                db.session.rollback()
                if not is_unique_violation(exc):
                    raise
                # A concurrent request inserted the row first.
                progress = _load_progress(user_id, node_id)
                if progress is None:
                    raise
                if progress.is_completed:
                    logger.info(
                        "Lost completion race for user=%s node=%s; already completed",
                        user_id,
                        node_id,
                    )
                    return _already_completed(progress)

        progress_id = progress.id
        if not transitioned:
            transitioned = _mark_completed(progress_id, now)
            if not transitioned:
                return CompletionResult(
                    success=True,
                    progress_id=progress_id,
                    xp_gained=0,
                    already_completed=True,
                )
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Completion failed for user=%s node=%s: %s", user_id, node_id, exc)
        return CompletionResult(success=False, error=exc)

    try:
        new_xp, new_level = _grant_xp(user_id, xp_reward)
    except (SQLAlchemyError, XPWriteError) as exc:
        db.session.rollback()
        logger.error(
            "Node %s completed for user %s but XP grant of %s failed: %s",
            node_id,
            user_id,
            xp_reward,
            exc,
        )
        return CompletionResult(
            success=True,
            progress_id=progress_id,
            xp_gained=xp_reward,
            already_completed=False,
            error=exc,
        )

    return CompletionResult(
        success=True,
        progress_id=progress_id,
        xp_gained=xp_reward,
        already_completed=False,
        new_xp=new_xp,
        new_level=new_level,
    )


def completed_node_ids(user_id: int | None, node_ids: list[int]) -> set[int]:
    if user_id is None or not node_ids:
        return set()
    rows = (
        db.session.query(UserProgress.node_id)
        .filter(
            UserProgress.user_id == user_id,
            UserProgress.node_id.in_(node_ids),
            UserProgress.status == PROGRESS_COMPLETED,
        )
        .all()
    )
    return {row.node_id for row in rows}


def complete_course_node(course_id: int, node_id: int, user_id: int) -> CompletionResult:
    """
    Entry point for a learner finishing a lesson.

    Checks the node belongs to the course and is not locked for this learner,
    then hands off to complete_node with the node's current XP reward.
    """
    node = db.session.get(Node, node_id)
    if not node:
        raise NodeNotFoundError("Node not found")
    if node.course_id != course_id:
        raise CompletionError("Node does not belong to this course")

    edges = db.session.query(Edge.from_node_id, Edge.to_node_id).filter(Edge.course_id == course_id).all()
    course_node_ids = [row.id for row in db.session.query(Node.id).filter(Node.course_id == course_id)]
    completed = completed_node_ids(user_id, course_node_ids)

    if node_status(node_id, completed, [tuple(edge) for edge in edges]) is NodeStatus.LOCKED:
        raise NodeLockedError("Node is locked; complete its prerequisites first")

    xp_reward = node.xp if node.xp is not None else DEFAULT_NODE_XP
    return complete_node(user_id, node_id, xp_reward)


def get_user_progress(user_id: int, course_id: int | None = None) -> list[UserProgress]:
    """A learner's progress rows, optionally limited to one course."""
    query = db.session.query(UserProgress).filter(UserProgress.user_id == user_id)
    if course_id is not None:
        query = query.join(Node, Node.id == UserProgress.node_id).filter(Node.course_id == course_id)
    return query.order_by(UserProgress.node_id.asc()).all()
