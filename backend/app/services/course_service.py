# Overview: Service-layer operations for course authoring and the learner's course tree.

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Course, CourseRating, CourseTag, Edge, Node, NodeType, UserProgress
from ..models.courses import COURSE_STATUSES, DEFAULT_NODE_XP, MAX_COORDINATE, MIN_COORDINATE
from app.time_utils import utcnow
from app.validation import ValidationError, optional_text, parse_int, require_text
from .concurrency import VersionedUpdate, is_unique_violation, optimistic_update, run_with_retry
from .completion_service import completed_node_ids
from .progression import compute_statuses, creates_cycle
from .tag_service import TagReplaceResult, replace_course_tags, resolve_name

logger = logging.getLogger(__name__)

NODE_TYPES = ("theory", "code", "project", "guide", "tutorial", "checklist", "resource")


class CourseError(Exception):
    """Raised when course operations fail."""
    pass


class CourseNotFoundError(CourseError):
    pass


class CoursePermissionError(CourseError):
    pass


class CourseConflictError(CourseError):
    pass


def get_course(course_id: int) -> Course | None:
    return db.session.get(Course, course_id)


def list_courses(
    status: str | None = None,
    search: str | None = None,
    creator_id: int | None = None,
) -> list[Course]:
    """Courses newest-edited first, optionally filtered by status, title search and creator."""
    query = db.session.query(Course)
    if status is not None:
        if status not in COURSE_STATUSES:
            raise ValidationError(f"status must be one of {', '.join(COURSE_STATUSES)}")
        query = query.filter(Course.status == status)
    if creator_id is not None:
        query = query.filter(Course.creator_id == creator_id)
    if search and search.strip():
        query = query.filter(Course.title.ilike(f"%{search.strip()}%"))
    return query.order_by(Course.updated_at.desc(), Course.id.desc()).all()


def _expected_version(value: Any) -> int | None:
    if value is None:
        return None
    return parse_int(value, "version_id", minimum=1)


def require_course_owner(course_id: int, user_id: int) -> Course:
    course = db.session.get(Course, course_id)
    if not course:
        raise CourseNotFoundError("Course not found")
    if course.creator_id != user_id:
        raise CoursePermissionError("Only the course creator may edit this course")
    return course


def create_course(
    creator_id: int,
    title: str,
    description: str | None = None,
    tags: list | None = None,
) -> tuple[Course, TagReplaceResult | None]:
    """
    Create a draft course. Tags are attached afterwards; a tag failure is
    logged and reported but does not undo the course.
    """
    title = require_text(title, "title")
    description = optional_text(description)
    if tags is not None and not isinstance(tags, list):
        raise ValidationError("tags must be a list")

    def _op():
        course = Course(
            creator_id=creator_id,
            title=title,
            description=description,
            status="draft",
            total_nodes=0,
        )
        db.session.add(course)
        db.session.commit()
        return course

    course = run_with_retry(_op)

    tag_result = None
    if tags:
        tag_result = replace_course_tags(course.id, tags)
        if not tag_result.success:
            logger.error("Course %s created but tags failed: %s", course.id, tag_result.error)
    return course, tag_result


def update_course(
    course_id: int,
    user_id: int,
    changes: dict[str, Any],
    expected_version: int | None = None,
) -> VersionedUpdate:
    require_course_owner(course_id, user_id)
    expected_version = _expected_version(expected_version)

    updates: dict[str, Any] = {}
    if "title" in changes:
        updates["title"] = require_text(changes["title"], "title")
    if "description" in changes:
        updates["description"] = optional_text(changes["description"])
    if "status" in changes:
        if changes["status"] not in COURSE_STATUSES:
            raise ValidationError(f"status must be one of {', '.join(COURSE_STATUSES)}")
        updates["status"] = changes["status"]
    if not updates:
        raise ValidationError("No updatable fields supplied")

    return optimistic_update(Course, course_id, updates, expected_version)


def set_course_tags(course_id: int, user_id: int, tags: Any) -> TagReplaceResult:
    require_course_owner(course_id, user_id)
    if not isinstance(tags, list):
        raise ValidationError("tags must be a list")
    return replace_course_tags(course_id, tags)


# =============================================================================
# Nodes
# =============================================================================

def _resolve_node_type(name: Any) -> int:
    if name not in NODE_TYPES:
        raise ValidationError(f"type must be one of {', '.join(NODE_TYPES)}")
    type_id = resolve_name(NodeType, name)
    if type_id is None:
        raise CourseError(f"Could not resolve node type {name!r}")
    return type_id


def _node_fields(data: dict[str, Any], *, partial: bool) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    if not partial or "title" in data:
        fields["title"] = require_text(data.get("title"), "title")
    if not partial or "type" in data:
        fields["type_id"] = _resolve_node_type(data.get("type"))
    for axis in ("x", "y"):
        if not partial or axis in data:
            fields[axis] = parse_int(data.get(axis), axis, minimum=MIN_COORDINATE, maximum=MAX_COORDINATE)
    if "xp" in data:
        fields["xp"] = parse_int(data["xp"], "xp", minimum=0)
    elif not partial:
        fields["xp"] = DEFAULT_NODE_XP
    if "description" in data:
        fields["description"] = optional_text(data["description"])
    if "icon_name" in data:
        fields["icon_name"] = optional_text(data["icon_name"])
    return fields


def create_node(course_id: int, user_id: int, data: dict[str, Any]) -> Node:
    require_course_owner(course_id, user_id)
    fields = _node_fields(data, partial=False)

    def _op():
        node = Node(course_id=course_id, **fields)
        db.session.add(node)
        db.session.execute(
            update(Course)
            .where(Course.id == course_id)
            .values(total_nodes=Course.total_nodes + 1)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
        return node

    return run_with_retry(_op)


def update_node(
    course_id: int,
    node_id: int,
    user_id: int,
    data: dict[str, Any],
    expected_version: int | None = None,
) -> VersionedUpdate:
    """
    Edit a node under the version guard. Changing `xp` only affects future
    completions.
    """
    require_course_owner(course_id, user_id)
    node = db.session.get(Node, node_id)
    if not node or node.course_id != course_id:
        raise CourseNotFoundError("Node not found")
    expected_version = _expected_version(expected_version)

    updates = _node_fields(data, partial=True)
    if not updates:
        raise ValidationError("No updatable fields supplied")
    return optimistic_update(Node, node_id, updates, expected_version)


def delete_node(course_id: int, node_id: int, user_id: int) -> None:
    require_course_owner(course_id, user_id)

    def _op():
        node = db.session.get(Node, node_id)
        if not node or node.course_id != course_id:
            raise CourseNotFoundError("Node not found")

        db.session.query(Edge).filter(
            (Edge.from_node_id == node_id) | (Edge.to_node_id == node_id)
        ).delete(synchronize_session=False)
        db.session.query(UserProgress).filter(UserProgress.node_id == node_id).delete(
            synchronize_session=False
        )
        db.session.delete(node)
        db.session.execute(
            update(Course)
            .where(Course.id == course_id, Course.total_nodes > 0)
            .values(total_nodes=Course.total_nodes - 1)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()

    run_with_retry(_op)


def update_node_positions(course_id: int, user_id: int, positions: Any) -> int:
    """
    Move many nodes at once (editor drag/save). Every entry is validated
    before anything is written; ids outside the course are ignored.

    Layout is not content, so positions do not bump `version_id`.
    Returns the number of nodes updated.
    """
    require_course_owner(course_id, user_id)
    if not isinstance(positions, list):
        raise ValidationError("nodes must be a list")

    moves = []
    for entry in positions:
        if not isinstance(entry, dict):
            raise ValidationError("Each node entry must be an object")
        node_id = parse_int(entry.get("node_id"), "node_id")
        x = parse_int(entry.get("x"), "x", minimum=MIN_COORDINATE, maximum=MAX_COORDINATE)
        y = parse_int(entry.get("y"), "y", minimum=MIN_COORDINATE, maximum=MAX_COORDINATE)
        moves.append((node_id, x, y))

    def _op():
        now = utcnow()
        updated = 0
        for node_id, x, y in moves:
            result = db.session.execute(
                update(Node)
                .where(Node.id == node_id, Node.course_id == course_id)
                .values(x=x, y=y, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            updated += result.rowcount or 0
        db.session.commit()
        return updated

    updated = run_with_retry(_op)
    logger.info("Moved %s node(s) in course %s", updated, course_id)
    return updated


# =============================================================================
# Edges
# =============================================================================

def create_edge(course_id: int, user_id: int, from_node_id: Any, to_node_id: Any) -> Edge:
    """
    Add a prerequisite edge. Rejects self loops, nodes outside the course,
    duplicates and edges that would close a cycle.
    """
    require_course_owner(course_id, user_id)
    if from_node_id is None or to_node_id is None:
        raise ValidationError("from_node_id and to_node_id are required")
    from_node_id = parse_int(from_node_id, "from_node_id")
    to_node_id = parse_int(to_node_id, "to_node_id")
    if from_node_id == to_node_id:
        raise ValidationError("Cannot connect node to itself")

    found = (
        db.session.query(Node.id)
        .filter(Node.course_id == course_id, Node.id.in_([from_node_id, to_node_id]))
        .count()
    )
    if found != 2:
        raise CourseNotFoundError("One or both nodes not found")

    edges = db.session.query(Edge.from_node_id, Edge.to_node_id).filter(Edge.course_id == course_id).all()
    pairs = [tuple(edge) for edge in edges]
    if (from_node_id, to_node_id) in pairs:
        raise CourseConflictError("Edge already exists")
    if creates_cycle(pairs, from_node_id, to_node_id):
        raise CourseConflictError("Edge would create a prerequisite cycle")

    edge = Edge(course_id=course_id, from_node_id=from_node_id, to_node_id=to_node_id)
    db.session.add(edge)
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        if is_unique_violation(exc):
            raise CourseConflictError("Edge already exists") from exc
        raise
    return edge


def delete_edge(course_id: int, edge_id: int, user_id: int) -> None:
    require_course_owner(course_id, user_id)
    edge = db.session.query(Edge).filter_by(id=edge_id, course_id=course_id).first()
    if not edge:
        raise CourseNotFoundError("Edge not found")
    db.session.delete(edge)
    db.session.commit()


# =============================================================================
# Learner view
# =============================================================================

def get_course_tree(course_id: int, user_id: int | None = None) -> dict:
    """
    Nodes, edges and the learner's per-node status. Statuses are computed on
    every call from the current completion set; nothing is cached.
    """
    course = db.session.get(Course, course_id)
    if not course:
        raise CourseNotFoundError("Course not found")

    nodes = db.session.query(Node).filter(Node.course_id == course_id).order_by(Node.id.asc()).all()
    edges = db.session.query(Edge).filter(Edge.course_id == course_id).order_by(Edge.id.asc()).all()
    node_ids = [node.id for node in nodes]
    completed = completed_node_ids(user_id, node_ids)
    statuses = compute_statuses(node_ids, completed, edges)

    tree_nodes = []
    for node in nodes:
        row = node.to_dict()
        row["status"] = statuses[node.id].value
        tree_nodes.append(row)

    return {
        "course_id": course.id,
        "course_title": course.title,
        "nodes": tree_nodes,
        "edges": [edge.to_dict() for edge in edges],
        "completed_nodes": sorted(completed),
    }


def delete_course(course_id: int, user_id: int) -> None:
    require_course_owner(course_id, user_id)

    def _op():
        node_ids = [row.id for row in db.session.query(Node.id).filter(Node.course_id == course_id)]
        if node_ids:
            db.session.query(UserProgress).filter(UserProgress.node_id.in_(node_ids)).delete(
                synchronize_session=False
            )
        db.session.query(Edge).filter(Edge.course_id == course_id).delete(synchronize_session=False)
        db.session.query(Node).filter(Node.course_id == course_id).delete(synchronize_session=False)
        db.session.query(CourseTag).filter(CourseTag.course_id == course_id).delete(synchronize_session=False)
        db.session.query(CourseRating).filter(CourseRating.course_id == course_id).delete(synchronize_session=False)
        db.session.query(Course).filter(Course.id == course_id).delete(synchronize_session=False)
        db.session.commit()

    run_with_retry(_op)
