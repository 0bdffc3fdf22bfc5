# Overview: Service-layer operations for course tags; global name resolution and
# whole-set replacement of a course's tag associations.

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..models import Tag, CourseTag
from .concurrency import is_unique_violation

logger = logging.getLogger(__name__)

MAX_TAG_LENGTH = 64


class TagError(Exception):
    """Raised when tag operations fail."""
    pass


@dataclass
class TagReplaceResult:
    success: bool
    tag_ids: list[int] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    error: Exception | None = None


def resolve_name(model, name: str) -> int | None:
    """
    Map a name to the id of its row in a global name table, creating the row
    if absent.

    Several requests may create the same name at once. The unique index picks
    one winner; every loser's insert fails with a unique violation and MUST
    re-read by name to pick up the winner's id. Returns None only when the
    name can be neither found nor created.
    """
    existing_id = db.session.query(model.id).filter(model.name == name).scalar()
    if existing_id is not None:
        return existing_id

    record = model(name=name)
    db.session.add(record)
    try:
        db.session.commit()
        return record.id
    except IntegrityError as exc:
        db.session.rollback()
        if not is_unique_violation(exc):
            raise
        logger.warning("Concurrent creation of %s %r; re-reading by name", model.__tablename__, name)
        return db.session.query(model.id).filter(model.name == name).scalar()


def normalize_tag_names(tag_names: Iterable[Any] | None) -> list[str]:
    """Trim, drop blanks and non-strings, collapse duplicates (first wins)."""
    names: list[str] = []
    for raw in tag_names or []:
        if not isinstance(raw, str):
            continue
        name = raw.strip()
        if not name or name in names:
            continue
        names.append(name)
    return names


def replace_course_tags(course_id: int, tag_names: Iterable[Any] | None) -> TagReplaceResult:
    """
    Replace the full tag set of a course.

    1. Delete every existing association for the course.
    2. Resolve each name to a tag id (create-or-fetch-on-conflict).
    3. Skip, with a warning, names that cannot be resolved.
    4. Insert one association per resolved id.

    FAILURE: a failure in step 1 leaves the old set intact; a failure after
    step 1 leaves the course with NO tags. The store gives us no transaction
    spanning these steps, so that window is accepted and reported through
    `success=False` / `error`.

    NOT safe to run concurrently for the same course. Safe across courses.
    """
    try:
        db.session.query(CourseTag).filter(CourseTag.course_id == course_id).delete(
            synchronize_session=False
        )
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Failed to clear tags for course %s: %s", course_id, exc)
        return TagReplaceResult(success=False, error=exc)

    tag_ids: list[int] = []
    skipped: list[str] = []
    for name in normalize_tag_names(tag_names):
        tag_id = None
        if len(name) > MAX_TAG_LENGTH:
            logger.warning("Tag %r exceeds %d characters", name, MAX_TAG_LENGTH)
        else:
            try:
                tag_id = resolve_name(Tag, name)
            except SQLAlchemyError as exc:
                db.session.rollback()
                logger.error("Error resolving tag %r: %s", name, exc)

        if tag_id is None:
            logger.warning("Skipping tag %r for course %s - could not create or find", name, course_id)
            skipped.append(name)
            continue
        if tag_id not in tag_ids:
            tag_ids.append(tag_id)

    if tag_ids:
        try:
            db.session.add_all([CourseTag(course_id=course_id, tag_id=tag_id) for tag_id in tag_ids])
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.error("Failed to attach tags %s to course %s: %s", tag_ids, course_id, exc)
            return TagReplaceResult(success=False, tag_ids=tag_ids, skipped=skipped, error=exc)

    return TagReplaceResult(success=True, tag_ids=tag_ids, skipped=skipped)


def get_or_create_tag(name: str) -> Tag:
    names = normalize_tag_names([name])
    if not names:
        raise TagError("Tag name is required")
    if len(names[0]) > MAX_TAG_LENGTH:
        raise TagError(f"Tag name must be at most {MAX_TAG_LENGTH} characters")
    tag_id = resolve_name(Tag, names[0])
    if tag_id is None:
        raise TagError(f"Could not create tag {names[0]!r}")
    return db.session.get(Tag, tag_id)


def list_tags(search: str | None = None) -> list[Tag]:
    query = db.session.query(Tag)
    if search and search.strip():
        query = query.filter(Tag.name.ilike(f"%{search.strip()}%"))
    return query.order_by(Tag.name.asc()).all()


def get_course_tags(course_id: int) -> list[Tag]:
    return (
        db.session.query(Tag)
        .join(CourseTag, CourseTag.tag_id == Tag.id)
        .filter(CourseTag.course_id == course_id)
        .order_by(Tag.name.asc())
        .all()
    )
