from __future__ import annotations

from typing import Any

from ..extensions import db
from ..models import Course, CourseRating
from app.time_utils import utcnow
from app.validation import ValidationError, optional_text, parse_int
from .concurrency import UpsertResult, run_with_retry, safe_upsert


class RatingError(Exception):
    """Raised when rating operations fail."""
    pass


def rate_course(course_id: int, user_id: int, score: Any, comment: Any = None) -> UpsertResult:
    """
    Create or replace the caller's rating of a course.

    Two first-time ratings racing each other: the loser's insert hits the
    (user_id, course_id) unique index, run_with_retry re-runs the upsert and
    it lands on the update branch.
    """
    if score is None:
        raise ValidationError("Rating score is required")
    score = parse_int(score, "rating", minimum=1, maximum=5)
    comment = optional_text(comment)

    if not db.session.get(Course, course_id):
        raise RatingError("Course not found")

    data = {
        "course_id": course_id,
        "user_id": user_id,
        "score": score,
        "comment": comment,
        "reviewed_at": utcnow(),
    }
    return run_with_retry(
        lambda: safe_upsert(
            CourseRating,
            data,
            ["user_id", "course_id"],
            update_fields=["score", "comment", "reviewed_at"],
        )
    )


def list_ratings(course_id: int) -> dict:
    ratings = (
        db.session.query(CourseRating)
        .filter(CourseRating.course_id == course_id)
        .order_by(CourseRating.reviewed_at.desc(), CourseRating.id.desc())
        .all()
    )
    average = 0.0
    if ratings:
        average = round(sum(r.score for r in ratings) / len(ratings), 1)
    return {
        "ratings": [r.to_dict() for r in ratings],
        "average_rating": average,
        "total_ratings": len(ratings),
    }
