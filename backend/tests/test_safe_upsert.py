# Overview: Pytest coverage for safe upsert and course ratings built on it.

import pytest
from sqlalchemy.exc import IntegrityError

from app.extensions import db
from app.models import CourseRating, Tag
from app.services import concurrency, rating_service
from app.services.concurrency import run_with_retry, safe_upsert
from app.services.rating_service import RatingError
from app.validation import ValidationError


class TestSafeUpsert:
    def test_insert_when_absent(self, db_session, learner, course):
        result = safe_upsert(
            CourseRating,
            {"user_id": learner.id, "course_id": course.id, "score": 4},
            ["user_id", "course_id"],
        )
        assert result.created is True
        assert result.record.id is not None
        assert result.record.created_at is not None

    def test_update_when_present_keeps_keys(self, db_session, learner, course):
        first = safe_upsert(
            CourseRating,
            {"user_id": learner.id, "course_id": course.id, "score": 4, "comment": "good"},
            ["user_id", "course_id"],
        )
        second = safe_upsert(
            CourseRating,
            {"user_id": learner.id, "course_id": course.id, "score": 2},
            ["user_id", "course_id"],
            update_fields=["score"],
        )

        assert second.created is False
        assert second.record.id == first.record.id
        assert second.record.score == 2
        assert second.record.comment == "good"
        assert db_session.query(CourseRating).count() == 1

    def test_single_string_key(self, db_session):
        created = safe_upsert(Tag, {"name": "python"}, "name")
        again = safe_upsert(Tag, {"name": "python"}, "name")
        assert created.created and not again.created
        assert again.record.id == created.record.id

    def test_missing_key_value_rejected(self, db_session, course):
        with pytest.raises(ValueError):
            safe_upsert(CourseRating, {"course_id": course.id, "score": 3}, ["user_id", "course_id"])

    def test_lost_insert_race_raises_then_retry_updates(self, db_session, learner, course, monkeypatch):
        """The loser of a concurrent insert surfaces the unique violation; a retry lands on update."""
        data = {"user_id": learner.id, "course_id": course.id, "score": 5}
        real_utcnow = concurrency.utcnow
        state = {"raced": False}

        def competing_insert():
            # First call happens after the lookup found nothing.
            if not state["raced"]:
                state["raced"] = True
                db.session.add(CourseRating(user_id=learner.id, course_id=course.id, score=1))
                db.session.commit()
            return real_utcnow()

        monkeypatch.setattr(concurrency, "utcnow", competing_insert)
        with pytest.raises(IntegrityError):
            safe_upsert(CourseRating, dict(data), ["user_id", "course_id"])

        result = run_with_retry(
            lambda: safe_upsert(CourseRating, dict(data), ["user_id", "course_id"]),
            base_delay=0,
        )
        monkeypatch.undo()

        assert result.created is False
        assert result.record.score == 5
        assert db_session.query(CourseRating).count() == 1


class TestRatings:
    def test_rate_then_rerate(self, db_session, learner, course):
        first = rating_service.rate_course(course.id, learner.id, 3, "ok")
        second = rating_service.rate_course(course.id, learner.id, "5", "great")

        assert first.created
        assert not second.created
        summary = rating_service.list_ratings(course.id)
        assert summary["total_ratings"] == 1
        assert summary["average_rating"] == 5.0
        assert summary["ratings"][0]["comment"] == "great"

    def test_average_rounded(self, db_session, learner, creator, course):
        rating_service.rate_course(course.id, learner.id, 5)
        rating_service.rate_course(course.id, creator.id, 4)
        summary = rating_service.list_ratings(course.id)
        assert summary["average_rating"] == 4.5
        assert summary["total_ratings"] == 2

    def test_empty_course_average_is_zero(self, db_session, course):
        assert rating_service.list_ratings(course.id) == {
            "ratings": [],
            "average_rating": 0.0,
            "total_ratings": 0,
        }

    @pytest.mark.parametrize("score", [0, 6, "abc", 4.5, True, None])
    def test_invalid_scores(self, db_session, learner, course, score):
        with pytest.raises(ValidationError):
            rating_service.rate_course(course.id, learner.id, score)

    def test_unknown_course(self, db_session, learner):
        with pytest.raises(RatingError):
            rating_service.rate_course(9999, learner.id, 4)
