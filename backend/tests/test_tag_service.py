# Overview: Pytest coverage for tag name resolution and course tag replacement.

import pytest
from sqlalchemy.exc import OperationalError

from app.extensions import db
from app.models import CourseTag, NodeType, Tag
from app.services import tag_service
from app.services.tag_service import (
    TagError,
    normalize_tag_names,
    replace_course_tags,
    resolve_name,
)


def course_tag_names(course_id):
    return [tag.name for tag in tag_service.get_course_tags(course_id)]


class TestResolveName:
    def test_creates_missing_name(self, db_session):
        tag_id = resolve_name(Tag, "python")
        assert tag_id is not None
        assert db_session.get(Tag, tag_id).name == "python"

    def test_returns_existing_id(self, db_session):
        first = resolve_name(Tag, "python")
        second = resolve_name(Tag, "python")
        assert first == second
        assert db_session.query(Tag).count() == 1

    def test_works_for_any_name_table(self, db_session):
        type_id = resolve_name(NodeType, "project")
        assert db_session.get(NodeType, type_id).name == "project"

    def test_concurrent_create_rereads_winner(self, db_session, monkeypatch):
        """The lookup misses, another request inserts, our insert loses and re-reads."""
        winner = {}
        state = {"first": True}

        def racing_query(*entities, **kwargs):
            if state["first"]:
                state["first"] = False
                row = Tag(name="rust")
                db_session.add(row)
                db_session.commit()
                winner["id"] = row.id
                return _EmptyLookup()
            return db_session.query(*entities, **kwargs)

        monkeypatch.setattr(tag_service, "db", _DbProxy(query=racing_query))
        tag_id = resolve_name(Tag, "rust")
        monkeypatch.undo()

        assert tag_id == winner["id"]
        assert db_session.query(Tag).filter_by(name="rust").count() == 1


class _EmptyLookup:
    """Stands in for a lookup that ran before the competing insert committed."""

    def filter(self, *args, **kwargs):
        return self

    def scalar(self):
        return None


class _SessionProxy:
    def __init__(self, overrides):
        self._overrides = overrides

    def __getattr__(self, name):
        if name in self._overrides:
            return self._overrides[name]
        return getattr(db.session, name)


class _DbProxy:
    """Replaces the module's `db` so selected session methods can misbehave."""

    def __init__(self, **overrides):
        self.session = _SessionProxy(overrides)


class TestNormalize:
    def test_trims_dedupes_and_drops_blanks(self):
        assert normalize_tag_names([" python ", "", "web", "python", None, 3, "   "]) == ["python", "web"]

    def test_none_is_empty(self):
        assert normalize_tag_names(None) == []


class TestReplaceCourseTags:
    def test_replaces_whole_set(self, db_session, course):
        replace_course_tags(course.id, ["python", "beginner"])
        result = replace_course_tags(course.id, ["web", "python"])

        assert result.success
        assert sorted(course_tag_names(course.id)) == ["python", "web"]
        assert db_session.query(Tag).count() == 3

    def test_same_list_twice_is_stable(self, db_session, course):
        first = replace_course_tags(course.id, ["python", "web"])
        links_before = sorted(
            row.tag_id for row in db_session.query(CourseTag).filter_by(course_id=course.id)
        )
        second = replace_course_tags(course.id, ["python", "web"])
        links_after = sorted(
            row.tag_id for row in db_session.query(CourseTag).filter_by(course_id=course.id)
        )

        assert first.success and second.success
        assert sorted(first.tag_ids) == sorted(second.tag_ids)
        assert links_after == links_before
        assert len(links_after) == 2
        assert db_session.query(Tag).count() == 2

    def test_duplicates_collapse(self, db_session, course):
        result = replace_course_tags(course.id, ["python", "python", " python"])
        assert result.success
        assert len(result.tag_ids) == 1
        assert db_session.query(CourseTag).filter_by(course_id=course.id).count() == 1

    def test_empty_list_clears(self, db_session, course):
        replace_course_tags(course.id, ["python"])
        result = replace_course_tags(course.id, [])
        assert result.success
        assert course_tag_names(course.id) == []

    def test_overlong_name_skipped(self, db_session, course):
        long_name = "x" * (tag_service.MAX_TAG_LENGTH + 1)
        result = replace_course_tags(course.id, ["python", long_name])

        assert result.success
        assert result.skipped == [long_name]
        assert course_tag_names(course.id) == ["python"]

    def test_unresolvable_name_skipped(self, db_session, course, monkeypatch):
        real_resolve = tag_service.resolve_name

        def flaky_resolve(model, name):
            if name == "broken":
                return None
            return real_resolve(model, name)

        monkeypatch.setattr(tag_service, "resolve_name", flaky_resolve)
        result = replace_course_tags(course.id, ["python", "broken", "web"])

        assert result.success
        assert result.skipped == ["broken"]
        assert sorted(course_tag_names(course.id)) == ["python", "web"]

    def test_storage_error_while_resolving_is_skipped(self, db_session, course, monkeypatch):
        real_resolve = tag_service.resolve_name

        def failing_resolve(model, name):
            if name == "bad":
                raise OperationalError("SELECT", {}, Exception("disk I/O error"))
            return real_resolve(model, name)

        monkeypatch.setattr(tag_service, "resolve_name", failing_resolve)
        result = replace_course_tags(course.id, ["bad", "good"])

        assert result.success
        assert result.skipped == ["bad"]
        assert course_tag_names(course.id) == ["good"]

    def test_insert_failure_leaves_course_untagged(self, db_session, course, monkeypatch):
        replace_course_tags(course.id, ["python"])

        def failing_add_all(rows):
            raise OperationalError("INSERT", {}, Exception("connection lost"))

        monkeypatch.setattr(tag_service, "db", _DbProxy(add_all=failing_add_all))
        result = replace_course_tags(course.id, ["python", "web"])
        monkeypatch.undo()

        assert result.success is False
        assert result.error is not None
        assert len(result.tag_ids) == 2
        assert course_tag_names(course.id) == []

    def test_other_courses_untouched(self, db_session, creator, course):
        from app.services import course_service

        other, _ = course_service.create_course(creator.id, "Other", tags=["rust"])
        replace_course_tags(course.id, ["python"])

        assert course_tag_names(other.id) == ["rust"]
        assert course_tag_names(course.id) == ["python"]


class TestTagCatalog:
    def test_get_or_create_is_idempotent(self, db_session):
        first = tag_service.get_or_create_tag("  Data Science ")
        second = tag_service.get_or_create_tag("Data Science")
        assert first.id == second.id
        assert first.name == "Data Science"

    def test_get_or_create_rejects_blank(self, db_session):
        with pytest.raises(TagError):
            tag_service.get_or_create_tag("   ")

    def test_list_tags_search(self, db_session):
        for name in ("python", "pytorch", "rust"):
            tag_service.get_or_create_tag(name)
        assert [t.name for t in tag_service.list_tags("py")] == ["python", "pytorch"]
        assert len(tag_service.list_tags()) == 3
