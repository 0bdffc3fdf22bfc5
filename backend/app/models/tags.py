from __future__ import annotations

from ..extensions import db


class Tag(db.Model):
    """
    Course label. Names are a global namespace shared by every course, so
    creation must tolerate a concurrent creator winning the insert.
    """
    __tablename__ = "tags"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False, unique=True, index=True)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name}


class CourseTag(db.Model):
    """Course <-> tag association. Replaced wholesale on every tag edit."""
    __tablename__ = "course_tags"
    __table_args__ = (
        db.UniqueConstraint("course_id", "tag_id", name="uq_course_tags_course_tag"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    course_id = db.Column(db.Integer, db.ForeignKey("courses.id"), nullable=False, index=True)
    tag_id = db.Column(db.Integer, db.ForeignKey("tags.id"), nullable=False, index=True)

    course = db.relationship("Course", backref=db.backref("tag_links", lazy=True))
    tag = db.relationship("Tag")
