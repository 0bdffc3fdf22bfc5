from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z


class CourseRating(db.Model):
    """One rating per (user, course); re-rating updates the existing row."""
    __tablename__ = "course_ratings"
    __table_args__ = (
        db.UniqueConstraint("user_id", "course_id", name="uq_course_ratings_user_course"),
        db.CheckConstraint("score BETWEEN 1 AND 5", name="ck_course_ratings_score_range"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    course_id = db.Column(db.Integer, db.ForeignKey("courses.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    score = db.Column(db.Integer, nullable=False)
    comment = db.Column(db.Text, nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    user = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "course_id": self.course_id,
            "user_id": self.user_id,
            "username": self.user.username if self.user else None,
            "rating": self.score,
            "comment": self.comment,
            "reviewed_at": to_utc_z(self.reviewed_at),
        }
