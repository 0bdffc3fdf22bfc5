from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z

COURSE_STATUSES = ("draft", "published")

# Editor canvas bounds for node coordinates
MIN_COORDINATE = 0
MAX_COORDINATE = 4000

DEFAULT_NODE_XP = 100


class Course(db.Model):
    """
    A course: a directed acyclic graph of lesson nodes owned by one creator.

    Metadata edits go through the optimistic version guard (version_id).
    """
    __tablename__ = "courses"
    __table_args__ = (
        db.Index("ix_courses_creator_status", "creator_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    creator_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(16), nullable=False, default="draft")  # draft, published
    total_nodes = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    creator = db.relationship("User", backref=db.backref("courses", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "creator_id": self.creator_id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "total_nodes": self.total_nodes,
            "tags": [link.tag.name for link in self.tag_links],
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class NodeType(db.Model):
    """Global node-type namespace (theory, code, project, ...), unique by name."""
    __tablename__ = "node_types"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(32), nullable=False, unique=True)


class Node(db.Model):
    """
    A completable lesson in a course.

    XP is the reward granted on first completion. Authors may change it at any
    time; rewards already granted are never revisited.
    X/Y are editor coordinates only.
    """
    __tablename__ = "nodes"
    __table_args__ = (
        db.CheckConstraint("xp >= 0", name="ck_nodes_xp_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    course_id = db.Column(db.Integer, db.ForeignKey("courses.id"), nullable=False, index=True)
    type_id = db.Column(db.Integer, db.ForeignKey("node_types.id"), nullable=True)

    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    icon_name = db.Column(db.String(64), nullable=True)

    xp = db.Column(db.Integer, nullable=False, default=DEFAULT_NODE_XP)
    x = db.Column(db.Integer, nullable=False, default=0)
    y = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    course = db.relationship("Course", backref=db.backref("nodes", lazy=True))
    node_type = db.relationship("NodeType")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "course_id": self.course_id,
            "title": self.title,
            "type": self.node_type.name if self.node_type else "theory",
            "description": self.description,
            "icon_name": self.icon_name,
            "xp": self.xp,
            "x": self.x,
            "y": self.y,
            "version_id": self.version_id,
        }


class Edge(db.Model):
    """
    Prerequisite relation: from_node must be completed before to_node unlocks.

    No self loops; one edge per ordered pair within a course.
    """
    __tablename__ = "edges"
    __table_args__ = (
        db.UniqueConstraint("course_id", "from_node_id", "to_node_id", name="uq_edges_course_pair"),
        db.CheckConstraint("from_node_id <> to_node_id", name="ck_edges_no_self_loop"),
        db.Index("ix_edges_to_node", "to_node_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    course_id = db.Column(db.Integer, db.ForeignKey("courses.id"), nullable=False, index=True)
    from_node_id = db.Column(db.Integer, db.ForeignKey("nodes.id"), nullable=False)
    to_node_id = db.Column(db.Integer, db.ForeignKey("nodes.id"), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "course_id": self.course_id,
            "from": self.from_node_id,
            "to": self.to_node_id,
        }
