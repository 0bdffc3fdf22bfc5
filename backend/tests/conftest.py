"""
Pytest fixtures for the skill-tree backend tests.

Provides an in-memory database, per-test table cleanup, a test client and
a small authored course (a -> b -> c, plus a free-standing node d).
"""

import pytest

from app import create_app
from app.extensions import db
from app.models import Course, Edge, Node, User
from app.services import course_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'RETRY_BASE_DELAY': 0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def creator(db_session):
    """Course author."""
    user = User(username="author", email="author@example.com", xp=0, level=1)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def learner(db_session):
    """Learner with no progress."""
    user = User(username="learner", email="learner@example.com", xp=0, level=1)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def course(db_session, creator):
    """Empty draft course owned by `creator`."""
    course, _ = course_service.create_course(creator.id, "Intro to Python")
    return course


@pytest.fixture(scope='function')
def nodes(db_session, creator, course):
    """Four nodes: a -> b -> c, and d with no prerequisites."""
    created = {}
    for index, key in enumerate("abcd"):
        created[key] = course_service.create_node(course.id, creator.id, {
            "title": f"Lesson {key.upper()}",
            "type": "theory",
            "x": index * 100,
            "y": 0,
            "xp": 100,
        })
    course_service.create_edge(course.id, creator.id, created["a"].id, created["b"].id)
    course_service.create_edge(course.id, creator.id, created["b"].id, created["c"].id)
    return created


def make_node(course_id: int, title: str = "Extra", xp: int = 100) -> Node:
    """Insert a node directly, bypassing authoring checks."""
    node = Node(course_id=course_id, title=title, xp=xp, x=0, y=0)
    db.session.add(node)
    db.session.commit()
    return node


def make_edge(course_id: int, from_node_id: int, to_node_id: int) -> Edge:
    edge = Edge(course_id=course_id, from_node_id=from_node_id, to_node_id=to_node_id)
    db.session.add(edge)
    db.session.commit()
    return edge


def reload_user(user_id: int) -> User:
    db.session.expire_all()
    return db.session.get(User, user_id)


def reload_course(course_id: int) -> Course:
    db.session.expire_all()
    return db.session.get(Course, course_id)


def auth_headers(user_id: int) -> dict:
    """Helper to create caller-identity headers."""
    return {'X-User-Id': str(user_id)}
