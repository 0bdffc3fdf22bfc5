from .auth import User, XP_PER_LEVEL, level_for_xp
from .courses import Course, NodeType, Node, Edge
from .progress import UserProgress, PROGRESS_IN_PROGRESS, PROGRESS_COMPLETED
from .tags import Tag, CourseTag
from .ratings import CourseRating

__all__ = [
    'User', 'XP_PER_LEVEL', 'level_for_xp',
    'Course', 'NodeType', 'Node', 'Edge',
    'UserProgress', 'PROGRESS_IN_PROGRESS', 'PROGRESS_COMPLETED',
    'Tag', 'CourseTag',
    'CourseRating',
]
