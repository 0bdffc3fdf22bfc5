"""initial progression schema

Revision ID: sk001
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the skill-tree schema:
- users: learners and authors, with accumulated XP and level
- courses / node_types / nodes / edges: the authored prerequisite graph
- user_progress: one row per (user, node); the unique pair decides which
  completion request awards XP
- tags / course_tags: global labels and their course associations
- course_ratings: one rating per (user, course)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'sk001'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
    ]


def upgrade():
    # ============================================================================
    # users
    # ============================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('xp', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('level', sa.Integer(), nullable=False, server_default=sa.text('1')),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
        sa.CheckConstraint('xp >= 0', name='ck_users_xp_non_negative'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_users_username', 'users', ['username'], unique=True)

    # ============================================================================
    # courses and the prerequisite graph
    # ============================================================================
    op.create_table(
        'courses',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('creator_id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default=sa.text("'draft'")),
        sa.Column('total_nodes', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default=sa.text('1')),
        *_timestamps(),
        sa.ForeignKeyConstraint(['creator_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_courses_creator_id', 'courses', ['creator_id'])
    op.create_index('ix_courses_creator_status', 'courses', ['creator_id', 'status'])

    op.create_table(
        'node_types',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=32), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'nodes',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('course_id', sa.Integer(), nullable=False),
        sa.Column('type_id', sa.Integer(), nullable=True),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('icon_name', sa.String(length=64), nullable=True),
        sa.Column('xp', sa.Integer(), nullable=False, server_default=sa.text('100')),
        sa.Column('x', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('y', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default=sa.text('1')),
        *_timestamps(),
        sa.ForeignKeyConstraint(['course_id'], ['courses.id']),
        sa.ForeignKeyConstraint(['type_id'], ['node_types.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('xp >= 0', name='ck_nodes_xp_non_negative'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_nodes_course_id', 'nodes', ['course_id'])

    op.create_table(
        'edges',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('course_id', sa.Integer(), nullable=False),
        sa.Column('from_node_id', sa.Integer(), nullable=False),
        sa.Column('to_node_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['course_id'], ['courses.id']),
        sa.ForeignKeyConstraint(['from_node_id'], ['nodes.id']),
        sa.ForeignKeyConstraint(['to_node_id'], ['nodes.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('course_id', 'from_node_id', 'to_node_id', name='uq_edges_course_pair'),
        sa.CheckConstraint('from_node_id <> to_node_id', name='ck_edges_no_self_loop'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_edges_course_id', 'edges', ['course_id'])
    op.create_index('ix_edges_to_node', 'edges', ['to_node_id'])

    # ============================================================================
    # user_progress
    # ============================================================================
    op.create_table(
        'user_progress',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('node_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default=sa.text("'in_progress'")),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['node_id'], ['nodes.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'node_id', name='uq_user_progress_user_node'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_user_progress_user_id', 'user_progress', ['user_id'])
    op.create_index('ix_user_progress_node_id', 'user_progress', ['node_id'])

    # ============================================================================
    # tags
    # ============================================================================
    op.create_table(
        'tags',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_tags_name', 'tags', ['name'], unique=True)

    op.create_table(
        'course_tags',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('course_id', sa.Integer(), nullable=False),
        sa.Column('tag_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['course_id'], ['courses.id']),
        sa.ForeignKeyConstraint(['tag_id'], ['tags.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('course_id', 'tag_id', name='uq_course_tags_course_tag'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_course_tags_course_id', 'course_tags', ['course_id'])
    op.create_index('ix_course_tags_tag_id', 'course_tags', ['tag_id'])

    # ============================================================================
    # course_ratings
    # ============================================================================
    op.create_table(
        'course_ratings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('course_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('score', sa.Integer(), nullable=False),
        sa.Column('comment', sa.Text(), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['course_id'], ['courses.id']),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'course_id', name='uq_course_ratings_user_course'),
        sa.CheckConstraint('score BETWEEN 1 AND 5', name='ck_course_ratings_score_range'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_course_ratings_course_id', 'course_ratings', ['course_id'])
    op.create_index('ix_course_ratings_user_id', 'course_ratings', ['user_id'])


def downgrade():
    op.drop_table('course_ratings')
    op.drop_table('course_tags')
    op.drop_table('tags')
    op.drop_table('user_progress')
    op.drop_table('edges')
    op.drop_table('nodes')
    op.drop_table('node_types')
    op.drop_table('courses')
    op.drop_table('users')
