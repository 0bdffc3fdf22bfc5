# Overview: Flask CLI command groups for database bootstrap and inspection.

# backend/app/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables and seed the node type catalog (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users create --username ada --email ada@example.com
# - python -m flask users leaderboard --limit 10
#
# Courses and progress:
# - python -m flask courses tree 1 --user-id 2
#   Print each node with its locked/unlocked/completed status for a learner.
# - python -m flask progress complete --user-id 2 --course-id 1 --node-id 5
#   Complete a node for a learner (awards XP once).
#
# Tags:
# - python -m flask tags replace 1 python "web dev"
#   Replace a course's tag set.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import NodeType
from .services import completion_service, course_service, tag_service, user_service
from .services.completion_service import CompletionError
from .services.course_service import NODE_TYPES, CourseError
from .services.user_service import UserError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create tables and seed node types. Safe to run repeatedly."""
    click.echo("BUILD  Creating tables...")
    db.create_all()

    created = 0
    for name in NODE_TYPES:
        if not db.session.query(NodeType).filter_by(name=name).first():
            db.session.add(NodeType(name=name))
            created += 1
    db.session.commit()
    click.echo(f"PASS Database ready ({created} node types added)")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system init-db' to seed.")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@with_appcontext
def create_user_cli(username, email):
    """Create a learner account."""
    try:
        user = user_service.create_user(username, email)
    except UserError as exc:
        click.echo(f"FAIL {exc}")
        return
    click.echo(f"PASS Created user {user.username} (ID: {user.id})")


@users_group.command('leaderboard')
@click.option('--limit', type=int, default=10, help='Number of users to show')
@with_appcontext
def leaderboard_cli(limit):
    """List users by XP."""
    users = user_service.leaderboard(limit)
    if not users:
        click.echo("No users found.")
        return

    click.echo(f"{'Rank':<6} {'ID':<6} {'Username':<20} {'XP':<10} {'Level'}")
    for rank, user in enumerate(users, start=1):
        click.echo(f"{rank:<6} {user.id:<6} {user.username:<20} {user.xp:<10} {user.level}")


@click.group('courses')
def courses_group():
    """Course inspection commands."""


@courses_group.command('tree')
@click.argument('course_id', type=int)
@click.option('--user-id', type=int, help='Learner whose progress to show')
@with_appcontext
def course_tree(course_id, user_id):
    """Print a course's nodes with per-learner status."""
    try:
        tree = course_service.get_course_tree(course_id, user_id)
    except CourseError as exc:
        click.echo(f"FAIL {exc}")
        return

    click.echo(f"{tree['course_title']} (ID: {tree['course_id']})")
    for node in tree["nodes"]:
        click.echo(f"  [{node['status']:<9}] {node['id']:<5} {node['title']} ({node['xp']} XP)")
    for edge in tree["edges"]:
        click.echo(f"  {edge['from']} -> {edge['to']}")


@click.group('progress')
def progress_group():
    """Learner progress commands."""


@progress_group.command('complete')
@click.option('--user-id', type=int, required=True)
@click.option('--course-id', type=int, required=True)
@click.option('--node-id', type=int, required=True)
@with_appcontext
def complete_node_cli(user_id, course_id, node_id):
    """Complete a node for a learner."""
    try:
        result = completion_service.complete_course_node(course_id, node_id, user_id)
    except CompletionError as exc:
        click.echo(f"FAIL {exc}")
        return

    if not result.success:
        click.echo(f"FAIL Could not record completion: {result.error}")
    elif result.already_completed:
        click.echo("SKIP Node already completed; no XP awarded")
    else:
        click.echo(f"PASS +{result.xp_gained} XP (total {result.new_xp}, level {result.new_level})")
        if result.error is not None:
            click.echo(f"WARN XP grant failed: {result.error}")


@click.group('tags')
def tags_group():
    """Tag maintenance commands."""


@tags_group.command('replace')
@click.argument('course_id', type=int)
@click.argument('names', nargs=-1)
@with_appcontext
def replace_tags(course_id, names):
    """Replace a course's tag set with NAMES."""
    if not course_service.get_course(course_id):
        click.echo("FAIL Course not found")
        return

    result = tag_service.replace_course_tags(course_id, list(names))
    if not result.success:
        click.echo(f"FAIL Tag replacement failed: {result.error}")
        return
    click.echo(f"PASS Course {course_id} now has {len(result.tag_ids)} tag(s)")
    for name in result.skipped:
        click.echo(f"WARN Skipped {name!r}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(courses_group)
    app.cli.add_command(progress_group)
    app.cli.add_command(tags_group)
