# Overview: Flask API routes for courses, nodes, edges, completion and ratings;
# parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import optional_user, require_user
from ..services import completion_service, course_service, rating_service, tag_service
from ..services.completion_service import CompletionError, NodeLockedError, NodeNotFoundError
from ..services.course_service import (
    CourseConflictError,
    CourseError,
    CourseNotFoundError,
    CoursePermissionError,
)
from ..services.rating_service import RatingError
from ..validation import ValidationError


courses_bp = Blueprint("courses", __name__, url_prefix="/api/courses")


def _course_error(exc: Exception):
    if isinstance(exc, CourseNotFoundError):
        return jsonify({"error": str(exc)}), 404
    if isinstance(exc, CoursePermissionError):
        return jsonify({"error": str(exc)}), 403
    if isinstance(exc, CourseConflictError):
        return jsonify({"error": str(exc)}), 409
    return jsonify({"error": str(exc)}), 400


def _versioned_response(result, key: str):
    if result.conflict:
        return jsonify({
            "error": "Version conflict",
            "current_version": result.stored_version,
        }), 409
    if not result.updated:
        return jsonify({"error": f"{key.capitalize()} not found"}), 404
    return jsonify({key: result.entity.to_dict()}), 200


@courses_bp.post("")
@require_user
def create_course():
    data = request.get_json() or {}
    try:
        course, tag_result = course_service.create_course(
            g.current_user.id,
            data.get("title"),
            description=data.get("description"),
            tags=data.get("tags"),
        )
    except (CourseError, ValidationError) as exc:
        return _course_error(exc)

    body = {"course": course.to_dict()}
    if tag_result is not None and not tag_result.success:
        body["tag_error"] = str(tag_result.error)
    return jsonify(body), 201


@courses_bp.get("")
@optional_user
def list_courses():
    """
    Browse courses. Without a status filter a signed-in caller sees their own
    courses and an anonymous caller sees published ones.
    """
    status = request.args.get("status") or None
    search = request.args.get("search")
    creator_id = None
    if status is None:
        if g.current_user:
            creator_id = g.current_user.id
        else:
            status = "published"
    try:
        courses = course_service.list_courses(status=status, search=search, creator_id=creator_id)
    except ValidationError as exc:
        return _course_error(exc)
    return jsonify({"courses": [course.to_dict() for course in courses]}), 200


@courses_bp.get("/<int:course_id>")
def get_course(course_id: int):
    course = course_service.get_course(course_id)
    if not course:
        return jsonify({"error": "Course not found"}), 404
    return jsonify({"course": course.to_dict()}), 200


@courses_bp.put("/<int:course_id>")
@require_user
def update_course(course_id: int):
    data = request.get_json() or {}
    expected_version = data.pop("version_id", None)
    try:
        result = course_service.update_course(course_id, g.current_user.id, data, expected_version)
    except (CourseError, ValidationError) as exc:
        return _course_error(exc)
    return _versioned_response(result, "course")


@courses_bp.delete("/<int:course_id>")
@require_user
def delete_course(course_id: int):
    try:
        course_service.delete_course(course_id, g.current_user.id)
    except CourseError as exc:
        return _course_error(exc)
    return jsonify({"success": True}), 200


@courses_bp.put("/<int:course_id>/tags")
@require_user
def set_course_tags(course_id: int):
    data = request.get_json() or {}
    try:
        result = course_service.set_course_tags(course_id, g.current_user.id, data.get("tags"))
    except (CourseError, ValidationError) as exc:
        return _course_error(exc)

    if not result.success:
        current_app.logger.error("Tag replacement failed for course %s: %s", course_id, result.error)
        return jsonify({"error": "Failed to update tags"}), 500
    tags = tag_service.get_course_tags(course_id)
    return jsonify({
        "tags": [tag.to_dict() for tag in tags],
        "skipped": result.skipped,
    }), 200


@courses_bp.get("/<int:course_id>/tree")
@optional_user
def get_course_tree(course_id: int):
    user_id = g.current_user.id if g.current_user else None
    try:
        tree = course_service.get_course_tree(course_id, user_id)
    except CourseError as exc:
        return _course_error(exc)
    return jsonify(tree), 200


# =============================================================================
# Nodes
# =============================================================================

@courses_bp.post("/<int:course_id>/nodes")
@require_user
def create_node(course_id: int):
    data = request.get_json() or {}
    try:
        node = course_service.create_node(course_id, g.current_user.id, data)
    except (CourseError, ValidationError) as exc:
        return _course_error(exc)
    return jsonify({"node": node.to_dict()}), 201


@courses_bp.put("/<int:course_id>/nodes/batch")
@require_user
def update_node_positions(course_id: int):
    data = request.get_json() or {}
    try:
        updated = course_service.update_node_positions(course_id, g.current_user.id, data.get("nodes"))
    except (CourseError, ValidationError) as exc:
        return _course_error(exc)
    return jsonify({"success": True, "updated": updated}), 200


@courses_bp.put("/<int:course_id>/nodes/<int:node_id>")
@require_user
def update_node(course_id: int, node_id: int):
    data = request.get_json() or {}
    expected_version = data.pop("version_id", None)
    try:
        result = course_service.update_node(course_id, node_id, g.current_user.id, data, expected_version)
    except (CourseError, ValidationError) as exc:
        return _course_error(exc)
    return _versioned_response(result, "node")


@courses_bp.delete("/<int:course_id>/nodes/<int:node_id>")
@require_user
def delete_node(course_id: int, node_id: int):
    try:
        course_service.delete_node(course_id, node_id, g.current_user.id)
    except CourseError as exc:
        return _course_error(exc)
    return jsonify({"success": True}), 200


@courses_bp.post("/<int:course_id>/nodes/<int:node_id>/complete")
@require_user
def complete_node(course_id: int, node_id: int):
    """
    Mark a node completed for the caller and award its XP once.

    Repeated calls are safe and return already_completed=true, xp_gained=0.
    """
    try:
        result = completion_service.complete_course_node(course_id, node_id, g.current_user.id)
    except NodeNotFoundError as exc:
        return jsonify({"error": str(exc)}), 404
    except NodeLockedError as exc:
        return jsonify({"error": str(exc)}), 409
    except CompletionError as exc:
        return jsonify({"error": str(exc)}), 400

    if not result.success:
        return jsonify({"error": "Failed to record completion"}), 500
    if result.error is not None:
        # Progress is durable; surface the reward failure without failing the request.
        current_app.logger.error("XP grant failed for node %s: %s", node_id, result.error)
    return jsonify(result.to_dict()), 200


# =============================================================================
# Edges
# =============================================================================

@courses_bp.post("/<int:course_id>/edges")
@require_user
def create_edge(course_id: int):
    data = request.get_json() or {}
    try:
        edge = course_service.create_edge(
            course_id,
            g.current_user.id,
            data.get("from_node_id"),
            data.get("to_node_id"),
        )
    except (CourseError, ValidationError) as exc:
        return _course_error(exc)
    return jsonify({"edge": edge.to_dict()}), 201


@courses_bp.delete("/<int:course_id>/edges/<int:edge_id>")
@require_user
def delete_edge(course_id: int, edge_id: int):
    try:
        course_service.delete_edge(course_id, edge_id, g.current_user.id)
    except CourseError as exc:
        return _course_error(exc)
    return jsonify({"success": True}), 200


# =============================================================================
# Ratings
# =============================================================================

@courses_bp.get("/<int:course_id>/ratings")
def list_ratings(course_id: int):
    return jsonify(rating_service.list_ratings(course_id)), 200


@courses_bp.post("/<int:course_id>/ratings")
@require_user
def rate_course(course_id: int):
    data = request.get_json() or {}
    try:
        result = rating_service.rate_course(
            course_id,
            g.current_user.id,
            data.get("rating"),
            data.get("comment"),
        )
    except ValidationError as exc:
        return jsonify({"error": str(exc)}), 400
    except RatingError as exc:
        return jsonify({"error": str(exc)}), 404
    status = 201 if result.created else 200
    return jsonify({"rating": result.record.to_dict(), "created": result.created}), status
