# Overview: Flask API routes for learner accounts and the XP leaderboard.

from flask import Blueprint, jsonify, request

from ..services import user_service
from ..services.user_service import UserError
from ..validation import ValidationError, parse_int


users_bp = Blueprint("users", __name__, url_prefix="/api")


@users_bp.post("/users")
def create_user():
    data = request.get_json() or {}
    try:
        user = user_service.create_user(data.get("username"), data.get("email"))
    except UserError as exc:
        return jsonify({"error": str(exc)}), 400
    return jsonify({"user": user.to_dict()}), 201


@users_bp.get("/users/<int:user_id>")
def get_user(user_id: int):
    user = user_service.get_user(user_id)
    if not user:
        return jsonify({"error": "User not found"}), 404
    return jsonify({"user": user.to_dict()}), 200


@users_bp.get("/leaderboard")
def leaderboard():
    """Top learners by XP. ?limit= is clamped to 1..100."""
    try:
        limit = parse_int(request.args.get("limit", 10), "limit")
    except ValidationError as exc:
        return jsonify({"error": str(exc)}), 400

    users = user_service.leaderboard(limit)
    return jsonify({
        "leaderboard": [
            {"rank": rank, **user.to_dict()}
            for rank, user in enumerate(users, start=1)
        ]
    }), 200
