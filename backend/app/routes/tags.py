# Overview: Flask API routes for the global tag catalog.

from flask import Blueprint, jsonify, request

from ..decorators import require_user
from ..services import tag_service
from ..services.tag_service import TagError


tags_bp = Blueprint("tags", __name__, url_prefix="/api/tags")


@tags_bp.get("")
def list_tags():
    tags = tag_service.list_tags(request.args.get("search"))
    return jsonify({"tags": [tag.to_dict() for tag in tags]}), 200


@tags_bp.post("")
@require_user
def create_tag():
    """Create a tag, or return the existing one with the same name."""
    data = request.get_json() or {}
    try:
        tag = tag_service.get_or_create_tag(data.get("name"))
    except TagError as exc:
        return jsonify({"error": str(exc)}), 400
    return jsonify({"tag": tag.to_dict()}), 200
