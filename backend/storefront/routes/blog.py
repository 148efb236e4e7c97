from typing import Dict, List

from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required

from ..audit import record_audit_log
from ..auth import is_admin, optional_current_user, require_admin_user
from ..errors import ValidationError, error_response
from ..extensions import mongo
from ..helpers import (
    normalize_multilang,
    normalize_object_id_value,
    parse_bool,
    parse_pagination,
    serialize_value,
    slugify,
    total_pages,
    unique_slug,
    utcnow,
)

bp = Blueprint("blog", __name__, url_prefix="/api/blog")

POST_STATUSES = ("draft", "published")


def _string_list(value) -> List[str]:
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, list):
        return []
    return [str(entry).strip() for entry in value if str(entry).strip()]


def normalize_post(payload: Dict, *, partial: bool = False) -> Dict:
    post: Dict[str, object] = {}
    for field in ("title", "content"):
        if not partial or field in payload:
            post[field] = normalize_multilang(payload.get(field), field)
    if not partial or "excerpt" in payload:
        post["excerpt"] = normalize_multilang(payload.get("excerpt"), "excerpt", required=False)
    if not partial or "category" in payload:
        category = str(payload.get("category") or "").strip()
        if not category:
            raise ValidationError("Title, content, and category are required")
        post["category"] = category
    if not partial or "status" in payload:
        status = payload.get("status") or "draft"
        if status not in POST_STATUSES:
            raise ValidationError("Invalid post status", {"allowed": list(POST_STATUSES)})
        post["status"] = status
    if not partial or "featured" in payload:
        post["featured"] = parse_bool(payload.get("featured"))
    if not partial or "main_image" in payload:
        post["main_image"] = payload.get("main_image") or None
    if not partial or "tags" in payload:
        post["tags"] = _string_list(payload.get("tags"))
    if not partial or "seo" in payload:
        seo = payload.get("seo") if isinstance(payload.get("seo"), dict) else {}
        post["seo"] = {
            "meta_title": normalize_multilang(seo.get("meta_title"), "seo.meta_title", required=False),
            "meta_description": normalize_multilang(
                seo.get("meta_description"), "seo.meta_description", required=False
            ),
            "keywords": _string_list(seo.get("keywords")),
        }
    return post


def serialize_posts(posts: List[Dict]) -> List[Dict]:
    author_ids = list({post.get("author") for post in posts if post.get("author")})
    authors = {
        user["_id"]: user
        for user in mongo.db.users.find({"_id": {"$in": author_ids}}, {"name": 1, "email": 1})
    }
    serialized_posts = []
    for post in posts:
        serialized = serialize_value(post)
        author = authors.get(post.get("author"))
        serialized["author"] = {
            "id": str(author["_id"]) if author else "",
            "name": (author or {}).get("name") or "Unknown",
            "email": (author or {}).get("email") or "",
        }
        serialized_posts.append(serialized)
    return serialized_posts


def _unfeature_others(post_id) -> None:
    mongo.db.blog_posts.update_many(
        {"_id": {"$ne": post_id}, "featured": True}, {"$set": {"featured": False}}
    )


def _find_post(identifier: str):
    object_id = normalize_object_id_value(identifier)
    if object_id is not None:
        post = mongo.db.blog_posts.find_one({"_id": object_id})
        if post:
            return post
    return mongo.db.blog_posts.find_one({"slug": identifier})


@bp.route("/posts", methods=["GET"])
def list_posts():
    admin_view = parse_bool(request.args.get("admin"))
    if admin_view:
        user = optional_current_user()
        if not (user and is_admin(user)):
            return error_response("Unauthorized access - Admin privileges required", 401)

    page, limit, skip = parse_pagination(request.args, default_limit=10)
    query: Dict[str, object] = {}
    if not admin_view:
        query["status"] = "published"
    if parse_bool(request.args.get("exclude_featured")):
        query["featured"] = {"$ne": True}

    total = mongo.db.blog_posts.count_documents(query)
    posts = list(
        mongo.db.blog_posts.find(query)
        .sort([("published_at", -1), ("created_at", -1)])
        .skip(skip)
        .limit(limit)
    )
    return jsonify(
        {
            "posts": serialize_posts(posts),
            "total": total,
            "page": page,
            "total_pages": total_pages(total, limit),
        }
    )


@bp.route("/featured", methods=["GET"])
def featured_post():
    post = mongo.db.blog_posts.find_one(
        {"featured": True, "status": "published"},
        sort=[("published_at", -1), ("created_at", -1)],
    )
    if not post:
        return error_response("No featured post found", 404)
    return jsonify({"post": serialize_posts([post])[0]})


@bp.route("/posts/<identifier>", methods=["GET"])
def get_post(identifier: str):
    post = _find_post(identifier)
    if not post:
        return error_response("Post not found", 404)
    if post.get("status") != "published":
        user = optional_current_user()
        if not (user and is_admin(user)):
            return error_response("Post not found", 404)
    return jsonify({"post": serialize_posts([post])[0]})


@bp.route("/posts", methods=["POST"])
@jwt_required()
def create_post():
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    post = normalize_post(request.get_json(silent=True) or {})
    now = utcnow()
    post.update(
        {
            "slug": unique_slug(mongo.db.blog_posts, slugify(post["title"]["en"]) or "post"),
            "author": admin_user["_id"],
            "published_at": now if post["status"] == "published" else None,
            "created_at": now,
            "updated_at": now,
        }
    )
    post["_id"] = mongo.db.blog_posts.insert_one(post).inserted_id
    if post["featured"]:
        _unfeature_others(post["_id"])

    record_audit_log(admin_user.get("email"), "Created blog post", {"slug": post["slug"]})
    return jsonify({"post": serialize_posts([post])[0]}), 201


@bp.route("/posts/<post_id>", methods=["PUT"])
@jwt_required()
def update_post(post_id: str):
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    post = _find_post(post_id)
    if not post:
        return error_response("Post not found", 404)

    updates = normalize_post(request.get_json(silent=True) or {}, partial=True)
    if "title" in updates and updates["title"]["en"] != (post.get("title") or {}).get("en"):
        updates["slug"] = unique_slug(
            mongo.db.blog_posts, slugify(updates["title"]["en"]) or "post", exclude_id=post["_id"]
        )
    if updates.get("status") == "published" and not post.get("published_at"):
        updates["published_at"] = utcnow()
    updates["updated_at"] = utcnow()

    mongo.db.blog_posts.update_one({"_id": post["_id"]}, {"$set": updates})
    if updates.get("featured"):
        _unfeature_others(post["_id"])

    record_audit_log(admin_user.get("email"), "Updated blog post", {"post_id": str(post["_id"])})
    return jsonify({"post": serialize_posts([mongo.db.blog_posts.find_one({"_id": post["_id"]})])[0]})


@bp.route("/posts/<post_id>", methods=["DELETE"])
@jwt_required()
def delete_post(post_id: str):
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    post = _find_post(post_id)
    if not post:
        return error_response("Post not found", 404)

    mongo.db.blog_posts.delete_one({"_id": post["_id"]})
    record_audit_log(admin_user.get("email"), "Deleted blog post", {"slug": post.get("slug")})
    return jsonify({"message": "Post deleted."})
