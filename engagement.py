"""
Comments and likes shared by posts and videos.

engagement_router(target) builds the same set of routes for any Target; main
mounts it under /posts and /videos. Bookmarks only exist for posts and are
added when the target has a bookmarks collection.
"""

import logging
from datetime import datetime, timezone

from bson import ObjectId
from fastapi import APIRouter, HTTPException, Query
from pymongo import ReturnDocument

from database import create_document, get_collection
from pipelines import DEFAULT_LIMIT, Target, aggregate, comment_count, comments_pipeline
from schemas import BookmarkRequest, CommentRequest, CommentUpdateRequest, LikeRequest
from utils import api_response, objid

logger = logging.getLogger(__name__)


def require_target(target: Target, oid: ObjectId) -> None:
    if not get_collection(target.collection).find_one({"_id": oid}, {"_id": 1}):
        raise HTTPException(status_code=404, detail=f"{target.field.capitalize()} not found")


def engagement_router(target: Target) -> APIRouter:
    router = APIRouter()

    # -------------------- Comments --------------------
    @router.get("/{target_id}/comments")
    def list_comments(target_id: str, limit: int = Query(DEFAULT_LIMIT, ge=1)):
        oid = objid(target_id)
        comments = aggregate(target.comments, comments_pipeline(target, oid, limit))
        return api_response(comments, "Comments fetched")

    @router.get("/{target_id}/comments/count")
    def count_comments(target_id: str):
        oid = objid(target_id)
        return api_response({"totalComment": comment_count(target, oid)}, "Total comments")

    @router.post("/{target_id}/comments")
    def add_comment(target_id: str, payload: CommentRequest):
        oid = objid(target_id)
        user = objid(payload.user)
        require_target(target, oid)
        doc = create_document(target.comments, {"user": user, target.field: oid, "comment": payload.comment})
        logger.info("Comment %s added to %s %s", doc["_id"], target.field, oid)
        return api_response(doc, "Comment added")

    @router.patch("/comments/{comment_id}")
    def update_comment(comment_id: str, payload: CommentUpdateRequest):
        oid = objid(comment_id)
        result = get_collection(target.comments).find_one_and_update(
            {"_id": oid},
            {"$set": {"comment": payload.updatedComment, "updatedAt": datetime.now(timezone.utc)}},
            return_document=ReturnDocument.AFTER,
        )
        if not result:
            raise HTTPException(status_code=404, detail="Comment not found")
        return api_response(result, "Comment updated")

    @router.delete("/comments/{comment_id}")
    def delete_comment(comment_id: str):
        oid = objid(comment_id)
        result = get_collection(target.comments).find_one_and_delete({"_id": oid})
        if not result:
            raise HTTPException(status_code=404, detail="Comment not found")
        logger.info("Comment %s deleted", oid)
        return api_response(result, "Comment deleted")

    # -------------------- Likes --------------------
    @router.put("/{target_id}/like")
    def set_like(target_id: str, payload: LikeRequest):
        oid = objid(target_id)
        user = objid(payload.user)
        require_target(target, oid)
        now = datetime.now(timezone.utc)
        result = get_collection(target.likes).find_one_and_update(
            {"user": user, target.field: oid},
            {"$set": {"like": payload.like, "updatedAt": now}, "$setOnInsert": {"createdAt": now}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return api_response(result, "Liked" if payload.like else "Unliked")

    if not target.bookmarks:
        return router

    # -------------------- Bookmarks --------------------
    @router.post("/{target_id}/bookmark")
    def toggle_bookmark(target_id: str, payload: BookmarkRequest):
        oid = objid(target_id)
        user = objid(payload.user)
        require_target(target, oid)
        bookmarks = get_collection(target.bookmarks)
        existing = bookmarks.find_one({"user": user, target.field: oid})
        if existing:
            bookmarks.delete_one({"_id": existing["_id"]})
            return api_response({"isBookmarked": False}, "Bookmark removed")
        create_document(target.bookmarks, {"user": user, target.field: oid})
        return api_response({"isBookmarked": True}, "Bookmarked")

    return router
