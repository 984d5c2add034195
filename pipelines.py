"""
Read models.

Aggregation pipelines that join owner data, like counts and subscriber
counts onto posts, videos, comments and channels at query time, plus the
count/existence queries behind the stats and user-status endpoints.
Nothing here writes.
"""

import asyncio
import logging
from typing import Dict, List, NamedTuple, Optional

from bson import ObjectId
from pymongo.errors import PyMongoError
from starlette.concurrency import run_in_threadpool

from database import get_collection

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10


class Target(NamedTuple):
    """A commentable/likeable collection and the field engagement documents point at it with."""
    field: str
    collection: str
    comments: str
    likes: str
    bookmarks: Optional[str] = None


POST = Target("post", "posts", "postcomments", "postlikes", "bookmarks")
VIDEO = Target("video", "videos", "videocomments", "videolikes")


# -------------------- Stage builders --------------------

def drop(*fields: str) -> dict:
    return {"$project": {field: 0 for field in fields}}


def channel_stages(as_field: str = "channel") -> List[dict]:
    # $arrayElemAt past the end yields nothing, so an owner that no longer
    # exists leaves the summary empty instead of failing.
    return [
        {"$lookup": {"from": "users", "localField": "owner", "foreignField": "_id", "as": "ownerArr"}},
        {
            "$addFields": {
                as_field: {
                    "fullName": {"$arrayElemAt": ["$ownerArr.fullName", 0]},
                    "avatar": {"$arrayElemAt": ["$ownerArr.avatar", 0]},
                    "username": {"$arrayElemAt": ["$ownerArr.username", 0]},
                }
            }
        },
        drop("ownerArr"),
    ]


def flag_count(array_field: str, value: bool) -> dict:
    return {
        "$size": {
            "$filter": {
                "input": f"${array_field}",
                "as": "likeObj",
                "cond": {"$eq": ["$$likeObj.like", value]},
            }
        }
    }


def like_stages(target: Target, as_field: str = "likes") -> List[dict]:
    return [
        {"$lookup": {"from": target.likes, "localField": "_id", "foreignField": target.field, "as": "likesArr"}},
        {"$addFields": {as_field: flag_count("likesArr", True)}},
        drop("likesArr"),
    ]


# -------------------- Pipelines --------------------

def list_pipeline(target: Target, owner: Optional[ObjectId] = None,
                  with_channel: bool = True, with_likes: bool = False) -> List[dict]:
    """Newest first, optionally restricted to one owner."""
    pipeline: List[dict] = []
    if owner is not None:
        pipeline.append({"$match": {"owner": owner}})
    pipeline.append({"$sort": {"_id": -1}})
    if with_channel:
        pipeline.extend(channel_stages())
    if with_likes:
        pipeline.extend(like_stages(target))
    return pipeline


def detail_pipeline(target: Target, target_id: ObjectId) -> List[dict]:
    pipeline = [
        {"$match": {"_id": target_id}},
        {"$lookup": {"from": "users", "localField": "owner", "foreignField": "_id", "as": "channelObj"}},
        {"$addFields": {"channelObj": {"$arrayElemAt": ["$channelObj", 0]}}},
        {
            "$addFields": {
                "channel": {
                    "channelId": "$channelObj._id",
                    "channelName": "$channelObj.fullName",
                    "channelAvatar": "$channelObj.avatar",
                    "channelUsername": "$channelObj.username",
                }
            }
        },
        {"$lookup": {"from": target.likes, "localField": "_id", "foreignField": target.field, "as": "likesArr"}},
        {"$addFields": {"likeCount": flag_count("likesArr", True), "unlikeCount": flag_count("likesArr", False)}},
        {"$lookup": {"from": "subscriptions", "localField": "owner", "foreignField": "channel", "as": "subscriberArr"}},
        {"$addFields": {"subscriber": {"$size": "$subscriberArr"}}},
    ]
    removed = ["channelObj", "likesArr", "subscriberArr"]
    if target is VIDEO:
        # the player fetches the stream separately
        removed.append("video")
    pipeline.append(drop(*removed))
    return pipeline


def profile_pipeline(user_id: ObjectId) -> List[dict]:
    return [
        {"$match": {"_id": user_id}},
        {"$project": {"fullName": 1, "username": 1, "avatar": 1, "coverImage": 1, "about": 1, "createdAt": 1}},
        {"$lookup": {"from": "subscriptions", "localField": "_id", "foreignField": "channel", "as": "subscriptionArr"}},
        {"$lookup": {"from": "videos", "localField": "_id", "foreignField": "owner", "as": "videosArr"}},
        {
            "$addFields": {
                "stats": {
                    "subscribers": {"$size": "$subscriptionArr"},
                    "videos": {"$size": "$videosArr"},
                }
            }
        },
        drop("subscriptionArr", "videosArr"),
    ]


def comments_pipeline(target: Target, target_id: ObjectId, limit: int = DEFAULT_LIMIT) -> List[dict]:
    return [
        {"$match": {target.field: target_id}},
        {"$sort": {"_id": -1}},
        {"$limit": limit},
        {"$lookup": {"from": "users", "localField": "user", "foreignField": "_id", "as": "userArr"}},
        {"$addFields": {"userObj": {"$arrayElemAt": ["$userArr", 0]}}},
        {
            "$addFields": {
                "commentator": {
                    "userId": "$userObj._id",
                    "fullName": "$userObj.fullName",
                    "username": "$userObj.username",
                    "avatar": "$userObj.avatar",
                }
            }
        },
        drop("userArr", "userObj"),
    ]


def aggregate(collection: str, pipeline: List[dict]) -> List[dict]:
    return list(get_collection(collection).aggregate(pipeline))


def aggregate_one(collection: str, pipeline: List[dict]) -> Optional[dict]:
    result = aggregate(collection, pipeline)
    return result[0] if result else None


# -------------------- Counts & existence --------------------

async def _gather(queries: Dict[str, tuple]) -> Dict[str, object]:
    names = list(queries)
    results = await asyncio.gather(
        *(run_in_threadpool(fn, *args) for fn, *args in queries.values()),
        return_exceptions=True,
    )
    merged = {}
    for name, result in zip(names, results):
        if isinstance(result, PyMongoError):
            logger.warning("%s query failed: %s", name, result)
            continue
        if isinstance(result, BaseException):
            raise result
        merged[name] = result
    return merged


async def target_stats(target: Target, target_id: ObjectId, owner: Optional[ObjectId] = None) -> dict:
    """Independent counts for a post or video; a failed count is left out of the result."""
    queries = {
        "totalLike": (get_collection(target.likes).count_documents, {target.field: target_id, "like": True}),
        "totalComment": (get_collection(target.comments).count_documents, {target.field: target_id}),
    }
    if target.bookmarks:
        queries["totalBookmark"] = (get_collection(target.bookmarks).count_documents, {target.field: target_id})
    if owner is not None:
        queries["subscribers"] = (get_collection("subscriptions").count_documents, {"channel": owner})
    return await _gather(queries)


def _exists(collection: str, query: dict) -> bool:
    return get_collection(collection).find_one(query, {"_id": 1}) is not None


async def user_status(target: Target, target_id: ObjectId, user_id: Optional[ObjectId],
                      owner: Optional[ObjectId] = None) -> dict:
    status = {"isLiked": False, "isSubscribed": False}
    if target.bookmarks:
        status["isBookmarked"] = False
    if user_id is None:
        return status

    queries = {"isLiked": (_exists, target.likes, {target.field: target_id, "user": user_id, "like": True})}
    if target.bookmarks:
        queries["isBookmarked"] = (_exists, target.bookmarks, {target.field: target_id, "user": user_id})
    if owner is not None:
        queries["isSubscribed"] = (_exists, "subscriptions", {"subscriber": user_id, "channel": owner})
    status.update(await _gather(queries))
    return status


def comment_count(target: Target, target_id: ObjectId) -> int:
    return get_collection(target.comments).count_documents({target.field: target_id})


def subscriber_count(channel: ObjectId) -> int:
    return get_collection("subscriptions").count_documents({"channel": channel})


def is_subscribed(subscriber: ObjectId, channel: ObjectId) -> bool:
    return _exists("subscriptions", {"subscriber": subscriber, "channel": channel})
