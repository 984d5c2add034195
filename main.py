import os
import logging
from datetime import datetime, timezone
from typing import Optional

from bson import ObjectId
from fastapi import FastAPI, UploadFile, File, Form, HTTPException, BackgroundTasks
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

# Password hashing
from passlib.context import CryptContext

import database
import media
from database import get_collection, create_document
from engagement import engagement_router
from pipelines import (
    POST,
    VIDEO,
    aggregate,
    aggregate_one,
    detail_pipeline,
    is_subscribed,
    list_pipeline,
    profile_pipeline,
    subscriber_count,
    target_stats,
    user_status,
)
from schemas import LoginRequest, Post, RegisterRequest, SubscribeRequest, Subscription, User, Video
from utils import api_response, objid, optional_objid

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

app = FastAPI(title="Channel API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

PUBLIC_USER_FIELDS = {"password": 0}


# -------------------- Errors --------------------
@app.exception_handler(StarletteHTTPException)
async def http_error(request, exc):
    return JSONResponse(status_code=exc.status_code, content=api_response(None, str(exc.detail), exc.status_code))


@app.exception_handler(RequestValidationError)
async def validation_error(request, exc):
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(part) for part in first.get("loc", ())[1:])
    message = f"{field}: {first.get('msg')}" if field else "Invalid request"
    return JSONResponse(status_code=400, content=api_response(None, message, 400))


@app.exception_handler(PyMongoError)
async def database_error(request, exc):
    logger.exception("Database error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content=api_response(None, "Something went wrong", 500))


# -------------------- Helpers --------------------

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    return pwd_context.verify(password, hashed)


def find_or_404(collection: str, oid, detail: str, projection: Optional[dict] = None) -> dict:
    doc = get_collection(collection).find_one({"_id": oid}, projection)
    if not doc:
        raise HTTPException(status_code=404, detail=detail)
    return doc


def save_changes(collection: str, oid, changes: dict, projection: Optional[dict] = None) -> dict:
    changes["updatedAt"] = datetime.now(timezone.utc)
    result = get_collection(collection).find_one_and_update(
        {"_id": oid}, {"$set": changes}, projection=projection, return_document=ReturnDocument.AFTER
    )
    if not result:
        raise HTTPException(status_code=404, detail="Not found")
    return result


# -------------------- Basic Routes --------------------
@app.get("/")
def read_root():
    return api_response(None, "Channel backend is running")


@app.get("/test")
def test_database():
    info = {
        "backend": "running",
        "database_connected": False,
        "collections": []
    }
    try:
        if database.db is not None:
            info["database_connected"] = True
            info["collections"] = database.db.list_collection_names()
    except PyMongoError as e:
        info["error"] = str(e)
    return api_response(info, "Diagnostics")


# -------------------- Auth --------------------
@app.post("/auth/register")
def register(payload: RegisterRequest):
    users = get_collection("users")
    if users.find_one({"email": payload.email}):
        raise HTTPException(status_code=400, detail="Email already in use")
    if users.find_one({"username": payload.username}):
        raise HTTPException(status_code=400, detail="Username already in use")

    user = User(
        fullName=payload.fullName,
        username=payload.username,
        email=payload.email,
        password=hash_password(payload.password),
    )
    doc = create_document("users", user)
    doc.pop("password", None)
    logger.info("Registered user %s", payload.username)
    return api_response(doc, "User registered")


@app.post("/auth/login")
def login(payload: LoginRequest):
    user = get_collection("users").find_one(
        {"$or": [{"email": payload.username_or_email}, {"username": payload.username_or_email}]}
    )
    if not user or not user.get("password") or not verify_password(payload.password, user["password"]):
        raise HTTPException(status_code=400, detail="Invalid credentials")
    user.pop("password", None)
    return api_response(user, "Signed in")


# -------------------- Users & Channels --------------------
@app.get("/users/exists/{username}")
def user_exists(username: str):
    user = get_collection("users").find_one({"username": username}, {"_id": 1})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return api_response(user, "User exists")


@app.get("/users/{user_id}")
def get_user_data(user_id: str):
    oid = objid(user_id, "userId is required and it should be valid object id")
    profile = aggregate_one("users", profile_pipeline(oid))
    if not profile:
        raise HTTPException(status_code=404, detail="User data not found")
    return api_response(profile, "User data fetched")


@app.patch("/users/{user_id}/profile")
async def update_profile(
    user_id: str,
    background_tasks: BackgroundTasks,
    fullName: Optional[str] = Form(None),
    about: Optional[str] = Form(None),
    avatar: Optional[UploadFile] = File(None),
    coverImage: Optional[UploadFile] = File(None),
):
    oid = objid(user_id, "Invalid user id")
    user = await run_in_threadpool(find_or_404, "users", oid, "User not found")

    changes = {}
    if fullName is not None:
        changes["fullName"] = fullName
    if about is not None:
        changes["about"] = about
    for field, upload in (("avatar", avatar), ("coverImage", coverImage)):
        if upload is None:
            continue
        changes[field] = await media.store_upload(upload, resource_type="image")
        if user.get(field):
            background_tasks.add_task(media.delete_by_public_id, user[field].get("public_id"))

    updated = await run_in_threadpool(save_changes, "users", oid, changes, PUBLIC_USER_FIELDS)
    return api_response(updated, "Profile updated")


@app.get("/channels/{channel_id}")
def get_channel(channel_id: str, currentUser: Optional[str] = None):
    oid = objid(channel_id, "channelId is required and it should be valid object id")
    # a malformed viewer id is ignored rather than rejected
    viewer = ObjectId(currentUser) if currentUser and ObjectId.is_valid(currentUser) else None
    profile = aggregate_one("users", profile_pipeline(oid))
    if not profile:
        raise HTTPException(status_code=404, detail="Profile not found")
    if viewer is not None:
        profile["isSubscribed"] = is_subscribed(viewer, oid)
    return api_response(profile, "User public profile fetched")


@app.post("/channels/{channel_id}/subscribe")
def subscribe_channel(channel_id: str, payload: SubscribeRequest):
    channel = objid(channel_id)
    subscriber = objid(payload.subscriber)
    if channel == subscriber:
        raise HTTPException(status_code=400, detail="Cannot subscribe to yourself")
    find_or_404("users", channel, "Channel not found", {"_id": 1})

    subscriptions = get_collection("subscriptions")
    existing = subscriptions.find_one({"channel": channel, "subscriber": subscriber})
    if existing:
        # toggle unsubscribe
        subscriptions.delete_one({"_id": existing["_id"]})
    else:
        create_document("subscriptions", Subscription(channel=channel, subscriber=subscriber))
    data = {"channel": channel, "isSubscribed": not existing, "subscribers": subscriber_count(channel)}
    return api_response(data, "Unsubscribed" if existing else "Subscribed")


@app.get("/channels/{username}/videos")
def get_channel_videos(username: str):
    user = get_collection("users").find_one({"username": username}, {"_id": 1})
    if not user:
        raise HTTPException(status_code=404, detail="Profile not found")
    videos = aggregate("videos", list_pipeline(VIDEO, owner=user["_id"], with_channel=False, with_likes=True))
    return api_response(videos, "Channel's videos fetched")


# -------------------- Posts --------------------
@app.get("/posts")
def list_posts():
    return api_response(aggregate("posts", list_pipeline(POST)), "Posts fetched")


@app.get("/users/{user_id}/posts")
def list_user_posts(user_id: str):
    owner = objid(user_id)
    return api_response(aggregate("posts", list_pipeline(POST, owner=owner)), "User's posts")


@app.post("/users/{user_id}/posts")
async def create_post(
    user_id: str,
    content: Optional[str] = Form(None),
    title: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    media_file: Optional[UploadFile] = File(None, alias="media"),
):
    owner = objid(user_id)
    if not content:
        raise HTTPException(status_code=400, detail="All fields are required")

    image_ref = await media.store_upload(image) if image is not None else None
    media_refs = []
    if media_file is not None:
        media_refs.append(await media.store_upload(media_file))

    post = Post(owner=owner, content=content, title=title, image=image_ref, media=media_refs)
    doc = await run_in_threadpool(create_document, "posts", post)
    logger.info("Post %s created by %s", doc["_id"], owner)
    return api_response(doc, "Post created")


@app.get("/posts/{post_id}")
def get_post(post_id: str):
    oid = objid(post_id)
    post = aggregate_one("posts", detail_pipeline(POST, oid))
    if not post:
        raise HTTPException(status_code=404, detail="Post not found")
    return api_response(post, "Post fetched")


@app.patch("/posts/{post_id}")
async def update_post(
    post_id: str,
    background_tasks: BackgroundTasks,
    content: Optional[str] = Form(None),
    title: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
):
    oid = objid(post_id)
    post = await run_in_threadpool(find_or_404, "posts", oid, "Post not found")

    changes = {}
    if content is not None:
        changes["content"] = content
    if title is not None:
        changes["title"] = title
    if image is not None:
        changes["image"] = await media.store_upload(image)
        if post.get("image"):
            background_tasks.add_task(
                media.delete_by_public_id, post["image"].get("public_id"), post["image"].get("resource_type", "image")
            )

    updated = await run_in_threadpool(save_changes, "posts", oid, changes)
    return api_response(updated, "Post updated")


@app.delete("/posts/{post_id}")
def delete_post(post_id: str, background_tasks: BackgroundTasks):
    oid = objid(post_id)
    post = get_collection("posts").find_one_and_delete({"_id": oid})
    if not post:
        raise HTTPException(status_code=404, detail="Post not found")
    if post.get("image"):
        background_tasks.add_task(
            media.delete_by_public_id, post["image"].get("public_id"), post["image"].get("resource_type", "image")
        )
    for item in post.get("media") or []:
        background_tasks.add_task(media.delete_by_public_id, item.get("public_id"), item.get("resource_type", "image"))
    logger.info("Post %s deleted", oid)
    return api_response(post, "Post deleted")


@app.get("/posts/{post_id}/stats")
async def post_stats(post_id: str, owner: Optional[str] = None):
    oid = objid(post_id)
    stats = await target_stats(POST, oid, optional_objid(owner))
    return api_response(stats, "Post stats")


@app.get("/posts/{post_id}/user-status")
async def post_user_status(post_id: str, userId: Optional[str] = None, owner: Optional[str] = None):
    oid = objid(post_id)
    status = await user_status(POST, oid, optional_objid(userId), optional_objid(owner))
    return api_response(status, "User status of a post")


# -------------------- Videos --------------------
@app.get("/videos")
def list_videos():
    videos = aggregate("videos", list_pipeline(VIDEO, with_likes=True))
    return api_response(videos, "Videos fetched")


@app.post("/videos")
async def upload_video(
    title: Optional[str] = Form(None),
    duration: Optional[float] = Form(None),
    description: Optional[str] = Form(None),
    owner: Optional[str] = Form(None),
    video: Optional[UploadFile] = File(None),
    thumbnail: Optional[UploadFile] = File(None),
):
    if not title or not duration or not description or not owner:
        raise HTTPException(status_code=400, detail="All fields are required")
    if duration < 0:
        raise HTTPException(status_code=400, detail="Duration must be positive")
    owner_id = objid(owner)
    if video is None or thumbnail is None:
        raise HTTPException(status_code=400, detail="Video and thumbnail are required")

    video_ref = await media.store_upload(video, resource_type="video")
    try:
        thumbnail_ref = await media.store_upload(thumbnail, resource_type="image")
    except HTTPException:
        # error responses skip background tasks, release the orphan now
        await run_in_threadpool(media.delete_by_reference, video_ref)
        raise

    video_doc = Video(
        owner=owner_id,
        title=title,
        description=description,
        duration=duration,
        video=video_ref,
        thumbnail=thumbnail_ref,
    )
    doc = await run_in_threadpool(create_document, "videos", video_doc)
    logger.info("Video %s uploaded by %s", doc["_id"], owner_id)
    return api_response(doc, "Video created")


@app.get("/videos/{video_id}")
def get_video(video_id: str):
    oid = objid(video_id, "Invalid video id")
    v = find_or_404("videos", oid, "Video not found", {"video": 1, "title": 1})
    return api_response(v, "Video fetched")


@app.get("/videos/{video_id}/page")
def get_video_page(video_id: str):
    oid = objid(video_id, "Invalid video id")
    page = aggregate_one("videos", detail_pipeline(VIDEO, oid))
    if not page:
        raise HTTPException(status_code=404, detail="Video not found")
    return api_response(page, "Video page data fetched")


@app.patch("/videos/{video_id}")
async def update_video(
    video_id: str,
    background_tasks: BackgroundTasks,
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    duration: Optional[float] = Form(None),
    thumbnail: Optional[UploadFile] = File(None),
):
    oid = objid(video_id, "Invalid video id")
    v = await run_in_threadpool(find_or_404, "videos", oid, "Video not found")

    changes = {}
    if title is not None:
        changes["title"] = title
    if description is not None:
        changes["description"] = description
    if duration is not None:
        changes["duration"] = duration
    if thumbnail is not None:
        changes["thumbnail"] = await media.store_upload(thumbnail, resource_type="image")
        background_tasks.add_task(media.delete_by_reference, v.get("thumbnail"))

    updated = await run_in_threadpool(save_changes, "videos", oid, changes, {"video": 0})
    return api_response(updated, "Video updated")


@app.delete("/videos/{video_id}")
def delete_video(video_id: str, background_tasks: BackgroundTasks):
    oid = objid(video_id, "Invalid video id")
    v = get_collection("videos").find_one_and_delete({"_id": oid})
    if not v:
        raise HTTPException(status_code=404, detail="Video not found")
    background_tasks.add_task(media.delete_by_reference, v.get("video"))
    background_tasks.add_task(media.delete_by_reference, v.get("thumbnail"))
    logger.info("Video %s deleted", oid)
    return api_response(v, "Video deleted")


@app.get("/videos/{video_id}/stats")
async def video_stats(video_id: str, owner: Optional[str] = None):
    oid = objid(video_id, "Invalid video id")
    stats = await target_stats(VIDEO, oid, optional_objid(owner))
    return api_response(stats, "Video stats")


@app.get("/videos/{video_id}/user-status")
async def video_user_status(video_id: str, userId: Optional[str] = None):
    oid = objid(video_id, "Invalid video id")
    user = optional_objid(userId)
    v = await run_in_threadpool(find_or_404, "videos", oid, "Video not found", {"owner": 1})
    status = await user_status(VIDEO, oid, user, v.get("owner"))
    return api_response(status, "Like and subscribe status")


app.include_router(engagement_router(POST), prefix="/posts", tags=["posts"])
app.include_router(engagement_router(VIDEO), prefix="/videos", tags=["videos"])


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
