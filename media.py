"""
Cloudinary media service.

Uploads go through a local spool file (the form upload is written to
UPLOAD_DIR first, then handed to Cloudinary by path). Deletions are
best-effort: they run as background tasks after the response and only log
on failure.

Posts and profiles release their media by public id, videos by passing the
whole stored reference. Both call shapes are kept.
"""

import logging
import os
from typing import Optional

import cloudinary
import cloudinary.uploader
from bson import ObjectId
from cloudinary.exceptions import Error as CloudinaryError
from fastapi import HTTPException, UploadFile
from starlette.concurrency import run_in_threadpool

logger = logging.getLogger(__name__)

UPLOAD_DIR = os.getenv("UPLOAD_DIR", os.path.join(os.getcwd(), "uploads"))

# An unconfigured SDK raises ValueError (missing api_key) rather than a
# cloudinary error; network failures can surface as OSError.
MEDIA_ERRORS = (CloudinaryError, ValueError, KeyError, OSError)

if os.getenv("CLOUDINARY_CLOUD_NAME"):
    cloudinary.config(
        cloud_name=os.getenv("CLOUDINARY_CLOUD_NAME"),
        api_key=os.getenv("CLOUDINARY_API_KEY"),
        api_secret=os.getenv("CLOUDINARY_API_SECRET"),
        secure=True,
    )


def upload_file(path: str, resource_type: str = "auto") -> dict:
    result = cloudinary.uploader.upload(path, resource_type=resource_type)
    reference = {
        "url": result.get("secure_url") or result.get("url"),
        "public_id": result["public_id"],
        "resource_type": result.get("resource_type", "image"),
    }
    for key in ("format", "bytes", "duration"):
        if result.get(key) is not None:
            reference[key] = result[key]
    return reference


async def store_upload(upload: UploadFile, resource_type: str = "auto") -> dict:
    """Spool an incoming file to disk and push it to Cloudinary.

    Raises a 500 when the upload fails so the owning mutation is aborted.
    """
    os.makedirs(UPLOAD_DIR, exist_ok=True)
    ext = os.path.splitext(upload.filename or "")[1]
    path = os.path.join(UPLOAD_DIR, f"{ObjectId()}{ext}")
    with open(path, "wb") as f:
        f.write(await upload.read())
    try:
        return await run_in_threadpool(upload_file, path, resource_type)
    except MEDIA_ERRORS as exc:
        logger.error("Media upload of %s failed: %s", upload.filename, exc)
        raise HTTPException(status_code=500, detail="Media upload failed") from exc
    finally:
        if os.path.exists(path):
            os.remove(path)


def delete_by_public_id(public_id: Optional[str], resource_type: str = "image") -> None:
    if not public_id:
        return
    try:
        cloudinary.uploader.destroy(public_id, resource_type=resource_type)
    except MEDIA_ERRORS as exc:
        logger.warning("Could not delete media %s: %s", public_id, exc)


def delete_by_reference(reference: Optional[dict]) -> None:
    if not reference or not reference.get("public_id"):
        return
    try:
        cloudinary.uploader.destroy(
            reference["public_id"],
            resource_type=reference.get("resource_type", "image"),
        )
    except MEDIA_ERRORS as exc:
        logger.warning("Could not delete media %s: %s", reference.get("url"), exc)
