import itertools
from datetime import datetime, timezone
from unittest.mock import MagicMock

import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

import database
import media
from main import app


@pytest.fixture
def db(monkeypatch):
    mock_db = mongomock.MongoClient().db
    monkeypatch.setattr(database, "db", mock_db)
    return mock_db


@pytest.fixture
def fake_db(monkeypatch):
    """A MagicMock database, for asserting on aggregate calls or on no storage access at all."""
    mock_db = MagicMock()
    monkeypatch.setattr(database, "db", mock_db)
    return mock_db


@pytest.fixture
def client(db):
    return TestClient(app)


@pytest.fixture
def fake_client(fake_db):
    return TestClient(app)


@pytest.fixture
def cloud(monkeypatch, tmp_path):
    """Replace Cloudinary: uploads hand out asset-1, asset-2, ... and deletions are recorded."""
    monkeypatch.setattr(media, "UPLOAD_DIR", str(tmp_path))
    calls = {"uploaded": [], "deleted_ids": [], "deleted_types": [], "deleted_refs": []}
    counter = itertools.count(1)

    def upload_file(path, resource_type="auto"):
        n = next(counter)
        calls["uploaded"].append((path, resource_type))
        return {
            "url": f"https://res.cloudinary.com/demo/{n}",
            "public_id": f"asset-{n}",
            "resource_type": "video" if resource_type == "video" else "image",
        }

    def delete_by_public_id(public_id, resource_type="image"):
        calls["deleted_ids"].append(public_id)
        calls["deleted_types"].append(resource_type)

    def delete_by_reference(reference):
        calls["deleted_refs"].append(reference)

    monkeypatch.setattr(media, "upload_file", upload_file)
    monkeypatch.setattr(media, "delete_by_public_id", delete_by_public_id)
    monkeypatch.setattr(media, "delete_by_reference", delete_by_reference)
    return calls


def image(name="pic.png"):
    return (name, b"\x89PNG fake bytes", "image/png")


def make_user(db, username="ada", **fields):
    doc = {
        "fullName": fields.pop("fullName", "Ada Lovelace"),
        "username": username,
        "email": f"{username}@channel.io",
        "password": "not-a-real-hash",
        "about": None,
        "avatar": None,
        "coverImage": None,
        "createdAt": datetime.now(timezone.utc),
    }
    doc.update(fields)
    return db.users.insert_one(doc).inserted_id


def make_post(db, owner, content="hello", **fields):
    doc = {"owner": owner, "content": content, "title": None, "image": None, "media": []}
    doc.update(fields)
    return db.posts.insert_one(doc).inserted_id


def make_video(db, owner, **fields):
    doc = {
        "owner": owner,
        "title": "First flight",
        "description": "A video",
        "duration": 12.5,
        "video": {"url": "https://res.cloudinary.com/demo/v", "public_id": "video-1", "resource_type": "video"},
        "thumbnail": {"url": "https://res.cloudinary.com/demo/t", "public_id": "thumb-1", "resource_type": "image"},
    }
    doc.update(fields)
    return db.videos.insert_one(doc).inserted_id


def new_id():
    return str(ObjectId())
