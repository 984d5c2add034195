"""Endpoints backed by aggregation pipelines, run against a MagicMock database."""
import pytest
from bson import ObjectId

from conftest import new_id


def aggregate_returns(fake_db, docs):
    collection = fake_db.__getitem__.return_value
    collection.aggregate.return_value = iter(docs)
    return collection


def test_list_posts_keeps_pipeline_order(fake_client, fake_db):
    a, b, c = ObjectId(), ObjectId(), ObjectId()
    collection = aggregate_returns(fake_db, [
        {"_id": c, "content": "C", "channel": {"fullName": "Ada", "username": "ada"}},
        {"_id": b, "content": "B", "channel": {}},
        {"_id": a, "content": "A", "channel": {}},
    ])
    res = fake_client.get("/posts")
    assert res.status_code == 200
    assert [p["content"] for p in res.json()["data"]] == ["C", "B", "A"]
    assert res.json()["data"][0]["channel"]["username"] == "ada"

    fake_db.__getitem__.assert_called_with("posts")
    pipeline = collection.aggregate.call_args[0][0]
    assert pipeline[0] == {"$sort": {"_id": -1}}


def test_list_videos_carries_likes(fake_client, fake_db):
    collection = aggregate_returns(fake_db, [])
    fake_client.get("/videos")
    pipeline = collection.aggregate.call_args[0][0]
    assert any(stage.get("$lookup", {}).get("from") == "videolikes" for stage in pipeline)


def test_user_posts_match_owner(fake_client, fake_db):
    collection = aggregate_returns(fake_db, [])
    owner = new_id()
    res = fake_client.get(f"/users/{owner}/posts")
    assert res.json()["data"] == []
    assert collection.aggregate.call_args[0][0][0] == {"$match": {"owner": ObjectId(owner)}}


def test_video_page(fake_client, fake_db):
    video_id = ObjectId()
    aggregate_returns(fake_db, [{"_id": video_id, "likeCount": 2, "unlikeCount": 1, "subscriber": 5}])
    res = fake_client.get(f"/videos/{video_id}/page")
    assert res.status_code == 200
    assert res.json()["data"] == {"id": str(video_id), "likeCount": 2, "unlikeCount": 1, "subscriber": 5}


@pytest.mark.parametrize("path", ["/videos/{id}/page", "/posts/{id}", "/users/{id}", "/channels/{id}"])
def test_missing_detail_is_not_found(fake_client, fake_db, path):
    aggregate_returns(fake_db, [])
    res = fake_client.get(path.format(id=new_id()))
    assert res.status_code == 404
    assert res.json()["data"] is None


def test_channel_profile_marks_subscription(fake_client, fake_db):
    channel, viewer = new_id(), new_id()
    collection = aggregate_returns(fake_db, [{"_id": ObjectId(channel), "stats": {"subscribers": 1, "videos": 0}}])
    collection.find_one.return_value = {"_id": ObjectId()}

    res = fake_client.get(f"/channels/{channel}", params={"currentUser": viewer})
    data = res.json()["data"]
    assert data["isSubscribed"] is True
    assert data["stats"] == {"subscribers": 1, "videos": 0}
    collection.find_one.assert_called_with(
        {"subscriber": ObjectId(viewer), "channel": ObjectId(channel)}, {"_id": 1}
    )


def test_channel_profile_without_viewer(fake_client, fake_db):
    collection = aggregate_returns(fake_db, [{"_id": ObjectId(), "fullName": "Ada"}])
    data = fake_client.get(f"/channels/{new_id()}").json()["data"]
    assert "isSubscribed" not in data
    collection.find_one.assert_not_called()


def test_channel_profile_ignores_malformed_viewer(fake_client, fake_db):
    collection = aggregate_returns(fake_db, [{"_id": ObjectId(), "fullName": "Ada"}])
    res = fake_client.get(f"/channels/{new_id()}", params={"currentUser": "not-an-object-id"})
    assert res.status_code == 200
    assert "isSubscribed" not in res.json()["data"]
    collection.find_one.assert_not_called()


@pytest.mark.parametrize("method,path,kwargs", [
    ("get", "/users/{bad}/posts", {}),
    ("get", "/posts/{bad}", {}),
    ("get", "/posts/{bad}/stats", {}),
    ("get", "/posts/{good}/stats", {"params": {"owner": "{bad}"}}),
    ("get", "/posts/{good}/user-status", {"params": {"userId": "{bad}"}}),
    ("get", "/posts/{bad}/comments", {}),
    ("get", "/videos/{bad}", {}),
    ("get", "/videos/{bad}/page", {}),
    ("get", "/videos/{bad}/user-status", {}),
    ("get", "/users/{bad}", {}),
    ("get", "/channels/{bad}", {}),
    ("patch", "/posts/{bad}", {"data": {"title": "t"}}),
    ("delete", "/posts/{bad}", {}),
    ("delete", "/videos/{bad}", {}),
    ("patch", "/videos/comments/{bad}", {"json": {"updatedComment": "x"}}),
    ("delete", "/posts/comments/{bad}", {}),
    ("post", "/posts/{good}/comments", {"json": {"user": "{bad}", "comment": "x"}}),
    ("put", "/videos/{bad}/like", {"json": {"user": "{good}"}}),
    ("post", "/channels/{good}/subscribe", {"json": {"subscriber": "{bad}"}}),
    ("post", "/users/{bad}/posts", {"data": {"content": "x"}}),
    ("post", "/videos", {"data": {"title": "t", "duration": "1", "description": "d", "owner": "{bad}"}}),
])
def test_malformed_ids_never_reach_storage(fake_client, fake_db, method, path, kwargs):
    good, bad = new_id(), "not-an-object-id"

    def fill(value):
        if isinstance(value, dict):
            return {k: fill(v) for k, v in value.items()}
        return value.format(good=good, bad=bad)

    res = getattr(fake_client, method)(fill(path), **{k: fill(v) for k, v in kwargs.items()})
    assert res.status_code == 400
    assert res.json()["status"] == 400
    fake_db.__getitem__.assert_not_called()


def test_stats_survive_a_failing_count(fake_client, fake_db):
    from unittest.mock import MagicMock
    from pymongo.errors import OperationFailure

    likes, other = MagicMock(), MagicMock()
    likes.count_documents.side_effect = OperationFailure("likes shard unavailable")
    other.count_documents.return_value = 2
    fake_db.__getitem__.side_effect = lambda name: likes if name == "postlikes" else other

    res = fake_client.get(f"/posts/{new_id()}/stats")
    assert res.status_code == 200
    assert res.json()["data"] == {"totalComment": 2, "totalBookmark": 2}
