# tests/test_publisher.py
import asyncio
from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from social_publisher.errors import TerminalPlatformError, TransientPlatformError
from social_publisher.infrastructure.post_store import PostGroupStore
from social_publisher.models.post import PostGroupStatus, utcnow
from social_publisher.schemas.post_schema import PostGroupCreate
from social_publisher.services.post_service import PostService
from social_publisher.services.publisher import PublishOrchestrator
from social_publisher.services.quota import QuotaService


@pytest.fixture
def make_orchestrator(session_factory):
    def _make(client, **kwargs):
        kwargs.setdefault("backoff_seconds", 0)
        kwargs.setdefault("backoff_max_seconds", 0)
        kwargs.setdefault("call_timeout", 1)
        return PublishOrchestrator(session_factory, client, **kwargs)

    return _make


@pytest.fixture
def processing_group(session_factory, connect):
    async def _group(platforms, content="Hello world"):
        connections = [await connect("acct", p) for p in platforms]
        payload = PostGroupCreate(
            content=content,
            target_connection_ids=[c.id for c in connections],
            scheduled_time=utcnow() + timedelta(minutes=5),
        )
        async with session_factory() as s:
            detail = await PostService(s).create_group("acct", payload, 10)
            await PostGroupStore(s).compare_and_set_status(detail.group.id, "scheduled", "processing")
            await s.commit()
        return detail.group.id

    return _group


async def load(session_factory, group_id):
    async with session_factory() as s:
        store = PostGroupStore(s)
        group = await store.get_group(group_id)
        posts = {pp.platform: pp for pp in await store.list_platform_posts(group_id)}
        return group, posts


async def test_all_platforms_publish(session_factory, processing_group, make_orchestrator, platform_client):
    group_id = await processing_group(["x", "mastodon", "facebook"])
    status = await make_orchestrator(platform_client).publish_group(group_id)

    group, posts = await load(session_factory, group_id)
    assert status == PostGroupStatus.published
    assert group.status == "published"
    for pp in posts.values():
        assert pp.status == "published"
        assert pp.platform_post_id
        assert pp.published_at is not None
        assert pp.payload[0]["text"] == "Hello world"
    async with session_factory() as s:
        assert await QuotaService(s).pending_count("acct") == 0


async def test_video_only_target_fails_alone(session_factory, processing_group, make_orchestrator, platform_client):
    group_id = await processing_group(["x", "tiktok"])
    status = await make_orchestrator(platform_client).publish_group(group_id)

    group, posts = await load(session_factory, group_id)
    assert status == PostGroupStatus.partially_published
    assert group.status == "partially_published"
    assert posts["x"].status == "published"
    assert posts["tiktok"].status == "failed"
    assert posts["tiktok"].error["code"] == "content_validation_error"
    assert posts["tiktok"].error["retryable"] is False
    assert platform_client.calls_for("tiktok") == []


async def test_every_target_failing_fails_the_group(session_factory, processing_group, make_orchestrator, platform_client):
    group_id = await processing_group(["tiktok", "youtube"])
    status = await make_orchestrator(platform_client).publish_group(group_id)
    assert status == PostGroupStatus.failed
    async with session_factory() as s:
        assert await QuotaService(s).pending_count("acct") == 0


async def test_thread_units_reply_to_previous(session_factory, processing_group, make_orchestrator, platform_client):
    text = " ".join(f"Sentence {i} is part of a longer announcement." for i in range(25))
    group_id = await processing_group(["x"], content=text)
    await make_orchestrator(platform_client).publish_group(group_id)

    calls = platform_client.calls_for("x")
    assert len(calls) > 1
    assert calls[0]["reply_to"] is None
    _, posts = await load(session_factory, group_id)
    ids = posts["x"].platform_post_ids
    assert len(ids) == len(calls)
    assert [c["reply_to"] for c in calls[1:]] == ids[:-1]
    assert posts["x"].platform_post_id == ids[0]


async def test_transient_errors_are_retried(session_factory, processing_group, make_orchestrator, platform_client):
    platform_client.script["x"] = [TransientPlatformError("x", "503 from upstream", 503), "x-42"]
    group_id = await processing_group(["x"])
    await make_orchestrator(platform_client).publish_group(group_id)

    _, posts = await load(session_factory, group_id)
    assert posts["x"].status == "published"
    assert posts["x"].platform_post_id == "x-42"
    assert posts["x"].attempts == 2


async def test_retries_stop_after_max_attempts(session_factory, processing_group, make_orchestrator, platform_client):
    platform_client.script["x"] = [TransientPlatformError("x", "down") for _ in range(5)]
    group_id = await processing_group(["x", "mastodon"])
    status = await make_orchestrator(platform_client, max_attempts=3).publish_group(group_id)

    _, posts = await load(session_factory, group_id)
    assert status == PostGroupStatus.partially_published
    assert posts["x"].status == "failed"
    assert posts["x"].error["code"] == "transient_platform_error"
    assert posts["x"].error["retryable"] is True
    assert posts["x"].error["attempts"] == 3
    assert len(platform_client.calls_for("x")) == 3


async def test_terminal_errors_are_not_retried(session_factory, processing_group, make_orchestrator, platform_client):
    platform_client.script["x"] = [TerminalPlatformError("x", "duplicate content", 403)]
    group_id = await processing_group(["x"])
    status = await make_orchestrator(platform_client).publish_group(group_id)

    _, posts = await load(session_factory, group_id)
    assert status == PostGroupStatus.failed
    assert posts["x"].error["code"] == "terminal_platform_error"
    assert posts["x"].attempts == 1
    assert len(platform_client.calls_for("x")) == 1


async def test_slow_platform_times_out(session_factory, processing_group, make_orchestrator):
    class SlowClient:
        async def publish(self, connection, unit, reply_to):
            await asyncio.sleep(5)
            return "never"

    group_id = await processing_group(["bluesky"])
    await make_orchestrator(SlowClient(), call_timeout=0.05, max_attempts=2).publish_group(group_id)

    _, posts = await load(session_factory, group_id)
    assert posts["bluesky"].status == "failed"
    assert posts["bluesky"].error["code"] == "transient_platform_error"
    assert posts["bluesky"].attempts == 2


async def test_unexpected_exception_fails_only_that_platform(session_factory, processing_group, make_orchestrator, platform_client):
    platform_client.script["threads"] = [RuntimeError("client bug")]
    group_id = await processing_group(["threads", "x"])
    status = await make_orchestrator(platform_client).publish_group(group_id)

    _, posts = await load(session_factory, group_id)
    assert status == PostGroupStatus.partially_published
    assert posts["threads"].error["code"] == "internal_error"
    assert posts["x"].status == "published"


async def test_group_not_processing_is_left_alone(session_factory, connect, make_orchestrator, platform_client):
    x = await connect("acct", "x")
    async with session_factory() as s:
        detail = await PostService(s).create_group("acct", PostGroupCreate(content="hi", target_connection_ids=[x.id]), 10)
    assert await make_orchestrator(platform_client).publish_group(detail.group.id) is None
    assert platform_client.calls == []


async def test_failure_to_record_an_error_still_finalizes(session_factory, processing_group, make_orchestrator, platform_client):
    platform_client.script["threads"] = [TerminalPlatformError("threads", "rejected", 400)]
    group_id = await processing_group(["threads", "x"])
    orchestrator = make_orchestrator(platform_client)

    async def locked(pp, error, progress):
        raise OperationalError("UPDATE platform_posts", {}, Exception("database is locked"))

    orchestrator._record_failure = locked
    status = await orchestrator.publish_group(group_id)

    group, posts = await load(session_factory, group_id)
    assert status == PostGroupStatus.partially_published
    assert group.status == "partially_published"
    assert posts["threads"].status == "failed"
    assert posts["threads"].error["code"] == "internal_error"
    assert posts["x"].status == "published"
    async with session_factory() as s:
        assert await QuotaService(s).pending_count("acct") == 0


async def test_unclaimed_platform_post_is_failed_at_finalize(session_factory, processing_group, make_orchestrator, platform_client):
    group_id = await processing_group(["mastodon", "x"])
    orchestrator = make_orchestrator(platform_client)
    real = orchestrator._publish_platform_post

    async def crash_mastodon(group, pp, connection, media):
        if pp.platform == "mastodon":
            raise RuntimeError("worker died")
        await real(group, pp, connection, media)

    orchestrator._publish_platform_post = crash_mastodon
    status = await orchestrator.publish_group(group_id)

    _, posts = await load(session_factory, group_id)
    assert status == PostGroupStatus.partially_published
    assert posts["mastodon"].status == "failed"
    assert posts["mastodon"].error["message"] == "publishing stopped before a result was recorded"
    assert platform_client.calls_for("mastodon") == []
