# tests/test_scheduler.py
import asyncio
from datetime import timedelta

from social_publisher.infrastructure.post_store import PostGroupStore
from social_publisher.models.post import PostGroup, PostGroupStatus, utcnow
from social_publisher.services.scheduler import Scheduler


class RecordingOrchestrator:
    def __init__(self):
        self.published = []

    async def publish_group(self, group_id):
        self.published.append(group_id)


async def add_group(session_factory, status: str, scheduled_time) -> PostGroup:
    async with session_factory() as s:
        group = PostGroup(account_id="acct", content="hi", status=status, scheduled_time=scheduled_time)
        await PostGroupStore(s).add_group(group)
        await s.commit()
        return group


async def status_of(session_factory, group_id) -> str:
    async with session_factory() as s:
        return (await PostGroupStore(s).get_group(group_id)).status


async def test_tick_claims_only_due_scheduled_groups(session_factory):
    now = utcnow()
    due = await add_group(session_factory, "scheduled", now - timedelta(minutes=1))
    later = await add_group(session_factory, "scheduled", now + timedelta(hours=1))
    draft = await add_group(session_factory, "draft", now - timedelta(minutes=5))

    orchestrator = RecordingOrchestrator()
    claimed = await Scheduler(session_factory, orchestrator).tick(now)

    assert claimed == [due.id]
    assert orchestrator.published == [due.id]
    assert await status_of(session_factory, due.id) == PostGroupStatus.processing.value
    assert await status_of(session_factory, later.id) == PostGroupStatus.scheduled.value
    assert await status_of(session_factory, draft.id) == PostGroupStatus.draft.value


async def test_concurrent_ticks_claim_each_group_once(session_factory):
    now = utcnow()
    groups = [await add_group(session_factory, "scheduled", now - timedelta(seconds=i + 1)) for i in range(5)]

    orchestrator = RecordingOrchestrator()
    first, second = Scheduler(session_factory, orchestrator), Scheduler(session_factory, orchestrator)
    results = await asyncio.gather(first.tick(now), second.tick(now))

    claimed = results[0] + results[1]
    assert sorted(claimed) == sorted(g.id for g in groups)
    assert sorted(orchestrator.published) == sorted(g.id for g in groups)


async def test_second_tick_finds_nothing(session_factory):
    now = utcnow()
    await add_group(session_factory, "scheduled", now - timedelta(minutes=1))
    scheduler = Scheduler(session_factory, RecordingOrchestrator())
    assert len(await scheduler.tick(now)) == 1
    assert await scheduler.tick(now) == []


async def test_tick_survives_a_crashing_publish(session_factory):
    class Exploding:
        async def publish_group(self, group_id):
            raise RuntimeError("boom")

    now = utcnow()
    group = await add_group(session_factory, "scheduled", now - timedelta(minutes=1))
    assert await Scheduler(session_factory, Exploding()).tick(now) == [group.id]


async def test_run_forever_stops(session_factory):
    scheduler = Scheduler(session_factory, RecordingOrchestrator(), interval_seconds=0.01)
    task = asyncio.create_task(scheduler.run_forever())
    await asyncio.sleep(0.05)
    scheduler.stop()
    await asyncio.wait_for(task, timeout=1)
    assert not scheduler.running
