# social_publisher/services/publisher.py
"""
Publish orchestrator.

Drives one post group that the scheduler moved to ``processing`` through the
adapters and the outbound platform client, then folds the per-platform
results into the group's terminal status.

Platforms are independent: each platform post runs in its own task (bounded by
a semaphore) and its own short transactions, so a failure on one never stops
or rolls back the others. Thread units for one connection go out in order,
each replying to the previous unit's platform id.
"""
import asyncio
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

import structlog
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from social_publisher.adapters.platforms import get_spec
from social_publisher.adapters.registry import MediaAttachment, PayloadUnit, adapt
from social_publisher.errors import PublisherError, TerminalPlatformError, TransientPlatformError
from social_publisher.infrastructure.platform_client import PlatformClient, PLATFORM_TIMEOUT_SECONDS
from social_publisher.infrastructure.platforms_repo import PlatformsRepository
from social_publisher.infrastructure.post_store import PostGroupStore
from social_publisher.models.connected_platform import ConnectedPlatform
from social_publisher.models.post import PlatformPost, PlatformPostStatus, PostGroup, PostGroupStatus, utcnow
from social_publisher.services.media_service import check_media_constraints
from social_publisher.services.quota import QuotaService
from social_publisher.services.state import aggregate_status

logger = structlog.get_logger(__name__)

PUBLISH_MAX_WORKERS = int(os.getenv("PUBLISH_MAX_WORKERS", "8"))
PUBLISH_MAX_ATTEMPTS = int(os.getenv("PUBLISH_MAX_ATTEMPTS", "3"))
PUBLISH_BACKOFF_SECONDS = float(os.getenv("PUBLISH_BACKOFF_SECONDS", "1"))
PUBLISH_BACKOFF_MAX_SECONDS = float(os.getenv("PUBLISH_BACKOFF_MAX_SECONDS", "30"))

UNRECORDED_RESULT = {
    "code": "internal_error",
    "message": "publishing stopped before a result was recorded",
    "retryable": False,
}


@dataclass
class _Progress:
    attempts: int = 0
    published_ids: List[str] = field(default_factory=list)


class PublishOrchestrator:
    def __init__(
        self,
        session_factory: Callable,
        client: PlatformClient,
        max_workers: int = PUBLISH_MAX_WORKERS,
        max_attempts: int = PUBLISH_MAX_ATTEMPTS,
        backoff_seconds: float = PUBLISH_BACKOFF_SECONDS,
        backoff_max_seconds: float = PUBLISH_BACKOFF_MAX_SECONDS,
        call_timeout: float = PLATFORM_TIMEOUT_SECONDS,
    ):
        self.session_factory = session_factory
        self.client = client
        self.max_workers = max(1, max_workers)
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self.backoff_max_seconds = backoff_max_seconds
        self.call_timeout = call_timeout

    async def publish_group(self, group_id) -> Optional[PostGroupStatus]:
        log = logger.bind(post_group_id=str(group_id))
        async with self.session_factory() as session:
            store = PostGroupStore(session)
            group = await store.get_group(group_id)
            if group.status != PostGroupStatus.processing.value:
                log.warning("post_group_not_processing", status=group.status)
                return None
            platform_posts = await store.list_platform_posts(group.id)
            media = [MediaAttachment.from_reference(m) for m in await store.list_media(group.id)]
            connections = await PlatformsRepository(session).get_many([pp.connection_id for pp in platform_posts])

        log.info("post_group_publishing", platforms=len(platform_posts), media=len(media))
        semaphore = asyncio.Semaphore(self.max_workers)

        async def run(pp: PlatformPost) -> None:
            async with semaphore:
                await self._publish_platform_post(group, pp, connections.get(pp.connection_id), media)

        results = await asyncio.gather(*(run(pp) for pp in platform_posts), return_exceptions=True)
        for pp, result in zip(platform_posts, results):
            if isinstance(result, Exception):
                log.error("platform_post_task_crashed", platform_post_id=str(pp.id), error=repr(result))
        return await self._finalize(group)

    async def _publish_platform_post(
        self,
        group: PostGroup,
        pp: PlatformPost,
        connection: Optional[ConnectedPlatform],
        media: Sequence[MediaAttachment],
    ) -> None:
        log = logger.bind(post_group_id=str(group.id), platform_post_id=str(pp.id), platform=pp.platform)
        if pp.status in (PlatformPostStatus.published.value, PlatformPostStatus.failed.value):
            return

        async with self.session_factory() as session:
            claimed = await PostGroupStore(session).transition_platform_post(
                pp.id, PlatformPostStatus.pending, PlatformPostStatus.processing
            )
            await session.commit()
        if not claimed and pp.status != PlatformPostStatus.processing.value:
            log.warning("platform_post_not_claimable", status=pp.status)
            return

        progress = _Progress()
        try:
            if connection is None:
                raise TerminalPlatformError(pp.platform, "platform connection no longer exists")
            units = adapt(pp.platform, group.content, media, (group.platform_settings or {}).get(pp.platform))
            check_media_constraints(get_spec(pp.platform), media)
            await self._save_payload(pp, units)

            reply_to = None
            for unit in units:
                reply_to = await self._publish_unit(connection, unit, reply_to, progress)
                progress.published_ids.append(reply_to)
        except PublisherError as exc:
            log.warning("platform_post_failed", error=exc.message, code=exc.code, attempts=progress.attempts)
            await self._record_failure(pp, exc.to_dict(attempts=progress.attempts), progress)
            return
        except Exception as exc:
            log.exception("platform_post_crashed", error=str(exc))
            error = {"code": "internal_error", "message": str(exc), "retryable": False, "attempts": progress.attempts}
            await self._record_failure(pp, error, progress)
            return

        async with self.session_factory() as session:
            await PostGroupStore(session).transition_platform_post(
                pp.id,
                PlatformPostStatus.processing,
                PlatformPostStatus.published,
                platform_post_id=progress.published_ids[0],
                platform_post_ids=progress.published_ids,
                attempts=progress.attempts,
                published_at=utcnow(),
                error=None,
            )
            await session.commit()
        log.info("platform_post_published", platform_post_ids=progress.published_ids, attempts=progress.attempts)

    async def _publish_unit(
        self,
        connection: ConnectedPlatform,
        unit: PayloadUnit,
        reply_to: Optional[str],
        progress: _Progress,
    ) -> str:
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(TransientPlatformError),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_seconds, max=self.backoff_max_seconds),
            before_sleep=self._log_retry,
            reraise=True,
        ):
            with attempt:
                progress.attempts += 1
                return await self._call_client(connection, unit, reply_to)
        raise AssertionError("unreachable")

    async def _call_client(self, connection: ConnectedPlatform, unit: PayloadUnit, reply_to: Optional[str]) -> str:
        try:
            return await asyncio.wait_for(self.client.publish(connection, unit, reply_to), timeout=self.call_timeout)
        except asyncio.TimeoutError as exc:
            raise TransientPlatformError(connection.platform, f"no response within {self.call_timeout}s") from exc

    @staticmethod
    def _log_retry(retry_state) -> None:
        exc = retry_state.outcome.exception()
        logger.info(
            "platform_publish_retry",
            platform=getattr(exc, "platform", None),
            attempt=retry_state.attempt_number,
            error=str(exc),
            sleep=retry_state.next_action.sleep if retry_state.next_action else None,
        )

    async def _save_payload(self, pp: PlatformPost, units: Sequence[PayloadUnit]) -> None:
        async with self.session_factory() as session:
            row = await session.get(PlatformPost, pp.id)
            if row is not None:
                row.payload = [u.to_dict() for u in units]
                session.add(row)
                await session.commit()

    async def _record_failure(self, pp: PlatformPost, error: Dict[str, Any], progress: _Progress) -> None:
        if progress.published_ids:
            error["published_ids"] = list(progress.published_ids)
        async with self.session_factory() as session:
            await PostGroupStore(session).transition_platform_post(
                pp.id,
                PlatformPostStatus.processing,
                PlatformPostStatus.failed,
                error=error,
                attempts=progress.attempts,
                platform_post_id=progress.published_ids[0] if progress.published_ids else None,
                platform_post_ids=list(progress.published_ids),
            )
            await session.commit()

    async def _finalize(self, group: PostGroup) -> Optional[PostGroupStatus]:
        log = logger.bind(post_group_id=str(group.id))
        async with self.session_factory() as session:
            store = PostGroupStore(session)
            children = await store.list_platform_posts(group.id)
            statuses = [await self._settle(store, pp) for pp in children]
            status = aggregate_status(statuses)
            if not await store.compare_and_set_status(group.id, PostGroupStatus.processing, status):
                await session.rollback()
                log.warning("post_group_finalize_lost", status=status.value)
                return None
            await QuotaService(session).release(group.account_id)
            await session.commit()

        log.info(
            "post_group_finalized",
            status=status.value,
            published=statuses.count(PlatformPostStatus.published.value),
            failed=statuses.count(PlatformPostStatus.failed.value),
        )
        return status

    @staticmethod
    async def _settle(store: PostGroupStore, pp: PlatformPost) -> str:
        """Fail a platform post whose task ended without recording a result."""
        if pp.status in (PlatformPostStatus.published.value, PlatformPostStatus.failed.value):
            return pp.status
        if pp.status == PlatformPostStatus.pending.value:
            await store.transition_platform_post(pp.id, PlatformPostStatus.pending, PlatformPostStatus.processing)
        await store.transition_platform_post(
            pp.id,
            PlatformPostStatus.processing,
            PlatformPostStatus.failed,
            error=dict(UNRECORDED_RESULT, attempts=pp.attempts),
        )
        logger.warning("platform_post_unrecorded", platform_post_id=str(pp.id), platform=pp.platform, was=pp.status)
        return PlatformPostStatus.failed.value
