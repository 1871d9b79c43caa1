# social_publisher/services/post_service.py
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog
from sqlmodel.ext.asyncio.session import AsyncSession

from social_publisher.adapters.platforms import get_spec, is_supported
from social_publisher.adapters.registry import merge_settings
from social_publisher.errors import ConflictError, QuotaExceeded, ValidationError
from social_publisher.infrastructure.platforms_repo import PlatformsRepository
from social_publisher.infrastructure.post_store import PostGroupStore
from social_publisher.models.connected_platform import ConnectedPlatform
from social_publisher.models.post import (
    MediaReference,
    MediaState,
    PlatformPost,
    PostGroup,
    PostGroupStatus,
    as_utc,
    utcnow,
)
from social_publisher.services.media_service import check_media_fits_targets
from social_publisher.services.quota import QuotaService
from social_publisher.services.state import EDITABLE_STATUSES

logger = structlog.get_logger(__name__)

MAX_PAGE_LIMIT = 100
DEFAULT_PAGE_LIMIT = 20


@dataclass
class PostGroupDetail:
    group: PostGroup
    platform_posts: List[PlatformPost] = field(default_factory=list)
    media: List[MediaReference] = field(default_factory=list)


def clamp_page(page: Optional[int], limit: Optional[int]) -> Tuple[int, int]:
    page = max(1, page or 1)
    limit = DEFAULT_PAGE_LIMIT if limit is None else min(MAX_PAGE_LIMIT, max(1, limit))
    return page, limit


def validate_platform_settings(settings: Dict[str, Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    """Catch unknown platforms and settings up front instead of at publish time."""
    for platform, values in settings.items():
        if not is_supported(platform):
            raise ValidationError(f"unknown platform '{platform}' in platform_settings")
        if not isinstance(values, dict):
            raise ValidationError(f"platform_settings.{platform} must be an object")
        merge_settings(get_spec(platform), values)
    return settings


def require_future(scheduled_time: datetime, now: datetime) -> datetime:
    if scheduled_time <= now:
        raise ValidationError("scheduled_time must be in the future")
    return scheduled_time


def build_platform_posts(connections: Sequence[ConnectedPlatform]) -> List[PlatformPost]:
    return [
        PlatformPost(connection_id=str(cp.id), platform=cp.platform, position=position)
        for position, cp in enumerate(connections)
    ]


class PostService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.store = PostGroupStore(session)
        self.quota = QuotaService(session)
        self.platforms = PlatformsRepository(session)

    async def _resolve_targets(self, account_id: str, ids) -> List[ConnectedPlatform]:
        connections = await self.platforms.resolve_targets(account_id, [str(i) for i in ids])
        for cp in connections:
            if not is_supported(cp.platform):
                raise ValidationError(f"connection {cp.id} is for unsupported platform '{cp.platform}'")
        return connections

    async def create_group(self, account_id: str, payload, pending_limit: int) -> PostGroupDetail:
        now = utcnow()
        scheduled_time = as_utc(payload.scheduled_time)
        if scheduled_time is not None:
            require_future(scheduled_time, now)
        settings = validate_platform_settings(dict(payload.platform_settings or {}))
        connections = await self._resolve_targets(account_id, payload.target_connection_ids)

        status = PostGroupStatus.scheduled if scheduled_time else PostGroupStatus.draft
        group = PostGroup(
            account_id=account_id,
            content=payload.content or "",
            target_connection_ids=[str(cp.id) for cp in connections],
            scheduled_time=scheduled_time,
            platform_settings=settings,
            status=status.value,
        )
        platform_posts = build_platform_posts(connections)

        try:
            if status == PostGroupStatus.scheduled:
                await self.quota.ensure_counter(account_id)
                await self.quota.reserve(account_id, pending_limit)
            await self.store.add_group(group, platform_posts)
            await self.session.commit()
        except QuotaExceeded:
            await self.session.rollback()
            raise

        logger.info(
            "post_group_created",
            post_group_id=str(group.id),
            account_id=account_id,
            status=group.status,
            targets=len(platform_posts),
        )
        return PostGroupDetail(group=group, platform_posts=platform_posts, media=[])

    async def get_group(self, account_id: str, group_id) -> PostGroupDetail:
        group = await self.store.get_group(group_id, account_id=account_id)
        return PostGroupDetail(
            group=group,
            platform_posts=await self.store.list_platform_posts(group.id),
            media=await self.store.list_media(group.id),
        )

    async def list_groups(
        self,
        account_id: str,
        page: Optional[int] = None,
        limit: Optional[int] = None,
        status: Optional[str] = None,
        platform: Optional[str] = None,
        scheduled_from: Optional[datetime] = None,
        scheduled_to: Optional[datetime] = None,
    ) -> Tuple[List[PostGroup], int, int, int]:
        page, limit = clamp_page(page, limit)
        rows, total = await self.store.list_groups(
            account_id,
            status=status,
            platform=platform,
            scheduled_from=as_utc(scheduled_from),
            scheduled_to=as_utc(scheduled_to),
            offset=(page - 1) * limit,
            limit=limit,
        )
        return rows, total, page, limit

    async def update_group(self, account_id: str, group_id, payload, pending_limit: int) -> PostGroupDetail:
        group = await self.store.get_group(group_id, account_id=account_id)
        current = PostGroupStatus(group.status)
        if current not in EDITABLE_STATUSES:
            raise ConflictError(f"post group is {current.value}; only draft or scheduled groups can be updated")

        provided = payload.model_fields_set
        now = utcnow()
        changes: Dict[str, Any] = {}

        scheduled_time = group.scheduled_time
        if "scheduled_time" in provided:
            new_time = as_utc(payload.scheduled_time)
            if new_time is not None:
                require_future(new_time, now)
                if group.scheduled_time is not None and new_time < group.scheduled_time:
                    raise ValidationError("scheduled_time can only move forward")
            scheduled_time = new_time
            changes["scheduled_time"] = new_time

        if "status" in provided and payload.status is not None:
            target = PostGroupStatus(payload.status)
        elif "scheduled_time" in provided:
            target = PostGroupStatus.scheduled if scheduled_time is not None else PostGroupStatus.draft
        else:
            target = current

        if target == PostGroupStatus.scheduled:
            if scheduled_time is None:
                raise ValidationError("a scheduled post group needs a scheduled_time")
            if current == PostGroupStatus.draft and "scheduled_time" not in provided:
                require_future(scheduled_time, now)
        if target != current:
            changes["status"] = target.value

        if "content" in provided and payload.content is not None:
            changes["content"] = payload.content
        if "platform_settings" in provided and payload.platform_settings is not None:
            changes["platform_settings"] = validate_platform_settings(dict(payload.platform_settings))

        new_connections = None
        if "target_connection_ids" in provided and payload.target_connection_ids is not None:
            new_connections = await self._resolve_targets(account_id, payload.target_connection_ids)
            changes["target_connection_ids"] = [str(cp.id) for cp in new_connections]

        reserving = current == PostGroupStatus.draft and target == PostGroupStatus.scheduled
        releasing = current == PostGroupStatus.scheduled and target == PostGroupStatus.draft
        try:
            if reserving:
                await self.quota.ensure_counter(account_id)
            # the scheduler's claim is authoritative: if it got there first this matches no row
            if not await self.store.update_group_fields(group.id, current, **changes):
                raise ConflictError("post group changed state while updating; it may already be publishing")
            if reserving:
                await self.quota.reserve(account_id, pending_limit)
            elif releasing:
                await self.quota.release(account_id)
            if new_connections is not None:
                media = [m for m in await self.store.list_media(group.id) if m.state != MediaState.failed.value]
                check_media_fits_targets(media, [get_spec(cp.platform) for cp in new_connections])
                await self.store.replace_platform_posts(group.id, build_platform_posts(new_connections))
            await self.session.commit()
        except (ConflictError, QuotaExceeded, ValidationError):
            await self.session.rollback()
            raise

        logger.info(
            "post_group_updated",
            post_group_id=str(group.id),
            account_id=account_id,
            fields=sorted(changes),
            status=target.value,
        )
        await self.session.refresh(group)
        return await self.get_group(account_id, group.id)

    async def delete_group(self, account_id: str, group_id) -> List[str]:
        """Delete the group and its children; returns storage keys to clean up after commit."""
        group = await self.store.get_group(group_id, account_id=account_id)
        current = PostGroupStatus(group.status)
        if current == PostGroupStatus.processing:
            raise ConflictError("post group is being published and can't be deleted")

        media = await self.store.list_media(group.id)
        keys = [m.storage_key for m in media] + [m.converted_key for m in media if m.converted_key]

        try:
            # locks the row and proves the status didn't move under us
            if not await self.store.update_group_fields(group.id, current):
                raise ConflictError("post group changed state while deleting; it may already be publishing")
            if current == PostGroupStatus.scheduled:
                await self.quota.release(account_id)
            await self.store.delete_group(group.id)
            await self.session.commit()
        except ConflictError:
            await self.session.rollback()
            raise

        logger.info("post_group_deleted", post_group_id=str(group.id), account_id=account_id, media=len(media))
        return keys
