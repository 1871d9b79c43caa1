# social_publisher/infrastructure/post_store.py
from datetime import datetime
from typing import List, Optional, Sequence, Tuple
import uuid

import structlog
from sqlalchemy import delete, func, update
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from social_publisher.errors import NotFound
from social_publisher.models.post import (
    MediaReference,
    PlatformPost,
    PostGroup,
    PostGroupStatus,
    utcnow,
)
from social_publisher.services.state import can_transition_group, can_transition_platform_post

logger = structlog.get_logger(__name__)


def parse_id(value, what: str = "post group") -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise NotFound(f"{what} {value} not found")


class PostGroupStore:
    """
    Persistence for post groups, their platform posts and media references.

    Methods only issue statements; the caller owns the transaction and decides
    when to commit. Status changes are single conditional UPDATEs so concurrent
    writers (API, scheduler instances, orchestrator) never need client-side locks.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    # --- groups ---
    async def add_group(self, group: PostGroup, platform_posts: Sequence[PlatformPost] = ()) -> PostGroup:
        self.session.add(group)
        await self.session.flush()
        for pp in platform_posts:
            pp.post_group_id = group.id
            self.session.add(pp)
        await self.session.flush()
        return group

    async def get_group(self, group_id, account_id: Optional[str] = None) -> PostGroup:
        gid = parse_id(group_id)
        q = select(PostGroup).where(PostGroup.id == gid)
        res = await self.session.execute(q)
        group = res.scalar_one_or_none()
        if group is None or (account_id is not None and group.account_id != account_id):
            raise NotFound(f"post group {group_id} not found")
        return group

    async def list_groups(
        self,
        account_id: str,
        status: Optional[str] = None,
        platform: Optional[str] = None,
        scheduled_from: Optional[datetime] = None,
        scheduled_to: Optional[datetime] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> Tuple[List[PostGroup], int]:
        conditions = [PostGroup.account_id == account_id]
        if status:
            conditions.append(PostGroup.status == status)
        if platform:
            conditions.append(
                PostGroup.id.in_(select(PlatformPost.post_group_id).where(PlatformPost.platform == platform))
            )
        if scheduled_from:
            conditions.append(PostGroup.scheduled_time >= scheduled_from)
        if scheduled_to:
            conditions.append(PostGroup.scheduled_time <= scheduled_to)

        total_q = select(func.count()).select_from(PostGroup).where(*conditions)
        total = (await self.session.execute(total_q)).scalar_one()

        q = (
            select(PostGroup)
            .where(*conditions)
            .order_by(PostGroup.created_at.desc(), PostGroup.id)
            .offset(offset)
            .limit(limit)
        )
        res = await self.session.execute(q)
        return list(res.scalars().all()), total

    async def update_group_fields(self, group_id: uuid.UUID, expected_status, **fields) -> bool:
        """Write editable fields only if the group is still in ``expected_status``."""
        fields["updated_at"] = utcnow()
        q = (
            update(PostGroup)
            .where(PostGroup.id == group_id, PostGroup.status == PostGroupStatus(expected_status).value)
            .values(**fields)
            .execution_options(synchronize_session=False)
        )
        res = await self.session.execute(q)
        return res.rowcount == 1

    async def compare_and_set_status(self, group_id: uuid.UUID, expected, new, **fields) -> bool:
        expected, new = PostGroupStatus(expected), PostGroupStatus(new)
        if not can_transition_group(expected, new):
            raise ValueError(f"illegal post group transition {expected.value} -> {new.value}")
        return await self.update_group_fields(group_id, expected, status=new.value, **fields)

    async def due_group_ids(self, now: datetime, limit: int = 100) -> List[uuid.UUID]:
        q = (
            select(PostGroup.id)
            .where(
                PostGroup.status == PostGroupStatus.scheduled.value,
                PostGroup.scheduled_time.is_not(None),
                PostGroup.scheduled_time <= now,
            )
            .order_by(PostGroup.scheduled_time)
            .limit(limit)
        )
        res = await self.session.execute(q)
        return list(res.scalars().all())

    async def delete_group(self, group_id: uuid.UUID) -> None:
        await self.session.execute(delete(PlatformPost).where(PlatformPost.post_group_id == group_id))
        await self.session.execute(delete(MediaReference).where(MediaReference.post_group_id == group_id))
        await self.session.execute(delete(PostGroup).where(PostGroup.id == group_id))

    # --- platform posts ---
    async def list_platform_posts(self, group_id: uuid.UUID) -> List[PlatformPost]:
        q = select(PlatformPost).where(PlatformPost.post_group_id == group_id).order_by(PlatformPost.position)
        res = await self.session.execute(q)
        return list(res.scalars().all())

    async def replace_platform_posts(self, group_id: uuid.UUID, platform_posts: Sequence[PlatformPost]) -> None:
        await self.session.execute(delete(PlatformPost).where(PlatformPost.post_group_id == group_id))
        for pp in platform_posts:
            pp.post_group_id = group_id
            self.session.add(pp)
        await self.session.flush()

    async def transition_platform_post(self, pp_id: uuid.UUID, expected, new, **fields) -> bool:
        if not can_transition_platform_post(expected, new):
            raise ValueError(f"illegal platform post transition {expected} -> {new}")
        fields["updated_at"] = utcnow()
        q = (
            update(PlatformPost)
            .where(PlatformPost.id == pp_id, PlatformPost.status == str(getattr(expected, "value", expected)))
            .values(status=str(getattr(new, "value", new)), **fields)
            .execution_options(synchronize_session=False)
        )
        res = await self.session.execute(q)
        return res.rowcount == 1

    # --- media ---
    async def add_media(self, ref: MediaReference) -> MediaReference:
        self.session.add(ref)
        await self.session.flush()
        return ref

    async def list_media(self, group_id: uuid.UUID) -> List[MediaReference]:
        q = select(MediaReference).where(MediaReference.post_group_id == group_id).order_by(MediaReference.created_at)
        res = await self.session.execute(q)
        return list(res.scalars().all())

    async def get_media(self, media_id, account_id: Optional[str] = None) -> MediaReference:
        mid = parse_id(media_id, "media")
        res = await self.session.execute(select(MediaReference).where(MediaReference.id == mid))
        ref = res.scalar_one_or_none()
        if ref is None or (account_id is not None and ref.account_id != account_id):
            raise NotFound(f"media {media_id} not found")
        return ref

    async def update_media(self, ref: MediaReference) -> MediaReference:
        self.session.add(ref)
        await self.session.flush()
        return ref
