# social_publisher/routers/post_router.py
from datetime import datetime
from typing import Callable, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlmodel.ext.asyncio.session import AsyncSession

from social_publisher.adapters.platforms import Platform
from social_publisher.dependencies.auth import CurrentAccount
from social_publisher.dependencies.db import get_session_dep
from social_publisher.dependencies.rate_limit import rate_limited_account
from social_publisher.dependencies.storage import get_storage_provider
from social_publisher.models.post import PostGroupStatus
from social_publisher.schemas.post_schema import (
    MediaRead,
    PlatformPostRead,
    PostGroupCreate,
    PostGroupPage,
    PostGroupRead,
    PostGroupSummary,
    PostGroupUpdate,
)
from social_publisher.services.media_service import cleanup_media
from social_publisher.services.post_service import PostGroupDetail, PostService

router = APIRouter(prefix="/post-groups", tags=["post-groups"])


def to_read(detail: PostGroupDetail) -> PostGroupRead:
    g = detail.group
    return PostGroupRead(
        id=g.id,
        account_id=g.account_id,
        content=g.content,
        target_connection_ids=list(g.target_connection_ids or []),
        scheduled_time=g.scheduled_time,
        platform_settings=dict(g.platform_settings or {}),
        status=g.status,
        created_at=g.created_at,
        updated_at=g.updated_at,
        platform_posts=[PlatformPostRead.model_validate(pp) for pp in detail.platform_posts],
        media=[MediaRead.model_validate(m) for m in detail.media],
    )


@router.post("", response_model=PostGroupRead, status_code=status.HTTP_201_CREATED)
async def create_post_group(
    payload: PostGroupCreate,
    session: AsyncSession = Depends(get_session_dep),
    account: CurrentAccount = Depends(rate_limited_account),
):
    """Accepts the group; publishing outcomes show up later on GET."""
    svc = PostService(session)
    detail = await svc.create_group(account.account_id, payload, account.pending_limit)
    return to_read(detail)


@router.get("", response_model=PostGroupPage)
async def list_post_groups(
    page: int = Query(1),
    limit: int = Query(20),
    status_filter: Optional[PostGroupStatus] = Query(None, alias="status"),
    platform: Optional[Platform] = None,
    scheduled_from: Optional[datetime] = None,
    scheduled_to: Optional[datetime] = None,
    session: AsyncSession = Depends(get_session_dep),
    account: CurrentAccount = Depends(rate_limited_account),
):
    svc = PostService(session)
    rows, total, page, limit = await svc.list_groups(
        account.account_id,
        page=page,
        limit=limit,
        status=status_filter.value if status_filter else None,
        platform=platform.value if platform else None,
        scheduled_from=scheduled_from,
        scheduled_to=scheduled_to,
    )
    return PostGroupPage(
        items=[PostGroupSummary.model_validate(row) for row in rows],
        total=total,
        page=page,
        limit=limit,
    )


@router.get("/{group_id}", response_model=PostGroupRead)
async def get_post_group(
    group_id: str,
    session: AsyncSession = Depends(get_session_dep),
    account: CurrentAccount = Depends(rate_limited_account),
):
    svc = PostService(session)
    return to_read(await svc.get_group(account.account_id, group_id))


@router.put("/{group_id}", response_model=PostGroupRead)
async def update_post_group(
    group_id: str,
    payload: PostGroupUpdate,
    session: AsyncSession = Depends(get_session_dep),
    account: CurrentAccount = Depends(rate_limited_account),
):
    svc = PostService(session)
    detail = await svc.update_group(account.account_id, group_id, payload, account.pending_limit)
    return to_read(detail)


@router.delete("/{group_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_post_group(
    group_id: str,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session_dep),
    account: CurrentAccount = Depends(rate_limited_account),
    storage_provider: Callable = Depends(get_storage_provider),
):
    svc = PostService(session)
    keys = await svc.delete_group(account.account_id, group_id)
    if keys:
        # runs after the response; storage failures are logged, never returned
        background_tasks.add_task(cleanup_media, storage_provider, keys)
    return None
