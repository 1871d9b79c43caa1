# social_publisher/routers/media_router.py
from typing import Callable

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlmodel.ext.asyncio.session import AsyncSession

from social_publisher.dependencies.auth import CurrentAccount
from social_publisher.dependencies.db import get_session_dep, get_session_factory
from social_publisher.dependencies.rate_limit import rate_limited_account
from social_publisher.dependencies.storage import get_storage_provider
from social_publisher.infrastructure.post_store import PostGroupStore
from social_publisher.infrastructure.storage import ObjectStorage
from social_publisher.schemas.post_schema import MediaRead, MediaUploadCreate, MediaUploadRead
from social_publisher.services.media_service import MediaService

router = APIRouter(tags=["media"])
logger = structlog.get_logger(__name__)


async def process_upload(session_factory: Callable, storage: ObjectStorage, media_id, account_id: str) -> None:
    async with session_factory() as session:
        try:
            await MediaService(session, storage).on_upload_complete(media_id, account_id=account_id)
        except Exception:
            logger.exception("media_processing_crashed", media_id=str(media_id))


@router.post(
    "/post-groups/{group_id}/media",
    response_model=MediaUploadRead,
    status_code=status.HTTP_201_CREATED,
)
async def register_media_upload(
    group_id: str,
    payload: MediaUploadCreate,
    session: AsyncSession = Depends(get_session_dep),
    account: CurrentAccount = Depends(rate_limited_account),
    storage_provider: Callable = Depends(get_storage_provider),
):
    """Returns a signed URL; the client PUTs the bytes there, then calls /complete."""
    svc = MediaService(session, storage_provider())
    ticket = await svc.register_upload(
        account.account_id,
        group_id,
        payload.file_name,
        payload.content_type,
        payload.kind,
    )
    return MediaUploadRead(
        media_id=ticket.media_id,
        upload_url=ticket.upload_url,
        public_url=ticket.public_url,
        expires_at=ticket.expires_at,
        method=ticket.method,
    )


@router.post("/media/{media_id}/complete", response_model=MediaRead, status_code=status.HTTP_202_ACCEPTED)
async def complete_media_upload(
    media_id: str,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session_dep),
    account: CurrentAccount = Depends(rate_limited_account),
    storage_provider: Callable = Depends(get_storage_provider),
    session_factory: Callable = Depends(get_session_factory),
):
    ref = await PostGroupStore(session).get_media(media_id, account_id=account.account_id)
    background_tasks.add_task(process_upload, session_factory, storage_provider(), ref.id, account.account_id)
    return MediaRead.model_validate(ref)
