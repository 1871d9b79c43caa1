# social_publisher/services/media_service.py
import os
import re
import tempfile
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional, Sequence

import structlog
from sqlmodel.ext.asyncio.session import AsyncSession

from social_publisher.adapters.platforms import PlatformSpec, get_spec, is_supported
from social_publisher.adapters.registry import MediaAttachment
from social_publisher.errors import (
    ConflictError,
    ContentValidationError,
    InvalidMediaRequest,
    PublisherError,
    StorageError,
)
from social_publisher.infrastructure.platforms_repo import PlatformsRepository
from social_publisher.infrastructure.post_store import PostGroupStore
from social_publisher.infrastructure.storage import ObjectStorage
from social_publisher.models.post import (
    ConversionState,
    MediaKind,
    MediaReference,
    MediaState,
    PostGroupStatus,
    utcnow,
)
from social_publisher.services.media_probe import ProbeError, convert_to_jpeg, probe_image, probe_video
from social_publisher.services.state import EDITABLE_STATUSES

logger = structlog.get_logger(__name__)

UPLOAD_URL_TTL_SECONDS = int(os.getenv("UPLOAD_URL_TTL_SECONDS", "3600"))

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


@dataclass
class UploadTicket:
    media_id: uuid.UUID
    upload_url: str
    public_url: str
    expires_at: datetime
    method: str = "PUT"


def safe_file_name(file_name: str) -> str:
    base = os.path.basename(file_name.strip().replace("\\", "/"))
    return _UNSAFE_CHARS.sub("_", base) or "upload"


def image_cap(specs: Iterable[PlatformSpec]) -> int:
    """Smallest image cap among targets that take images at all; 0 if none do."""
    caps = [spec.max_images for spec in specs if spec.accepts_images]
    return min(caps) if caps else 0


def check_media_fits_targets(existing: Sequence[MediaReference], specs: Sequence[PlatformSpec]) -> None:
    """Media already on a group must stay within the image cap of its new targets."""
    images = sum(1 for m in existing if m.kind == MediaKind.image.value)
    if not images:
        return
    cap = image_cap(specs)
    if cap == 0:
        raise InvalidMediaRequest("the post group has images but none of the new target platforms accept them")
    if images > cap:
        raise InvalidMediaRequest(f"the post group has {images} images; these target platforms allow {cap}")


def check_media_constraints(spec: PlatformSpec, media: Sequence[MediaAttachment]) -> None:
    """Re-check extracted metadata against one platform's rules before publishing."""
    name = spec.platform.value
    for item in media:
        if item.state != MediaState.ready.value:
            raise ContentValidationError(name, f"{item.kind} is not ready ({item.state})")

        if item.kind == MediaKind.image.value:
            if spec.rejects_webp and item.is_webp and not item.converted_url:
                raise ContentValidationError(name, "WebP images are not accepted and no JPEG conversion exists")
            continue

        fps = item.metadata.get("fps")
        if spec.min_video_fps and fps is not None and fps < spec.min_video_fps:
            raise ContentValidationError(name, f"video frame rate {fps} is below the minimum of {spec.min_video_fps}")
        duration = item.metadata.get("duration")
        if spec.max_video_duration and duration is not None and duration > spec.max_video_duration:
            raise ContentValidationError(
                name, f"video is {duration}s long; the maximum is {spec.max_video_duration}s"
            )
        ratio = item.metadata.get("aspect_ratio")
        if spec.aspect_ratio_range and ratio is not None:
            low, high = spec.aspect_ratio_range
            if not low <= ratio <= high:
                raise ContentValidationError(name, f"aspect ratio {ratio} outside {low}-{high}")


async def cleanup_media(storage_provider: Callable[[], ObjectStorage], keys: Sequence[str]) -> None:
    """Best-effort removal of stored files after their rows are gone; failures are only logged."""
    try:
        storage = storage_provider()
    except Exception as exc:
        logger.warning("media_cleanup_skipped", keys=list(keys), error=str(exc))
        return
    for key in keys:
        try:
            await storage.delete(key)
        except Exception as exc:
            logger.warning("media_cleanup_failed", key=key, error=str(exc))
        else:
            logger.info("media_cleaned_up", key=key)


class MediaService:
    def __init__(self, session: AsyncSession, storage: ObjectStorage, upload_ttl: int = UPLOAD_URL_TTL_SECONDS):
        self.session = session
        self.storage = storage
        self.upload_ttl = upload_ttl
        self.store = PostGroupStore(session)

    async def register_upload(
        self,
        account_id: str,
        post_group_id,
        file_name: str,
        declared_content_type: str,
        kind: str,
    ) -> UploadTicket:
        try:
            kind = MediaKind(kind).value
        except ValueError:
            raise InvalidMediaRequest(f"kind must be 'image' or 'video', got '{kind}'")
        if not file_name or not file_name.strip():
            raise InvalidMediaRequest("file_name is required")
        major = (declared_content_type or "").split("/", 1)[0].strip().lower()
        if major != kind:
            raise InvalidMediaRequest(f"content type '{declared_content_type}' does not match kind '{kind}'")

        group = await self.store.get_group(post_group_id, account_id=account_id)
        if PostGroupStatus(group.status) not in EDITABLE_STATUSES:
            raise ConflictError(f"media can't be attached to a {group.status} post group")

        try:
            # takes the group row first so registrations on one group check and insert one at a time
            if not await self.store.update_group_fields(group.id, group.status):
                raise ConflictError("post group changed state while attaching media")
            await self.session.refresh(group)
            existing = [m for m in await self.store.list_media(group.id) if m.state != MediaState.failed.value]
            self._check_combination(kind, existing, await self._target_specs(group.target_connection_ids))

            media_id = uuid.uuid4()
            key = f"{account_id}/{group.id}/{media_id}/{safe_file_name(file_name)}"
            expires = timedelta(seconds=self.upload_ttl)
            upload_url = await self.storage.generate_upload_url(key, declared_content_type, expires)

            ref = MediaReference(
                id=media_id,
                post_group_id=group.id,
                account_id=account_id,
                kind=kind,
                file_name=file_name,
                content_type=declared_content_type,
                storage_key=key,
                public_url=self.storage.public_url(key),
            )
            await self.store.add_media(ref)
            await self.session.commit()
        except PublisherError:
            await self.session.rollback()
            raise
        logger.info("media_upload_registered", media_id=str(media_id), post_group_id=str(group.id), kind=kind)
        return UploadTicket(
            media_id=media_id,
            upload_url=upload_url,
            public_url=ref.public_url,
            expires_at=utcnow() + expires,
        )

    async def _target_specs(self, connection_ids: Sequence[str]) -> list:
        connections = await PlatformsRepository(self.session).get_many(connection_ids)
        return [get_spec(cp.platform) for cp in connections.values() if is_supported(cp.platform)]

    @staticmethod
    def _check_combination(kind: str, existing: Sequence[MediaReference], specs: Sequence[PlatformSpec]) -> None:
        videos = sum(1 for m in existing if m.kind == MediaKind.video.value)
        images = sum(1 for m in existing if m.kind == MediaKind.image.value)

        if kind == MediaKind.video.value:
            if videos:
                raise InvalidMediaRequest("a post group can hold only one video")
            if images:
                raise InvalidMediaRequest("a video can't be combined with images")
            return

        if videos:
            raise InvalidMediaRequest("images can't be combined with a video")
        cap = image_cap(specs)
        if cap == 0:
            raise InvalidMediaRequest("none of the target platforms accept images")
        if images >= cap:
            raise InvalidMediaRequest(f"image limit of {cap} reached for these target platforms")

    async def on_upload_complete(self, media_id, account_id: Optional[str] = None) -> MediaReference:
        ref = await self.store.get_media(media_id, account_id=account_id)
        if ref.state == MediaState.ready.value:
            return ref

        try:
            data = await self.storage.download(ref.storage_key)
        except StorageError as exc:
            logger.warning("media_upload_not_available", media_id=str(ref.id), error=str(exc))
            return ref

        try:
            if ref.kind == MediaKind.image.value:
                await self._process_image(ref, data)
            else:
                ref.media_metadata = await self._probe_video_bytes(data)
            ref.state = MediaState.ready.value
            ref.error = None
            logger.info("media_ready", media_id=str(ref.id), kind=ref.kind, metadata=ref.media_metadata)
        except ProbeError as exc:
            ref.state = MediaState.failed.value
            ref.error = str(exc)
            logger.warning("media_processing_failed", media_id=str(ref.id), error=str(exc))

        await self.store.update_media(ref)
        await self.session.commit()
        return ref

    async def _process_image(self, ref: MediaReference, data: bytes) -> None:
        meta = probe_image(data)
        ref.media_metadata = meta
        if (meta.get("format") or "").upper() != "WEBP":
            ref.conversion_state = ConversionState.not_needed.value
            return

        ref.conversion_state = ConversionState.pending.value
        converted_key = f"{ref.storage_key}.jpg"
        try:
            jpeg = convert_to_jpeg(data)
            await self.storage.upload(converted_key, jpeg, "image/jpeg")
        except (ProbeError, StorageError) as exc:
            ref.conversion_state = ConversionState.failed.value
            logger.warning("media_conversion_failed", media_id=str(ref.id), error=str(exc))
            return
        ref.converted_key = converted_key
        ref.converted_url = self.storage.public_url(converted_key)
        ref.conversion_state = ConversionState.converted.value
        logger.info("media_converted", media_id=str(ref.id), target="jpeg")

    async def _probe_video_bytes(self, data: bytes) -> dict:
        with tempfile.NamedTemporaryFile(suffix=".video") as tmp:
            tmp.write(data)
            tmp.flush()
            return await probe_video(tmp.name)
