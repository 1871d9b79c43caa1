# social_publisher/models/post.py
from sqlmodel import SQLModel, Field, Column
from typing import Optional, List
from enum import Enum
import uuid
from datetime import datetime, timezone
from sqlalchemy import String, JSON, Text, DateTime


def utcnow() -> datetime:
    """Naive UTC now; every timestamp column stores naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class PostGroupStatus(str, Enum):
    draft = "draft"
    scheduled = "scheduled"
    processing = "processing"
    published = "published"
    partially_published = "partially_published"
    failed = "failed"


class PlatformPostStatus(str, Enum):
    pending = "pending"
    processing = "processing"
    published = "published"
    failed = "failed"


class MediaKind(str, Enum):
    image = "image"
    video = "video"


class MediaState(str, Enum):
    pending_upload = "pending_upload"
    ready = "ready"
    failed = "failed"


class ConversionState(str, Enum):
    not_needed = "not_needed"
    pending = "pending"
    converted = "converted"
    failed = "failed"


class PostGroup(SQLModel, table=True):
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    account_id: str = Field(sa_column=Column(String, index=True, nullable=False))
    content: str = Field(default="", sa_column=Column(Text, nullable=False))
    target_connection_ids: List[str] = Field(sa_column=Column(JSON), default_factory=list)
    scheduled_time: Optional[datetime] = Field(default=None, sa_column=Column(DateTime, index=True))
    platform_settings: dict = Field(sa_column=Column(JSON), default_factory=dict)
    status: str = Field(default=PostGroupStatus.draft.value, sa_column=Column(String, index=True, nullable=False))
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class PlatformPost(SQLModel, table=True):
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    post_group_id: uuid.UUID = Field(foreign_key="postgroup.id", index=True)
    connection_id: str = Field(sa_column=Column(String, nullable=False))
    platform: str = Field(sa_column=Column(String, index=True, nullable=False))
    position: int = Field(default=0)
    payload: Optional[list] = Field(sa_column=Column(JSON), default=None)  # adapted units
    status: str = Field(default=PlatformPostStatus.pending.value, sa_column=Column(String, nullable=False))
    platform_post_id: Optional[str] = Field(default=None)
    platform_post_ids: List[str] = Field(sa_column=Column(JSON), default_factory=list)
    error: Optional[dict] = Field(sa_column=Column(JSON), default=None)
    attempts: int = Field(default=0)
    published_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=utcnow)


class MediaReference(SQLModel, table=True):
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    post_group_id: uuid.UUID = Field(foreign_key="postgroup.id", index=True)
    account_id: str = Field(sa_column=Column(String, index=True, nullable=False))
    kind: str = Field(sa_column=Column(String, nullable=False))
    file_name: str
    content_type: str
    storage_key: str  # object storage path
    public_url: str
    state: str = Field(default=MediaState.pending_upload.value, sa_column=Column(String, nullable=False))
    conversion_state: str = Field(default=ConversionState.not_needed.value, sa_column=Column(String, nullable=False))
    converted_key: Optional[str] = None
    converted_url: Optional[str] = None
    media_metadata: dict = Field(sa_column=Column(JSON), default_factory=dict)
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class QuotaCounter(SQLModel, table=True):
    account_id: str = Field(sa_column=Column(String, primary_key=True))
    pending_count: int = Field(default=0)
    updated_at: datetime = Field(default_factory=utcnow)
