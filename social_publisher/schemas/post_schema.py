# social_publisher/schemas/post_schema.py
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Any, Dict, List, Literal, Optional
import uuid
from datetime import datetime

MAX_CONTENT_LENGTH = 100_000


class PostGroupCreate(BaseModel):
    content: str = Field(default="", max_length=MAX_CONTENT_LENGTH)
    target_connection_ids: List[uuid.UUID] = Field(min_length=1)
    scheduled_time: Optional[datetime] = None
    platform_settings: Dict[str, Dict[str, Any]] = Field(default_factory=dict)

    @field_validator("target_connection_ids")
    @classmethod
    def no_duplicate_targets(cls, value: List[uuid.UUID]) -> List[uuid.UUID]:
        if len(set(value)) != len(value):
            raise ValueError("target_connection_ids must not repeat")
        return value


class PostGroupUpdate(BaseModel):
    """Every field optional; only the fields present in the request are applied."""

    content: Optional[str] = Field(default=None, max_length=MAX_CONTENT_LENGTH)
    target_connection_ids: Optional[List[uuid.UUID]] = Field(default=None, min_length=1)
    scheduled_time: Optional[datetime] = None
    platform_settings: Optional[Dict[str, Dict[str, Any]]] = None
    status: Optional[Literal["draft", "scheduled"]] = None

    @field_validator("target_connection_ids")
    @classmethod
    def no_duplicate_targets(cls, value: Optional[List[uuid.UUID]]) -> Optional[List[uuid.UUID]]:
        if value is not None and len(set(value)) != len(value):
            raise ValueError("target_connection_ids must not repeat")
        return value


class PlatformPostRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    connection_id: str
    platform: str
    position: int
    status: str
    platform_post_id: Optional[str]
    platform_post_ids: List[str]
    error: Optional[Dict[str, Any]]
    attempts: int
    payload: Optional[List[Dict[str, Any]]]
    published_at: Optional[datetime]


class MediaRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    kind: str
    file_name: str
    content_type: str
    public_url: str
    state: str
    conversion_state: str
    converted_url: Optional[str]
    media_metadata: Dict[str, Any]
    error: Optional[str]


class PostGroupRead(BaseModel):
    id: uuid.UUID
    account_id: str
    content: str
    target_connection_ids: List[str]
    scheduled_time: Optional[datetime]
    platform_settings: Dict[str, Any]
    status: str
    created_at: datetime
    updated_at: datetime
    platform_posts: List[PlatformPostRead] = Field(default_factory=list)
    media: List[MediaRead] = Field(default_factory=list)


class PostGroupSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    content: str
    scheduled_time: Optional[datetime]
    status: str
    target_connection_ids: List[str]
    created_at: datetime
    updated_at: datetime


class PostGroupPage(BaseModel):
    items: List[PostGroupSummary]
    total: int
    page: int
    limit: int


class MediaUploadCreate(BaseModel):
    file_name: str = Field(min_length=1, max_length=255)
    content_type: str = Field(min_length=3, max_length=127)
    kind: Literal["image", "video"]


class MediaUploadRead(BaseModel):
    media_id: uuid.UUID
    upload_url: str
    public_url: str
    expires_at: datetime
    method: str
