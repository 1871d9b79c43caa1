# social_publisher/models/connected_platform.py
from sqlmodel import SQLModel, Field, Column
from typing import Optional
from datetime import datetime
import uuid
from sqlalchemy import String, JSON

from social_publisher.models.post import utcnow


class ConnectedPlatform(SQLModel, table=True):
    """A social account linked by the (external) connection service.

    Rows are written by the OAuth flow that lives outside this service; we only
    read them to resolve a target's platform and credentials.
    """

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    account_id: str = Field(sa_column=Column(String, index=True, nullable=False))
    platform: str = Field(sa_column=Column(String, index=True, nullable=False))
    provider_user_id: Optional[str] = Field(sa_column=Column(String), default=None)
    access_token_enc: str
    meta: Optional[dict] = Field(sa_column=Column(JSON), default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
