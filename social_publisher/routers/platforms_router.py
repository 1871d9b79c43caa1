# social_publisher/routers/platforms_router.py
from typing import Any, Dict, List

from fastapi import APIRouter, Depends
from sqlmodel.ext.asyncio.session import AsyncSession

from social_publisher.adapters.platforms import REGISTRY
from social_publisher.dependencies.auth import CurrentAccount
from social_publisher.dependencies.db import get_session_dep
from social_publisher.dependencies.rate_limit import rate_limited_account
from social_publisher.infrastructure.platforms_repo import PlatformsRepository

router = APIRouter(prefix="/platforms", tags=["platforms"])


@router.get("")
async def list_platforms() -> List[Dict[str, Any]]:
    return [spec.describe() for spec in REGISTRY.values()]


@router.get("/connections")
async def list_connections(
    session: AsyncSession = Depends(get_session_dep),
    account: CurrentAccount = Depends(rate_limited_account),
) -> List[Dict[str, Any]]:
    """The caller's connected accounts, usable as target_connection_ids."""
    connections = await PlatformsRepository(session).list_by_account(account.account_id)
    return [
        {
            "id": str(cp.id),
            "platform": cp.platform,
            "provider_user_id": cp.provider_user_id,
            "connected_at": cp.created_at.isoformat(),
        }
        for cp in connections
    ]
