# social_publisher/infrastructure/platforms_repo.py
from typing import Dict, List, Optional, Sequence
import uuid

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from social_publisher.errors import NotFound
from social_publisher.models.connected_platform import ConnectedPlatform


def _as_uuid(value) -> Optional[uuid.UUID]:
    try:
        return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
    except ValueError:
        return None


class PlatformsRepository:
    """
    Read access to ConnectedPlatform rows.
    Connections are written by the account service's OAuth flow; create() is its sync entry point.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, id: uuid.UUID) -> Optional[ConnectedPlatform]:
        q = select(ConnectedPlatform).where(ConnectedPlatform.id == id)
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def list_by_account(self, account_id: str) -> List[ConnectedPlatform]:
        q = select(ConnectedPlatform).where(ConnectedPlatform.account_id == account_id)
        res = await self.session.execute(q)
        return list(res.scalars().all())

    async def get_many(self, ids: Sequence[str]) -> Dict[str, ConnectedPlatform]:
        wanted = [u for u in (_as_uuid(i) for i in ids) if u is not None]
        if not wanted:
            return {}
        q = select(ConnectedPlatform).where(ConnectedPlatform.id.in_(wanted))
        res = await self.session.execute(q)
        return {str(cp.id): cp for cp in res.scalars().all()}

    async def resolve_targets(self, account_id: str, ids: Sequence[str]) -> List[ConnectedPlatform]:
        """Connections for ``ids`` in request order; unknown or foreign ids are NotFound."""
        found = await self.get_many(ids)
        resolved = []
        for raw in ids:
            cp = found.get(str(_as_uuid(raw))) if _as_uuid(raw) else None
            if cp is None or cp.account_id != account_id:
                raise NotFound(f"platform connection {raw} not found")
            resolved.append(cp)
        return resolved
