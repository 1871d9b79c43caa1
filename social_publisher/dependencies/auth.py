# social_publisher/dependencies/auth.py
import os
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
import structlog
from structlog.contextvars import bind_contextvars

from social_publisher.services.quota import plan_limit

logger = structlog.get_logger(__name__)

SECRET_KEY = os.getenv("SECRET_KEY", "change_me_now")
ALGORITHM = os.getenv("ALGORITHM", "HS256")

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass
class CurrentAccount:
    account_id: str
    credential: str
    plan: Optional[str] = None

    @property
    def pending_limit(self) -> int:
        return plan_limit(self.plan)


async def get_current_account(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> CurrentAccount:
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="missing bearer token")
    try:
        payload = jwt.decode(credentials.credentials, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.warning("token_decode_failed", error=str(e))
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid token")

    account_id = payload.get("sub")
    if not account_id or payload.get("type", "access") != "access":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid token")

    bind_contextvars(account_id=account_id)
    return CurrentAccount(account_id=str(account_id), credential=credentials.credentials, plan=payload.get("plan"))
