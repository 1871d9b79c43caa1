# social_publisher/infrastructure/security.py
import os
from typing import Optional

import structlog
from cryptography.fernet import Fernet, InvalidToken

logger = structlog.get_logger(__name__)

OAUTH_TOKEN_KEY = os.getenv("OAUTH_TOKEN_KEY")  # must be a base64 key for Fernet, set in prod

if not OAUTH_TOKEN_KEY:
    # dev fallback (not for production)
    OAUTH_TOKEN_KEY = Fernet.generate_key().decode()

fernet = Fernet(OAUTH_TOKEN_KEY.encode())


def encrypt_token(plaintext: Optional[str]) -> Optional[str]:
    if plaintext is None:
        return None
    return fernet.encrypt(plaintext.encode()).decode()


def decrypt_token(ciphertext: Optional[str]) -> Optional[str]:
    if not ciphertext:
        return None
    try:
        return fernet.decrypt(ciphertext.encode()).decode()
    except InvalidToken:
        logger.warning("connection_token_decrypt_failed")
        return None
