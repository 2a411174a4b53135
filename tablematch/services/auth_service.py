"""
Authentication service: bearer token issuance and verification.

Tokens are HS256 JWTs whose ``user_id`` claim identifies the caller.
Credential issuance flows (login, messaging-channel sign-in) live outside this
service; it only mints and checks the tokens they hand out.
"""

import os
import logging
from datetime import timedelta
from typing import Optional, Dict

import jwt
from dotenv import load_dotenv

from tablematch.utils.datetime_utils import utcnow

load_dotenv()

logger = logging.getLogger(__name__)

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRATION_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRATION_MINUTES", "60"))


def create_access_token(data: Dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a signed access token.

    Args:
        data: Claims to encode (must include ``user_id``)
        expires_delta: Optional lifetime override

    Returns:
        Encoded JWT string
    """
    to_encode = dict(data)
    now = utcnow()
    expire = now + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRATION_MINUTES))
    to_encode.update({"exp": expire, "iat": now})
    return jwt.encode(to_encode, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def verify_token(token: str) -> Optional[Dict]:
    """
    Verify and decode an access token.

    Returns:
        Decoded payload, or None if the token is expired or invalid
    """
    try:
        return jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.debug("Rejected expired access token")
        return None
    except jwt.InvalidTokenError as e:
        logger.debug(f"Rejected invalid access token: {e}")
        return None
