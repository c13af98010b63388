"""
ProofMark — Auth helpers (signed challenge + JWT)

A caller proves control of an Algorand account by signing a one-time
challenge with its key; the backend then issues a JWT whose ``sub`` is the
account address. That address is the identity the registry sees.

Tokens are only issued and accepted while JWT_SECRET_KEY is set; without it
every authenticated endpoint answers 503.
"""

import logging
import os
import secrets
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Optional

from algosdk import encoding, util
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
EXPIRE_DAYS = 7
CHALLENGE_TTL_SECONDS = 300

# address -> (challenge, expires_at)
_challenges: dict[str, tuple[str, float]] = {}
_challenges_lock = threading.Lock()

bearer_scheme = HTTPBearer(auto_error=False)


# ── Pydantic models ──────────────────────────────────────────────────────────

class ChallengeRequest(BaseModel):
    address: str


class LoginRequest(BaseModel):
    address: str
    signature: str


# ── Challenge helpers ────────────────────────────────────────────────────────

def issue_challenge(address: str) -> str:
    """Create (or replace) the pending login challenge for ``address``."""
    if not encoding.is_valid_address(address):
        raise ValueError(f"Not a valid Algorand address: {address}")
    challenge = f"ProofMark login {secrets.token_hex(16)}"
    with _challenges_lock:
        _challenges[address] = (challenge, time.time() + CHALLENGE_TTL_SECONDS)
    return challenge


def consume_challenge(address: str) -> Optional[str]:
    """Pop the pending challenge for ``address``; None if missing or expired."""
    with _challenges_lock:
        entry = _challenges.pop(address, None)
    if entry is None:
        return None
    challenge, expires_at = entry
    if time.time() > expires_at:
        return None
    return challenge


def verify_signature(address: str, challenge: str, signature: str) -> bool:
    """Check a base64 signature produced by ``algosdk.util.sign_bytes`` over the challenge."""
    try:
        return bool(util.verify_bytes(challenge.encode("utf-8"), signature, address))
    except Exception as e:
        logger.debug(f"Signature check failed for {address}: {e}")
        return False


# ── JWT helpers ──────────────────────────────────────────────────────────────

class AuthNotConfigured(RuntimeError):
    """JWT_SECRET_KEY is unset: no token can be issued or trusted."""


def _secret() -> str:
    secret = os.getenv("JWT_SECRET_KEY", "")
    if not secret:
        raise AuthNotConfigured("JWT_SECRET_KEY is not set")
    return secret


def create_token(address: str) -> str:
    payload = {
        "sub": address,
        "exp": datetime.now(timezone.utc) + timedelta(days=EXPIRE_DAYS),
    }
    return jwt.encode(payload, _secret(), algorithm=ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    try:
        return jwt.decode(token, _secret(), algorithms=[ALGORITHM])
    except JWTError:
        return None


async def get_caller(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    """FastAPI dependency: the account address carried by the bearer token."""
    if credentials is None:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    try:
        claims = decode_token(credentials.credentials)
    except AuthNotConfigured:
        logger.error("Rejected authenticated request: JWT_SECRET_KEY is not set")
        raise HTTPException(status_code=503, detail="Authentication is not configured")
    if not claims or not claims.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return claims["sub"]
