"""
📅 DATECAST · One date, many guesses. The median decides.

Submitter identity helpers: network fingerprints, identity tokens, bot verification.
"""

import hmac
import hashlib
import logging
import uuid
from typing import Optional

import httpx
from fastapi import Request

from datecast.config import settings

logger = logging.getLogger(__name__)


def fingerprint_address(address: str, salt: Optional[str] = None) -> str:
    """
    Keyed HMAC-SHA256 fingerprint of a network address.

    Args:
        address: Client network address
        salt: Secret key (defaults to FINGERPRINT_SALT)

    Returns:
        Hex-encoded fingerprint
    """
    salt = salt or settings.fingerprint_salt

    return hmac.new(
        salt.encode("utf-8"),
        address.encode("utf-8"),
        hashlib.sha256
    ).hexdigest()


def new_identity_token() -> str:
    """Opaque random identity token."""
    return str(uuid.uuid4())


def is_valid_identity_token(token: Optional[str]) -> bool:
    """Accept only tokens shaped like the ones we issue."""
    if not token or len(token) > 64:
        return False
    try:
        uuid.UUID(token)
    except ValueError:
        return False
    return True


def client_address(request: Request) -> str:
    """First X-Forwarded-For hop, else the socket peer address."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


async def verify_proof_token(
    token: str,
    remote_ip: Optional[str] = None,
    secret: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> bool:
    """
    Ask the bot-verification service for a verdict on a proof token.

    An empty secret disables verification. Network failures count as a
    failed verification.

    Args:
        token: Proof token from the request payload
        remote_ip: Client address forwarded to the verifier
        secret: Verifier secret (defaults to PROOF_SECRET)
        client: HTTP client (a short-lived one is created if omitted)

    Returns:
        True if the verifier accepted the token
    """
    secret = settings.proof_secret if secret is None else secret
    if not secret:
        return True
    if not token:
        return False

    data = {"secret": secret, "response": token}
    if remote_ip:
        data["remoteip"] = remote_ip

    try:
        if client is not None:
            response = await client.post(settings.proof_verify_url, data=data)
        else:
            async with httpx.AsyncClient(timeout=settings.proof_verify_timeout) as owned:
                response = await owned.post(settings.proof_verify_url, data=data)
        response.raise_for_status()
        verdict = response.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.warning(f"Bot verification unavailable: {e}")
        return False

    if not verdict.get("success", False):
        logger.warning(f"Bot verification rejected token: {verdict.get('error-codes', [])}")
        return False
    return True
