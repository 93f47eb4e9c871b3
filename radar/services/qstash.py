"""
QStash job queue: publishing audit jobs and verifying delivery signatures.

Each due project becomes one message carrying only its id. QStash retries
delivery (bounded by ``Upstash-Retries``) whenever the job endpoint answers
with a 5xx.

Deliveries carry an ``Upstash-Signature`` header: an HS256 JWT signed with
the current signing key (or the next one during rotation) whose ``body``
claim is the base64url SHA-256 of the raw request body.
"""

import base64
import hashlib
import hmac
import logging

import aiohttp
import jwt

from radar.config import Capabilities

logger = logging.getLogger(__name__)

TIMEOUT = aiohttp.ClientTimeout(total=15)


class QStashError(RuntimeError):
    pass


async def publish_json(
    capabilities: Capabilities, destination: str, body: dict, retries: int | None = None
) -> str:
    """Publish ``body`` to ``destination`` through QStash. Returns the message id."""
    if not capabilities.qstash_token:
        raise QStashError("QSTASH_TOKEN not set: cannot publish jobs")

    headers = {
        "Authorization": f"Bearer {capabilities.qstash_token}",
        "Content-Type": "application/json",
        "Upstash-Retries": str(capabilities.qstash_retries if retries is None else retries),
    }
    url = f"{capabilities.qstash_url}/v2/publish/{destination}"
    async with aiohttp.ClientSession(timeout=TIMEOUT) as session:
        async with session.post(url, json=body, headers=headers) as resp:
            text = await resp.text()
            if resp.status >= 300:
                raise QStashError(f"QStash publish HTTP {resp.status}: {text[:300]}")
            try:
                return (await resp.json(content_type=None)).get("messageId", "")
            except ValueError:
                return ""


def _body_hash(raw_body: bytes) -> str:
    digest = hashlib.sha256(raw_body).digest()
    return base64.urlsafe_b64encode(digest).decode().rstrip("=")


def _verify_with_key(signature: str, key: str, raw_body: bytes, url: str | None) -> bool:
    try:
        claims = jwt.decode(
            signature,
            key,
            algorithms=["HS256"],
            issuer="Upstash",
            options={"verify_aud": False, "require": ["iss", "exp", "nbf"]},
            leeway=5,
        )
    except jwt.PyJWTError as e:
        logger.debug("QStash signature rejected: %s", e)
        return False

    if url is not None and claims.get("sub") not in (None, url):
        return False
    expected = _body_hash(raw_body)
    # QStash may or may not pad the hash
    return hmac.compare_digest(str(claims.get("body", "")).rstrip("="), expected)


def verify_signature(
    capabilities: Capabilities, signature: str, raw_body: bytes, url: str | None = None
) -> bool:
    """Check a delivery signature against the current key, then the next key."""
    if not signature:
        return False
    for key in (capabilities.current_signing_key, capabilities.next_signing_key):
        if key and _verify_with_key(signature, key, raw_body, url):
            return True
    return False
