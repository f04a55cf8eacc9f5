"""Svix HMAC-SHA256 signature verification for inbound Clerk webhooks."""

import base64
import binascii
import hashlib
import hmac
import time
from collections.abc import Mapping

from home_inventory.core.logging import get_logger

logger = get_logger(__name__)

SECRET_PREFIX = "whsec_"
SIGNATURE_VERSION = "v1"


class WebhookVerificationError(Exception):
    """Headers, timestamp or signature did not verify."""


def _decode_secret(secret: str) -> bytes:
    raw = secret.removeprefix(SECRET_PREFIX)
    try:
        return base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError) as e:
        raise WebhookVerificationError("Webhook signing secret is not valid base64") from e


def compute_signature(msg_id: str, timestamp: str, body: bytes, secret: str) -> str:
    """Base64 HMAC-SHA256 over ``"{id}.{timestamp}.{body}"``."""
    signed_content = f"{msg_id}.{timestamp}.".encode() + body
    digest = hmac.new(_decode_secret(secret), signed_content, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_signature(
    body: bytes,
    headers: Mapping[str, str],
    secret: str,
    tolerance_seconds: int = 300,
    now: float | None = None,
) -> str:
    """
    Verify a Svix-signed delivery and return its ``svix-id``.

    The ``svix-signature`` header holds space-separated ``v1,<sig>`` entries;
    any one of them matching is enough (secret rotation sends several).
    """
    if not secret:
        raise WebhookVerificationError("Webhook signing secret is not configured")

    msg_id = headers.get("svix-id")
    timestamp = headers.get("svix-timestamp")
    signature_header = headers.get("svix-signature")
    if not msg_id or not timestamp or not signature_header:
        raise WebhookVerificationError("Missing required svix headers")

    try:
        sent_at = int(timestamp)
    except ValueError as e:
        raise WebhookVerificationError("Invalid svix-timestamp header") from e

    current = time.time() if now is None else now
    if abs(current - sent_at) > tolerance_seconds:
        raise WebhookVerificationError("Webhook timestamp outside tolerance")

    expected = compute_signature(msg_id, timestamp, body, secret).encode("ascii")
    for entry in signature_header.split():
        version, _, signature = entry.partition(",")
        if version == SIGNATURE_VERSION and hmac.compare_digest(
            expected, signature.encode("utf-8", "surrogateescape")
        ):
            return msg_id

    logger.warning("webhook_signature_mismatch", svix_id=msg_id)
    raise WebhookVerificationError("No matching webhook signature")
