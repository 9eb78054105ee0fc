"""
Webhook signature verification.

The platform signs each request body with HMAC-SHA256 keyed by the channel
secret and sends the base64 digest in the X-Line-Signature header.
"""

import base64
import hashlib
import hmac
from typing import Optional

from linedesk.logging_config import get_logger

logger = get_logger("signature")


def compute_signature(body: bytes, channel_secret: str) -> str:
    digest = hmac.new(channel_secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_signature(body: bytes, signature: Optional[str], channel_secret: str) -> bool:
    """
    Check the request signature against the raw body.

    Args:
        body: Raw request body bytes, exactly as received
        signature: X-Line-Signature header value
        channel_secret: Shared channel secret

    Returns:
        bool: True only for a present, matching signature
    """
    if not channel_secret:
        logger.error("Channel secret not configured, rejecting webhook")
        return False

    if not signature:
        logger.warning("Missing webhook signature")
        return False

    expected = compute_signature(body, channel_secret)
    is_valid = hmac.compare_digest(expected.encode("ascii"), signature.strip().encode("utf-8", "replace"))
    if not is_valid:
        logger.warning("Invalid webhook signature", extra={"context": {"body_bytes": len(body)}})
    return is_valid
