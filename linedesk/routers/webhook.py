import asyncio
import json
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import ValidationError

from linedesk.container import ServiceContainer, get_container
from linedesk.logging_config import get_logger
from linedesk.schemas.line import LineWebhookRequest, WebhookResponse
from linedesk.services.signature_service import verify_signature

logger = get_logger("webhook")

router = APIRouter()


def parse_webhook_body(raw: bytes) -> Optional[dict]:
    """
    Decode the webhook body tolerantly so a stray byte never crashes intake.
    Returns dict or None.
    """
    try:
        body = json.loads(raw.decode("utf-8", errors="replace"))
    except ValueError:
        logger.warning("Webhook body is not JSON", extra={"context": {"size": len(raw)}})
        return None
    return body if isinstance(body, dict) else None


@router.post("/webhook", response_model=WebhookResponse)
async def handle_webhook(
    request: Request,
    x_line_signature: Optional[str] = Header(default=None, alias="X-Line-Signature"),
    container: ServiceContainer = Depends(get_container),
):
    """
    Accept a batch of platform events:
    - reject anything whose signature does not match the raw body
    - dedupe, then queue each event on its user's job chain
    - acknowledge without waiting for replies to be computed
    """
    raw = await request.body()
    if not verify_signature(raw, x_line_signature, container.settings.channel_secret):
        raise HTTPException(status_code=401, detail="Invalid signature")

    body = parse_webhook_body(raw)
    if body is None:
        return WebhookResponse(success=False, message="Invalid payload")

    try:
        payload = LineWebhookRequest.model_validate(body)
    except ValidationError as e:
        logger.warning("Webhook payload rejected", extra={"context": {"error": str(e)}})
        return WebhookResponse(success=False, message="Invalid payload")

    tasks = container.processor.dispatch(payload.events)
    logger.debug("Webhook received", extra={"context": {"events": len(payload.events), "accepted": len(tasks)}})

    grace = container.settings.ack_grace_seconds
    if tasks and grace > 0:
        await asyncio.wait(tasks, timeout=grace)

    return WebhookResponse(success=True, accepted=len(tasks))
