"""
WhatsApp webhook routes.

Receives messages from the Meta Cloud API. Every fragment is folded into
the sender's pending submission and a deferred readiness check is armed;
nothing is structured or stored as an offer here.
"""

from typing import Optional
import structlog

from fastapi import APIRouter, BackgroundTasks, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse

from config import settings
from exceptions import DatabaseError
from models.webhook import InboundMessage
from services.market_service import get_market_service
from services.pending_message_service import get_pending_message_service
from services.readiness_service import get_readiness_scheduler
from utils.text_utils import mask_phone

logger = structlog.get_logger(__name__)
router = APIRouter(prefix="/api/webhooks/whatsapp", tags=["WhatsApp Webhook"])

SUPPORTED_TYPES = ("text", "image")


def _extract_inbound_message(body: dict) -> Optional[InboundMessage]:
    """
    Flatten Meta's payload to the first message it carries.

    Returns:
        InboundMessage, or None for status updates, empty payloads and
        unsupported message types
    """
    try:
        value = body["entry"][0]["changes"][0]["value"]
    except (KeyError, IndexError, TypeError):
        return None

    if not isinstance(value, dict):
        return None

    # Delivery and read receipts
    if value.get("statuses"):
        return None

    messages = value.get("messages") or []
    if not messages:
        return None

    message = messages[0]
    message_type = message.get("type")
    sender = message.get("from")

    if message_type not in SUPPORTED_TYPES or not sender:
        logger.info("whatsapp_message_type_ignored", message_type=message_type)
        return None

    if message_type == "text":
        return InboundMessage(
            sender=sender,
            message_type="text",
            wamid=message.get("id"),
            text=(message.get("text") or {}).get("body"),
        )

    image = message.get("image") or {}
    if not image.get("id"):
        logger.warning("whatsapp_image_without_media_id", sender=mask_phone(sender))
        return None

    return InboundMessage(
        sender=sender,
        message_type="image",
        wamid=message.get("id"),
        media_id=image["id"],
        caption=image.get("caption"),
    )


# ===================
# ROUTES
# ===================

@router.get("")
async def verify_webhook(
    mode: Optional[str] = Query(None, alias="hub.mode"),
    token: Optional[str] = Query(None, alias="hub.verify_token"),
    challenge: Optional[str] = Query(None, alias="hub.challenge"),
):
    """
    Meta verification handshake.

    Echoes hub.challenge when the verify token matches, 403 otherwise.
    """
    if (
        mode == "subscribe"
        and settings.whatsapp_verify_token
        and token == settings.whatsapp_verify_token
    ):
        logger.info("whatsapp_webhook_verified")
        return PlainTextResponse(challenge or "")

    logger.warning("whatsapp_webhook_verification_failed", mode=mode)
    return PlainTextResponse("Forbidden", status_code=403)


@router.post("")
async def receive_message(request: Request, background_tasks: BackgroundTasks):
    """
    Receive one webhook delivery.

    Always answers {"ok": true} for well-formed JSON, including unknown
    senders and storage failures, so Meta does not redeliver.
    """
    try:
        body = await request.json()
    except Exception as e:
        logger.error("invalid_json_body", error=str(e))
        raise HTTPException(status_code=400, detail="Invalid JSON body")

    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON body")

    message = _extract_inbound_message(body)
    if message is None:
        return {"ok": True}

    log = logger.bind(sender=mask_phone(message.sender), message_type=message.message_type)

    try:
        market = get_market_service().find_by_whatsapp_number(message.sender)
    except DatabaseError as e:
        log.error("market_lookup_failed", error=e.message)
        return {"ok": True}

    if market is None:
        log.info("whatsapp_sender_not_registered")
        return {"ok": True}

    try:
        pending = get_pending_message_service().submit_fragment(
            sender_number=message.sender,
            market_id=market.id,
            caption=message.caption_text,
            media_id=message.media_id,
            wamid=message.wamid,
        )
    except DatabaseError as e:
        log.error("fragment_store_failed", market_id=market.id, error=e.message)
        return {"ok": True}

    log.info("whatsapp_fragment_accepted", market_id=market.id, pending_message_id=pending.id)

    background_tasks.add_task(
        get_readiness_scheduler().deferred_check,
        message.sender,
        market.id,
    )

    return {"ok": True}
