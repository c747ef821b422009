"""
WhatsApp Cloud API integration.

Sends text replies to senders and downloads media they posted.
All calls go through Meta's Graph API with the configured access token.
"""

import requests
import structlog

from config import settings
from exceptions import WhatsAppError
from utils.text_utils import mask_phone

logger = structlog.get_logger(__name__)

GRAPH_BASE_URL = "https://graph.facebook.com"


def _graph_url(path: str) -> str:
    return f"{GRAPH_BASE_URL}/{settings.whatsapp_api_version}/{path}"


def _auth_headers() -> dict:
    if not settings.whatsapp_access_token:
        raise WhatsAppError("WHATSAPP_ACCESS_TOKEN is not configured")
    return {"Authorization": f"Bearer {settings.whatsapp_access_token}"}


def send_text_message(to_number: str, body: str) -> bool:
    """
    Send a plain text message.

    Args:
        to_number: Recipient phone number
        body: Message text

    Returns:
        True if sent, False if WhatsApp is not configured

    Raises:
        WhatsAppError: If the Graph API rejects the request
    """
    if not settings.whatsapp_configured:
        logger.warning("whatsapp_not_configured_skipping_send")
        return False

    payload = {
        "messaging_product": "whatsapp",
        "recipient_type": "individual",
        "to": to_number,
        "type": "text",
        "text": {
            "preview_url": False,
            "body": body,
        },
    }

    try:
        logger.info("sending_whatsapp_message", to=mask_phone(to_number))

        response = requests.post(
            _graph_url(f"{settings.whatsapp_phone_number_id}/messages"),
            json=payload,
            headers=_auth_headers(),
            timeout=settings.whatsapp_timeout_seconds
        )
        response.raise_for_status()

        result = response.json()
        message_id = (result.get("messages") or [{}])[0].get("id")

        logger.info("whatsapp_message_sent", message_id=message_id)
        return True

    except requests.exceptions.RequestException as e:
        logger.error("whatsapp_send_failed", to=mask_phone(to_number), error=str(e))
        raise WhatsAppError(f"Failed to send WhatsApp message: {str(e)}")


def get_media_info(media_id: str) -> dict:
    """
    Resolve a media id to its temporary download URL.

    Meta's URLs expire after a few minutes, so this is called right
    before downloading, never at intake time.

    Args:
        media_id: Media id from the webhook payload

    Returns:
        dict with "url" and "mime_type"

    Raises:
        WhatsAppError: If the lookup fails
    """
    try:
        response = requests.get(
            _graph_url(media_id),
            headers=_auth_headers(),
            timeout=settings.whatsapp_timeout_seconds
        )
        response.raise_for_status()
        data = response.json()

    except requests.exceptions.RequestException as e:
        logger.error("whatsapp_media_lookup_failed", media_id=media_id, error=str(e))
        raise WhatsAppError(f"Failed to resolve media {media_id}: {str(e)}")

    if not data.get("url"):
        raise WhatsAppError(f"No download URL for media {media_id}", details={"media_id": media_id})

    return {
        "url": data["url"],
        "mime_type": data.get("mime_type") or "image/jpeg",
    }


def download_media(media_id: str) -> tuple[bytes, str]:
    """
    Download media bytes from the authenticated media endpoint.

    Args:
        media_id: Media id from the webhook payload

    Returns:
        tuple: (content bytes, mime type)

    Raises:
        WhatsAppError: If lookup or download fails
    """
    info = get_media_info(media_id)

    try:
        response = requests.get(
            info["url"],
            headers=_auth_headers(),
            timeout=settings.whatsapp_timeout_seconds
        )
        response.raise_for_status()

    except requests.exceptions.RequestException as e:
        logger.error("whatsapp_media_download_failed", media_id=media_id, error=str(e))
        raise WhatsAppError(f"Failed to download media {media_id}: {str(e)}")

    content_type = response.headers.get("Content-Type") or info["mime_type"]
    # Strip parameters like "; charset=binary"
    mime_type = content_type.split(";")[0].strip()

    logger.debug(
        "whatsapp_media_downloaded",
        media_id=media_id,
        mime_type=mime_type,
        size_bytes=len(response.content)
    )

    return response.content, mime_type
