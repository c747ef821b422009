"""
Offer structuring service.

Sends a merged submission (caption + optional image) to Claude and turns
the answer into a ValidationOutcome: a StructuredOffer, or an
InvalidSubmission carrying one of the four rejection reasons.
"""

import base64
import json
import re
from typing import Optional
import anthropic
import structlog
from pydantic import ValidationError as PydanticValidationError

from config import settings
from exceptions import StructuringModelError
from models.offer import (
    DEFAULT_UNIT,
    InvalidReason,
    InvalidSubmission,
    OfferCategory,
    StructuredOffer,
    ValidationOutcome,
)
from utils.text_utils import clean_product_name, extract_unit

logger = structlog.get_logger(__name__)

INVALID_PREFIX = "INVALID"

_INVALID_TOKEN_RE = re.compile(
    r"^INVALID\s*:?\s*(MISSING_PRODUCT|MISSING_PRICE|MISSING_BOTH|UNCLEAR_MESSAGE)\b"
)

# Image types the vision API accepts
SUPPORTED_IMAGE_TYPES = {"image/jpeg", "image/png", "image/gif", "image/webp"}

Image = tuple[bytes, str]


class OfferStructuringService:
    """
    Validate and structure offer submissions with Claude.

    One request per submission, no retries: a timeout or API error is
    reported as UNCLEAR_MESSAGE so the processing flag is never held for
    long.
    """

    CATEGORIES = ", ".join(category.value for category in OfferCategory)

    SYSTEM_PROMPT = f"""You are the validation gatekeeper for a grocery market offer system in Germany.
Shop owners send offers via WhatsApp: free text, optionally with a product photo.

Your job: check that the message contains BOTH a clear product name AND a price, then extract the offer.

If the message is valid, return ONLY a JSON object, no markdown, no explanation:
{{
  "product_name": "Clean, specific product name in German",
  "price": "2.49",
  "unit": "Selling unit exactly as written",
  "description": "One appetizing German sentence about the product",
  "ai_category": "One of: {CATEGORIES}",
  "validity_days": null
}}

PRODUCT NAME:
- German, without price, unit or emojis ("Tomaten", not "Tomaten 500g 2,49€").
- Use the PLURAL if the unit covers several items (kg, Bund, Packung, Kiste, "3 Stück"): "Zitronen", "Bananen".
- Use the SINGULAR only for a single item ("1 Stück", "pro Stück"): "Melone".
- If only the photo shows the product, name what the photo shows.

PRICE:
- Decimal number as string with a dot: "2,49 €" → "2.49", "1€" → "1.00".

UNIT - extract it carefully, keep quantity and unit together as written:
- "Tomaten 500g 2,49" → "500g"
- "Zitronen 3 Stück 1.00" → "3 Stück"
- "Petersilie 1 Bund 0,99" → "1 Bund"
- "Hackfleisch 100 Gramm 1,29" → "100 Gramm"
- "Kartoffeln 2kg 3,49" → "2kg"
- "Bananen 1,99 € pro kg" / "1,99€/kg" → "kg"
- "Milch 1 Liter 1,19" → "1 Liter"
- Only if no unit at all is detectable, use "{DEFAULT_UNIT}".

DESCRIPTION:
- One sentence that makes customers want to buy it (freshness, taste, quality).
- Do NOT repeat price, unit or validity. Match singular/plural of product_name.

VALIDITY:
- validity_days: the validity stated in the message ("drei Tage" = 3, "eine Woche" = 7, "zwei Wochen" = 14), else null.

If the message is NOT a usable offer, return exactly one of these lines and nothing else:
- INVALID: MISSING_PRODUCT   (price present, product unclear)
- INVALID: MISSING_PRICE     (product present, no price)
- INVALID: MISSING_BOTH      (neither product nor price)
- INVALID: UNCLEAR_MESSAGE   (gibberish, greetings, questions, unrelated content)"""

    def __init__(self, client: Optional[anthropic.Anthropic] = None):
        """Initialize the structuring client."""
        if client is not None:
            self.client = client
        elif settings.model_configured:
            self.client = anthropic.Anthropic(
                api_key=settings.anthropic_api_key,
                timeout=float(settings.model_timeout_seconds),
                max_retries=0,
            )
        else:
            self.client = None
            logger.warning("structuring_model_not_configured")

    def validate(
        self,
        caption: Optional[str],
        image: Optional[Image] = None
    ) -> ValidationOutcome:
        """
        Validate and structure a submission.

        Args:
            caption: Merged caption text
            image: Optional (bytes, mime type) of the submitted photo

        Returns:
            StructuredOffer or InvalidSubmission (never raises for content
            or model failures)
        """
        if not (caption and caption.strip()) and image is None:
            logger.info("structuring_skipped_empty_submission")
            return InvalidSubmission(reason=InvalidReason.MISSING_BOTH)

        try:
            response_text = self.request_structuring(caption, image)
        except StructuringModelError as e:
            logger.error("structuring_model_failed", error=e.message)
            return InvalidSubmission(reason=InvalidReason.UNCLEAR_MESSAGE)

        return self.parse_response(response_text, caption)

    def request_structuring(self, caption: Optional[str], image: Optional[Image] = None) -> str:
        """
        Issue the single structuring request.

        Returns:
            Raw response text

        Raises:
            StructuringModelError: If the model is unavailable, times out or errors
        """
        if self.client is None:
            raise StructuringModelError("Structuring model not configured. Set ANTHROPIC_API_KEY.")

        content = []

        if image is not None:
            image_bytes, mime_type = image
            if mime_type not in SUPPORTED_IMAGE_TYPES:
                mime_type = "image/jpeg"
            content.append({
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": mime_type,
                    "data": base64.b64encode(image_bytes).decode("utf-8"),
                }
            })

        content.append({
            "type": "text",
            "text": (
                "Message to validate:\n"
                f"Caption: {caption.strip() if caption else 'No caption'}\n"
                f"Has Image: {'Yes' if image is not None else 'No'}"
            )
        })

        logger.info(
            "structuring_request_started",
            caption_length=len(caption or ""),
            has_image=image is not None
        )

        try:
            response = self.client.messages.create(
                model=settings.anthropic_model,
                max_tokens=settings.anthropic_max_tokens,
                temperature=0.3,
                system=self.SYSTEM_PROMPT,
                messages=[{"role": "user", "content": content}],
            )
        except anthropic.APITimeoutError as e:
            raise StructuringModelError("Structuring model timed out", details={"error": str(e)})
        except anthropic.APIError as e:
            raise StructuringModelError(f"Structuring model error: {str(e)}")

        text_blocks = [
            block.text for block in (response.content or [])
            if getattr(block, "type", None) == "text"
        ]
        response_text = "".join(text_blocks)

        logger.debug("structuring_response_received", response_length=len(response_text))
        return response_text

    def parse_response(self, response_text: Optional[str], caption: Optional[str] = None) -> ValidationOutcome:
        """
        Interpret the model's answer.

        - Markdown fences are stripped
        - "INVALID: <REASON>" → InvalidSubmission with that reason
        - Empty, unparsable or unknown answers → UNCLEAR_MESSAGE
        - Non-string product name, unit or description → UNCLEAR_MESSAGE
        - JSON missing product and/or price → the matching MISSING_* reason

        Args:
            response_text: Raw model output
            caption: Merged caption, used for the local unit fallback

        Returns:
            StructuredOffer or InvalidSubmission
        """
        cleaned = (response_text or "").strip()
        if cleaned.startswith("```"):
            cleaned = re.sub(r'^```(?:json)?\s*', '', cleaned)
            cleaned = re.sub(r'\s*```$', '', cleaned)
            cleaned = cleaned.strip()

        if not cleaned:
            logger.warning("structuring_empty_response")
            return InvalidSubmission(reason=InvalidReason.UNCLEAR_MESSAGE, raw_response=response_text)

        if cleaned.upper().startswith(INVALID_PREFIX):
            match = _INVALID_TOKEN_RE.match(cleaned.upper())
            reason = InvalidReason(match.group(1)) if match else InvalidReason.UNCLEAR_MESSAGE
            logger.info("structuring_rejected", reason=reason.value)
            return InvalidSubmission(reason=reason, raw_response=response_text)

        try:
            data = json.loads(cleaned)
        except json.JSONDecodeError as e:
            logger.warning("structuring_json_parse_failed", response_preview=cleaned[:200], error=str(e))
            return InvalidSubmission(reason=InvalidReason.UNCLEAR_MESSAGE, raw_response=response_text)

        if not isinstance(data, dict):
            return InvalidSubmission(reason=InvalidReason.UNCLEAR_MESSAGE, raw_response=response_text)

        for field in ("product_name", "unit", "description"):
            if data.get(field) is not None and not isinstance(data[field], str):
                logger.warning(
                    "structuring_field_type_invalid",
                    field=field,
                    value_type=type(data[field]).__name__
                )
                return InvalidSubmission(reason=InvalidReason.UNCLEAR_MESSAGE, raw_response=response_text)

        product_name = clean_product_name(data.get("product_name"))
        price = data.get("price")
        has_price = price not in (None, "")

        if not product_name and not has_price:
            return InvalidSubmission(reason=InvalidReason.MISSING_BOTH, raw_response=response_text)
        if not product_name:
            return InvalidSubmission(reason=InvalidReason.MISSING_PRODUCT, raw_response=response_text)
        if not has_price:
            return InvalidSubmission(reason=InvalidReason.MISSING_PRICE, raw_response=response_text)

        unit = str(data.get("unit") or "").strip()[:50] or extract_unit(caption) or DEFAULT_UNIT
        description = str(data.get("description") or "").strip()[:500] or None

        try:
            offer = StructuredOffer(
                product_name=product_name,
                price=price,
                unit=unit,
                description=description,
                category=data.get("ai_category") or data.get("category"),
                validity_days=data.get("validity_days"),
            )
        except PydanticValidationError as e:
            logger.warning("structured_offer_invalid", errors=e.errors(include_url=False))
            return InvalidSubmission(reason=InvalidReason.UNCLEAR_MESSAGE, raw_response=response_text)

        logger.info(
            "structuring_succeeded",
            product_name=offer.product_name,
            price=offer.price,
            unit=offer.unit,
            category=offer.category.value
        )
        return offer


# Singleton instance
_structuring_service: Optional[OfferStructuringService] = None


def get_structuring_service() -> OfferStructuringService:
    """Get or create OfferStructuringService instance."""
    global _structuring_service
    if _structuring_service is None:
        _structuring_service = OfferStructuringService()
    return _structuring_service
