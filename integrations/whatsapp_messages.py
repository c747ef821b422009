"""
Centralized WhatsApp reply templates.

Senders are shop owners in Germany, so replies are German. English
templates exist for logs and for shops configured with WHATSAPP_LANGUAGE=en.

Usage:
    from integrations.whatsapp_messages import get_rejection_message

    body = get_rejection_message(InvalidReason.MISSING_PRICE)
"""

import os

from models.offer import InvalidReason

# Language setting - defaults to German
LANG = os.getenv("WHATSAPP_LANGUAGE", "de")

MESSAGES = {
    "de": {
        "rejection_missing_product": "Ich sehe keinen Produktnamen. Bitte sende den Produktnamen zusammen mit dem Preis.",
        "rejection_missing_price": "Ich sehe keinen Preis. Bitte sende den Preis zusammen mit dem Produktnamen.",
        "rejection_missing_both": "Ich brauche sowohl den Produktnamen als auch den Preis. Bitte sende beides zusammen.",
        "rejection_unclear": "Ich konnte kein Angebot erkennen. Bitte sende Produktname und Preis zusammen mit dem Bild.",
    },
    "en": {
        "rejection_missing_product": "I can't see a product name. Please send the product name together with the price.",
        "rejection_missing_price": "I can't see a price. Please send the price together with the product name.",
        "rejection_missing_both": "I need both the product name and the price. Please send them together.",
        "rejection_unclear": "I couldn't recognize an offer. Please send product name and price together with the picture.",
    },
}

REJECTION_KEYS = {
    InvalidReason.MISSING_PRODUCT: "rejection_missing_product",
    InvalidReason.MISSING_PRICE: "rejection_missing_price",
    InvalidReason.MISSING_BOTH: "rejection_missing_both",
    InvalidReason.UNCLEAR_MESSAGE: "rejection_unclear",
}


def get_message(key: str, **kwargs) -> str:
    """
    Get translated message template and format with kwargs.

    Args:
        key: Message template key
        **kwargs: Format arguments for the template

    Returns:
        Formatted message string in the configured language
    """
    lang_messages = MESSAGES.get(LANG, MESSAGES["de"])
    template = lang_messages.get(key, MESSAGES["de"].get(key, key))
    try:
        return template.format(**kwargs)
    except KeyError:
        return template


def get_rejection_message(reason: InvalidReason) -> str:
    """Notice sent to the sender when a submission is rejected."""
    return get_message(REJECTION_KEYS.get(reason, "rejection_unclear"))
