"""
Text utilities for German offer messages.

Used for caption merging, product name cleanup and the local unit
heuristic that backs up the structuring model.
"""

import re
import unicodedata
from typing import Optional


# Quantity + unit, e.g. "500g", "3 Stück", "1 Bund", "100 Gramm", "1,5 kg"
UNIT_PATTERN = re.compile(
    r"(?<![\w.,])"
    r"(\d+(?:[.,]\d+)?)\s*"
    r"(kg|g|gramm|gr|kilo|l|liter|ml|stück|stk|st|bund|packung|pack|pck|"
    r"dose|dosen|flasche|flaschen|kiste|schale|beutel|netz|glas)"
    r"(?![\w])",
    re.IGNORECASE
)

# Bare unit words, e.g. "pro kg", "je Stück", "das Bund"
BARE_UNIT_PATTERN = re.compile(
    r"(?:\bpro|\bje|\bdas|/)\s*(kg|stück|stk|bund|packung|liter|kiste|schale)\b",
    re.IGNORECASE
)

# Canonical spellings for unit tokens
UNIT_CANONICAL = {
    "kg": "kg",
    "kilo": "kg",
    "g": "g",
    "gr": "g",
    "gramm": "Gramm",
    "l": "l",
    "liter": "Liter",
    "ml": "ml",
    "stück": "Stück",
    "stk": "Stück",
    "st": "Stück",
    "bund": "Bund",
    "packung": "Packung",
    "pack": "Packung",
    "pck": "Packung",
    "dose": "Dose",
    "dosen": "Dosen",
    "flasche": "Flasche",
    "flaschen": "Flaschen",
    "kiste": "Kiste",
    "schale": "Schale",
    "beutel": "Beutel",
    "netz": "Netz",
    "glas": "Glas",
}

# Abbreviated units that are written without a space ("500g", "2kg")
_COMPACT_UNITS = {"kg", "g", "l", "ml"}


def merge_captions(existing: Optional[str], new: Optional[str]) -> Optional[str]:
    """
    Append a new caption fragment to an existing one.

    - Both present → joined with a newline, in arrival order
    - Only one present → that one
    - Neither → None

    Args:
        existing: Caption accumulated so far
        new: Caption of the incoming fragment

    Returns:
        Merged caption or None
    """
    existing = existing if existing and existing.strip() else None
    new = new if new and new.strip() else None

    if existing and new:
        return f"{existing}\n{new}"
    return existing or new


def clean_product_name(name: Optional[str], max_length: int = 255) -> Optional[str]:
    """
    Clean product name for storage (preserves accents and case).

    - Collapses whitespace
    - Strips surrounding punctuation ("Tomaten!" → "Tomaten")
    - Truncates to max length
    - Returns None for empty strings

    Args:
        name: Product name as returned by the model
        max_length: Maximum characters to store

    Returns:
        Cleaned name or None
    """
    if not name:
        return None

    name = re.sub(r"\s+", " ", name).strip()
    name = name.strip(" .,;:!?-*_\"'„“”")

    if not name:
        return None

    if len(name) > max_length:
        name = name[:max_length].rstrip()

    return name


def normalize_product_name(name: Optional[str]) -> Optional[str]:
    """
    Normalize product name for fuzzy comparison.

    - "Äpfel " → "APFEL"
    - "Zitronen  (Bio)" → "ZITRONEN (BIO)"

    Args:
        name: Product name

    Returns:
        Uppercase ASCII string, or None if input is empty
    """
    cleaned = clean_product_name(name)
    if not cleaned:
        return None

    normalized = unicodedata.normalize('NFD', cleaned)
    ascii_name = ''.join(
        c for c in normalized
        if unicodedata.category(c) != 'Mn'
    )

    return ascii_name.upper()


def _format_unit(quantity: Optional[str], unit_token: str) -> str:
    unit = UNIT_CANONICAL.get(unit_token.lower(), unit_token)
    if not quantity:
        return unit
    if unit in _COMPACT_UNITS:
        return f"{quantity}{unit}"
    return f"{quantity} {unit}"


def extract_unit(caption: Optional[str]) -> Optional[str]:
    """
    Find the selling unit in a caption.

    Prefers quantity + unit ("Tomaten 500g" → "500g",
    "Zitronen 3 Stück 1.00" → "3 Stück", "100 Gramm" → "100 Gramm"),
    then bare units ("1.00 € / kg" → "kg", "pro Bund" → "Bund").

    Args:
        caption: Merged caption text

    Returns:
        Unit string, or None if nothing is detectable
    """
    if not caption:
        return None

    match = UNIT_PATTERN.search(caption)
    if match:
        return _format_unit(match.group(1), match.group(2))

    bare = BARE_UNIT_PATTERN.search(caption)
    if bare:
        return _format_unit(None, bare.group(1))

    return None


def mask_phone(number: Optional[str]) -> str:
    """Mask a phone number for logs, keeping the last four digits."""
    if not number:
        return ""
    if len(number) <= 4:
        return "*" * len(number)
    return "*" * (len(number) - 4) + number[-4:]
