# -*- coding: utf-8 -*-
"""Field-level normalization for vehicle data arriving from the CRM."""

from __future__ import annotations

import logging
import math
import re
from typing import Any, Optional

logger = logging.getLogger(__name__)

CANONICAL_CONDITION_NEW = "אפס ק״מ"

# Variants the CRM sends for "zero km": ASCII quote instead of gershayim, or no mark at all
_CONDITION_VARIANTS = {
    "אפס ק״מ": CANONICAL_CONDITION_NEW,
    'אפס ק"מ': CANONICAL_CONDITION_NEW,
    "אפס ק'מ": CANONICAL_CONDITION_NEW,
    "אפס קמ": CANONICAL_CONDITION_NEW,
}

# "Hand" is grammatically feminine in Hebrew (יד), hence the feminine ordinals
HAND_ORDINALS = {
    "ראשונה": 1,
    "שנייה": 2,
    "שניה": 2,
    "שלישית": 3,
    "רביעית": 4,
    "חמישית": 5,
    "שישית": 6,
    "שביעית": 7,
    "שמינית": 8,
    "תשיעית": 9,
    "עשירית": 10,
}

_HAND_PREFIX = re.compile(r"^יד\s+")


def normalize_condition(value: Any) -> Any:
    """Map known spellings of "zero km" to one canonical string; pass anything else through."""
    if not isinstance(value, str):
        return value
    key = re.sub(r"\s+", " ", value.strip())
    return _CONDITION_VARIANTS.get(key, value)


def normalize_hand(value: Any) -> Optional[int]:
    """
    Convert an ownership count ("hand") to an int.

    Numbers pass through unchanged; Hebrew ordinal words ("שלישית", "יד שנייה")
    map through HAND_ORDINALS; other text gets a plain integer parse.
    Returns None when nothing usable is left.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if not isinstance(value, str):
        return None

    text = _HAND_PREFIX.sub("", value.strip())
    if not text:
        return None
    if text in HAND_ORDINALS:
        return HAND_ORDINALS[text]
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        number = None
    # "3.0" behaves like 3.0
    if number is not None and math.isfinite(number) and number.is_integer():
        return int(number)
    logger.warning("[WEBHOOK] Unrecognized hand value %r; storing null", value)
    return None


def parse_int(value: Any) -> Optional[int]:
    """Parse price/year/km style values: 125000, "125,000", "₪125,000", 2020.0."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError("boolean is not a number")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError(f"not a finite number: {value!r}")
        return int(value)
    cleaned = re.sub(r"[^\d.\-]", "", str(value))
    if not cleaned:
        raise ValueError(f"not a number: {value!r}")
    number = float(cleaned)
    if not math.isfinite(number):
        raise ValueError(f"not a finite number: {value!r}")
    return int(number)


def parse_categories(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, (list, tuple)):
        return [str(part).strip() for part in value if str(part).strip()]
    return [str(value)]


def parse_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    text = str(value).strip().lower()
    if text in ("true", "1", "yes", "y"):
        return True
    if text in ("false", "0", "no", "n"):
        return False
    return None
