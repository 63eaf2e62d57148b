"""Normalize free-form grocery item names into cache lookup keys."""

import re

# Brands stripped from names so "Amul Taaza Milk" and "Taaza Milk" share a key
KNOWN_BRANDS = [
    "aashirvaad",
    "fortune",
    "tata",
    "india gate",
    "daawat",
    "amul",
    "nestle",
    "britannia",
    "haldiram",
    "mdh",
    "everest",
    "fresho",
    "patanjali",
]

# Local-language terms folded to the canonical English token
SYNONYMS = {
    "chawal": "rice",
    "dahi": "curd",
    "doodh": "milk",
    "aloo": "potato",
    "pyaz": "onion",
    "pyaaz": "onion",
    "tamatar": "tomato",
    "gajar": "carrot",
    "matar": "peas",
    "bhindi": "okra",
    "baingan": "brinjal",
    "palak": "spinach",
    "dhaniya": "coriander",
    "pudina": "mint",
    "adrak": "ginger",
    "lahsun": "garlic",
    "kaddu": "pumpkin",
    "makhan": "butter",
    "namak": "salt",
    "cheeni": "sugar",
    "haldi": "turmeric",
    "jeera": "cumin",
    "elaichi": "cardamom",
    "laung": "clove",
    "dalchini": "cinnamon",
    "methi": "fenugreek",
    "hing": "asafoetida",
    "anda": "egg",
    "ande": "egg",
    "murgi": "chicken",
    "machli": "fish",
    "chai": "tea",
    "sooji": "semolina",
    "suji": "semolina",
    "rava": "semolina",
    "maida": "flour",
    "arhar": "toor",
}

UNIT_WORDS = (
    "kg|kgs|g|gm|gms|gram|grams|l|ltr|litre|litres|liter|liters|ml"
    "|pc|pcs|piece|pieces|pack|packs|pkt|dozen"
)

_QUANTITY_PATTERN = re.compile(
    rf"\b\d+(?:\.\d+)?\s*(?:{UNIT_WORDS})\b", re.IGNORECASE
)
_BRAND_PATTERN = re.compile(
    r"\b(?:" + "|".join(re.escape(b) for b in KNOWN_BRANDS) + r")\b",
    re.IGNORECASE,
)
# Anything that is not a word character, whitespace or a dot
_PUNCTUATION_PATTERN = re.compile(r"[^\w\s.]")
# Dots that are not a decimal point between two digits
_STRAY_DOT_PATTERN = re.compile(r"(?<!\d)\.|\.(?!\d)")
_WHITESPACE_PATTERN = re.compile(r"\s+")


def _strip_all(pattern: re.Pattern, text: str) -> str:
    """Apply a substitution until it stops matching."""
    while True:
        stripped = pattern.sub(" ", text)
        if stripped == text:
            return stripped
        text = stripped


def normalize_item_name(raw_name: str) -> str:
    """
    Normalize an item name for cache lookups.

    Examples:
        "Aashirvaad Atta 5kg" -> "atta"
        "Amul Taaza Milk (1 L)" -> "taaza milk"
        "Chawal 2 kg" -> "rice"

    Args:
        raw_name: Free-form item name (AI generated or captured)

    Returns:
        Lowercase canonical name, or "" if nothing is left
    """
    if not raw_name:
        return ""

    text = _PUNCTUATION_PATTERN.sub(" ", raw_name.lower())
    # Stripping a quantity can strand a dot ("1.5.2kg" -> "1."), so repeat until stable
    while True:
        stripped = _STRAY_DOT_PATTERN.sub(" ", text)
        stripped = _strip_all(_BRAND_PATTERN, stripped)
        stripped = _strip_all(_QUANTITY_PATTERN, stripped)
        if stripped == text:
            break
        text = stripped

    tokens = _WHITESPACE_PATTERN.sub(" ", text).strip().split(" ")
    return " ".join(SYNONYMS.get(token, token) for token in tokens if token)
