"""Market-rate price estimates used when no captured price exists."""

import logging
import re
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Optional

from mealcart.config import settings
from mealcart.pricing.models import SOURCE_ESTIMATE, PriceObservation

logger = logging.getLogger(__name__)

# Approximate INR market rates (per kg / litre / dozen / pack)
PRICE_ESTIMATES: Dict[str, int] = {
    # Grains & Flours (per kg)
    "atta": 45, "wheat": 45, "flour": 45,
    "rice": 60, "basmati": 120, "brown rice": 80, "idli rice": 55,
    "semolina": 50, "poha": 60, "beaten rice": 60,

    # Vegetables (per kg)
    "potato": 30, "onion": 40, "tomato": 40, "carrot": 50,
    "cabbage": 35, "patta gobhi": 35,
    "cauliflower": 45, "gobhi": 45, "phool gobhi": 45,
    "peas": 80, "okra": 60, "ladyfinger": 60,
    "brinjal": 50, "eggplant": 50,
    "capsicum": 80, "bell pepper": 80, "shimla mirch": 80,
    "beans": 60, "french beans": 60,
    "spinach": 40, "coriander": 40, "cilantro": 40, "mint": 30,
    "curry leaves": 20, "kadhi patta": 20,
    "ginger": 80, "garlic": 100,
    "green chilli": 60, "hari mirch": 60,
    "bottle gourd": 40, "lauki": 40,
    "ridge gourd": 50, "turai": 50,
    "bitter gourd": 60, "karela": 60,
    "pumpkin": 35,

    # Cooking Oils (per litre)
    "oil": 180, "sunflower": 180, "refined": 180,
    "mustard oil": 200, "sarson": 200,
    "groundnut": 220, "peanut": 220,
    "ghee": 500, "clarified butter": 500, "butter": 450,

    # Dairy (per litre/kg)
    "milk": 60, "curd": 60, "yogurt": 60,
    "paneer": 350, "cottage cheese": 350,
    "cheese": 400, "cream": 200, "malai": 200,

    # Pulses/Lentils (per kg)
    "dal": 110, "lentil": 110,
    "toor": 120, "pigeon pea": 120,
    "moong": 110, "green gram": 110,
    "masoor": 100, "red lentil": 100,
    "chana": 90, "chickpea": 90, "bengal gram": 90,
    "urad": 120, "black gram": 120,
    "rajma": 130, "kidney beans": 130,

    # Spices
    "salt": 20, "sugar": 45,
    "masala": 120, "spice": 120,
    "turmeric": 60, "chilli": 100, "mirch": 100, "red chilli": 100,
    "cumin": 120, "coriander powder": 80,
    "garam masala": 150, "black pepper": 200, "kali mirch": 200,
    "cardamom": 800, "clove": 600, "cinnamon": 300,
    "bay leaf": 200, "tej patta": 200,
    "mustard seeds": 100, "rai": 100,
    "fenugreek": 80, "asafoetida": 400,

    # Packaged/Processed
    "bread": 40, "pav": 30,
    "biscuit": 50, "cookie": 60,
    "jam": 120, "sauce": 100, "ketchup": 100,
    "pickle": 150, "achar": 150,
    "papad": 60, "vermicelli": 60, "sevai": 60,
    "noodles": 80, "pasta": 100,

    # Eggs & Meat (per dozen/kg)
    "egg": 70, "chicken": 200, "fish": 350, "mutton": 600,

    # Beverages
    "tea": 350, "coffee": 400, "water": 20,
}

DEFAULT_ESTIMATE = 75
ESTIMATE_UNIT = "1 unit"

_CENTS = Decimal("0.01")


class EstimateTable:
    """
    Static category -> market-rate lookup with per-platform multipliers.

    The longest category keyword found at a word start in the normalized
    name wins, so "coriander powder" beats "coriander" and "tomatoes"
    still matches "tomato".
    """

    def __init__(
        self,
        rates: Optional[Dict[str, int]] = None,
        multipliers: Optional[Dict[str, float]] = None,
        default_rate: int = DEFAULT_ESTIMATE,
    ):
        self.rates = {k: Decimal(str(v)) for k, v in (rates or PRICE_ESTIMATES).items()}
        self.multipliers = {
            k: Decimal(str(v))
            for k, v in (multipliers or settings.platform_multipliers).items()
        }
        self.default_rate = Decimal(str(default_rate))
        # Longest keywords first; stable sort keeps table order for ties
        self._patterns = [
            (keyword, re.compile(rf"\b{re.escape(keyword)}"))
            for keyword in sorted(self.rates, key=len, reverse=True)
        ]

    def base_rate(self, normalized_name: str) -> Decimal:
        """Market rate for the best matching category, or the default rate."""
        for keyword, pattern in self._patterns:
            if pattern.search(normalized_name):
                return self.rates[keyword]
        return self.default_rate

    def multiplier(self, platform: str) -> Decimal:
        return self.multipliers.get(platform, Decimal("1"))

    def estimate_price(self, normalized_name: str, platform: str) -> Decimal:
        price = self.base_rate(normalized_name) * self.multiplier(platform)
        return price.quantize(_CENTS, rounding=ROUND_HALF_UP)

    def estimate(self, normalized_name: str, platform: str) -> PriceObservation:
        """Build an estimated observation for a platform."""
        price = self.estimate_price(normalized_name, platform)
        logger.debug(f"[{platform}] Estimated {normalized_name!r} at INR {price}")
        return PriceObservation(
            price=price,
            unit=ESTIMATE_UNIT,
            is_estimate=True,
            source=SOURCE_ESTIMATE,
        )
