"""Browser automation that fills a grocery platform's cart.

The browser runs with a persistent profile so the user's login and delivery
address survive between runs, and it is left open after items are added so
the user can review the cart and pay.
"""

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote_plus

from playwright.async_api import BrowserContext, ElementHandle, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from mealcart.config import settings
from mealcart.pricing.units import UNIT_COUNT, parse_quantity

logger = logging.getLogger(__name__)

REASON_BLOCKED = "automation_blocked"
REASON_NOT_FOUND = "not_found"
REASON_NO_ADD_BUTTON = "add_button_not_found"
STATUS_ALREADY_IN_CART = "already_in_cart"

MAX_CLICKS_PER_ITEM = 5

# Words that never distinguish one product from another
_IGNORED_TOKENS = {"the", "and", "fresh", "pure", "pack", "pkt"}

_CARD_PRICE_PATTERN = re.compile(r"(?:₹|rs\.?)\s*([0-9]+(?:\.[0-9]+)?)", re.IGNORECASE)

# Loose produce is sold by weight; a bare count means one pack
_LOOSE_PRODUCE = re.compile(r"\b(onions?|tomato(?:es)?|potato(?:es)?)\b", re.IGNORECASE)


class CartAutomationError(RuntimeError):
    """Raised when the browser cannot be started or driven at all."""

    pass


@dataclass(frozen=True)
class PlatformConfig:
    """Where to search and what to click on one platform."""

    base_url: str
    search_url: str  # Contains {query}
    cart_url: str
    product_cards: Tuple[str, ...]
    add_buttons: Tuple[str, ...]
    in_cart_marker: Optional[str] = None
    blocked_text: Optional[str] = None

    def search_url_for(self, query: str) -> str:
        return self.search_url.format(query=quote_plus(query))


PLATFORM_CONFIGS: Dict[str, PlatformConfig] = {
    "blinkit": PlatformConfig(
        base_url="https://blinkit.com",
        search_url="https://blinkit.com/s/?q={query}",
        cart_url="https://blinkit.com",
        product_cards=('a[href*="/prn/"]', '[data-test-id="product-card"]', '[class*="Product__"]'),
        add_buttons=('div[class*="AddToCart"]', 'button:has-text("ADD")', 'div:text-is("ADD")'),
    ),
    "bigbasket": PlatformConfig(
        base_url="https://www.bigbasket.com",
        search_url="https://www.bigbasket.com/ps/?q={query}",
        cart_url="https://www.bigbasket.com/basket/?ver=1",
        product_cards=(
            '[class*="ProductDeckStory"]',
            '[qa="product_name"]',
            'div[class*="sku-card"]',
            'li[class*="PaginateItems"]',
        ),
        add_buttons=('button[qa="add"]', 'button:has-text("Add")'),
        in_cart_marker='[class*="Counter"]',
    ),
    "zepto": PlatformConfig(
        base_url="https://www.zeptonow.com",
        search_url="https://www.zeptonow.com/search?query={query}",
        cart_url="https://www.zeptonow.com/cart",
        product_cards=('[data-testid="product-card"]',),
        add_buttons=('[data-testid="add-to-cart-button"]', 'button:has-text("Add")'),
    ),
    "instamart": PlatformConfig(
        base_url="https://www.swiggy.com/instamart",
        search_url="https://www.swiggy.com/instamart/search?query={query}",
        cart_url="https://www.swiggy.com/checkout",
        product_cards=('[data-testid="item-card-container"]',),
        add_buttons=('[data-testid="item-add-button"]', 'button:has-text("Add")'),
        blocked_text="Something went wrong",
    ),
}


@dataclass
class CartLine:
    """One item to put in the cart."""

    item: str
    qty: str = "1 unit"

    @property
    def clicks(self) -> int:
        """How many times to press Add for this line."""
        return clicks_for_quantity(self.item, self.qty)


@dataclass
class CartItemOutcome:
    """What happened to one cart line."""

    item: str
    success: bool
    quantity: int = 0
    reason: Optional[str] = None
    status: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "item": self.item,
            "success": self.success,
            "quantity": self.quantity,
            "reason": self.reason,
            "status": self.status,
        }


@dataclass
class CartRunResult:
    """Outcome of adding a list of items on one platform."""

    platform: str
    details: List[CartItemOutcome] = field(default_factory=list)
    checkout_opened: bool = False
    order_attempt_id: Optional[int] = None

    @property
    def total(self) -> int:
        return len(self.details)

    @property
    def added(self) -> int:
        return sum(1 for d in self.details if d.success)

    @property
    def failed(self) -> int:
        return self.total - self.added

    @property
    def manual_required(self) -> bool:
        """True when the platform refused automation and the user must add items."""
        return any(d.reason == REASON_BLOCKED for d in self.details)

    @property
    def message(self) -> str:
        if self.manual_required:
            return f"{self.platform} blocked automation. Please add items manually in the opened browser."
        if self.checkout_opened:
            return "Browser opened at checkout. Complete payment manually."
        return "Browser opened with items in cart. Complete checkout manually."

    def to_dict(self) -> Dict[str, Any]:
        return {
            "platform": self.platform,
            "added": self.added,
            "failed": self.failed,
            "total": self.total,
            "details": [d.to_dict() for d in self.details],
            "manual_required": self.manual_required,
            "checkout_opened": self.checkout_opened,
            "order_attempt_id": self.order_attempt_id,
            "message": self.message,
        }


def clicks_for_quantity(item: str, qty: Optional[str]) -> int:
    """
    Number of Add presses for a shopping list quantity.

    Weights and volumes are one pack; counts are pressed that many times,
    capped at MAX_CLICKS_PER_ITEM. Loose produce is always one pack.
    """
    quantity = parse_quantity(qty)
    if quantity.unit_class != UNIT_COUNT or _LOOSE_PRODUCE.search(item or ""):
        return 1
    return max(1, min(int(quantity.value.to_integral_value()), MAX_CLICKS_PER_ITEM))


def tokenize_product_text(text: str) -> List[str]:
    """Lowercase alphanumeric tokens without filler words."""
    tokens = re.sub(r"[^a-z0-9\s]", " ", (text or "").lower()).split()
    return [t for t in tokens if t not in _IGNORED_TOKENS]


def parse_card_price(text: str) -> Optional[Decimal]:
    """First rupee amount shown on a product card."""
    match = _CARD_PRICE_PATTERN.search(text or "")
    return Decimal(match.group(1)) if match else None


def score_product_text(item: str, text: str, price: Optional[Decimal] = None) -> Optional[Decimal]:
    """
    Score a product card for an item: token overlap first, then lower price.

    Returns:
        Score, or None when the card shares no tokens with the item
    """
    wanted = tokenize_product_text(item)
    present = set(tokenize_product_text(text))
    matches = sum(1 for token in wanted if token in present)
    if matches == 0:
        return None
    effective_price = price if price is not None else Decimal("999999")
    return Decimal(matches * 100000) - effective_price


def pick_best_product(item: str, cards: Sequence[str]) -> Optional[int]:
    """
    Choose which product card to add.

    Args:
        item: Item being searched for
        cards: Visible text of each product card, in page order

    Returns:
        Index of the chosen card, the first card when none match, or None
        when there are no cards
    """
    if not cards:
        return None

    best_index = 0
    best_score: Optional[Decimal] = None
    for index, text in enumerate(cards):
        score = score_product_text(item, text, parse_card_price(text))
        if score is not None and (best_score is None or score > best_score):
            best_index, best_score = index, score
    return best_index


class CartDriver(ABC):
    """Something that can put items into a platform's cart."""

    @abstractmethod
    async def add_items(self, platform: str, lines: Sequence[CartLine]) -> CartRunResult:
        """Add every line, one outcome per line."""

    @abstractmethod
    async def open_checkout(self, platform: str) -> bool:
        """Navigate to the cart/checkout page; True if it opened."""

    @abstractmethod
    async def stop(self) -> bool:
        """Close any running session; True if one was running."""


class PlaywrightCartDriver(CartDriver):
    """
    Cart driver backed by a persistent Chromium profile.

    Features:
    - Persistent profile keeps login and delivery address
    - Best product card by token overlap, then lowest price
    - Block-page detection reported as a manual-action outcome
    - Session stays open for the user until stop() is called
    """

    def __init__(
        self,
        user_data_dir: Optional[str] = None,
        headless: Optional[bool] = None,
        navigation_timeout_ms: Optional[int] = None,
        selector_timeout_ms: Optional[int] = None,
        max_candidates: Optional[int] = None,
        click_delay_ms: int = 1200,
    ):
        self.user_data_dir = Path(user_data_dir or settings.cart_user_data_dir)
        self.headless = settings.cart_headless if headless is None else headless
        self.navigation_timeout_ms = navigation_timeout_ms or settings.cart_navigation_timeout_ms
        self.selector_timeout_ms = selector_timeout_ms or settings.cart_selector_timeout_ms
        self.max_candidates = max_candidates or settings.cart_max_candidates
        self.click_delay_ms = click_delay_ms

        self._playwright: Optional[Playwright] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None
        self._lock = asyncio.Lock()

    async def _ensure_page(self) -> Page:
        if self._page is not None and not self._page.is_closed():
            return self._page

        if self._playwright is None:
            self._playwright = await async_playwright().start()

        if self._context is None:
            self.user_data_dir.mkdir(parents=True, exist_ok=True)
            try:
                self._context = await self._playwright.chromium.launch_persistent_context(
                    str(self.user_data_dir),
                    headless=self.headless,
                    viewport={"width": 1920, "height": 1080},
                    args=[
                        "--disable-blink-features=AutomationControlled",
                        "--no-sandbox",
                    ],
                )
            except PlaywrightError as e:
                await self._playwright.stop()
                self._playwright = None
                raise CartAutomationError(
                    "Browser profile locked or browser unavailable. Close other browser windows and retry."
                ) from e

        pages = self._context.pages
        self._page = pages[0] if pages else await self._context.new_page()
        self._page.set_default_timeout(self.selector_timeout_ms)
        return self._page

    async def _goto(self, page: Page, url: str, base_url: str):
        try:
            await page.goto(url, wait_until="networkidle", timeout=self.navigation_timeout_ms)
        except PlaywrightTimeoutError:
            logger.warning(f"[Cart] Navigation to {url} timed out, retrying via {base_url}")
            try:
                await page.goto(base_url, wait_until="domcontentloaded", timeout=self.navigation_timeout_ms)
            except PlaywrightError as e:
                logger.debug(f"[Cart] Base URL load failed: {e}")
            await page.goto(url, wait_until="domcontentloaded", timeout=self.navigation_timeout_ms)

    async def _is_blocked(self, page: Page, config: PlatformConfig) -> bool:
        if not config.blocked_text:
            return False
        try:
            body = await page.inner_text("body")
        except PlaywrightError:
            return False
        return config.blocked_text in body

    async def _find_cards(self, page: Page, config: PlatformConfig) -> List[ElementHandle]:
        try:
            await page.wait_for_selector(", ".join(config.product_cards), timeout=self.selector_timeout_ms)
        except PlaywrightTimeoutError:
            logger.debug(f"[Cart] No product cards appeared on {page.url}")
        for selector in config.product_cards:
            cards = await page.query_selector_all(selector)
            if cards:
                return cards[:self.max_candidates]
        return []

    async def _find_add_button(
        self,
        page: Page,
        card: ElementHandle,
        config: PlatformConfig,
    ) -> Optional[ElementHandle]:
        for selector in config.add_buttons:
            button = await card.query_selector(selector)
            if button:
                return button
        for selector in config.add_buttons:
            button = await page.query_selector(selector)
            if button:
                return button
        return None

    async def _add_line(self, page: Page, platform: str, config: PlatformConfig, line: CartLine) -> CartItemOutcome:
        logger.info(f"[Cart] Searching {platform} for: {line.item}")
        await self._goto(page, config.search_url_for(line.item), config.base_url)

        if await self._is_blocked(page, config):
            logger.warning(f"[Cart] {platform} blocked automation for {line.item!r}")
            return CartItemOutcome(item=line.item, success=False, reason=REASON_BLOCKED)

        # Lazy-loaded result grids render on scroll
        await page.mouse.wheel(0, 300)
        cards = await self._find_cards(page, config)
        if not cards:
            logger.info(f"[Cart] No products found for: {line.item}")
            return CartItemOutcome(item=line.item, success=False, reason=REASON_NOT_FOUND)

        texts = []
        for card in cards:
            try:
                texts.append(" ".join((await card.inner_text()).split()))
            except PlaywrightError:
                texts.append("")
        card = cards[pick_best_product(line.item, texts)]

        if config.in_cart_marker and await card.query_selector(config.in_cart_marker):
            logger.info(f"[Cart] {line.item!r} already in cart")
            return CartItemOutcome(item=line.item, success=True, status=STATUS_ALREADY_IN_CART)

        clicks = 0
        for _ in range(line.clicks):
            button = await self._find_add_button(page, card, config)
            if button is None:
                break
            try:
                await button.scroll_into_view_if_needed()
                await button.click()
            except PlaywrightError as e:
                logger.debug(f"[Cart] Add click failed for {line.item!r}: {e}")
                break
            clicks += 1
            await page.wait_for_timeout(self.click_delay_ms)

        if clicks == 0:
            logger.info(f"[Cart] Add button missing for: {line.item}")
            return CartItemOutcome(item=line.item, success=False, reason=REASON_NO_ADD_BUTTON)

        logger.info(f"[Cart] Added {clicks}x {line.item}")
        return CartItemOutcome(item=line.item, success=True, quantity=clicks)

    async def add_items(self, platform: str, lines: Sequence[CartLine]) -> CartRunResult:
        config = PLATFORM_CONFIGS.get(platform)
        if config is None:
            raise CartAutomationError(f"No cart configuration for platform {platform!r}")

        result = CartRunResult(platform=platform)
        async with self._lock:
            page = await self._ensure_page()
            logger.info(f"[Cart] Adding {len(lines)} items on {platform}")
            for line in lines:
                try:
                    outcome = await self._add_line(page, platform, config, line)
                except PlaywrightError as e:
                    logger.error(f"[Cart] Error adding {line.item!r}: {e}")
                    outcome = CartItemOutcome(item=line.item, success=False, reason=str(e))
                result.details.append(outcome)

        logger.info(f"[Cart] Cart populated: {result.added}/{result.total} items added")
        return result

    async def open_checkout(self, platform: str) -> bool:
        config = PLATFORM_CONFIGS.get(platform)
        if config is None:
            return False
        async with self._lock:
            page = await self._ensure_page()
            try:
                await self._goto(page, config.cart_url, config.base_url)
            except PlaywrightError as e:
                logger.warning(f"[Cart] Could not open {platform} cart: {e}")
                return False
        logger.info(f"[Cart] Opened {platform} cart for checkout")
        return True

    async def stop(self) -> bool:
        """Close the browser session."""
        if self._context is None and self._playwright is None:
            return False
        if self._context is not None:
            try:
                await self._context.close()
            except PlaywrightError as e:
                logger.error(f"[Cart] Error closing browser context: {e}")
            self._context = None
            self._page = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
        logger.info("[Cart] Automation stopped")
        return True
