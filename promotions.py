"""Promotion code validation and discount calculation."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Iterable, List, Optional, Protocol

from schemas import Cart, CartItem, Promotion, ValidationResult

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

INVALID_CODE = "Invalid or inactive promotion code"
EXPIRED = "Promotion code has expired"
USAGE_LIMIT_REACHED = "Promotion usage limit reached"
USER_LIMIT_REACHED = "You have reached the usage limit for this promotion"
NOT_APPLICABLE = "Promotion not applicable to items in your cart"
SALE_ITEMS_EXCLUDED = (
    "This promotion code cannot be applied to items already on sale. "
    "Please use full-price items to apply this discount."
)
UNAVAILABLE = "Unable to validate promotion code right now"


class PromotionLookup(Protocol):
    def find_promotion_by_code(self, code: str) -> Optional[Promotion]:  # pragma: no cover - interface
        ...

    def count_redemptions_for_user(self, promotion_id: str, user_id: str) -> int:  # pragma: no cover - interface
        ...


def to_money(value) -> Decimal:
    # str() keeps 33.33 as 33.33 instead of its binary expansion
    return Decimal(str(value))


def round_money(value) -> Decimal:
    return to_money(value).quantize(CENT, rounding=ROUND_HALF_UP)


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


@dataclass
class Eligibility:
    applies: bool
    eligible_subtotal: Decimal = Decimal("0")
    items: List[CartItem] = field(default_factory=list)


def line_total(items: Iterable[CartItem]) -> Decimal:
    return sum((to_money(item.price) * item.quantity for item in items), Decimal("0"))


def cart_total(cart: Cart) -> Decimal:
    if cart.items_price is not None:
        return to_money(cart.items_price)
    return line_total(cart.items)


def filter_eligible_items(
    applies_to: str,
    applicable_products: Iterable,
    applicable_categories: Iterable,
    items: Iterable[CartItem],
) -> Eligibility:
    """Select the cart items a promotion scope covers and total them.

    An "all" scope always applies, an empty cart included. Product and
    category scopes apply only when at least one item matches.
    """
    items = list(items)
    if applies_to == "all":
        return Eligibility(applies=True, eligible_subtotal=line_total(items), items=items)

    if applies_to == "products":
        wanted = {str(pid) for pid in applicable_products}
        matched = [item for item in items if str(item.product) in wanted]
    elif applies_to == "categories":
        wanted = {str(cid) for cid in applicable_categories}
        matched = [item for item in items if str(item.category) in wanted]
    else:
        matched = []

    if not matched:
        return Eligibility(applies=False)
    return Eligibility(applies=True, eligible_subtotal=line_total(matched), items=matched)


def without_sale_items(items: Iterable[CartItem]) -> List[CartItem]:
    return [item for item in items if item.list_price is None or item.list_price <= item.price]


def calculate_discount(
    promotion_type: str,
    value,
    max_discount_amount,
    eligible_subtotal,
) -> float:
    """Return the discount for an eligible subtotal, rounded to cents.

    A fixed amount never exceeds the subtotal. ``max_discount_amount`` caps
    the result only when it is a positive number; None and 0 leave the
    discount uncapped.
    """
    subtotal = to_money(eligible_subtotal)

    if promotion_type == "percentage":
        discount = subtotal * to_money(value) / Decimal("100")
    elif promotion_type == "fixed":
        discount = min(to_money(value), subtotal)
    else:
        # free shipping is reported separately
        discount = Decimal("0")

    if max_discount_amount and max_discount_amount > 0:
        discount = min(discount, to_money(max_discount_amount))

    return float(round_money(discount))


def _failure(error: str, error_code: str) -> ValidationResult:
    return ValidationResult(success=False, error=error, error_code=error_code)


class PromotionEvaluator:
    """Validates promotion codes against carts.

    Validation only reads: it never increments ``used_count`` or writes a
    usage record, so a successful result reserves nothing. The order commit
    has to go through ``PromotionStore.record_redemption``, which re-checks
    the limits atomically.
    """

    def __init__(self, lookup: PromotionLookup, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._lookup = lookup
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def validate(self, code: str, cart: Cart, user_id: Optional[str] = None) -> ValidationResult:
        normalized = normalize_code(code)
        try:
            result = self._evaluate(normalized, cart, user_id)
        except Exception:
            logger.exception("Promotion lookup failed for code %s", normalized)
            return _failure(UNAVAILABLE, "UNAVAILABLE")

        if not result.success:
            logger.debug("Promotion %s rejected: %s", normalized, result.error_code)
        return result

    def _evaluate(self, code: str, cart: Cart, user_id: Optional[str]) -> ValidationResult:
        if not code:
            return _failure(INVALID_CODE, "NOT_FOUND")

        promotion = self._lookup.find_promotion_by_code(code)
        if promotion is None or not promotion.active:
            return _failure(INVALID_CODE, "NOT_FOUND")

        now = self._clock()
        if now < promotion.start_date or now > promotion.end_date:
            return _failure(EXPIRED, "OUT_OF_WINDOW")

        if promotion.min_order_value and cart_total(cart) < to_money(promotion.min_order_value):
            return _failure(
                f"Minimum order value of ${promotion.min_order_value:.2f} required",
                "BELOW_MINIMUM",
            )

        if promotion.usage_limit and promotion.used_count >= promotion.usage_limit:
            return _failure(USAGE_LIMIT_REACHED, "GLOBAL_LIMIT_REACHED")

        if user_id and promotion.user_usage_limit:
            used = self._lookup.count_redemptions_for_user(promotion.id, user_id)
            if used >= promotion.user_usage_limit:
                return _failure(USER_LIMIT_REACHED, "USER_LIMIT_REACHED")

        eligibility = filter_eligible_items(
            promotion.applies_to,
            promotion.applicable_products,
            promotion.applicable_categories,
            cart.items,
        )
        if not eligibility.applies:
            return _failure(NOT_APPLICABLE, "NOT_APPLICABLE")

        subtotal = eligibility.eligible_subtotal
        if promotion.exclude_sale_items and eligibility.items:
            full_price = without_sale_items(eligibility.items)
            if not full_price:
                return _failure(SALE_ITEMS_EXCLUDED, "SALE_ITEMS_EXCLUDED")
            subtotal = line_total(full_price)

        discount = calculate_discount(
            promotion.type,
            promotion.value,
            promotion.max_discount_amount,
            subtotal,
        )

        return ValidationResult(
            success=True,
            discount=discount,
            free_shipping=promotion.type == "free_shipping",
            promotion=promotion,
        )
