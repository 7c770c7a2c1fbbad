# storefront_sdk/pricing.py
"""
Client-side price computation.

A product's unit price is its base price plus the price adjustment of the
value chosen for each option. The price range shown on product cards walks
every combination of option values. All arithmetic is done in Decimal.

Enumeration is exponential in the number of options (one branch per value at
each level). Products here carry a handful of options, so that is accepted.
"""
import math
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Iterable, Iterator, List, NamedTuple, Optional, Sequence, Tuple

from . import config
from .errors import InvalidQuantity, MalformedPriceInput
from .models import ById, ByName, CartLine, Option, OptionSelection, OptionValue

ZERO = Decimal("0")

Lookup = Callable[[Option], Optional[OptionValue]]


class PriceRange(NamedTuple):
    min: Decimal
    max: Decimal
    has_range: bool


# ---------------------------
# Input coercion
# ---------------------------
def to_decimal(value: Any, what: str = "price", blank_as_zero: bool = False) -> Decimal:
    if isinstance(value, bool):
        raise MalformedPriceInput(f"{what} must be a number, got {value!r}")
    if isinstance(value, float):
        if not math.isfinite(value):
            raise MalformedPriceInput(f"{what} must be finite, got {value!r}")
        value = str(value)
    if value is None or value == "":
        if blank_as_zero:
            return ZERO
        raise MalformedPriceInput(f"{what} is missing")
    try:
        d = value if isinstance(value, Decimal) else Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise MalformedPriceInput(f"{what} is not a number: {value!r}")
    if not d.is_finite():
        raise MalformedPriceInput(f"{what} must be finite, got {value!r}")
    return d


def _base(base_price: Any) -> Decimal:
    base = to_decimal(base_price, "base price")
    if base < 0:
        raise MalformedPriceInput(f"base price cannot be negative: {base}")
    return base


def _adjustment(value: OptionValue) -> Decimal:
    return to_decimal(value.price_adjustment, f"price adjustment of {value.name!r}", blank_as_zero=True)


def _ordered(options: Iterable[Option]) -> List[Option]:
    # zero-value options are treated as absent
    return sorted((o for o in options if o.values), key=lambda o: o.sort_order)


# ---------------------------
# Combination enumerator
# ---------------------------
def iter_combinations(options: Sequence[Option]) -> Iterator[Tuple[OptionValue, ...]]:
    """Yield one tuple of values per variant, depth-first in option order."""
    ordered = _ordered(options)

    def walk(index: int, chosen: Tuple[OptionValue, ...]):
        if index >= len(ordered):
            yield chosen
            return
        for value in ordered[index].values:
            yield from walk(index + 1, chosen + (value,))

    yield from walk(0, ())


def enumerate_prices(options: Sequence[Option], base_price: Any = ZERO) -> List[Decimal]:
    """Every price reachable by picking exactly one value from each option."""
    base = _base(base_price)
    ordered = _ordered(options)
    prices: List[Decimal] = []

    def walk(index: int, running: Decimal):
        if index >= len(ordered):
            prices.append(base + running)
            return
        for value in ordered[index].values:
            walk(index + 1, running + _adjustment(value))

    walk(0, ZERO)
    return prices


def price_range(base_price: Any, options: Sequence[Option]) -> PriceRange:
    prices = enumerate_prices(options, base_price)
    low, high = min(prices), max(prices)
    return PriceRange(low, high, low != high)


# ---------------------------
# Price resolver
# ---------------------------
def unit_price(
    base_price: Any,
    options: Sequence[Option],
    selection: Optional[OptionSelection] = None,
    lookup: Optional[Lookup] = None,
) -> Decimal:
    """
    Base price plus the adjustment of the selected value of every option.

    Options without a selection contribute nothing. ``lookup`` overrides the
    selection's own lookup when a call site keys its selections differently.
    """
    price = _base(base_price)
    if lookup is None:
        if selection is None:
            return price
        lookup = selection.lookup
    for option in options:
        value = lookup(option)
        if value is not None:
            price += _adjustment(value)
    return price


def line_total(unit: Any, quantity: int) -> Decimal:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidQuantity(f"quantity must be an integer, got {quantity!r}")
    if quantity < config.MIN_QUANTITY or quantity > config.MAX_QUANTITY:
        raise InvalidQuantity(
            f"quantity must be between {config.MIN_QUANTITY} and {config.MAX_QUANTITY}, got {quantity}"
        )
    return to_decimal(unit, "unit price") * quantity


def clamp_quantity(quantity: Any, low: Optional[int] = None, high: Optional[int] = None) -> int:
    """What the quantity stepper does with whatever the user typed."""
    low = config.MIN_QUANTITY if low is None else low
    high = config.MAX_QUANTITY if high is None else high
    try:
        q = int(quantity)
    except (TypeError, ValueError):
        return low
    return max(low, min(high, q))


def default_selection(options: Sequence[Option]) -> ById:
    """Initial product-page selection: the default value, else the first one in stock."""
    chosen = {}
    for option in options:
        if option.id is None or not option.values:
            continue
        values = sorted(option.values, key=lambda v: v.sort_order)
        pick = next((v for v in values if v.is_default), None)
        if pick is None:
            pick = next((v for v in values if not v.is_sold_out), None)
        if pick is not None and pick.id is not None:
            chosen[str(option.id)] = pick.id
    return ById(chosen)


def cart_total(lines: Iterable[CartLine]) -> Decimal:
    """Sum of line totals; lines whose product data has not loaded are skipped."""
    total = ZERO
    for line in lines:
        if line.product is None:
            continue
        unit = unit_price(line.product.base_price, line.product.options, ByName(line.selected_options))
        total += line_total(unit, line.quantity)
    return total
