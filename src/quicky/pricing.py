from __future__ import annotations

from decimal import ROUND_CEILING, ROUND_FLOOR, Decimal

from quicky.errors import InvalidPercentError, InvalidPriceError, InvalidQuantityError
from quicky.types import Side

DEFAULT_STOP_LOSS_PCT = Decimal("0.2")

_HUNDRED = Decimal("100")


def side_from_qty(qty: int) -> Side:
    if qty == 0:
        raise InvalidQuantityError("quantity must be non-zero (positive buys, negative sells)")
    return "Buy" if qty > 0 else "Sell"


def _floor_to_tick(value: Decimal, tick: Decimal) -> Decimal:
    return (value / tick).to_integral_value(rounding=ROUND_FLOOR) * tick


def _ceil_to_tick(value: Decimal, tick: Decimal) -> Decimal:
    return (value / tick).to_integral_value(rounding=ROUND_CEILING) * tick


def _check_positive(value: Decimal, what: str) -> None:
    if not value.is_finite() or value <= 0:
        raise InvalidPriceError(f"{what} must be a positive finite number, got {value}")


def round_to_passive_tick(price: Decimal, tick: Decimal, side: Side) -> Decimal:
    """
    Snap `price` to the tick grid on the side that keeps a limit order resting.

    Buy lands strictly below `price` and Sell strictly above it, at most one
    tick away. A price already on the grid moves one full tick.
    """
    _check_positive(tick, "tick size")
    _check_positive(price, "market price")

    if side == "Buy":
        limit = _floor_to_tick(price, tick)
        if limit == price:
            limit -= tick
    else:
        limit = _ceil_to_tick(price, tick)
        if limit == price:
            limit += tick

    if limit <= 0:
        raise InvalidPriceError(f"limit price {limit} for market price {price} is not positive")
    return limit


def validate_stop_loss_pct(pct: Decimal) -> Decimal:
    if not pct.is_finite() or pct <= 0 or pct >= _HUNDRED:
        raise InvalidPercentError(pct)
    return pct


def compute_stop_loss(entry: Decimal, side: Side, pct: Decimal, tick: Decimal) -> Decimal:
    """
    Trigger price `pct` percent against the position, rounded away from entry.

    A long's stop is floored below the entry, a short's is ceiled above it, so
    rounding never moves the stop closer to the entry. The stop is always at
    least one tick away from the entry, however small `pct` is.
    """
    validate_stop_loss_pct(pct)
    _check_positive(tick, "tick size")
    _check_positive(entry, "entry price")

    if side == "Buy":
        stop = _floor_to_tick(entry * (1 - pct / _HUNDRED), tick)
        if stop >= entry:
            # pct below the context precision leaves the product equal to entry.
            stop = _ceil_to_tick(entry, tick) - tick
    else:
        stop = _ceil_to_tick(entry * (1 + pct / _HUNDRED), tick)
        if stop <= entry:
            stop = _floor_to_tick(entry, tick) + tick

    if stop <= 0:
        raise InvalidPriceError(f"stop-loss price {stop} for entry {entry} is not positive")
    return stop
