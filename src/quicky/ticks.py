from __future__ import annotations

from decimal import Decimal

from quicky.errors import UnsupportedSymbolError

# Inverse perpetual price steps. Hard-coded so an order does not pay for an
# instruments-info round trip; add an entry to support a new symbol.
TICK_SIZES: dict[str, Decimal] = {
    "XRPUSD": Decimal("0.0001"),
    "BTCUSD": Decimal("0.5"),
    "ETHUSD": Decimal("0.05"),
}


def tick_size_for(symbol: str) -> Decimal:
    try:
        return TICK_SIZES[symbol]
    except KeyError:
        raise UnsupportedSymbolError(symbol) from None
