from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Literal

Side = Literal["Buy", "Sell"]
OrderKind = Literal["Limit", "StopMarket"]


class NetworkMode(str, Enum):
    MAINNET = "mainnet"
    TESTNET = "testnet"


@dataclass(frozen=True)
class Credentials:
    api_key: str
    api_secret: str = field(repr=False)
    mode: NetworkMode = NetworkMode.MAINNET


@dataclass(frozen=True)
class OrderRequest:
    symbol: str
    side: Side
    qty: int
    kind: OrderKind
    # Limit price for the entry order; trigger price for the stop-loss.
    price: Decimal | None = None
    trigger_price: Decimal | None = None
    order_link_id: str = ""


@dataclass(frozen=True)
class OrderResult:
    order_id: str
    order_link_id: str
    symbol: str
    side: Side
    kind: OrderKind


def opposite_side(side: Side) -> Side:
    return "Sell" if side == "Buy" else "Buy"
