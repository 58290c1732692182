from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from uuid import uuid4

from quicky.errors import QuickyError, UnprotectedPositionError
from quicky.exchange import BybitClient
from quicky.pricing import (
    DEFAULT_STOP_LOSS_PCT,
    compute_stop_loss,
    round_to_passive_tick,
    side_from_qty,
    validate_stop_loss_pct,
)
from quicky.ticks import tick_size_for
from quicky.types import OrderRequest, OrderResult, Side, opposite_side

logger = logging.getLogger("quicky.pipeline")


class PipelineState(str, Enum):
    IDLE = "idle"
    FETCHING_PRICE = "fetching_price"
    COMPUTING = "computing"
    SUBMITTING_ENTRY = "submitting_entry"
    SUBMITTING_STOP_LOSS = "submitting_stop_loss"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class QuickOrderOutcome:
    symbol: str
    side: Side
    qty: int
    market_price: Decimal
    limit_price: Decimal
    stop_loss_price: Decimal
    entry: OrderResult
    stop_loss: OrderResult


def _new_order_link_id(tag: str) -> str:
    # Bybit caps orderLinkId at 36 characters.
    return f"quicky-{tag}-{uuid4().hex[:20]}"


class QuickOrderPipeline:
    """
    Fetch price, compute entry and stop-loss, then submit both orders.

    The two submissions are not atomic. Between entry acceptance and stop-loss
    acceptance the position is unprotected; a failure there is raised as
    `UnprotectedPositionError`, and a process kill there is not recovered.
    """

    def __init__(
        self,
        *,
        client: BybitClient,
        sync_clock: bool = False,
        link_id_factory: Callable[[str], str] | None = None,
    ) -> None:
        self._client = client
        self._sync_clock = sync_clock
        self._new_link_id = link_id_factory or _new_order_link_id
        self.state = PipelineState.IDLE
        self.history: list[PipelineState] = [PipelineState.IDLE]

    def _transition(self, state: PipelineState) -> None:
        self.state = state
        self.history.append(state)
        logger.debug("pipeline_state", extra={"state": state.value})

    async def run(
        self,
        *,
        symbol: str,
        qty: int,
        stop_loss_pct: Decimal = DEFAULT_STOP_LOSS_PCT,
    ) -> QuickOrderOutcome:
        try:
            return await self._run(symbol=symbol, qty=qty, stop_loss_pct=stop_loss_pct)
        except QuickyError as e:
            if e.state is None:
                e.state = self.state
            self._transition(PipelineState.FAILED)
            logger.error(
                "quick_order_failed",
                extra={"symbol": symbol, "qty": qty, "state": e.state.value},
            )
            raise

    async def _run(self, *, symbol: str, qty: int, stop_loss_pct: Decimal) -> QuickOrderOutcome:
        # Everything that can be checked without the market is checked first.
        side = side_from_qty(qty)
        tick = tick_size_for(symbol)
        validate_stop_loss_pct(stop_loss_pct)
        size = abs(qty)

        self._transition(PipelineState.FETCHING_PRICE)
        if self._sync_clock:
            await self._client.sync_time_offset()
        market_price = await self._client.last_traded_price(symbol)

        self._transition(PipelineState.COMPUTING)
        limit_price = round_to_passive_tick(market_price, tick, side)
        stop_loss_price = compute_stop_loss(limit_price, side, stop_loss_pct, tick)
        logger.info(
            "prices_computed",
            extra={"symbol": symbol, "side": side, "qty": size, "price": str(limit_price)},
        )

        self._transition(PipelineState.SUBMITTING_ENTRY)
        entry = await self._client.create_order(
            OrderRequest(
                symbol=symbol,
                side=side,
                qty=size,
                kind="Limit",
                price=limit_price,
                order_link_id=self._new_link_id("entry"),
            )
        )
        logger.info(
            "entry_accepted",
            extra={"symbol": symbol, "order_id": entry.order_id, "order_link_id": entry.order_link_id},
        )

        self._transition(PipelineState.SUBMITTING_STOP_LOSS)
        try:
            stop_loss = await self._client.create_order(
                OrderRequest(
                    symbol=symbol,
                    side=opposite_side(side),
                    qty=size,
                    kind="StopMarket",
                    trigger_price=stop_loss_price,
                    order_link_id=self._new_link_id("sl"),
                )
            )
        except Exception as e:
            logger.error(
                "position_unprotected",
                extra={"symbol": symbol, "order_id": entry.order_id, "price": str(stop_loss_price)},
            )
            raise UnprotectedPositionError(
                entry=entry,
                stop_loss_price=stop_loss_price,
                cause=e,
            ) from e
        logger.info(
            "stop_loss_accepted",
            extra={
                "symbol": symbol,
                "order_id": stop_loss.order_id,
                "order_link_id": stop_loss.order_link_id,
                "price": str(stop_loss_price),
            },
        )

        self._transition(PipelineState.DONE)
        return QuickOrderOutcome(
            symbol=symbol,
            side=side,
            qty=size,
            market_price=market_price,
            limit_price=limit_price,
            stop_loss_price=stop_loss_price,
            entry=entry,
            stop_loss=stop_loss,
        )
