from __future__ import annotations

import asyncio
import logging
import time
from decimal import Decimal, InvalidOperation
from typing import Any

import typer

from quicky.engine import PipelineState, QuickOrderOutcome, QuickOrderPipeline
from quicky.errors import (
    AmbiguousOrderStateError,
    InvalidPercentError,
    QuickyError,
    UnprotectedPositionError,
)
from quicky.exchange import BybitClient
from quicky.logging_utils import configure_logging
from quicky.pricing import DEFAULT_STOP_LOSS_PCT
from quicky.settings import Settings, resolve_credentials
from quicky.types import NetworkMode

app = typer.Typer(
    add_completion=False,
    help="quicky lets you place a limit order quickly, with a stop-loss right behind it.",
)
logger = logging.getLogger("quicky")


def _failure_report(err: QuickyError) -> dict[str, Any]:
    report: dict[str, Any] = {
        "ok": False,
        "error": err.kind,
        "failure": err.failure_class,
        # Credentials are resolved before the pipeline leaves IDLE.
        "state": (err.state or PipelineState.IDLE).value,
        "message": str(err),
    }
    if isinstance(err, UnprotectedPositionError):
        report["entry_order_id"] = err.entry.order_id
        report["entry_order_link_id"] = err.entry.order_link_id
        report["stop_loss_price"] = str(err.stop_loss_price)
        report["cause"] = type(err.cause).__name__
    if isinstance(err, AmbiguousOrderStateError):
        report["order_link_id"] = err.order_link_id
    return report


def _parse_percent(text: str) -> Decimal:
    # Decimal from the raw text: 0.1 stays exactly 0.1.
    try:
        return Decimal(text.strip())
    except InvalidOperation as e:
        raise InvalidPercentError(text) from e


def _success_report(
    outcome: QuickOrderOutcome,
    *,
    mode: NetworkMode,
    elapsed_seconds: float,
) -> dict[str, Any]:
    return {
        "ok": True,
        "mode": mode.value,
        "symbol": outcome.symbol,
        "side": outcome.side,
        "qty": outcome.qty,
        "market_price": str(outcome.market_price),
        "limit_price": str(outcome.limit_price),
        "stop_loss_price": str(outcome.stop_loss_price),
        "entry_order_id": outcome.entry.order_id,
        "stop_loss_order_id": outcome.stop_loss.order_id,
        "elapsed_secs": f"{elapsed_seconds:.2f}",
    }


@app.command()
def place(
    symbol: str = typer.Option(..., "--symbol", "-s", help="Symbol to trade, e.g. XRPUSD."),
    qty: int = typer.Option(
        ...,
        "--qty",
        "-q",
        help="Contracts to trade. Positive for buy side, negative for sell side.",
    ),
    sl_pcnt: str = typer.Option(
        str(DEFAULT_STOP_LOSS_PCT),
        "--sl-pcnt",
        help="Stop-loss distance from the entry price, in percent.",
    ),
    testnet: bool = typer.Option(False, "--testnet", help="Execute against testnet."),
) -> None:
    """
    Place a passive limit order one tick off the last trade, then its stop-loss.

    Exit code 0 when both orders are accepted, 1 on a failure before the entry
    order, 2 when the entry is live but its stop-loss is not, 3 when an order's
    state on the exchange is unknown.
    """
    settings = Settings()
    configure_logging(settings.log_level)
    mode = NetworkMode.TESTNET if testnet else NetworkMode.MAINNET

    async def _run() -> QuickOrderOutcome:
        stop_loss_pct = _parse_percent(sl_pcnt)
        credentials = resolve_credentials(settings, mode)
        client = BybitClient(
            credentials=credentials,
            timeout_seconds=settings.http_timeout_seconds,
            recv_window_ms=settings.recv_window_ms,
            max_retries=settings.market_data_max_retries,
            retry_base_seconds=settings.retry_base_seconds,
        )
        try:
            pipeline = QuickOrderPipeline(client=client, sync_clock=settings.sync_server_time)
            return await pipeline.run(
                symbol=symbol.strip().upper(),
                qty=qty,
                stop_loss_pct=stop_loss_pct,
            )
        finally:
            await client.aclose()

    started = time.perf_counter()
    try:
        outcome = asyncio.run(_run())
    except QuickyError as e:
        typer.echo(_failure_report(e), err=True)
        raise typer.Exit(code=e.exit_code) from e

    logger.info("done", extra={"symbol": outcome.symbol, "mode": mode.value})
    typer.echo(
        _success_report(
            outcome,
            mode=mode,
            elapsed_seconds=time.perf_counter() - started,
        )
    )
