from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx

from quicky.errors import (
    AmbiguousOrderStateError,
    ExchangeRejectedError,
    MarketDataError,
    NetworkError,
)
from quicky.exchange.signing import sign_request
from quicky.types import Credentials, NetworkMode, OrderRequest, OrderResult

logger = logging.getLogger("quicky.exchange")

_BASE_URLS: dict[NetworkMode, str] = {
    NetworkMode.MAINNET: "https://api.bybit.com",
    NetworkMode.TESTNET: "https://api-testnet.bybit.com",
}
_CATEGORY = "inverse"
_DEFAULT_RECV_WINDOW_MS = 5_000
_DEFAULT_MAX_RETRIES = 3
_DEFAULT_RETRY_BASE_SECONDS = 0.5
_DEFAULT_RETRY_MAX_SECONDS = 8.0

# "Server Timeout" / "Server error": the order may still have been placed.
_AMBIGUOUS_RET_CODES = frozenset({10000, 10016})


def base_url_for(mode: NetworkMode) -> str:
    return _BASE_URLS[mode]


def _now_ms() -> int:
    return int(time.time() * 1000)


def order_params(order: OrderRequest) -> dict[str, Any]:
    params: dict[str, Any] = {
        "category": _CATEGORY,
        "symbol": order.symbol,
        "side": order.side,
        "qty": str(order.qty),
        "orderLinkId": order.order_link_id or None,
    }
    if order.kind == "Limit":
        if order.price is None:
            raise ValueError("limit order requires a price")
        params["orderType"] = "Limit"
        params["price"] = order.price
        # Rejected instead of filled as taker if it would cross the book.
        params["timeInForce"] = "PostOnly"
    else:
        if order.trigger_price is None:
            raise ValueError("stop-loss order requires a trigger price")
        params["orderType"] = "Market"
        params["triggerPrice"] = order.trigger_price
        # 1: fires when price rises to trigger, 2: when it falls.
        params["triggerDirection"] = 2 if order.side == "Sell" else 1
        params["triggerBy"] = "LastPrice"
        params["reduceOnly"] = True
        params["closeOnTrigger"] = True
    return params


def parse_last_price(result: Any, *, symbol: str) -> Decimal:
    rows = result.get("list") if isinstance(result, dict) else None
    if not isinstance(rows, list) or not rows:
        raise MarketDataError(f"ticker response for {symbol} has no rows")
    row = next(
        (r for r in rows if isinstance(r, dict) and r.get("symbol") == symbol),
        None,
    )
    if row is None:
        raise MarketDataError(f"ticker response has no row for {symbol}")
    try:
        return Decimal(str(row["lastPrice"]))
    except (KeyError, InvalidOperation) as e:
        raise MarketDataError(f"ticker row for {symbol} has no usable lastPrice: {row!r}") from e


def parse_server_time_ms(result: Any) -> int:
    """
    Server time in milliseconds from a `/v5/market/time` result.

    `timeNano` carries nanoseconds as a string; `timeSecond` is the fallback.
    """
    if not isinstance(result, dict):
        raise MarketDataError(f"malformed server time result: {result!r}")
    try:
        if result.get("timeNano"):
            return int(str(result["timeNano"])) // 1_000_000
        return int(str(result["timeSecond"])) * 1000
    except (KeyError, ValueError) as e:
        raise MarketDataError(f"malformed server time result: {result!r}") from e


class BybitClient:
    def __init__(
        self,
        *,
        credentials: Credentials,
        timeout_seconds: float = 10.0,
        recv_window_ms: int = _DEFAULT_RECV_WINDOW_MS,
        max_retries: int = _DEFAULT_MAX_RETRIES,
        retry_base_seconds: float = _DEFAULT_RETRY_BASE_SECONDS,
        retry_max_seconds: float = _DEFAULT_RETRY_MAX_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self._credentials = credentials
        self._recv_window_ms = int(max(1, recv_window_ms))
        self._max_retries = int(max(0, max_retries))
        self._retry_base_seconds = float(max(0.0, retry_base_seconds))
        self._retry_max_seconds = float(max(self._retry_base_seconds, retry_max_seconds))
        self._clock = clock or _now_ms
        self._time_offset_ms = 0
        # Endpoint follows the credentials' network so the two cannot disagree.
        self._client = httpx.AsyncClient(
            base_url=base_url_for(credentials.mode),
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
        )

    @property
    def mode(self) -> NetworkMode:
        return self._credentials.mode

    async def aclose(self) -> None:
        await self._client.aclose()

    async def server_time_ms(self) -> int:
        result = await self._get_public("/v5/market/time", params={})
        return parse_server_time_ms(result)

    async def sync_time_offset(self) -> int:
        server_ms = await self.server_time_ms()
        self._time_offset_ms = server_ms - self._clock()
        logger.info("clock_synced", extra={"offset_ms": self._time_offset_ms})
        return self._time_offset_ms

    async def last_traded_price(self, symbol: str) -> Decimal:
        result = await self._get_public(
            "/v5/market/tickers",
            params={"category": _CATEGORY, "symbol": symbol},
        )
        return parse_last_price(result, symbol=symbol)

    async def create_order(self, order: OrderRequest) -> OrderResult:
        """
        Submit one order. Never retried: a failure after the request may have
        reached the exchange raises `AmbiguousOrderStateError`.
        """
        signed = sign_request(
            "POST",
            "/v5/order/create",
            order_params(order),
            self._credentials,
            timestamp_ms=self._clock() + self._time_offset_ms,
            recv_window_ms=self._recv_window_ms,
        )
        try:
            response = await self._client.post(
                signed.path,
                content=signed.payload,
                headers=signed.headers,
            )
        except (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout) as e:
            raise NetworkError(f"could not reach exchange to submit {order.kind} order: {e!r}") from e
        except httpx.RequestError as e:
            raise AmbiguousOrderStateError(
                f"no response to {order.kind} order submission: {e!r}",
                order_link_id=order.order_link_id,
            ) from e
        return _order_result(response, order)

    async def _get_public(self, path: str, *, params: dict[str, Any]) -> Any:
        attempt = 0
        while True:
            try:
                response = await self._client.get(path, params=params)
            except httpx.RequestError as e:
                if attempt >= self._max_retries:
                    raise NetworkError(
                        f"GET {path} failed after {attempt + 1} attempt(s): {e!r}"
                    ) from e
                logger.warning("request_retry", extra={"attempt": attempt + 1})
                await asyncio.sleep(self._retry_delay_seconds(attempt=attempt, response=None))
                attempt += 1
                continue

            if response.status_code >= 400:
                if _should_retry_http_error(status_code=response.status_code):
                    if attempt < self._max_retries:
                        logger.warning("request_retry", extra={"attempt": attempt + 1})
                        await asyncio.sleep(
                            self._retry_delay_seconds(attempt=attempt, response=response)
                        )
                        attempt += 1
                        continue
                    raise NetworkError(
                        f"GET {path} returned HTTP {response.status_code} "
                        f"after {attempt + 1} attempt(s)"
                    )
                payload = _json_or_text(response)
                raise ExchangeRejectedError(
                    ret_code=_ret_code(payload),
                    ret_msg=_ret_msg(payload),
                    http_status=response.status_code,
                    payload=payload,
                )

            try:
                payload = response.json()
            except ValueError as e:
                raise MarketDataError(f"GET {path} returned a non-JSON body") from e
            ret_code = _ret_code(payload)
            if ret_code is None:
                raise MarketDataError(f"GET {path} returned no retCode: {payload!r}")
            if ret_code != 0:
                raise ExchangeRejectedError(
                    ret_code=ret_code,
                    ret_msg=_ret_msg(payload),
                    http_status=response.status_code,
                    payload=payload,
                )
            return payload.get("result")

    def _retry_delay_seconds(
        self,
        *,
        attempt: int,
        response: httpx.Response | None,
    ) -> float:
        if response is not None:
            retry_after = response.headers.get("Retry-After")
            if retry_after:
                try:
                    value = float(retry_after)
                    if value > 0:
                        return value
                except ValueError:
                    pass
        delay = self._retry_base_seconds * (2**attempt)
        return float(min(delay, self._retry_max_seconds))


def _order_result(response: httpx.Response, order: OrderRequest) -> OrderResult:
    link_id = order.order_link_id
    if response.status_code >= 500:
        raise AmbiguousOrderStateError(
            f"HTTP {response.status_code} on {order.kind} order submission",
            order_link_id=link_id,
        )
    try:
        payload = response.json()
    except ValueError as e:
        if response.status_code >= 400:
            raise ExchangeRejectedError(
                ret_code=None,
                ret_msg=response.text[:200],
                http_status=response.status_code,
            ) from e
        raise AmbiguousOrderStateError(
            f"non-JSON response to {order.kind} order submission",
            order_link_id=link_id,
        ) from e

    ret_code = _ret_code(payload)
    if response.status_code >= 400 or (ret_code is not None and ret_code != 0):
        if ret_code in _AMBIGUOUS_RET_CODES:
            raise AmbiguousOrderStateError(
                f"exchange returned ret_code={ret_code} ({_ret_msg(payload)}) "
                f"on {order.kind} order submission",
                order_link_id=link_id,
            )
        raise ExchangeRejectedError(
            ret_code=ret_code,
            ret_msg=_ret_msg(payload),
            http_status=response.status_code,
            payload=payload,
        )
    if ret_code is None:
        raise AmbiguousOrderStateError(
            f"response to {order.kind} order submission has no retCode",
            order_link_id=link_id,
        )

    result = payload.get("result")
    order_id = result.get("orderId") if isinstance(result, dict) else None
    if not order_id:
        raise AmbiguousOrderStateError(
            f"{order.kind} order acknowledged without an orderId",
            order_link_id=link_id,
        )
    return OrderResult(
        order_id=str(order_id),
        order_link_id=str(result.get("orderLinkId") or link_id),
        symbol=order.symbol,
        side=order.side,
        kind=order.kind,
    )


def _json_or_text(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


def _ret_code(payload: Any) -> int | None:
    if not isinstance(payload, dict):
        return None
    try:
        return int(payload["retCode"])
    except (KeyError, TypeError, ValueError):
        return None


def _ret_msg(payload: Any) -> str:
    if isinstance(payload, dict):
        return str(payload.get("retMsg", ""))
    return str(payload)[:200]


def _should_retry_http_error(*, status_code: int) -> bool:
    return status_code in (418, 429) or status_code >= 500
