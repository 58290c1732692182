"""Error taxonomy for quicky.

Every error carries the pipeline state it was raised in (filled in by the
pipeline) and the process exit code the CLI should use for it.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from quicky.engine.quick_order import PipelineState
    from quicky.types import OrderResult


class QuickyError(Exception):
    """Base exception for all quicky errors."""

    exit_code = 1
    failure_class = "pre_entry"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.state: PipelineState | None = None

    @property
    def kind(self) -> str:
        return type(self).__name__


class UnsupportedSymbolError(QuickyError):
    def __init__(self, symbol: str) -> None:
        super().__init__(f"no tick size configured for symbol {symbol!r}")
        self.symbol = symbol


class InvalidPriceError(QuickyError):
    pass


class InvalidPercentError(QuickyError):
    def __init__(self, pct: Decimal | str) -> None:
        super().__init__(f"stop-loss percent must be within (0, 100), got {pct}")
        self.pct = pct


class InvalidQuantityError(QuickyError):
    pass


class MissingCredentialsError(QuickyError):
    def __init__(self, variables: list[str]) -> None:
        super().__init__(f"missing required environment variable(s): {', '.join(variables)}")
        self.variables = tuple(variables)


class NetworkError(QuickyError):
    """Transport failure; the request is known not to have taken effect."""


class MarketDataError(QuickyError):
    """Market data response could not be interpreted."""


class ExchangeRejectedError(QuickyError):
    def __init__(
        self,
        *,
        ret_code: int | None,
        ret_msg: str,
        http_status: int,
        payload: Any = None,
    ) -> None:
        super().__init__(
            f"exchange rejected request: status={http_status} "
            f"ret_code={ret_code} ret_msg={ret_msg!r}"
        )
        self.ret_code = ret_code
        self.ret_msg = ret_msg
        self.http_status = http_status
        self.payload = payload


class AmbiguousOrderStateError(QuickyError):
    """The order may or may not be live on the exchange. Never retried."""

    exit_code = 3
    failure_class = "ambiguous"

    def __init__(self, message: str, *, order_link_id: str) -> None:
        super().__init__(f"{message} (check order_link_id={order_link_id} on the exchange)")
        self.order_link_id = order_link_id


class UnprotectedPositionError(QuickyError):
    """Entry order accepted but the stop-loss order was not."""

    exit_code = 2
    failure_class = "unprotected"

    def __init__(
        self,
        *,
        entry: OrderResult,
        stop_loss_price: Decimal,
        cause: BaseException,
    ) -> None:
        super().__init__(
            f"entry order {entry.order_id} accepted but stop-loss at {stop_loss_price} "
            f"failed: {cause}; position is UNPROTECTED"
        )
        self.entry = entry
        self.stop_loss_price = stop_loss_price
        self.cause = cause
