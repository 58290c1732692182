__all__ = ["BybitClient", "SignedRequest", "sign_request"]

from quicky.exchange.bybit import BybitClient
from quicky.exchange.signing import SignedRequest, sign_request
