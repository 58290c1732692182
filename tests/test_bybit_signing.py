import hmac
import json
from decimal import Decimal
from hashlib import sha256

from quicky.exchange.signing import build_query_string, canonical_body, sign_request
from quicky.types import Credentials, NetworkMode

_CREDS = Credentials(api_key="XXXXXXXXXX", api_secret="YYYYYYYYYY", mode=NetworkMode.TESTNET)


def test_build_query_string_sorts_keys_and_drops_none() -> None:
    assert build_query_string({"symbol": "XRPUSD", "category": "inverse", "limit": None}) == (
        "category=inverse&symbol=XRPUSD"
    )


def test_canonical_body_is_sorted_compact_and_renders_decimals_plainly() -> None:
    body = canonical_body(
        {"symbol": "XRPUSD", "price": Decimal("0.6542"), "qty": "1", "reduceOnly": True, "x": None}
    )
    assert body == '{"price":"0.6542","qty":"1","reduceOnly":true,"symbol":"XRPUSD"}'
    assert json.loads(body)["price"] == "0.6542"


def test_sign_request_post_signs_timestamp_key_window_and_body() -> None:
    signed = sign_request(
        "POST",
        "/v5/order/create",
        {"symbol": "XRPUSD", "side": "Buy", "qty": "1"},
        _CREDS,
        timestamp_ms=1658384314791,
        recv_window_ms=5000,
    )
    body = '{"qty":"1","side":"Buy","symbol":"XRPUSD"}'
    expected = hmac.new(
        b"YYYYYYYYYY",
        f"1658384314791XXXXXXXXXX5000{body}".encode("utf-8"),
        sha256,
    ).hexdigest()
    assert signed.payload == body
    assert signed.signature == expected
    assert signed.headers["X-BAPI-SIGN"] == expected
    assert signed.headers["X-BAPI-API-KEY"] == "XXXXXXXXXX"
    assert signed.headers["X-BAPI-TIMESTAMP"] == "1658384314791"
    assert signed.headers["X-BAPI-RECV-WINDOW"] == "5000"
    assert signed.headers["Content-Type"] == "application/json"


def test_sign_request_get_signs_query_string() -> None:
    signed = sign_request(
        "GET",
        "/v5/order/realtime",
        {"symbol": "XRPUSD", "category": "inverse"},
        _CREDS,
        timestamp_ms=1,
        recv_window_ms=20000,
    )
    qs = "category=inverse&symbol=XRPUSD"
    expected = hmac.new(b"YYYYYYYYYY", f"1XXXXXXXXXX20000{qs}".encode("utf-8"), sha256).hexdigest()
    assert signed.payload == qs
    assert signed.signature == expected
    assert "Content-Type" not in signed.headers


def test_signature_changes_with_timestamp() -> None:
    params = {"symbol": "XRPUSD"}
    first = sign_request("POST", "/p", params, _CREDS, timestamp_ms=1, recv_window_ms=5000)
    second = sign_request("POST", "/p", params, _CREDS, timestamp_ms=2, recv_window_ms=5000)
    assert first.signature != second.signature


def test_credentials_repr_hides_secret() -> None:
    assert "YYYYYYYYYY" not in repr(_CREDS)
