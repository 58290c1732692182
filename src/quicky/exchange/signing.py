from __future__ import annotations

import hmac
import json
from dataclasses import dataclass
from decimal import Decimal
from hashlib import sha256
from typing import Any, Literal
from urllib.parse import urlencode

from quicky.types import Credentials

Method = Literal["GET", "POST"]


@dataclass(frozen=True)
class SignedRequest:
    method: Method
    path: str
    # Query string for GET, JSON body for POST; sent exactly as signed.
    payload: str
    timestamp_ms: int
    recv_window_ms: int
    signature: str
    headers: dict[str, str]


def _normalize_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return format(value, "f")
    return value


def _compact_params(params: dict[str, Any]) -> dict[str, Any]:
    return {k: _normalize_value(v) for k, v in params.items() if v is not None}


def build_query_string(params: dict[str, Any]) -> str:
    items: list[tuple[str, str]] = []
    for key, value in sorted(_compact_params(params).items()):
        if isinstance(value, bool):
            value = "true" if value else "false"
        items.append((key, str(value)))
    return urlencode(items)


def canonical_body(params: dict[str, Any]) -> str:
    return json.dumps(_compact_params(params), sort_keys=True, separators=(",", ":"))


def sign_payload(
    payload: str,
    credentials: Credentials,
    *,
    timestamp_ms: int,
    recv_window_ms: int,
) -> str:
    message = f"{timestamp_ms}{credentials.api_key}{recv_window_ms}{payload}"
    mac = hmac.new(credentials.api_secret.encode("utf-8"), message.encode("utf-8"), sha256)
    return mac.hexdigest()


def sign_request(
    method: Method,
    path: str,
    params: dict[str, Any],
    credentials: Credentials,
    *,
    timestamp_ms: int,
    recv_window_ms: int,
) -> SignedRequest:
    payload = build_query_string(params) if method == "GET" else canonical_body(params)
    signature = sign_payload(
        payload,
        credentials,
        timestamp_ms=timestamp_ms,
        recv_window_ms=recv_window_ms,
    )
    headers = {
        "X-BAPI-API-KEY": credentials.api_key,
        "X-BAPI-TIMESTAMP": str(timestamp_ms),
        "X-BAPI-RECV-WINDOW": str(recv_window_ms),
        "X-BAPI-SIGN": signature,
        "X-BAPI-SIGN-TYPE": "2",
    }
    if method == "POST":
        headers["Content-Type"] = "application/json"
    return SignedRequest(
        method=method,
        path=path,
        payload=payload,
        timestamp_ms=timestamp_ms,
        recv_window_ms=recv_window_ms,
        signature=signature,
        headers=headers,
    )
