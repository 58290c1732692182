import json
from pathlib import Path
from typing import Any

import httpx
import pytest
from typer.testing import CliRunner

import quicky.cli as cli_module
from quicky.exchange import BybitClient

runner = CliRunner()

_ENV = {
    "BYBIT_API_KEY": "",
    "BYBIT_API_SECRET": "",
    "BYBIT_TESTNET_API_KEY": "test-key",
    "BYBIT_TESTNET_API_SECRET": "test-secret",
    "LOG_LEVEL": "CRITICAL",
}


def _install_transport(
    monkeypatch: pytest.MonkeyPatch,
    *,
    stop_loss_times_out: bool = False,
    entry_gateway_error: bool = False,
) -> list[httpx.Request]:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.path == "/v5/market/tickers":
            return httpx.Response(
                200,
                json={
                    "retCode": 0,
                    "retMsg": "OK",
                    "result": {"list": [{"symbol": "XRPUSD", "lastPrice": "0.6543"}]},
                },
            )
        body = json.loads(request.content)
        if body["orderType"] == "Limit" and entry_gateway_error:
            return httpx.Response(504, text="gateway timeout")
        if body["orderType"] == "Market" and stop_loss_times_out:
            raise httpx.ReadTimeout("timeout", request=request)
        order_id = "entry-1" if body["orderType"] == "Limit" else "sl-1"
        return httpx.Response(
            200,
            json={"retCode": 0, "retMsg": "OK", "result": {"orderId": order_id, "orderLinkId": ""}},
        )

    def _factory(**kwargs: Any) -> BybitClient:
        return BybitClient(**kwargs, transport=httpx.MockTransport(handler))

    monkeypatch.setattr(cli_module, "BybitClient", _factory)
    return seen


@pytest.fixture(autouse=True)
def _isolated_cwd(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)


def test_cli_places_both_orders_on_testnet(monkeypatch: pytest.MonkeyPatch) -> None:
    seen = _install_transport(monkeypatch)

    result = runner.invoke(
        cli_module.app,
        ["--symbol", "XRPUSD", "--qty", "1", "--testnet"],
        env=_ENV,
    )

    assert result.exit_code == 0, result.output
    assert "'entry_order_id': 'entry-1'" in result.output
    assert "'stop_loss_order_id': 'sl-1'" in result.output
    assert "'limit_price': '0.6542'" in result.output
    assert {r.url.host for r in seen} == {"api-testnet.bybit.com"}


def test_cli_unprotected_position_exits_2_and_reports_entry(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    _install_transport(monkeypatch, stop_loss_times_out=True)

    result = runner.invoke(
        cli_module.app,
        ["-s", "XRPUSD", "-q", "1", "--sl-pcnt", "0.5", "--testnet"],
        env=_ENV,
    )

    assert result.exit_code == 2
    assert "UnprotectedPositionError" in result.output
    assert "'entry_order_id': 'entry-1'" in result.output
    assert "'failure': 'unprotected'" in result.output


def test_cli_missing_mainnet_credentials_exits_1_before_any_request(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    seen = _install_transport(monkeypatch)

    result = runner.invoke(cli_module.app, ["--symbol", "XRPUSD", "--qty=-1"], env=_ENV)

    assert result.exit_code == 1
    assert "MissingCredentialsError" in result.output
    assert "BYBIT_API_KEY" in result.output
    assert seen == []


def test_cli_unsupported_symbol_exits_1(monkeypatch: pytest.MonkeyPatch) -> None:
    seen = _install_transport(monkeypatch)

    result = runner.invoke(
        cli_module.app,
        ["--symbol", "FOOBAR", "--qty", "1", "--testnet"],
        env=_ENV,
    )

    assert result.exit_code == 1
    assert "UnsupportedSymbolError" in result.output
    assert "'failure': 'pre_entry'" in result.output
    assert seen == []


def test_cli_ambiguous_entry_exits_3_and_reports_link_id(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    seen = _install_transport(monkeypatch, entry_gateway_error=True)

    result = runner.invoke(
        cli_module.app,
        ["--symbol", "XRPUSD", "--qty", "1", "--testnet"],
        env=_ENV,
    )

    assert result.exit_code == 3
    assert "AmbiguousOrderStateError" in result.output
    assert "'failure': 'ambiguous'" in result.output
    assert "'order_link_id': 'quicky-" in result.output
    assert [r.url.path for r in seen] == ["/v5/market/tickers", "/v5/order/create"]


def test_cli_unparseable_stop_loss_percent_exits_1_before_any_request(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    seen = _install_transport(monkeypatch)

    result = runner.invoke(
        cli_module.app,
        ["--symbol", "XRPUSD", "--qty", "1", "--sl-pcnt", "abc", "--testnet"],
        env=_ENV,
    )

    assert result.exit_code == 1
    assert "InvalidPercentError" in result.output
    assert "got abc" in result.output
    assert seen == []


def test_cli_stop_loss_percent_is_used_exactly(monkeypatch: pytest.MonkeyPatch) -> None:
    seen = _install_transport(monkeypatch)

    result = runner.invoke(
        cli_module.app,
        ["--symbol", "XRPUSD", "--qty", "1", "--sl-pcnt", "0.1", "--testnet"],
        env=_ENV,
    )

    assert result.exit_code == 0, result.output
    # 0.6542 * 0.999 = 0.6535458, floored to the tick.
    assert "'stop_loss_price': '0.6535'" in result.output
    stop_body = json.loads(seen[-1].content)
    assert stop_body["triggerPrice"] == "0.6535"
