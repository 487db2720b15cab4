"""Tests for copybridge.broker — OANDA client with mocked HTTP responses."""

import asyncio

import httpx
import pytest

from copybridge.broker.models import AccountSummary, PendingOrder, Price, Trade
from copybridge.broker.oanda_client import OandaClient
from copybridge.broker.order_manager import OrderManager
from copybridge.config import Config
from copybridge.errors import BrokerError
from copybridge.strategy.models import CurrencyPair

ACCOUNT_URL = "https://api-fxpractice.oanda.com/v3/accounts/101-001-12345678-001"


def _make_config(environment: str = "practice") -> Config:
    return Config(
        oanda_account_id="101-001-12345678-001",
        oanda_api_token="test-token",
        oanda_environment=environment,
    )


def _response(status: int, url: str, payload: dict, method: str = "GET") -> httpx.Response:
    return httpx.Response(status, json=payload, request=httpx.Request(method, url))


# ── Mock OANDA responses ────────────────────────────────────────────────

MOCK_ACCOUNT_RESPONSE = {
    "account": {
        "id": "101-001-12345678-001",
        "balance": "10000.00",
        "NAV": "10150.50",
        "openTradeCount": 2,
        "pendingOrderCount": 1,
        "currency": "USD",
    }
}

MOCK_PRICING_RESPONSE = {
    "prices": [
        {
            "instrument": "USD_JPY",
            "bids": [{"price": "109.950", "liquidity": 1000000}],
            "asks": [{"price": "109.970", "liquidity": 1000000}],
            "quoteHomeConversionFactors": {
                "positiveUnits": "0.00909380",
                "negativeUnits": "0.00909546",
            },
        }
    ]
}

MOCK_TRADES_RESPONSE = {
    "trades": [
        {
            "id": "6397",
            "instrument": "EUR_USD",
            "currentUnits": "-6000",
            "price": "1.10100",
            "unrealizedPL": "-12.40",
            "openTime": "2025-01-10T12:00:00.000000000Z",
            "stopLossOrder": {"id": "6398", "price": "1.15000"},
        },
        {
            "id": "6401",
            "instrument": "EUR_USD",
            "currentUnits": "-3000",
            "price": "1.10200",
        },
    ]
}

MOCK_ORDERS_RESPONSE = {
    "orders": [
        {
            "id": "6398",
            "type": "STOP_LOSS",
            "tradeID": "6397",
            "price": "1.15000",
        },
        {
            "id": "6410",
            "type": "LIMIT",
            "instrument": "EUR_USD",
            "units": "6000",
            "price": "1.09900",
            "timeInForce": "GTC",
            "stopLossOnFill": {"price": "0.93240"},
        },
    ]
}


# ── Queries ──────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_account_summary(monkeypatch):
    """Balance and equity parsed from mock response."""
    client = OandaClient(_make_config())

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        return _response(200, url, MOCK_ACCOUNT_RESPONSE)

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    summary = await client.get_account_summary()
    assert isinstance(summary, AccountSummary)
    assert summary.balance == pytest.approx(10000.0)
    assert summary.equity == pytest.approx(10150.5)
    assert summary.open_trade_count == 2
    assert summary.pending_order_count == 1
    assert summary.currency == "USD"


@pytest.mark.asyncio
async def test_get_price(monkeypatch):
    client = OandaClient(_make_config())
    captured = {}

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        captured["url"] = url
        captured["params"] = params
        return _response(200, url, MOCK_PRICING_RESPONSE)

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    price = await client.get_price("USD_JPY")
    assert isinstance(price, Price)
    assert price.bid == pytest.approx(109.95)
    assert price.ask == pytest.approx(109.97)
    assert price.quote_home_factor == pytest.approx(0.0090938)
    assert price.short_quote_home_factor == pytest.approx(0.00909546)
    assert captured["url"] == f"{ACCOUNT_URL}/pricing"
    assert captured["params"] == {"instruments": "USD_JPY"}


@pytest.mark.asyncio
async def test_list_open_trades(monkeypatch):
    client = OandaClient(_make_config())
    captured = {}

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        captured["params"] = params
        return _response(200, url, MOCK_TRADES_RESPONSE)

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    trades = await client.list_open_trades("EUR_USD")
    assert captured["params"] == {"instrument": "EUR_USD", "state": "OPEN"}
    assert len(trades) == 2
    t = trades[0]
    assert isinstance(t, Trade)
    assert t.trade_id == "6397"
    assert t.units == pytest.approx(-6000)
    assert t.price == pytest.approx(1.101)
    assert t.stop_loss_price == pytest.approx(1.15)
    assert trades[1].stop_loss_price is None


@pytest.mark.asyncio
async def test_list_pending_orders_skips_dependent_orders(monkeypatch):
    """Stop-loss orders attached to trades are not entry orders."""
    client = OandaClient(_make_config())

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        return _response(200, url, MOCK_ORDERS_RESPONSE)

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    orders = await client.list_pending_orders("EUR_USD")
    assert len(orders) == 1
    o = orders[0]
    assert isinstance(o, PendingOrder)
    assert o.order_id == "6410"
    assert o.order_type == "LIMIT"
    assert o.price == pytest.approx(1.099)
    assert o.stop_loss_price == pytest.approx(0.9324)


# ── Orders ───────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_market_order_payload(monkeypatch):
    """Market order JSON matches the OANDA v20 format; SELL units are negative."""
    client = OandaClient(_make_config())
    captured_body = {}

    async def _mock_post(self, url, *, headers=None, json=None, timeout=None):
        captured_body.update(json)
        return _response(201, url, {
            "orderCreateTransaction": {"id": "7000"},
            "orderFillTransaction": {"id": "7001", "tradeOpened": {"tradeID": "7001", "units": "-3000"}},
        }, "POST")

    monkeypatch.setattr(httpx.AsyncClient, "post", _mock_post)

    trade_id = await client.place_market_order("EUR_USD", "SELL", 3000)

    assert trade_id == "7001"
    order_body = captured_body["order"]
    assert order_body["type"] == "MARKET"
    assert order_body["instrument"] == "EUR_USD"
    assert order_body["units"] == "-3000"
    assert order_body["timeInForce"] == "FOK"


@pytest.mark.asyncio
async def test_market_order_cancelled_raises(monkeypatch):
    client = OandaClient(_make_config())

    async def _mock_post(self, url, *, headers=None, json=None, timeout=None):
        return _response(201, url, {
            "orderCreateTransaction": {"id": "7000"},
            "orderCancelTransaction": {"id": "7001", "reason": "MARKET_HALTED"},
        }, "POST")

    monkeypatch.setattr(httpx.AsyncClient, "post", _mock_post)

    with pytest.raises(BrokerError, match="MARKET_HALTED"):
        await client.place_market_order("EUR_USD", "BUY", 1000)


@pytest.mark.asyncio
async def test_limit_order_payload_jpy(monkeypatch):
    client = OandaClient(_make_config())
    captured_body = {}

    async def _mock_post(self, url, *, headers=None, json=None, timeout=None):
        captured_body.update(json)
        return _response(201, url, {"orderCreateTransaction": {"id": "8000"}}, "POST")

    monkeypatch.setattr(httpx.AsyncClient, "post", _mock_post)

    order_id = await client.place_limit_order("USD_JPY", "BUY", 6000, 110.02)

    assert order_id == "8000"
    order_body = captured_body["order"]
    assert order_body["type"] == "LIMIT"
    assert order_body["units"] == "6000"
    assert order_body["price"] == "110.020"
    assert order_body["timeInForce"] == "GTC"


@pytest.mark.asyncio
async def test_modify_trade_sl_payload(monkeypatch):
    client = OandaClient(_make_config())
    captured = {}

    async def _mock_put(self, url, *, headers=None, json=None, timeout=None):
        captured["url"] = url
        captured["body"] = json
        return _response(200, url, {}, "PUT")

    monkeypatch.setattr(httpx.AsyncClient, "put", _mock_put)

    await client.modify_trade_sl("6397", "EUR_USD", 1.0948)

    assert captured["url"] == f"{ACCOUNT_URL}/trades/6397/orders"
    assert captured["body"] == {"stopLoss": {"price": "1.09480", "timeInForce": "GTC"}}


@pytest.mark.asyncio
async def test_modify_order_sl_replaces_order(monkeypatch):
    """Pending order is re-submitted with a stop-loss-on-fill."""
    client = OandaClient(_make_config())
    captured = {}

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        return _response(200, url, {"order": MOCK_ORDERS_RESPONSE["orders"][1]})

    async def _mock_put(self, url, *, headers=None, json=None, timeout=None):
        captured["url"] = url
        captured["body"] = json
        return _response(201, url, {
            "orderCancelTransaction": {"id": "6411", "orderID": "6410"},
            "orderCreateTransaction": {"id": "6412", "replacesOrderID": "6410"},
        }, "PUT")

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)
    monkeypatch.setattr(httpx.AsyncClient, "put", _mock_put)

    new_id = await client.modify_order_sl("6410", 0.9300)

    assert new_id == "6412"
    assert captured["url"] == f"{ACCOUNT_URL}/orders/6410"
    body = captured["body"]["order"]
    assert body["type"] == "LIMIT"
    assert body["price"] == "1.09900"
    assert body["units"] == "6000"
    assert body["stopLossOnFill"] == {"price": "0.93000"}


@pytest.mark.asyncio
async def test_close_and_cancel_urls(monkeypatch):
    client = OandaClient(_make_config())
    urls = []

    async def _mock_put(self, url, *, headers=None, json=None, timeout=None):
        urls.append(url)
        return _response(200, url, {}, "PUT")

    monkeypatch.setattr(httpx.AsyncClient, "put", _mock_put)

    await client.close_trade("6397")
    await client.cancel_order("6410")

    assert urls == [
        f"{ACCOUNT_URL}/trades/6397/close",
        f"{ACCOUNT_URL}/orders/6410/cancel",
    ]


# ── Retry behaviour ──────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_get_retries_on_503(monkeypatch):
    client = OandaClient(_make_config())
    statuses = [503, 200]

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        return _response(statuses.pop(0), url, MOCK_ACCOUNT_RESPONSE)

    async def _no_sleep(delay):
        return None

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)
    monkeypatch.setattr(asyncio, "sleep", _no_sleep)

    summary = await client.get_account_summary()
    assert summary.balance == pytest.approx(10000.0)
    assert statuses == []


@pytest.mark.asyncio
async def test_order_placement_is_not_retried(monkeypatch):
    client = OandaClient(_make_config())
    attempts = []

    async def _mock_post(self, url, *, headers=None, json=None, timeout=None):
        attempts.append(url)
        return _response(503, url, {}, "POST")

    monkeypatch.setattr(httpx.AsyncClient, "post", _mock_post)

    with pytest.raises(httpx.HTTPStatusError):
        await client.place_market_order("EUR_USD", "BUY", 1000)
    assert len(attempts) == 1


def test_environment_switching():
    """Practice URL for practice, live URL for live."""
    client_practice = OandaClient(_make_config("practice"))
    client_live = OandaClient(_make_config("live"))

    assert client_practice._base_url == "https://api-fxpractice.oanda.com"
    assert client_live._base_url == "https://api-fxtrade.oanda.com"


# ── Order manager ────────────────────────────────────────────────────────


class _StubBroker:
    async def get_price(self, instrument):
        return Price(
            instrument, bid=109.95, ask=109.97,
            quote_home_factor=0.0091, short_quote_home_factor=0.0092,
        )

    async def list_open_trades(self, instrument):
        raise httpx.ReadTimeout("timed out")

    async def get_account_summary(self):
        raise KeyError("balance")

    async def place_limit_order(self, instrument, side, units, price):
        self.placed = (instrument, side, units, price)
        return "O-1"


class TestOrderManager:
    @pytest.mark.asyncio
    async def test_current_price_by_side(self):
        orders = OrderManager(_StubBroker())
        assert await orders.current_price("BUY", CurrencyPair("USDJPY")) == 109.97
        assert await orders.current_price("SELL", CurrencyPair("USDJPY")) == 109.95

    @pytest.mark.asyncio
    async def test_acc_currency_per_pip(self):
        orders = OrderManager(_StubBroker())
        long_pip = await orders.acc_currency_per_pip("BUY", CurrencyPair("USDJPY"))
        short_pip = await orders.acc_currency_per_pip("SELL", CurrencyPair("USDJPY"))
        assert long_pip == pytest.approx(0.01 * 0.0091)
        assert short_pip == pytest.approx(0.01 * 0.0092)

    @pytest.mark.asyncio
    async def test_transport_error_becomes_broker_error(self):
        orders = OrderManager(_StubBroker())
        with pytest.raises(BrokerError, match="open trades for USDJPY"):
            await orders.trades(CurrencyPair("USDJPY"))

    @pytest.mark.asyncio
    async def test_malformed_response_becomes_broker_error(self):
        orders = OrderManager(_StubBroker())
        with pytest.raises(BrokerError, match="unexpected broker response"):
            await orders.account_balance()

    @pytest.mark.asyncio
    async def test_prices_rounded_before_sending(self):
        broker = _StubBroker()
        orders = OrderManager(broker)
        await orders.create_limit_order("BUY", 1000, CurrencyPair("EURJPY"), 130.12789)
        assert broker.placed == ("EUR_JPY", "BUY", 1000, 130.13)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("balance", [0.0, -250.0])
    async def test_non_positive_balance_becomes_broker_error(self, balance):
        class _EmptyAccount:
            async def get_account_summary(self):
                return AccountSummary("101-001-XXXXX-001", balance, balance, 0, 0, "USD")

        orders = OrderManager(_EmptyAccount())
        with pytest.raises(BrokerError, match="account balance"):
            await orders.account_balance()
