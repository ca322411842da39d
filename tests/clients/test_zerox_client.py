from decimal import Decimal

import httpx
import pytest

from clients.base_models import ETH_ADDRESS
from clients.zerox import ZeroXQuoteClient

from stubs import ROUTER, TOKEN, WALLET


def quote_payload(**overrides):
    payload = {
        "liquidityAvailable": True,
        "buyAmount": "5000000000000000000",
        "sellAmount": "1000000000000000",
        "transaction": {
            "to": ROUTER,
            "data": "0xabcdef",
            "value": "1000000000000000",
            "gas": "200000",
            "gasPrice": "10000000",
        },
        "issues": {"allowance": None},
    }
    payload.update(overrides)
    return payload


def reply(status, **kwargs):
    return status, kwargs


class Recorder:
    """MockTransport handler replaying a list of ``(status, kwargs)`` responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        status, kwargs = response
        return httpx.Response(status, **kwargs)


def make_client(handler, **kwargs):
    return ZeroXQuoteClient(
        "test-key",
        transport=httpx.MockTransport(handler),
        min_wait=0,
        max_wait=0,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_buy_quote_request_and_parse():
    handler = Recorder(reply(200, json=quote_payload()))
    client = make_client(handler)

    quote = await client.get_buy_quote(TOKEN, 10**15, WALLET)
    await client.close()

    request = handler.requests[0]
    assert request.url.path == "/swap/allowance-holder/quote"
    assert request.url.params["chainId"] == "8453"
    assert request.url.params["sellToken"] == ETH_ADDRESS
    assert request.url.params["buyToken"] == TOKEN
    assert request.url.params["sellAmount"] == "1000000000000000"
    assert request.url.params["slippageBps"] == "100"
    assert request.headers["0x-api-key"] == "test-key"
    assert request.headers["0x-version"] == "v2"

    assert quote.buy_amount == 5 * 10**18
    assert quote.value == 10**15
    assert quote.gas_cost == 200_000 * 10_000_000
    assert quote.has_transaction_data
    assert quote.allowance_target == ROUTER


@pytest.mark.asyncio
async def test_sell_quote_uses_allowance_issue_spender():
    spender = "0x4444444444444444444444444444444444444444"
    payload = quote_payload(issues={"allowance": {"spender": spender, "actual": "0"}})
    handler = Recorder(reply(200, json=payload))
    client = make_client(handler, chain="arbitrum")

    quote = await client.get_sell_quote(TOKEN, 10**18, WALLET)
    await client.close()

    assert handler.requests[0].url.params["buyToken"] == ETH_ADDRESS
    assert handler.requests[0].url.params["chainId"] == "42161"
    assert quote.allowance_target == spender


@pytest.mark.asyncio
async def test_rate_limit_is_retried():
    handler = Recorder(
        reply(429, text="slow down"),
        reply(200, json=quote_payload()),
    )
    client = make_client(handler)

    quote = await client.get_buy_quote(TOKEN, 10**15, WALLET)
    await client.close()

    assert quote is not None
    assert len(handler.requests) == 2


@pytest.mark.asyncio
async def test_server_errors_exhaust_retries_and_return_none():
    handler = Recorder(reply(503, text="unavailable"))
    client = make_client(handler, max_attempts=3)

    quote = await client.get_buy_quote(TOKEN, 10**15, WALLET)
    await client.close()

    assert quote is None
    assert len(handler.requests) == 3


@pytest.mark.asyncio
async def test_transport_errors_return_none():
    handler = Recorder(httpx.ConnectError("refused"))
    client = make_client(handler, max_attempts=2)

    assert await client.get_sell_quote(TOKEN, 10**18, WALLET) is None
    await client.close()
    assert len(handler.requests) == 2


@pytest.mark.asyncio
async def test_client_errors_are_not_retried():
    handler = Recorder(reply(400, json={"name": "INPUT_INVALID"}))
    client = make_client(handler)

    assert await client.get_buy_quote(TOKEN, 10**15, WALLET) is None
    await client.close()
    assert len(handler.requests) == 1


@pytest.mark.asyncio
async def test_no_liquidity_returns_none():
    handler = Recorder(reply(200, json={"liquidityAvailable": False}))
    client = make_client(handler)

    assert await client.get_buy_quote(TOKEN, 10**15, WALLET) is None
    await client.close()


@pytest.mark.asyncio
async def test_malformed_quote_returns_none():
    payload = quote_payload()
    del payload["buyAmount"]
    client = make_client(Recorder(reply(200, json=payload)))

    assert await client.get_buy_quote(TOKEN, 10**15, WALLET) is None
    await client.close()


@pytest.mark.asyncio
async def test_token_price_from_probe_quote():
    handler = Recorder(reply(200, json=quote_payload(buyAmount="2000000000000000000")))
    client = make_client(handler)

    price = await client.get_token_price(TOKEN, WALLET)

    assert price == Decimal("0.0005")
    assert handler.requests[0].url.params["sellAmount"] == "1000000000000000"

    client.register_token(TOKEN, 6)
    handler.responses = [reply(200, json=quote_payload(buyAmount="2000000"))]
    assert await client.get_token_price(TOKEN, WALLET) == Decimal("0.0005")
    await client.close()


def test_unsupported_chain_is_rejected():
    with pytest.raises(ValueError):
        ZeroXQuoteClient(chain="solana")


@pytest.mark.asyncio
async def test_set_chain_switches_chain_id():
    handler = Recorder(reply(200, json=quote_payload()))
    client = make_client(handler)

    client.set_chain("arbitrum")
    await client.get_buy_quote(TOKEN, 10**15, WALLET)
    await client.close()

    assert handler.requests[0].url.params["chainId"] == "42161"
    with pytest.raises(ValueError):
        client.set_chain("solana")
