import asyncio
import json

import httpx
import pytest

import quote_ticker.exchange.alltick as alltick
from quote_ticker.engine.failover import FailoverFetcher
from quote_ticker.exchange.alltick import (
    FetchError,
    QuoteClient,
    build_request_body,
    parse_kline_payload,
)
from quote_ticker.exchange.proxy import ProxyResolver
from quote_ticker.types import NO_PROXY, ProxyDecision, Quote


def _kline(code: str, *, close: object, open_: object, ts: object = "1700000000") -> dict[str, object]:
    return {
        "code": code,
        "kline_type": 1,
        "kline_data": [{"timestamp": ts, "open_price": open_, "close_price": close}],
    }


def _ok(*klines: dict[str, object]) -> dict[str, object]:
    return {"ret": 200, "msg": "ok", "data": {"kline_list": list(klines)}}


def _fetch(client: QuoteClient, *, codes: list[str], api_kind: str = "commodity") -> dict[str, Quote]:
    return asyncio.run(client.fetch(token="tok", codes=codes, api_kind=api_kind, proxy=NO_PROXY))


def test_build_request_body_one_entry_per_code() -> None:
    body = build_request_body(["XAUUSD", "XAGUSD"], trace="t-1")
    assert body == {
        "trace": "t-1",
        "data": {
            "data_list": [
                {
                    "code": "XAUUSD",
                    "kline_type": 1,
                    "kline_timestamp_end": 0,
                    "query_kline_num": 1,
                    "adjust_type": 0,
                },
                {
                    "code": "XAGUSD",
                    "kline_type": 1,
                    "kline_timestamp_end": 0,
                    "query_kline_num": 1,
                    "adjust_type": 0,
                },
            ]
        },
    }


def test_build_request_body_generates_fresh_trace() -> None:
    assert build_request_body(["A"])["trace"] != build_request_body(["A"])["trace"]


def test_fetch_posts_token_as_query_param_to_kind_endpoint() -> None:
    captured: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["method"] = request.method
        captured["url"] = f"{request.url.scheme}://{request.url.host}{request.url.path}"
        captured["token"] = request.url.params.get("token")
        captured["auth"] = request.headers.get("authorization")
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json=_ok(_kline("AAPL.US", close="190.5", open_="189")))

    client = QuoteClient(
        endpoints={"stock": "https://stock.example/batch-kline"},
        transport=httpx.MockTransport(handler),
    )
    prices = _fetch(client, codes=["AAPL.US"], api_kind="stock")

    assert prices == {"AAPL.US": Quote(close=190.5, timestamp=1700000000, open=189.0)}
    assert captured["method"] == "POST"
    assert captured["url"] == "https://stock.example/batch-kline"
    assert captured["token"] == "tok"
    assert captured["auth"] is None
    body = captured["body"]
    assert isinstance(body, dict)
    assert [d["code"] for d in body["data"]["data_list"]] == ["AAPL.US"]


def test_fetch_skips_unparsable_items() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json=_ok(
                _kline("XAUUSD", close="1950.00", open_="1945.00"),
                _kline("XAGUSD", close="n/a", open_="23.1"),
                _kline("EURUSD", close="1.1", open_="1.0", ts="soon"),
                _kline("NOTASKED", close="1", open_="1"),
                {"code": "GBPUSD", "kline_data": []},
            ),
        )

    client = QuoteClient(transport=httpx.MockTransport(handler))
    prices = _fetch(client, codes=["XAUUSD", "XAGUSD", "EURUSD", "GBPUSD"])
    assert prices == {"XAUUSD": Quote(close=1950.0, timestamp=1700000000, open=1945.0)}


def test_fetch_api_error_carries_ret_and_message() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"ret": 401, "msg": "token invalid", "data": None})

    client = QuoteClient(transport=httpx.MockTransport(handler))
    with pytest.raises(FetchError) as exc_info:
        _fetch(client, codes=["XAUUSD"])
    err = exc_info.value
    assert err.kind == "api"
    assert err.status == 401
    assert err.message == "token invalid"
    assert "Server: token invalid" in err.describe()


@pytest.mark.parametrize(
    ("raised", "kind"),
    [
        (httpx.ReadTimeout, "timeout"),
        (httpx.ConnectError, "connect"),
        (httpx.ReadError, "body"),
        (httpx.UnsupportedProtocol, "request"),
    ],
)
def test_fetch_transport_errors_are_categorized(raised: type[httpx.RequestError], kind: str) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise raised("boom", request=request)

    client = QuoteClient(transport=httpx.MockTransport(handler))
    with pytest.raises(FetchError) as exc_info:
        _fetch(client, codes=["XAUUSD"])
    assert exc_info.value.kind == kind
    assert isinstance(exc_info.value.__cause__, raised)


def test_fetch_non_2xx_is_status_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="unavailable")

    client = QuoteClient(transport=httpx.MockTransport(handler))
    with pytest.raises(FetchError) as exc_info:
        _fetch(client, codes=["XAUUSD"])
    assert exc_info.value.kind == "status"
    assert exc_info.value.status == 503
    assert str(exc_info.value).startswith("status=503")


def test_fetch_invalid_json_is_decode_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>gateway</html>")

    client = QuoteClient(transport=httpx.MockTransport(handler))
    with pytest.raises(FetchError) as exc_info:
        _fetch(client, codes=["XAUUSD"])
    assert exc_info.value.kind == "decode"


def test_fetch_without_codes_makes_no_request() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("unexpected request")

    client = QuoteClient(transport=httpx.MockTransport(handler))
    assert _fetch(client, codes=[]) == {}


def test_parse_payload_tolerates_missing_data() -> None:
    assert parse_kline_payload({"ret": 200}, ["XAUUSD"]) == {}
    assert parse_kline_payload({"ret": "200", "data": {"kline_list": "x"}}, ["XAUUSD"]) == {}
    with pytest.raises(FetchError):
        parse_kline_payload(["not", "a", "dict"], ["XAUUSD"])


def test_client_options_direct_never_trusts_env() -> None:
    client = QuoteClient()
    options = client.client_options(proxy=NO_PROXY, url="https://quote.alltick.io/x")
    assert options["trust_env"] is False
    assert "proxy" not in options


def test_client_options_uses_proxy_unless_host_is_excepted() -> None:
    client = QuoteClient()
    proxy = ProxyDecision(url="socks5://127.0.0.1:1080", source="system", exceptions=frozenset({"*.internal"}))
    assert client.client_options(proxy=proxy, url="https://quote.alltick.io/x")["proxy"] == (
        "socks5://127.0.0.1:1080"
    )
    assert "proxy" not in client.client_options(proxy=proxy, url="https://quotes.internal/x")


def test_parse_payload_skips_entries_with_non_string_code() -> None:
    payload = _ok(
        {"code": ["XAUUSD"], "kline_data": [{"timestamp": "1", "open_price": "1", "close_price": "2"}]},
        {"code": {}, "kline_data": []},
        {"code": None},
        _kline("XAUUSD", close="1950.00", open_="1945.00"),
    )
    assert parse_kline_payload(payload, ["XAUUSD"]) == {
        "XAUUSD": Quote(close=1950.0, timestamp=1700000000, open=1945.0)
    }


def test_unexpected_payload_shape_is_decode_error_and_fails_over(monkeypatch: pytest.MonkeyPatch) -> None:
    real_parse = alltick.parse_kline_payload

    def parse(payload: object, codes: list[str]) -> dict[str, Quote]:
        if isinstance(payload, dict) and payload.get("data") == "broken":
            raise TypeError("unhashable type: 'dict'")
        return real_parse(payload, codes)

    monkeypatch.setattr(alltick, "parse_kline_payload", parse)

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.params.get("token") == "A":
            return httpx.Response(200, json={"ret": 200, "data": "broken"})
        return httpx.Response(200, json=_ok(_kline("XAUUSD", close="1950.00", open_="1945.00")))

    client = QuoteClient(transport=httpx.MockTransport(handler))
    with pytest.raises(FetchError) as exc_info:
        asyncio.run(client.fetch(token="A", codes=["XAUUSD"], api_kind="commodity", proxy=NO_PROXY))
    assert exc_info.value.kind == "decode"
    assert isinstance(exc_info.value.__cause__, TypeError)

    fetcher = FailoverFetcher(
        client=client,
        resolver=ProxyResolver(environ={}, system_available=lambda: False),
    )
    prices, index = asyncio.run(
        fetcher.fetch(
            tokens=["A", "B"],
            codes=["XAUUSD"],
            api_kind="commodity",
            use_system_proxy=False,
        )
    )
    assert index == 1
    assert prices["XAUUSD"].close == 1950.0
