from __future__ import annotations

import logging
import math
import uuid
from collections.abc import Mapping, Sequence
from typing import Any, Literal
from urllib.parse import urlsplit

import httpx

from quote_ticker.settings import DEFAULT_COMMODITY_ENDPOINT, DEFAULT_STOCK_ENDPOINT
from quote_ticker.types import ApiKind, PriceMap, ProxyDecision, Quote

logger = logging.getLogger("quote_ticker.client")

_DEFAULT_TIMEOUT_SECONDS = 10.0
_API_SUCCESS = 200

FetchErrorKind = Literal[
    "timeout",
    "connect",
    "request",
    "body",
    "decode",
    "status",
    "api",
    "no_credentials",
]


class FetchError(RuntimeError):
    def __init__(
        self,
        *,
        kind: FetchErrorKind,
        detail: str = "",
        status: int | None = None,
        message: str | None = None,
    ) -> None:
        head = kind if status is None else f"{kind}={status}"
        super().__init__(f"{head}: {detail}" if detail else head)
        self.kind = kind
        self.detail = detail
        self.status = status
        self.message = message

    def describe(self) -> list[str]:
        """Lines suitable for a tooltip, most specific first."""
        lines = [f"Error: {self}"]
        if self.message:
            lines.append(f"Server: {self.message}")
        cause = self.__cause__
        if cause is not None and str(cause) and str(cause) not in self.detail:
            lines.append(f"Cause: {type(cause).__name__}: {cause}")
        return lines


class NoCredentialsError(FetchError):
    def __init__(self) -> None:
        super().__init__(kind="no_credentials", detail="no API token configured")


def build_request_body(codes: Sequence[str], *, trace: str | None = None) -> dict[str, Any]:
    return {
        "trace": trace or str(uuid.uuid4()),
        "data": {
            "data_list": [
                {
                    "code": code,
                    "kline_type": 1,
                    "kline_timestamp_end": 0,
                    "query_kline_num": 1,
                    "adjust_type": 0,
                }
                for code in codes
            ]
        },
    }


def _parse_quote(item: Mapping[str, Any]) -> Quote | None:
    try:
        close = float(item["close_price"])
        open_ = float(item["open_price"])
        ts = int(str(item["timestamp"]).strip())
    except (KeyError, TypeError, ValueError):
        return None
    if not (math.isfinite(close) and math.isfinite(open_)):
        return None
    return Quote(close=close, timestamp=ts, open=open_)


def parse_kline_payload(payload: Any, codes: Sequence[str]) -> PriceMap:
    """Map the batch-kline envelope to quotes for the requested codes.

    Raises ``FetchError(kind="api")`` when ``ret`` is not 200. Items that fail
    to parse are left out of the result; they are not an error.
    """
    if not isinstance(payload, dict):
        raise FetchError(kind="decode", detail="response is not a JSON object")
    try:
        ret = int(payload.get("ret", 0))
    except (TypeError, ValueError):
        raise FetchError(kind="decode", detail=f"bad ret field: {payload.get('ret')!r}") from None
    if ret != _API_SUCCESS:
        msg = payload.get("msg")
        raise FetchError(
            kind="api",
            status=ret,
            detail=str(msg) if msg else "request rejected",
            message=str(msg) if msg else None,
        )

    wanted = set(codes)
    prices: PriceMap = {}
    data = payload.get("data")
    klines = data.get("kline_list") if isinstance(data, dict) else None
    if not isinstance(klines, list):
        return prices
    for entry in klines:
        if not isinstance(entry, dict):
            continue
        code = entry.get("code")
        if not isinstance(code, str) or code not in wanted:
            continue
        rows = entry.get("kline_data")
        if not isinstance(rows, list) or not rows or not isinstance(rows[-1], dict):
            continue
        quote = _parse_quote(rows[-1])
        if quote is not None:
            prices[code] = quote
    return prices


def _classify_transport_error(exc: httpx.HTTPError) -> FetchError:
    kind: FetchErrorKind
    if isinstance(exc, httpx.TimeoutException):
        kind = "timeout"
    elif isinstance(exc, httpx.ConnectError):
        kind = "connect"
    elif isinstance(exc, httpx.DecodingError):
        kind = "decode"
    elif isinstance(exc, (httpx.ReadError, httpx.RemoteProtocolError)):
        kind = "body"
    else:
        kind = "request"
    return FetchError(kind=kind, detail=str(exc) or type(exc).__name__)


class QuoteClient:
    def __init__(
        self,
        *,
        endpoints: Mapping[str, str] | None = None,
        timeout_seconds: float = _DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._endpoints = {"commodity": DEFAULT_COMMODITY_ENDPOINT, "stock": DEFAULT_STOCK_ENDPOINT}
        if endpoints:
            self._endpoints.update(endpoints)
        self._timeout_seconds = float(timeout_seconds)
        self._transport = transport

    def endpoint(self, api_kind: ApiKind) -> str:
        return self._endpoints[api_kind]

    def client_options(self, *, proxy: ProxyDecision, url: str) -> dict[str, Any]:
        # trust_env=False: a "direct" decision must not pick up HTTP(S)_PROXY behind our back.
        options: dict[str, Any] = {
            "timeout": httpx.Timeout(self._timeout_seconds),
            "trust_env": False,
        }
        if self._transport is not None:
            options["transport"] = self._transport
        elif not proxy.bypasses(urlsplit(url).hostname or ""):
            options["proxy"] = proxy.url
        return options

    async def fetch(
        self,
        *,
        token: str,
        codes: Sequence[str],
        api_kind: ApiKind,
        proxy: ProxyDecision,
    ) -> PriceMap:
        if not codes:
            return {}
        url = self.endpoint(api_kind)
        body = build_request_body(codes)
        options = self.client_options(proxy=proxy, url=url)
        logger.debug(
            "quote_request",
            extra={
                "api_kind": api_kind,
                "trace_id": body["trace"],
                "proxy_mode": "proxy" if "proxy" in options else "direct",
            },
        )

        try:
            async with httpx.AsyncClient(**options) as client:
                response = await client.post(url, params={"token": token}, json=body)
                if not response.is_success:
                    raise FetchError(
                        kind="status",
                        status=response.status_code,
                        detail=response.reason_phrase or "unexpected HTTP status",
                    )
                payload = response.json()
        except httpx.HTTPError as e:
            raise _classify_transport_error(e) from e
        except ValueError as e:
            raise FetchError(kind="decode", detail=str(e)) from e

        try:
            return parse_kline_payload(payload, codes)
        except FetchError:
            raise
        except (AttributeError, LookupError, TypeError, ValueError) as e:
            raise FetchError(kind="decode", detail=f"unexpected response shape: {e}") from e
