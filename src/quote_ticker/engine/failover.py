from __future__ import annotations

import logging
from collections.abc import Sequence

from quote_ticker.exchange.alltick import FetchError, NoCredentialsError, QuoteClient
from quote_ticker.exchange.proxy import ProxyResolver
from quote_ticker.types import ApiKind, PriceMap

logger = logging.getLogger("quote_ticker.failover")


def attempt_order(count: int, start_index: int) -> list[int]:
    if count <= 0:
        return []
    start = start_index % count
    return [(start + i) % count for i in range(count)]


class FailoverFetcher:
    """Tries each token in turn, starting from the last one that worked.

    Attempts are sequential: a degraded or rate-limited endpoint should not be
    hit with every token at once.
    """

    def __init__(self, *, client: QuoteClient, resolver: ProxyResolver) -> None:
        self._client = client
        self._resolver = resolver

    async def fetch(
        self,
        *,
        tokens: Sequence[str],
        codes: Sequence[str],
        api_kind: ApiKind,
        use_system_proxy: bool,
        start_index: int = 0,
    ) -> tuple[PriceMap, int]:
        if not tokens:
            raise NoCredentialsError()

        last_error: FetchError | None = None
        for attempt, index in enumerate(attempt_order(len(tokens), start_index), start=1):
            proxy = self._resolver.resolve(use_system_proxy)
            try:
                prices = await self._client.fetch(
                    token=tokens[index],
                    codes=codes,
                    api_kind=api_kind,
                    proxy=proxy,
                )
            except FetchError as e:
                logger.warning(
                    "fetch_failed",
                    extra={
                        "api_kind": api_kind,
                        "token_index": index,
                        "attempt": attempt,
                        "error_kind": e.kind,
                    },
                )
                last_error = e
                continue
            if attempt > 1:
                logger.info("failover_recovered", extra={"token_index": index, "attempt": attempt})
            return prices, index

        assert last_error is not None
        raise last_error
