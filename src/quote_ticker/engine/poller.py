from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from quote_ticker.config.store import SettingsCell
from quote_ticker.config.ticker import Settings
from quote_ticker.engine.backoff import effective_delay_seconds, next_backoff_seconds
from quote_ticker.engine.display import (
    advance_rotation,
    clamp_rotate_index,
    compute_trends,
    price_text,
    render,
    select_symbol,
    special_display,
)
from quote_ticker.engine.failover import FailoverFetcher
from quote_ticker.exchange.alltick import FetchError
from quote_ticker.surfaces.base import StatusSurface
from quote_ticker.types import Display, PriceMap, TrendMap

logger = logging.getLogger("quote_ticker.poller")

# Sleep while waiting for the user to configure symbols or a token.
_IDLE_SECONDS = 2.0
_MIN_SLEEP_SECONDS = 1.0


@dataclass
class PollState:
    rotate_index: int = 0
    token_index: int = 0
    last_title: str = ""
    last_error: FetchError | None = None
    error_backoff_seconds: int = 0
    # False once a successful poll resolved none of the symbols; the title stays stale.
    last_resolved: bool = True
    # 0 means "due now": the first cycle fetches immediately.
    next_refresh_at: float = 0.0
    # None until rotation is armed; only used in rotate mode.
    next_rotate_at: float | None = None
    prices: PriceMap = field(default_factory=dict)
    trends: TrendMap = field(default_factory=dict)


class Poller:
    """Single perpetual loop: fetch on the refresh deadline, rotate on the rotation deadline.

    Owns ``PollState``; the status surface is only ever written from here.
    """

    def __init__(
        self,
        *,
        cell: SettingsCell,
        fetcher: FailoverFetcher,
        surface: StatusSurface,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._cell = cell
        self._fetcher = fetcher
        self._surface = surface
        self._clock = clock
        self._state = PollState()
        self._emitted: Display | None = None
        self._fetch_lock = asyncio.Lock()

    @property
    def state(self) -> PollState:
        return self._state

    @property
    def display(self) -> Display | None:
        return self._emitted

    async def run(self) -> None:
        logger.info("poller_started")
        while True:
            try:
                sleep_s = await self.run_cycle()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("cycle_failed")
                sleep_s = _IDLE_SECONDS
            await asyncio.sleep(sleep_s)

    async def run_cycle(self) -> float:
        """Run whatever is due and return how long to sleep before the next cycle."""
        settings = self._cell.snapshot()
        special = special_display(settings)
        if special is not None:
            self._enter_special_state(special)
            return _IDLE_SECONDS

        self._reconcile(settings)
        if self._clock() >= self._state.next_refresh_at:
            await self._refresh(settings, force=False)

        now = self._clock()
        if settings.display_mode == "rotate":
            if self._state.next_rotate_at is None:
                self._state.next_rotate_at = now + settings.rotate_seconds
            elif now >= self._state.next_rotate_at:
                self._rotate(settings, now)
        else:
            self._state.next_rotate_at = None

        return self._sleep_seconds(settings, self._clock())

    async def refresh_now(self) -> Display | None:
        """Fetch immediately, outside the refresh schedule."""
        settings = self._cell.snapshot()
        special = special_display(settings)
        if special is not None:
            self._enter_special_state(special)
            return special
        self._reconcile(settings)
        await self._refresh(settings, force=True)
        return self._emitted

    def price_text(self) -> str:
        settings = self._cell.snapshot()
        symbol = select_symbol(settings, self._state.rotate_index)
        if symbol is not None:
            quote = self._state.prices.get(symbol.code)
            if quote is not None:
                return price_text(symbol, quote)
        # Fall back to whatever the title currently shows.
        return self._emitted.title if self._emitted is not None else ""

    def _enter_special_state(self, display: Display) -> None:
        st = self._state
        st.last_error = None
        st.error_backoff_seconds = 0
        st.next_refresh_at = 0.0
        st.last_resolved = True
        self._emit(display)
        # Not a price title; never decorate it as stale later.
        st.last_title = ""

    def _reconcile(self, settings: Settings) -> None:
        st = self._state
        codes = set(settings.codes())
        st.prices = {c: q for c, q in st.prices.items() if c in codes}
        st.trends = {c: t for c, t in st.trends.items() if c in codes}
        st.rotate_index = clamp_rotate_index(st.rotate_index, len(settings.symbols))
        if st.token_index >= len(settings.token_list()):
            st.token_index = 0

    async def _refresh(self, settings: Settings, *, force: bool) -> None:
        async with self._fetch_lock:
            st = self._state
            if not force and self._clock() < st.next_refresh_at:
                # A manual refresh ran while we waited for the lock.
                return

            codes = settings.codes()
            fetched: PriceMap = {}
            error: FetchError | None = None
            try:
                fetched, st.token_index = await self._fetcher.fetch(
                    tokens=settings.token_list(),
                    codes=codes,
                    api_kind=settings.api_kind,
                    use_system_proxy=settings.use_system_proxy,
                    start_index=st.token_index,
                )
            except FetchError as e:
                error = e
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception("refresh_failed")
                error = FetchError(kind="request", detail=f"{type(e).__name__}: {e}")
                error.__cause__ = e

            st.error_backoff_seconds = next_backoff_seconds(
                success=error is None,
                base_refresh_seconds=settings.refresh_seconds,
                current_backoff_seconds=st.error_backoff_seconds,
            )
            st.last_error = error
            st.last_resolved = bool(fetched)
            if error is None:
                st.prices.update(fetched)
                st.trends = compute_trends(codes, fetched)
            else:
                logger.warning(
                    "all_tokens_failed",
                    extra={
                        "api_kind": settings.api_kind,
                        "error_kind": error.kind,
                        "backoff_s": st.error_backoff_seconds,
                    },
                )

            delay = effective_delay_seconds(
                base_refresh_seconds=settings.refresh_seconds,
                backoff_seconds=st.error_backoff_seconds,
            )
            st.next_refresh_at = self._clock() + delay

            self._emit(
                render(
                    settings,
                    st.prices,
                    st.trends,
                    st.rotate_index,
                    error=error,
                    previous_title=st.last_title or None,
                    resolved=st.last_resolved,
                    retry_in_seconds=st.error_backoff_seconds or None,
                )
            )

    def _rotate(self, settings: Settings, now: float) -> None:
        st = self._state
        st.rotate_index = advance_rotation(st.rotate_index, len(settings.symbols))
        st.next_rotate_at = now + settings.rotate_seconds
        self._emit(
            render(
                settings,
                st.prices,
                st.trends,
                st.rotate_index,
                error=st.last_error,
                resolved=st.last_resolved,
                retry_in_seconds=st.error_backoff_seconds or None,
            )
        )

    def _sleep_seconds(self, settings: Settings, now: float) -> float:
        wake = self._state.next_refresh_at
        if settings.display_mode == "rotate" and self._state.next_rotate_at is not None:
            wake = min(wake, self._state.next_rotate_at)
        return max(_MIN_SLEEP_SECONDS, wake - now)

    def _emit(self, display: Display) -> None:
        previous = self._emitted
        self._state.last_title = display.title
        self._emitted = display
        # Icon first so a surface that draws icon and title together sees both current.
        if previous is None or previous.icon != display.icon:
            self._push("set_icon", display.icon)
        if previous is None or previous.tooltip != display.tooltip:
            self._push("set_tooltip", display.tooltip)
        if previous is None or previous.title != display.title:
            self._push("set_title", display.title)

    def _push(self, method: str, value: str) -> None:
        try:
            getattr(self._surface, method)(value)
        except Exception:
            logger.exception("surface_update_failed")
