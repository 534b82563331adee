from __future__ import annotations

import fnmatch
from dataclasses import dataclass, field
from typing import Literal

ApiKind = Literal["commodity", "stock"]
DisplayMode = Literal["rotate", "fixed"]
Trend = Literal["up", "down", "flat"]
IconVariant = Literal["up", "down", "pending"]
ProxySource = Literal["system", "env"]


@dataclass(frozen=True)
class Quote:
    close: float
    timestamp: int
    open: float


# code -> most recent successful quote
PriceMap = dict[str, Quote]
TrendMap = dict[str, Trend]


@dataclass(frozen=True)
class ProxyDecision:
    url: str | None = None
    source: ProxySource | None = None
    exceptions: frozenset[str] = field(default_factory=frozenset)

    @property
    def direct(self) -> bool:
        return self.url is None

    def bypasses(self, host: str) -> bool:
        if self.url is None:
            return True
        host = host.lower()
        for pattern in self.exceptions:
            p = pattern.strip().lower()
            if not p:
                continue
            if fnmatch.fnmatch(host, p):
                return True
            # ".example.com" matches the domain and its subdomains
            if p.startswith(".") and (host == p[1:] or host.endswith(p)):
                return True
        return False


NO_PROXY = ProxyDecision()


@dataclass(frozen=True)
class Display:
    title: str
    tooltip: str
    icon: IconVariant
