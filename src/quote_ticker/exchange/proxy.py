from __future__ import annotations

import logging
import os
import shutil
import subprocess
import sys
from collections.abc import Callable, Mapping

from quote_ticker.types import NO_PROXY, ProxyDecision

logger = logging.getLogger("quote_ticker.proxy")

ENV_PROXY_VARS = (
    "HTTPS_PROXY",
    "https_proxy",
    "HTTP_PROXY",
    "http_proxy",
    "ALL_PROXY",
    "all_proxy",
)

# (key prefix, url scheme) in priority order
_SYSTEM_PROXY_KINDS = (
    ("HTTPS", "http"),
    ("HTTP", "http"),
    ("SOCKS", "socks5"),
)

_SCUTIL_TIMEOUT_SECONDS = 2.0

SystemProxyConfig = dict[str, str | list[str]]


def system_proxy_available() -> bool:
    return sys.platform == "darwin" and shutil.which("scutil") is not None


def parse_scutil_proxy(output: str) -> SystemProxyConfig:
    """Parse the dictionary printed by ``scutil --proxy``.

    Scalars become strings, ``<array>`` values become lists in index order.
    """
    config: SystemProxyConfig = {}
    array_key: str | None = None
    array: list[str] = []
    for raw_line in output.splitlines():
        line = raw_line.strip()
        if array_key is not None:
            if line == "}":
                config[array_key] = array
                array_key = None
                array = []
                continue
            _, sep, value = line.partition(" : ")
            if sep:
                array.append(value.strip())
            continue
        key, sep, value = line.partition(" : ")
        if not sep:
            continue
        key = key.strip()
        value = value.strip()
        if value.startswith("<array>"):
            array_key = key
            array = []
            continue
        config[key] = value
    return config


def _to_int(value: object) -> int:
    try:
        return int(str(value).strip())
    except ValueError:
        return 0


def decision_from_system_config(config: Mapping[str, object]) -> ProxyDecision | None:
    exceptions_raw = config.get("ExceptionsList", [])
    exceptions: frozenset[str] = frozenset()
    if isinstance(exceptions_raw, list):
        exceptions = frozenset(str(e).strip() for e in exceptions_raw if str(e).strip())

    for prefix, scheme in _SYSTEM_PROXY_KINDS:
        if _to_int(config.get(f"{prefix}Enable", 0)) == 0:
            continue
        host = str(config.get(f"{prefix}Proxy", "")).strip()
        port = _to_int(config.get(f"{prefix}Port", 0))
        if not host or port == 0:
            continue
        return ProxyDecision(url=f"{scheme}://{host}:{port}", source="system", exceptions=exceptions)
    return None


def decision_from_env(environ: Mapping[str, str]) -> ProxyDecision | None:
    for name in ENV_PROXY_VARS:
        value = environ.get(name, "").strip()
        if not value:
            continue
        if "://" not in value:
            value = f"http://{value}"
        return ProxyDecision(url=value, source="env")
    return None


def query_system_proxy() -> SystemProxyConfig | None:
    try:
        completed = subprocess.run(
            ["scutil", "--proxy"],
            capture_output=True,
            text=True,
            timeout=_SCUTIL_TIMEOUT_SECONDS,
            check=True,
        )
    except (OSError, subprocess.SubprocessError):
        logger.debug("system_proxy_query_failed", exc_info=True)
        return None
    return parse_scutil_proxy(completed.stdout)


class ProxyResolver:
    """Decides, per request, whether and how to use a proxy.

    Nothing is cached: the platform configuration can change between polls.
    """

    def __init__(
        self,
        *,
        environ: Mapping[str, str] | None = None,
        system_query: Callable[[], SystemProxyConfig | None] | None = None,
        system_available: Callable[[], bool] = system_proxy_available,
    ) -> None:
        self._environ = environ
        self._system_query = system_query or query_system_proxy
        self._system_available = system_available
        self._last_logged: ProxyDecision | None = None

    def resolve(self, use_system_proxy: bool) -> ProxyDecision:
        decision = self._resolve(use_system_proxy)
        self._log(decision)
        return decision

    def _resolve(self, use_system_proxy: bool) -> ProxyDecision:
        if not use_system_proxy:
            return NO_PROXY
        if self._system_available():
            config = self._system_query()
            if config:
                decision = decision_from_system_config(config)
                if decision is not None:
                    return decision
        environ = self._environ if self._environ is not None else os.environ
        return decision_from_env(environ) or NO_PROXY

    def _log(self, decision: ProxyDecision) -> None:
        mode = "direct" if decision.direct else "proxy"
        extra = {"proxy_mode": mode, "proxy_source": decision.source or "none"}
        if decision != self._last_logged:
            logger.info("proxy_resolved", extra=extra)
            self._last_logged = decision
        else:
            logger.debug("proxy_resolved", extra=extra)
