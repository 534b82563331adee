from __future__ import annotations

import asyncio
import logging

import typer

from quote_ticker.config import Settings, SettingsCell, SettingsStore, Symbol
from quote_ticker.config.ticker import normalize_symbols
from quote_ticker.engine import FailoverFetcher, Poller
from quote_ticker.exchange import ProxyResolver, QuoteClient
from quote_ticker.logging_utils import configure_logging
from quote_ticker.settings import AppSettings
from quote_ticker.surfaces import ConsoleSurface

app = typer.Typer(no_args_is_help=True, add_completion=False)
logger = logging.getLogger("quote_ticker")

_SETTINGS_POLL_SECONDS = 2.0


def _load() -> tuple[AppSettings, SettingsStore]:
    app_settings = AppSettings()
    configure_logging(app_settings.log_level)
    return app_settings, SettingsStore(app_settings.settings_path())


def _build_poller(
    app_settings: AppSettings,
    cell: SettingsCell,
    surface: ConsoleSurface,
) -> Poller:
    client = QuoteClient(
        endpoints=app_settings.endpoints(),
        timeout_seconds=app_settings.request_timeout_seconds,
    )
    fetcher = FailoverFetcher(client=client, resolver=ProxyResolver())
    return Poller(cell=cell, fetcher=fetcher, surface=surface)


def _save(store: SettingsStore, settings: Settings) -> Settings:
    try:
        saved = SettingsCell.from_store(store).commit(settings)
    except OSError as e:
        typer.echo(f"failed to write {store.path}: {e}", err=True)
        raise typer.Exit(code=1) from e
    logger.info("settings_saved")
    return saved


async def _watch_settings(cell: SettingsCell, store: SettingsStore) -> None:
    # Pick up edits made by other commands (set-tokens, add-symbol, ...) while running.
    last_mtime = _mtime(store)
    while True:
        await asyncio.sleep(_SETTINGS_POLL_SECONDS)
        mtime = _mtime(store)
        if mtime != last_mtime:
            last_mtime = mtime
            cell.replace(store.read())
            logger.info("settings_reloaded")


def _mtime(store: SettingsStore) -> float:
    try:
        return store.path.stat().st_mtime
    except OSError:
        return 0.0


def _redacted(settings: Settings) -> dict[str, object]:
    data = settings.model_dump()
    data["tokens"] = [f"***{t[-4:]}" if len(t) > 8 else "***" for t in settings.token_list()]
    return data


@app.command()
def run(
    show_tooltip: bool = typer.Option(False, "--show-tooltip", help="Print the tooltip on change."),
) -> None:
    """
    Poll quotes forever and print the ticker title whenever it changes.
    """
    app_settings, store = _load()
    cell = SettingsCell.from_store(store)
    poller = _build_poller(app_settings, cell, ConsoleSurface(show_tooltip=show_tooltip))

    async def _run() -> None:
        watcher = asyncio.create_task(_watch_settings(cell, store))
        try:
            await poller.run()
        finally:
            watcher.cancel()

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        logger.info("poller_stopped")


@app.command()
def once() -> None:
    """
    Fetch once and print title, tooltip and the copyable price line.
    """
    app_settings, store = _load()
    surface = ConsoleSurface()
    poller = _build_poller(app_settings, SettingsCell.from_store(store), surface)
    asyncio.run(poller.refresh_now())
    typer.echo(surface.tooltip)
    typer.echo(poller.price_text())


@app.command()
def show_config() -> None:
    _, store = _load()
    typer.echo({"path": str(store.path), **_redacted(store.read())})


@app.command()
def set_tokens(
    token: list[str] = typer.Option(..., "--token", "-t", help="API token; repeat for failover order."),
) -> None:
    """
    Replace the token list. Tokens are tried in the given order.
    """
    _, store = _load()
    settings = store.read()
    saved = _save(store, settings.model_copy(update={"tokens": "\n".join(token)}))
    typer.echo(f"{len(saved.token_list())} token(s) saved")


@app.command()
def add_symbol(
    code: str = typer.Argument(..., help="Symbol code, e.g. XAUUSD or AAPL.US."),
    label: str = typer.Option("", help="Display label; defaults to the code."),
) -> None:
    _, store = _load()
    settings = store.read()
    symbols = normalize_symbols([*settings.symbols, Symbol(code=code, label=label)])
    saved = _save(store, settings.model_copy(update={"symbols": symbols}))
    typer.echo(", ".join(s.code for s in saved.symbols))


@app.command()
def remove_symbol(code: str = typer.Argument(..., help="Symbol code to remove.")) -> None:
    _, store = _load()
    settings = store.read()
    if settings.find_symbol(code) is None:
        raise typer.BadParameter(f"unknown symbol: {code}")
    symbols = [s for s in settings.symbols if s.code != code]
    saved = _save(store, settings.model_copy(update={"symbols": symbols}))
    typer.echo(", ".join(s.code for s in saved.symbols))


@app.command()
def display(
    mode: str = typer.Argument(..., help="rotate or fixed."),
    symbol: str | None = typer.Option(None, help="Symbol shown in fixed mode."),
    rotate_seconds: int | None = typer.Option(None, help="Rotation interval (3-3600)."),
    api_kind: str | None = typer.Option(None, help="commodity or stock."),
    system_proxy: bool | None = typer.Option(
        None,
        "--system-proxy/--no-system-proxy",
        help="Route requests through the system or environment proxy.",
    ),
) -> None:
    """
    Change how the ticker picks the symbol to show.
    """
    if mode not in ("rotate", "fixed"):
        raise typer.BadParameter("mode must be 'rotate' or 'fixed'")
    if api_kind is not None and api_kind not in ("commodity", "stock"):
        raise typer.BadParameter("api_kind must be 'commodity' or 'stock'")
    _, store = _load()
    settings = store.read()
    update: dict[str, object] = {"display_mode": mode}
    if symbol is not None:
        update["fixed_symbol"] = symbol
    if rotate_seconds is not None:
        update["rotate_seconds"] = rotate_seconds
    if api_kind is not None:
        update["api_kind"] = api_kind
    if system_proxy is not None:
        update["use_system_proxy"] = system_proxy
    saved = _save(store, settings.model_copy(update=update))
    typer.echo(
        {
            "display_mode": saved.display_mode,
            "fixed_symbol": saved.fixed_symbol,
            "rotate_seconds": saved.rotate_seconds,
            "api_kind": saved.api_kind,
            "use_system_proxy": saved.use_system_proxy,
        }
    )


@app.command()
def proxy() -> None:
    """
    Print the proxy the next request would use.
    """
    _, store = _load()
    decision = ProxyResolver().resolve(store.read().use_system_proxy)
    typer.echo(
        {
            "mode": "direct" if decision.direct else "proxy",
            "url": decision.url,
            "source": decision.source,
            "exceptions": sorted(decision.exceptions),
        }
    )
