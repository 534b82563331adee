from __future__ import annotations

MAX_BACKOFF_SECONDS = 300
_FIRST_FAILURE_MULTIPLIER = 3


def next_backoff_seconds(
    *,
    success: bool,
    base_refresh_seconds: int,
    current_backoff_seconds: int,
) -> int:
    """Backoff after a poll; 0 means none.

    The first total failure waits three refresh periods, later ones double,
    capped at ``MAX_BACKOFF_SECONDS`` but never below the normal cadence.
    """
    if success:
        return 0
    base = max(0, int(base_refresh_seconds))
    if current_backoff_seconds <= 0:
        nxt = max(base * _FIRST_FAILURE_MULTIPLIER, base)
    else:
        nxt = current_backoff_seconds * 2
    nxt = min(nxt, MAX_BACKOFF_SECONDS)
    return max(nxt, base)


def effective_delay_seconds(*, base_refresh_seconds: int, backoff_seconds: int) -> int:
    return backoff_seconds if backoff_seconds > 0 else base_refresh_seconds
