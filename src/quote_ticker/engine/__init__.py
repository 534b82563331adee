__all__ = ["FailoverFetcher", "PollState", "Poller"]

from quote_ticker.engine.failover import FailoverFetcher
from quote_ticker.engine.poller import PollState, Poller
