__all__ = ["FetchError", "NoCredentialsError", "ProxyResolver", "QuoteClient"]

from quote_ticker.exchange.alltick import FetchError, NoCredentialsError, QuoteClient
from quote_ticker.exchange.proxy import ProxyResolver
