"""Data source connectors package.

Re-exports the gateway protocol and result types, the BaseConnector ABC,
the exception hierarchy, the concrete connectors and the registry.

Connectors (2):
    BinanceConnector (BINANCE), CustomApiConnector (CUSTOM_API)
"""

from .base import (
    BaseConnector,
    ConnectorError,
    DataParsingError,
    DataSourceGateway,
    FetchedValue,
    FetchResult,
    RateLimitError,
)
from .binance import BinanceConnector
from .custom_api import CustomApiConnector
from .registry import DataSourceRegistry, build_default_registry

__all__ = [
    # Base
    "BaseConnector",
    "ConnectorError",
    "DataParsingError",
    "DataSourceGateway",
    "FetchedValue",
    "FetchResult",
    "RateLimitError",
    # Connectors
    "BinanceConnector",
    "CustomApiConnector",
    # Registry
    "DataSourceRegistry",
    "build_default_registry",
]
