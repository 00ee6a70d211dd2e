"""Registry of data source gateways keyed by data source code.

The ingestion scheduler resolves a gateway per asset group. Codes are
matched case-insensitively, so "binance" and "BINANCE" resolve to the same
gateway. An unregistered code resolves to None and the scheduler counts the
group's assets as errors.
"""

from __future__ import annotations

from typing import Iterable, Optional

import structlog

from signal_engine.connectors.base import DataSourceGateway
from signal_engine.connectors.binance import BinanceConnector
from signal_engine.connectors.custom_api import CustomApiConnector

logger = structlog.get_logger(__name__)


class DataSourceRegistry:
    """Maps data source codes to gateway instances."""

    def __init__(self, gateways: Iterable[DataSourceGateway] = ()) -> None:
        self._gateways: dict[str, DataSourceGateway] = {}
        for gateway in gateways:
            self.register(gateway)

    @staticmethod
    def _key(code: str) -> str:
        return code.strip().upper()

    def register(self, gateway: DataSourceGateway) -> None:
        """Register ``gateway`` under its code, replacing any previous one."""
        key = self._key(gateway.code)
        if key in self._gateways:
            logger.warning("gateway_replaced", code=key)
        self._gateways[key] = gateway

    def resolve(self, code: Optional[str]) -> Optional[DataSourceGateway]:
        if not code:
            return None
        return self._gateways.get(self._key(code))

    def registered_codes(self) -> list[str]:
        return sorted(self._gateways)

    async def aclose(self) -> None:
        """Close every gateway that holds a client."""
        for gateway in self._gateways.values():
            close = getattr(gateway, "aclose", None)
            if close is not None:
                await close()


def build_default_registry() -> DataSourceRegistry:
    """Registry with the built-in connectors (Binance and custom API)."""
    return DataSourceRegistry([BinanceConnector(), CustomApiConnector()])
