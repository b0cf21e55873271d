from __future__ import annotations

import logging
from collections.abc import Mapping
from types import MappingProxyType

LOGGER = logging.getLogger(__name__)


class SymbolMapper:
    """Read-only lookup from signal-source pair names to exchange symbols."""

    def __init__(self, mapping: Mapping[str, str], default_symbol: str):
        normalized = {
            str(pair).strip().upper(): str(symbol).strip().upper()
            for pair, symbol in mapping.items()
            if str(pair).strip() and str(symbol).strip()
        }
        self._mapping = MappingProxyType(normalized)
        self.default_symbol = default_symbol.strip().upper()

    @property
    def mapping(self) -> Mapping[str, str]:
        return self._mapping

    def resolve(self, pair_used: str | None) -> str:
        key = (pair_used or "").strip().upper()
        symbol = self._mapping.get(key)
        if symbol is None:
            LOGGER.info("No symbol mapping for pair=%r, using default %s", pair_used, self.default_symbol)
            return self.default_symbol
        return symbol
