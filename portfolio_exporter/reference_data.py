"""
Reference Data Store - market listings and per-asset decimal precision.

Long-lived lookup tables populated from intercepted payloads. The owner
registers a change listener and persists the full document after every
mutation.
"""

import logging
from typing import Any, Callable, Iterable, Mapping, Optional

from pydantic import ValidationError

from .config import DEFAULT_ASSET_DECIMALS
from .models import Market


logger = logging.getLogger(__name__)


class ReferenceDataStore:
    """
    Markets keyed by id (last write wins) and the asset decimal table
    (replaced wholesale).
    """

    def __init__(
        self,
        default_decimals: int = DEFAULT_ASSET_DECIMALS,
        on_change: Optional[Callable[[], None]] = None,
    ) -> None:
        self.default_decimals = default_decimals
        self._on_change = on_change
        self._markets: dict[str, Market] = {}
        self._asset_decimals: dict[str, int] = {}

    def set_change_listener(self, listener: Optional[Callable[[], None]]) -> None:
        self._on_change = listener

    def _changed(self) -> None:
        if self._on_change:
            self._on_change()

    # ---------------------------------------------------------
    # Mutations
    # ---------------------------------------------------------

    def upsert_market(self, market: Market) -> None:
        self._markets[market.id] = market
        self._changed()

    def upsert_markets(self, markets: Iterable[Market]) -> int:
        """Upsert several markets with a single change notification."""
        count = 0
        for market in markets:
            self._markets[market.id] = market
            count += 1
        self._changed()
        return count

    def upsert_asset_decimals(self, table: Mapping[str, int]) -> None:
        self._asset_decimals = {str(k): int(v) for k, v in table.items()}
        self._changed()

    # ---------------------------------------------------------
    # Lookups
    # ---------------------------------------------------------

    def lookup_market(self, market_id: str) -> Optional[Market]:
        return self._markets.get(market_id)

    def lookup_asset_decimals(self, asset_id: Optional[str]) -> int:
        if asset_id is None:
            return self.default_decimals
        return self._asset_decimals.get(asset_id, self.default_decimals)

    @property
    def asset_decimals(self) -> dict[str, int]:
        """Copy of the decimal table."""
        return dict(self._asset_decimals)

    @property
    def market_count(self) -> int:
        return len(self._markets)

    # ---------------------------------------------------------
    # Persistence
    # ---------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "markets": [[k, m.to_dict()] for k, m in self._markets.items()],
            "assetDecimals": [[k, v] for k, v in self._asset_decimals.items()],
        }

    def load_dict(self, data: Mapping[str, Any]) -> None:
        """
        Restore from a saved document. Entries that fail validation are
        skipped; nothing here raises.
        """
        markets: dict[str, Market] = {}
        for entry in data.get("markets") or []:
            try:
                key, value = entry
                markets[str(key)] = Market.from_dict(value)
            except (TypeError, ValueError, ValidationError) as e:
                logger.warning(f"Skipping saved market entry: {e}")

        decimals: dict[str, int] = {}
        for entry in data.get("assetDecimals") or []:
            try:
                key, value = entry
                decimals[str(key)] = int(value)
            except (TypeError, ValueError) as e:
                logger.warning(f"Skipping saved decimals entry: {e}")

        self._markets = markets
        self._asset_decimals = decimals
        logger.debug(
            f"Restored {len(markets)} markets, {len(decimals)} asset decimals"
        )
