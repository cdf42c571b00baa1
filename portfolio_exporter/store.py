"""
Trade Data Store - owned position, event and reference tables.

Mutated only by the ingestion reconciler; everything else reads
snapshots. The full state is written to the blob store as one JSON
document under one key after every mutation.
"""

import json
import logging
from typing import Any, Iterable, Optional

from pydantic import ValidationError

from .blob_store import BlobStore, InMemoryBlobStore
from .config import DEFAULT_ASSET_DECIMALS
from .exceptions import PersistenceError
from .models import Position, RawEvent
from .reference_data import ReferenceDataStore


logger = logging.getLogger(__name__)


class TradeDataStore:
    """
    Positions (first write wins), per-position event lists (replaced
    wholesale) and the reference data store.
    """

    def __init__(
        self,
        blob_store: Optional[BlobStore] = None,
        storage_key: str = "upscale_exporter_data_v23",
        default_decimals: int = DEFAULT_ASSET_DECIMALS,
    ) -> None:
        self.blob_store = blob_store or InMemoryBlobStore()
        self.storage_key = storage_key
        self.reference = ReferenceDataStore(default_decimals=default_decimals)
        self.reference.set_change_listener(self.save)

        self._positions: dict[str, Position] = {}
        self._events: dict[str, tuple[RawEvent, ...]] = {}

    # ---------------------------------------------------------
    # Positions
    # ---------------------------------------------------------

    def insert_positions(self, positions: Iterable[Position], clear_first: bool = False) -> int:
        """
        Insert positions not already known. Returns the number added.

        Does not persist; the caller decides whether the change is worth a
        write.
        """
        if clear_first:
            self._positions.clear()
        before = len(self._positions)
        for position in positions:
            self._positions.setdefault(position.idx, position)
        return len(self._positions) - before

    def positions(self) -> list[Position]:
        return list(self._positions.values())

    def position_ids(self) -> list[str]:
        return list(self._positions.keys())

    @property
    def position_count(self) -> int:
        return len(self._positions)

    # ---------------------------------------------------------
    # Events
    # ---------------------------------------------------------

    def replace_events(self, idx: str, events: Iterable[RawEvent]) -> None:
        self._events[idx] = tuple(events)

    def events_for(self, idx: str) -> tuple[RawEvent, ...]:
        return self._events.get(idx, ())

    def has_events(self, idx: str) -> bool:
        return idx in self._events

    def clear_events(self) -> None:
        self._events.clear()

    @property
    def collected_count(self) -> int:
        """Number of known positions with a recorded event list."""
        return sum(1 for idx in self._positions if idx in self._events)

    def missing_ids(self) -> list[str]:
        return [idx for idx in self._positions if idx not in self._events]

    # ---------------------------------------------------------
    # Persistence
    # ---------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        reference = self.reference.to_dict()
        return {
            "positions": [[k, p.to_dict()] for k, p in self._positions.items()],
            "markets": reference["markets"],
            "events": [
                [k, [e.to_dict() for e in events]]
                for k, events in self._events.items()
            ],
            "assetDecimals": reference["assetDecimals"],
        }

    def save(self) -> bool:
        """Write the full document. Failures are logged, never raised."""
        try:
            document = json.dumps(self.to_dict())
            self.blob_store.set(self.storage_key, document)
            return True
        except (PersistenceError, TypeError, ValueError) as e:
            logger.warning(f"Failed saving exporter state: {e}")
            return False

    def restore(self) -> bool:
        """
        Load positions and reference data from the blob store.

        Events are session-scoped and are not restored. An unreadable or
        malformed document is treated as no saved state.
        """
        try:
            saved = self.blob_store.get(self.storage_key)
        except PersistenceError as e:
            logger.warning(f"Failed reading exporter state: {e}")
            return False

        if not saved:
            return False

        try:
            parsed = json.loads(saved)
        except ValueError as e:
            logger.warning(f"Failed loading saved data: {e}")
            return False

        if not isinstance(parsed, dict):
            logger.warning("Failed loading saved data: document is not an object")
            return False

        positions: dict[str, Position] = {}
        for entry in parsed.get("positions") or []:
            try:
                key, value = entry
                positions[str(key)] = Position.from_dict(value)
            except (TypeError, ValueError, ValidationError) as e:
                logger.warning(f"Skipping saved position entry: {e}")

        self._positions = positions
        self.reference.load_dict(parsed)
        logger.info(
            f"Loaded saved data: {len(positions)} positions, "
            f"{self.reference.market_count} markets"
        )
        return True
