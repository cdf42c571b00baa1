"""
Portfolio Exporter Data Models - positions, markets, events, aggregates.

Merge policy per entity:
- Position: first write wins per idx within a load cycle (closed positions
  are immutable facts).
- Market: last write wins (listings may be corrected).
- Raw events: the list for a position is replaced wholesale on every detail
  payload (latest response is authoritative).
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from .codec import plain
from .schemas import MarketSchema, PositionSchema, RawEventSchema


class EventName(str, Enum):
    """Known fill event kinds."""
    OPEN_POSITION = "openPosition"
    INCREASE_POSITION = "increasePosition"
    CLOSE_POSITION = "closePosition"
    DECREASE_POSITION = "decreasePosition"


ENTRY_EVENTS = frozenset({EventName.OPEN_POSITION.value, EventName.INCREASE_POSITION.value})
EXIT_EVENTS = frozenset({EventName.CLOSE_POSITION.value, EventName.DECREASE_POSITION.value})


class PayloadKind(Enum):
    """How an intercepted response was routed."""
    IGNORED = "ignored"              # Wrong host, non-200, empty body
    POSITIONS = "positions"
    MARKETS = "markets"
    ASSET_DECIMALS = "asset_decimals"
    EVENTS = "events"
    UNRECOGNIZED = "unrecognized"    # No position id in URL
    REJECTED = "rejected"            # Parse / schema failure


@dataclass(frozen=True)
class Position:
    """
    A closed trading position as listed by the portfolio history endpoint.

    Amounts are raw fixed-point integers. The original payload is kept so
    unknown fields survive persistence and structured export.
    """
    idx: str
    market: str
    direction: str
    opened_at: Optional[datetime]
    closed_at: Optional[datetime]
    pnl: int = 0
    fee: int = 0
    size: int = 0
    leverage: Optional[int] = None
    order_type: Optional[str] = None
    notional: Optional[str] = None
    margin: Optional[str] = None
    payload: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_schema(cls, schema: PositionSchema) -> "Position":
        return cls(
            idx=schema.idx,
            market=schema.market,
            direction=schema.direction,
            opened_at=schema.opened_at,
            closed_at=schema.closed_at,
            pnl=schema.pnl,
            fee=schema.fee,
            size=schema.size,
            leverage=schema.order.leverage if schema.order else None,
            order_type=schema.order.type if schema.order else None,
            notional=schema.notional,
            margin=schema.margin,
            payload=schema.model_dump(mode="json", by_alias=True),
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Position":
        return cls.from_schema(PositionSchema.model_validate(data))

    def to_dict(self) -> dict[str, Any]:
        return dict(self.payload)


@dataclass(frozen=True)
class Market:
    """Market listing: display symbol plus base/quote asset identifiers."""
    id: str
    symbol: str = ""
    base_asset: Optional[str] = None
    quote_asset: Optional[str] = None

    @classmethod
    def from_schema(cls, schema: MarketSchema) -> "Market":
        return cls(
            id=schema.id,
            symbol=schema.symbol,
            base_asset=schema.base_asset,
            quote_asset=schema.quote_asset,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Market":
        return cls.from_schema(MarketSchema.model_validate(data))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "baseAsset": self.base_asset,
            "quoteAsset": self.quote_asset,
        }


@dataclass(frozen=True)
class RawEvent:
    """One fill/adjustment of a position, raw fixed-point amounts."""
    event_name: str
    exchanged_base: int = 0
    exchanged_quote: int = 0
    fee: int = 0
    pnl: int = 0
    order_type: Optional[str] = None
    payload: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_schema(cls, schema: RawEventSchema) -> "RawEvent":
        return cls(
            event_name=schema.event_name,
            exchanged_base=schema.exchanged_base,
            exchanged_quote=schema.exchanged_quote,
            fee=schema.fee_in_event,
            pnl=schema.pnl_in_event,
            order_type=schema.order.type if schema.order else None,
            payload=schema.model_dump(mode="json", by_alias=True),
        )

    @property
    def is_entry(self) -> bool:
        return self.event_name in ENTRY_EVENTS

    @property
    def is_exit(self) -> bool:
        return self.event_name in EXIT_EVENTS

    def to_dict(self) -> dict[str, Any]:
        return dict(self.payload)


@dataclass(frozen=True)
class NormalizedEvent:
    """Decimal view of a raw event (fee/pnl stay raw quote units)."""
    name: str
    size: Decimal
    price: Decimal
    fee: int
    pnl: int
    order_type: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "size": plain(self.size),
            "price": plain(self.price),
            "fee": str(self.fee),
            "pnl": str(self.pnl),
            "type": self.order_type,
        }


@dataclass(frozen=True)
class AggregatedPosition:
    """Position plus weighted prices and net amounts derived from its events."""
    position: Position
    market: Optional[Market]
    base_decimals: int
    quote_decimals: int
    entry_price: Decimal
    close_price: Decimal
    net_pnl: int
    net_fee: int
    net_size: Decimal
    events: tuple[NormalizedEvent, ...] = ()

    @property
    def idx(self) -> str:
        return self.position.idx

    @property
    def symbol(self) -> Optional[str]:
        return self.market.symbol if self.market else None

    @property
    def closed_at(self) -> Optional[datetime]:
        return self.position.closed_at

    def to_dict(self) -> dict[str, Any]:
        data = self.position.to_dict()
        for key in ("pnl", "fee", "size"):
            if isinstance(data.get(key), int):
                data[key] = str(data[key])
        data.update({
            "entryPrice": plain(self.entry_price),
            "closePrice": plain(self.close_price),
            "netPnl": str(self.net_pnl),
            "netFee": str(self.net_fee),
            "netSize": plain(self.net_size),
            "marketInfo": self.market.to_dict() if self.market else None,
            "baseDecimals": self.base_decimals,
            "quoteDecimals": self.quote_decimals,
            "events": [e.to_dict() for e in self.events],
        })
        return data
