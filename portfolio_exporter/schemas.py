"""
Pydantic Schemas for intercepted API payloads.

Validation boundary between raw response bodies and domain models. Field
names follow the upstream camelCase; extra fields are kept so they survive
persistence and structured export.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


def _none_to_zero(value: Any) -> Any:
    return 0 if value is None or value == "" else value


def _to_str(value: Any) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


class PayloadModel(BaseModel):
    """Base for upstream payloads: camelCase aliases, extra fields kept."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)


# =============================================================
# POSITIONS
# =============================================================

class OrderInfoSchema(PayloadModel):
    type: Optional[str] = None
    leverage: Optional[int] = None


class PositionSchema(PayloadModel):
    idx: str
    market: str = ""
    direction: str = ""
    opened_at: Optional[datetime] = Field(default=None, alias="openedAt")
    closed_at: Optional[datetime] = Field(default=None, alias="closedAt")
    pnl: int = 0
    fee: int = 0
    size: int = 0
    notional: Optional[str] = None
    margin: Optional[str] = None
    order: Optional[OrderInfoSchema] = None

    @field_validator("idx", "market", "notional", "margin", mode="before")
    @classmethod
    def coerce_identifiers(cls, value: Any) -> Any:
        return _to_str(value)

    @field_validator("direction", mode="before")
    @classmethod
    def null_direction(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("pnl", "fee", "size", mode="before")
    @classmethod
    def coerce_amounts(cls, value: Any) -> Any:
        return _none_to_zero(value)

    @field_validator("opened_at", "closed_at")
    @classmethod
    def assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class PositionListPayload(PayloadModel):
    data: List[PositionSchema] = Field(default_factory=list)

    @field_validator("data", mode="before")
    @classmethod
    def null_data(cls, value: Any) -> Any:
        return [] if value is None else value


# =============================================================
# REFERENCE DATA
# =============================================================

class MarketSchema(PayloadModel):
    id: str
    symbol: str = ""
    base_asset: Optional[str] = Field(default=None, alias="baseAsset")
    quote_asset: Optional[str] = Field(default=None, alias="quoteAsset")

    @field_validator("id", "base_asset", "quote_asset", mode="before")
    @classmethod
    def coerce_identifiers(cls, value: Any) -> Any:
        return _to_str(value)

    @field_validator("symbol", mode="before")
    @classmethod
    def null_symbol(cls, value: Any) -> Any:
        return "" if value is None else value


class ConfigPayload(PayloadModel):
    asset_decimals: Optional[Dict[str, int]] = Field(default=None, alias="assetDecimals")


# =============================================================
# EVENTS
# =============================================================

class RawEventSchema(PayloadModel):
    event_name: str = Field(default="", alias="eventName")
    exchanged_base: int = Field(default=0, alias="exchangedBase")
    exchanged_quote: int = Field(default=0, alias="exchangedQuote")
    fee_in_event: int = Field(default=0, alias="feeInEvent")
    pnl_in_event: int = Field(default=0, alias="pnlInEvent")
    order: Optional[OrderInfoSchema] = None

    @field_validator(
        "exchanged_base", "exchanged_quote", "fee_in_event", "pnl_in_event",
        mode="before",
    )
    @classmethod
    def coerce_amounts(cls, value: Any) -> Any:
        return _none_to_zero(value)

    @field_validator("event_name", mode="before")
    @classmethod
    def null_name(cls, value: Any) -> Any:
        return "" if value is None else value


MarketListAdapter = TypeAdapter(List[MarketSchema])
EventListAdapter = TypeAdapter(List[RawEventSchema])
