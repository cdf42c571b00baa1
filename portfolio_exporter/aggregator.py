"""
Position Event Aggregator.

============================================================
PURPOSE
============================================================
Turns a position's raw fill events into weighted entry/close prices, net
fee/PnL/size and a normalized per-event view.

- base amount  = exchangedBase  / 10^(baseDecimals + extra)
- quote amount = exchangedQuote / 10^quoteDecimals
- event price  = |quote / base|
- entry price  = |sum(entry quote) / sum(entry base)|    (entry base > 0)
- close price  = sum(close quote) / |sum(close base)|    (close base != 0)

Events with a zero exchanged-base amount are non-economic (settlement
records) and are dropped before any accumulation.

CRITICAL INVARIANT:
    "Identical inputs produce identical output."
All arithmetic is Decimal under a fixed context; no hidden state.

============================================================
"""

from decimal import Decimal
from typing import Iterable, Mapping, Optional

from .codec import DECIMAL_CONTEXT, scale_down, scale_up
from .config import BASE_AMOUNT_EXTRA_DECIMALS, DEFAULT_ASSET_DECIMALS
from .models import AggregatedPosition, Market, NormalizedEvent, Position, RawEvent
from .store import TradeDataStore


ZERO = Decimal(0)


def resolve_decimals(
    market: Optional[Market],
    asset_decimals: Mapping[str, int],
    default_decimals: int = DEFAULT_ASSET_DECIMALS,
) -> tuple[int, int]:
    """(base, quote) exponents for a market; default when unknown."""
    if market is None:
        return default_decimals, default_decimals

    def lookup(asset_id: Optional[str]) -> int:
        if asset_id is None:
            return default_decimals
        return asset_decimals.get(asset_id, default_decimals)

    return lookup(market.base_asset), lookup(market.quote_asset)


def aggregate(
    position: Position,
    raw_events: Iterable[RawEvent],
    market: Optional[Market],
    asset_decimals: Mapping[str, int],
    *,
    default_decimals: int = DEFAULT_ASSET_DECIMALS,
    base_extra_decimals: int = BASE_AMOUNT_EXTRA_DECIMALS,
) -> AggregatedPosition:
    """
    Aggregate one position.

    Args:
        position: Position as listed
        raw_events: Its current raw event list (may be empty)
        market: Resolved market, or None if unknown
        asset_decimals: Asset id -> decimal exponent
        default_decimals: Exponent for unknown assets
        base_extra_decimals: Extra scale carried by exchanged-base amounts

    Returns:
        AggregatedPosition
    """
    base_dec, quote_dec = resolve_decimals(market, asset_decimals, default_decimals)

    total_fee = 0
    total_pnl = 0
    entry_quote = ZERO
    entry_base = ZERO
    close_quote = ZERO
    close_base = ZERO
    normalized: list[NormalizedEvent] = []

    for event in raw_events:
        if event.exchanged_base == 0:
            continue

        base_amount = scale_down(event.exchanged_base, base_dec + base_extra_decimals)
        quote_amount = scale_down(event.exchanged_quote, quote_dec)
        price = DECIMAL_CONTEXT.divide(quote_amount, base_amount).copy_abs()

        total_fee += event.fee
        total_pnl += event.pnl

        if event.is_entry:
            entry_quote = DECIMAL_CONTEXT.add(entry_quote, quote_amount)
            entry_base = DECIMAL_CONTEXT.add(entry_base, base_amount)
        elif event.is_exit:
            close_quote = DECIMAL_CONTEXT.add(close_quote, quote_amount)
            close_base = DECIMAL_CONTEXT.add(close_base, base_amount)

        normalized.append(NormalizedEvent(
            name=event.event_name,
            size=base_amount,
            price=price,
            fee=event.fee,
            pnl=event.pnl,
            order_type=event.order_type,
        ))

    entry_price = (
        DECIMAL_CONTEXT.divide(entry_quote, entry_base).copy_abs() if entry_base > 0 else ZERO
    )
    close_price = (
        DECIMAL_CONTEXT.divide(close_quote, close_base.copy_abs()) if close_base != 0 else ZERO
    )

    # Fall back to the position's own close-time figures when no usable
    # detail events were captured
    net_pnl = total_pnl if total_pnl != 0 else position.pnl
    net_fee = total_fee if total_fee != 0 else position.fee
    net_size = scale_up(entry_base, base_dec) if entry_base > 0 else Decimal(position.size)

    return AggregatedPosition(
        position=position,
        market=market,
        base_decimals=base_dec,
        quote_decimals=quote_dec,
        entry_price=entry_price,
        close_price=close_price,
        net_pnl=net_pnl,
        net_fee=net_fee,
        net_size=net_size,
        events=tuple(normalized),
    )


def aggregate_store(
    store: TradeDataStore,
    base_extra_decimals: int = BASE_AMOUNT_EXTRA_DECIMALS,
) -> list[AggregatedPosition]:
    """Aggregate every known position from a store snapshot."""
    decimals = store.reference.asset_decimals
    default_decimals = store.reference.default_decimals
    return [
        aggregate(
            position,
            store.events_for(position.idx),
            store.reference.lookup_market(position.market),
            decimals,
            default_decimals=default_decimals,
            base_extra_decimals=base_extra_decimals,
        )
        for position in store.positions()
    ]
