"""
Export Filter & Formatter.

============================================================
RESPONSIBILITY
============================================================
- Filter aggregated positions by symbol substring and close date
- Render a text report or a structured JSON document
- Drive a full export: collect details, aggregate, filter, deliver

Filtering and formatting are pure functions of their inputs; the report
timestamp is passed in so output can be snapshot-tested.

============================================================
"""

import json
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timezone, tzinfo
from decimal import Decimal
from enum import Enum
from typing import Callable, Iterable, Optional

from .aggregator import aggregate_store
from .codec import DECIMAL_CONTEXT, format_fixed, plain, to_decimal, to_decimal_string
from .config import LEVERAGE_DECIMALS, ExporterConfig, get_config
from .exceptions import NoMatchingPositionsError
from .models import AggregatedPosition
from .reconciler import FetchOutcome, IngestionReconciler
from .sinks import ArtifactSink


logger = logging.getLogger(__name__)


REPORT_TITLE = "Portfolio History Export"
HEADER_RULE = "=" * 36
BLOCK_RULE = "-" * 29


class ExportKind(str, Enum):
    """Artifact formats."""
    TEXT = "text"
    STRUCTURED = "structured"

    @property
    def mime_type(self) -> str:
        return "text/plain" if self is ExportKind.TEXT else "application/json"


@dataclass(frozen=True)
class ExportQuery:
    """User-supplied filters; None means no constraint."""
    symbol: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


@dataclass
class ExportResult:
    kind: ExportKind
    file_name: str
    content: str
    position_count: int
    fetch: FetchOutcome
    location: Optional[str] = None

    @property
    def warning(self) -> Optional[str]:
        return self.fetch.warning


# =============================================================
# FILTER
# =============================================================

def filter_positions(
    positions: Iterable[AggregatedPosition],
    symbol: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    tz: tzinfo = timezone.utc,
) -> list[AggregatedPosition]:
    """
    Case-insensitive symbol substring match plus an inclusive close-date
    range. The end bound covers the whole calendar day in tz.
    """
    result = list(positions)

    if symbol:
        needle = symbol.lower()
        result = [p for p in result if p.symbol is not None and needle in p.symbol.lower()]

    if start_date is not None:
        start = datetime.combine(start_date, time.min, tzinfo=tz)
        result = [p for p in result if p.closed_at is not None and p.closed_at >= start]

    if end_date is not None:
        end = datetime.combine(end_date, time.max, tzinfo=tz)
        result = [p for p in result if p.closed_at is not None and p.closed_at <= end]

    return result


# =============================================================
# TEXT REPORT
# =============================================================

def format_leverage(position: AggregatedPosition, leverage_decimals: int = LEVERAGE_DECIMALS) -> str:
    """order.leverage (scaled by 1e9), else notional / margin, else N/A."""
    raw = position.position
    if raw.leverage:
        return to_decimal_string(raw.leverage, leverage_decimals)

    notional = to_decimal(raw.notional)
    margin = to_decimal(raw.margin)
    if notional is not None and margin is not None and margin != 0:
        return plain(DECIMAL_CONTEXT.divide(notional, margin))
    return "N/A"


def _format_time(value: Optional[datetime], tz: tzinfo) -> str:
    if value is None:
        return "N/A"
    return value.astimezone(tz).strftime("%Y-%m-%d %H:%M:%S")


def _close_key(position: AggregatedPosition) -> float:
    closed = position.closed_at
    return closed.timestamp() if closed is not None else float("-inf")


def sort_by_close_desc(positions: Iterable[AggregatedPosition]) -> list[AggregatedPosition]:
    """Most recently closed first; positions without a close time last."""
    return sorted(positions, key=_close_key, reverse=True)


def format_text(
    positions: Iterable[AggregatedPosition],
    generated_at: datetime,
    tz: tzinfo = timezone.utc,
    leverage_decimals: int = LEVERAGE_DECIMALS,
) -> str:
    ordered = sort_by_close_desc(positions)
    lines = [
        REPORT_TITLE,
        f"Generated: {generated_at.isoformat()}",
        f"Total Positions: {len(ordered)}",
        HEADER_RULE,
        "",
    ]

    for p in ordered:
        pos = p.position
        market_label = p.symbol or pos.market or "N/A"
        direction = (pos.direction or "N/A").upper()
        base_dec, quote_dec = p.base_decimals, p.quote_decimals

        lines.append(f"--- Position: {pos.idx} ---")
        lines.append(
            f"Market: {market_label} | Direction: {direction} | "
            f"Leverage: {format_leverage(p, leverage_decimals)}x"
        )
        lines.append(
            f"Opened: {_format_time(pos.opened_at, tz)} | "
            f"Closed: {_format_time(pos.closed_at, tz)}"
        )
        lines.append(
            f"Avg Entry Price: {format_fixed(p.entry_price, quote_dec)} | "
            f"Avg Close Price: {format_fixed(p.close_price, quote_dec)}"
        )
        lines.append(
            f"PnL: {to_decimal_string(p.net_pnl, quote_dec)} | "
            f"Fees: {to_decimal_string(p.net_fee, quote_dec)} | "
            f"Total Size: {to_decimal_string(p.net_size, base_dec)}"
        )
        lines.append("Events:")
        if p.events:
            for e in p.events:
                lines.append(
                    f"  - {e.name} | Type: {e.order_type or 'N/A'} | "
                    f"Size: {format_fixed(e.size, base_dec)} | "
                    f"Price: {format_fixed(e.price, quote_dec)} | "
                    f"Fee: {to_decimal_string(e.fee, quote_dec)} | "
                    f"PnL: {to_decimal_string(e.pnl, quote_dec)}"
                )
        else:
            lines.append("  - No detailed events captured.")
        lines.append(BLOCK_RULE)
        lines.append("")

    return "\n".join(lines)


# =============================================================
# STRUCTURED
# =============================================================

def _json_default(value: object) -> str:
    if isinstance(value, Decimal):
        return plain(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def format_structured(positions: Iterable[AggregatedPosition]) -> str:
    """JSON array of aggregated records; big numbers as decimal strings."""
    return json.dumps(
        [p.to_dict() for p in positions],
        indent=2,
        ensure_ascii=False,
        default=_json_default,
    )


def render(
    positions: Iterable[AggregatedPosition],
    kind: ExportKind,
    generated_at: datetime,
    tz: tzinfo = timezone.utc,
    leverage_decimals: int = LEVERAGE_DECIMALS,
) -> str:
    if kind is ExportKind.TEXT:
        return format_text(positions, generated_at, tz, leverage_decimals)
    return format_structured(positions)


# =============================================================
# EXPORT SERVICE
# =============================================================

class ExportService:
    """
    Export entry point for UI actions.

    Usage:
        service = ExportService(reconciler, FileArtifactSink("exports"))
        result = await service.export(ExportKind.TEXT, ExportQuery(symbol="btc"))
    """

    def __init__(
        self,
        reconciler: IngestionReconciler,
        sink: ArtifactSink,
        config: Optional[ExporterConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.reconciler = reconciler
        self.sink = sink
        self.config = config or get_config()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def file_name(self, kind: ExportKind) -> str:
        if kind is ExportKind.TEXT:
            return self.config.text_file_name
        return self.config.structured_file_name

    async def export(self, kind: ExportKind, query: Optional[ExportQuery] = None) -> ExportResult:
        """
        Collect details, aggregate, filter and deliver.

        Raises:
            NoMatchingPositionsError: filters left nothing; no artifact is produced
        """
        query = query or ExportQuery()
        fetch = await self.reconciler.ensure_all_details_fetched()

        aggregated = aggregate_store(self.reconciler.store, self.config.base_extra_decimals)
        selected = filter_positions(
            aggregated,
            symbol=query.symbol,
            start_date=query.start_date,
            end_date=query.end_date,
            tz=self.config.tzinfo,
        )
        if not selected:
            raise NoMatchingPositionsError(
                len(aggregated),
                details={
                    "symbol": query.symbol,
                    "start_date": query.start_date.isoformat() if query.start_date else None,
                    "end_date": query.end_date.isoformat() if query.end_date else None,
                },
            )

        content = render(
            selected,
            kind,
            generated_at=self._clock(),
            tz=self.config.tzinfo,
            leverage_decimals=self.config.leverage_decimals,
        )
        file_name = self.file_name(kind)
        location = self.sink.deliver(content, file_name, kind.mime_type)

        logger.info(
            f"Exported {len(selected)} of {len(aggregated)} positions as {kind.value}"
        )
        return ExportResult(
            kind=kind,
            file_name=file_name,
            content=content,
            position_count=len(selected),
            fetch=fetch,
            location=location,
        )
