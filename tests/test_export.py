"""
Tests for export filtering, formatting and the export service.

============================================================
PURPOSE
============================================================
- Symbol / close-date filters (inclusive whole-day bounds)
- Text report layout and structured JSON
- End-to-end export through a sink

============================================================
"""

import json
from datetime import date, datetime, timezone
from unittest.mock import MagicMock
from zoneinfo import ZoneInfo

import pytest

from conftest import body, event_payload, events_url, position_payload, positions_url
from portfolio_exporter.aggregator import aggregate
from portfolio_exporter.config import ExporterConfig
from portfolio_exporter.exceptions import NoMatchingPositionsError
from portfolio_exporter.export import (
    ExportKind,
    ExportQuery,
    ExportService,
    filter_positions,
    format_leverage,
    format_structured,
    format_text,
    sort_by_close_desc,
)
from portfolio_exporter.models import Market, Position, RawEvent
from portfolio_exporter.reconciler import IngestionReconciler
from portfolio_exporter.schemas import RawEventSchema
from portfolio_exporter.sinks import FileArtifactSink
from portfolio_exporter.store import TradeDataStore


GENERATED_AT = datetime(2025, 2, 1, tzinfo=timezone.utc)

BTC = Market(id="m1", symbol="BTC-USD", base_asset="B", quote_asset="Q")
ETH = Market(id="m2", symbol="ETH-USD", base_asset="B", quote_asset="Q")
DECIMALS = {"B": 6, "Q": 6}


def ev(**kwargs) -> RawEvent:
    return RawEvent.from_schema(RawEventSchema.model_validate(event_payload(**kwargs)))


def agg(idx, market=BTC, closed_at="2025-01-15T12:00:00Z", events=None, **overrides):
    position = Position.from_dict(position_payload(
        idx, market=market.id if market else "unknown", closed_at=closed_at, **overrides,
    ))
    return aggregate(position, events if events is not None else [ev()], market, DECIMALS)


# ============================================================
# FILTER
# ============================================================

class TestFilterPositions:
    """Symbol and date filters."""

    def test_no_filters_keeps_everything(self):
        positions = [agg("p1"), agg("p2", market=ETH)]
        assert filter_positions(positions) == positions

    def test_symbol_substring_case_insensitive(self):
        positions = [agg("p1"), agg("p2", market=ETH)]
        assert [p.idx for p in filter_positions(positions, symbol="btc")] == ["p1"]
        assert [p.idx for p in filter_positions(positions, symbol="-usd")] == ["p1", "p2"]

    def test_unknown_market_never_matches_symbol(self):
        positions = [agg("p1", market=None)]
        assert filter_positions(positions, symbol="btc") == []

    def test_date_range_is_inclusive(self):
        positions = [
            agg("start", closed_at="2025-01-10T00:00:00Z"),
            agg("end", closed_at="2025-01-20T23:59:59Z"),
            agg("before", closed_at="2025-01-09T23:59:59Z"),
            agg("after", closed_at="2025-01-21T00:00:00Z"),
        ]
        result = filter_positions(
            positions, start_date=date(2025, 1, 10), end_date=date(2025, 1, 20),
        )

        assert [p.idx for p in result] == ["start", "end"]

    def test_end_bound_covers_fraction_of_last_second(self):
        positions = [agg("p1", closed_at="2025-01-20T23:59:59.900Z")]
        assert len(filter_positions(positions, end_date=date(2025, 1, 20))) == 1

    def test_missing_close_time_excluded_by_date_filter(self):
        positions = [agg("open", closed_at=None), agg("closed")]

        assert [p.idx for p in filter_positions(positions, start_date=date(2025, 1, 1))] == ["closed"]
        assert len(filter_positions(positions)) == 2

    def test_bounds_follow_report_timezone(self):
        # 2025-01-10 02:00 UTC is still 2025-01-09 in New York
        positions = [agg("p1", closed_at="2025-01-10T02:00:00Z")]

        assert filter_positions(positions, end_date=date(2025, 1, 9), tz=ZoneInfo("America/New_York"))
        assert not filter_positions(positions, end_date=date(2025, 1, 9))


# ============================================================
# TEXT REPORT
# ============================================================

class TestFormatText:
    """Text report layout."""

    def test_full_report(self):
        text = format_text([agg("p1")], GENERATED_AT)

        assert text == "\n".join([
            "Portfolio History Export",
            "Generated: 2025-02-01T00:00:00+00:00",
            "Total Positions: 1",
            "====================================",
            "",
            "--- Position: p1 ---",
            "Market: BTC-USD | Direction: LONG | Leverage: 10x",
            "Opened: 2025-01-15 10:00:00 | Closed: 2025-01-15 12:00:00",
            "Avg Entry Price: 50.000000 | Avg Close Price: 0.000000",
            "PnL: 1 | Fees: 0.002 | Total Size: 5",
            "Events:",
            "  - openPosition | Type: market | Size: 5.000000 | Price: 50.000000 | Fee: 0.002 | PnL: 0",
            "-----------------------------",
            "",
        ])

    def test_no_events_placeholder(self):
        text = format_text([agg("p1", events=[])], GENERATED_AT)
        assert "  - No detailed events captured." in text

    def test_event_without_order_type(self):
        text = format_text([agg("p1", events=[ev(order_type=None)])], GENERATED_AT)
        assert "| Type: N/A |" in text

    def test_unknown_market_label_falls_back_to_id(self):
        text = format_text([agg("p1", market=None)], GENERATED_AT)
        assert "Market: unknown |" in text

    def test_sorted_by_close_desc_with_missing_last(self):
        positions = [
            agg("old", closed_at="2025-01-01T00:00:00Z"),
            agg("none", closed_at=None),
            agg("new", closed_at="2025-01-31T00:00:00Z"),
        ]

        assert [p.idx for p in sort_by_close_desc(positions)] == ["new", "old", "none"]

        text = format_text(positions, GENERATED_AT)
        assert text.index("Position: new") < text.index("Position: old") < text.index("Position: none")
        assert "Closed: N/A" in text

    def test_times_rendered_in_report_timezone(self):
        text = format_text([agg("p1")], GENERATED_AT, tz=ZoneInfo("Europe/Berlin"))
        assert "Closed: 2025-01-15 13:00:00" in text


class TestFormatLeverage:
    """Leverage column."""

    def test_scaled_order_leverage(self):
        assert format_leverage(agg("p1")) == "10"

    def test_fractional_leverage(self):
        assert format_leverage(agg("p1", order={"leverage": 2500000000})) == "2.5"

    def test_notional_over_margin_fallback(self):
        p = agg("p1", order=None, notional="1000", margin="100")
        assert format_leverage(p) == "10"

    def test_zero_margin_is_unknown(self):
        p = agg("p1", order=None, notional="1000", margin="0")
        assert format_leverage(p) == "N/A"

    def test_nothing_known(self):
        assert format_leverage(agg("p1", order=None)) == "N/A"


class TestFormatStructured:
    """Structured JSON export."""

    def test_array_of_records(self):
        data = json.loads(format_structured([agg("p1"), agg("p2", market=ETH)]))

        assert [r["idx"] for r in data] == ["p1", "p2"]
        assert data[0]["entryPrice"] == "50"
        assert data[1]["marketInfo"]["symbol"] == "ETH-USD"

    def test_unknown_fields_preserved(self):
        data = json.loads(format_structured([agg("p1", liquidationPrice="123")]))
        assert data[0]["liquidationPrice"] == "123"

    def test_large_amounts_stay_exact(self):
        huge = 123456789012345678901
        data = json.loads(format_structured([agg("p1", events=[], pnl=str(huge))]))

        assert data[0]["pnl"] == str(huge)
        assert data[0]["netPnl"] == str(huge)


# ============================================================
# EXPORT SERVICE
# ============================================================

@pytest.fixture
def loaded_reconciler(config):
    store = TradeDataStore()
    reconciler = IngestionReconciler(store, config=config)
    reconciler.ingest(
        "https://api.upscale.trade/v1/markets", 200,
        body([{"id": "m1", "symbol": "BTC-USD", "baseAsset": "B", "quoteAsset": "Q"}]),
    )
    reconciler.ingest(
        "https://api.upscale.trade/v1/config", 200, body({"assetDecimals": DECIMALS}),
    )
    reconciler.ingest(
        positions_url(), 200,
        body({"data": [position_payload("p1"), position_payload("p2", market="m9")]}),
    )

    def trigger():
        for idx in ("p1", "p2"):
            reconciler.ingest(events_url(idx), 200, body([event_payload()]))

    reconciler.set_detail_trigger(trigger)
    return reconciler


class TestExportService:
    """End-to-end export."""

    @pytest.mark.asyncio
    async def test_text_export_to_file(self, loaded_reconciler, config, tmp_path):
        service = ExportService(
            loaded_reconciler, FileArtifactSink(str(tmp_path)), config,
            clock=lambda: GENERATED_AT,
        )

        result = await service.export(ExportKind.TEXT)

        assert result.position_count == 2
        assert result.warning is None
        assert result.file_name == "portfolio_history.txt"
        written = (tmp_path / "portfolio_history.txt").read_text(encoding="utf-8")
        assert written == result.content
        assert "Total Positions: 2" in written

    @pytest.mark.asyncio
    async def test_structured_export_with_symbol_filter(self, loaded_reconciler, config):
        sink = MagicMock()
        sink.deliver.return_value = "memory"
        service = ExportService(loaded_reconciler, sink, config)

        result = await service.export(ExportKind.STRUCTURED, ExportQuery(symbol="btc"))

        content, name, mime = sink.deliver.call_args.args
        assert name == "portfolio_history.json"
        assert mime == "application/json"
        assert [r["idx"] for r in json.loads(content)] == ["p1"]
        assert result.location == "memory"

    @pytest.mark.asyncio
    async def test_no_match_raises_and_delivers_nothing(self, loaded_reconciler, config):
        sink = MagicMock()
        service = ExportService(loaded_reconciler, sink, config)

        with pytest.raises(NoMatchingPositionsError) as exc_info:
            await service.export(ExportKind.TEXT, ExportQuery(symbol="doge"))

        assert exc_info.value.total_positions == 2
        assert "No positions to export" in exc_info.value.message
        sink.deliver.assert_not_called()

    @pytest.mark.asyncio
    async def test_partial_coverage_still_exports(self, config):
        store = TradeDataStore()
        reconciler = IngestionReconciler(store, config=config)
        reconciler.ingest(positions_url(), 200, body({"data": [position_payload("p1")]}))
        sink = MagicMock()
        service = ExportService(reconciler, sink, config)

        result = await service.export(ExportKind.TEXT)

        assert result.fetch.timed_out
        assert result.warning == "Timed out. Exporting only 0 of 1 positions."
        assert "No detailed events captured." in result.content
        sink.deliver.assert_called_once()

    @pytest.mark.asyncio
    async def test_date_filter_uses_configured_timezone(self, loaded_reconciler):
        config = ExporterConfig(detail_timeout_seconds=0.2, report_timezone="Asia/Tokyo")
        loaded_reconciler.config = config
        service = ExportService(loaded_reconciler, MagicMock(), config)

        # 12:00 UTC on the 15th is 21:00 in Tokyo, same calendar day
        result = await service.export(
            ExportKind.TEXT, ExportQuery(start_date=date(2025, 1, 15), end_date=date(2025, 1, 15)),
        )

        assert result.position_count == 2


class TestFileArtifactSink:
    def test_writes_into_output_dir(self, tmp_path):
        sink = FileArtifactSink(str(tmp_path / "out"))
        location = sink.deliver("hello", "report.txt", "text/plain")

        assert location == str(tmp_path / "out" / "report.txt")
        assert (tmp_path / "out" / "report.txt").read_text(encoding="utf-8") == "hello"

    def test_suggested_name_cannot_escape_directory(self, tmp_path):
        sink = FileArtifactSink(str(tmp_path))
        location = sink.deliver("x", "../../evil.txt", "text/plain")

        assert location == str(tmp_path / "evil.txt")
