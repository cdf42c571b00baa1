"""
Tests for capture replay and the command-line front end.
"""

import json

import pytest

from conftest import API, event_payload, events_url, position_payload, positions_url
from portfolio_exporter.capture import CaptureReplayer, parse_capture_line, read_capture
from portfolio_exporter.cli import build_config, create_parser, main, validate_args
from portfolio_exporter.models import PayloadKind
from portfolio_exporter.reconciler import IngestionReconciler
from portfolio_exporter.store import TradeDataStore


# ============================================================
# FIXTURES
# ============================================================

def capture_lines():
    return [
        {"url": f"{API}/markets", "status": 200,
         "body": [{"id": "m1", "symbol": "BTC-USD", "baseAsset": "B", "quoteAsset": "Q"}]},
        {"url": f"{API}/config", "status": 200, "body": {"assetDecimals": {"B": 6, "Q": 6}}},
        {"url": positions_url(), "status": 200,
         "body": json.dumps({"data": [position_payload("p1"), position_payload("p2")]})},
        {"url": events_url("p1"), "status": 200, "body": [event_payload()]},
        {"url": events_url("p2"), "status": 200,
         "body": [event_payload(), event_payload(name="closePosition", base=-5000000000, quote=300000000)]},
        {"url": f"{API}/account", "status": 200, "body": "<html>"},
    ]


@pytest.fixture
def capture_file(tmp_path):
    path = tmp_path / "capture.jsonl"
    lines = [json.dumps(line) for line in capture_lines()]
    lines.insert(2, "this is not json")
    lines.insert(3, "")
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


# ============================================================
# CAPTURE
# ============================================================

class TestReadCapture:
    """Capture file parsing."""

    def test_skips_malformed_and_blank_lines(self, capture_file):
        records = read_capture(capture_file)
        assert len(records) == 6

    def test_inline_body_is_serialized(self):
        record = parse_capture_line(json.dumps({"url": "u", "body": {"a": 1}}))

        assert json.loads(record.body) == {"a": 1}
        assert record.status == 200

    def test_entry_without_url_rejected(self):
        with pytest.raises(ValueError):
            parse_capture_line(json.dumps({"status": 200}))


class TestCaptureReplayer:
    """Replay into a reconciler."""

    def test_replay_counts_outcomes(self, capture_file, config):
        store = TradeDataStore()
        replayer = CaptureReplayer(read_capture(capture_file), IngestionReconciler(store, config=config))

        counts = replayer.replay()

        assert counts[PayloadKind.EVENTS] == 2
        assert counts[PayloadKind.POSITIONS] == 1
        assert counts[PayloadKind.UNRECOGNIZED] == 1
        assert store.position_count == 2
        assert store.reference.market_count == 1

    @pytest.mark.asyncio
    async def test_emit_details_completes_round(self, capture_file, config):
        store = TradeDataStore()
        reconciler = IngestionReconciler(store, config=config)
        replayer = CaptureReplayer(read_capture(capture_file), reconciler)
        reconciler.set_detail_trigger(replayer.emit_details)
        replayer.replay()

        outcome = await reconciler.ensure_all_details_fetched()

        assert outcome.complete
        assert not outcome.timed_out
        assert len(replayer.detail_records()) == 2


# ============================================================
# CLI
# ============================================================

def cli_args(capture_file, tmp_path, *extra):
    return [
        str(capture_file),
        "--output-dir", str(tmp_path / "exports"),
        "--database-url", f"sqlite:///{tmp_path / 'state.db'}",
        "--timeout", "1",
        *extra,
    ]


class TestCli:
    """Command-line entry point."""

    def test_text_export(self, capture_file, tmp_path):
        assert main(cli_args(capture_file, tmp_path)) == 0

        text = (tmp_path / "exports" / "portfolio_history.txt").read_text(encoding="utf-8")
        assert "Total Positions: 2" in text
        assert "Avg Close Price: 60.000000" in text

    def test_structured_export_with_filters(self, capture_file, tmp_path):
        code = main(cli_args(
            capture_file, tmp_path,
            "--format", "structured", "--symbol", "BTC",
            "--start-date", "2025-01-15", "--end-date", "2025-01-15",
        ))

        assert code == 0
        data = json.loads((tmp_path / "exports" / "portfolio_history.json").read_text(encoding="utf-8"))
        assert sorted(r["idx"] for r in data) == ["p1", "p2"]

    def test_no_match_exits_1(self, capture_file, tmp_path):
        assert main(cli_args(capture_file, tmp_path, "--symbol", "doge")) == 1
        assert not (tmp_path / "exports" / "portfolio_history.txt").exists()

    def test_bad_date_exits_1(self, capture_file, tmp_path):
        assert main(cli_args(capture_file, tmp_path, "--start-date", "15/01/2025")) == 1

    def test_reversed_dates_rejected(self, capture_file, tmp_path):
        args = create_parser().parse_args(cli_args(
            capture_file, tmp_path, "--start-date", "2025-02-01", "--end-date", "2025-01-01",
        ))
        assert validate_args(args) == ["--start-date must not be after --end-date"]

    def test_missing_capture_exits_1(self, tmp_path):
        assert main(cli_args(tmp_path / "nope.jsonl", tmp_path)) == 1

    def test_cli_overrides_config_file(self, capture_file, tmp_path):
        config_file = tmp_path / "exporter.yaml"
        config_file.write_text("output_dir: from-file\nreport_timezone: Europe/Berlin\n", encoding="utf-8")

        args = create_parser().parse_args(cli_args(capture_file, tmp_path, "--config", str(config_file)))
        config = build_config(args)

        assert config.output_dir == str(tmp_path / "exports")
        assert config.report_timezone == "Europe/Berlin"
        assert config.detail_timeout_seconds == 1.0
