"""
Portfolio History Exporter.

Reconstructs closed trading positions from intercepted portfolio API
responses and exports them with per-event detail.

Intercepted traffic feeds one reconciler:
- Position history pages  -> position table (first write wins)
- Market listings         -> reference data (last write wins)
- Exchange config         -> asset decimal table (replaced wholesale)
- Per-position history    -> event lists (replaced wholesale)

Usage:
    from portfolio_exporter import (
        ExportKind, ExportQuery, ExportService, FileArtifactSink,
        IngestionReconciler, SqlBlobStore, TradeDataStore,
    )

    store = TradeDataStore(SqlBlobStore("sqlite:///portfolio_exporter.db"))
    store.restore()

    reconciler = IngestionReconciler(store, detail_trigger=expand_rows)
    reconciler.ingest(url, 200, body)       # for every intercepted response

    service = ExportService(reconciler, FileArtifactSink("exports"))
    result = await service.export(ExportKind.TEXT, ExportQuery(symbol="btc"))

    if result.warning:
        print(result.warning)               # partial detail coverage

Offline:
    portfolio-exporter capture.jsonl --format structured
"""

from .aggregator import aggregate, aggregate_store, resolve_decimals
from .blob_store import BlobStore, InMemoryBlobStore, SqlBlobStore
from .capture import CaptureRecord, CaptureReplayer, read_capture
from .codec import format_fixed, to_decimal, to_decimal_string
from .config import ExporterConfig, get_config, set_config
from .exceptions import (
    ConfigurationError,
    ExporterError,
    NoMatchingPositionsError,
    PayloadError,
    PersistenceError,
)
from .export import (
    ExportKind,
    ExportQuery,
    ExportResult,
    ExportService,
    filter_positions,
    format_structured,
    format_text,
)
from .models import (
    AggregatedPosition,
    EventName,
    Market,
    NormalizedEvent,
    PayloadKind,
    Position,
    RawEvent,
)
from .reconciler import FetchOutcome, IngestionReconciler
from .reference_data import ReferenceDataStore
from .sinks import ArtifactSink, FileArtifactSink
from .store import TradeDataStore


__all__ = [
    # Config
    "ExporterConfig",
    "get_config",
    "set_config",
    # Exceptions
    "ExporterError",
    "PayloadError",
    "PersistenceError",
    "NoMatchingPositionsError",
    "ConfigurationError",
    # Models
    "Position",
    "Market",
    "RawEvent",
    "NormalizedEvent",
    "AggregatedPosition",
    "EventName",
    "PayloadKind",
    # Codec
    "to_decimal",
    "to_decimal_string",
    "format_fixed",
    # Stores
    "BlobStore",
    "InMemoryBlobStore",
    "SqlBlobStore",
    "ReferenceDataStore",
    "TradeDataStore",
    # Ingestion
    "IngestionReconciler",
    "FetchOutcome",
    "CaptureRecord",
    "CaptureReplayer",
    "read_capture",
    # Aggregation & export
    "aggregate",
    "aggregate_store",
    "resolve_decimals",
    "filter_positions",
    "format_text",
    "format_structured",
    "ExportKind",
    "ExportQuery",
    "ExportResult",
    "ExportService",
    "ArtifactSink",
    "FileArtifactSink",
]

__version__ = "2.3.0"
