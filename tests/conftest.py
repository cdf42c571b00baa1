"""
Shared payload builders for exporter tests.
"""

import json
from typing import Any, Optional

import pytest

from portfolio_exporter.config import ExporterConfig, set_config


API = "https://api.upscale.trade/v1"


def position_payload(
    idx: str,
    market: str = "m1",
    closed_at: Optional[str] = "2025-01-15T12:00:00Z",
    **overrides: Any,
) -> dict[str, Any]:
    data = {
        "idx": idx,
        "market": market,
        "direction": "long",
        "openedAt": "2025-01-15T10:00:00Z",
        "closedAt": closed_at,
        "pnl": "1000000",
        "fee": "2000",
        "size": "5000000",
        "order": {"type": "market", "leverage": 10000000000},
    }
    data.update(overrides)
    return data


def event_payload(
    name: str = "openPosition",
    base: int = 5000000000,
    quote: int = -250000000,
    fee: int = 2000,
    pnl: int = 0,
    order_type: Optional[str] = "market",
) -> dict[str, Any]:
    return {
        "eventName": name,
        "exchangedBase": str(base),
        "exchangedQuote": str(quote),
        "feeInEvent": str(fee),
        "pnlInEvent": str(pnl),
        "order": {"type": order_type} if order_type else None,
    }


def positions_url(offset: int = 0) -> str:
    return f"{API}/portfolio/history?offset={offset}&limit=20"


def events_url(idx: str) -> str:
    return f"{API}/positions/{idx}/history"


def body(data: Any) -> str:
    return json.dumps(data)


@pytest.fixture
def config():
    """Short timeout so incomplete rounds finish quickly."""
    cfg = ExporterConfig(detail_timeout_seconds=0.2)
    set_config(cfg)
    return cfg
