"""
Capture Replay - feed recorded API responses through the reconciler.

A capture file is JSON Lines, one intercepted response per line:

    {"url": "https://api.upscale.trade/v1/portfolio/history?offset=0", "status": 200, "body": "..."}

`body` may be the raw response text or the decoded JSON value inline.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Union

from .models import PayloadKind
from .reconciler import IngestionReconciler


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CaptureRecord:
    url: str
    status: int
    body: Optional[str]


def parse_capture_line(line: str) -> Optional[CaptureRecord]:
    """Parse one capture line; blank lines give None, bad lines raise ValueError."""
    line = line.strip()
    if not line:
        return None

    data = json.loads(line)
    if not isinstance(data, dict) or "url" not in data:
        raise ValueError("capture entry must be an object with a url")

    body = data.get("body")
    if body is not None and not isinstance(body, str):
        body = json.dumps(body)

    return CaptureRecord(
        url=str(data["url"]),
        status=int(data.get("status", 200)),
        body=body,
    )


def read_capture(path: Union[str, Path]) -> list[CaptureRecord]:
    """Load a capture file. Malformed lines are logged and skipped."""
    records: list[CaptureRecord] = []
    with open(path, "r", encoding="utf-8") as fh:
        for line_no, line in enumerate(fh, 1):
            try:
                record = parse_capture_line(line)
            except (ValueError, TypeError) as e:
                logger.warning(f"Skipping capture line {line_no}: {e}")
                continue
            if record is not None:
                records.append(record)

    logger.info(f"Read {len(records)} captured responses from {path}")
    return records


class CaptureReplayer:
    """
    Replays a capture into a reconciler.

    replay() delivers every record once, in order. emit_details() is a
    detail-emission trigger: it re-delivers the event-detail records the
    way a page would re-request them after rows are expanded.
    """

    def __init__(
        self,
        records: Iterable[CaptureRecord],
        reconciler: IngestionReconciler,
        delay_seconds: float = 0.0,
    ) -> None:
        self.records = list(records)
        self.reconciler = reconciler
        self.delay_seconds = delay_seconds

    def replay(self) -> dict[PayloadKind, int]:
        """Ingest every record. Returns a count per routing outcome."""
        counts: dict[PayloadKind, int] = {}
        for record in self.records:
            kind = self.reconciler.ingest(record.url, record.status, record.body)
            counts[kind] = counts.get(kind, 0) + 1

        summary = ", ".join(f"{k.value}={v}" for k, v in counts.items())
        logger.info(f"Replayed {len(self.records)} responses ({summary})")
        return counts

    def detail_records(self) -> list[CaptureRecord]:
        return [
            r for r in self.records
            if self.reconciler.classify(r.url) is PayloadKind.EVENTS
        ]

    async def emit_details(self) -> None:
        for record in self.detail_records():
            await asyncio.sleep(self.delay_seconds)
            self.reconciler.ingest(record.url, record.status, record.body)
