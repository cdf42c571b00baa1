"""
Ingestion Reconciler.

============================================================
PURPOSE
============================================================
Consumes intercepted API responses and keeps the trade data store in
sync with what the host page has loaded.

RESPONSIBILITIES:
- Route responses by URL (positions, markets, decimals, event detail)
- Validate bodies and update the owned tables
- Run "fetch all details" rounds and detect completion

CRITICAL INVARIANT:
    "A bad payload never aborts ingestion."

============================================================
CONCURRENCY
============================================================
Single event loop. ingest() is synchronous; a detail round suspends on
one future per pending position raced against a timeout, so ingestion
keeps running while the round waits. Concurrent callers of
ensure_all_details_fetched() share the in-flight round and its outcome.

============================================================
"""

import asyncio
import inspect
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Union
from urllib.parse import parse_qs, urlsplit

from pydantic import ValidationError

from .config import ExporterConfig, get_config
from .exceptions import PayloadError
from .models import Market, PayloadKind, Position, RawEvent
from .schemas import ConfigPayload, EventListAdapter, MarketListAdapter, PositionListPayload
from .store import TradeDataStore


logger = logging.getLogger(__name__)


DetailTrigger = Callable[[], Union[None, Awaitable[None]]]
StatusListener = Callable[[str], None]


@dataclass
class FetchOutcome:
    """Result of a detail collection round."""

    total: int = 0
    """Positions known when the round started."""

    captured: int = 0
    """Positions with an event list when the round ended."""

    missing_ids: list[str] = field(default_factory=list)
    """Positions that will export with summary figures only."""

    timed_out: bool = False
    skipped: bool = False
    """Round not needed: cached events already cover every position."""

    @property
    def complete(self) -> bool:
        return self.captured >= self.total

    @property
    def warning(self) -> Optional[str]:
        if not self.timed_out:
            return None
        return f"Timed out. Exporting only {self.captured} of {self.total} positions."


def position_id_from_url(url: str, history_segment: str = "history", listing_segment: str = "portfolio") -> Optional[str]:
    """Path segment right before a literal 'history' segment, unless it is 'portfolio'."""
    parts = [p for p in urlsplit(url).path.split("/") if p]
    if history_segment not in parts:
        return None
    history_idx = parts.index(history_segment)
    if history_idx > 0 and parts[history_idx - 1] != listing_segment:
        return parts[history_idx - 1]
    return None


class IngestionReconciler:
    """
    State machine over intercepted responses.

    Usage:
        reconciler = IngestionReconciler(store, detail_trigger=click_rows)
        reconciler.ingest(url, 200, body)
        outcome = await reconciler.ensure_all_details_fetched()
    """

    def __init__(
        self,
        store: TradeDataStore,
        config: Optional[ExporterConfig] = None,
        detail_trigger: Optional[DetailTrigger] = None,
        on_status: Optional[StatusListener] = None,
    ) -> None:
        self.store = store
        self.config = config or get_config()
        self._detail_trigger = detail_trigger
        self._on_status = on_status

        self._fresh_load = True
        self._initial_page_loaded = False
        self._inflight: Optional[asyncio.Future] = None
        self._pending: dict[str, asyncio.Future] = {}

    # ---------------------------------------------------------
    # State
    # ---------------------------------------------------------

    @property
    def is_fetching(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    @property
    def fresh_load(self) -> bool:
        return self._fresh_load

    def set_detail_trigger(self, trigger: Optional[DetailTrigger]) -> None:
        self._detail_trigger = trigger

    def begin_listing(self) -> None:
        """Re-arm the first-page reset for a new position listing."""
        self._initial_page_loaded = False

    def _status(self, message: str = "") -> None:
        message = message or f"Captured: {self.store.position_count}"
        if self._on_status:
            try:
                self._on_status(message)
            except Exception as e:
                logger.warning(f"Status listener failed: {e}")

    # ---------------------------------------------------------
    # Routing
    # ---------------------------------------------------------

    def classify(self, url: str) -> PayloadKind:
        """Route a URL without touching state (body-dependent checks excluded)."""
        if not url or self.config.api_host not in url:
            return PayloadKind.IGNORED
        path = urlsplit(url).path
        if self.config.positions_marker in path:
            return PayloadKind.POSITIONS
        if self.config.markets_marker in path and self.config.history_segment not in path.split("/"):
            return PayloadKind.MARKETS
        if self.config.config_marker in path:
            return PayloadKind.ASSET_DECIMALS
        if self._position_id(url):
            return PayloadKind.EVENTS
        return PayloadKind.UNRECOGNIZED

    def _position_id(self, url: str) -> Optional[str]:
        return position_id_from_url(
            url, self.config.history_segment, self.config.listing_segment
        )

    def ingest(self, url: str, http_status: int, body: Optional[str]) -> PayloadKind:
        """
        Apply one intercepted response.

        Returns:
            How the response was routed. Parse failures are logged and
            reported as REJECTED; state is unchanged for that payload.
        """
        if not url or self.config.api_host not in url or http_status != 200 or not body:
            return PayloadKind.IGNORED

        kind = self.classify(url)
        if kind is PayloadKind.UNRECOGNIZED:
            return kind

        try:
            data = self._decode(url, body)

            if kind is PayloadKind.POSITIONS:
                self._ingest_positions(url, data)
            elif kind is PayloadKind.MARKETS:
                self._ingest_markets(data)
            elif kind is PayloadKind.ASSET_DECIMALS and isinstance(data, dict) and data.get("assetDecimals"):
                self._ingest_decimals(data)
            else:
                kind = self._ingest_events(url, data)
            return kind

        except PayloadError as e:
            logger.warning(f"Error processing response from {url}: {e.message}")
            return PayloadKind.REJECTED
        except Exception as e:
            logger.error(f"Unexpected error processing response from {url}: {e}", exc_info=True)
            return PayloadKind.REJECTED

    def _decode(self, url: str, body: str) -> Any:
        try:
            return json.loads(body)
        except ValueError as e:
            raise PayloadError(f"Invalid JSON: {e}", url=url, raw_data=body) from e

    def _ingest_positions(self, url: str, data: Any) -> None:
        try:
            payload = PositionListPayload.model_validate(data)
        except ValidationError as e:
            raise PayloadError(f"Invalid position list: {e}", url=url) from e

        clear_first = False
        if self._is_first_page(url) and not self._initial_page_loaded:
            self._initial_page_loaded = True
            clear_first = True

        added = self.store.insert_positions(
            (Position.from_schema(p) for p in payload.data),
            clear_first=clear_first,
        )
        if added > 0:
            logger.debug(f"Captured {added} new positions ({self.store.position_count} total)")
            self.store.save()
            self._status()

    def _is_first_page(self, url: str) -> bool:
        return parse_qs(urlsplit(url).query).get("offset") == ["0"]

    def _ingest_markets(self, data: Any) -> None:
        try:
            markets = MarketListAdapter.validate_python(data or [])
        except ValidationError as e:
            raise PayloadError(f"Invalid market list: {e}") from e
        count = self.store.reference.upsert_markets(Market.from_schema(m) for m in markets)
        logger.debug(f"Upserted {count} markets")

    def _ingest_decimals(self, data: Any) -> None:
        try:
            payload = ConfigPayload.model_validate(data)
        except ValidationError as e:
            raise PayloadError(f"Invalid asset decimals: {e}") from e
        self.store.reference.upsert_asset_decimals(payload.asset_decimals or {})
        logger.debug(f"Loaded decimals for {len(payload.asset_decimals or {})} assets")

    def _ingest_events(self, url: str, data: Any) -> PayloadKind:
        position_id = self._position_id(url)
        if not position_id:
            return PayloadKind.UNRECOGNIZED

        try:
            events = EventListAdapter.validate_python(data or [])
        except ValidationError as e:
            raise PayloadError(f"Invalid event list for {position_id}: {e}", url=url) from e

        self.store.replace_events(position_id, (RawEvent.from_schema(ev) for ev in events))
        logger.info(
            f"[{self.store.collected_count}/{self.store.position_count}] "
            f"Received event data for position {position_id}."
        )
        self.store.save()

        pending = self._pending.pop(position_id, None)
        if pending is not None and not pending.done():
            pending.set_result(None)
        if self.is_fetching:
            self._status(
                f"Collecting details: {self.store.collected_count} / {self.store.position_count}"
            )
        return PayloadKind.EVENTS

    # ---------------------------------------------------------
    # Detail collection
    # ---------------------------------------------------------

    async def ensure_all_details_fetched(self) -> FetchOutcome:
        """
        Make sure every known position has an event list, or time out.

        Concurrent callers await the same round. Never raises for partial
        coverage; see FetchOutcome.timed_out.
        """
        if self._inflight is not None and not self._inflight.done():
            return await asyncio.shield(self._inflight)

        total = self.store.position_count
        if not self._fresh_load and not self.store.missing_ids():
            return FetchOutcome(total=total, captured=self.store.collected_count, skipped=True)

        loop = asyncio.get_running_loop()
        self._inflight = loop.create_future()
        try:
            outcome = await self._run_round()
        except asyncio.CancelledError:
            self._inflight.cancel()
            raise
        except Exception as e:
            self._inflight.set_exception(e)
            # Mark retrieved; shielded waiters re-raise it themselves
            self._inflight.exception()
            raise
        else:
            self._inflight.set_result(outcome)
            return outcome
        finally:
            self._pending.clear()
            self._status()

    async def _run_round(self) -> FetchOutcome:
        self.store.clear_events()
        self._fresh_load = False

        position_ids = self.store.position_ids()
        total = len(position_ids)
        if total == 0:
            return FetchOutcome()

        loop = asyncio.get_running_loop()
        self._pending = {idx: loop.create_future() for idx in position_ids}
        waiters = list(self._pending.values())
        self._status(f"Collecting details: 0 / {total}")

        trigger_task = self._start_trigger()
        try:
            _, not_done = await asyncio.wait(
                waiters, timeout=self.config.detail_timeout_seconds
            )
        finally:
            if trigger_task is not None and not trigger_task.done():
                trigger_task.cancel()
            for waiter in waiters:
                if not waiter.done():
                    waiter.cancel()

        missing = [idx for idx in position_ids if not self.store.has_events(idx)]
        captured = total - len(missing)
        outcome = FetchOutcome(
            total=total,
            captured=captured,
            missing_ids=missing,
            timed_out=bool(not_done),
        )
        if outcome.timed_out:
            logger.warning(f"{outcome.warning} Missing: {missing}")
            self._status(outcome.warning)
        else:
            logger.info(f"Collected event data for all {total} positions")
        return outcome

    def _start_trigger(self) -> Optional[asyncio.Task]:
        """Invoke the detail-emission trigger once; async triggers run alongside the wait."""
        if self._detail_trigger is None:
            return None
        try:
            result = self._detail_trigger()
        except Exception as e:
            logger.error(f"Detail trigger failed: {e}")
            return None
        if not inspect.isawaitable(result):
            return None

        task = asyncio.ensure_future(result)
        task.add_done_callback(_log_trigger_failure)
        return task


def _log_trigger_failure(task: asyncio.Future) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error(f"Detail trigger failed: {error}")
