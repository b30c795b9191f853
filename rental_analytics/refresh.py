"""
Forecast Refresh
================
Background forecasting with request coalescing.

ForecastWorker is an asyncio actor owning the loaded dataset. It talks to its
caller only through messages (init / compute in, ready / result / error out),
runs at most one computation at a time on a single worker thread, and keeps a
single pending-request slot that every new compute request overwrites.

ForecastRefreshCoordinator sits on the caller side: it debounces scope
changes, caches snapshots per scope, tags requests with increasing ids and
ignores any response that is no longer the latest.
"""

import asyncio
import contextlib
import functools
import logging
import time
import uuid
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, ClassVar, Dict, Iterable, List, Optional, Tuple, Union

from .config import FORECAST_PARAMS, PROTOCOL_VERSION, REFRESH_PARAMS, ForecastParams, RefreshParams
from .models import ForecastResult
from .schema import MonthlyListingPerformance
from .scope import (
    ForecastSnapshot,
    TrainingScope,
    negotiate_forecast,
    normalize_scope,
    partition_by_currency,
    scope_key,
)

logger = logging.getLogger(__name__)


# =============================================================================
# MESSAGES
# =============================================================================

@dataclass(frozen=True)
class InitMessage:
    dataset_id: str
    listing_performance: Tuple[MonthlyListingPerformance, ...]
    params: RefreshParams = field(default_factory=RefreshParams)
    version: int = PROTOCOL_VERSION
    type: ClassVar[str] = "init"


@dataclass(frozen=True)
class ComputeMessage:
    dataset_id: str
    request_id: int
    desired_scope: TrainingScope
    version: int = PROTOCOL_VERSION
    type: ClassVar[str] = "compute"


@dataclass(frozen=True)
class ReadyMessage:
    dataset_id: str
    version: int = PROTOCOL_VERSION
    type: ClassVar[str] = "ready"


@dataclass(frozen=True)
class ResultMessage:
    dataset_id: str
    request_id: int
    snapshot: ForecastSnapshot
    version: int = PROTOCOL_VERSION
    type: ClassVar[str] = "result"


@dataclass(frozen=True)
class ErrorMessage:
    dataset_id: Optional[str]
    request_id: Optional[int]
    error: str
    version: int = PROTOCOL_VERSION
    type: ClassVar[str] = "error"


WorkerRequest = Union[InitMessage, ComputeMessage]
WorkerResponse = Union[ReadyMessage, ResultMessage, ErrorMessage]


def new_dataset_id() -> str:
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:12]}"


# =============================================================================
# WORKER
# =============================================================================

class ForecastWorker:
    """
    Message-driven background unit running scope negotiation and model fits.

    Args:
        compute_fn: Called as compute_fn(rows_by_currency, desired_scope,
            dataset_id, params) on the worker thread; defaults to
            negotiate_forecast
        forecast_params: Model parameters for the default compute_fn
    """

    def __init__(self, compute_fn: Optional[Callable[..., ForecastSnapshot]] = None,
                 forecast_params: ForecastParams = FORECAST_PARAMS):
        self._compute_fn = compute_fn or functools.partial(
            negotiate_forecast, forecast_params=forecast_params
        )
        self._inbox: asyncio.Queue = asyncio.Queue()
        self._outbox: asyncio.Queue = asyncio.Queue()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._task: Optional[asyncio.Task] = None
        self._drain_task: Optional[asyncio.Task] = None
        self.running = False

        self._dataset_id: Optional[str] = None
        self._rows_by_currency: Dict[str, List[MonthlyListingPerformance]] = {}
        self._params = REFRESH_PARAMS
        self._pending: Optional[ComputeMessage] = None

    @property
    def dataset_id(self) -> Optional[str]:
        return self._dataset_id

    async def start(self) -> None:
        if self.running:
            logger.warning("Forecast worker already running")
            return
        self.running = True
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="forecast-worker")
        self._task = asyncio.create_task(self._run_loop())
        logger.debug("Forecast worker started")

    async def stop(self) -> None:
        self.running = False
        for task in (self._drain_task, self._task):
            if task is not None:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._task = self._drain_task = None
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
        logger.debug("Forecast worker stopped")

    def send(self, message: WorkerRequest) -> None:
        """Post a request; never blocks."""
        self._inbox.put_nowait(message)

    async def receive(self, timeout: Optional[float] = None) -> WorkerResponse:
        if timeout is None:
            return await self._outbox.get()
        return await asyncio.wait_for(self._outbox.get(), timeout)

    async def flush(self) -> None:
        """Wait until every posted message has been handled (not necessarily computed)."""
        await self._inbox.join()

    def _emit(self, message: WorkerResponse) -> None:
        self._outbox.put_nowait(message)

    async def _run_loop(self) -> None:
        while self.running:
            message = await self._inbox.get()
            try:
                self._handle(message)
            except Exception as exc:
                logger.exception("Error handling %s message", getattr(message, "type", "unknown"))
                self._emit(ErrorMessage(
                    dataset_id=getattr(message, "dataset_id", None),
                    request_id=getattr(message, "request_id", None),
                    error=str(exc) or type(exc).__name__,
                ))
            finally:
                self._inbox.task_done()

    def _handle(self, message) -> None:
        version = getattr(message, "version", None)
        if version != PROTOCOL_VERSION:
            raise ValueError(f"Unsupported protocol version {version!r} (expected {PROTOCOL_VERSION})")

        if isinstance(message, InitMessage):
            self._dataset_id = message.dataset_id
            self._rows_by_currency = partition_by_currency(message.listing_performance)
            self._params = message.params
            self._pending = None
            logger.info("Loaded dataset %s: %d rows in %d currency(ies)",
                        message.dataset_id, len(message.listing_performance),
                        len(self._rows_by_currency))
            self._emit(ReadyMessage(dataset_id=message.dataset_id))
            return

        if isinstance(message, ComputeMessage):
            if message.dataset_id != self._dataset_id:
                raise ValueError(f"Unknown dataset {message.dataset_id!r}")
            if self._pending is not None:
                logger.debug("Request %d superseded by %d",
                             self._pending.request_id, message.request_id)
            self._pending = message
            if self._drain_task is None or self._drain_task.done():
                self._drain_task = asyncio.create_task(self._drain())
            return

        raise ValueError(f"Unsupported message type {type(message).__name__}")

    async def _drain(self) -> None:
        loop = asyncio.get_running_loop()
        while self._pending is not None:
            message, self._pending = self._pending, None
            try:
                snapshot = await loop.run_in_executor(
                    self._executor, self._compute_fn,
                    self._rows_by_currency, message.desired_scope, message.dataset_id, self._params,
                )
            except Exception as exc:
                logger.exception("Forecast computation failed for request %d", message.request_id)
                outcome = ErrorMessage(message.dataset_id, message.request_id, str(exc) or type(exc).__name__)
            else:
                outcome = ResultMessage(message.dataset_id, message.request_id, snapshot)

            if self._pending is not None:
                logger.debug("Dropping superseded outcome of request %d", message.request_id)
                continue
            if message.dataset_id != self._dataset_id:
                logger.debug("Dropping outcome for replaced dataset %s", message.dataset_id)
                continue
            self._emit(outcome)


# =============================================================================
# COORDINATOR
# =============================================================================

class RefreshStatus(str, Enum):
    IDLE = "idle"
    STALE = "stale"
    RECOMPUTING = "recomputing"
    UP_TO_DATE = "up_to_date"
    FAILED = "failed"


class SnapshotCache:
    """Least-recently-used snapshot store."""

    def __init__(self, max_size: int):
        self.max_size = max_size
        self._items: "OrderedDict[str, ForecastSnapshot]" = OrderedDict()

    def get(self, key: str) -> Optional[ForecastSnapshot]:
        if key not in self._items:
            return None
        self._items.move_to_end(key)
        return self._items[key]

    def set(self, key: str, snapshot: ForecastSnapshot) -> None:
        self._items[key] = snapshot
        self._items.move_to_end(key)
        while len(self._items) > self.max_size:
            self._items.popitem(last=False)

    def clear(self) -> None:
        self._items.clear()

    def __contains__(self, key: str) -> bool:
        return key in self._items

    def __len__(self) -> int:
        return len(self._items)


class ForecastRefreshCoordinator:
    """
    Keeps a forecast snapshot in step with the caller's desired scope.

    Usage:
        coordinator = ForecastRefreshCoordinator()
        await coordinator.start(realized_listing_performance)
        coordinator.set_scope(build_desired_scope("USD"))
        await coordinator.wait_settled(timeout=5)
        coordinator.status, coordinator.forecast
    """

    def __init__(self, params: RefreshParams = REFRESH_PARAMS,
                 worker: Optional[ForecastWorker] = None,
                 forecast_params: ForecastParams = FORECAST_PARAMS):
        self.params = params
        self._worker = worker or ForecastWorker(forecast_params=forecast_params)
        self._cache = SnapshotCache(params.cache_size)
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._listener: Optional[asyncio.Task] = None
        self._debounce: Optional[asyncio.TimerHandle] = None
        self._settled = asyncio.Event()
        self._settled.set()

        self._request_id = 0
        self._dataset_id: Optional[str] = None
        self._desired: Optional[TrainingScope] = None
        self._in_flight = False
        self._awaiting_ready = False

        self._status = RefreshStatus.IDLE
        self._snapshot: Optional[ForecastSnapshot] = None
        self._error: Optional[str] = None
        self._worker_ready = False

    # -- read accessors ------------------------------------------------------

    @property
    def status(self) -> RefreshStatus:
        return self._status

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def snapshot(self) -> Optional[ForecastSnapshot]:
        return self._snapshot

    @property
    def forecast(self) -> Optional[ForecastResult]:
        return self._snapshot.result if self._snapshot is not None else None

    @property
    def worker_ready(self) -> bool:
        return self._worker_ready

    @property
    def desired_scope(self) -> Optional[TrainingScope]:
        return self._desired

    @property
    def dataset_id(self) -> Optional[str]:
        return self._dataset_id

    # -- lifecycle -----------------------------------------------------------

    async def start(self, listing_performance: Iterable[MonthlyListingPerformance],
                    dataset_id: Optional[str] = None) -> str:
        """
        Load (or replace) the realized listing performance dataset.

        Every call gets a fresh dataset id; responses tagged with an older id
        are ignored and the snapshot cache is cleared.
        """
        self._loop = asyncio.get_running_loop()
        if not self._worker.running:
            await self._worker.start()
        if self._listener is None:
            self._listener = asyncio.create_task(self._listen())

        self._cancel_debounce()
        self._request_id += 1
        self._dataset_id = dataset_id or new_dataset_id()
        self._cache.clear()
        self._status = RefreshStatus.IDLE
        self._snapshot = None
        self._error = None
        self._worker_ready = False
        self._in_flight = False
        self._awaiting_ready = True
        self._update_settled()

        self._worker.send(InitMessage(
            dataset_id=self._dataset_id,
            listing_performance=tuple(listing_performance),
            params=self.params,
        ))
        return self._dataset_id

    async def stop(self) -> None:
        self._cancel_debounce()
        if self._listener is not None:
            self._listener.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._listener
            self._listener = None
        await self._worker.stop()

    async def wait_settled(self, timeout: Optional[float] = None) -> RefreshStatus:
        """Wait until nothing is scheduled or in flight; returns the status."""
        await asyncio.wait_for(self._settled.wait(), timeout)
        return self._status

    # -- scope ---------------------------------------------------------------

    def set_scope(self, scope: TrainingScope) -> None:
        self._desired = normalize_scope(scope)
        self._evaluate()

    def refresh_now(self) -> bool:
        """
        Send a compute request for the desired scope immediately.

        Skips the debounce and the auto-refresh setting. Returns False when
        no dataset is loaded or no scope is set.
        """
        self._cancel_debounce()
        sent = self._start_compute(force=True)
        self._update_settled()
        return sent

    def _cache_key(self, scope: TrainingScope) -> str:
        return f"{self._dataset_id}:{scope_key(scope)}"

    def _evaluate(self) -> None:
        if self._desired is None:
            return
        self._cancel_debounce()

        cached = self._cache.get(self._cache_key(self._desired))
        if cached is not None:
            self._status = RefreshStatus.UP_TO_DATE
            self._snapshot = cached
            self._error = None
            self._update_settled()
            return

        self._status = RefreshStatus.STALE if self._snapshot is not None else RefreshStatus.IDLE
        self._error = None
        if self.params.auto_refresh and self._worker_ready and self._loop is not None:
            self._debounce = self._loop.call_later(self.params.debounce_seconds, self._on_debounce)
        self._update_settled()

    def _on_debounce(self) -> None:
        self._debounce = None
        self._start_compute()
        self._update_settled()

    def _start_compute(self, force: bool = False) -> bool:
        if self._desired is None or self._dataset_id is None:
            return False
        if not force and not self._worker_ready:
            return False

        self._request_id += 1
        self._status = RefreshStatus.RECOMPUTING
        self._error = None
        self._in_flight = True
        # init was sent first, so the inbox orders this compute after it
        self._worker.send(ComputeMessage(
            dataset_id=self._dataset_id,
            request_id=self._request_id,
            desired_scope=self._desired,
        ))
        return True

    def _cancel_debounce(self) -> None:
        if self._debounce is not None:
            self._debounce.cancel()
            self._debounce = None

    def _update_settled(self) -> None:
        if self._in_flight or self._awaiting_ready or self._debounce is not None:
            self._settled.clear()
        else:
            self._settled.set()

    # -- responses -----------------------------------------------------------

    async def _listen(self) -> None:
        while True:
            message = await self._worker.receive()
            self._on_message(message)

    def _on_message(self, message: WorkerResponse) -> None:
        if isinstance(message, ReadyMessage):
            if message.dataset_id != self._dataset_id:
                return
            self._worker_ready = True
            self._awaiting_ready = False
            if not self._in_flight:
                self._evaluate()
            self._update_settled()
            return

        if isinstance(message, ResultMessage):
            if message.dataset_id != self._dataset_id or message.request_id != self._request_id:
                logger.debug("Ignoring stale result for request %d", message.request_id)
                return
            snapshot = message.snapshot
            self._cache.set(self._cache_key(snapshot.desired_scope), snapshot)
            self._in_flight = False
            if self._desired is not None and scope_key(snapshot.desired_scope) == scope_key(self._desired):
                self._status = RefreshStatus.UP_TO_DATE
                self._snapshot = snapshot
                self._error = None
                self._cancel_debounce()
            self._update_settled()
            return

        if isinstance(message, ErrorMessage):
            if message.dataset_id is not None and message.dataset_id != self._dataset_id:
                return
            if message.request_id is not None and message.request_id != self._request_id:
                return
            logger.error("Forecast refresh failed: %s", message.error)
            self._status = RefreshStatus.FAILED
            self._error = message.error or "Forecast compute failed"
            self._in_flight = False
            self._awaiting_ready = False
            self._update_settled()
