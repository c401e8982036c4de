"""Client-side polling agent for intraday data.

Lifecycle::

    BOOTSTRAPPING ──(full fetch ok / failed)──▶ IDLE ⇄ POLLING

``error`` is an attribute of the state, not a state of its own: a failed
bootstrap or poll leaves the agent IDLE with an error message and whatever
data it already had.  Polling resumes on the next timer tick.

Stable merge: every transition publishes exactly one new, immutable
AgentState.  New records are appended by building a fresh tuple
(``previous + new``); the previous state object is never modified.  The
``on_new_data`` callback receives only the newly arrived records.

Every request captures the agent's generation number.  ``reset()`` and
``stop()`` bump the generation, so a late response for a stale partition
is dropped instead of being committed.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Sequence, Union

from sdrwatch.config import get_settings
from sdrwatch.intraday.base import Partition, TradeRecord
from sdrwatch.intraday.client import IntradayApiClient, IntradayPayload

logger = logging.getLogger("sdrwatch.intraday.agent")

StateListener = Callable[["AgentState"], None]
NewDataCallback = Callable[[Sequence[TradeRecord]], Union[None, Awaitable[None]]]


class AgentStatus(str, Enum):
    BOOTSTRAPPING = "bootstrapping"
    IDLE = "idle"
    POLLING = "polling"


@dataclass(frozen=True)
class AgentState:
    """Immutable snapshot of everything the agent knows about a partition.

    Attributes:
        partition:           Partition being tracked.
        status:              Current lifecycle state.
        trades:              All records received so far, in arrival order.
        error:               Last error message, None when healthy.
        last_updated:        Time of the last successful response.
        highest_slice_id:    Highest slice id reported by the server.
        last_known_slice_id: Id the next poll asks for records beyond.
        processed_slice_ids: Slice ids in the most recent data response.
        cache_hit:           cacheHit flag from the bootstrap response.
    """

    partition: Partition
    status: AgentStatus = AgentStatus.BOOTSTRAPPING
    trades: tuple[TradeRecord, ...] = ()
    error: str | None = None
    last_updated: datetime | None = None
    highest_slice_id: int = 0
    last_known_slice_id: int = 0
    processed_slice_ids: tuple[int, ...] = ()
    cache_hit: bool | None = None

    @property
    def trade_count(self) -> int:
        return len(self.trades)

    @property
    def is_loading(self) -> bool:
        return self.status is AgentStatus.BOOTSTRAPPING

    @property
    def is_polling(self) -> bool:
        return self.status is AgentStatus.POLLING

    @property
    def status_indicator(self) -> str:
        """'fetching' while a request runs, 'error' when degraded, else 'live'."""
        if self.status is not AgentStatus.IDLE:
            return "fetching"
        if self.error:
            return "error"
        return "live"


class ClientSyncAgent:
    """Bootstrap a partition's full record set, then poll for deltas.

    At most one poll is in flight at any time: timer ticks and manual
    refreshes that arrive while a request is outstanding are ignored.

    Usage::

        agent = ClientSyncAgent(IntradayApiClient(base_url), partition)
        agent.subscribe(render)
        await agent.start()
        ...
        await agent.stop()
    """

    def __init__(
        self,
        client: IntradayApiClient,
        partition: Partition,
        polling_interval: float | None = None,
        enabled: bool = True,
        on_new_data: NewDataCallback | None = None,
        min_slice_id: int = 1,
    ) -> None:
        """Initialize the agent.

        Args:
            client:           Query surface client.
            partition:        Partition to track.
            polling_interval: Seconds between polls (settings default, 30s).
            enabled:          Whether the poll timer runs after bootstrap.
            on_new_data:      Sync or async callback receiving only new records.
            min_slice_id:     Lower bound sent with the bootstrap request.
        """
        self._client = client
        self._interval = (
            polling_interval
            if polling_interval is not None
            else get_settings().polling_interval_seconds
        )
        self._enabled = enabled
        self._on_new_data = on_new_data
        self._min_slice_id = min_slice_id

        self._state = AgentState(partition=partition)
        self._listeners: list[StateListener] = []
        self._generation = 0
        self._in_flight = False
        self._running = False
        self._timer: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def state(self) -> AgentState:
        return self._state

    @property
    def partition(self) -> Partition:
        return self._state.partition

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def enabled(self) -> bool:
        return self._enabled

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a listener called with every new state.

        Returns:
            A function that unsubscribes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Bootstrap, then start the poll timer if polling is enabled."""
        self._running = True
        await self._bootstrap(self._generation)
        if self._enabled:
            self._start_timer()

    async def stop(self) -> None:
        """Stop polling and discard results of requests still in flight."""
        self._running = False
        self._generation += 1
        self._in_flight = False
        await self._cancel_timer()
        for task in list(self._tasks):
            task.cancel()

    async def set_enabled(self, enabled: bool) -> None:
        """Turn the poll timer on or off.

        Disabling does not abort a request already in flight.
        """
        self._enabled = enabled
        if not enabled:
            await self._cancel_timer()
        elif self._running and not self._state.is_loading:
            self._start_timer()

    async def refresh(self) -> bool:
        """Poll now instead of waiting for the next tick.

        Returns:
            True if a poll was issued, False if one was already in flight
            (or the agent is still bootstrapping).
        """
        return await self._poll()

    async def reset(self, partition: Partition | None = None) -> None:
        """Discard local state and bootstrap again.

        Used when the tracked agency / asset class changes.  Responses to
        requests issued before the reset are ignored.
        """
        self._generation += 1
        self._in_flight = False
        target = partition or self._state.partition
        logger.info("Agent reset: %s → %s", self._state.partition, target)
        self._publish(AgentState(partition=target))
        await self._bootstrap(self._generation)
        if self._running and self._enabled:
            self._start_timer()

    async def __aenter__(self) -> "ClientSyncAgent":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def _bootstrap(self, generation: int) -> None:
        partition = self._state.partition
        try:
            payload = await self._client.fetch_all(partition, self._min_slice_id)
        except Exception as exc:
            if generation != self._generation:
                return
            logger.warning("Bootstrap failed for %s: %s", partition, exc)
            self._publish(
                replace(
                    self._state,
                    status=AgentStatus.IDLE,
                    trades=(),
                    error=f"Failed to fetch initial data: {exc}",
                )
            )
            return

        if generation != self._generation:
            logger.debug("Discarding stale bootstrap response for %s", partition)
            return

        self._publish(
            AgentState(
                partition=partition,
                status=AgentStatus.IDLE,
                trades=payload.trades,
                error=payload.error,
                last_updated=payload.last_updated or _now(),
                highest_slice_id=payload.highest_slice_id,
                last_known_slice_id=payload.highest_slice_id,
                processed_slice_ids=payload.processed_slice_ids,
                cache_hit=payload.cache_hit,
            )
        )
        logger.info(
            "Bootstrapped %s: %d trades, highest slice %d",
            partition, len(payload.trades), payload.highest_slice_id,
        )
        if payload.trades:
            await self._notify_new_data(payload.trades)

    async def _poll(self) -> bool:
        # The guard is checked and set before the first await, so two ticks
        # can never both pass it.
        if self._in_flight or self._state.status is not AgentStatus.IDLE:
            return False
        self._in_flight = True
        generation = self._generation
        partition = self._state.partition
        self._publish(replace(self._state, status=AgentStatus.POLLING))

        try:
            payload = await self._client.check_new(
                partition, self._state.last_known_slice_id
            )
        except Exception as exc:
            if generation == self._generation:
                logger.warning("Poll failed for %s: %s", partition, exc)
                self._publish(
                    replace(
                        self._state,
                        status=AgentStatus.IDLE,
                        error=f"Error polling for new data: {exc}",
                    )
                )
            return True
        finally:
            if generation == self._generation:
                self._in_flight = False

        if generation != self._generation:
            logger.debug("Discarding stale poll response for %s", partition)
            return True

        await self._commit_poll(payload)
        return True

    async def _commit_poll(self, payload: IntradayPayload) -> None:
        previous = self._state
        if not payload.trades:
            self._publish(
                replace(
                    previous,
                    status=AgentStatus.IDLE,
                    error=payload.error,
                    last_updated=_now(),
                )
            )
            return

        merged = previous.trades + payload.trades
        self._publish(
            replace(
                previous,
                status=AgentStatus.IDLE,
                trades=merged,
                error=payload.error,
                last_updated=payload.last_updated or _now(),
                highest_slice_id=max(previous.highest_slice_id, payload.highest_slice_id),
                last_known_slice_id=max(previous.last_known_slice_id, payload.highest_slice_id),
                processed_slice_ids=payload.processed_slice_ids,
            )
        )
        logger.info(
            "%s: +%d trades (slices %s), total %d",
            previous.partition, len(payload.trades),
            list(payload.processed_slice_ids), len(merged),
        )
        await self._notify_new_data(payload.trades)

    # ------------------------------------------------------------------
    # Timer
    # ------------------------------------------------------------------

    def _start_timer(self) -> None:
        if self._timer is None or self._timer.done():
            self._timer = asyncio.create_task(self._run_timer())

    async def _cancel_timer(self) -> None:
        timer, self._timer = self._timer, None
        if timer is None:
            return
        timer.cancel()
        try:
            await timer
        except asyncio.CancelledError:
            pass

    async def _run_timer(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            if self._in_flight:
                logger.debug("Tick skipped: poll already in flight")
                continue
            task = asyncio.create_task(self._poll())
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def _publish(self, state: AgentState) -> None:
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("State listener raised")

    async def _notify_new_data(self, trades: Sequence[TradeRecord]) -> None:
        if self._on_new_data is None:
            return
        try:
            result = self._on_new_data(trades)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("on_new_data callback raised")


def _now() -> datetime:
    return datetime.now(timezone.utc)
