"""
Position Registry

The single owner of every open Position. Callers only ever receive detached
copies; all mutations go through the registry and are serialized per mint
with one asyncio.Lock per mint, so independent positions update concurrently
while two updates to the same position never interleave.

Creating a position is also the only way a monitor task is started.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections import deque
from pathlib import Path
from typing import Any, Callable, Coroutine

from ..exceptions import StateException
from .models import STATUS_TRANSITIONS, ExitReason, Position, PositionStatus

logger = logging.getLogger(__name__)

MonitorFactory = Callable[[str], Coroutine[Any, Any, None]]

# Closed positions kept in memory for snapshots and inspection
CLOSED_HISTORY_LIMIT = 500


class PositionRegistry:
    def __init__(
        self,
        monitor_factory: MonitorFactory | None = None,
        clock: Callable[[], float] = time.time,
        closed_history: int = CLOSED_HISTORY_LIMIT,
    ):
        self._monitor_factory = monitor_factory
        self._clock = clock
        self._positions: dict[str, Position] = {}
        self._closed: deque[Position] = deque(maxlen=closed_history)
        self.closed_total = 0
        self._locks: dict[str, asyncio.Lock] = {}
        self._create_lock = asyncio.Lock()
        self._tasks: dict[str, asyncio.Task] = {}

    def set_monitor_factory(self, factory: MonitorFactory) -> None:
        self._monitor_factory = factory

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, mint: str) -> Position | None:
        record = self._positions.get(mint)
        return record.copy() if record else None

    def has(self, mint: str) -> bool:
        return mint in self._positions

    def open_positions(self) -> list[Position]:
        return [p.copy() for p in self._positions.values()]

    def closed_positions(self) -> list[Position]:
        return [p.copy() for p in self._closed]

    @property
    def tasks(self) -> list[asyncio.Task]:
        return list(self._tasks.values())

    def __len__(self) -> int:
        return len(self._positions)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create(self, position: Position) -> Position:
        """Register a freshly bought position and start its monitor."""
        async with self._create_lock:
            if position.mint in self._positions:
                raise StateException("Position already open", mint=position.mint[:8])
            if position.amount <= 0:
                raise StateException("Cannot open an empty position", mint=position.mint[:8])

            record = position.copy()
            self._transition(record, PositionStatus.OPEN)
            self._positions[record.mint] = record
            self._locks.setdefault(record.mint, asyncio.Lock())

        logger.info(
            "OPENED %s... amount=%d buy_price=$%.10g",
            record.mint[:8], record.amount, record.buy_price,
        )
        self._spawn_monitor(record.mint)
        return record.copy()

    async def apply_exit(
        self,
        mint: str,
        sold_amount: int,
        stage: str | None = None,
        reason: ExitReason | None = None,
        signature: str = "",
    ) -> Position:
        """
        Record a confirmed sale.

        `stage` flags a take-profit stage; it must not already be flagged.
        When the remaining amount reaches zero the position is closed: stage
        sales close with target_reached, other exits with `reason`.
        """
        async with self._lock_for(mint):
            record = self._require(mint)

            if sold_amount <= 0 or sold_amount > record.amount:
                raise StateException(
                    "Invalid sold amount", mint=mint[:8], sold=sold_amount, remaining=record.amount
                )
            if stage is not None and stage in record.stage_flags:
                raise StateException("Stage already triggered", mint=mint[:8], stage=stage)

            record.amount -= sold_amount
            record.sold_amount += sold_amount
            if signature:
                record.sell_signatures.append(signature)
            if stage is not None:
                record.stage_flags.add(stage)

            if record.amount == 0:
                final_reason = ExitReason.TARGET_REACHED if stage is not None else (reason or ExitReason.TARGET_REACHED)
                self._close_locked(record, final_reason)
            else:
                self._transition(record, PositionStatus.PARTIALLY_EXITED)

            return record.copy()

    async def close(self, mint: str, exit_reason: ExitReason) -> Position:
        """Terminal transition; the position leaves the registry."""
        async with self._lock_for(mint):
            record = self._require(mint)
            self._close_locked(record, exit_reason)
            return record.copy()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lock_for(self, mint: str) -> asyncio.Lock:
        lock = self._locks.get(mint)
        # Unknown or closed mints get a throwaway lock; _require rejects them
        return lock if lock is not None else asyncio.Lock()

    def _require(self, mint: str) -> Position:
        record = self._positions.get(mint)
        if record is None:
            raise StateException("No open position", mint=mint[:8])
        return record

    def _transition(self, record: Position, new_status: PositionStatus) -> None:
        if new_status not in STATUS_TRANSITIONS[record.status]:
            raise StateException(
                "Illegal status transition",
                mint=record.mint[:8],
                from_status=record.status.value,
                to_status=new_status.value,
            )
        record.status = new_status

    def _close_locked(self, record: Position, exit_reason: ExitReason) -> None:
        self._transition(record, PositionStatus.CLOSED)
        record.exit_reason = exit_reason
        record.closed_at = self._clock()
        del self._positions[record.mint]
        # Lock object stays valid for the current holder; a later create gets a fresh one
        self._locks.pop(record.mint, None)
        self.closed_total += 1
        self._closed.append(record)
        logger.info(
            "CLOSED %s... reason=%s sold=%d/%d",
            record.mint[:8], exit_reason.value, record.sold_amount, record.initial_amount,
        )

    def _spawn_monitor(self, mint: str) -> None:
        if self._monitor_factory is None:
            logger.warning("No monitor factory registered, %s... will not be monitored", mint[:8])
            return
        task = asyncio.create_task(self._monitor_factory(mint), name=f"monitor-{mint[:8]}")
        self._tasks[mint] = task
        task.add_done_callback(lambda t, m=mint: self._on_monitor_done(m, t))

    def _on_monitor_done(self, mint: str, task: asyncio.Task) -> None:
        if self._tasks.get(mint) is task:
            del self._tasks[mint]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Monitor for %s... crashed: %s", mint[:8], exc, exc_info=exc)

    async def wait_monitors(self, timeout: float | None = None) -> None:
        tasks = self.tasks
        if tasks:
            await asyncio.wait(tasks, timeout=timeout)

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def snapshot(self, prices: dict[str, float] | None = None) -> dict[str, Any]:
        prices = prices or {}
        open_positions = []
        for record in self._positions.values():
            entry = record.to_dict()
            price = prices.get(record.mint)
            entry["last_price"] = price
            entry["multiplier"] = price / record.buy_price if price and record.buy_price else None
            open_positions.append(entry)
        return {
            "ts": self._clock(),
            "open_positions": open_positions,
            "closed_count": self.closed_total,
        }

    def write_snapshot(self, path: str | Path, prices: dict[str, float] | None = None) -> None:
        snapshot_path = Path(path)
        snapshot_path.parent.mkdir(parents=True, exist_ok=True)
        snapshot_path.write_text(json.dumps(self.snapshot(prices), indent=2), encoding="utf-8")
